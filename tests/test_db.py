"""Tests for the session statistics store (in-memory SQLite)."""
import uuid

import pytest

from mediabatch import db


@pytest.fixture
def session_id():
    db.init_db()
    return f"db-{uuid.uuid4()}"


def test_empty_session(session_id):
    stats = db.get_session_stats(session_id)
    assert stats["items_processed"] == 0
    assert stats["compression_percent"] == 0.0
    assert db.get_session_activities(session_id) == []


def test_stats_aggregate(session_id):
    db.record_activity(session_id, "a", "image", "a.png", "done", output_name="a.webp",
                       input_bytes=1000, output_bytes=250, duration_seconds=0.5)
    db.record_activity(session_id, "b", "image", "b.png", "done", output_name="b.webp",
                       input_bytes=1000, output_bytes=750, duration_seconds=1.5)
    db.record_activity(session_id, "c", "image", "c.png", "error", input_bytes=500,
                       error="ffmpeg exited with code 1")

    stats = db.get_session_stats(session_id)
    assert stats["items_processed"] == 3
    assert stats["items_converted"] == 2
    assert stats["items_failed"] == 1
    assert stats["total_input_bytes"] == 2000
    assert stats["total_output_bytes"] == 1000
    assert stats["compression_percent"] == 50.0
    assert stats["time_spent_seconds"] == 2.0

    activities = db.get_session_activities(session_id, limit=2)
    assert [a["item_id"] for a in activities] == ["c", "b"]
    assert activities[0]["error"] == "ffmpeg exited with code 1"


def test_delete_session_data(session_id):
    db.record_activity(session_id, "a", "video", "clip.mov", "done")
    other = f"db-{uuid.uuid4()}"
    db.record_activity(other, "b", "video", "clip.mov", "done")
    assert db.delete_session_data(session_id) == 1
    assert db.get_session_stats(session_id)["items_processed"] == 0
    assert db.get_session_stats(other)["items_processed"] == 1
