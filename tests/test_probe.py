"""Tests for the diagnostic-text media probe."""
from mediabatch.conversion.models import UNKNOWN
from mediabatch.conversion.probe import parse_probe_output, probe

from conftest import PROBE_OUTPUT, FakeEngine


def test_parse_full_output():
    result = parse_probe_output(PROBE_OUTPUT)
    assert (result.width, result.height) == (1920, 1080)
    assert result.fps == "29.97"
    assert result.codec == "h264"
    assert result.duration == "00:01:02.50"
    assert result.complete


def test_parse_prefers_video_stream_line():
    text = (
        "Input #0, matroska,webm, from 'input':\n"
        "    title           : Poster 40x40 edition\n"
        "  Duration: 00:00:03.00, start: 0.000000\n"
        "  Stream #0:0: Video: vp9 (Profile 0), yuv420p(tv), 640x360, SAR 1:1 DAR 16:9, 25 fps\n"
    )
    result = parse_probe_output(text)
    assert (result.width, result.height) == (640, 360)
    assert result.fps == "25"
    assert result.codec == "vp9"


def test_parse_partial_output_reports_unknown():
    result = parse_probe_output("Input #0, wav, from 'input':\n  Duration: 00:00:09.12, bitrate: 1411 kb/s\n")
    assert result.width is None and result.height is None
    assert result.duration == "00:00:09.12"
    info = result.to_dict()
    assert info["resolution"] == UNKNOWN
    assert info["fps"] == UNKNOWN
    assert info["codec"] == UNKNOWN
    assert info["width"] == 0


def test_probe_through_engine(engine):
    result = probe(engine, b"video bytes")
    assert result.resolution == "1920x1080"
    assert engine.calls[-1] == ["-i", "input"]
    assert engine.list_files() == []
    assert engine.listener_count("log") == 0


def test_probe_garbage_output(tmp_path):
    eng = FakeEngine(tmp_path / "engine", probe_output="input: Invalid data found when processing input")
    eng.load()
    result = probe(eng, b"not media")
    assert result.to_dict()["resolution"] == UNKNOWN
    assert not result.complete
    eng.shutdown()


def test_probe_with_unloaded_engine_is_unknown(tmp_path):
    eng = FakeEngine(tmp_path / "engine")
    result = probe(eng, b"video bytes")
    assert result.width is None
    assert result.codec is None
