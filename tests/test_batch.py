"""Tests for bundle creation and in-memory run state."""
import io
import zipfile

import pytest

from mediabatch import batch
from mediabatch.batch import BundleBuilder


def entries(data: bytes) -> dict:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def test_bundle_contains_registered_entries():
    bundle = BundleBuilder()
    bundle.register("a.webp", b"aaa")
    bundle.register("b.webp", b"bbb")
    assert len(bundle) == 2
    assert "a.webp" in bundle
    assert entries(bundle.finalize()) == {"a.webp": b"aaa", "b.webp": b"bbb"}


def test_same_name_replaces_entry():
    bundle = BundleBuilder()
    bundle.register("a.webp", b"first")
    bundle.register("a.webp", b"second")
    assert bundle.names() == ["a.webp"]
    assert entries(bundle.finalize()) == {"a.webp": b"second"}


def test_empty_bundle_is_valid_zip():
    assert entries(BundleBuilder().finalize()) == {}


def test_finalize_once():
    bundle = BundleBuilder()
    bundle.finalize()
    with pytest.raises(RuntimeError):
        bundle.finalize()
    with pytest.raises(RuntimeError):
        bundle.register("late.png", b"x")


def test_run_lifecycle(tmp_path):
    run = batch.create_run("run1", ["a", "b"])
    assert run.to_dict()["status"] == "processing"
    assert not run.to_dict()["bundle_ready"]

    name = batch.save_bundle("run1", b"zipdata", bundle_dir=tmp_path)
    batch.set_run_completed("run1", name, ["a.webp"], ["b"])
    info = batch.get_run("run1").to_dict()
    assert info["status"] == "completed"
    assert info["bundle_ready"]
    assert info["entries"] == ["a.webp"]
    assert info["failed"] == ["b"]
    assert (tmp_path / "run1.zip").read_bytes() == b"zipdata"

    batch.forget_run("run1", bundle_dir=tmp_path)
    assert batch.get_run("run1") is None
    assert not (tmp_path / "run1.zip").exists()


def test_failed_run():
    batch.create_run("run2", ["a"])
    batch.set_run_failed("run2", "engine went away")
    info = batch.get_run("run2").to_dict()
    assert info["status"] == "failed"
    assert info["error"] == "engine went away"
    batch.forget_run("run2")


def test_updates_to_unknown_run_are_ignored():
    batch.set_run_completed("nope", "nope.zip", [], [])
    batch.set_run_failed("nope", "x")
    assert batch.get_run("nope") is None
