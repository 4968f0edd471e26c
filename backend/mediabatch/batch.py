"""Image run state and bundle (zip) creation. Runs are kept in memory for the life of the process."""
import io
import logging
import threading
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mediabatch.config import BUNDLE_DIR

logger = logging.getLogger("mediabatch.batch")


class BundleBuilder:
    """Collects converted outputs by filename and zips them once the run is over."""

    def __init__(self):
        self._entries: dict[str, bytes] = {}
        self._finalized = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, filename: object) -> bool:
        return filename in self._entries

    def names(self) -> list[str]:
        return list(self._entries)

    def register(self, filename: str, data: bytes) -> None:
        """Add an entry. A second entry with the same name replaces the first."""
        if self._finalized:
            raise RuntimeError("Bundle already finalized")
        if filename in self._entries:
            logger.warning("Bundle entry %s replaced", filename)
        self._entries[filename] = bytes(data)

    def finalize(self) -> bytes:
        if self._finalized:
            raise RuntimeError("Bundle already finalized")
        self._finalized = True
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for name, data in self._entries.items():
                zf.writestr(name, data)
        logger.info("Created bundle with %s entries (%s bytes)", len(self._entries), buf.tell())
        return buf.getvalue()


@dataclass
class BatchRun:
    run_id: str
    status: str  # "processing" | "completed" | "failed"
    item_ids: list[str] = field(default_factory=list)
    entries: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    error: Optional[str] = None
    bundle_filename: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "item_ids": self.item_ids,
            "entries": self.entries,
            "failed": self.failed,
            "error": self.error,
            "bundle_ready": self.bundle_filename is not None,
        }


_runs: dict[str, BatchRun] = {}
_runs_lock = threading.Lock()


def get_run(run_id: str) -> Optional[BatchRun]:
    return _runs.get(run_id)


def create_run(run_id: str, item_ids: list[str]) -> BatchRun:
    run = BatchRun(run_id=run_id, status="processing", item_ids=list(item_ids))
    with _runs_lock:
        _runs[run_id] = run
    return run


def set_run_completed(run_id: str, bundle_filename: str, entries: list[str], failed: list[str]) -> None:
    run = _runs.get(run_id)
    if run:
        run.status = "completed"
        run.bundle_filename = bundle_filename
        run.entries = list(entries)
        run.failed = list(failed)


def set_run_failed(run_id: str, error: str) -> None:
    run = _runs.get(run_id)
    if run:
        run.status = "failed"
        run.error = error


def forget_run(run_id: str, bundle_dir: Optional[Path] = None) -> None:
    """Drop run state and its bundle file."""
    with _runs_lock:
        run = _runs.pop(run_id, None)
    if run and run.bundle_filename:
        path = (bundle_dir or BUNDLE_DIR) / run.bundle_filename
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove bundle %s: %s", path, e)


def save_bundle(run_id: str, data: bytes, bundle_dir: Optional[Path] = None) -> str:
    """Write bundle bytes to BUNDLE_DIR. Returns the stored filename."""
    bundle_dir = bundle_dir or BUNDLE_DIR
    bundle_dir.mkdir(parents=True, exist_ok=True)
    path = bundle_dir / f"{run_id}.zip"
    path.write_bytes(data)
    logger.info("Saved bundle %s", path.name)
    return path.name
