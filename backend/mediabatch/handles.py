"""Display handles: opaque ids for byte buffers served back to the client (source previews, converted outputs)."""
import logging
import threading
import uuid
from pathlib import Path
from typing import Optional

from mediabatch.config import HANDLE_DIR

logger = logging.getLogger("mediabatch.handles")


class HandleStore:
    """Stores buffers under HANDLE_DIR; a handle stays valid until revoked."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or HANDLE_DIR)
        self.root.mkdir(parents=True, exist_ok=True)
        self._paths: dict[str, Path] = {}
        self._lock = threading.Lock()

    def create(self, data: bytes, extension: str = "bin") -> str:
        handle = uuid.uuid4().hex
        ext = extension.lstrip(".").lower() or "bin"
        path = self.root / f"{handle}.{ext}"
        path.write_bytes(data)
        with self._lock:
            self._paths[handle] = path
        return handle

    def __contains__(self, handle: object) -> bool:
        return handle in self._paths

    def path(self, handle: str) -> Path:
        try:
            return self._paths[handle]
        except KeyError:
            raise KeyError(f"Unknown handle: {handle}") from None

    def read(self, handle: str) -> bytes:
        return self.path(handle).read_bytes()

    def revoke(self, handle: Optional[str]) -> None:
        """Release the buffer behind handle. Unknown or None handles are ignored."""
        if not handle:
            return
        with self._lock:
            path = self._paths.pop(handle, None)
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove handle file %s: %s", path, e)


_handle_store: Optional[HandleStore] = None


def get_handle_store() -> HandleStore:
    global _handle_store
    if _handle_store is None:
        _handle_store = HandleStore()
    return _handle_store
