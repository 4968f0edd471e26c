"""Media engine adapter.

Wraps one ffmpeg executable behind a small contract: load once, stage files in a
private scratch directory (the engine's virtual filesystem), execute with an
argument list, read results back and delete them. Diagnostic output and
progress are published as events to scoped subscribers.

The engine is a single-writer resource: there is one scratch directory and one
execution context, so callers hold ``engine.lock`` for the whole of any
multi-step operation.
"""
import logging
import re
import shutil
import subprocess
import tempfile
import threading
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from mediabatch.config import ENGINE_WORK_DIR, FFMPEG_BIN

logger = logging.getLogger("mediabatch.engine")

EVENTS = ("log", "progress")

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_TIME_RE = re.compile(r"time=\s*(-?\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

# Diagnostic lines kept for error messages
ERROR_TAIL_LINES = 20


class EngineError(RuntimeError):
    """An engine invocation or virtual file operation failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class EngineUnavailableError(RuntimeError):
    """The engine could not be loaded. Fatal for the session."""


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class MediaEngine:
    """ffmpeg behind a write/exec/read/delete contract."""

    def __init__(self, binary: str = FFMPEG_BIN, work_root: Path = ENGINE_WORK_DIR):
        self.binary = binary
        self.work_root = Path(work_root)
        self.lock = threading.RLock()
        self.load_error: Optional[str] = None
        self._workdir: Optional[Path] = None
        self._listeners: dict[str, list[Callable]] = {event: [] for event in EVENTS}
        self._duration = 0.0

    @property
    def ready(self) -> bool:
        return self._workdir is not None

    def load(self) -> None:
        """Verify the binary and create the scratch directory. Raises EngineUnavailableError."""
        if self.ready:
            return
        try:
            self._check_binary()
            self.work_root.mkdir(parents=True, exist_ok=True)
            self._workdir = Path(tempfile.mkdtemp(prefix="vfs-", dir=self.work_root))
        except EngineUnavailableError as e:
            self.load_error = str(e)
            logger.critical("Media engine unavailable: %s", e)
            raise
        except OSError as e:
            self.load_error = f"Could not prepare engine workspace: {e}"
            logger.critical("Media engine unavailable: %s", self.load_error)
            raise EngineUnavailableError(self.load_error) from e
        self.load_error = None
        logger.info("Media engine ready (binary=%s, scratch=%s)", self.binary, self._workdir)

    def _check_binary(self) -> None:
        try:
            result = subprocess.run(
                [self.binary, "-version"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise EngineUnavailableError(f"ffmpeg could not be started ({self.binary}): {e}") from e
        if result.returncode != 0:
            raise EngineUnavailableError(
                f"ffmpeg -version exited with code {result.returncode}: {(result.stderr or '').strip()}"
            )
        version = (result.stdout or "").splitlines()
        logger.info("Found %s", version[0] if version else self.binary)

    def shutdown(self) -> None:
        """Remove the scratch directory. The engine must be loaded again before use."""
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            logger.info("Media engine scratch removed: %s", self._workdir)
        self._workdir = None

    # Virtual filesystem

    def _require_ready(self) -> Path:
        if self._workdir is None:
            raise EngineUnavailableError(self.load_error or "Media engine is not loaded")
        return self._workdir

    def _path(self, name: str) -> Path:
        workdir = self._require_ready()
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"Invalid virtual file name: {name!r}")
        return workdir / name

    def write_file(self, name: str, data: bytes) -> None:
        self._path(name).write_bytes(data)

    def read_file(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise EngineError(f"Virtual file not found: {name}") from e

    def delete_file(self, name: str, missing_ok: bool = True) -> None:
        self._path(name).unlink(missing_ok=missing_ok)

    def list_files(self) -> list[str]:
        return sorted(p.name for p in self._require_ready().iterdir())

    # Events

    @staticmethod
    def _check_event(event: str) -> str:
        if event not in EVENTS:
            raise ValueError(f"Unknown engine event: {event}")
        return event

    def on(self, event: str, handler: Callable) -> None:
        self._listeners[self._check_event(event)].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        try:
            self._listeners[self._check_event(event)].remove(handler)
        except ValueError:
            pass

    @contextmanager
    def subscribe(self, event: str, handler: Callable):
        """Register handler for the duration of the with block."""
        self.on(event, handler)
        try:
            yield handler
        finally:
            self.off(event, handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners[self._check_event(event)])

    def _emit(self, event: str, payload) -> None:
        for handler in list(self._listeners[event]):
            try:
                handler(payload)
            except Exception:
                logger.exception("Engine %s listener failed", event)

    # Execution

    def exec(self, args: list[str]) -> None:
        """Run ffmpeg with args inside the scratch directory. Raises EngineError on non-zero exit."""
        workdir = self._require_ready()
        cmd = [self.binary, "-nostdin", "-y", *args]
        logger.debug("Engine exec: %s", " ".join(cmd))
        self._duration = 0.0
        tail: deque[str] = deque(maxlen=ERROR_TAIL_LINES)

        def on_line(line: str) -> None:
            tail.append(line)
            self._handle_line(line)

        try:
            returncode = self._run(cmd, workdir, on_line)
        except OSError as e:
            raise EngineError(f"ffmpeg could not be started: {e}") from e
        if returncode != 0:
            raise EngineError(
                f"ffmpeg exited with code {returncode}",
                returncode=returncode,
                output="\n".join(tail),
            )

    def _run(self, cmd: list[str], cwd: Path, on_line: Callable[[str], None]) -> int:
        # Text mode splits on \r as well, so per-frame status updates arrive as lines
        process = subprocess.Popen(
            cmd,
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
        assert process.stderr is not None
        for line in process.stderr:
            line = line.rstrip()
            if line:
                on_line(line)
        return process.wait()

    def _handle_line(self, line: str) -> None:
        logger.debug("ffmpeg: %s", line)
        self._emit("log", line)
        if not self._duration:
            m = _DURATION_RE.search(line)
            if m:
                self._duration = _to_seconds(*m.groups())
                return
        m = _TIME_RE.search(line)
        if m and self._duration > 0:
            seconds = max(0.0, _to_seconds(*m.groups()))
            self._emit("progress", min(seconds / self._duration, 1.0))


# Process-wide instance
_engine: Optional[MediaEngine] = None


def get_engine() -> MediaEngine:
    global _engine
    if _engine is None:
        _engine = MediaEngine()
    return _engine


def set_engine(engine: Optional[MediaEngine]) -> None:
    global _engine
    _engine = engine
