"""Per-session state: the image batch, its settings, the last run and the active video job."""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from mediabatch.batch import forget_run
from mediabatch.config import WORKSPACE_IDLE_SECONDS
from mediabatch.conversion.models import BatchConfiguration, ProbeResult, VideoJob, VideoJobConfiguration
from mediabatch.conversion.tracker import ItemTracker
from mediabatch.handles import HandleStore, get_handle_store

logger = logging.getLogger("mediabatch.workspace")


@dataclass
class Workspace:
    session_id: str
    images: ItemTracker
    video: ItemTracker
    config: BatchConfiguration = field(default_factory=BatchConfiguration)
    last_run_id: Optional[str] = None
    video_job: Optional[VideoJob] = None
    image_run_active: bool = False
    video_run_active: bool = False
    last_seen: float = field(default_factory=time.monotonic)
    run_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def busy(self) -> bool:
        return self.image_run_active or self.video_run_active

    def begin_image_run(self) -> bool:
        """Claim the image run slot. False if a run is already active."""
        with self.run_lock:
            if self.image_run_active:
                return False
            self.image_run_active = True
            return True

    def begin_video_run(self) -> bool:
        """Claim the video run slot. False if a conversion is already active."""
        with self.run_lock:
            if self.video_run_active:
                return False
            self.video_run_active = True
            return True

    def start_video(
        self,
        filename: str,
        data: bytes,
        width: int,
        height: int,
        probe: Optional[ProbeResult] = None,
    ) -> VideoJob:
        """Only one video at a time: a new upload discards the previous one and keeps its settings."""
        settings = self.video_job.config if self.video_job else VideoJobConfiguration()
        self.video.clear()
        item = self.video.enqueue(filename, data, width, height)
        self.video_job = VideoJob(item=item, probe=probe or ProbeResult(), config=settings)
        return self.video_job

    def discard_video(self) -> None:
        self.video.clear()
        self.video_job = None

    def close(self) -> None:
        self.images.clear()
        self.discard_video()
        if self.last_run_id:
            forget_run(self.last_run_id)
            self.last_run_id = None


_workspaces: dict[str, Workspace] = {}
_lock = threading.Lock()


def _pop_idle(now: float, keep: str) -> list[Workspace]:
    # caller holds _lock
    idle = [
        sid for sid, ws in _workspaces.items()
        if sid != keep and not ws.busy and now - ws.last_seen > WORKSPACE_IDLE_SECONDS
    ]
    return [_workspaces.pop(sid) for sid in idle]


def get_workspace(session_id: str, handles: Optional[HandleStore] = None) -> Workspace:
    """Workspace for session_id, created on first use. Idle workspaces of other sessions are dropped."""
    now = time.monotonic()
    with _lock:
        expired = _pop_idle(now, keep=session_id)
        ws = _workspaces.get(session_id)
        if ws is None:
            handles = handles or get_handle_store()
            ws = Workspace(session_id=session_id, images=ItemTracker(handles), video=ItemTracker(handles))
            _workspaces[session_id] = ws
            logger.info("Workspace created for session %s", session_id)
        ws.last_seen = now
    for old in expired:
        old.close()
        logger.info("Workspace for session %s expired after inactivity", old.session_id)
    return ws


def drop_workspace(session_id: str) -> None:
    with _lock:
        ws = _workspaces.pop(session_id, None)
    if ws is not None:
        ws.close()
        logger.info("Workspace dropped for session %s", session_id)
