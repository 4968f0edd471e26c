"""Shared test fixtures for mediabatch."""
import io
import os
import tempfile
from pathlib import Path

# Isolate data directories and the statistics database before mediabatch.config is imported
os.environ.setdefault("MEDIABATCH_DATA_DIR", tempfile.mkdtemp(prefix="mediabatch-test-"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from PIL import Image

from mediabatch.conversion.service import ConversionService
from mediabatch.conversion.tracker import ItemTracker
from mediabatch.engine import EngineUnavailableError, MediaEngine
from mediabatch.handles import HandleStore

PROBE_OUTPUT = """\
Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'input':
  Metadata:
    major_brand     : isom
  Duration: 00:01:02.50, start: 0.000000, bitrate: 2500 kb/s
  Stream #0:0[0x1](und): Video: h264 (High) (avc1 / 0x31637661), yuv420p(progressive), 1920x1080 [SAR 1:1 DAR 16:9], 2370 kb/s, 29.97 fps, 29.97 tbr, 30k tbn (default)
  Stream #0:1[0x2](und): Audio: aac (LC) (mp4a / 0x6134706D), 48000 Hz, stereo, fltp, 128 kb/s (default)
At least one output file must be specified"""


class FakeEngine(MediaEngine):
    """MediaEngine whose process is simulated; the scratch directory and events are real.

    An invocation without an output prints PROBE_OUTPUT and fails, like ffmpeg.
    Inputs listed in fail_inputs, or whose bytes start with b"BROKEN", fail.
    Otherwise the output file receives b"converted:" + input bytes.
    """

    def __init__(self, work_root: Path, available: bool = True, probe_output: str = PROBE_OUTPUT):
        super().__init__(binary="ffmpeg", work_root=work_root)
        self.available = available
        self.probe_output = probe_output
        self.fail_inputs: set[str] = set()
        self.calls: list[list[str]] = []
        self.files_during_exec: list[list[str]] = []

    def _check_binary(self) -> None:
        if not self.available:
            raise EngineUnavailableError("ffmpeg could not be started (ffmpeg): not installed")

    def _run(self, cmd, cwd, on_line) -> int:
        args = cmd[3:]
        self.calls.append(args)
        self.files_during_exec.append(sorted(p.name for p in cwd.iterdir()))
        input_name = args[args.index("-i") + 1]
        source = cwd / input_name
        if not source.exists():
            on_line(f"{input_name}: No such file or directory")
            return 1
        if len(args) == 2:
            for line in self.probe_output.splitlines():
                on_line(line)
            return 1
        data = source.read_bytes()
        if input_name in self.fail_inputs or data.startswith(b"BROKEN"):
            on_line(f"Error while decoding {input_name}: Invalid data found when processing input")
            return 183
        on_line("  Duration: 00:00:10.00, start: 0.000000, bitrate: 100 kb/s")
        for t in ("00:00:02.50", "00:00:05.00", "00:00:10.00"):
            on_line(f"frame=   10 fps=0.0 q=-0.0 size=       0kB time={t} bitrate=N/A speed=1x")
        (cwd / args[-1]).write_bytes(b"converted:" + data)
        return 0


def png_bytes(width: int = 40, height: int = 20, color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def handles(tmp_path: Path) -> HandleStore:
    return HandleStore(tmp_path / "handles")


@pytest.fixture
def engine(tmp_path: Path):
    eng = FakeEngine(tmp_path / "engine")
    eng.load()
    yield eng
    eng.shutdown()


@pytest.fixture
def tracker(handles: HandleStore) -> ItemTracker:
    return ItemTracker(handles)


@pytest.fixture
def service(engine: FakeEngine, handles: HandleStore) -> ConversionService:
    return ConversionService(engine, handles)
