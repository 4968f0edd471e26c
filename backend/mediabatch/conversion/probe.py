"""
Best-effort media probe.

Runs the engine with an input and no output. ffmpeg refuses to run without an
output file, but it prints the input description first, so the diagnostic text
is captured and scraped for resolution, frame rate, codec and duration.
Anything that cannot be found is reported as unknown; a probe never blocks the
caller from converting with manually entered dimensions.
"""
import logging
import re

from mediabatch.conversion.models import ProbeResult
from mediabatch.engine import EngineError, EngineUnavailableError, MediaEngine

logger = logging.getLogger("mediabatch.probe")

_RESOLUTION_RE = re.compile(r"(\d{2,5})x(\d{2,5})")
_FPS_RE = re.compile(r"(\d+(?:\.\d+)?) fps")
_CODEC_RE = re.compile(r"Video: (\w+)")
_DURATION_RE = re.compile(r"Duration: (\d{2}:\d{2}:\d{2}\.\d{2})")


def _find_resolution(text: str):
    # Prefer the video stream line so container tags cannot match first
    for line in text.splitlines():
        if "Video:" in line:
            m = _RESOLUTION_RE.search(line)
            if m:
                return m
    return _RESOLUTION_RE.search(text)


def parse_probe_output(text: str) -> ProbeResult:
    result = ProbeResult()
    m = _find_resolution(text)
    if m:
        result.width, result.height = int(m.group(1)), int(m.group(2))
    m = _FPS_RE.search(text)
    if m:
        result.fps = m.group(1)
    m = _CODEC_RE.search(text)
    if m:
        result.codec = m.group(1)
    m = _DURATION_RE.search(text)
    if m:
        result.duration = m.group(1)
    return result


def probe(engine: MediaEngine, data: bytes, input_name: str = "input") -> ProbeResult:
    """Probe data through the engine. Engine failures only make fields unknown."""
    lines: list[str] = []
    with engine.lock:
        try:
            engine.write_file(input_name, data)
            with engine.subscribe("log", lines.append):
                try:
                    engine.exec(["-i", input_name])
                except EngineError:
                    # expected: no output file was given
                    pass
        except (EngineError, EngineUnavailableError, OSError) as e:
            logger.warning("Probe could not run: %s", e)
        finally:
            try:
                engine.delete_file(input_name)
            except (EngineUnavailableError, OSError) as e:
                logger.warning("Could not delete probe input %s: %s", input_name, e)

    result = parse_probe_output("\n".join(lines))
    if not result.complete:
        logger.info("Probe incomplete: %s", result.to_dict())
    return result
