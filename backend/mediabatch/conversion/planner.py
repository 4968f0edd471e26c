"""
Engine argument planning.

Pure functions mapping an item and its run configuration to the ordered ffmpeg
argument list. Nothing here touches the engine or the filesystem, so the exact
command can be logged and tested without running a process.
"""
import math
import re
from pathlib import Path
from typing import Optional

from mediabatch.config import RESOLUTION_PRESETS
from mediabatch.conversion.models import (
    BatchConfiguration,
    ConversionItem,
    ResolutionMode,
    VideoJobConfiguration,
)
from mediabatch.conversion.resize import even

# Tags that receive the keyword; ICRD is the creation-date tag
METADATA_TAGS = ("title", "description", "comment", "author", "copyright", "ICRD")

JPEG_FORMATS = ("jpg", "jpeg")
WEBP_FORMATS = ("webp",)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class PlanError(ValueError):
    """The requested combination of settings cannot be planned."""


def jpeg_quality(quality: int) -> int:
    """Map user quality 1-100 (higher is better) to the mjpeg qscale 2-31 (lower is better)."""
    q = math.floor(31 - (quality - 1) * 29 / 99)
    return max(2, min(31, q))


def webp_quality(quality: int) -> int:
    return quality


def sanitize_stem(text: str) -> str:
    return _UNSAFE_CHARS.sub("-", text)


def output_filename(item: ConversionItem, fmt: str) -> str:
    """Download name: sanitized keyword when set, otherwise the source filename stem."""
    keyword = (item.keyword or "").strip()
    stem = sanitize_stem(keyword) if keyword else Path(item.filename).stem
    return f"{stem or 'image'}.{fmt}"


def plan_image(item: ConversionItem, config: BatchConfiguration, input_name: str, output_name: str) -> list[str]:
    args = ["-i", input_name]
    if item.resized:
        args += ["-vf", f"scale={item.target_width}:{item.target_height}"]

    fmt = config.output_format
    if fmt in JPEG_FORMATS:
        args += ["-q:v", str(jpeg_quality(config.quality))]
    elif fmt in WEBP_FORMATS:
        args += ["-quality", str(webp_quality(config.quality))]

    if item.keyword and item.keyword.strip():
        for tag in METADATA_TAGS:
            args += ["-metadata", f"{tag}={item.keyword}"]

    args.append(output_name)
    return args


def video_scale_filter(item: ConversionItem, config: VideoJobConfiguration) -> Optional[str]:
    """scale=... filter for the configured resolution, or None for the original size."""
    mode = config.mode
    if mode == ResolutionMode.ORIGINAL:
        return None
    if mode == ResolutionMode.PRESET:
        # -2 keeps the derived width divisible by two
        return f"scale=-2:{RESOLUTION_PRESETS[config.resolution]}"
    width = max(2, even(item.target_width))
    height = max(2, even(item.target_height))
    return f"scale={width}:{height}"


def plan_video(item: ConversionItem, config: VideoJobConfiguration, input_name: str, output_name: str) -> list[str]:
    args = ["-i", input_name]
    scale = video_scale_filter(item, config)
    if scale is not None:
        if config.stream_copy:
            raise PlanError("Stream copy cannot be combined with a resolution change; choose a codec to re-encode")
        args += ["-vf", scale]

    if config.stream_copy:
        args += ["-c:v", "copy"]
    else:
        args += ["-c:v", config.codec]
        if config.output_format == "mp4" and config.codec == "libx264":
            args += ["-preset", "fast"]

    args.append(output_name)
    return args


def command_as_string(args: list[str]) -> str:
    """Human-readable version of the arguments for logging."""
    return " ".join(args)
