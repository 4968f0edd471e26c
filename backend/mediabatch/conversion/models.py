"""Conversion items, configurations and probe results."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from mediabatch.config import (
    DEFAULT_IMAGE_FORMAT,
    DEFAULT_QUALITY,
    DEFAULT_VIDEO_CODEC,
    DEFAULT_VIDEO_FORMAT,
    IMAGE_OUTPUT_FORMATS,
    RESOLUTION_PRESETS,
    VIDEO_CODECS,
    VIDEO_DOWNLOAD_STEM,
    VIDEO_OUTPUT_FORMATS,
)

UNKNOWN = "Unknown"


class ItemStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class ResolutionMode(str, Enum):
    ORIGINAL = "original"
    PRESET = "preset"
    CUSTOM = "custom"


_MEDIA_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "ico": "image/x-icon",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "flv": "video/x-flv",
    "wmv": "video/x-ms-wmv",
}


def media_type_for(fmt: str) -> str:
    return _MEDIA_TYPES.get(fmt.lower(), "application/octet-stream")


@dataclass
class ItemOutput:
    data: bytes
    handle: str
    filename: str
    media_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class ConversionItem:
    """One queued image, or the active video. Source fields never change after creation."""

    def __init__(self, item_id: str, filename: str, data: bytes, width: int, height: int, preview: Optional[str] = None):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid source dimensions {width}x{height} for {filename}")
        self.item_id = item_id
        self.filename = filename
        self.data = data
        self.original_width = width
        self.original_height = height
        self.aspect_ratio = width / height
        self.target_width = width
        self.target_height = height
        self.keyword = ""
        self.status = ItemStatus.IDLE
        self.preview = preview
        self.output: Optional[ItemOutput] = None
        self.error: Optional[str] = None

    @property
    def resized(self) -> bool:
        return self.target_width != self.original_width or self.target_height != self.original_height

    def to_dict(self) -> dict:
        return {
            "id": self.item_id,
            "filename": self.filename,
            "size": len(self.data),
            "original_width": self.original_width,
            "original_height": self.original_height,
            "aspect_ratio": self.aspect_ratio,
            "target_width": self.target_width,
            "target_height": self.target_height,
            "keyword": self.keyword,
            "status": self.status.value,
            "error": self.error,
            "output_name": self.output.filename if self.output else None,
            "output_size": self.output.size if self.output else None,
        }


@dataclass
class BatchConfiguration:
    """Image-run settings, applied to every item at conversion time."""
    output_format: str = DEFAULT_IMAGE_FORMAT
    quality: int = DEFAULT_QUALITY

    def __post_init__(self):
        self.output_format = (self.output_format or "").strip().lower()
        if self.output_format not in IMAGE_OUTPUT_FORMATS:
            raise ValueError(f"Unsupported image format: {self.output_format}")
        if isinstance(self.quality, bool) or not isinstance(self.quality, int) or not 1 <= self.quality <= 100:
            raise ValueError(f"Quality must be an integer between 1 and 100, got {self.quality!r}")


@dataclass
class VideoJobConfiguration:
    output_format: str = DEFAULT_VIDEO_FORMAT
    resolution: str = ResolutionMode.ORIGINAL.value
    codec: str = DEFAULT_VIDEO_CODEC

    def __post_init__(self):
        self.output_format = (self.output_format or "").strip().lower()
        self.resolution = (self.resolution or "").strip().lower()
        if self.output_format not in VIDEO_OUTPUT_FORMATS:
            raise ValueError(f"Unsupported video format: {self.output_format}")
        if self.resolution not in RESOLUTION_PRESETS and self.resolution not in (
            ResolutionMode.ORIGINAL.value,
            ResolutionMode.CUSTOM.value,
        ):
            raise ValueError(f"Unsupported resolution: {self.resolution}")
        if self.codec not in VIDEO_CODECS:
            raise ValueError(f"Unsupported codec: {self.codec}")

    @property
    def mode(self) -> ResolutionMode:
        if self.resolution in RESOLUTION_PRESETS:
            return ResolutionMode.PRESET
        return ResolutionMode(self.resolution)

    @property
    def stream_copy(self) -> bool:
        return self.codec == "copy"


@dataclass
class ProbeResult:
    """Media properties scraped from engine diagnostics; None means unknown."""
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[str] = None
    codec: Optional[str] = None
    duration: Optional[str] = None

    @property
    def resolution(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None

    @property
    def complete(self) -> bool:
        return None not in (self.width, self.height, self.fps, self.codec, self.duration)

    def to_dict(self) -> dict:
        return {
            "resolution": self.resolution or UNKNOWN,
            "width": self.width or 0,
            "height": self.height or 0,
            "fps": self.fps or UNKNOWN,
            "codec": self.codec or UNKNOWN,
            "duration": self.duration or UNKNOWN,
        }


@dataclass
class VideoJob:
    """The single active video item with its probe data and settings."""
    item: ConversionItem
    probe: ProbeResult = field(default_factory=ProbeResult)
    config: VideoJobConfiguration = field(default_factory=VideoJobConfiguration)
    progress: int = 0

    @property
    def download_name(self) -> str:
        return f"{VIDEO_DOWNLOAD_STEM}.{self.config.output_format}"

    def to_dict(self) -> dict:
        info = self.probe.to_dict()
        info["size"] = f"{len(self.item.data) / (1024 * 1024):.2f} MB"
        return {
            "id": self.item.item_id,
            "filename": self.item.filename,
            "status": self.item.status.value,
            "progress": self.progress,
            "error": self.item.error,
            "info": info,
            "settings": {
                "format": self.config.output_format,
                "resolution": self.config.resolution,
                "codec": self.config.codec,
                "width": self.item.target_width,
                "height": self.item.target_height,
                "aspect_ratio": self.item.aspect_ratio,
            },
            "download_name": self.item.output.filename if self.item.output else None,
        }
