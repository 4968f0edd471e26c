"""Batch image and single-video conversion driven through ffmpeg."""

__version__ = "1.0.0"
