"""Aspect-ratio arithmetic and source dimension detection."""
import io
import logging
import math
from typing import Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger("mediabatch.resize")


def round_half_up(value: float) -> int:
    """Nearest integer, .5 rounding up (1.5 -> 2, 2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def even(value: float) -> int:
    """Nearest even integer; exact odd values round down (1001 -> 1000, 563 -> 562)."""
    return int(math.ceil(value / 2 - 0.5)) * 2


def height_for_width(width: int, aspect_ratio: float) -> int:
    return round_half_up(width / aspect_ratio)


def width_for_height(height: int, aspect_ratio: float) -> int:
    return round_half_up(height * aspect_ratio)


def resize_keep_aspect(
    aspect_ratio: float,
    dimension: str,
    value: int,
) -> Tuple[int, int]:
    """
    Return (width, height) after setting one side explicitly.
    The other side is recomputed from the fixed aspect ratio.
    """
    if value <= 0:
        raise ValueError(f"{dimension} must be positive, got {value}")
    if dimension == "width":
        return value, height_for_width(value, aspect_ratio)
    if dimension == "height":
        return width_for_height(value, aspect_ratio), value
    raise ValueError(f"Unknown dimension: {dimension}")


def read_image_size(data: bytes) -> Tuple[int, int]:
    """(width, height) of an encoded image. Raises ValueError if Pillow cannot identify it."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Could not read image dimensions: %s", e)
        raise ValueError(f"Not a readable image: {e}") from e
