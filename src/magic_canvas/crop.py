from __future__ import annotations

import math
from typing import Tuple

from .config import MARGIN_FRACTION, MIN_MARGIN_PX
from .types import BoundingBox, CropRect


def crop_margin(
    size: Tuple[int, int],
    min_margin: int = MIN_MARGIN_PX,
    fraction: float = MARGIN_FRACTION,
    feather: float = 0.0,
) -> int:
    # a Gaussian feather reaches ~3 radii; the crop must hold the whole band
    return max(int(min_margin), round(fraction * max(size)), math.ceil(3 * feather))


def plan_crop(
    box: BoundingBox,
    size: Tuple[int, int],
    *,
    min_margin: int = MIN_MARGIN_PX,
    fraction: float = MARGIN_FRACTION,
    feather: float = 0.0,
) -> CropRect:
    """Grow the region box by a context margin and clamp it to the image."""
    width, height = size
    margin = crop_margin(size, min_margin, fraction, feather)

    left = max(0, box.min_x - margin)
    top = max(0, box.min_y - margin)
    right = min(width - 1, box.max_x + margin)
    bottom = min(height - 1, box.max_y + margin)

    return CropRect(left=left, top=top, width=right - left + 1, height=bottom - top + 1)
