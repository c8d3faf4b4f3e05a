from __future__ import annotations

import logging
import math
from collections import deque
from typing import List, Optional, Tuple

from PIL import Image

from .config import MASK_ON_THRESHOLD, REGION_WORKING_SIDE
from .image_utils import mask_to_gray
from .types import BoundingBox

logger = logging.getLogger(__name__)


class _Component:
    __slots__ = ("area", "min_x", "min_y", "max_x", "max_y")

    def __init__(self, x: int, y: int):
        self.area = 0
        self.min_x = self.max_x = x
        self.min_y = self.max_y = y

    def add(self, x: int, y: int) -> None:
        self.area += 1
        if x < self.min_x:
            self.min_x = x
        elif x > self.max_x:
            self.max_x = x
        if y < self.min_y:
            self.min_y = y
        elif y > self.max_y:
            self.max_y = y


def has_painted_pixels(mask: Image.Image, threshold: int = MASK_ON_THRESHOLD) -> bool:
    """True when any pixel of the mask as painted (before inversion) reaches `threshold`."""
    return mask_to_gray(mask).getextrema()[1] >= threshold


def _binary_grid(mask: Image.Image, threshold: int) -> Tuple[bytearray, int, int]:
    w, h = mask.size
    on = mask.point(lambda v: 1 if v >= threshold else 0)
    return bytearray(on.tobytes()), w, h


def _largest_component(grid: bytearray, w: int, h: int) -> Optional[_Component]:
    """4-connected BFS over a flat y*w+x grid; keeps only the biggest component."""
    visited = bytearray(w * h)
    best: Optional[_Component] = None
    for start in range(w * h):
        if not grid[start] or visited[start]:
            continue
        sy, sx = divmod(start, w)
        comp = _Component(sx, sy)
        visited[start] = 1
        queue = deque([start])
        while queue:
            idx = queue.popleft()
            y, x = divmod(idx, w)
            comp.add(x, y)
            neighbours: List[int] = []
            if x > 0:
                neighbours.append(idx - 1)
            if x < w - 1:
                neighbours.append(idx + 1)
            if y > 0:
                neighbours.append(idx - w)
            if y < h - 1:
                neighbours.append(idx + w)
            for n in neighbours:
                if grid[n] and not visited[n]:
                    visited[n] = 1
                    queue.append(n)
        if best is None or comp.area > best.area:
            best = comp
    return best


def find_edit_region(
    mask: Image.Image,
    size: Tuple[int, int],
    *,
    threshold: int = MASK_ON_THRESHOLD,
    working_side: int = REGION_WORKING_SIDE,
) -> Optional[BoundingBox]:
    """Bounding box of the largest painted region, in base-image pixels.

    The search runs on a box-downscaled copy of the mask (longest side capped at
    `working_side`); the winning extent is mapped back with floor/ceil so the box
    only ever grows. Stray strokes smaller than the main one are ignored.
    Returns None when nothing is painted above `threshold`.
    """
    width, height = size
    # searched at the mask's own resolution; only the box is mapped to `size`
    small = mask_to_gray(mask).copy()
    # thumbnail keeps aspect ratio and never upscales
    small.thumbnail((working_side, working_side), Image.BOX)
    grid, sw, sh = _binary_grid(small, threshold)

    comp = _largest_component(grid, sw, sh)
    if comp is None or comp.area <= 0:
        logger.debug("No painted pixels at or above threshold %d", threshold)
        return None

    sx = width / sw
    sy = height / sh
    box = BoundingBox(
        min_x=max(0, math.floor(comp.min_x * sx)),
        min_y=max(0, math.floor(comp.min_y * sy)),
        max_x=min(width - 1, math.ceil((comp.max_x + 1) * sx) - 1),
        max_y=min(height - 1, math.ceil((comp.max_y + 1) * sy) - 1),
    )
    logger.debug(
        "Largest painted region: area=%d cells on %dx%d grid -> %s",
        comp.area,
        sw,
        sh,
        box,
    )
    return box
