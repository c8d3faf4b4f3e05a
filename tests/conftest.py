"""
Shared fixtures for the magic_canvas tests.

The remote image model is never called: tests use in-memory invokers that
record their calls and answer with a canned image or a scripted failure.
"""

import io
from typing import List, Optional, Tuple

import pytest
from PIL import Image, ImageDraw

from magic_canvas.config import EditSettings
from magic_canvas.types import ImagePart


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def open_png(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def gradient_image(size: Tuple[int, int], mode: str = "RGB") -> Image.Image:
    """Deterministic image where every pixel differs from pure white."""
    w, h = size
    img = Image.new("RGB", size)
    img.putdata([((x * 7) % 200, (y * 5) % 200, ((x + y) * 3) % 200) for y in range(h) for x in range(w)])
    return img.convert(mode)


def rect_mask(size: Tuple[int, int], *rects: Tuple[int, int, int, int]) -> Image.Image:
    """Black L mask with white (editable) inclusive rectangles."""
    mask = Image.new("L", size, 0)
    draw = ImageDraw.Draw(mask)
    for r in rects:
        draw.rectangle(r, fill=255)
    return mask


class FakeInvoker:
    """Answers every edit with `answer` unless a scripted error is queued."""

    def __init__(self, answer: Optional[Image.Image] = None, errors: Optional[List[Exception]] = None):
        self.answer = answer if answer is not None else Image.new("RGB", (64, 64), (255, 255, 255))
        self.errors = list(errors or [])
        self.calls: List[dict] = []

    def edit(self, **kwargs) -> ImagePart:
        self.calls.append(kwargs)
        if self.errors:
            raise self.errors.pop(0)
        return ImagePart(data=png_bytes(self.answer), mime_type="image/png")


class AlwaysFailingInvoker:
    def __init__(self, error_factory):
        self.error_factory = error_factory
        self.calls = 0

    def edit(self, **kwargs) -> ImagePart:
        self.calls += 1
        raise self.error_factory()


@pytest.fixture
def settings():
    """Default settings without any retry delay."""
    return EditSettings(retry_delay_s=0.0)


@pytest.fixture
def white_invoker():
    return FakeInvoker()


@pytest.fixture
def no_sleep():
    slept: List[float] = []
    return slept.append, slept
