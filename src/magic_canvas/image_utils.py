from __future__ import annotations

import io
import logging
from typing import Optional, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from .errors import MalformedInputError

logger = logging.getLogger(__name__)

PNG_MIME = "image/png"
JPEG_MIME = "image/jpeg"

# (max side, JPEG quality) steps tried when a PNG upload is too heavy
_JPEG_FALLBACK_STEPS: Tuple[Tuple[int, int], ...] = (
    (1024, 82),
    (960, 78),
    (896, 74),
    (768, 70),
    (640, 62),
)


def load_image(path_or_url: str, timeout: int = 20) -> Image.Image:
    if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
        resp = requests.get(path_or_url, timeout=timeout)
        resp.raise_for_status()
        img = Image.open(io.BytesIO(resp.content))
    else:
        img = Image.open(path_or_url)
    return img.convert("RGBA")


def _is_heic(mime_type: Optional[str]) -> bool:
    t = (mime_type or "").lower()
    return "heic" in t or "heif" in t


def decode_image(data: bytes, mime_type: Optional[str] = None, *, what: str = "image") -> Image.Image:
    """Decode upload/storage bytes into a fully loaded PIL image.

    EXIF orientation is applied so the pixel grid matches what the user saw.
    Raises MalformedInputError when the bytes are not a readable raster.
    """
    if not data:
        raise MalformedInputError(f"Empty {what} payload")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        if _is_heic(mime_type):
            raise MalformedInputError(
                f"Cannot decode {what} ({mime_type})",
                user_message="Unsupported image format (HEIC). Please convert to JPG/PNG and retry.",
            ) from exc
        raise MalformedInputError(f"Cannot decode {what}: {exc}") from exc

    img = ImageOps.exif_transpose(img)
    w, h = img.size
    if w < 1 or h < 1:
        raise MalformedInputError(f"{what} has no pixels ({w}x{h})")
    return img


def has_alpha(img: Image.Image) -> bool:
    return "A" in img.getbands() or "transparency" in img.info


def ensure_size(img: Image.Image, size: Tuple[int, int]) -> Image.Image:
    if img.size == size:
        return img
    return img.resize(size, Image.LANCZOS)


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def mask_to_gray(mask: Image.Image) -> Image.Image:
    """Collapse any mask raster to a single L channel (white = editable).

    Transparent pixels count as unpainted, so RGBA strokes exported over a
    clear background are flattened onto black first.
    """
    if mask.mode == "L":
        return mask
    if has_alpha(mask):
        rgba = mask.convert("RGBA")
        black = Image.new("RGBA", rgba.size, (0, 0, 0, 255))
        return Image.alpha_composite(black, rgba).convert("L")
    return mask.convert("L")


def prepare_mask(
    mask: Image.Image,
    size: Tuple[int, int],
    invert: bool = False,
) -> Image.Image:
    """Return the canonical L mask at `size`: white = editable, black = protected.

    The mask is resampled, never repainted; inversion flips semantics up front so
    downstream steps only deal with one convention.
    """
    gray = mask_to_gray(mask)
    if gray.size != size:
        gray = gray.resize(size, Image.BILINEAR)
    if invert:
        gray = ImageOps.invert(gray)
    return gray


def fit_inside(size: Tuple[int, int], max_side: int) -> Tuple[int, int]:
    w, h = size
    longer = max(w, h)
    if longer <= max_side:
        return size
    scale = max_side / longer
    return (max(1, round(w * scale)), max(1, round(h * scale)))


def normalize_for_upload(
    img: Image.Image,
    *,
    max_side: int = 1024,
    max_bytes: int = 3_500_000,
) -> Tuple[bytes, str, Tuple[int, int]]:
    """Encode an image for the remote model, keeping uploads reasonably small.

    Returns (bytes, mime type, pixel size). PNG is preferred; if it is too heavy
    we step down through JPEG side/quality pairs and keep the last attempt.
    """
    target = fit_inside(img.size, max_side)
    work = ensure_size(img, target)
    if work.mode not in ("RGB", "RGBA"):
        work = work.convert("RGBA" if has_alpha(work) else "RGB")
    data = encode_png(work)
    if len(data) <= max_bytes:
        return data, PNG_MIME, work.size

    logger.info("PNG upload is %d bytes, falling back to JPEG", len(data))
    rgb = work.convert("RGB")
    out_size = rgb.size
    for side, quality in _JPEG_FALLBACK_STEPS:
        step = ensure_size(rgb, fit_inside(rgb.size, min(side, max_side)))
        buf = io.BytesIO()
        step.save(buf, format="JPEG", quality=quality, optimize=True)
        data, out_size = buf.getvalue(), step.size
        if len(data) <= max_bytes:
            break
    return data, JPEG_MIME, out_size


def draw_placeholder_background(size: Tuple[int, int], text: str = "NO API KEY - MOCK") -> Image.Image:
    w, h = size
    bg = Image.new("RGBA", (w, h), (240, 240, 240, 255))
    draw = ImageDraw.Draw(bg)
    # Simple center text
    font = ImageFont.load_default()
    tw, th = draw.textlength(text, font=font), 12
    draw.text(((w - tw) / 2, (h - th) / 2), text, fill=(120, 120, 120, 255), font=font)
    return bg
