from __future__ import annotations

import logging
from typing import Optional, Tuple

from PIL import Image, ImageChops, ImageFilter, ImageOps

from .errors import CompositingError
from .image_utils import ensure_size, mask_to_gray
from .types import CropRect, MaskMeta

logger = logging.getLogger(__name__)


def build_alpha_layer(
    mask: Image.Image,
    size: Tuple[int, int],
    *,
    feather: float = 0.0,
    invert: bool = False,
) -> Image.Image:
    """Full-frame L layer: 255 = model edit shows, 0 = original kept.

    Feathering blurs the boundary in base-image pixel space, so the radius means
    the same thing whatever resolution the mask was painted at.
    """
    alpha = mask_to_gray(mask)
    if alpha.size != size:
        alpha = alpha.resize(size, Image.BILINEAR)
    if feather > 0:
        alpha = alpha.filter(ImageFilter.GaussianBlur(radius=feather))
    if invert:
        alpha = ImageOps.invert(alpha)
    return alpha


def _opaque(img: Image.Image) -> Image.Image:
    out = img.convert("RGBA")
    out.putalpha(255)
    return out


def _edited_layer(
    edited: Image.Image,
    size: Tuple[int, int],
    crop: Optional[CropRect],
) -> Image.Image:
    edited = edited.convert("RGBA")
    if crop is None:
        return ensure_size(edited, size)

    if not crop.fits(size):
        raise CompositingError(f"Crop {crop} does not fit a {size[0]}x{size[1]} frame")
    # the model is free to answer at another size; snap back to the crop first
    patch = ensure_size(edited, crop.size)
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    layer.paste(patch, (crop.left, crop.top))
    return layer


def composite_edit(
    base: Image.Image,
    edited: Image.Image,
    *,
    mask: Optional[Image.Image] = None,
    crop: Optional[CropRect] = None,
    mask_meta: Optional[MaskMeta] = None,
) -> Image.Image:
    """Put the model's output back into the base frame, confined to the mask.

    Without a mask the output is only stretched to the base size and made
    opaque. With a mask, the edited layer (placed at `crop` when the request
    was cropped) has its alpha multiplied by the feathered mask and is laid
    over the opaque base, so pixels with zero mask weight keep their original
    values no matter what the model did to them.

    Always returns RGBA at `base.size`.
    """
    size = base.size

    if mask is None:
        return _opaque(ensure_size(edited.convert("RGBA"), size))

    meta = mask_meta or MaskMeta()
    alpha = build_alpha_layer(mask, size, feather=meta.feather_radius, invert=meta.invert)

    layer = _edited_layer(edited, size, crop)
    layer.putalpha(ImageChops.multiply(layer.getchannel("A"), alpha))

    out = _opaque(base)
    out.alpha_composite(layer)
    logger.debug("Composited edit into %dx%d frame (crop=%s)", size[0], size[1], crop)
    return out
