from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from PIL import Image

from .compositor import composite_edit
from .config import EditSettings
from .crop import plan_crop
from .errors import EmptyMaskError, MalformedInputError, RemoteEditError, RemoteNoImageError, should_retry
from .genai_client import EditInvoker
from .image_utils import PNG_MIME, decode_image, encode_png, has_alpha, normalize_for_upload, prepare_mask
from .region import find_edit_region, has_painted_pixels
from .types import EditRequest, EditResult, ImagePart

logger = logging.getLogger(__name__)


def invoke_with_retry(
    invoker: EditInvoker,
    settings: EditSettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
    **payload,
) -> ImagePart:
    """Call the invoker, retrying only the error kinds `should_retry` allows."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return invoker.edit(**payload)
        except RemoteEditError as exc:
            if attempt >= settings.max_attempts or not should_retry(exc.kind):
                raise
            logger.warning(
                "Remote edit attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                settings.max_attempts,
                exc.kind,
                settings.retry_delay_s,
            )
            sleep(settings.retry_delay_s)


def _decode_answer(answer: ImagePart) -> Image.Image:
    try:
        return decode_image(answer.data, answer.mime_type, what="model output")
    except MalformedInputError as exc:
        raise RemoteNoImageError(f"Model output is not a readable image: {exc.detail}") from exc


def _match_layout(img: Image.Image, like: Image.Image) -> Image.Image:
    # keep an alpha channel only when the caller's image had one
    alpha = has_alpha(like)
    if like.mode.startswith("L"):
        return img.convert("LA" if alpha else "L")
    return img if alpha else img.convert("RGB")


def run_masked_edit(
    request: EditRequest,
    invoker: EditInvoker,
    settings: Optional[EditSettings] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> EditResult:
    """Run one masked (or whole-frame) edit and return a PNG the size of the input.

    With a mask: the largest painted region is found, grown by a margin and
    clamped, and only that crop (plus the matching mask crop) is sent to the
    model. The answer is composited back so nothing outside the feathered mask
    changes. Without a mask the whole image is sent and the answer is only
    resized to the input dimensions.
    """
    settings = settings or EditSettings()
    instruction = request.instruction_text
    if not instruction:
        raise MalformedInputError(
            "Empty edit instruction", user_message="Describe the edit you want to make."
        )

    base = decode_image(request.base_image, request.base_format, what="base image")
    size = base.size
    meta = request.mask_meta

    if request.mask is None:
        logger.info("Whole-frame edit on %dx%d image", *size)
        data, mime, sent_size = normalize_for_upload(
            base, max_side=settings.upload_max_side, max_bytes=settings.upload_max_bytes
        )
        answer = invoke_with_retry(
            invoker,
            settings,
            sleep=sleep,
            image=data,
            mime_type=mime,
            instruction=instruction,
            size=sent_size,
        )
        edited = _decode_answer(answer)
        final = composite_edit(base, edited)
        return EditResult(
            image=encode_png(_match_layout(final, base)),
            mime_type=PNG_MIME,
            size=size,
            metadata={"path": "whole_frame"},
        )

    raw_mask = decode_image(request.mask, PNG_MIME, what="mask")
    # an unpainted mask stays an error even when inverted
    if not has_painted_pixels(raw_mask, settings.mask_threshold):
        raise EmptyMaskError("Mask has no painted pixels above threshold")

    # canonical from here on: white = editable
    native = prepare_mask(raw_mask, raw_mask.size, invert=meta.invert)
    mask = prepare_mask(native, size)

    box = find_edit_region(
        native,
        size,
        threshold=settings.mask_threshold,
        working_side=settings.region_side,
    )
    if box is None:
        raise EmptyMaskError("Mask leaves no editable region above threshold")

    crop = plan_crop(
        box,
        size,
        min_margin=settings.min_margin_px,
        fraction=settings.margin_fraction,
        feather=meta.feather_radius,
    )
    logger.info("Masked edit on %dx%d image: region=%s crop=%s", size[0], size[1], box, crop)

    base_crop = base.crop(crop.box)
    mask_crop = mask.crop(crop.box)
    data, mime, sent_size = normalize_for_upload(
        base_crop, max_side=settings.upload_max_side, max_bytes=settings.upload_max_bytes
    )
    if mask_crop.size != sent_size:
        mask_crop = mask_crop.resize(sent_size, Image.BILINEAR)
    mask_data = encode_png(mask_crop)

    answer = invoke_with_retry(
        invoker,
        settings,
        sleep=sleep,
        image=data,
        mime_type=mime,
        instruction=instruction,
        mask=mask_data,
        mask_mime_type=PNG_MIME,
        invert=meta.invert,
        feather=meta.feather_radius,
        size=sent_size,
    )
    edited = _decode_answer(answer)

    final = composite_edit(
        base,
        edited,
        mask=mask,
        crop=crop,
        # inversion was already applied to `mask`
        mask_meta=meta.model_copy(update={"invert": False}),
    )
    logger.info("Edit composited, output %dx%d", *final.size)
    return EditResult(
        image=encode_png(_match_layout(final, base)),
        mime_type=PNG_MIME,
        size=size,
        crop=crop,
        metadata={
            "path": "masked",
            "region": box.model_dump(),
            "invert": meta.invert,
            "feather": meta.feather_radius,
            "sent_size": list(sent_size),
        },
    )


async def arun_masked_edit(
    request: EditRequest,
    invoker: EditInvoker,
    settings: Optional[EditSettings] = None,
) -> EditResult:
    """Event-loop friendly wrapper: the whole pipeline runs in a worker thread."""
    return await asyncio.to_thread(run_masked_edit, request, invoker, settings)
