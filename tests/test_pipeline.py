import asyncio

import pytest
from PIL import Image

from magic_canvas.compositor import build_alpha_layer
from magic_canvas.errors import (
    EmptyMaskError,
    ErrorKind,
    MalformedInputError,
    RemoteInvalidArgumentError,
    RemoteNoImageError,
    RemoteServiceError,
)
from magic_canvas.image_utils import prepare_mask
from magic_canvas.pipeline import arun_masked_edit, invoke_with_retry, run_masked_edit
from magic_canvas.types import EditRequest, MaskMeta

from conftest import AlwaysFailingInvoker, FakeInvoker, gradient_image, open_png, png_bytes, rect_mask


def _request(base, mask=None, text="make it white", **meta):
    return EditRequest(
        base_image=png_bytes(base),
        base_format="image/png",
        instruction_text=text,
        mask=png_bytes(mask) if mask is not None else None,
        mask_meta=MaskMeta(**meta),
    )


def test_containment_outside_mask(settings, white_invoker):
    size = (240, 180)
    base = gradient_image(size)
    mask = rect_mask((120, 90), (30, 30, 59, 59))  # painted at half resolution

    result = run_masked_edit(_request(base, mask), white_invoker, settings)
    out = open_png(result.image).convert("RGB")

    canonical = prepare_mask(mask, size)
    base_px, out_px, mask_px = base.load(), out.load(), canonical.load()
    for y in range(size[1]):
        for x in range(size[0]):
            if mask_px[x, y] == 0:
                assert out_px[x, y] == base_px[x, y]
    assert out_px[90, 90] == (255, 255, 255)
    assert len(white_invoker.calls) == 1


def test_containment_with_feather(settings, white_invoker):
    size = (200, 160)
    base = gradient_image(size)
    mask = rect_mask(size, (80, 60, 119, 99))

    result = run_masked_edit(_request(base, mask, feather_radius=6), white_invoker, settings)
    out = open_png(result.image).convert("RGB")

    alpha = build_alpha_layer(mask, size, feather=6)
    base_px, out_px, alpha_px = base.load(), out.load(), alpha.load()
    for y in range(size[1]):
        for x in range(size[0]):
            if alpha_px[x, y] == 0:
                assert out_px[x, y] == base_px[x, y]


def test_only_the_crop_is_sent(settings, white_invoker):
    size = (400, 300)
    base = gradient_image(size)
    mask = rect_mask(size, (100, 100, 149, 139))

    result = run_masked_edit(_request(base, mask), white_invoker, settings)

    call = white_invoker.calls[0]
    sent = open_png(call["image"])
    sent_mask = open_png(call["mask"])
    assert sent.size == (result.crop.width, result.crop.height)
    assert sent_mask.size == sent.size
    assert call["mask_mime_type"] == "image/png"
    assert result.crop.left == 100 - 24 and result.crop.top == 100 - 24
    assert result.metadata["path"] == "masked"


@pytest.mark.parametrize("answer_size", [(1, 1), (33, 17), (512, 512), (1000, 200)])
@pytest.mark.parametrize("with_mask", [True, False])
def test_dimensions_preserved(settings, answer_size, with_mask):
    size = (150, 110)
    base = gradient_image(size)
    mask = rect_mask(size, (20, 20, 60, 60)) if with_mask else None
    invoker = FakeInvoker(answer=Image.new("RGB", answer_size, (255, 255, 255)))

    result = run_masked_edit(_request(base, mask), invoker, settings)
    assert result.size == size
    assert open_png(result.image).size == size
    assert result.mime_type == "image/png"


def test_largest_component_scopes_the_request(settings, white_invoker):
    size = (300, 300)
    base = gradient_image(size)
    mask = rect_mask(size, (20, 20, 99, 99), (250, 250, 259, 259))

    result = run_masked_edit(_request(base, mask), white_invoker, settings)
    out = open_png(result.image).convert("RGB")

    crop = result.crop
    assert crop.left + crop.width <= 250
    # the stray stroke is outside the crop, so it is not edited
    assert out.getpixel((255, 255)) == base.getpixel((255, 255))


def test_empty_mask_is_rejected_without_calling_model(settings, white_invoker):
    base = gradient_image((100, 100))
    mask = Image.new("L", (100, 100), 0)
    with pytest.raises(EmptyMaskError) as info:
        run_masked_edit(_request(base, mask, feather_radius=10), white_invoker, settings)
    assert info.value.kind is ErrorKind.EMPTY_MASK
    assert white_invoker.calls == []


def test_empty_mask_with_invert_is_still_rejected(settings, white_invoker):
    base = gradient_image((100, 100))
    mask = Image.new("L", (100, 100), 0)
    with pytest.raises(EmptyMaskError):
        run_masked_edit(_request(base, mask, invert=True), white_invoker, settings)
    assert white_invoker.calls == []


def test_fully_painted_mask_inverted_leaves_nothing_editable(settings, white_invoker):
    base = gradient_image((100, 100))
    mask = Image.new("L", (100, 100), 255)
    with pytest.raises(EmptyMaskError):
        run_masked_edit(_request(base, mask, invert=True), white_invoker, settings)
    assert white_invoker.calls == []


def test_invert_edits_the_complement(settings):
    size = (128, 64)
    base = gradient_image(size)
    mask = rect_mask(size, (0, 0, 63, 63))  # left half painted

    normal = open_png(run_masked_edit(_request(base, mask), FakeInvoker(), settings).image).convert("RGB")
    inverted = open_png(
        run_masked_edit(_request(base, mask, invert=True), FakeInvoker(), settings).image
    ).convert("RGB")

    left, right = (10, 32), (118, 32)
    assert normal.getpixel(left) == (255, 255, 255)
    assert normal.getpixel(right) == base.getpixel(right)
    assert inverted.getpixel(left) == base.getpixel(left)
    assert inverted.getpixel(right) == (255, 255, 255)


def test_retry_once_on_invalid_argument_then_succeed(settings, no_sleep):
    sleep, slept = no_sleep
    invoker = FakeInvoker(errors=[RemoteInvalidArgumentError("bad payload")])
    base = gradient_image((80, 60))

    result = run_masked_edit(_request(base, rect_mask((80, 60), (10, 10, 30, 30))), invoker, settings, sleep=sleep)

    assert len(invoker.calls) == 2
    assert slept == [settings.retry_delay_s]
    assert result.size == (80, 60)


def test_invalid_argument_every_time_gives_up_after_two_calls(settings, no_sleep):
    sleep, slept = no_sleep
    invoker = AlwaysFailingInvoker(lambda: RemoteInvalidArgumentError("still bad"))
    base = gradient_image((80, 60))

    with pytest.raises(RemoteInvalidArgumentError) as info:
        run_masked_edit(_request(base), invoker, settings, sleep=sleep)
    assert invoker.calls == 2
    assert len(slept) == 1
    assert info.value.http_status == 400


@pytest.mark.parametrize("error_cls", [RemoteNoImageError, RemoteServiceError])
def test_other_remote_failures_are_not_retried(settings, no_sleep, error_cls):
    sleep, slept = no_sleep
    invoker = AlwaysFailingInvoker(lambda: error_cls("nope"))
    with pytest.raises(error_cls):
        run_masked_edit(_request(gradient_image((40, 40))), invoker, settings, sleep=sleep)
    assert invoker.calls == 1
    assert slept == []


def test_unknown_exceptions_propagate_unchanged(settings):
    invoker = AlwaysFailingInvoker(lambda: ConnectionError("reset"))
    with pytest.raises(ConnectionError):
        run_masked_edit(_request(gradient_image((40, 40))), invoker, settings)
    assert invoker.calls == 1


def test_invoke_with_retry_respects_max_attempts(no_sleep):
    from magic_canvas.config import EditSettings

    sleep, slept = no_sleep
    invoker = AlwaysFailingInvoker(lambda: RemoteInvalidArgumentError("bad"))
    with pytest.raises(RemoteInvalidArgumentError):
        invoke_with_retry(invoker, EditSettings(max_attempts=1), sleep=sleep, image=b"", mime_type="image/png", instruction="x")
    assert invoker.calls == 1


def test_no_mask_path_returns_resized_model_output(settings):
    size = (90, 70)
    base = gradient_image(size)
    answer = gradient_image((45, 35)).transpose(Image.FLIP_TOP_BOTTOM)
    invoker = FakeInvoker(answer=answer)

    result = run_masked_edit(_request(base), invoker, settings)

    expected = answer.convert("RGBA").resize(size, Image.LANCZOS)
    expected.putalpha(255)
    assert open_png(result.image).convert("RGB").tobytes() == expected.convert("RGB").tobytes()
    assert "mask" not in invoker.calls[0]
    assert result.crop is None


def test_rgba_input_keeps_alpha_channel_layout(settings, white_invoker):
    base = gradient_image((60, 60), mode="RGBA")
    result = run_masked_edit(_request(base, rect_mask((60, 60), (5, 5, 20, 20))), white_invoker, settings)
    assert open_png(result.image).mode == "RGBA"


def test_rgb_input_gives_rgb_output(settings, white_invoker):
    result = run_masked_edit(_request(gradient_image((60, 60))), white_invoker, settings)
    assert open_png(result.image).mode == "RGB"


@pytest.mark.parametrize("mode", ["L", "LA"])
def test_grayscale_input_keeps_grayscale_layout(settings, white_invoker, mode):
    base = gradient_image((60, 60), mode=mode)
    result = run_masked_edit(_request(base, rect_mask((60, 60), (5, 5, 20, 20))), white_invoker, settings)
    out = open_png(result.image)
    assert out.mode == mode
    assert out.getpixel((10, 10)) in (255, (255, 255))


def test_wide_feather_has_no_step_at_the_crop_edge(settings, white_invoker):
    size = (400, 400)
    base = Image.new("RGB", size, (0, 0, 0))
    mask = rect_mask(size, (100, 100, 299, 299))

    result = run_masked_edit(_request(base, mask, feather_radius=20), white_invoker, settings)
    out = open_png(result.image).convert("L")

    left = result.crop.left
    assert left == 100 - 60
    row = [out.getpixel((x, 200)) for x in range(left - 10, left + 11)]
    assert max(abs(a - b) for a, b in zip(row, row[1:])) <= 2
    assert out.getpixel((left - 1, 200)) == 0
    assert out.getpixel((200, 200)) == 255


def test_jpeg_input_is_accepted(settings, white_invoker):
    import io

    buf = io.BytesIO()
    gradient_image((64, 48)).save(buf, format="JPEG")
    req = EditRequest(base_image=buf.getvalue(), base_format="image/jpeg", instruction_text="brighter")
    result = run_masked_edit(req, white_invoker, settings)
    assert result.size == (64, 48)


def test_blank_instruction_is_malformed(settings, white_invoker):
    with pytest.raises(MalformedInputError):
        run_masked_edit(_request(gradient_image((20, 20)), text="   "), white_invoker, settings)
    assert white_invoker.calls == []


def test_undecodable_base_is_malformed(settings, white_invoker):
    req = EditRequest(base_image=b"not an image", instruction_text="x")
    with pytest.raises(MalformedInputError) as info:
        run_masked_edit(req, white_invoker, settings)
    assert info.value.http_status == 400


def test_undecodable_mask_is_malformed(settings, white_invoker):
    req = EditRequest(base_image=png_bytes(gradient_image((20, 20))), instruction_text="x", mask=b"garbage")
    with pytest.raises(MalformedInputError):
        run_masked_edit(req, white_invoker, settings)
    assert white_invoker.calls == []


def test_unreadable_model_output_is_no_image(settings):
    class GarbageInvoker:
        def edit(self, **kwargs):
            from magic_canvas.types import ImagePart

            return ImagePart(data=b"\x00\x01", mime_type="image/png")

    with pytest.raises(RemoteNoImageError):
        run_masked_edit(_request(gradient_image((20, 20))), GarbageInvoker(), settings)


def test_async_wrapper_runs_pipeline(settings, white_invoker):
    base = gradient_image((50, 40))
    result = asyncio.run(arun_masked_edit(_request(base, rect_mask((50, 40), (5, 5, 25, 25))), white_invoker, settings))
    assert result.size == (50, 40)


def test_negative_feather_is_rejected():
    with pytest.raises(ValueError):
        MaskMeta(feather_radius=-1)
