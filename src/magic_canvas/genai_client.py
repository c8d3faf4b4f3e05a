from __future__ import annotations

import io
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image

from .config import EditSettings, load_settings
from .errors import RemoteInvalidArgumentError, RemoteNoImageError, RemoteServiceError
from .image_utils import PNG_MIME, draw_placeholder_background, encode_png
from .types import ImagePart, NoUsablePart, ResponsePart, TextPart
from .utils.prompt import build_edit_prompt

logger = logging.getLogger(__name__)


class EditInvoker(Protocol):
    """Anything that can turn (image, optional mask, instruction) into an image."""

    def edit(
        self,
        *,
        image: bytes,
        mime_type: str,
        instruction: str,
        mask: Optional[bytes] = None,
        mask_mime_type: Optional[str] = None,
        invert: bool = False,
        feather: float = 0.0,
        size: Optional[Tuple[int, int]] = None,
    ) -> ImagePart: ...


def has_api_key(settings: Optional[EditSettings] = None) -> bool:
    settings = settings or load_settings()
    return bool(settings.api_key)


def make_client(settings: EditSettings) -> genai.Client:
    if not settings.api_key:
        raise ValueError("No API key configured (GOOGLE_API_KEY / GEMINI_API_KEY)")
    return genai.Client(
        api_key=settings.api_key,
        http_options=types.HttpOptions(timeout=int(settings.timeout_s * 1000)),
    )


def _closest_aspect_ratio_label(width: int, height: int) -> str:
    # Allowed labels per docs
    candidates: Dict[str, float] = {
        "1:1": 1.0,
        "2:3": 2 / 3,
        "3:2": 3 / 2,
        "3:4": 3 / 4,
        "4:3": 4 / 3,
        "4:5": 4 / 5,
        "5:4": 5 / 4,
        "9:16": 9 / 16,
        "16:9": 16 / 9,
        "21:9": 21 / 9,
    }
    r = width / height if height else 1.0
    return min(candidates.keys(), key=lambda k: abs(candidates[k] - r))


def decode_part(part: Any) -> ResponsePart:
    """Map one SDK content part onto ImagePart / TextPart / NoUsablePart."""
    blob = getattr(part, "inline_data", None)
    data = getattr(blob, "data", None) if blob is not None else None
    if data:
        return ImagePart(data=data, mime_type=getattr(blob, "mime_type", None) or PNG_MIME)
    text = getattr(part, "text", None)
    if text:
        return TextPart(text=text)
    return NoUsablePart()


def response_parts(response: Any) -> List[ResponsePart]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    raw_parts = getattr(content, "parts", None) or []
    return [decode_part(p) for p in raw_parts]


def first_image_part(parts: Iterable[ResponsePart]) -> Optional[ImagePart]:
    for part in parts:
        if isinstance(part, ImagePart):
            return part
    return None


def _classify_api_error(exc: genai_errors.APIError) -> Exception:
    status = (getattr(exc, "status", None) or "").upper()
    code = getattr(exc, "code", None)
    if status == "INVALID_ARGUMENT" or code == 400 or "INVALID_ARGUMENT" in str(exc):
        return RemoteInvalidArgumentError(f"Model rejected the request: {exc}")
    return RemoteServiceError(f"Model call failed ({code} {status}): {exc}")


class GeminiEditInvoker:
    """Masked edit through `models.generate_content` on an injected client.

    One call per `edit()`; retries are the caller's decision. SDK argument
    errors become RemoteInvalidArgumentError, other API errors become
    RemoteServiceError, and a response without inline image bytes becomes
    RemoteNoImageError. Transport exceptions outside the SDK's error types are
    not caught.
    """

    def __init__(self, client: genai.Client, settings: EditSettings):
        self._client = client
        self._settings = settings

    def _config(self, size: Optional[Tuple[int, int]]) -> types.GenerateContentConfig:
        image_config = None
        if size:
            image_config = types.ImageConfig(aspect_ratio=_closest_aspect_ratio_label(*size))
        return types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            temperature=self._settings.temperature,
            image_config=image_config,
        )

    def edit(
        self,
        *,
        image: bytes,
        mime_type: str,
        instruction: str,
        mask: Optional[bytes] = None,
        mask_mime_type: Optional[str] = None,
        invert: bool = False,
        feather: float = 0.0,
        size: Optional[Tuple[int, int]] = None,
    ) -> ImagePart:
        prompt = build_edit_prompt(
            instruction, has_mask=mask is not None, invert=invert, feather=feather
        )
        parts = [
            types.Part.from_text(text=prompt),
            types.Part.from_bytes(data=image, mime_type=mime_type or PNG_MIME),
        ]
        if mask is not None:
            parts.append(types.Part.from_bytes(data=mask, mime_type=mask_mime_type or PNG_MIME))

        try:
            resp = self._client.models.generate_content(
                model=self._settings.model,
                contents=[types.Content(role="user", parts=parts)],
                config=self._config(size),
            )
        except genai_errors.APIError as exc:
            raise _classify_api_error(exc) from exc

        decoded = response_parts(resp)
        found = first_image_part(decoded)
        if found is None:
            texts = [p.text for p in decoded if isinstance(p, TextPart)]
            logger.warning("Model returned no image (%d parts, text=%r)", len(decoded), " ".join(texts)[:200])
            raise RemoteNoImageError("No image generated")
        return found


class MockEditInvoker:
    """Offline stand-in used when no API key is configured."""

    def __init__(self, text: str = "MOCK EDIT"):
        self.text = text
        self.calls = 0

    def edit(
        self,
        *,
        image: bytes,
        mime_type: str,
        instruction: str,
        mask: Optional[bytes] = None,
        mask_mime_type: Optional[str] = None,
        invert: bool = False,
        feather: float = 0.0,
        size: Optional[Tuple[int, int]] = None,
    ) -> ImagePart:
        self.calls += 1
        if size is None:
            with Image.open(io.BytesIO(image)) as src:
                size = src.size
        placeholder = draw_placeholder_background(size, text=self.text)
        return ImagePart(data=encode_png(placeholder), mime_type=PNG_MIME)


def build_invoker(settings: EditSettings) -> EditInvoker:
    if settings.api_key:
        return GeminiEditInvoker(make_client(settings), settings)
    logger.warning("No API key configured; edits will return placeholder images")
    return MockEditInvoker()
