from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class BoundingBox(BaseModel):
    """Inclusive box in base-image pixel coordinates."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"Inverted bounding box: {self}")
        if self.min_x < 0 or self.min_y < 0:
            raise ValueError(f"Negative bounding box origin: {self}")
        return self

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1


class CropRect(BaseModel):
    left: int = Field(ge=0)
    top: int = Field(ge=0)
    width: int = Field(ge=1)
    height: int = Field(ge=1)

    @property
    def box(self) -> Tuple[int, int, int, int]:
        # PIL crop box: right/bottom exclusive
        return (self.left, self.top, self.left + self.width, self.top + self.height)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def fits(self, size: Tuple[int, int]) -> bool:
        w, h = size
        return self.left + self.width <= w and self.top + self.height <= h


class MaskMeta(BaseModel):
    invert: bool = False
    feather_radius: float = Field(default=0.0, ge=0)


class EditRequest(BaseModel):
    base_image: bytes
    base_format: str = "image/png"
    instruction_text: str
    mask: Optional[bytes] = None
    mask_meta: MaskMeta = Field(default_factory=MaskMeta)

    @field_validator("instruction_text")
    @classmethod
    def _strip_instruction(cls, v: str) -> str:
        return (v or "").strip()


class EditResult(BaseModel):
    image: bytes
    mime_type: Literal["image/png"] = "image/png"
    size: Tuple[int, int]
    crop: Optional[CropRect] = None
    # keep a few details for the caller's history/debug view
    metadata: Dict[str, Any] = {}


# Remote response parts, decoded into a closed set of variants.
class ImagePart(BaseModel):
    kind: Literal["image"] = "image"
    data: bytes
    mime_type: str = "image/png"


class TextPart(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class NoUsablePart(BaseModel):
    kind: Literal["none"] = "none"


ResponsePart = Annotated[
    Union[ImagePart, TextPart, NoUsablePart], Field(discriminator="kind")
]
