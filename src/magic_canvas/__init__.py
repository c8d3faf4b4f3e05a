from .pipeline import run_masked_edit, arun_masked_edit
from .types import EditRequest, EditResult, MaskMeta, BoundingBox, CropRect
from .errors import ErrorKind, MagicCanvasError
from .config import EditSettings, load_settings
from .genai_client import build_invoker

__all__ = [
    "run_masked_edit",
    "arun_masked_edit",
    "EditRequest",
    "EditResult",
    "MaskMeta",
    "BoundingBox",
    "CropRect",
    "ErrorKind",
    "MagicCanvasError",
    "EditSettings",
    "load_settings",
    "build_invoker",
]
