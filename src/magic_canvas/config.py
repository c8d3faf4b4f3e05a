from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"

# Mask intensity (0-255) at or above which a pixel counts as painted.
# Lower values are antialiasing / feather residue from the painting surface.
MASK_ON_THRESHOLD = 16
# Longest side of the grid the region search runs on.
REGION_WORKING_SIDE = 256
# Context kept around the painted region when cropping for the model.
MIN_MARGIN_PX = 24
MARGIN_FRACTION = 0.03

_ENV_PREFIX = "MAGIC_CANVAS_"


class EditSettings(BaseModel):
    api_key: Optional[str] = None
    model: str = DEFAULT_IMAGE_MODEL
    timeout_s: float = Field(default=90.0, gt=0)
    retry_delay_s: float = Field(default=0.6, ge=0)
    max_attempts: int = Field(default=2, ge=1)
    temperature: float = 0.1
    mask_threshold: int = Field(default=MASK_ON_THRESHOLD, ge=1, le=255)
    region_side: int = Field(default=REGION_WORKING_SIDE, ge=8)
    min_margin_px: int = Field(default=MIN_MARGIN_PX, ge=0)
    margin_fraction: float = Field(default=MARGIN_FRACTION, ge=0)
    upload_max_side: int = Field(default=1024, ge=64)
    upload_max_bytes: int = Field(default=3_500_000, ge=1)
    log_level: str = "INFO"


def _api_key(env: Mapping[str, str]) -> Optional[str]:
    return env.get("GOOGLE_API_KEY") or env.get("GEMINI_API_KEY") or None


def load_settings(env: Optional[Mapping[str, str]] = None) -> EditSettings:
    """Build settings from the environment (and a local .env when reading os.environ)."""
    if env is None:
        load_dotenv()
        env = os.environ

    fields = {
        "model": "MODEL",
        "timeout_s": "TIMEOUT_S",
        "retry_delay_s": "RETRY_DELAY_S",
        "max_attempts": "MAX_ATTEMPTS",
        "temperature": "TEMPERATURE",
        "mask_threshold": "MASK_THRESHOLD",
        "region_side": "REGION_SIDE",
        "min_margin_px": "MIN_MARGIN_PX",
        "margin_fraction": "MARGIN_FRACTION",
        "upload_max_side": "UPLOAD_MAX_SIDE",
        "upload_max_bytes": "UPLOAD_MAX_BYTES",
        "log_level": "LOG_LEVEL",
    }
    values = {
        name: env[_ENV_PREFIX + suffix]
        for name, suffix in fields.items()
        if env.get(_ENV_PREFIX + suffix)
    }
    # pydantic coerces the raw strings
    return EditSettings(api_key=_api_key(env), **values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
