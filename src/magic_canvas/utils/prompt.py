from __future__ import annotations

import re

_WS_RE = re.compile(r"[ \t]+")

BASE_RULES = (
    "You are an expert photo retoucher and image editor.\n"
    "\n"
    "TASK: Edit the image according to the user's request.\n"
    "\n"
    "CONSTRAINTS:\n"
    "- Preserve identity, background, and lighting as much as possible.\n"
    "- Do not add text or watermarks.\n"
    "- Output a single PNG image."
)


def clean_instruction(text: str) -> str:
    """Trim and collapse runs of spaces; line breaks are kept."""
    lines = [_WS_RE.sub(" ", line).strip() for line in (text or "").splitlines()]
    return "\n".join(line for line in lines if line).strip()


def mask_rules(*, has_mask: bool, invert: bool = False, feather: float = 0.0) -> str:
    if not has_mask:
        return (
            "MASKING:\n"
            "- No mask provided. Apply the edit to the whole image, while preserving identity/background."
        )

    # The mask we send is already canonical (white = editable) even when the
    # user asked for inversion; the model only needs to know what was selected.
    if invert:
        mode = "INVERTED SELECTION: the user protected the area they painted; the white area is everything else."
    else:
        mode = "DEFAULT MODE: the white area is exactly what the user painted; edit only inside it."
    if feather > 0:
        edges = f"Mask edges are feathered by ~{round(feather)}px. Blend seamlessly at the boundary."
    else:
        edges = "Mask edges are crisp."
    return (
        "MASKING:\n"
        "- A mask image is provided as the SECOND image.\n"
        "- White pixels = editable, black pixels = protected.\n"
        f"- {mode}\n"
        f"- {edges}\n"
        "- Keep all protected pixels unchanged (pixel-perfect if possible)."
    )


def build_edit_prompt(
    instruction: str,
    *,
    has_mask: bool,
    invert: bool = False,
    feather: float = 0.0,
) -> str:
    return (
        f"{BASE_RULES}\n\n"
        f"{mask_rules(has_mask=has_mask, invert=invert, feather=feather)}\n\n"
        f"USER REQUEST:\n{clean_instruction(instruction)}\n"
    )
