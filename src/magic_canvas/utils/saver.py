from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..types import EditRequest, EditResult


RUNS_ROOT = Path("data/canvas_runs")


def _unique_run_dir(base: Path) -> Path:
    """Return a unique directory path under `base` using timestamp and index suffix.

    Never overwrites: if the directory exists, append _2, _3, ...
    """
    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S-%f")
    run_dir = base / ts
    if not run_dir.exists():
        return run_dir
    idx = 2
    while True:
        candidate = base / f"{ts}_{idx}"
        if not candidate.exists():
            return candidate
        idx += 1


def save_edit_run(
    *,
    session: str,
    request: EditRequest,
    result: EditResult,
    params: Dict[str, Any] | None = None,
    base_dir: Optional[Path | str] = None,
) -> Path:
    """Persist the images and metadata of one canvas turn.

    Layout:
    data/canvas_runs/<session>/<timestamp>/
      - base.png|jpg (input as received)
      - mask.png (optional, as received)
      - final.png
      - meta.json

    Returns the directory path created.
    """
    params = dict(params or {})
    root = Path(base_dir) if base_dir is not None else RUNS_ROOT
    session_dir = root / session
    session_dir.mkdir(parents=True, exist_ok=True)
    run_dir = _unique_run_dir(session_dir)
    run_dir.mkdir(parents=True, exist_ok=True)

    base_ext = "jpg" if "jpeg" in request.base_format.lower() else "png"
    base_path = run_dir / f"base.{base_ext}"
    mask_path = run_dir / "mask.png"
    final_path = run_dir / "final.png"

    base_path.write_bytes(request.base_image)
    final_path.write_bytes(result.image)
    has_mask = request.mask is not None
    if has_mask:
        mask_path.write_bytes(request.mask)  # type: ignore[arg-type]

    meta = {
        "session": session,
        "timestamp": datetime.now().isoformat(),
        "instruction": request.instruction_text,
        "base_format": request.base_format,
        "mask_meta": request.mask_meta.model_dump(),
        "size": list(result.size),
        "crop": result.crop.model_dump() if result.crop else None,
        "paths": {
            "base": base_path.name,
            "mask": mask_path.name if has_mask else None,
            "final": final_path.name,
        },
        "result": result.metadata,
        "parameters": params,
    }

    (run_dir / "meta.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")
    return run_dir
