import io
import sys
import uuid
from pathlib import Path

import streamlit as st

# Ensure src is importable
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from magic_canvas.config import load_settings
from magic_canvas.errors import MagicCanvasError
from magic_canvas.genai_client import build_invoker
from magic_canvas.image_utils import encode_png, load_image
from magic_canvas.pipeline import run_masked_edit
from magic_canvas.types import EditRequest, MaskMeta
from magic_canvas.utils.saver import save_edit_run


st.set_page_config(page_title="1) Magic Canvas", layout="wide")
st.title("1) Magic Canvas — Paint, Prompt, Refine")


@st.cache_resource
def _invoker_and_settings():
    settings = load_settings()
    return build_invoker(settings), settings


invoker, settings = _invoker_and_settings()

state = st.session_state
state.setdefault("session_id", uuid.uuid4().hex[:12])
state.setdefault("versions", [])  # list of (png/jpeg bytes, mime, label)

st.sidebar.header("Source image")
upload = st.sidebar.file_uploader("Upload JPG/PNG", type=["png", "jpg", "jpeg", "webp"])
url = st.sidebar.text_input("...or image URL", value="")
if st.sidebar.button("Start new thread"):
    if upload is not None:
        state.versions = [(upload.getvalue(), upload.type or "image/png", "original")]
    elif url:
        state.versions = [(encode_png(load_image(url)), "image/png", "original")]
    state.session_id = uuid.uuid4().hex[:12]

st.sidebar.header("Mask")
mask_file = st.sidebar.file_uploader("Mask PNG (white = editable)", type=["png"])
feather = st.sidebar.slider("Feather (px)", min_value=0, max_value=40, value=8)
invert = st.sidebar.checkbox("Invert mask", value=False)
save_runs = st.sidebar.checkbox("Save each turn to data/canvas_runs", value=True)

if not state.versions:
    st.info("Upload an image (or paste a URL) and click 'Start new thread'.")
else:
    latest_bytes, latest_mime, latest_label = state.versions[-1]
    cols = st.columns([1, 1])
    with cols[0]:
        st.subheader("Current image")
        st.image(io.BytesIO(latest_bytes), caption=latest_label, use_container_width=True)
        if mask_file is not None:
            st.image(mask_file, caption="Mask", use_container_width=True)

    with cols[1]:
        st.subheader("Edit")
        text = st.text_area("What should change?", value="")
        if st.button("Apply edit", type="primary"):
            request = EditRequest(
                base_image=latest_bytes,
                base_format=latest_mime,
                instruction_text=text,
                mask=mask_file.getvalue() if mask_file is not None else None,
                mask_meta=MaskMeta(invert=invert, feather_radius=float(feather)),
            )
            try:
                with st.spinner("Editing..."):
                    result = run_masked_edit(request, invoker, settings)
            except MagicCanvasError as exc:
                st.error(exc.user_message)
            else:
                turn = len(state.versions)
                state.versions.append((result.image, result.mime_type, f"turn {turn}: {request.instruction_text[:40]}"))
                if save_runs:
                    saved = save_edit_run(
                        session=state.session_id,
                        request=request,
                        result=result,
                        params={"model": settings.model, "turn": turn},
                    )
                    result.metadata["saved_dir"] = str(saved)
                st.image(io.BytesIO(result.image), caption="Result", use_container_width=True)
                with st.expander("Details"):
                    st.json(result.metadata)

    if len(state.versions) > 1:
        st.subheader("History")
        hist_cols = st.columns(min(4, len(state.versions)))
        for i, (data, _mime, label) in enumerate(state.versions[-4:]):
            with hist_cols[i % len(hist_cols)]:
                st.image(io.BytesIO(data), caption=label, use_container_width=True)
        if st.button("Undo last turn"):
            state.versions.pop()
            st.rerun()
