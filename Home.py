import sys
from pathlib import Path

import streamlit as st


# Ensure src is importable when running `streamlit run Home.py`
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from magic_canvas.config import configure_logging, load_settings
from magic_canvas.genai_client import has_api_key


settings = load_settings()
configure_logging(settings.log_level)

st.set_page_config(page_title="Magic Canvas", layout="wide")

st.title("Magic Canvas — Masked Retouching")

if not has_api_key(settings):
    st.warning(
        "GOOGLE_API_KEY / GEMINI_API_KEY not found. The app will run in MOCK mode and composite placeholder edits instead of real generations.",
        icon="⚠️",
    )

st.markdown(
    "Use the page in the left sidebar to upload an image, add a mask, and refine it turn by turn."
)

with st.expander("Current settings", expanded=False):
    st.json(settings.model_dump(exclude={"api_key"}))

st.markdown("""
Pages:
- 1) Magic Canvas — masked, conversational edits. Each result becomes the base image of the next turn.
""")

st.info("Tip: white mask pixels are editable, black pixels are protected. Only the largest painted stroke is used.")
