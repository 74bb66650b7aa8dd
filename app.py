from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path

import streamlit as st

from menucut.batch_runner import BatchOrchestrator, ScanSettings
from menucut.manifest import load_manifest, manifest_to_json, render_manifest, save_manifest
from menucut.models import ProcessingStatus
from menucut.paths import make_export_paths
from menucut.pixels import OpenCvPixelBackend

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# -----------------------------
# Utils
# -----------------------------

def _progress_callback(progress_bar, status_box):
    def cb(item, message: str) -> None:
        progress_bar.progress(min(item.progress / 100.0, 1.0))
        status_box.write(message)
    return cb


def _save_upload(upload) -> Path:
    """Streamlit uploads live in memory; OpenCV needs a file on disk."""
    tmp_dir = Path(tempfile.gettempdir()) / "menucut"
    tmp_dir.mkdir(parents=True, exist_ok=True)
    out = tmp_dir / upload.name
    out.write_bytes(upload.getvalue())
    return out


_STATUS_ICON = {
    ProcessingStatus.PENDING: "⏳",
    ProcessingStatus.PROCESSING: "🔄",
    ProcessingStatus.COMPLETED: "✅",
    ProcessingStatus.ERROR: "⚠️",
}


# -----------------------------
# Page setup
# -----------------------------

st.set_page_config(page_title="Menu Cut Batch", layout="wide")

st.title("Menu Cut Batch")
st.caption("Find the menu overlay in each video and export the footage to keep (local).")


# -----------------------------
# Sidebar
# -----------------------------

with st.sidebar:
    st.header("Settings")

    st.subheader("1. Define target")
    reference_upload = st.file_uploader("Reference mask (panel painted white)", type=["png", "jpg", "jpeg"])
    if reference_upload is not None:
        st.image(reference_upload, use_container_width=True)

    st.subheader("2. Add footage")
    input_dir_str = st.text_input("Input folder (videos)", value=str(Path.home()))
    out_dir_str = st.text_input("Export folder", value=str(Path.cwd() / "exports"))

    st.divider()

    advanced = st.toggle("Advanced settings", value=False)

    playback_rate = 0.5
    sample_interval = 0.1
    process_width = 640
    debug_scan = False

    if advanced:
        st.subheader("📽️ Sampling")
        playback_rate = st.number_input("Playback rate (x)", 0.25, 8.0, 0.5, 0.25)
        sample_interval = st.number_input("Min sample spacing (sec)", 0.02, 2.0, 0.1, 0.02)
        process_width = st.selectbox("Processing width", [320, 480, 640, 960], index=2)
        debug_scan = st.toggle("Log per-frame ratios", value=False)

    run_btn = st.button("Run batch analysis", type="primary", disabled=reference_upload is None)


# -----------------------------
# Run
# -----------------------------

if run_btn and reference_upload is not None:
    settings = ScanSettings(
        playback_rate=float(playback_rate),
        sample_interval_sec=float(sample_interval),
        process_width=int(process_width),
        debug_scan=bool(debug_scan),
    )

    st.subheader("Progress")
    progress_bar = st.progress(0.0)
    status_box = st.empty()

    orchestrator = BatchOrchestrator(
        reference_image_path=_save_upload(reference_upload),
        pixel_backend=OpenCvPixelBackend(),
        settings=settings,
        progress_callback=_progress_callback(progress_bar, status_box),
    )
    orchestrator.register_folder(Path(input_dir_str))

    items = asyncio.run(orchestrator.run_queue())

    export = make_export_paths(Path(out_dir_str))
    manifest_path = save_manifest(orchestrator.manifest(), export.manifest_path())

    st.success(f"Batch finished: {manifest_path.name}")
    st.session_state["last_items"] = items
    st.session_state["last_manifest"] = str(manifest_path)


# -----------------------------
# Results
# -----------------------------

st.divider()
st.subheader("Processing queue")

items = st.session_state.get("last_items", [])
if not items:
    st.info("Queue is empty. Pick a reference mask and a folder, then run the batch.")
else:
    for item in items:
        icon = _STATUS_ICON.get(item.status, "")
        with st.expander(f"{icon} {item.name} | {item.source_duration:.1f}s | {len(item.keep_ranges)} cuts"):
            if item.status == ProcessingStatus.ERROR:
                st.error(item.error or "Scan failed.")
                continue
            st.write("Detections:")
            for d in item.detections:
                st.write(f"- {d.start:.2f}s → {d.end:.2f}s")
            st.write("Keep:")
            for r in item.keep_ranges:
                st.write(f"- {r.start:.2f}s → {r.end:.2f}s")

manifest_str = st.session_state.get("last_manifest")
if manifest_str:
    manifest_path = Path(manifest_str)
    records = load_manifest(manifest_path)

    col_a, col_b = st.columns(2)
    with col_a:
        st.download_button(
            "Download manifest",
            data=manifest_to_json(records),
            file_name=manifest_path.name,
            mime="application/json",
        )
    with col_b:
        if st.button("Render clean videos"):
            export = make_export_paths(manifest_path.parent)
            with st.spinner("Rendering with ffmpeg..."):
                outputs = render_manifest(records, Path(input_dir_str), export)
            done = [p for p in outputs if p is not None]
            st.success(f"Rendered {len(done)}/{len(outputs)} video(s) into {export.out_dir}")
