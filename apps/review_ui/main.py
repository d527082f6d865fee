import io
import os

import pandas as pd
import streamlit as st
from PIL import Image

# --- 1. Page Config ---
st.set_page_config(layout="wide", page_title="Potato Grading Review Console")

from apps.common.clients import build_record_store, build_storage
from apps.common.settings import configure_logging, load_settings
from apps.review_ui.adapters import RecordStoreAdapter
from apps.review_ui.domain import ReviewResult
from services.analytics.aggregate import compare_over_time, confidence_distribution, match_rate, match_series
from services.records.review import ReviewConflict

SETTINGS = load_settings(require_vision=False)
configure_logging(SETTINGS.log_level)

# --- Helper Functions ---
@st.cache_resource
def get_adapter():
    return RecordStoreAdapter(build_record_store(SETTINGS), build_storage(SETTINGS))

def load_image(adapter: RecordStoreAdapter, uri: str):
    # Blob URLs carry no SAS token, so every backend is read server-side.
    data = adapter.load_image_bytes(uri)
    if not data:
        return None
    try:
        return Image.open(io.BytesIO(data)).convert("RGB")
    except Exception as e:
        st.error(f"Failed to load image: {e}")
        return None

# --- Main App ---
adapter = get_adapter()
st.title("🥔 Potato Grading Review Console")

# Sidebar
st.sidebar.header("Controls")
filter_status = st.sidebar.radio("Status Filter", ["PENDING", "COMPLETED", "ALL"], key="status_filter")
batch_filter = st.sidebar.text_input("Batch ID", value="", key="batch_filter")
limit = st.sidebar.number_input("Recent records", min_value=1, max_value=500, value=50, step=10)
reviewer_name = st.sidebar.text_input("Reviewer", value=os.getenv("USER", "technician"), key="reviewer_name")

if st.sidebar.button("🔄 Refresh Data"):
    st.rerun()

tab_queue, tab_history, tab_analytics = st.tabs(["Review Queue", "History", "Analytics"])

# --- Review Queue ---
with tab_queue:
    jobs = adapter.get_jobs(filter_status, batch_filter, int(limit))
    st.markdown(f"**Queue Size:** {len(jobs)}")

    if not jobs:
        st.info("Queue is empty. Great job!")
    else:
        if "idx" not in st.session_state:
            st.session_state.idx = 0

        def next_doc():
            st.session_state.idx = min(len(jobs)-1, st.session_state.idx + 1)
        def prev_doc():
            st.session_state.idx = max(0, st.session_state.idx - 1)

        col_prev, col_next, _ = st.columns([1, 1, 6])
        with col_prev: st.button("⬅️ Previous", on_click=prev_doc)
        with col_next: st.button("Next ➡️", on_click=next_doc)

        # Index Safety Check
        if st.session_state.idx >= len(jobs):
            st.session_state.idx = 0

        job = jobs[st.session_state.idx]

        col_img, col_data = st.columns([1, 1])

        with col_img:
            st.subheader("Image")
            img = load_image(adapter, job.image_url)
            if img is not None:
                st.image(img, caption=f"{job.batch_id} · {job.image_size}", width="stretch")
            else:
                st.error(f"Image not found: {job.image_url}")

        with col_data:
            st.subheader("AI Grading")
            if job.status == "completed":
                st.success(f"✅ REVIEWED: technician combined {job.tech_combined}")
            else:
                st.warning("⏳ PENDING technician review")

            c1, c2, c3 = st.columns(3)
            c1.metric("Shininess", f"{job.ai_shininess}/5")
            c2.metric("Smoothness", f"{job.ai_smoothness}/5")
            c3.metric("Combined", f"{job.ai_combined}/10")
            st.caption(f"Record {job.id} · station {job.station} · uploaded by {job.technician}")

            if st.button("👍 Accept AI grades", key=f"accept_{job.id}"):
                try:
                    adapter.accept_ai(job, reviewer_name)
                    st.toast("AI grades accepted", icon="✅")
                    st.rerun()
                except ReviewConflict:
                    st.error("Record changed since it was loaded. Refresh and try again.")

            with st.form(key=f"form_{job.id}"):
                st.markdown("### Technician Grades")
                smooth = st.slider(
                    "Smoothness", 0.0, 5.0,
                    float(job.tech_smoothness if job.tech_smoothness is not None else job.ai_smoothness),
                    step=0.1,
                )
                shine = st.slider(
                    "Shininess", 0.0, 5.0,
                    float(job.tech_shininess if job.tech_shininess is not None else job.ai_shininess),
                    step=0.1,
                )
                st.markdown(f"Combined: **{smooth + shine:.1f}/10**")

                submitted = st.form_submit_button("💾 Save Technician Grades", type="primary")

                if submitted:
                    try:
                        adapter.save_review(ReviewResult(
                            job_id=job.id,
                            batch_id=job.batch_id,
                            reviewer=reviewer_name,
                            smoothness=round(smooth, 1),
                            shininess=round(shine, 1),
                            version=job.version,
                        ))
                        st.toast("Technician grades saved", icon="✅")
                        st.rerun()
                    except ReviewConflict:
                        st.error("Record changed since it was loaded. Refresh and try again.")

# --- History ---
with tab_history:
    history = adapter.get_jobs("ALL", batch_filter, int(limit))
    if not history:
        st.info(f"No records found for batch: {batch_filter}" if batch_filter else "No records yet.")
    else:
        st.dataframe(
            pd.DataFrame([
                {
                    "Created": j.created_at,
                    "Batch": j.batch_id,
                    "AI Smooth": j.ai_smoothness,
                    "AI Shine": j.ai_shininess,
                    "AI Combined": j.ai_combined,
                    "Tech Combined": j.tech_combined,
                    "Status": j.status,
                    "Station": j.station,
                }
                for j in history
            ]),
            width="stretch",
        )

# --- Analytics ---
with tab_analytics:
    records = adapter.get_records(batch_filter, int(limit))
    if not records:
        st.info("Nothing to chart yet.")
    else:
        summary = match_rate(records)
        m1, m2, m3 = st.columns(3)
        m1.metric("Records", len(records))
        m2.metric("Reviewed", summary.reviewed)
        m3.metric("Match rate", "n/a" if summary.rate is None else f"{summary.rate:.0%}")

        bucket = st.selectbox("Bucket", ["hour", "day", "minute"], index=0)
        comparison = pd.DataFrame([
            {"bucket": b.bucket, "AI": b.ai_combined_avg, "Technician": b.technician_combined_avg}
            for b in compare_over_time(records, bucket)
        ]).set_index("bucket")
        st.subheader("AI vs Technician Combined Score")
        st.line_chart(comparison)

        st.subheader("Confidence Score Distribution")
        dist = confidence_distribution(records)
        st.bar_chart(pd.DataFrame({"records": list(dist.values())}, index=list(dist.keys())))

        series = match_series(records)
        if series:
            st.subheader("Match Rate Over Time")
            st.line_chart(pd.DataFrame(series).set_index("time")["match"])
