"""
Adherence Sync Dashboard
Upload history and import outcomes recorded by each integration run
"""
import streamlit as st
import pandas as pd
import plotly.express as px
from sqlalchemy import create_engine
import os
from dotenv import load_dotenv

from adherence_sync.core.config import DEFAULT_DATABASE_URL

load_dotenv()

st.set_page_config(page_title="Adherence Sync Dashboard", layout="wide")

# Database connection
@st.cache_resource
def get_connection():
    try:
        return create_engine(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))
    except Exception as e:
        st.error(f"Cannot connect to database: {e}")
        return None

@st.cache_data(ttl=60)
def load_table(_engine, table_name):
    try:
        return pd.read_sql(f"SELECT * FROM {table_name}", _engine)
    except Exception:
        return pd.DataFrame()

# Main app
st.title("Adherence Sync Dashboard")
st.markdown("Monitor integration runs between the device registry and the tracker")
st.markdown("---")

engine = get_connection()
if not engine:
    st.stop()

runs = load_table(engine, "sync_runs")
pages = load_table(engine, "upload_pages")

if runs.empty:
    st.info("No integration runs recorded yet. Run `adherence-sync start-integration` first.")
    st.stop()

runs["started_at"] = pd.to_datetime(runs["started_at"], errors="coerce", format="mixed")
runs = runs.sort_values("started_at", ascending=False)

# Summary metrics
st.subheader("Run Summary")
col1, col2, col3, col4 = st.columns(4)

completed = runs["status"].eq("COMPLETED").sum()
col1.metric("Runs", len(runs))
col1.caption(f"{completed} completed, {runs['status'].eq('FAILED').sum()} failed")

col2.metric("Events Computed", int(runs["events_computed"].fillna(0).sum()))
col2.caption("Created or updated adherence events sent to the tracker")

imported = int(pages["imported"].fillna(0).sum()) if not pages.empty else 0
updated = int(pages["updated"].fillna(0).sum()) if not pages.empty else 0
col3.metric("Imported / Updated", f"{imported} / {updated}")
col3.caption("As reported by the tracker import summaries")

failed_pages = int(pages["error"].notna().sum()) if not pages.empty else 0
col4.metric("Failed Pages", failed_pages)
col4.caption(f"{int(runs['skipped_batches'].fillna(0).sum())} fetch batches skipped")

st.markdown("---")

# Events per run
st.subheader("Events per Run")
chart_runs = runs.dropna(subset=["started_at"]).sort_values("started_at")
if not chart_runs.empty:
    fig = px.bar(
        chart_runs,
        x="started_at",
        y="events_computed",
        color="program_stage",
        labels={"started_at": "Run started", "events_computed": "Events", "program_stage": "Program stage"},
    )
    fig.update_layout(height=350)
    st.plotly_chart(fig, use_container_width=True)

# Import outcome
st.subheader("Import Outcome")
if not pages.empty:
    outcome = pd.DataFrame({
        "Outcome": ["Imported", "Updated", "Ignored"],
        "Count": [imported, updated, int(pages["ignored"].fillna(0).sum())],
    })
    fig = px.pie(outcome, values="Count", names="Outcome", hole=0.4,
                 color_discrete_sequence=["#00CC96", "#636EFA", "#EF553B"])
    fig.update_traces(textposition="inside", textinfo="percent+label")
    fig.update_layout(height=300)
    st.plotly_chart(fig, use_container_width=True)

    problems = pages[pages["error"].notna() | pages["conflicts"].notna()]
    if not problems.empty:
        st.warning(f"{len(problems)} upload pages reported errors or conflicts")
        st.dataframe(problems[["run_id", "page", "events", "ignored", "conflicts", "error"]],
                     use_container_width=True, height=300)
    else:
        st.success("No upload conflicts recorded.")
else:
    st.info("No upload pages recorded yet")

st.markdown("---")

# Run explorer
st.subheader("Run History")
statuses = ["All"] + sorted(runs["status"].dropna().unique().tolist())
selected = st.selectbox("Filter by status", statuses)
view = runs if selected == "All" else runs[runs["status"] == selected]
st.dataframe(view, use_container_width=True, height=400)

st.caption("Adherence Sync - Integration Dashboard")
