"""
Streamlit user interface for the ScholarAgent research assistant.

Users enter a research topic, receive a grounded academic report with
inline numbered citations and a matching reference list, download the
references as BibTeX/RIS or the report as Markdown, and chat about the
open report.  A second view manages followed topics and shows a digest
of recent research for them.  Reports and chat turns are stored in the
local database so the history sidebar survives restarts.

If no Gemini API key is configured, generation reports an error
prompting the user to set the appropriate environment variable.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import streamlit as st  # type: ignore

from scholar_agent.backend import database as db, exporters, gemini
from scholar_agent.backend.citations import EvidenceChunk

SUGGESTED_TOPICS = [
    "Developments in CRISPR gene editing",
    "Fusion energy breakthroughs 2023-2024",
    "Impact of AI on modern pedagogy",
    "Sustainable polymers in material science",
]


def _reset_session() -> None:
    """Initialise default values in the Streamlit session state."""
    state_defaults = {
        "view": "research",  # research | feed
        "current_report_id": None,
        "detail_level": "detailed",
        "show_chat": False,
        "error": None,
    }
    for key, default in state_defaults.items():
        if key not in st.session_state:
            st.session_state[key] = default


def show_sources(sources: Sequence[EvidenceChunk], compact: bool = False) -> None:
    """Render the numbered reference list."""
    if not sources:
        return
    if compact:
        st.caption("Sources")
        for number, source in enumerate(sources, start=1):
            st.markdown(f"{number}. [{source.display_title}]({source.uri})")
        return
    st.subheader("References & Sources")
    for number, source in enumerate(sources, start=1):
        st.markdown(f"**{number}.** [{source.title or 'Untitled Source'}]({source.uri})  \n`{source.uri}`")


def show_export_buttons(report: Dict[str, Any]) -> None:
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.download_button(
            "Markdown",
            data=exporters.to_markdown(report["topic"], report["content"], report["sources"]),
            file_name=exporters.report_filename(report["topic"]),
            mime="text/markdown",
        )
    with col2:
        st.download_button(
            "BibTeX",
            data=exporters.to_bibtex(report["sources"]),
            file_name="citations.bib",
            mime="text/plain",
        )
    with col3:
        st.download_button(
            "RIS",
            data=exporters.to_ris(report["sources"]),
            file_name="citations.ris",
            mime="text/plain",
        )
    with col4:
        st.download_button(
            "Sources CSV",
            data=exporters.sources_frame(report["sources"]).to_csv(index=False).encode("utf-8"),
            file_name="sources.csv",
            mime="text/csv",
        )


def run_research(topic: str) -> None:
    topic = topic.strip()
    if not topic:
        return
    st.session_state.error = None
    with st.spinner("Searching academic sources and synthesizing findings…"):
        try:
            result = gemini.generate_research(topic, st.session_state.detail_level)
        except (gemini.ResearchServiceError, EnvironmentError) as e:
            st.session_state.error = str(e)
            return
    report = db.save_report(topic, result.text, result.sources, st.session_state.detail_level)
    st.session_state.current_report_id = report["id"]
    st.session_state.show_chat = False


def show_research_view() -> None:
    """Topic entry, the current report and its chat panel."""
    st.header("Research")
    level = st.radio(
        "Detail level",
        ["detailed", "concise"],
        index=0 if st.session_state.detail_level == "detailed" else 1,
        horizontal=True,
    )
    st.session_state.detail_level = level
    with st.form("research_form", clear_on_submit=True):
        topic = st.text_input("What would you like to research?")
        submitted = st.form_submit_button("Research", type="primary")
    if submitted:
        run_research(topic)
    report: Optional[Dict[str, Any]] = None
    if st.session_state.current_report_id:
        report = db.fetch_report(st.session_state.current_report_id)
    if st.session_state.error:
        st.error(st.session_state.error)
    if report is None:
        st.write("Try one of these:")
        cols = st.columns(len(SUGGESTED_TOPICS))
        for col, suggestion in zip(cols, SUGGESTED_TOPICS):
            if col.button(suggestion):
                run_research(suggestion)
                st.rerun()
        return
    show_export_buttons(report)
    st.markdown(report["content"], unsafe_allow_html=True)
    show_sources(report["sources"])
    st.divider()
    if st.toggle("Chat about this report", value=st.session_state.show_chat):
        st.session_state.show_chat = True
        show_chat(report)
    else:
        st.session_state.show_chat = False


def show_chat(report: Dict[str, Any]) -> None:
    """Chat panel grounded in the open report."""
    messages: List[Dict[str, Any]] = db.list_chat_messages(report["id"])
    for message in messages:
        with st.chat_message("user" if message["role"] == "user" else "assistant"):
            st.markdown(message["content"], unsafe_allow_html=True)
            show_sources(message["sources"], compact=True)
    question = st.chat_input("Ask a question about this report")
    if not question:
        return
    with st.chat_message("user"):
        st.markdown(question)
    with st.spinner("Thinking…"):
        try:
            result = gemini.generate_chat_response(
                messages, exporters.strip_markers(report["content"]), question
            )
        except (gemini.ResearchServiceError, EnvironmentError) as e:
            st.error(str(e))
            return
    db.add_chat_message(report["id"], "user", question)
    db.add_chat_message(report["id"], "model", result.text, result.sources)
    st.rerun()


def show_feed_view() -> None:
    """Followed topics and the latest research digest."""
    st.header("Research feed")
    topics = db.list_topics()
    with st.form("topic_form", clear_on_submit=True):
        new_topic = st.text_input("Follow a topic")
        if st.form_submit_button("Add") and not db.add_topic(new_topic):
            st.warning("Topic is empty or already followed.")
    topics = db.list_topics()
    for topic in topics:
        col1, col2 = st.columns([5, 1])
        col1.write(topic)
        if col2.button("Remove", key=f"remove_{topic}"):
            db.remove_topic(topic)
            st.rerun()
    if st.button("Refresh feed", type="primary"):
        if not topics:
            st.error("Please add at least one topic to generate a feed.")
        else:
            with st.spinner("Fetching the latest research…"):
                try:
                    result = gemini.generate_research_feed(topics)
                    db.save_feed(result.text, result.sources, topics)
                except (gemini.ResearchServiceError, EnvironmentError):
                    st.error("Failed to update feed. Please try again.")
    snapshot = db.latest_feed()
    if snapshot:
        st.caption(f"Last updated {snapshot['updated_at']:%Y-%m-%d %H:%M} UTC")
        st.markdown(snapshot["content"], unsafe_allow_html=True)
        show_sources(snapshot["sources"])


def show_history_sidebar() -> None:
    st.title("ScholarAgent")
    views = {"research": "Research", "feed": "Research feed"}
    st.session_state.view = st.radio(
        "View", list(views), format_func=views.get, index=list(views).index(st.session_state.view)
    )
    st.divider()
    st.subheader("History")
    for report in db.list_reports(limit=50):
        col1, col2 = st.columns([5, 1])
        if col1.button(report["topic"], key=f"open_{report['id']}"):
            st.session_state.current_report_id = report["id"]
            st.session_state.view = "research"
            st.rerun()
        if col2.button("✕", key=f"delete_{report['id']}"):
            db.delete_report(report["id"])
            if st.session_state.current_report_id == report["id"]:
                st.session_state.current_report_id = None
            st.rerun()


def main() -> None:
    """Entry point for the Streamlit application."""
    st.set_page_config(
        page_title="ScholarAgent",
        page_icon="🔬",
        layout="wide",
    )
    _reset_session()
    db.init_db()
    with st.sidebar:
        show_history_sidebar()
    if st.session_state.view == "feed":
        show_feed_view()
    else:
        show_research_view()


if __name__ == "__main__":
    main()
