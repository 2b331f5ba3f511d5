"""
HTTP API for the ScholarAgent research assistant.

This module defines a FastAPI application exposing research
generation, report history, per-report chat, reference exports and
the followed-topic research feed.  It wraps the gateway in
:mod:`scholar_agent.backend.gemini` and the persistence functions in
:mod:`scholar_agent.backend.database`.  The server can be run
directly via uvicorn or programmatically by calling :func:`run`.

Endpoints:

* **GET /health** – Basic liveness status.
* **POST /research** – Generate and store a report for ``topic``.
* **GET /reports**, **GET/DELETE /reports/{id}** – Report history.
* **GET /reports/{id}/export/{fmt}** – ``bibtex``, ``ris`` or
  ``markdown`` download of a report's references.
* **GET/POST /reports/{id}/chat** – Chat about a stored report.
* **GET/POST /topics**, **DELETE /topics/{name}** – Followed topics.
* **GET /feed**, **POST /feed/refresh** – Research feed digest.

Upstream model failures are reported as HTTP 502 with a generic,
retryable message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from . import database as db
from . import exporters, gemini

logger = logging.getLogger(__name__)

EXPORTS = {
    'bibtex': ('application/x-bibtex', 'citations.bib'),
    'ris': ('application/x-research-info-systems', 'citations.ris'),
    'markdown': ('text/markdown', None),
}


class ResearchRequest(BaseModel):
    topic: str
    detail_level: str = 'detailed'


class ChatRequest(BaseModel):
    message: str


class TopicRequest(BaseModel):
    name: str


app = FastAPI(title="ScholarAgent API", version="1.0.0")

# CORS lets the Streamlit frontend on another port call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _serialise(record: Dict[str, Any]) -> Dict[str, Any]:
    """Convert stored records so their sources are plain dictionaries."""
    out = dict(record)
    out['sources'] = [s.to_dict() for s in record.get('sources', [])]
    return out


def _require_report(report_id: str) -> Dict[str, Any]:
    report = db.fetch_report(report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


@app.on_event("startup")
async def startup_event() -> None:
    """Ensure the database schema exists before serving requests."""
    db.init_db()
    logger.info("API server startup complete")


@app.get("/health", response_model=Dict[str, Any])
async def health_check() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "server": "ScholarAgent",
        "model": gemini.MODEL,
    }


@app.post("/research", response_model=Dict[str, Any])
def research(request: ResearchRequest) -> Dict[str, Any]:
    """Generate a grounded report and add it to the history."""
    topic = request.topic.strip()
    if not topic:
        raise HTTPException(status_code=400, detail="Topic must not be empty")
    try:
        result = gemini.generate_research(topic, request.detail_level)
    except gemini.ResearchServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    report = db.save_report(topic, result.text, result.sources, request.detail_level)
    return _serialise(report)


@app.get("/reports", response_model=Dict[str, Any])
def reports(limit: Optional[int] = None) -> Dict[str, Any]:
    return {"reports": [_serialise(r) for r in db.list_reports(limit)]}


@app.get("/reports/{report_id}", response_model=Dict[str, Any])
def report(report_id: str) -> Dict[str, Any]:
    return _serialise(_require_report(report_id))


@app.delete("/reports/{report_id}", response_model=Dict[str, Any])
def remove_report(report_id: str) -> Dict[str, Any]:
    if not db.delete_report(report_id):
        raise HTTPException(status_code=404, detail="Report not found")
    return {"deleted": report_id}


@app.get("/reports/{report_id}/export/{fmt}", response_class=PlainTextResponse)
def export_report(report_id: str, fmt: str) -> PlainTextResponse:
    """Download a report's references as BibTeX or RIS, or the report as Markdown."""
    if fmt not in EXPORTS:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {fmt}")
    stored = _require_report(report_id)
    media_type, filename = EXPORTS[fmt]
    if fmt == 'bibtex':
        body = exporters.to_bibtex(stored['sources'])
    elif fmt == 'ris':
        body = exporters.to_ris(stored['sources'])
    else:
        body = exporters.to_markdown(stored['topic'], stored['content'], stored['sources'])
        filename = exporters.report_filename(stored['topic'])
    return PlainTextResponse(
        body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/reports/{report_id}/chat", response_model=Dict[str, Any])
def chat_history(report_id: str) -> Dict[str, Any]:
    _require_report(report_id)
    return {"messages": [_serialise(m) for m in db.list_chat_messages(report_id)]}


@app.post("/reports/{report_id}/chat", response_model=Dict[str, Any])
def chat(report_id: str, request: ChatRequest) -> Dict[str, Any]:
    """Answer a question about a stored report and record both turns."""
    stored = _require_report(report_id)
    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message must not be empty")
    history = db.list_chat_messages(report_id)
    try:
        result = gemini.generate_chat_response(
            history, exporters.strip_markers(stored['content']), message
        )
    except gemini.ResearchServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    db.add_chat_message(report_id, 'user', message)
    reply = db.add_chat_message(report_id, 'model', result.text, result.sources)
    return _serialise(reply)


@app.get("/topics", response_model=Dict[str, List[str]])
def topics() -> Dict[str, List[str]]:
    return {"topics": db.list_topics()}


@app.post("/topics", response_model=Dict[str, List[str]])
def follow_topic(request: TopicRequest) -> Dict[str, List[str]]:
    if not db.add_topic(request.name):
        raise HTTPException(status_code=400, detail="Topic is empty or already followed")
    return {"topics": db.list_topics()}


@app.delete("/topics/{name}", response_model=Dict[str, List[str]])
def unfollow_topic(name: str) -> Dict[str, List[str]]:
    if not db.remove_topic(name):
        raise HTTPException(status_code=404, detail="Topic not followed")
    return {"topics": db.list_topics()}


@app.get("/feed", response_model=Dict[str, Any])
def feed() -> Dict[str, Any]:
    snapshot = db.latest_feed()
    if not snapshot:
        raise HTTPException(status_code=404, detail="Feed has not been generated yet")
    return _serialise(snapshot)


@app.post("/feed/refresh", response_model=Dict[str, Any])
def refresh_feed() -> Dict[str, Any]:
    """Regenerate the digest for all followed topics."""
    followed = db.list_topics()
    if not followed:
        raise HTTPException(status_code=400, detail="Please add at least one topic to generate a feed.")
    try:
        result = gemini.generate_research_feed(followed)
    except gemini.ResearchServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _serialise(db.save_feed(result.text, result.sources, followed))


def run(host: str = "0.0.0.0", port: int = 8001) -> None:
    """Run the API server using uvicorn."""
    import uvicorn  # type: ignore

    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "scholar_agent.backend.api_server:app",
        host=host,
        port=port,
        log_level="info",
        reload=False,
    )
