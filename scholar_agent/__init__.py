"""
ScholarAgent research assistant package.

This package contains a research assistant built on the Gemini API
with Google Search grounding.  It includes the citation reconciler
that numbers and inserts inline citations, the model gateway,
persistence for reports and followed topics, reference exporters, an
HTTP API and a Streamlit frontend.
"""
