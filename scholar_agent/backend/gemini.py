"""
Integration helpers for the Gemini API with Google Search grounding.

This module wraps the ``google-genai`` client with the three calls the
application makes: generating a research report on a topic, building
a digest of recent work for the followed topics, and answering chat
questions about an open report.  Every call enables the Google Search
tool and passes the returned grounding metadata through
:func:`scholar_agent.backend.citations.reconcile`, so callers always
receive annotated text and a numbered source list.

Set ``GEMINI_API_KEY`` (or ``GOOGLE_API_KEY``, or ``GEMINI_API_KEYS``
containing a comma-separated list of keys) before using these
functions.  The client is created on first use.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

try:
    from google import genai  # type: ignore
    from google.genai import types  # type: ignore
except Exception as e:
    raise ImportError('The google-genai package is required for research generation') from e

from .citations import (
    EvidenceChunk,
    ReconciledText,
    SupportSpan,
    chunk_from_payload,
    reconcile,
    support_from_payload,
)

logger = logging.getLogger(__name__)

MODEL: str = os.getenv('SCHOLAR_MODEL', 'gemini-2.5-flash')
REPORT_CONTEXT_LIMIT = 20000
CHAT_HISTORY_TURNS = 6

REPORT_ERROR = 'Failed to generate research report. Please check your API key and try again.'
FEED_ERROR = 'Failed to refresh feed.'
CHAT_ERROR = 'Failed to generate chat response.'

_client: Optional[Any] = None


class ResearchServiceError(RuntimeError):
    """Raised when the upstream model could not produce a response.

    The message is generic and safe to show to end users; the original
    exception is chained as ``__cause__``.
    """


def _resolve_api_key() -> str:
    """Resolve a single Gemini API key from environment variables."""
    single = os.getenv('GEMINI_API_KEY') or os.getenv('GOOGLE_API_KEY')
    if single:
        return single
    multiple = os.getenv('GEMINI_API_KEYS')
    if multiple:
        for key in (k.strip() for k in multiple.split(',') if k.strip()):
            return key
    raise EnvironmentError(
        'Missing Gemini API key. Set GEMINI_API_KEY or GEMINI_API_KEYS in your environment.'
    )


def get_client() -> Any:
    """Return the shared ``genai.Client``, creating it on first use."""
    global _client
    if _client is None:
        _client = genai.Client(api_key=_resolve_api_key())
        logger.info(f"Initialised Gemini client for model {MODEL}")
    return _client


def _search_config(system_instruction: str, temperature: float) -> Any:
    return types.GenerateContentConfig(
        system_instruction=system_instruction,
        tools=[types.Tool(google_search=types.GoogleSearch())],
        temperature=temperature,
    )


def extract_grounding(response: Any) -> Tuple[str, List[EvidenceChunk], List[SupportSpan]]:
    """Pull the text, grounding chunks and supports out of a response.

    Responses without candidates or grounding metadata yield empty
    chunk and support lists.
    """
    text = getattr(response, 'text', None) or ''
    candidates = getattr(response, 'candidates', None) or []
    metadata = getattr(candidates[0], 'grounding_metadata', None) if candidates else None
    raw_chunks = getattr(metadata, 'grounding_chunks', None) or []
    raw_supports = getattr(metadata, 'grounding_supports', None) or []
    chunks = [chunk_from_payload(c) for c in raw_chunks]
    supports = [support_from_payload(s) for s in raw_supports]
    return text, chunks, supports


def _generate(contents: Any, system_instruction: str, temperature: float, fallback_text: str) -> ReconciledText:
    response = get_client().models.generate_content(
        model=MODEL,
        contents=contents,
        config=_search_config(system_instruction, temperature),
    )
    text, chunks, supports = extract_grounding(response)
    result = reconcile(text or fallback_text, chunks, supports)
    if supports:
        cited = sum(1 for s in supports if any(0 <= i < len(chunks) and chunks[i].has_uri for i in s.chunk_indices))
        if cited < len(supports):
            logger.debug(f"{len(supports) - cited} of {len(supports)} grounding supports had no resolvable source")
    logger.info(
        f"Model returned {len(text)} chars, {len(chunks)} chunks, {len(supports)} supports; "
        f"{len(result.sources)} unique sources"
    )
    return result


def research_instruction(detail_level: str = 'detailed') -> str:
    """Build the system instruction for a research report."""
    if detail_level == 'concise':
        detail = (
            'Provide a HIGH-LEVEL SUMMARY. Focus on brevity, bullet points, and key takeaways. '
            'Limit deep technical exposition.'
        )
    else:
        detail = (
            'Provide an IN-DEPTH COMPREHENSIVE ANALYSIS. Include extensive background, '
            'methodology analysis, and thorough synthesis.'
        )
    return f"""You are ScholarAgent, a world-class academic research assistant.
Your goal is to conduct rigorous research on the provided topic, synthesized from real-world data found via Google Search.

Structure your response strictly as an Academic Report with the following Markdown sections:
# Title of Research
## Executive Summary
## Key Developments & Findings
## Methodologies & Approaches (if relevant)
## Cross-Disciplinary Synthesis
## Conclusion & Future Outlook

Instruction on Detail Level: {detail}

Tone: Professional, objective, and academic.
Formatting: Use clear bullet points, bold text for emphasis, and professional phrasing.

CRITICAL: You MUST use the googleSearch tool to find recent papers, articles, and reputable academic sources."""


def generate_research(topic: str, detail_level: str = 'detailed') -> ReconciledText:
    """Generate a grounded research report on ``topic``.

    Args:
        topic: The research question or subject entered by the user.
        detail_level: ``concise`` for a short summary, anything else
            for an in-depth report.

    Raises:
        ResearchServiceError: If the model call fails for any reason.
    """
    try:
        return _generate(topic, research_instruction(detail_level), 0.3, 'No content generated.')
    except Exception as e:
        logger.error(f"Gemini API error while researching {topic!r}: {e}")
        raise ResearchServiceError(REPORT_ERROR) from e


def generate_research_feed(topics: Sequence[str]) -> ReconciledText:
    """Build a digest of the latest research for the followed topics."""
    if not topics:
        raise ValueError('Please add at least one topic to generate a feed.')
    topics_str = ', '.join(topics)
    system_instruction = f"""You are an intelligent academic feed curator.
The user follows these research topics: {topics_str}.

Your task:
1. Use Google Search to find the latest (past 1-3 months) significant papers, articles, and breakthroughs for these topics.
2. Prioritize peer-reviewed journals, preprints (arXiv, bioRxiv), and reputable academic news.
3. Create a "Research Digest" organized by topic.
4. For each item, provide a bold title and a concise summary of the findings.

Format as Markdown.
CRITICAL: You MUST use the googleSearch tool."""
    try:
        return _generate(
            f'Fetch the latest research updates for: {topics_str}',
            system_instruction,
            0.3,
            'No updates found.',
        )
    except Exception as e:
        logger.error(f"Gemini feed error: {e}")
        raise ResearchServiceError(FEED_ERROR) from e


def build_chat_contents(history: Sequence[Dict[str, Any]], last_user_message: str) -> List[Dict[str, Any]]:
    """Convert stored chat messages into Gemini ``contents``.

    Only the last few turns are forwarded to keep the prompt small.
    """
    turns = [
        {'role': msg.get('role', 'user'), 'parts': [{'text': msg.get('content', '')}]}
        for msg in list(history)[-CHAT_HISTORY_TURNS:]
    ]
    turns.append({'role': 'user', 'parts': [{'text': last_user_message}]})
    return turns


def generate_chat_response(
    history: Sequence[Dict[str, Any]],
    report_context: str,
    last_user_message: str,
) -> ReconciledText:
    """Answer a question about the open report, citing web sources if used."""
    system_instruction = f"""You are a helpful academic assistant.
The user is reading a research report. Your job is to answer their questions based on the content of the report provided below.

--- BEGIN REPORT CONTEXT ---
{report_context[:REPORT_CONTEXT_LIMIT]}
--- END REPORT CONTEXT ---

Instructions:
1. Answer the user's question primarily using the information in the Report Context.
2. If the answer is not in the report, or if you need to verify facts, use the 'googleSearch' tool to find authoritative academic sources.
3. Keep answers concise and conversational but professional.
4. If you use external information, the system will automatically cite it."""
    try:
        return _generate(
            build_chat_contents(history, last_user_message),
            system_instruction,
            0.5,
            "I couldn't generate a response.",
        )
    except Exception as e:
        logger.error(f"Gemini chat error: {e}")
        raise ResearchServiceError(CHAT_ERROR) from e
