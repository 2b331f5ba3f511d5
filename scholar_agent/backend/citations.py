"""
Citation reconciliation for grounded model output.

The hosted model returns three things alongside its answer: the raw
text, a list of grounding chunks (web sources) and a list of grounding
supports (character ranges of the text backed by one or more chunks).
This module turns that triple into something a reader can follow:

* chunks that point at the same URI are collapsed into one source;
* every unique source is given a display number in order of first
  appearance in the text (by the ``start_index`` of the support that
  first cites it);
* bracketed citation markers such as ``[1, 3]`` are spliced into the
  text at the end offset of each support.

Markers are inserted walking the supports from the highest
``end_index`` downwards so that an insertion never shifts an offset
that is still to be processed.  Malformed input (missing offsets,
chunk indices out of range, chunks without a URI) is dropped silently;
``reconcile`` never raises for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

DEFAULT_MARKER_FORMAT = '<sup class="citation">{marker}</sup>'


@dataclass(frozen=True)
class EvidenceChunk:
    """A single web source the model says it drew upon."""

    uri: Optional[str] = None
    title: Optional[str] = None

    @property
    def has_uri(self) -> bool:
        return bool(self.uri)

    @property
    def display_title(self) -> str:
        """Title to show for the source, falling back to its URI."""
        return self.title or self.uri or 'Untitled Source'

    def to_dict(self) -> Dict[str, Any]:
        return {'uri': self.uri, 'title': self.title}


@dataclass(frozen=True)
class SupportSpan:
    """A ``[start_index, end_index)`` range of text backed by chunks.

    ``chunk_indices`` point into the chunk list the span was returned
    with.  Confidence scores are kept for completeness but play no part
    in numbering or marker placement.
    """

    end_index: Optional[int] = None
    start_index: Optional[int] = None
    chunk_indices: Tuple[int, ...] = ()
    confidence_scores: Tuple[float, ...] = ()
    text: str = ''


@dataclass(frozen=True)
class ReconciledText:
    """Annotated text plus the ordered, de-duplicated sources it cites."""

    text: str
    sources: List[EvidenceChunk] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'text': self.text, 'sources': [s.to_dict() for s in self.sources]}


def _field(obj: Any, *names: str) -> Any:
    """Read the first present attribute or key among ``names``."""
    if obj is None:
        return None
    for name in names:
        if isinstance(obj, Mapping):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def chunk_from_payload(payload: Any) -> EvidenceChunk:
    """Build an :class:`EvidenceChunk` from a provider grounding chunk.

    Accepts either the JSON shape ``{"web": {"uri": ..., "title": ...}}``
    or an SDK object exposing a ``web`` attribute.  Anything that does
    not carry a web source yields a chunk without a URI.
    """
    if isinstance(payload, EvidenceChunk):
        return payload
    web = _field(payload, 'web')
    uri = _field(web, 'uri')
    title = _field(web, 'title')
    return EvidenceChunk(
        uri=str(uri) if uri else None,
        title=str(title) if title else None,
    )


def support_from_payload(payload: Any) -> SupportSpan:
    """Build a :class:`SupportSpan` from a provider grounding support.

    Both camelCase (REST JSON) and snake_case (SDK objects) field names
    are understood.
    """
    if isinstance(payload, SupportSpan):
        return payload
    segment = _field(payload, 'segment')
    indices = _field(payload, 'groundingChunkIndices', 'grounding_chunk_indices') or []
    scores = _field(payload, 'confidenceScores', 'confidence_scores') or []
    if not isinstance(indices, (list, tuple)):
        indices = []
    if not isinstance(scores, (list, tuple)):
        scores = []
    chunk_indices = tuple(i for i in (_as_int(v) for v in indices) if i is not None)
    return SupportSpan(
        end_index=_as_int(_field(segment, 'endIndex', 'end_index')),
        start_index=_as_int(_field(segment, 'startIndex', 'start_index')),
        chunk_indices=chunk_indices,
        confidence_scores=tuple(s for s in (_as_float(v) for v in scores) if s is not None),
        text=_field(segment, 'text') or '',
    )


def citation_marker(numbers: Sequence[int]) -> str:
    """Return the bracketed marker content, e.g. ``[1, 3]``."""
    return '[' + ', '.join(str(n) for n in numbers) + ']'


def _lookup_chunk(chunks: Sequence[EvidenceChunk], index: int) -> Optional[EvidenceChunk]:
    if 0 <= index < len(chunks):
        return chunks[index]
    return None


def number_sources(
    chunks: Sequence[EvidenceChunk],
    supports: Sequence[SupportSpan],
) -> Tuple[List[EvidenceChunk], Mapping[int, int]]:
    """Assign each unique URI a position in order of first appearance.

    Returns the unique source list and a read-only mapping from every
    resolvable chunk index to its position in that list.
    """
    unique_sources: List[EvidenceChunk] = []
    chunk_to_source: Dict[int, int] = {}
    uri_to_source: Dict[str, int] = {}
    by_start = sorted(supports, key=lambda s: s.start_index or 0)
    for support in by_start:
        for chunk_idx in support.chunk_indices:
            if chunk_idx in chunk_to_source:
                continue
            chunk = _lookup_chunk(chunks, chunk_idx)
            if chunk is None or not chunk.has_uri:
                continue
            if chunk.uri in uri_to_source:
                chunk_to_source[chunk_idx] = uri_to_source[chunk.uri]
            else:
                uri_to_source[chunk.uri] = len(unique_sources)
                chunk_to_source[chunk_idx] = len(unique_sources)
                unique_sources.append(chunk)
    return unique_sources, MappingProxyType(chunk_to_source)


def insert_markers(
    text: str,
    supports: Sequence[SupportSpan],
    chunk_to_source: Mapping[int, int],
    marker_format: str = DEFAULT_MARKER_FORMAT,
) -> str:
    """Splice a citation marker before the end offset of every support."""
    annotated = text
    by_end = sorted(supports, key=lambda s: s.end_index or 0, reverse=True)
    for support in by_end:
        resolved = {chunk_to_source[i] for i in support.chunk_indices if i in chunk_to_source}
        if not resolved:
            continue
        insert_pos = support.end_index
        if insert_pos is None or insert_pos < 0 or insert_pos > len(annotated):
            continue
        numbers = [i + 1 for i in sorted(resolved)]
        marker = marker_format.format(marker=citation_marker(numbers))
        annotated = annotated[:insert_pos] + marker + annotated[insert_pos:]
    return annotated


def reconcile(
    text: str,
    chunks: Sequence[EvidenceChunk],
    supports: Sequence[SupportSpan],
    marker_format: str = DEFAULT_MARKER_FORMAT,
) -> ReconciledText:
    """Insert inline citations into ``text`` and return the cited sources.

    Args:
        text: Raw model output.
        chunks: Grounding chunks in the order the provider returned them.
        supports: Grounding supports referring to ``chunks`` by index.
        marker_format: Presentational wrapper for each marker; must
            contain a ``{marker}`` placeholder which receives content
            such as ``[1, 3]``.

    Returns:
        A :class:`ReconciledText` whose ``sources`` are numbered by
        position (1-based).  When there are no supports the text is
        returned untouched and every chunk with a URI is listed in input
        order, duplicates included.
    """
    if not supports:
        return ReconciledText(text=text, sources=[c for c in chunks if c.has_uri])
    unique_sources, chunk_to_source = number_sources(chunks, supports)
    annotated = insert_markers(text, supports, chunk_to_source, marker_format)
    return ReconciledText(text=annotated, sources=unique_sources)


def reconcile_payload(
    text: str,
    chunk_payloads: Optional[Sequence[Any]],
    support_payloads: Optional[Sequence[Any]],
    marker_format: str = DEFAULT_MARKER_FORMAT,
) -> ReconciledText:
    """Like :func:`reconcile` but accepts raw provider payloads."""
    chunks = [chunk_from_payload(c) for c in (chunk_payloads or [])]
    supports = [support_from_payload(s) for s in (support_payloads or [])]
    return reconcile(text, chunks, supports, marker_format)
