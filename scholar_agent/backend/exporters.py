"""
Reference export helpers.

Reports and chat answers carry an ordered list of sources whose
1-based position is the number shown in the inline citation markers.
The helpers here turn that list into the formats users take away with
them: BibTeX for LaTeX users, RIS for Zotero/EndNote, and a Markdown
copy of the report with a numbered reference section.  Marker markup
can also be stripped to recover plain text.
"""

from __future__ import annotations

import re
import time
from datetime import date
from typing import List, Optional, Sequence

import pandas as pd  # type: ignore
import rispy  # type: ignore

from .citations import DEFAULT_MARKER_FORMAT, EvidenceChunk


def to_bibtex(sources: Sequence[EvidenceChunk], accessed: Optional[date] = None) -> str:
    """Render sources as ``@misc`` BibTeX entries.

    Entry keys embed the display number and a millisecond timestamp so
    that repeated exports do not collide inside one ``.bib`` file.
    """
    accessed = accessed or date.today()
    stamp = int(time.time() * 1000)
    entries: List[str] = []
    for number, source in enumerate(sources, start=1):
        if not source.has_uri:
            continue
        entries.append(
            f"@misc{{ref_{number}_{stamp},\n"
            f"  title = {{{{{source.title or ''}}}}},\n"
            f"  howpublished = {{\\url{{{source.uri}}}}},\n"
            f"  note = {{Accessed: {accessed.isoformat()}}}\n"
            f"}}\n"
        )
    return '\n'.join(entries)


def to_ris(sources: Sequence[EvidenceChunk]) -> str:
    """Render sources as RIS ``ELEC`` records using rispy."""
    entries = [
        {
            'type_of_reference': 'ELEC',
            'title': source.title or '',
            'urls': [source.uri],
            'id': str(number),
        }
        for number, source in enumerate(sources, start=1)
        if source.has_uri
    ]
    if not entries:
        return ''
    return rispy.dumps(entries)


def strip_markers(content: str, marker_format: str = DEFAULT_MARKER_FORMAT) -> str:
    """Remove citation marker wrappers, keeping the bracketed numbers.

    Only wrappers matching ``marker_format`` around a ``[n, ...]`` list
    are touched; any other markup or entity in the report is left as is.
    """
    prefix, _, suffix = marker_format.format(marker="\x00").partition("\x00")
    if not prefix and not suffix:
        return content
    pattern = re.escape(prefix) + r"(\[\d+(?:, \d+)*\])" + re.escape(suffix)
    return re.sub(pattern, r"\1", content)


def references_markdown(sources: Sequence[EvidenceChunk]) -> str:
    """Numbered Markdown reference list."""
    lines = [
        f"{number}. [{source.display_title}]({source.uri})"
        for number, source in enumerate(sources, start=1)
        if source.has_uri
    ]
    return '\n'.join(lines)


def to_markdown(topic: str, content: str, sources: Sequence[EvidenceChunk]) -> str:
    """Plain Markdown copy of a report with its reference list appended."""
    body = strip_markers(content).rstrip()
    refs = references_markdown(sources)
    parts = [f"<!-- Research topic: {topic} -->", body]
    if refs:
        parts.append('## References\n\n' + refs)
    return '\n\n'.join(parts) + '\n'


def report_filename(topic: str, suffix: str = '_report.md') -> str:
    """Build a download file name such as ``fusion_energy_report.md``."""
    slug = re.sub(r'\s+', '_', topic.strip()).lower() or 'research'
    return f"{slug}{suffix}"


def sources_frame(sources: Sequence[EvidenceChunk]) -> pd.DataFrame:
    """Tabulate sources with their display numbers."""
    return pd.DataFrame(
        [
            {'number': number, 'title': source.display_title, 'uri': source.uri}
            for number, source in enumerate(sources, start=1)
        ],
        columns=['number', 'title', 'uri'],
    )
