"""Tests for the BibTeX, RIS and Markdown reference exports."""

from __future__ import annotations

from datetime import date

from scholar_agent.backend import exporters
from scholar_agent.backend.citations import EvidenceChunk

SOURCES = [
    EvidenceChunk(uri="https://nature.com/articles/x1", title="Fusion ignition achieved"),
    EvidenceChunk(uri="https://arxiv.org/abs/2401.00001", title=None),
]


def test_bibtex_entries() -> None:
    bib = exporters.to_bibtex(SOURCES, accessed=date(2024, 5, 1))
    assert bib.count("@misc{ref_") == 2
    assert "@misc{ref_1_" in bib
    assert "@misc{ref_2_" in bib
    assert "  title = {{Fusion ignition achieved}},\n" in bib
    assert "  howpublished = {\\url{https://nature.com/articles/x1}},\n" in bib
    assert "  note = {Accessed: 2024-05-01}\n" in bib


def test_bibtex_empty() -> None:
    assert exporters.to_bibtex([]) == ""


def test_ris_records() -> None:
    ris = exporters.to_ris(SOURCES)
    assert ris.count("TY  - ELEC") == 2
    assert "TI  - Fusion ignition achieved" in ris
    assert "UR  - https://arxiv.org/abs/2401.00001" in ris
    assert "ID  - 2" in ris
    assert ris.count("ER  -") == 2


def test_ris_skips_sources_without_uri() -> None:
    assert exporters.to_ris([EvidenceChunk(title="orphan")]) == ""


def test_strip_markers_keeps_numbers() -> None:
    content = 'Plasma was confined.<sup class="citation">[1, 2]</sup> Next.'
    assert exporters.strip_markers(content) == "Plasma was confined.[1, 2] Next."
    assert exporters.strip_markers("No markup") == "No markup"


def test_markdown_export_appends_references() -> None:
    content = '# Fusion\n\nIgnition was reached.<sup class="citation">[1]</sup>'
    md = exporters.to_markdown("Fusion energy", content, SOURCES)
    assert "Ignition was reached.[1]" in md
    assert "<sup" not in md
    assert "## References" in md
    assert "1. [Fusion ignition achieved](https://nature.com/articles/x1)" in md
    assert "2. [https://arxiv.org/abs/2401.00001](https://arxiv.org/abs/2401.00001)" in md


def test_report_filename() -> None:
    assert exporters.report_filename("Fusion  energy breakthroughs") == "fusion_energy_breakthroughs_report.md"
    assert exporters.report_filename("CRISPR", ".pdf") == "crispr.pdf"
    assert exporters.report_filename("   ") == "research_report.md"


def test_sources_frame() -> None:
    df = exporters.sources_frame(SOURCES)
    assert list(df.columns) == ["number", "title", "uri"]
    assert df["number"].tolist() == [1, 2]
    assert df.loc[1, "title"] == "https://arxiv.org/abs/2401.00001"
    assert exporters.sources_frame([]).empty


def test_strip_markers_leaves_other_markup_alone() -> None:
    """Autolinks, entities and bare ``<`` survive; only citation wrappers go."""
    content = 'See <https://arxiv.org/abs/1> and R&amp;D, x<y.<sup class="citation">[1]</sup> a<b<sup>2</sup>'
    assert exporters.strip_markers(content) == (
        'See <https://arxiv.org/abs/1> and R&amp;D, x<y.[1] a<b<sup>2</sup>'
    )


def test_markdown_export_keeps_autolinks_and_entities() -> None:
    content = 'See <https://arxiv.org/abs/1> and R&amp;D, x<y.<sup class="citation">[1]</sup>'
    md = exporters.to_markdown("T", content, SOURCES)
    assert "See <https://arxiv.org/abs/1> and R&amp;D, x<y.[1]" in md


def test_strip_markers_with_custom_format() -> None:
    assert exporters.strip_markers("Claim.{[2, 3]}", "{{{marker}}}") == "Claim.[2, 3]"
    assert exporters.strip_markers("Claim.<cite>[2, 3]</cite>", "<cite>{marker}</cite>") == "Claim.[2, 3]"
    assert exporters.strip_markers("Claim.[1]", "{marker}") == "Claim.[1]"
