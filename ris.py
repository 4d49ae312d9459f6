"""RIS export for reference managers (EndNote, Zotero, Mendeley)."""

from __future__ import annotations

import re
from typing import Sequence

from citations import PUBMED_URL, parse_authors_display, split_pages
from models import Reference
from text_utils import truncate

MAX_RIS_ABSTRACT_CHARS = 5000

_LINE_BREAKS = re.compile(r"[\r\n\t]+")


def sanitize_ris(value: str) -> str:
    """Collapse line breaks and tabs so a value fits on one tag line."""
    return _LINE_BREAKS.sub(" ", value).strip()


def ris_authors(ref: Reference) -> list[str]:
    if ref.authors_list:
        return list(ref.authors_list)
    return [name for name in parse_authors_display(ref.authors) if name != "Unknown"]


def _tag(lines: list[str], tag: str, value: str) -> None:
    value = sanitize_ris(value)
    if value:
        lines.append(f"{tag}  - {value}")


def generate_ris_entry(ref: Reference) -> str:
    """Render one TY..ER stanza; tags with blank values are omitted."""
    lines = ["TY  - JOUR"]
    _tag(lines, "TI", ref.title)
    for author in ris_authors(ref):
        _tag(lines, "AU", author)
    _tag(lines, "PY", ref.year)
    _tag(lines, "JO", ref.journal)
    _tag(lines, "VL", ref.volume)
    _tag(lines, "IS", ref.issue)
    start_page, end_page = split_pages(ref.pages)
    _tag(lines, "SP", start_page)
    _tag(lines, "EP", end_page)
    _tag(lines, "DO", ref.doi)
    _tag(lines, "AB", truncate(sanitize_ris(ref.abstract), MAX_RIS_ABSTRACT_CHARS))
    if ref.pmid.strip():
        pmid = ref.pmid.strip()
        _tag(lines, "ID", f"PMID:{pmid}")
        _tag(lines, "UR", PUBMED_URL.format(pmid=pmid))
    lines.append("ER  -")
    return "\n".join(lines)


def generate_ris(refs: Sequence[Reference]) -> str:
    """Render references as an RIS blob, stanzas separated by a blank line."""
    if not refs:
        return ""
    return "\n\n".join(generate_ris_entry(ref) for ref in refs) + "\n"
