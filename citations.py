"""Citation building: in-text keys, APA strings, references, and BibTeX export."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Sequence

from models import Author, Paper, Reference, ScoredPaper

LOGGER = logging.getLogger(__name__)

PUBMED_URL = "https://pubmed.ncbi.nlm.nih.gov/{pmid}/"
MAX_BIBTEX_KEY_CHARS = 64

# APA lists every author up to seven, then the first six, an ellipsis, and the last.
_APA_MAX_LISTED = 7
_APA_HEAD = 6

_PAGE_RANGE_SEPARATORS = ("-", "–", "—")
_YEAR_DIGITS = re.compile(r"\d{4}")
_NON_KEY_CHARS = re.compile(r"[^A-Za-z0-9]")
_BREAKING_WHITESPACE = re.compile(r"[\r\n\t]+")
_ET_AL = re.compile(r"\s*et al\..*$")

_LATEX_ESCAPES = {
    "\\": "\\\\",
    "&": "\\&",
    "%": "\\%",
    "$": "\\$",
    "#": "\\#",
    "_": "\\_",
    "{": "\\{",
    "}": "\\}",
    "~": "\\~{}",
    "^": "\\^{}",
}


# ---------------------------------------------------------------------------
# Author and year helpers
# ---------------------------------------------------------------------------


def normalized_year(year: str) -> str:
    year = year.strip()
    return year or "n.d."


def initials(fore_name: str) -> str:
    return ". ".join(part[0] for part in fore_name.split())


def apa_author(author: Author) -> str:
    """Render one author as "Last, F." (collective names verbatim)."""
    name = author.collective_name.strip()
    if not name:
        last = author.last_name.strip()
        fore = author.fore_name.strip()
        if last and fore:
            name = f"{last}, {initials(fore)}."
        else:
            name = last or fore or "Unknown"
    if name != "Unknown" and not name.endswith("."):
        name += "."
    return name


def author_last_first(author: Author) -> str:
    """Render an author in "Last, First" form; collective names pass through."""
    if author.collective_name.strip():
        return author.collective_name.strip()
    last = author.last_name.strip()
    fore = author.fore_name.strip()
    if last and fore:
        return f"{last}, {fore}"
    return last or fore


def first_author_key_name(paper: Paper) -> str:
    if not paper.authors:
        return ""
    first = paper.authors[0]
    for candidate in (first.collective_name, first.last_name):
        if candidate.strip():
            return candidate.strip()
    tokens = first.full_name().split()
    return tokens[-1] if tokens else ""


def in_text_cite_key(paper: Paper) -> str:
    """Return "Name, Year" for one author or "Name et al., Year" for several."""
    name = first_author_key_name(paper) or "Unknown"
    year = normalized_year(paper.year)
    if len(paper.authors) <= 1:
        return f"{name}, {year}"
    return f"{name} et al., {year}"


def authors_display(paper: Paper) -> str:
    authors = paper.authors
    if not authors:
        return "Unknown"
    if len(authors) == 1:
        return authors[0].full_name()
    if len(authors) == 2:
        return f"{authors[0].full_name()} & {authors[1].full_name()}"
    return f"{authors[0].full_name()} et al."


def format_apa(paper: Paper) -> str:
    authors = paper.authors
    if not authors:
        author_text = "Unknown"
    elif len(authors) == 1:
        author_text = apa_author(authors[0])
    elif len(authors) <= _APA_MAX_LISTED:
        parts = [apa_author(a) for a in authors[:-1]]
        parts.append(f"& {apa_author(authors[-1])}")
        author_text = ", ".join(parts)
    else:
        parts = [apa_author(a) for a in authors[:_APA_HEAD]]
        parts.append("...")
        parts.append(f"& {apa_author(authors[-1])}")
        author_text = ", ".join(parts)

    title = paper.title.strip().rstrip(".")
    journal = paper.journal.strip().rstrip(".")
    citation = f"{author_text} ({normalized_year(paper.year)}). {title}. {journal}."
    if paper.doi:
        citation += f" https://doi.org/{paper.doi}"
    return citation


def split_pages(pages: str) -> tuple[str, str]:
    """Split "123-130" (hyphen, en dash or em dash) into start and end pages."""
    pages = pages.strip()
    if not pages:
        return "", ""
    for separator in _PAGE_RANGE_SEPARATORS:
        if separator in pages:
            start, end = pages.split(separator, 1)
            return start.strip(), end.strip()
    return pages, ""


def alpha_suffix(n: int) -> str:
    """Bijective base-26 suffix: 0 -> "", 1 -> "a", 26 -> "z", 27 -> "aa"."""
    letters: list[str] = []
    while n > 0:
        n -= 1
        letters.append(chr(ord("a") + n % 26))
        n //= 26
    return "".join(reversed(letters))


def _dedupe_keys(bases: Sequence[str]) -> list[str]:
    """Append ordinal alpha suffixes to repeated bases, in input order."""
    used: set[str] = set()
    seen: dict[str, int] = {}
    keys: list[str] = []
    for base in bases:
        n = seen.get(base, 0)
        key = base + alpha_suffix(n)
        while key in used:
            n += 1
            key = base + alpha_suffix(n)
        seen[base] = n + 1
        used.add(key)
        keys.append(key)
    return keys


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


def build_reference(paper: Paper, number: int, relevance: int) -> Reference:
    """Build the citation record for paper, keyed "Name Year" or by its 1-based number."""
    key = str(number)
    name = first_author_key_name(paper)
    if name:
        key = f"{name} {normalized_year(paper.year)}"

    authors_list = tuple(
        formatted for formatted in (author_last_first(a) for a in paper.authors) if formatted
    )
    return Reference(
        key=key,
        pmid=paper.paper_id,
        citation_apa=format_apa(paper),
        relevance_score=relevance,
        title=paper.title,
        abstract=paper.abstract,
        year=paper.year,
        authors=authors_display(paper),
        authors_list=authors_list,
        journal=paper.journal,
        doi=paper.doi,
        volume=paper.volume,
        issue=paper.issue,
        pages=paper.pages,
    )


def build_references(scored: Sequence[ScoredPaper]) -> tuple[Reference, ...]:
    """Number scored papers 1..N and make every reference key unique."""
    references = [
        build_reference(sp.paper, index, sp.relevance_score)
        for index, sp in enumerate(scored, start=1)
    ]
    keys = _dedupe_keys([ref.key for ref in references])
    return tuple(
        ref if ref.key == key else replace(ref, key=key)
        for ref, key in zip(references, keys)
    )


# ---------------------------------------------------------------------------
# BibTeX
# ---------------------------------------------------------------------------


def latex_escape(value: str) -> str:
    """Escape LaTeX specials and flatten line breaks/tabs for a BibTeX field."""
    value = _BREAKING_WHITESPACE.sub(" ", value)
    escaped = "".join(_LATEX_ESCAPES.get(char, char) for char in value)
    return escaped.strip()


def bibtex_author_from_name(name: str) -> str:
    """Convert "John Paul Smith" to "Smith, John Paul"; comma forms pass through."""
    name = name.strip()
    if not name:
        return "Unknown"
    if "," in name:
        return name
    tokens = name.split()
    if len(tokens) == 1:
        return tokens[0]
    return f"{tokens[-1]}, {' '.join(tokens[:-1])}"


def parse_authors_display(display: str) -> list[str]:
    """Split an authors display string ("A & B", "A et al.") into names."""
    display = _ET_AL.sub("", display.strip())
    if not display:
        return []
    return [part.strip() for part in display.split("&") if part.strip()]


def bibtex_key_author_token(name: str) -> str:
    name = _ET_AL.sub("", name.strip())
    if not name:
        return "Unknown"
    if "," in name:
        surname = name.split(",", 1)[0].strip()
        return surname or "Unknown"
    return name.split()[-1]


def year_for_bibtex_key(year: str) -> str:
    """First four-digit run in year, or "nd"."""
    match = _YEAR_DIGITS.search(year)
    return match.group(0) if match else "nd"


def sanitize_bibtex_key(key: str) -> str:
    key = _NON_KEY_CHARS.sub("", key)
    if not key:
        return ""
    if key[0].isdigit():
        key = "Ref" + key
    return key[:MAX_BIBTEX_KEY_CHARS]


def _first_author_name(ref: Reference) -> str:
    if ref.authors_list:
        return ref.authors_list[0]
    parsed = parse_authors_display(ref.authors)
    return parsed[0] if parsed else ""


def bibtex_citation_key_base(ref: Reference) -> str:
    token = bibtex_key_author_token(_first_author_name(ref))
    return sanitize_bibtex_key(token + year_for_bibtex_key(ref.year)) or "Ref"


def generate_bibtex_citation_keys(refs: Sequence[Reference]) -> list[str]:
    return _dedupe_keys([bibtex_citation_key_base(ref) for ref in refs])


def bibtex_authors(ref: Reference) -> str:
    if ref.authors_list:
        names = list(ref.authors_list)
    else:
        names = [bibtex_author_from_name(name) for name in parse_authors_display(ref.authors)]
    return " and ".join(names)


def generate_bibtex_entry(key: str, ref: Reference) -> str:
    start_page, end_page = split_pages(ref.pages)
    pages = f"{start_page}--{end_page}" if end_page else start_page
    fields = [
        ("author", bibtex_authors(ref)),
        ("title", ref.title),
        ("journal", ref.journal),
        ("year", ref.year),
        ("volume", ref.volume),
        ("number", ref.issue),
        ("pages", pages),
        ("doi", ref.doi),
        ("pmid", ref.pmid),
        ("url", PUBMED_URL.format(pmid=ref.pmid) if ref.pmid.strip() else ""),
    ]
    lines = [
        f"  {name} = {{{latex_escape(value)}}}"
        for name, value in fields
        if value.strip()
    ]
    return f"@article{{{key},\n" + ",\n".join(lines) + "\n}"


def generate_bibtex(refs: Sequence[Reference]) -> str:
    """Render references as a BibTeX blob with collision-free keys."""
    if not refs:
        return ""
    keys = generate_bibtex_citation_keys(refs)
    entries = [generate_bibtex_entry(key, ref) for key, ref in zip(keys, refs)]
    LOGGER.debug("Generated %s BibTeX entries", len(entries))
    return "\n\n".join(entries) + "\n"
