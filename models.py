"""Shared typed models for the retrieval and synthesis pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class Author:
    """One author of a paper; collective_name is set for group authors."""

    last_name: str = ""
    fore_name: str = ""
    collective_name: str = ""

    def full_name(self) -> str:
        """Return "ForeName LastName", or the collective name if present."""
        if self.collective_name:
            return self.collective_name
        if not self.fore_name:
            return self.last_name
        return f"{self.fore_name} {self.last_name}"


@dataclass(frozen=True, slots=True)
class Paper:
    """Normalized literature record supplied by a LiteratureSource."""

    paper_id: str
    title: str = ""
    abstract: str = ""
    authors: tuple[Author, ...] = ()
    journal: str = ""
    year: str = ""
    volume: str = ""
    issue: str = ""
    pages: str = ""
    doi: str = ""


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Identifiers returned by a literature search, in the source's ranking order."""

    ids: tuple[str, ...] = ()
    total_count: int = 0


@dataclass(frozen=True, slots=True)
class ScoredPaper:
    paper: Paper
    relevance_score: int


@dataclass(frozen=True, slots=True)
class TokenCount:
    """Token estimate for a single completion call."""

    input: int = 0
    output: int = 0


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, input_tokens: int, output_tokens: int) -> TokenUsage:
        return cls(input=input_tokens, output=output_tokens, total=input_tokens + output_tokens)

    def to_dict(self) -> dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}


@dataclass(frozen=True, slots=True)
class Reference:
    """Output-facing citation record for one paper used in a synthesis."""

    key: str
    pmid: str
    citation_apa: str
    relevance_score: int
    title: str = ""
    abstract: str = ""
    year: str = ""
    authors: str = ""
    # "Last, First" forms; internal only, excluded from JSON output.
    authors_list: tuple[str, ...] = ()
    journal: str = ""
    doi: str = ""
    volume: str = ""
    issue: str = ""
    pages: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "pmid": self.pmid,
            "citation_apa": self.citation_apa,
            "relevance_score": self.relevance_score,
        }
        if self.doi:
            data["doi"] = self.doi
        data["title"] = self.title
        if self.abstract:
            data["abstract"] = self.abstract
        data["year"] = self.year
        data["authors"] = self.authors
        data["journal"] = self.journal
        return data


@dataclass(frozen=True, slots=True)
class SynthesisResult:
    question: str
    synthesis: str
    papers_searched: int
    papers_scored: int
    papers_used: int
    references: tuple[Reference, ...] = ()
    ris: str = ""
    tokens: TokenUsage = field(default_factory=TokenUsage)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "question": self.question,
            "synthesis": self.synthesis,
            "papers_searched": self.papers_searched,
            "papers_scored": self.papers_scored,
            "papers_used": self.papers_used,
            "references": [ref.to_dict() for ref in self.references],
        }
        if self.ris:
            data["ris"] = self.ris
        data["tokens"] = self.tokens.to_dict()
        return data


class Strategy(str, Enum):
    PARAMETRIC = "parametric"
    RETRIEVAL = "retrieval"


@dataclass(frozen=True, slots=True)
class QAResult:
    """Outcome of one adaptive yes/no answer."""

    question: str
    answer: str = ""
    confidence: int = 0
    strategy: Strategy = Strategy.PARAMETRIC
    novel_detected: bool = False
    source_ids: tuple[str, ...] = ()
    minified_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "question": self.question,
            "answer": self.answer,
        }
        if self.confidence:
            data["confidence"] = self.confidence
        data["strategy"] = self.strategy.value
        data["novel_detected"] = self.novel_detected
        if self.source_ids:
            data["source_pmids"] = list(self.source_ids)
        if self.minified_context:
            data["context"] = self.minified_context
        return data


class ProgressPhase(str, Enum):
    SEARCH = "search"
    FETCH = "fetch"
    SCORE = "score"
    FILTER = "filter"
    SYNTHESIS = "synthesis"
    CITATION_EXPORT = "citation-export"


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Ephemeral progress event; current/total are set for per-paper scoring."""

    phase: ProgressPhase
    message: str = ""
    current: int = 0
    total: int = 0


@dataclass(frozen=True, slots=True)
class LinkItem:
    """One PMID linked from a source article; score is set only for related articles."""

    paper_id: str
    score: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.paper_id}
        if self.score:
            data["score"] = self.score
        return data


@dataclass(frozen=True, slots=True)
class LinkResult:
    source_id: str
    links: tuple[LinkItem, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"source_id": self.source_id, "links": [link.to_dict() for link in self.links]}


@dataclass(frozen=True, slots=True)
class MeshRecord:
    """A MeSH descriptor: heading, tree positions, scope note and entry terms."""

    ui: str = ""
    name: str = ""
    scope_note: str = ""
    tree_numbers: tuple[str, ...] = ()
    entry_terms: tuple[str, ...] = ()
    annotation: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ui": self.ui,
            "name": self.name,
            "scope_note": self.scope_note,
            "tree_numbers": list(self.tree_numbers),
            "entry_terms": list(self.entry_terms),
        }
        if self.annotation:
            data["annotation"] = self.annotation
        return data
