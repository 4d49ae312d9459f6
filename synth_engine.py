"""Literature synthesis: search -> fetch -> score -> filter -> compose -> export."""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from citations import build_references, in_text_cite_key
from config import SynthesisConfig
from errors import (
    AllScoringFailedError,
    CancellationError,
    CompletionFailedError,
    EmptySynthesisError,
    FetchEmptyError,
    InvalidInputError,
    NoResultsError,
    RetrievalFailedError,
    ThresholdNotMetError,
)
from models import (
    Paper,
    ProgressPhase,
    ProgressUpdate,
    ScoredPaper,
    SearchResult,
    SynthesisResult,
    TokenCount,
    TokenUsage,
)
from relevance import DEFAULT_SCORE, score_relevance
from ris import generate_ris
from services import (
    LiteratureSource,
    ProgressCallback,
    TextCompletionService,
    call_with_cancel,
    raise_if_cancelled,
)
from text_utils import truncate

LOGGER = logging.getLogger(__name__)

SYNTHESIS_ABSTRACT_CHARS = 1500
DEEP_DIVE_ABSTRACT_CHARS = 2500
DEEP_DIVE_RELEVANCE = 10

_SYNTHESIS_PROMPT = """You are a scientific writer. Synthesize the following research papers to answer this question:

Question: {question}

Papers:
{papers}

Write a synthesis of approximately {target_words} words that:
1. Directly addresses the question
2. Integrates findings across papers
3. Uses inline citations like (Smith et al., 2024)
4. Maintains academic tone
5. Notes any conflicting findings

Available citations: {cite_keys}

Write the synthesis:"""

_DEEP_DIVE_PROMPT = """Summarize this research paper in approximately {target_words} words. Include:
- Main objective/question
- Key methods
- Primary findings
- Implications/conclusions

Title: {title}

Abstract:
{abstract}

Write a cohesive summary paragraph. Cite as ({cite_key})."""


class SynthesisEngine:
    """Runs the synthesis pipeline one stage at a time, one paper at a time."""

    def __init__(
        self,
        llm: TextCompletionService | None,
        literature: LiteratureSource | None,
        config: SynthesisConfig | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.llm = llm
        self.literature = literature
        self.config = config or SynthesisConfig()
        self.progress = progress

    def with_progress(self, callback: ProgressCallback | None) -> SynthesisEngine:
        """Set the progress callback; it must be fast and must not block."""
        self.progress = callback
        return self

    def _report(self, phase: ProgressPhase, message: str, current: int = 0, total: int = 0) -> None:
        if self.progress is None:
            return
        try:
            self.progress(ProgressUpdate(phase=phase, message=message, current=current, total=total))
        except Exception as exc:
            LOGGER.warning("Progress callback failed at %s: %s", phase.value, exc)

    def _validate(self) -> None:
        if self.llm is None:
            raise InvalidInputError("completion service is required", stage="validate")
        if self.literature is None:
            raise InvalidInputError("literature source is required", stage="validate")
        self.config.validate()

    # ------------------------------------------------------------------
    # Full synthesis
    # ------------------------------------------------------------------

    def synthesize(self, question: str, cancel: threading.Event | None = None) -> SynthesisResult:
        """Answer an open-ended question with a cited synthesis.

        Raises:
            InvalidInputError / InvalidConfigError: before any external call.
            RetrievalFailedError: search or fetch raised.
            NoResultsError, FetchEmptyError, ThresholdNotMetError, EmptySynthesisError:
                terminal business outcomes.
            AllScoringFailedError: every paper failed relevance scoring.
            CompletionFailedError: the synthesis completion raised.
            CancellationError: the caller cancelled.
        """
        self._validate()
        question = question.strip()
        if not question:
            raise InvalidInputError("question is required", stage="validate")

        cfg = self.config

        self._report(ProgressPhase.SEARCH, "Searching PubMed...")
        hits = self._search(question, cfg.papers_to_search, cancel)
        ids = list(hits.ids)
        papers_searched = len(ids)
        LOGGER.info("Search returned %s ids (total_count=%s)", papers_searched, hits.total_count)
        if not ids:
            raise NoResultsError(f"no papers found for query: {question}", stage="search")

        self._report(ProgressPhase.FETCH, "Fetching paper metadata...")
        papers = self._fetch(ids, cancel)
        if not papers:
            raise FetchEmptyError(f"no records returned for query: {question}", stage="fetch")

        scored, scoring_tokens = self._score_papers(question, papers, cancel)
        input_tokens = scoring_tokens.input
        output_tokens = scoring_tokens.output

        self._report(ProgressPhase.FILTER, f"Filtering to top {cfg.papers_to_use} papers...")
        relevant = select_relevant(scored, cfg.relevance_threshold, cfg.papers_to_use)
        LOGGER.info(
            "Filter: scored=%s relevant=%s threshold=%s",
            len(scored),
            len(relevant),
            cfg.relevance_threshold,
        )
        if not relevant:
            raise ThresholdNotMetError(
                f"no papers met relevance threshold ({cfg.relevance_threshold}) for: {question}",
                stage="filter",
            )

        references = build_references(relevant)

        self._report(ProgressPhase.SYNTHESIS, "Generating synthesis...")
        synthesis, synthesis_tokens = self._compose(question, relevant, cancel)
        input_tokens += synthesis_tokens.input
        output_tokens += synthesis_tokens.output

        self._report(ProgressPhase.CITATION_EXPORT, "Generating RIS...")
        return SynthesisResult(
            question=question,
            synthesis=synthesis,
            papers_searched=papers_searched,
            papers_scored=len(scored),
            papers_used=len(relevant),
            references=references,
            ris=generate_ris(references),
            tokens=TokenUsage.from_counts(input_tokens, output_tokens),
        )

    def _search(self, question: str, limit: int, cancel: threading.Event | None) -> SearchResult:
        try:
            return call_with_cancel(
                lambda: self.literature.search(question, limit, cancel=cancel),
                cancel,
                "search",
            )
        except CancellationError:
            raise
        except Exception as exc:
            raise RetrievalFailedError(str(exc), stage="search") from exc

    def _fetch(self, ids: list[str], cancel: threading.Event | None) -> list[Paper]:
        try:
            papers = call_with_cancel(lambda: self.literature.fetch(ids, cancel=cancel), cancel, "fetch")
        except CancellationError:
            raise
        except Exception as exc:
            raise RetrievalFailedError(str(exc), stage="fetch") from exc

        # At most one record per PMID and never more records than ids requested.
        unique: dict[str, Paper] = {}
        for paper in papers:
            unique.setdefault(paper.paper_id, paper)
        kept = list(unique.values())[: len(ids)]
        if len(kept) < len(papers):
            LOGGER.warning("Fetch returned %s records for %s ids; kept %s", len(papers), len(ids), len(kept))
        return kept

    def _score_papers(
        self,
        question: str,
        papers: Sequence[Paper],
        cancel: threading.Event | None,
    ) -> tuple[list[ScoredPaper], TokenCount]:
        """Score papers sequentially; a failed paper gets a neutral 5.

        Cancellation always propagates. If every paper fails, the first
        underlying error is surfaced as AllScoringFailedError.
        """
        total = len(papers)
        scored: list[ScoredPaper] = []
        input_tokens = 0
        output_tokens = 0
        error_count = 0
        first_error: Exception | None = None

        for index, paper in enumerate(papers):
            message = f"Scoring paper {index + 1}/{total} for relevance..."
            self._report(ProgressPhase.SCORE, message, current=index, total=total)

            raise_if_cancelled(cancel, "score")
            try:
                score, tokens = score_relevance(self.llm, question, paper, cancel=cancel)
            except CancellationError:
                raise
            except Exception as exc:
                raise_if_cancelled(cancel, "score")
                error_count += 1
                if first_error is None:
                    first_error = exc
                LOGGER.warning("Relevance scoring failed for paper_id=%s: %s", paper.paper_id, exc)
                score, tokens = DEFAULT_SCORE, TokenCount()

            input_tokens += tokens.input
            output_tokens += tokens.output
            scored.append(ScoredPaper(paper=paper, relevance_score=score))
            self._report(ProgressPhase.SCORE, message, current=index + 1, total=total)

        if total and error_count == total:
            raise AllScoringFailedError(error_count, first_error) from first_error

        LOGGER.info("Scored %s papers (%s failures)", total, error_count)
        return scored, TokenCount(input=input_tokens, output=output_tokens)

    def _compose(
        self,
        question: str,
        relevant: Sequence[ScoredPaper],
        cancel: threading.Event | None,
    ) -> tuple[str, TokenCount]:
        blocks: list[str] = []
        cite_keys: list[str] = []
        for index, sp in enumerate(relevant, start=1):
            cite_key = in_text_cite_key(sp.paper)
            cite_keys.append(cite_key)
            abstract = truncate(sp.paper.abstract or "(no abstract available)", SYNTHESIS_ABSTRACT_CHARS)
            blocks.append(
                f"[{index}] {cite_key} ({sp.paper.paper_id})\n"
                f"Title: {sp.paper.title}\n"
                f"Abstract: {abstract}\n"
            )

        prompt = _SYNTHESIS_PROMPT.format(
            question=question,
            papers="\n---\n".join(blocks),
            target_words=self.config.target_words,
            cite_keys="; ".join(cite_keys),
        )
        synthesis = self._complete(prompt, self.config.target_words * 3, cancel)
        return synthesis, TokenCount(input=len(prompt) // 4, output=len(synthesis) // 4)

    def _complete(self, prompt: str, max_tokens: int, cancel: threading.Event | None) -> str:
        try:
            reply = call_with_cancel(
                lambda: self.llm.complete(prompt, max_tokens, cancel=cancel),
                cancel,
                "synthesis",
            )
        except CancellationError:
            raise
        except Exception as exc:
            raise CompletionFailedError(str(exc), stage="synthesis") from exc

        reply = (reply or "").strip()
        if not reply:
            raise EmptySynthesisError("completion service returned an empty synthesis", stage="synthesis")
        return reply

    # ------------------------------------------------------------------
    # Single-paper deep dive
    # ------------------------------------------------------------------

    def synthesize_pmid(self, pmid: str, cancel: threading.Event | None = None) -> SynthesisResult:
        """Summarize one paper (objective, methods, findings, implications)."""
        self._validate()
        pmid = pmid.strip()
        if not pmid:
            raise InvalidInputError("pmid is required", stage="validate")

        self._report(ProgressPhase.FETCH, f"Fetching PMID {pmid}...")
        papers = self._fetch([pmid], cancel)
        if not papers:
            raise FetchEmptyError(f"article not found: {pmid}", stage="fetch")

        paper = papers[0]
        scored = ScoredPaper(paper=paper, relevance_score=DEEP_DIVE_RELEVANCE)
        references = build_references([scored])

        title = paper.title.strip() or "(no title available)"
        abstract = truncate(paper.abstract.strip() or "(no abstract available)", DEEP_DIVE_ABSTRACT_CHARS)
        prompt = _DEEP_DIVE_PROMPT.format(
            target_words=self.config.target_words,
            title=title,
            abstract=abstract,
            cite_key=in_text_cite_key(paper),
        )

        self._report(ProgressPhase.SYNTHESIS, "Generating summary...")
        summary = self._complete(prompt, self.config.target_words * 2, cancel)

        self._report(ProgressPhase.CITATION_EXPORT, "Generating RIS...")
        return SynthesisResult(
            question=f"Deep dive: PMID {pmid}",
            synthesis=summary,
            papers_searched=1,
            papers_scored=1,
            papers_used=1,
            references=references,
            ris=generate_ris(references),
            tokens=TokenUsage.from_counts(len(prompt) // 4, len(summary) // 4),
        )


def select_relevant(scored: Sequence[ScoredPaper], threshold: int, limit: int) -> list[ScoredPaper]:
    """Keep scores >= threshold, best first (fetch order breaks ties), capped at limit."""
    relevant = [sp for sp in scored if sp.relevance_score >= threshold]
    relevant.sort(key=lambda sp: sp.relevance_score, reverse=True)
    return relevant[:limit]
