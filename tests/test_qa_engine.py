"""Tests for AdaptiveAnswerEngine against in-memory collaborators."""

from __future__ import annotations

import threading
import time
from typing import Callable, Sequence

import pytest

from config import QAConfig
from errors import (
    CancellationError,
    CompletionFailedError,
    InvalidConfigError,
    InvalidInputError,
    RetrievalFailedError,
)
from models import Paper, SearchResult, Strategy
from qa_engine import AdaptiveAnswerEngine, build_evidence_block, parse_confidence_reply

_PLAIN_QUESTION = "Does aspirin reduce the risk of colorectal cancer?"
_NOVEL_QUESTION = "According to a 2025 study, does semaglutide reduce alcohol intake?"

_PAPERS = [
    Paper(paper_id="111", title="Title A", abstract="Aspirin use was associated with lower risk."),
    Paper(paper_id="222", title="Title B", abstract="No difference was found in the placebo arm."),
]


class FakeLLM:
    def __init__(self, replies: Sequence[str | Exception] = ()) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, int]] = []

    def complete(self, prompt: str, max_tokens: int, cancel=None) -> str:
        self.calls.append((prompt, max_tokens))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeLiterature:
    def __init__(
        self,
        papers: Sequence[Paper] = (),
        search_error: Exception | None = None,
        fetch_error: Exception | None = None,
    ) -> None:
        self.papers = list(papers)
        self.search_error = search_error
        self.fetch_error = fetch_error
        self.searches: list[tuple[str, int]] = []
        self.fetches: list[list[str]] = []

    def search(self, query, limit, min_year=None, max_year=None, sort=None, cancel=None) -> SearchResult:
        self.searches.append((query, limit))
        if self.search_error:
            raise self.search_error
        ids = tuple(p.paper_id for p in self.papers)[:limit]
        return SearchResult(ids=ids, total_count=len(ids))

    def fetch(self, ids, cancel=None) -> list[Paper]:
        self.fetches.append(list(ids))
        if self.fetch_error:
            raise self.fetch_error
        return [p for p in self.papers if p.paper_id in ids]


def _engine(llm: FakeLLM, literature: FakeLiterature, **config) -> AdaptiveAnswerEngine:
    return AdaptiveAnswerEngine(llm, literature, QAConfig(**config))


@pytest.mark.parametrize("reply, expected", [
    ("CONFIDENCE: 8\nANSWER: yes", ("yes", 8)),
    ("CONFIDENCE (1-10): 6\nANSWER (yes/no): no", ("no", 6)),
    ("confidence: 15\nanswer: no", ("no", 10)),
    ("CONFIDENCE: 0\nANSWER: yes", ("yes", 1)),
    ("ANSWER: no", ("no", 5)),
    ("I think yes", ("yes", 5)),
])
def test_parse_confidence_reply(reply: str, expected: tuple[str, int]) -> None:
    assert parse_confidence_reply(reply) == expected


def test_build_evidence_block() -> None:
    block = build_evidence_block(_PAPERS)

    assert block == (
        "**Title A**\nAspirin use was associated with lower risk.\n\n"
        "**Title B**\nNo difference was found in the placebo arm."
    )


def test_confident_question_is_answered_parametrically() -> None:
    llm = FakeLLM(["CONFIDENCE: 9\nANSWER: yes"])
    literature = FakeLiterature(_PAPERS)

    result = _engine(llm, literature).answer(_PLAIN_QUESTION)

    assert result.answer == "yes"
    assert result.strategy is Strategy.PARAMETRIC
    assert result.confidence == 9
    assert result.novel_detected is False
    assert literature.searches == []
    assert len(llm.calls) == 1


def test_low_confidence_falls_back_to_retrieval() -> None:
    llm = FakeLLM(["CONFIDENCE: 3\nANSWER: no", "Yes, the evidence supports it."])
    literature = FakeLiterature(_PAPERS)

    result = _engine(llm, literature).answer(_PLAIN_QUESTION)

    assert result.answer == "yes"
    assert result.strategy is Strategy.RETRIEVAL
    assert result.confidence == 3
    assert result.source_ids == ("111", "222")
    assert "**Title A**" in result.minified_context
    assert literature.searches == [("aspirin reduce the risk of colorectal cancer", 3)]
    assert "Evidence from PubMed" in llm.calls[1][0]


def test_novel_question_skips_confidence_check() -> None:
    llm = FakeLLM(["no"])
    literature = FakeLiterature(_PAPERS)

    result = _engine(llm, literature, max_results=1).answer(_NOVEL_QUESTION)

    assert result.novel_detected is True
    assert result.strategy is Strategy.RETRIEVAL
    assert result.answer == "no"
    assert result.confidence == 0
    assert result.source_ids == ("111",)
    assert literature.searches == [("semaglutide reduce alcohol intake", 1)]
    assert len(llm.calls) == 1
    assert "confidence" not in result.to_dict()


def test_forced_parametric_never_searches() -> None:
    llm = FakeLLM(["No."])
    literature = FakeLiterature(_PAPERS)

    result = _engine(llm, literature, force_parametric=True).answer(_PLAIN_QUESTION)

    assert result.answer == "no"
    assert result.strategy is Strategy.PARAMETRIC
    assert literature.searches == []


def test_both_force_flags_prefer_retrieval() -> None:
    llm = FakeLLM(["yes"])
    literature = FakeLiterature(_PAPERS)

    result = _engine(llm, literature, force_retrieval=True, force_parametric=True).answer(_PLAIN_QUESTION)

    assert result.strategy is Strategy.RETRIEVAL
    assert len(literature.searches) == 1


def test_zero_hits_answers_without_evidence() -> None:
    llm = FakeLLM(["yes"])
    literature = FakeLiterature([])

    result = _engine(llm, literature, force_retrieval=True).answer(_PLAIN_QUESTION)

    assert result.answer == "yes"
    assert result.strategy is Strategy.RETRIEVAL
    assert result.source_ids == ()
    assert result.minified_context is None
    assert literature.fetches == []


def test_search_failure_is_retrieval_failed() -> None:
    cause = ConnectionError("eutils down")
    literature = FakeLiterature(_PAPERS, search_error=cause)

    with pytest.raises(RetrievalFailedError) as excinfo:
        _engine(FakeLLM(), literature, force_retrieval=True).answer(_PLAIN_QUESTION)

    assert excinfo.value.stage == "search"
    assert excinfo.value.__cause__ is cause


def test_fetch_failure_is_retrieval_failed() -> None:
    literature = FakeLiterature(_PAPERS, fetch_error=TimeoutError("slow"))

    with pytest.raises(RetrievalFailedError) as excinfo:
        _engine(FakeLLM(), literature, force_retrieval=True).answer(_PLAIN_QUESTION)

    assert excinfo.value.stage == "fetch"


def test_completion_failure_is_wrapped() -> None:
    llm = FakeLLM([RuntimeError("quota exceeded")])

    with pytest.raises(CompletionFailedError, match="quota exceeded") as excinfo:
        _engine(llm, FakeLiterature(_PAPERS)).answer(_PLAIN_QUESTION)

    assert excinfo.value.stage == "confidence check"


def test_collaborator_cancellation_propagates_unchanged() -> None:
    llm = FakeLLM([CancellationError("stopped")])

    with pytest.raises(CancellationError):
        _engine(llm, FakeLiterature(_PAPERS)).answer(_PLAIN_QUESTION)


def test_cancelled_before_start_makes_no_calls() -> None:
    llm = FakeLLM(["yes"])
    literature = FakeLiterature(_PAPERS)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(CancellationError):
        _engine(llm, literature).answer(_PLAIN_QUESTION, cancel=cancel)

    assert llm.calls == []
    assert literature.searches == []


@pytest.mark.parametrize("build", [
    lambda: AdaptiveAnswerEngine(None, FakeLiterature()),
    lambda: AdaptiveAnswerEngine(FakeLLM(), None),
])
def test_missing_collaborator_is_invalid_input(build: Callable[[], AdaptiveAnswerEngine]) -> None:
    with pytest.raises(InvalidInputError):
        build().answer(_PLAIN_QUESTION)


def test_blank_question_is_invalid_input() -> None:
    with pytest.raises(InvalidInputError):
        _engine(FakeLLM(), FakeLiterature()).answer("   ")


def test_invalid_config_is_rejected_before_any_call() -> None:
    llm = FakeLLM(["yes"])

    with pytest.raises(InvalidConfigError):
        _engine(llm, FakeLiterature(), confidence_threshold=0).answer(_PLAIN_QUESTION)

    assert llm.calls == []


def test_cancel_interrupts_a_running_search() -> None:
    class SlowLiterature(FakeLiterature):
        def search(self, query, limit, min_year=None, max_year=None, sort=None, cancel=None) -> SearchResult:
            time.sleep(2.0)
            return super().search(query, limit)

    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    engine = _engine(FakeLLM(["yes"]), SlowLiterature(_PAPERS), force_retrieval=True)

    started = time.monotonic()
    timer.start()
    try:
        with pytest.raises(CancellationError) as excinfo:
            engine.answer(_PLAIN_QUESTION, cancel=cancel)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 1.0
    assert excinfo.value.stage == "search"
