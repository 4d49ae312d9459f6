"""Adaptive retrieval for biomedical yes/no questions.

The engine answers from the model's own knowledge when it is confident and
the question carries no recency cues, and otherwise searches the literature,
minifies the retrieved abstracts, and answers against that evidence.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import replace

from config import QAConfig
from errors import CancellationError, CompletionFailedError, InvalidInputError, RetrievalFailedError
from models import Paper, QAResult, SearchResult, Strategy
from novelty import expand_query, is_novel
from services import LiteratureSource, TextCompletionService, call_with_cancel
from text_utils import minify_abstract

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 5
EVIDENCE_ABSTRACT_CHARS = 400
CONFIDENCE_MAX_TOKENS = 50
ANSWER_MAX_TOKENS = 10

_DIGITS = re.compile(r"\d+")

_CONFIDENCE_PROMPT = """Answer this biomedical question.
CONFIDENCE (1-10):
ANSWER (yes/no):

Question: {question}"""

_PARAMETRIC_PROMPT = "Answer yes or no: {question}\nANSWER:"

_EVIDENCE_PROMPT = """Question: {question}

Evidence from PubMed:
{evidence}

Based on this evidence, answer yes or no.
ANSWER:"""


def parse_yes_no(reply: str) -> str:
    return "yes" if "yes" in reply.lower() else "no"


def parse_confidence_reply(reply: str) -> tuple[str, int]:
    """Parse the two-field confidence reply into (yes/no lean, confidence 1-10).

    The lean comes from the ANSWER line when present, otherwise from the
    whole reply. Confidence defaults to 5 when no number follows the
    CONFIDENCE label.
    """
    lower = reply.lower()
    confidence: int | None = None
    answer_value: str | None = None

    for line in lower.splitlines():
        if ":" not in line:
            continue
        label, _, value = line.rpartition(":")
        if "confidence" in label and confidence is None:
            match = _DIGITS.search(value)
            confidence = min(max(int(match.group(0)), 1), 10) if match else DEFAULT_CONFIDENCE
        elif "answer" in label and answer_value is None:
            answer_value = value

    lean = parse_yes_no(answer_value if answer_value is not None else lower)
    return lean, confidence if confidence is not None else DEFAULT_CONFIDENCE


def build_evidence_block(papers: list[Paper]) -> str:
    """Concatenate titled, minified abstracts into one evidence block."""
    parts = [
        f"**{paper.title}**\n{minify_abstract(paper.abstract, EVIDENCE_ABSTRACT_CHARS)}"
        for paper in papers
    ]
    return "\n\n".join(parts)


class AdaptiveAnswerEngine:
    """Decides between a parametric answer and a literature-backed one."""

    def __init__(
        self,
        llm: TextCompletionService | None,
        literature: LiteratureSource | None,
        config: QAConfig | None = None,
    ) -> None:
        self.llm = llm
        self.literature = literature
        self.config = config or QAConfig()

    def answer(self, question: str, cancel: threading.Event | None = None) -> QAResult:
        """Answer a yes/no question, retrieving evidence only when needed.

        Raises:
            InvalidInputError: empty question, missing collaborator, or bad config.
            RetrievalFailedError: the literature source raised during search/fetch.
            CompletionFailedError: the completion service raised.
            CancellationError: cancel was set or a collaborator was cancelled.
        """
        self.config.validate()
        if self.llm is None:
            raise InvalidInputError("completion service is required", stage="validate")
        if self.literature is None:
            raise InvalidInputError("literature source is required", stage="validate")

        question = question.strip()
        if not question:
            raise InvalidInputError("question is required", stage="validate")

        result = QAResult(question=question, novel_detected=is_novel(question))

        if self.config.force_retrieval or result.novel_detected:
            LOGGER.info(
                "QA strategy=retrieval (forced=%s novel=%s)",
                self.config.force_retrieval,
                result.novel_detected,
            )
            return self._answer_with_retrieval(replace(result, strategy=Strategy.RETRIEVAL), cancel)

        if self.config.force_parametric:
            LOGGER.info("QA strategy=parametric (forced)")
            return self._answer_parametric(replace(result, strategy=Strategy.PARAMETRIC), cancel)

        lean, confidence = self._check_confidence(question, cancel)
        result = replace(result, confidence=confidence)
        if confidence >= self.config.confidence_threshold:
            LOGGER.info(
                "QA strategy=parametric (confidence=%s threshold=%s)",
                confidence,
                self.config.confidence_threshold,
            )
            return replace(result, strategy=Strategy.PARAMETRIC, answer=lean)

        LOGGER.info(
            "QA strategy=retrieval (confidence=%s below threshold=%s)",
            confidence,
            self.config.confidence_threshold,
        )
        return self._answer_with_retrieval(replace(result, strategy=Strategy.RETRIEVAL), cancel)

    def _complete(self, prompt: str, max_tokens: int, stage: str, cancel: threading.Event | None) -> str:
        try:
            return call_with_cancel(
                lambda: self.llm.complete(prompt, max_tokens, cancel=cancel),
                cancel,
                stage,
            )
        except CancellationError:
            raise
        except Exception as exc:
            raise CompletionFailedError(str(exc), stage=stage) from exc

    def _check_confidence(self, question: str, cancel: threading.Event | None) -> tuple[str, int]:
        reply = self._complete(
            _CONFIDENCE_PROMPT.format(question=question),
            CONFIDENCE_MAX_TOKENS,
            "confidence check",
            cancel,
        )
        return parse_confidence_reply(reply)

    def _answer_parametric(self, result: QAResult, cancel: threading.Event | None) -> QAResult:
        reply = self._complete(
            _PARAMETRIC_PROMPT.format(question=result.question),
            ANSWER_MAX_TOKENS,
            "parametric answer",
            cancel,
        )
        return replace(result, answer=parse_yes_no(reply))

    def _answer_with_retrieval(self, result: QAResult, cancel: threading.Event | None) -> QAResult:
        query = expand_query(result.question) or result.question

        try:
            hits: SearchResult = call_with_cancel(
                lambda: self.literature.search(query, self.config.max_results, cancel=cancel),
                cancel,
                "search",
            )
        except CancellationError:
            raise
        except Exception as exc:
            raise RetrievalFailedError(str(exc), stage="search") from exc

        if not hits.ids:
            # Zero hits is a legitimate outcome: answer without evidence.
            LOGGER.info("QA search returned no hits for query=%r; answering parametrically", query)
            return self._answer_parametric(result, cancel)

        ids = tuple(hits.ids)
        try:
            papers = call_with_cancel(lambda: self.literature.fetch(list(ids), cancel=cancel), cancel, "fetch")
        except CancellationError:
            raise
        except Exception as exc:
            raise RetrievalFailedError(str(exc), stage="fetch") from exc

        evidence = build_evidence_block(papers)
        LOGGER.info("QA retrieved %s papers (%s chars of evidence)", len(papers), len(evidence))

        reply = self._complete(
            _EVIDENCE_PROMPT.format(question=result.question, evidence=evidence),
            ANSWER_MAX_TOKENS,
            "answer",
            cancel,
        )
        return replace(
            result,
            answer=parse_yes_no(reply),
            source_ids=ids,
            minified_context=evidence,
        )
