"""LLM-backed relevance scoring of papers against a research question."""

from __future__ import annotations

import logging
import re
import threading

from errors import InvalidInputError
from models import Paper, TokenCount
from services import TextCompletionService, call_with_cancel
from text_utils import truncate

LOGGER = logging.getLogger(__name__)

DEFAULT_SCORE = 5
RELEVANCE_MAX_TOKENS = 10
ABSTRACT_CHARS_FOR_SCORING = 500

# First whole-word 1-10. "15" has no match, but "-3" still yields 3.
_SCORE_PATTERN = re.compile(r"\b(10|[1-9])\b")

_RELEVANCE_PROMPT = """Rate how relevant this paper is to the research question.

Question: {question}

Paper Title: {title}
Abstract: {abstract}

Rate relevance from 1-10 where:
1-3 = Not relevant (different topic, population, or scope)
4-6 = Somewhat relevant (related but not directly addressing the question)
7-9 = Highly relevant (directly addresses the question)
10 = Perfect match (exactly what the question asks about)

Respond with only the number (1-10):"""


def parse_score(response: str) -> int:
    """Extract the first whole-word integer 1-10 from model text; 5 if none."""
    match = _SCORE_PATTERN.search(response.strip())
    if match:
        score = int(match.group(1))
        if 1 <= score <= 10:
            return score
    return DEFAULT_SCORE


def estimate_tokens(prompt: str, reply: str) -> TokenCount:
    """Crude ~4 chars/token estimate; at least one output token for the score."""
    return TokenCount(input=len(prompt) // 4, output=max(len(reply) // 4, 1))


def build_relevance_prompt(question: str, paper: Paper) -> str:
    return _RELEVANCE_PROMPT.format(
        question=question,
        title=paper.title,
        abstract=truncate(paper.abstract, ABSTRACT_CHARS_FOR_SCORING),
    )


def score_relevance(
    llm: TextCompletionService | None,
    question: str,
    paper: Paper | None,
    cancel: threading.Event | None = None,
) -> tuple[int, TokenCount]:
    """Ask the completion service to rate paper against question.

    Completion errors propagate unchanged; no default score is substituted
    here, the caller owns that policy.
    """
    if llm is None:
        raise InvalidInputError("completion service is required", stage="score")
    if paper is None:
        raise InvalidInputError("paper is required", stage="score")

    prompt = build_relevance_prompt(question, paper)
    reply = call_with_cancel(
        lambda: llm.complete(prompt, RELEVANCE_MAX_TOKENS, cancel=cancel),
        cancel,
        "score",
    )
    score = parse_score(reply)
    LOGGER.debug("Relevance reply for paper_id=%s: %r -> %s", paper.paper_id, reply, score)
    return score, estimate_tokens(prompt, reply)
