"""Heuristic novelty detection and search-query cleanup (no LLM calls)."""

from __future__ import annotations

import re

# Any year from 2024 onward is likely past the model's training cutoff.
_RECENT_YEAR = re.compile(r"\b(202[4-9]|203\d)\b")

_RECENCY_TERMS: frozenset[str] = frozenset({
    "recent",
    "latest",
    "new study",
    "new research",
    "newly published",
    "this year",
    "last month",
    "just published",
})

# Longest first so "According to a 2025 study," is removed before "According to a".
_PREAMBLES: tuple[str, ...] = (
    "According to a 2025 meta-analysis,",
    "According to a 2025 systematic review,",
    "According to a 2025 RCT,",
    "According to a 2025 study,",
    "According to 2025 studies,",
    "Based on a 2025 meta-analysis,",
    "Based on a 2025 RCT,",
    "Based on 2025 evidence,",
    "Based on 2025 studies,",
    "According to a",
    "Based on a",
    "Based on",
)

_QUESTION_WORDS: tuple[str, ...] = ("does ", "do ", "is ", "can ")

MAX_QUERY_CHARS = 150


def is_novel(question: str) -> bool:
    """Return True if the question likely needs knowledge past the training cutoff.

    Decision logic (string-level only):
    - True: a year token 2024-2039 appears.
    - True: any recency keyword appears, case-insensitively.
    - False: otherwise.
    """
    if _RECENT_YEAR.search(question):
        return True
    lower = question.lower()
    return any(term in lower for term in _RECENCY_TERMS)


def expand_query(question: str) -> str:
    """Turn a natural-language question into a literature search query."""
    query = question
    for preamble in _PREAMBLES:
        query = query.replace(preamble, "", 1)
        query = query.replace(preamble.lower(), "", 1)

    query = query.strip()
    lower = query.lower()
    for word in _QUESTION_WORDS:
        if lower.startswith(word):
            query = query[len(word):]
            break
    query = query.removesuffix("?")

    query = " ".join(query.split())
    return query[:MAX_QUERY_CHARS]
