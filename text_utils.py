"""Budget helpers for evidence text: code-point-safe truncation and abstract minification."""

from __future__ import annotations

import re

TRUNCATION_SUFFIX = "..."

# Sentences shorter than this are treated as fragments and dropped.
_MIN_SENTENCE_CHARS = 20

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+(?:\s+|$)")
_SECTION_LABEL = re.compile(r"^(results?|conclusions?|findings?)\s*:", re.IGNORECASE)
_STATISTIC = re.compile(r"\d+%|\d+\.\d+|95%\s*CI|\b[pP]\s*[<=]")

# Words that tend to mark findings and conclusions in biomedical abstracts.
KEY_TERMS: tuple[str, ...] = (
    "conclusion",
    "result",
    "found",
    "showed",
    "demonstrated",
    "significant",
    "effective",
    "improved",
    "reduced",
    "increased",
    "associated",
    "compared",
    "outcome",
    "accuracy",
    "sensitivity",
    "specificity",
    "pooled",
    "meta-analysis",
)


def truncate(text: str, max_chars: int) -> str:
    """Return text cut to max_chars code points plus "...", or unchanged if it fits.

    No suffix is added when text already fits, so callers can compare the
    result with the input to tell whether truncation happened.
    """
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_SUFFIX


def score_sentence(sentence: str) -> int:
    """Heuristic signal score: key terms, a leading results label, statistics."""
    lower = sentence.lower()
    score = sum(1 for term in KEY_TERMS if term in lower)
    if _SECTION_LABEL.match(sentence):
        score += 3
    if _STATISTIC.search(sentence):
        score += 2
    return score


def minify_abstract(text: str, max_chars: int) -> str:
    """Compress an abstract to its highest-signal sentences within max_chars.

    Sentences are ranked by score_sentence (ties keep their source order)
    and taken greedily until the next one would overflow the budget. When no
    sentence is long enough to count, the abstract is hard-cut to max_chars.
    """
    if not text or len(text) <= max_chars:
        return text
    if max_chars <= 0:
        return ""

    candidates = []
    for raw in _SENTENCE_BOUNDARY.split(text):
        sentence = raw.strip()
        if len(sentence) < _MIN_SENTENCE_CHARS:
            continue
        candidates.append((score_sentence(sentence), sentence))

    ranked = sorted(candidates, key=lambda item: item[0], reverse=True)

    selected: list[str] = []
    total = 0
    for _, sentence in ranked:
        if total + len(sentence) > max_chars:
            break
        selected.append(sentence)
        total += len(sentence) + 2

    if not selected:
        return text[:max_chars]
    return ". ".join(selected) + "."
