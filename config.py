"""Engine configuration values, passed explicitly to each engine constructor."""

from __future__ import annotations

import os
from dataclasses import dataclass

from errors import InvalidConfigError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class SynthesisConfig:
    papers_to_use: int = 5
    papers_to_search: int = 30
    relevance_threshold: int = 7
    target_words: int = 250

    def validate(self) -> None:
        if self.papers_to_use < 1:
            raise InvalidConfigError("papers_to_use must be >= 1")
        if self.papers_to_search < 1:
            raise InvalidConfigError("papers_to_search must be >= 1")
        if self.target_words < 1:
            raise InvalidConfigError("target_words must be >= 1")
        if not 1 <= self.relevance_threshold <= 10:
            raise InvalidConfigError("relevance_threshold must be 1-10")

    @classmethod
    def from_env(cls) -> SynthesisConfig:
        """Build a config from SYNTH_* environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            papers_to_use=_env_int("SYNTH_PAPERS", defaults.papers_to_use),
            papers_to_search=_env_int("SYNTH_SEARCH", defaults.papers_to_search),
            relevance_threshold=_env_int("SYNTH_RELEVANCE", defaults.relevance_threshold),
            target_words=_env_int("SYNTH_WORDS", defaults.target_words),
        )


@dataclass(frozen=True, slots=True)
class QAConfig:
    """Adaptive answering knobs.

    Force flags take precedence over the confidence threshold; when both are
    set, retrieval wins.
    """

    confidence_threshold: int = 7
    force_retrieval: bool = False
    force_parametric: bool = False
    max_results: int = 3

    def validate(self) -> None:
        if not 1 <= self.confidence_threshold <= 10:
            raise InvalidConfigError("confidence_threshold must be 1-10")
        if self.max_results < 1:
            raise InvalidConfigError("max_results must be >= 1")

    @classmethod
    def from_env(cls) -> QAConfig:
        defaults = cls()
        return cls(
            confidence_threshold=_env_int("QA_CONFIDENCE_THRESHOLD", defaults.confidence_threshold),
            force_retrieval=_env_bool("QA_FORCE_RETRIEVAL"),
            force_parametric=_env_bool("QA_FORCE_PARAMETRIC"),
            max_results=_env_int("QA_MAX_RESULTS", defaults.max_results),
        )
