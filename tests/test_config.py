import pytest

from config import QAConfig, SynthesisConfig
from errors import InvalidConfigError, InvalidInputError

_ENV_VARS = (
    "SYNTH_PAPERS",
    "SYNTH_SEARCH",
    "SYNTH_RELEVANCE",
    "SYNTH_WORDS",
    "QA_CONFIDENCE_THRESHOLD",
    "QA_MAX_RESULTS",
    "QA_FORCE_RETRIEVAL",
    "QA_FORCE_PARAMETRIC",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_synthesis_defaults() -> None:
    cfg = SynthesisConfig()

    assert (cfg.papers_to_use, cfg.papers_to_search, cfg.relevance_threshold, cfg.target_words) == (5, 30, 7, 250)
    cfg.validate()


@pytest.mark.parametrize("overrides", [
    {"papers_to_use": 0},
    {"papers_to_search": 0},
    {"target_words": 0},
    {"relevance_threshold": 0},
    {"relevance_threshold": 11},
])
def test_synthesis_validate_rejects(overrides: dict) -> None:
    with pytest.raises(InvalidConfigError):
        SynthesisConfig(**overrides).validate()


def test_invalid_config_is_invalid_input() -> None:
    with pytest.raises(InvalidInputError):
        QAConfig(confidence_threshold=0).validate()


@pytest.mark.parametrize("overrides", [
    {"confidence_threshold": 0},
    {"confidence_threshold": 11},
    {"max_results": 0},
])
def test_qa_validate_rejects(overrides: dict) -> None:
    with pytest.raises(InvalidConfigError):
        QAConfig(**overrides).validate()


def test_qa_validate_accepts_both_force_flags() -> None:
    QAConfig(force_retrieval=True, force_parametric=True).validate()


def test_synthesis_from_env_defaults() -> None:
    assert SynthesisConfig.from_env() == SynthesisConfig()


def test_synthesis_from_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SYNTH_PAPERS", "8")
    monkeypatch.setenv("SYNTH_WORDS", "400")

    cfg = SynthesisConfig.from_env()

    assert cfg.papers_to_use == 8
    assert cfg.target_words == 400
    assert cfg.papers_to_search == 30


def test_from_env_rejects_non_integer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SYNTH_SEARCH", "lots")

    with pytest.raises(InvalidConfigError, match="SYNTH_SEARCH"):
        SynthesisConfig.from_env()


def test_qa_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QA_CONFIDENCE_THRESHOLD", "9")
    monkeypatch.setenv("QA_FORCE_RETRIEVAL", "yes")
    monkeypatch.setenv("QA_FORCE_PARAMETRIC", "0")

    cfg = QAConfig.from_env()

    assert cfg.confidence_threshold == 9
    assert cfg.force_retrieval is True
    assert cfg.force_parametric is False
    assert cfg.max_results == 3
