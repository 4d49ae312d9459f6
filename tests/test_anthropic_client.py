import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

import anthropic_client
from errors import CancellationError
from anthropic_client import AnthropicCompletionService


def _mock_client(*blocks: SimpleNamespace) -> MagicMock:
    mock_client = MagicMock()
    mock_client.messages.create.return_value = SimpleNamespace(content=list(blocks))
    return mock_client


def test_complete_joins_text_blocks() -> None:
    mock_client = _mock_client(
        SimpleNamespace(type="text", text=" CONFIDENCE: 8\n"),
        SimpleNamespace(type="tool_use", text="ignored"),
        SimpleNamespace(type="text", text="ANSWER: yes "),
    )

    with patch("anthropic_client.anthropic.Anthropic", return_value=mock_client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        reply = AnthropicCompletionService(model="claude-test").complete("Question?", 50)

    assert reply == "CONFIDENCE: 8\nANSWER: yes"
    mock_client.messages.create.assert_called_once_with(
        model="claude-test",
        max_tokens=50,
        messages=[{"role": "user", "content": "Question?"}],
        timeout=anthropic_client.CLAUDE_TIMEOUT_SECONDS,
    )


def test_model_read_from_environment() -> None:
    env = {"ANTHROPIC_API_KEY": "test-key", "CLAUDE_MODEL": "claude-from-env"}

    with patch("anthropic_client.anthropic.Anthropic", return_value=_mock_client()), \
         patch.dict("os.environ", env, clear=True):
        service = AnthropicCompletionService()

    assert service.model == "claude-from-env"


def test_missing_api_key_raises() -> None:
    with patch.dict("os.environ", {}, clear=True), \
         pytest.raises(RuntimeError, match="ANTHROPIC_API_KEY"):
        AnthropicCompletionService()


def test_empty_reply_raises() -> None:
    mock_client = _mock_client(SimpleNamespace(type="text", text="   "))

    with patch("anthropic_client.anthropic.Anthropic", return_value=mock_client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        with pytest.raises(RuntimeError, match="empty response"):
            AnthropicCompletionService().complete("Question?", 10)


def test_empty_prompt_is_rejected() -> None:
    mock_client = _mock_client()

    with patch("anthropic_client.anthropic.Anthropic", return_value=mock_client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        with pytest.raises(RuntimeError, match="prompt"):
            AnthropicCompletionService().complete("", 10)

    mock_client.messages.create.assert_not_called()


def test_cancelled_before_request_makes_no_call() -> None:
    mock_client = _mock_client(SimpleNamespace(type="text", text="yes"))
    cancel = threading.Event()
    cancel.set()

    with patch("anthropic_client.anthropic.Anthropic", return_value=mock_client), \
         patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        with pytest.raises(CancellationError):
            AnthropicCompletionService().complete("Question?", 10, cancel=cancel)

    mock_client.messages.create.assert_not_called()
