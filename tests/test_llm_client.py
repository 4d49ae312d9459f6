import threading
from unittest.mock import MagicMock, patch

import pytest

import llm_client
from errors import CancellationError
from llm_client import OpenAICompletionService


def _mock_client(content: str | None) -> MagicMock:
    mock_choice = MagicMock()
    mock_choice.message.content = content
    mock_response = MagicMock()
    mock_response.choices = [mock_choice]

    mock_client = MagicMock()
    mock_client.chat.completions.create.return_value = mock_response
    return mock_client


def test_complete_returns_stripped_reply() -> None:
    mock_client = _mock_client("  8\n")

    with patch("llm_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        reply = OpenAICompletionService(model="gpt-test").complete("Rate this paper", 10)

    assert reply == "8"
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["max_completion_tokens"] == 10
    assert kwargs["messages"] == [{"role": "user", "content": "Rate this paper"}]


def test_default_model_comes_from_module_constant() -> None:
    with patch("llm_client.OpenAI", return_value=_mock_client("ok")), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        service = OpenAICompletionService()

    assert service.model == llm_client.OPENAI_MODEL


def test_missing_api_key_raises() -> None:
    with patch.dict("os.environ", {}, clear=True), \
         pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        OpenAICompletionService()


def test_llm_api_key_and_base_url_are_used() -> None:
    env = {"LLM_API_KEY": "llm-key", "OPENAI_API_KEY": "openai-key", "LLM_BASE_URL": "http://localhost:8000/v1"}

    with patch("llm_client.OpenAI", return_value=_mock_client("ok")) as mock_openai, \
         patch.dict("os.environ", env, clear=True):
        OpenAICompletionService()

    mock_openai.assert_called_once_with(api_key="llm-key", base_url="http://localhost:8000/v1")


def test_empty_prompt_is_rejected() -> None:
    mock_client = _mock_client("ok")

    with patch("llm_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        service = OpenAICompletionService()
        with pytest.raises(RuntimeError, match="prompt"):
            service.complete("   ", 10)

    mock_client.chat.completions.create.assert_not_called()


@pytest.mark.parametrize("content", [None, "", "  \n"])
def test_empty_reply_raises(content: str | None) -> None:
    with patch("llm_client.OpenAI", return_value=_mock_client(content)), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        with pytest.raises(RuntimeError, match="empty response"):
            OpenAICompletionService().complete("Question?", 10)


def test_request_timeout_is_bounded() -> None:
    mock_client = _mock_client("yes")

    with patch("llm_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        OpenAICompletionService().complete("Question?", 10)

    assert mock_client.chat.completions.create.call_args.kwargs["timeout"] == llm_client.LLM_TIMEOUT_SECONDS


def test_cancelled_before_request_makes_no_call() -> None:
    mock_client = _mock_client("yes")
    cancel = threading.Event()
    cancel.set()

    with patch("llm_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        with pytest.raises(CancellationError):
            OpenAICompletionService().complete("Question?", 10, cancel=cancel)

    mock_client.chat.completions.create.assert_not_called()


def test_reply_arriving_after_cancel_is_discarded() -> None:
    mock_client = _mock_client("yes")
    cancel = threading.Event()
    reply = mock_client.chat.completions.create.return_value

    def cancelled_while_waiting(**kwargs):
        cancel.set()
        return reply

    mock_client.chat.completions.create.side_effect = cancelled_while_waiting

    with patch("llm_client.OpenAI", return_value=mock_client), \
         patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        with pytest.raises(CancellationError):
            OpenAICompletionService().complete("Question?", 10, cancel=cancel)
