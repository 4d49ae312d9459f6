"""OpenAI-compatible text completion service."""

from __future__ import annotations

import logging
import os
import threading

from openai import OpenAI

from services import raise_if_cancelled

OPENAI_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
OPENAI_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.1"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

LOGGER = logging.getLogger(__name__)


class OpenAICompletionService:
    """TextCompletionService backed by the OpenAI Chat Completions API.

    LLM_BASE_URL points the client at any OpenAI-compatible server. The key
    is read from LLM_API_KEY, falling back to OPENAI_API_KEY.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        temperature: float | None = None,
    ) -> None:
        api_key = api_key or os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is required")

        self.model = model or OPENAI_MODEL
        self.temperature = OPENAI_TEMPERATURE if temperature is None else temperature
        self.client = OpenAI(api_key=api_key, base_url=base_url or os.getenv("LLM_BASE_URL") or None)

    def complete(self, prompt: str, max_tokens: int, cancel: threading.Event | None = None) -> str:
        """Send one user prompt and return the stripped reply text.

        A reply that arrives after cancel was set is discarded.
        """
        if not prompt.strip():
            raise RuntimeError("prompt must not be empty")
        raise_if_cancelled(cancel, "completion")

        LOGGER.debug("Calling OpenAI model=%s max_tokens=%s prompt_chars=%s", self.model, max_tokens, len(prompt))
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_completion_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            timeout=LLM_TIMEOUT_SECONDS,
        )
        raise_if_cancelled(cancel, "completion")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise RuntimeError("OpenAI returned an empty response")
        return content.strip()
