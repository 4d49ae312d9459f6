"""Thin wrapper around the Anthropic Messages API."""

from __future__ import annotations

import logging
import os
import threading

import anthropic

from services import raise_if_cancelled

CLAUDE_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

LOGGER = logging.getLogger(__name__)


class AnthropicCompletionService:
    """TextCompletionService backed by Claude via the Anthropic SDK."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise RuntimeError("ANTHROPIC_API_KEY environment variable is required")

        self.model = model or os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5")
        self.client = anthropic.Anthropic(api_key=api_key)

    def complete(self, prompt: str, max_tokens: int, cancel: threading.Event | None = None) -> str:
        """Call the Claude API and return the assistant reply as a string.

        Args:
            prompt: Single user message.
            max_tokens: Hard cap on output tokens.
            cancel: Checked before the request and again before the reply is used.
        """
        if not prompt.strip():
            raise RuntimeError("prompt must not be empty")
        raise_if_cancelled(cancel, "completion")

        LOGGER.debug("Calling Claude model=%s max_tokens=%s", self.model, max_tokens)
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            timeout=CLAUDE_TIMEOUT_SECONDS,
        )
        raise_if_cancelled(cancel, "completion")

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        ).strip()
        if not text:
            raise RuntimeError("Claude returned an empty response")
        return text
