"""Narrow collaborator interfaces consumed by the engines."""

from __future__ import annotations

import threading
from concurrent import futures
from typing import Callable, Protocol, Sequence, TypeVar

from errors import CancellationError
from models import Paper, ProgressUpdate, SearchResult

ProgressCallback = Callable[[ProgressUpdate], None]

CANCEL_POLL_SECONDS = 0.05

T = TypeVar("T")


class TextCompletionService(Protocol):
    def complete(self, prompt: str, max_tokens: int, cancel: threading.Event | None = None) -> str:
        """Return the full decoded text reply for prompt."""
        ...


class LiteratureSource(Protocol):
    def search(
        self,
        query: str,
        limit: int,
        min_year: int | None = None,
        max_year: int | None = None,
        sort: str | None = None,
        cancel: threading.Event | None = None,
    ) -> SearchResult:
        ...

    def fetch(self, ids: Sequence[str], cancel: threading.Event | None = None) -> list[Paper]:
        ...


def raise_if_cancelled(cancel: threading.Event | None, stage: str) -> None:
    """Raise CancellationError when the caller has set the cancel event."""
    if cancel is not None and cancel.is_set():
        raise CancellationError("operation cancelled", stage=stage)


def call_with_cancel(fn: Callable[[], T], cancel: threading.Event | None, stage: str) -> T:
    """Run one external call, giving up on it as soon as cancel is set.

    Without an event the call runs inline. With one, it runs on a daemon
    worker and the caller polls; a call abandoned on cancellation finishes
    in the background and its result is discarded.
    """
    raise_if_cancelled(cancel, stage)
    if cancel is None:
        return fn()

    future: futures.Future = futures.Future()

    def run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except BaseException as exc:
            future.set_exception(exc)

    threading.Thread(target=run, name=f"call-{stage}", daemon=True).start()
    while True:
        done, _ = futures.wait([future], timeout=CANCEL_POLL_SECONDS)
        if done:
            return future.result()
        raise_if_cancelled(cancel, stage)
