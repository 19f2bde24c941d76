"""Cancellation signal shared between an importer and its remote calls."""

from __future__ import annotations

import threading

from .errors import OperationCancelledError


class CancellationToken:
    """Thread-safe, one-shot cancellation flag.

    Remote transports poll `is_cancelled` (or call `raise_if_cancelled`)
    around blocking calls; importers check it between protocol steps.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, identifier: str | None = None) -> None:
        if self._event.is_set():
            raise OperationCancelledError(
                f"Import of '{identifier or '<unknown>'}' was cancelled", identifier
            )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout; returns True if cancelled."""
        return self._event.wait(timeout)
