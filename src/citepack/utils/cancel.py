"""Cooperative cancellation shared between a job and its network calls."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from citepack.errors import Cancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """A one-way cancel flag with abort callbacks.

    Long-running calls register a callback (typically cancelling the task
    that runs an HTTP request) so that cancelling also aborts requests
    already in flight.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Abort callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an abort callback; returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                key = self._next_id
                self._next_id += 1
                self._callbacks[key] = callback

                def unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(key, None)

                return unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self, error: type[Cancelled] = Cancelled, message: str = "Cancelled.") -> None:
        if self._event.is_set():
            raise error(message)

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def never_cancelled() -> CancelToken:
    """A fresh token nobody holds a reference to cancel."""
    return CancelToken()
