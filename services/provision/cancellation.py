"""Cooperative cancellation shared between the CLI, downloads and the launcher."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from services.provision.models import OperationCancelled

_LOGGER = logging.getLogger(__name__)

__all__ = ["CancelToken"]


class CancelToken:
    """Thread-safe, one-shot cancellation signal.

    Callbacks registered with :meth:`add_callback` run exactly once, on the
    thread that calls :meth:`cancel`.  They are used to close sockets that a
    worker thread may be blocked on, so a cancelled transfer aborts promptly
    instead of waiting for the next chunk.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason or "Operation cancelled"
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        _LOGGER.debug("Cancellation requested: %s", self._reason)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                _LOGGER.debug("Cancellation callback %r failed", callback, exc_info=True)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it.

        When the token is already cancelled the callback runs immediately.
        """

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason or "Operation cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def child(self) -> "CancelToken":
        """Return a token that is cancelled whenever this one is."""

        linked = CancelToken()
        unregister = self.add_callback(lambda: linked.cancel(self._reason))
        linked.add_callback(unregister)
        return linked

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass
