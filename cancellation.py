"""Cancellation token shared by timers, workers and network requests."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

REASON_CANCELLED = "cancelled"
REASON_TIMEOUT = "timeout"
REASON_SESSION_CLOSED = "session closed"


class CancelToken:
    """One-shot cancellation flag with callbacks.

    A child token is cancelled together with its parent, with the parent's
    reason. Callbacks registered after cancellation run immediately.
    """

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.reason = ""
        if parent is not None:
            parent.add_callback(lambda: self.cancel(parent.reason))

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = REASON_CANCELLED) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - callbacks only release resources
                logger.exception("cancel callback failed")

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)
