"""
Cooperative cancellation signal shared between the scheduler and fetches.
"""

from __future__ import annotations

import threading
from typing import Callable


class CancelToken:
    """
    One-shot cancellation flag that blocking waits can observe.

    Callbacks registered with ``add_callback`` run exactly once, on the
    thread that calls ``cancel``.
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

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def wait(self, timeout_seconds: float) -> bool:
        """
        Sleep up to ``timeout_seconds``; return True if cancelled meanwhile.
        """

        return self._event.wait(timeout_seconds)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run ``callback`` on cancellation. Returns a function that unregisters it.
        """

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
        callback()
        return lambda: None

    def cancel_after(self, seconds: float, *, reason: str) -> threading.Timer:
        """
        Arm a timer that cancels this token. The caller cancels the timer.
        """

        timer = threading.Timer(seconds, self.cancel, kwargs={"reason": reason})
        timer.daemon = True
        timer.start()
        return timer
