"""
Cooperative cancellation for in-flight traversals.

A trace checks its token before every store call.  Once the token is
cancelled (explicitly, or because its deadline passed) the tracer stops
issuing fetches and returns what it has assembled so far, flagged
``complete=False``.
"""

import threading
import time


class CancellationToken:
    """Thread-safe cancel flag with an optional monotonic deadline."""

    def __init__(self, deadline: float | None = None):
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        """Token that cancels itself ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

