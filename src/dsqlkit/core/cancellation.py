"""
Deadline and cancellation for blocking startup work.

A Deadline bounds the whole bootstrap-and-migrate sequence. Retry backoff
sleeps wait on it, so expiry or an explicit cancel() interrupts them instead
of letting a retry storm hang the process.
"""

import threading
import time
from typing import Optional


class Deadline:
    """Thread-safe cancellation signal with an optional time limit.

    Usage:
        deadline = Deadline(timeout_seconds=120.0)
        executor.execute(op, cancel=deadline)

        # From another thread (e.g. a signal handler)
        deadline.cancel("shutdown requested")
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        clock=time.monotonic,
    ) -> None:
        """Initialize the deadline.

        Args:
            timeout_seconds: Seconds until expiry. None means no time limit.
            clock: Monotonic clock, injectable for tests.
        """
        self._clock = clock
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._expires_at = (
            clock() + timeout_seconds if timeout_seconds is not None else None
        )

    @property
    def reason(self) -> Optional[str]:
        """Why the deadline fired, if it has."""
        if self._reason is None and self.expired:
            return "deadline expired"
        return self._reason

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    @property
    def is_cancelled(self) -> bool:
        """True once cancel() was called or the time limit passed."""
        return self._event.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry, or None without a time limit."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the deadline now and wake any waiter."""
        if self._reason is None:
            self._reason = reason
        self._event.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``.

        Returns:
            True if the deadline fired before or during the wait.
        """
        remaining = self.remaining()
        if remaining is not None and remaining <= seconds:
            self._event.wait(remaining)
            return True
        if self._event.wait(seconds):
            return True
        return self.is_cancelled
