"""Cancel scopes for outbound management API requests.

A scope bounds every request issued inside a ``with cancel_scope(...)`` block:
the retrying transports check it before each attempt and before each backoff
sleep, sleep on it so ``cancel()`` from another thread wakes them up, and clamp
each attempt's socket timeout to the time the scope has left.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Iterator, Optional

import requests


class RequestCancelled(requests.exceptions.RequestException):
    """Request abandoned because its cancel scope was cancelled or expired."""

    pass


class CancelScope:
    """Deadline plus a cancellation flag shared by all attempts of a request"""

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize cancel scope

        Args:
            timeout: Seconds until the scope expires (None = no deadline)
            clock: Monotonic clock, injectable for tests
        """
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must not be negative")
        self._clock = clock
        self._event = threading.Event()
        self._reason = "request cancelled"
        self.deadline = None if timeout is None else clock() + timeout

    def cancel(self, reason: str = "request cancelled") -> None:
        """Cancel the scope; safe to call from any thread"""
        self._reason = reason
        self._event.set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    @property
    def cancelled(self) -> bool:
        """Check if no further attempts may start"""
        return self._event.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def error(self) -> RequestCancelled:
        if self._event.is_set():
            return RequestCancelled(self._reason)
        return RequestCancelled("request deadline exceeded")

    def check(self) -> None:
        """Raise RequestCancelled if the scope is cancelled or expired"""
        if self.cancelled:
            raise self.error()

    def wait(self, delay: float) -> None:
        """Sleep up to ``delay`` seconds, waking early on cancel or deadline"""
        remaining = self.remaining()
        if remaining is not None:
            delay = min(delay, remaining)
        self._event.wait(max(0.0, delay))

    def clamp_timeout(self, timeout: Any) -> Any:
        """Shrink a requests ``timeout`` argument to the time left in the scope

        Floats and (connect, read) tuples are clamped; other timeout objects
        are passed through untouched.
        """
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        if isinstance(timeout, tuple):
            return tuple(remaining if t is None else min(t, remaining) for t in timeout)
        if isinstance(timeout, (int, float)):
            return min(timeout, remaining)
        return timeout


_current_scope: ContextVar[Optional[CancelScope]] = ContextVar("idpctl_cancel_scope", default=None)


def current_scope() -> Optional[CancelScope]:
    """Return the cancel scope active in this context, if any"""
    return _current_scope.get()


@contextmanager
def cancel_scope(timeout: Optional[float] = None) -> Iterator[CancelScope]:
    """Run the enclosed requests under a new cancel scope

    An inner scope replaces the outer one until the block exits.
    """
    scope = CancelScope(timeout)
    token = _current_scope.set(scope)
    try:
        yield scope
    finally:
        _current_scope.reset(token)
