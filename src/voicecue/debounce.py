"""
Cancellable deferred work for coalescing bursts of partial transcripts.

A Debouncer holds at most one pending handle. Scheduling new work cancels
the previous handle, so only the most recent payload in each interval is
ever run. Time is read from an injectable clock so the owner can drive it
from a worker loop, an event loop or a test.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar('T')


@dataclass
class DebounceHandle(Generic[T]):
    """A scheduled piece of work that can be invalidated."""
    payload: T
    due: float  # Clock time at which the work becomes runnable
    generation: int  # Session generation the work belongs to
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        """Invalidate this handle; it will never be returned as due."""
        self.cancelled = True


class Debouncer(Generic[T]):
    """Keeps only the latest scheduled payload per delay window."""

    delay: float
    clock: Callable[[], float]
    _pending: DebounceHandle[T] | None

    def __init__(self, delay_ms: float = 150,
                 clock: Callable[[], float] = time.monotonic) -> None:
        if delay_ms < 0:
            raise ValueError(f"delay_ms must not be negative, got {delay_ms}")
        self.delay = delay_ms / 1000
        self.clock = clock
        self._pending = None

    @property
    def pending(self) -> DebounceHandle[T] | None:
        """The outstanding handle, if any."""
        return self._pending

    def schedule(self, payload: T, generation: int,
                 now: float | None = None) -> DebounceHandle[T]:
        """Schedule a payload, superseding any pending one."""
        self.cancel()
        now = self.clock() if now is None else now
        self._pending = DebounceHandle(payload=payload, due=now + self.delay,
                                       generation=generation)
        return self._pending

    def cancel(self) -> bool:
        """Cancel the pending handle. Returns True if one was pending."""
        if self._pending is None:
            return False
        self._pending.cancel()
        self._pending = None
        return True

    def time_until_due(self, now: float | None = None) -> float | None:
        """Seconds until the pending handle is due (0 if overdue), or None."""
        if self._pending is None:
            return None
        now = self.clock() if now is None else now
        return max(0.0, self._pending.due - now)

    def pop_due(self, now: float | None = None) -> DebounceHandle[T] | None:
        """Take the pending handle if its delay has elapsed."""
        handle = self._pending
        if handle is None:
            return None
        now = self.clock() if now is None else now
        if now < handle.due:
            return None
        self._pending = None
        return None if handle.cancelled else handle
