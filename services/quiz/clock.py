"""Clock collaborators for attempt timing.

Provides:
- `Clock`: protocol for a monotonic time source that can schedule one-shot callbacks.
- `SystemClock`: `time.monotonic` + `threading.Timer` (daemon threads).
- `ManualClock`: virtual time for tests; `advance()` fires due callbacks inline.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Callable, List, Protocol, Tuple


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now(self) -> float:
        """Monotonic seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run `callback` once after `delay` seconds unless cancelled."""
        ...


class SystemClock:
    """Wall-independent monotonic clock backed by `threading.Timer`."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        t = threading.Timer(max(0.0, delay), callback)
        t.daemon = True
        t.name = "AttemptCountdown"
        t.start()
        return t


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Deterministic clock whose time only moves when `advance()` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = itertools.count()
        self._pending: List[Tuple[float, int, _ManualHandle, Callable[[], None]]] = []
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle()
        with self._lock:
            heapq.heappush(self._pending, (self._now + max(0.0, delay), next(self._seq), handle, callback))
        return handle

    def advance(self, seconds: float) -> int:
        """Move time forward and run every callback that became due. Returns how many ran."""
        target = self._now + seconds
        fired = 0
        while True:
            with self._lock:
                if not self._pending or self._pending[0][0] > target:
                    break
                due, _, handle, callback = heapq.heappop(self._pending)
            self._now = max(self._now, due)
            if not handle.cancelled:
                callback()
                fired += 1
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for _, _, h, _ in self._pending if not h.cancelled)
