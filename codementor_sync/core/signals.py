"""Signal sources, schedulers, and the debounce primitive.

Hosts (the TUI, tests) feed raw activity through a ``SignalSource``; the
engagement tracker and the sync bus subscribe to it instead of touching
any UI toolkit directly. Timers go through a ``Scheduler`` so tests can
advance time by hand.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable

from ..types import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class SignalSource:
    """Named no-argument signals with multiple listeners per name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def add_listener(self, name: str, listener: Listener) -> None:
        self._listeners.setdefault(name, []).append(listener)

    def remove_listener(self, name: str, listener: Listener) -> None:
        listeners = self._listeners.get(name)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[name]

    def listener_count(self, name: str | None = None) -> int:
        if name is not None:
            return len(self._listeners.get(name, []))
        return sum(len(v) for v in self._listeners.values())

    def emit(self, name: str) -> None:
        for listener in list(self._listeners.get(name, [])):
            listener()


# ---------------------------------------------------------------------------
# Schedulers
# ---------------------------------------------------------------------------

class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop (``loop.call_later``)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(delay, callback)

    def now(self) -> float:
        return time.monotonic()


class _ManualHandle:
    def __init__(self, scheduler: ManualScheduler, due: float, seq: int, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: _ManualHandle) -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class ManualScheduler:
    """Deterministic scheduler: time only moves when ``advance`` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[_ManualHandle] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualHandle(self, self._now + max(delay, 0.0), next(self._seq), callback)
        heapq.heappush(self._queue, handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in order."""
        target = self._now + seconds
        while self._queue and self._queue[0].due <= target:
            handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = handle.due
            handle.callback()
        self._now = target


# ---------------------------------------------------------------------------
# Timer helpers
# ---------------------------------------------------------------------------

class Debouncer:
    """Trailing-edge debounce: each trigger cancels and replaces the pending call."""

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self.delay = delay
        self._callback = callback
        self._handle: TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        self._handle = self._scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class PeriodicTimer:
    """Repeating timer built from one-shot ``call_later`` handles."""

    def __init__(self, scheduler: Scheduler, interval: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self.interval = interval
        self._callback = callback
        self._handle: TimerHandle | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.stop()
        self._handle = self._scheduler.call_later(self.interval, self._tick)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _tick(self) -> None:
        # Re-arm before the callback so a callback calling stop() wins
        self._handle = self._scheduler.call_later(self.interval, self._tick)
        try:
            self._callback()
        except Exception:
            logger.exception("Periodic timer callback failed")
