"""Deferred-callback scheduling with per-token cancellation.

Everything time-based at the table (round countdown, response deadlines,
reveal delays, playback timeouts, next-speaker pauses) goes through a
Scheduler. Calls are tagged with the phase token they were scheduled under so
a phase transition can cancel all of them at once.

Two clocks are provided:
- AsyncioScheduler: real time on the running event loop
- ManualScheduler: virtual time advanced explicitly (tests, simulation)
"""

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for one deferred callback."""

    def __init__(self, scheduler: "Scheduler", fire_at: float, callback: Callable, args: Tuple,
                 token: Optional[int], label: str):
        self.scheduler = scheduler
        self.fire_at = fire_at
        self.callback = callback
        self.args = args
        self.token = token
        self.label = label
        self.cancelled = False
        self.fired = False
        self._backend: Any = None

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self):
        if not self.pending:
            return
        self.cancelled = True
        self.scheduler._forget(self)
        self.scheduler._cancel_backend(self)

    def _run(self):
        if not self.pending:
            return
        self.fired = True
        self.scheduler._forget(self)
        self.callback(*self.args)

    def __repr__(self) -> str:
        return f"<ScheduledCall {self.label or self.callback!r} at={self.fire_at:.2f} token={self.token}>"


class Scheduler(ABC):
    """Base scheduler: tracks outstanding calls per token."""

    def __init__(self):
        self._by_token: Dict[Optional[int], Set[ScheduledCall]] = {}

    @abstractmethod
    def now(self) -> float:
        """Current time on this scheduler's clock."""
        pass

    @abstractmethod
    def _start_backend(self, call: ScheduledCall, delay: float):
        pass

    @abstractmethod
    def _cancel_backend(self, call: ScheduledCall):
        pass

    def schedule(self, delay: float, callback: Callable, *args, token: Optional[int] = None,
                 label: str = "") -> ScheduledCall:
        """Run callback(*args) after `delay` seconds.

        Args:
            delay: Seconds from now (negative values fire as soon as possible)
            callback: Function to call
            token: Phase token this call belongs to; None for calls that
                outlive phase transitions
            label: Name used in debug logs
        """
        delay = max(0.0, delay)
        call = ScheduledCall(self, self.now() + delay, callback, args, token, label)
        self._by_token.setdefault(token, set()).add(call)
        self._start_backend(call, delay)
        return call

    def cancel_token(self, token: int) -> int:
        """Cancel every outstanding call scheduled under `token`."""
        calls = list(self._by_token.get(token, ()))
        for call in calls:
            call.cancel()
        if calls:
            logger.debug(f"Cancelled {len(calls)} deferred call(s) for token {token}")
        return len(calls)

    def cancel_all(self):
        for token in list(self._by_token):
            for call in list(self._by_token.get(token, ())):
                call.cancel()

    def pending_calls(self, token: Optional[int] = None) -> List[ScheduledCall]:
        return sorted(self._by_token.get(token, ()), key=lambda c: c.fire_at)

    def _forget(self, call: ScheduledCall):
        calls = self._by_token.get(call.token)
        if calls is not None:
            calls.discard(call)
            if not calls:
                del self._by_token[call.token]


class AsyncioScheduler(Scheduler):
    """Scheduler backed by loop.call_later on the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def _start_backend(self, call: ScheduledCall, delay: float):
        call._backend = self.loop.call_later(delay, call._run)

    def _cancel_backend(self, call: ScheduledCall):
        if call._backend is not None:
            call._backend.cancel()


class ManualScheduler(Scheduler):
    """Virtual clock. Nothing fires until advance() is called."""

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start
        self._heap: List[Tuple[float, int, ScheduledCall]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _start_backend(self, call: ScheduledCall, delay: float):
        heapq.heappush(self._heap, (call.fire_at, next(self._seq), call))

    def _cancel_backend(self, call: ScheduledCall):
        # Lazy deletion; cancelled calls are skipped when popped
        pass

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due calls in order. Returns calls fired."""
        target = self._now + max(0.0, seconds)
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            fire_at, _, call = heapq.heappop(self._heap)
            if not call.pending:
                continue
            self._now = max(self._now, fire_at)
            call._run()
            fired += 1
        self._now = target
        return fired

    def run_until(self, predicate: Callable[[], bool], timeout: float, step: float = 0.5) -> bool:
        """Advance in steps until predicate() holds or `timeout` seconds pass."""
        elapsed = 0.0
        while not predicate():
            if elapsed >= timeout:
                return False
            self.advance(step)
            elapsed += step
        return True

    @property
    def next_fire_at(self) -> Optional[float]:
        for fire_at, _, call in sorted(self._heap):
            if call.pending:
                return fire_at
        return None
