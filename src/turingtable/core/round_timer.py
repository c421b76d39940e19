"""Per-phase countdown producing tick and expiry callbacks."""

import logging
from typing import Callable, Optional

from .scheduler import ScheduledCall, Scheduler

logger = logging.getLogger(__name__)


class RoundTimer:
    """Countdown for one debate round.

    Ticks fire every `tick_interval` seconds with the remaining time; the
    expiry callback fires exactly once unless the timer is stopped first.
    """

    def __init__(self, scheduler: Scheduler, tick_interval: float = 1.0):
        self.scheduler = scheduler
        self.tick_interval = tick_interval
        self.deadline: Optional[float] = None
        self._token: Optional[int] = None
        self._on_tick: Optional[Callable[[float], None]] = None
        self._on_expire: Optional[Callable[[], None]] = None
        self._next_call: Optional[ScheduledCall] = None

    @property
    def running(self) -> bool:
        return self.deadline is not None

    @property
    def remaining(self) -> float:
        if self.deadline is None:
            return 0.0
        return max(0.0, self.deadline - self.scheduler.now())

    def start(self, duration: float, on_expire: Callable[[], None],
              on_tick: Optional[Callable[[float], None]] = None, token: Optional[int] = None) -> float:
        """Start (or restart) the countdown. Returns the deadline."""
        self.stop()
        self.deadline = self.scheduler.now() + duration
        self._token = token
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._arm()
        logger.debug(f"Round timer started: {duration:.0f}s")
        return self.deadline

    def stop(self):
        if self._next_call is not None:
            self._next_call.cancel()
            self._next_call = None
        self.deadline = None
        self._on_tick = None
        self._on_expire = None

    def _arm(self):
        remaining = self.remaining
        if self._on_tick is not None and remaining > self.tick_interval:
            delay = self.tick_interval
        else:
            delay = remaining
        self._next_call = self.scheduler.schedule(
            delay, self._fire, token=self._token, label="round_timer"
        )

    def _fire(self):
        self._next_call = None
        if self.deadline is None:
            return

        remaining = self.remaining
        if remaining <= 1e-9:
            on_expire = self._on_expire
            self.stop()
            if on_expire is not None:
                on_expire()
            return

        if self._on_tick is not None:
            self._on_tick(remaining)
        # on_tick may have stopped the timer
        if self.deadline is not None:
            self._arm()
