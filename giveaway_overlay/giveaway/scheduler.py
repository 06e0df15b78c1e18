"""
Tick Scheduler - drives wall-clock progression of a running giveaway
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from giveaway_overlay.giveaway.timers import Clock, OneShotTimer, TimerFactory, monotonic_ms
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)

# Called with the milliseconds measured since the previous tick and whether a
# checkpoint is due; returns the milliseconds left on the giveaway (<= 0 once
# it is over).
TickHandler = Callable[[int, bool], Awaitable[int]]


class TickScheduler:
    """Self-rescheduling one-shot tick timer.

    Each tick measures the real time since the previous one instead of
    trusting the timer to fire on schedule, and the next delay is computed
    fresh every time, so pauses and loop jitter never accumulate as skew.
    """

    def __init__(
        self,
        *,
        tick_interval_ms: int = 1000,
        checkpoint_interval_ms: int = 10000,
        clock: Clock = monotonic_ms,
        timer_factory: TimerFactory = OneShotTimer,
    ) -> None:
        self.tick_interval_ms = tick_interval_ms
        self.checkpoint_interval_ms = checkpoint_interval_ms
        self._clock = clock
        self._timer_factory = timer_factory

        self._handler: Optional[TickHandler] = None
        self._timer: Optional[OneShotTimer] = None
        self._last_tick = 0
        self._last_checkpoint = 0
        # Bumped on every start/stop so a tick that was suspended in its
        # handler when the scheduler was stopped does not reschedule itself.
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._handler is not None

    def start(self, handler: TickHandler, remaining_ms: int) -> None:
        """Anchor the clock to now and schedule the first tick."""
        self.stop()
        self._generation += 1
        self._handler = handler
        self._last_tick = self._last_checkpoint = self._clock()
        logger.debug("Tick scheduler started with %sms remaining", remaining_ms)
        self._schedule(remaining_ms)

    def stop(self) -> int:
        """Cancel the pending tick; safe to call at any time.

        Returns the milliseconds that passed since the last tick while the
        scheduler was running, so the caller can account for them.
        """
        if self._handler is None:
            return 0
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._handler = None
        self._generation += 1
        return max(0, self._clock() - self._last_tick)

    def _schedule(self, remaining_ms: int) -> None:
        delay_ms = max(0, min(self.tick_interval_ms, remaining_ms))
        generation = self._generation

        async def fire() -> None:
            await self._tick(generation)

        self._timer = self._timer_factory(delay_ms / 1000, fire)

    async def _tick(self, generation: int) -> None:
        if generation != self._generation or self._handler is None:
            return
        self._timer = None

        now = self._clock()
        delta = max(0, now - self._last_tick)
        self._last_tick = now

        checkpoint_due = now - self._last_checkpoint >= self.checkpoint_interval_ms
        if checkpoint_due:
            self._last_checkpoint = now

        remaining = await self._handler(delta, checkpoint_due)

        if generation != self._generation or self._handler is None:
            return
        if remaining <= 0:
            self._handler = None
            self._generation += 1
            return
        self._schedule(remaining)
