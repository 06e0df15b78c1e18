"""One-shot timers and the millisecond clock used by the giveaway core."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)

Clock = Callable[[], int]
TimerCallback = Callable[[], Awaitable[None]]


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class OneShotTimer:
    """Runs ``callback`` once after ``delay`` seconds.

    cancel() is idempotent: once the timer has fired (or was already
    cancelled) it does nothing, so it never interrupts a callback that is
    already running.
    """

    def __init__(self, delay: float, callback: TimerCallback, *, name: Optional[str] = None) -> None:
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run(max(0.0, delay)), name=name)

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._fired = True
        try:
            await self._callback()
        except Exception as exc:
            logger.exception("Timer callback failed: %s", exc)

    @property
    def pending(self) -> bool:
        return not self._fired and not self._cancelled

    def cancel(self) -> bool:
        if not self.pending:
            return False
        self._cancelled = True
        self._task.cancel()
        return True


TimerFactory = Callable[[float, TimerCallback], OneShotTimer]
