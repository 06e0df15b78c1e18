"""
Giveaway state machine.

Owns the one non-terminal giveaway of the process and every legal
transition on it:

    Idle -> Running <-> Paused -> Ended | Cancelled -> Idle

Every transition applies its in-memory changes, timer changes and
broadcasts before its first await, so a transition is atomic with respect to
everything else on the event loop; the store write that follows is only a
checkpoint of state that is already authoritative.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from giveaway_overlay.giveaway.aggregator import LeaderboardAggregator
from giveaway_overlay.giveaway.broadcast import BroadcastHub
from giveaway_overlay.giveaway.errors import ConflictError, NotAcceptingError, PersistenceError
from giveaway_overlay.giveaway.events import AuthEvent, ClientEvent, EventBus, EventType
from giveaway_overlay.giveaway.models import Contribution, Giveaway, GiveawayState
from giveaway_overlay.giveaway.scheduler import TickScheduler
from giveaway_overlay.giveaway.store import GiveawayStore
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)

INFO = "giveaway-info"
TICK = "giveaway-tick"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _describe(ms: int) -> str:
    seconds = max(0, ms) // 1000
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


class GiveawayManager:
    """Single owner of the current giveaway record."""

    def __init__(
        self,
        store: GiveawayStore,
        hub: BroadcastHub,
        aggregator: LeaderboardAggregator,
        scheduler: TickScheduler,
        bus: EventBus,
        *,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._hub = hub
        self._aggregator = aggregator
        self._scheduler = scheduler
        self._now = now
        self._giveaway: Optional[Giveaway] = None

        bus.add_listener(EventType.SOCKET_CONNECT, self._on_client_connect)
        bus.add_listener(EventType.AUTHORIZE, self._on_authorize)
        bus.add_listener(EventType.DEAUTHORIZE, self._on_deauthorize)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> GiveawayState:
        if self._giveaway is None:
            return GiveawayState.IDLE
        return self._giveaway.state

    @property
    def current(self) -> Optional[Giveaway]:
        return self._giveaway

    def snapshot(self) -> Dict[str, Any]:
        """Full state of the current giveaway, or an empty dict when idle."""
        return self._giveaway.to_payload() if self._giveaway else {}

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------
    async def start(self, owner_id: str, duration_ms: int) -> Giveaway:
        if self._giveaway is not None:
            raise ConflictError(f"giveaway {self._giveaway.id} is still {self.state.value}")
        if duration_ms <= 0:
            raise ValueError("giveaway duration must be positive")

        giveaway = Giveaway(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            start_time=self._now(),
            duration=int(duration_ms),
        )
        self._giveaway = giveaway
        self._aggregator.load(giveaway.id)
        self._scheduler.start(self._on_tick, giveaway.remaining)
        logger.info("New giveaway %s for %s (%s)", giveaway.id, owner_id, _describe(giveaway.duration))

        self._hub.broadcast(INFO, giveaway.to_payload())
        self._aggregator.broadcast_now()
        await self._persist(giveaway)
        return giveaway

    async def pause(self) -> bool:
        if self.state is not GiveawayState.RUNNING:
            return False
        giveaway = self._giveaway
        if self._accrue(self._scheduler.stop()):
            await self._finish(giveaway)
            return True

        giveaway.paused = True
        logger.info("Pausing giveaway %s (%s remaining)", giveaway.id, _describe(giveaway.remaining))
        self._hub.broadcast(TICK, giveaway.to_payload())
        await self._persist(giveaway)
        return True

    async def resume(self) -> bool:
        if self.state is not GiveawayState.PAUSED:
            return False
        giveaway = self._giveaway
        giveaway.paused = False
        self._scheduler.start(self._on_tick, giveaway.remaining)
        logger.info("Resuming giveaway %s (%s remaining)", giveaway.id, _describe(giveaway.remaining))

        self._hub.broadcast(TICK, giveaway.to_payload())
        await self._persist(giveaway)
        return True

    async def cancel(self) -> bool:
        if self._giveaway is None:
            return False
        giveaway = self._giveaway
        was_running = self._scheduler.running
        elapsed = self._scheduler.stop()
        if was_running:
            giveaway.elapsed_time = min(giveaway.duration, giveaway.elapsed_time + elapsed)

        giveaway.cancelled = True
        giveaway.end_time = self._now()
        self._giveaway = None
        logger.info("Cancelling giveaway %s (%s remaining)", giveaway.id, _describe(giveaway.remaining))

        self._hub.broadcast(INFO, {})
        self._aggregator.clear()
        await self._persist(giveaway)
        return True

    # ------------------------------------------------------------------
    # Contributions
    # ------------------------------------------------------------------
    def _ensure_accepting(self) -> None:
        if self.state is not GiveawayState.RUNNING:
            raise NotAcceptingError(f"giveaway is {self.state.value}")

    async def record_contribution(self, contribution: Contribution) -> bool:
        try:
            self._ensure_accepting()
        except NotAcceptingError as exc:
            logger.info(
                "Rejecting contribution from %s (bits=%s, subs=%s): %s",
                contribution.participant_id,
                contribution.bits,
                contribution.subs,
                exc,
            )
            return False
        await self._aggregator.record(contribution)
        return True

    # ------------------------------------------------------------------
    # Recovery & auth transitions
    # ------------------------------------------------------------------
    async def recover(self, owner_id: str) -> Optional[Giveaway]:
        """Adopt the owner's unfinished giveaway from the store, paused.

        A restarted process never resumes a countdown on its own; the
        operator has to resume it.
        """
        if self._giveaway is not None:
            logger.info("Giveaway %s already active; not recovering", self._giveaway.id)
            return self._giveaway

        try:
            giveaway = await self._store.find_resumable_giveaway(owner_id)
            if giveaway is None:
                logger.info("No unfinished giveaway for %s", owner_id)
                return None
            if giveaway.is_terminal:
                logger.info("Giveaway %s ran out of time before the restart; leaving it", giveaway.id)
                return None
            records = await self._store.list_contributions(giveaway.id)
        except PersistenceError as exc:
            logger.error("Recovery for %s failed: %s", owner_id, exc)
            return None

        if self._giveaway is not None:
            # Something was started while the store was being read.
            logger.warning("Giveaway %s started during recovery; discarding recovered %s", self._giveaway.id, giveaway.id)
            return self._giveaway

        giveaway.paused = True
        self._giveaway = giveaway
        self._aggregator.load(giveaway.id, records)
        logger.info(
            "Recovered giveaway %s (%s remaining, %s participants); auto-paused",
            giveaway.id,
            _describe(giveaway.remaining),
            len(records),
        )

        self._hub.broadcast(INFO, giveaway.to_payload())
        self._aggregator.broadcast_now()
        await self._persist(giveaway)
        return giveaway

    async def suspend(self) -> None:
        """Pause and forget the current giveaway without ending it."""
        if self._giveaway is None:
            return
        giveaway = self._giveaway
        if self._scheduler.running and self._accrue(self._scheduler.stop()):
            await self._finish(giveaway)
            return

        giveaway.paused = True
        self._giveaway = None
        logger.info("Suspending giveaway %s (%s remaining)", giveaway.id, _describe(giveaway.remaining))

        self._hub.broadcast(INFO, {})
        self._aggregator.clear()
        await self._persist(giveaway)

    async def shutdown(self) -> None:
        """Stop timers and checkpoint the current giveaway."""
        self._aggregator.cancel_pending()
        if self._giveaway is None:
            return
        giveaway = self._giveaway
        if self._scheduler.running and self._accrue(self._scheduler.stop()):
            await self._finish(giveaway)
            return
        await self._persist(giveaway)

    async def _on_authorize(self, event: AuthEvent) -> None:
        if event.owner_id:
            await self.recover(event.owner_id)

    async def _on_deauthorize(self, event: AuthEvent) -> None:
        await self.suspend()

    def _on_client_connect(self, event: ClientEvent) -> None:
        self._hub.send(event.client, INFO, self.snapshot())

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    def _accrue(self, delta_ms: int) -> bool:
        """Add running time to the current giveaway; True once it has run out."""
        giveaway = self._giveaway
        giveaway.elapsed_time = min(giveaway.duration, giveaway.elapsed_time + max(0, delta_ms))
        return giveaway.elapsed_time >= giveaway.duration

    async def _on_tick(self, delta_ms: int, checkpoint_due: bool) -> int:
        giveaway = self._giveaway
        if giveaway is None or self.state is not GiveawayState.RUNNING:
            return 0

        if self._accrue(delta_ms):
            await self._finish(giveaway)
            return 0

        self._hub.broadcast(TICK, giveaway.to_payload())
        if checkpoint_due:
            await self._persist(giveaway)
        return giveaway.remaining

    async def _finish(self, giveaway: Giveaway) -> None:
        self._scheduler.stop()
        giveaway.end_time = self._now()
        self._giveaway = None
        logger.info("Giveaway %s has ended", giveaway.id)

        self._hub.broadcast(INFO, {})
        self._aggregator.clear()
        await self._persist(giveaway)

    async def _persist(self, giveaway: Giveaway) -> None:
        try:
            await self._store.save_giveaway(giveaway)
        except PersistenceError as exc:
            logger.error("Could not checkpoint giveaway %s: %s", giveaway.id, exc)
