from __future__ import annotations

from typing import Any, List

import pytest

from giveaway_overlay.giveaway.aggregator import LeaderboardAggregator
from giveaway_overlay.giveaway.auth import AuthState
from giveaway_overlay.giveaway.broadcast import BroadcastHub
from giveaway_overlay.giveaway.events import EventBus
from giveaway_overlay.giveaway.scheduler import TickScheduler
from giveaway_overlay.giveaway.state_machine import GiveawayManager
from giveaway_overlay.giveaway.store import GiveawayStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.fired = False
        self.cancelled = False

    @property
    def pending(self) -> bool:
        return not self.fired and not self.cancelled

    def cancel(self) -> bool:
        if not self.pending:
            return False
        self.cancelled = True
        return True

    async def fire(self) -> None:
        # A cancelled timer never runs its callback, same as the real one.
        if not self.pending:
            return
        self.fired = True
        await self.callback()


class FakeTimers:
    """Timer factory that records every timer instead of scheduling it."""

    def __init__(self) -> None:
        self.created: List[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [timer for timer in self.created if timer.pending]

    def latest(self) -> FakeTimer:
        assert self.created, "no timer was scheduled"
        return self.created[-1]


class FakeTransport:
    def __init__(self, fail: bool = False) -> None:
        self.messages: List[dict] = []
        self.fail = fail
        self.closed_with = None

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket is closed")
        self.messages.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code

    def types(self) -> List[str]:
        return [message["type"] for message in self.messages]

    def payloads(self, message_type: str) -> List[Any]:
        return [message["payload"] for message in self.messages if message["type"] == message_type]


async def join(hub: BroadcastHub, role: str = "overlay", fail: bool = False):
    """Connect and admit a fake client, then wait for its join snapshot."""
    transport = FakeTransport(fail=fail)
    client = hub.connect(transport)
    await hub.announce(client, role)
    await hub.drain()
    return client, transport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tick_timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def debounce_timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
async def store(tmp_path):
    giveaway_store = GiveawayStore(tmp_path / "giveaway.db")
    await giveaway_store.initialize()
    yield giveaway_store
    await giveaway_store.close()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def hub(bus):
    broadcast_hub = BroadcastHub(bus)
    await broadcast_hub.start()
    yield broadcast_hub
    await broadcast_hub.stop()


@pytest.fixture
def aggregator(store, hub, bus, debounce_timers) -> LeaderboardAggregator:
    return LeaderboardAggregator(store, hub, bus, debounce_ms=1000, timer_factory=debounce_timers)


@pytest.fixture
def scheduler(clock, tick_timers) -> TickScheduler:
    return TickScheduler(
        tick_interval_ms=1000,
        checkpoint_interval_ms=10000,
        clock=clock,
        timer_factory=tick_timers,
    )


@pytest.fixture
def manager(store, hub, aggregator, scheduler, bus) -> GiveawayManager:
    return GiveawayManager(store, hub, aggregator, scheduler, bus)


@pytest.fixture
def auth(bus, hub, manager) -> AuthState:
    # Requests the manager so its auth listeners are on the bus.
    return AuthState(bus, hub)
