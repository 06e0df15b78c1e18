import pytest

from conftest import join

from giveaway_overlay.giveaway.errors import ConflictError
from giveaway_overlay.giveaway.models import Contribution, GiveawayState

INFO = "giveaway-info"
TICK = "giveaway-tick"
BITS = "leaderboard-bits-update"
SUBS = "leaderboard-subs-update"


async def tick(clock, tick_timers, ms: int = 1000) -> None:
    clock.advance(ms)
    await tick_timers.latest().fire()


async def test_join_snapshot_when_idle(manager, hub):
    _, transport = await join(hub)

    assert transport.payloads(INFO) == [{}]
    assert transport.payloads(BITS) == [[]]
    assert transport.payloads(SUBS) == [[]]


async def test_start_publishes_info_then_empty_boards(manager, hub, store):
    _, transport = await join(hub)
    transport.messages.clear()

    giveaway = await manager.start("owner-1", 5000)
    await hub.drain()

    assert manager.state is GiveawayState.RUNNING
    assert transport.types() == [INFO, BITS, SUBS]
    assert transport.payloads(INFO)[0]["id"] == giveaway.id
    assert transport.payloads(INFO)[0]["elapsedTime"] == 0
    assert (await store.get_giveaway(giveaway.id)).duration == 5000


async def test_start_while_active_conflicts(manager, clock, tick_timers):
    giveaway = await manager.start("owner-1", 5000)
    await tick(clock, tick_timers)

    with pytest.raises(ConflictError):
        await manager.start("owner-2", 9000)
    assert manager.current is giveaway
    assert (giveaway.elapsed_time, giveaway.paused, giveaway.duration) == (1000, False, 5000)
    assert len(tick_timers.pending) == 1

    await manager.pause()
    with pytest.raises(ConflictError):
        await manager.start("owner-2", 9000)
    assert manager.current is giveaway
    assert (giveaway.elapsed_time, giveaway.paused) == (1000, True)
    assert manager.state is GiveawayState.PAUSED
    assert not tick_timers.pending


async def test_start_requires_positive_duration(manager):
    with pytest.raises(ValueError):
        await manager.start("owner-1", 0)
    assert manager.state is GiveawayState.IDLE


async def test_full_run_ends_after_duration(manager, hub, store, clock, tick_timers):
    _, transport = await join(hub)
    giveaway = await manager.start("owner-1", 5000)
    await hub.drain()
    transport.messages.clear()

    for _ in range(4):
        await tick(clock, tick_timers)
    await hub.drain()
    assert [payload["elapsedTime"] for payload in transport.payloads(TICK)] == [1000, 2000, 3000, 4000]

    await tick(clock, tick_timers)
    await hub.drain()

    assert manager.state is GiveawayState.IDLE
    assert transport.types()[-3:] == [INFO, BITS, SUBS]
    assert transport.payloads(INFO) == [{}]
    assert transport.payloads(BITS)[-1] == []
    assert tick_timers.pending == []

    stored = await store.get_giveaway(giveaway.id)
    assert stored.elapsed_time == 5000
    assert stored.end_time is not None
    assert stored.state is GiveawayState.ENDED


async def test_late_tick_is_clamped_to_duration(manager, store, clock, tick_timers):
    giveaway = await manager.start("owner-1", 1500)

    await tick(clock, tick_timers, 1000)
    await tick(clock, tick_timers, 2000)

    stored = await store.get_giveaway(giveaway.id)
    assert stored.elapsed_time == 1500


async def test_pause_freezes_elapsed_time(manager, hub, clock, tick_timers):
    _, transport = await join(hub)
    giveaway = await manager.start("owner-1", 10_000)
    await tick(clock, tick_timers)
    clock.advance(400)

    assert await manager.pause()
    assert manager.state is GiveawayState.PAUSED
    assert giveaway.elapsed_time == 1400
    assert tick_timers.pending == []

    clock.advance(60_000)
    assert giveaway.elapsed_time == 1400

    assert await manager.resume()
    await tick(clock, tick_timers)
    await hub.drain()

    assert giveaway.elapsed_time == 2400
    assert [payload["paused"] for payload in transport.payloads(TICK)] == [False, True, False, False]


async def test_pause_and_resume_are_noops_in_the_wrong_state(manager):
    assert not await manager.pause()
    assert not await manager.resume()

    await manager.start("owner-1", 5000)
    assert not await manager.resume()
    await manager.pause()
    assert not await manager.pause()


async def test_pause_after_time_ran_out_finishes(manager, store, clock):
    giveaway = await manager.start("owner-1", 1000)
    clock.advance(1500)

    assert await manager.pause()

    assert manager.state is GiveawayState.IDLE
    stored = await store.get_giveaway(giveaway.id)
    assert stored.state is GiveawayState.ENDED
    assert stored.elapsed_time == 1000


async def test_cancel_publishes_one_final_info_and_empty_boards(manager, hub, store, clock, debounce_timers):
    _, transport = await join(hub)
    giveaway = await manager.start("owner-1", 60_000)
    await manager.record_contribution(Contribution("alice", "Alice", bits=50))
    clock.advance(700)
    await hub.drain()
    transport.messages.clear()

    assert await manager.cancel()
    await debounce_timers.latest().fire()
    await hub.drain()

    assert transport.messages == [
        {"type": INFO, "payload": {}},
        {"type": BITS, "payload": []},
        {"type": SUBS, "payload": []},
    ]
    stored = await store.get_giveaway(giveaway.id)
    assert stored.cancelled
    assert stored.end_time is not None
    assert stored.elapsed_time == 700
    assert not await manager.cancel()


async def test_contributions_only_count_while_running(manager, aggregator, store):
    assert not await manager.record_contribution(Contribution("alice", "Alice", bits=10))

    giveaway = await manager.start("owner-1", 60_000)
    assert await manager.record_contribution(Contribution("alice", "Alice", bits=10))

    await manager.pause()
    assert not await manager.record_contribution(Contribution("bob", "Bob", bits=99))

    [stored] = await store.list_contributions(giveaway.id)
    assert stored.participant_id == "alice"
    assert [entry.participant_id for entry in aggregator.records] == ["alice"]


async def test_contribution_after_natural_end_is_rejected(manager, clock, tick_timers):
    await manager.start("owner-1", 1000)
    await tick(clock, tick_timers)

    assert not await manager.record_contribution(Contribution("alice", "Alice", bits=10))


async def test_checkpoint_every_ten_seconds(manager, store, clock, tick_timers):
    giveaway = await manager.start("owner-1", 60_000)

    for _ in range(9):
        await tick(clock, tick_timers)
    assert (await store.get_giveaway(giveaway.id)).elapsed_time == 0

    await tick(clock, tick_timers)
    assert (await store.get_giveaway(giveaway.id)).elapsed_time == 10_000


async def test_shutdown_checkpoints_running_giveaway(manager, store, clock, tick_timers):
    giveaway = await manager.start("owner-1", 60_000)
    await tick(clock, tick_timers)
    clock.advance(300)

    await manager.shutdown()

    stored = await store.get_giveaway(giveaway.id)
    assert stored.elapsed_time == 1300
    assert stored.end_time is None
