from datetime import datetime, timedelta, timezone

import pytest

from giveaway_overlay.giveaway.errors import PersistenceError
from giveaway_overlay.giveaway.models import ContributionRecord, Giveaway, OverlayPosition
from giveaway_overlay.giveaway.store import GiveawayStore

START = datetime(2024, 5, 1, 18, 30, 15, 123456, tzinfo=timezone.utc)


def make_giveaway(giveaway_id: str, start: datetime = START, **overrides) -> Giveaway:
    fields = {"id": giveaway_id, "owner_id": "owner-1", "start_time": start, "duration": 60_000}
    fields.update(overrides)
    return Giveaway(**fields)


def make_record(participant_id: str, giveaway_id: str = "g1", **counts) -> ContributionRecord:
    return ContributionRecord(
        id=f"c-{giveaway_id}-{participant_id}",
        giveaway_id=giveaway_id,
        participant_id=participant_id,
        display_name=participant_id.title(),
        **counts,
    )


async def test_initialize_is_idempotent(store):
    await store.initialize()

    assert store.initialized
    assert await store.list_overlays() == []


async def test_uninitialized_store_raises_persistence_error(tmp_path):
    store = GiveawayStore(tmp_path / "never-opened.db")

    with pytest.raises(PersistenceError):
        await store.get_giveaway("g1")


async def test_giveaway_round_trip_and_overwrite(store):
    giveaway = make_giveaway("g1")
    await store.save_giveaway(giveaway)

    giveaway.elapsed_time = 12_345
    giveaway.paused = True
    await store.save_giveaway(giveaway)

    loaded = await store.get_giveaway("g1")
    assert loaded == giveaway
    assert loaded.start_time == START
    assert await store.get_giveaway("missing") is None


async def test_find_resumable_skips_finished_and_other_owners(store):
    await store.save_giveaway(make_giveaway("old", START))
    await store.save_giveaway(make_giveaway("newest", START + timedelta(minutes=30)))
    await store.save_giveaway(
        make_giveaway("cancelled", START + timedelta(hours=1), cancelled=True, end_time=START + timedelta(hours=1))
    )
    await store.save_giveaway(
        make_giveaway("ended", START + timedelta(hours=2), elapsed_time=60_000, end_time=START + timedelta(hours=3))
    )
    await store.save_giveaway(make_giveaway("someone-else", START + timedelta(hours=4), owner_id="owner-2"))

    resumable = await store.find_resumable_giveaway("owner-1")

    assert resumable.id == "newest"
    assert await store.find_resumable_giveaway("owner-3") is None


async def test_list_giveaways_newest_first(store):
    for minutes in range(5):
        await store.save_giveaway(make_giveaway(f"g{minutes}", START + timedelta(minutes=minutes)))

    history = await store.list_giveaways("owner-1", limit=3)

    assert [giveaway.id for giveaway in history] == ["g4", "g3", "g2"]


async def test_contribution_upsert_writes_absolute_counts(store):
    await store.save_giveaway(make_giveaway("g1"))
    record = make_record("alice", bits=100)
    await store.save_contribution(record)

    record.add(50, 1)
    record.display_name = "Alice Renamed"
    await store.save_contribution(record)

    [loaded] = await store.list_contributions("g1")
    assert (loaded.bits, loaded.subs) == (150, 1)
    assert loaded.display_name == "Alice Renamed"


async def test_contributions_listed_in_first_contribution_order(store):
    await store.save_giveaway(make_giveaway("g1"))
    await store.save_giveaway(make_giveaway("g2"))
    for participant in ("carol", "alice", "bob"):
        await store.save_contribution(make_record(participant, bits=10))
    await store.save_contribution(make_record("alice", bits=99))
    await store.save_contribution(make_record("dave", giveaway_id="g2", subs=1))

    records = await store.list_contributions("g1")

    assert [record.participant_id for record in records] == ["carol", "alice", "bob"]


async def test_overlay_positions_upsert(store):
    await store.save_overlay(OverlayPosition("timer", 10.0, 20.0))
    await store.save_overlay(OverlayPosition("bits", 5.0, 5.0))
    await store.save_overlay(OverlayPosition("timer", 42.5, 7.0))

    positions = await store.list_overlays()

    assert [(p.name, p.x, p.y) for p in positions] == [("bits", 5.0, 5.0), ("timer", 42.5, 7.0)]
