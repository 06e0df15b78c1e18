"""Leaderboard aggregation for the active giveaway.

Keeps the per-participant tallies of the current giveaway in memory, ranks
them per metric and decides when leaderboard updates go out. Contributions
tend to arrive in bursts (a multi gift-sub delivers one event per
recipient), so broadcasts are coalesced per metric: the first unflushed
contribution opens a window and everything inside it goes out as one update.
"""

from __future__ import annotations

import functools
import uuid
from typing import Dict, Iterable, List, Optional

from giveaway_overlay.giveaway.broadcast import BroadcastHub, ConnectedClient
from giveaway_overlay.giveaway.errors import PersistenceError
from giveaway_overlay.giveaway.events import ClientEvent, EventBus, EventType
from giveaway_overlay.giveaway.models import Contribution, ContributionRecord, LeaderboardEntry, Metric
from giveaway_overlay.giveaway.store import GiveawayStore
from giveaway_overlay.giveaway.timers import OneShotTimer, TimerFactory
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)


def rank(records: Iterable[ContributionRecord], metric: Metric, limit: Optional[int] = None) -> List[LeaderboardEntry]:
    """Order contributors by ``metric``, highest first.

    ``records`` must be in first-contribution order; the sort is stable so
    ties keep that order. Participants with nothing in this metric are left
    out, and ``limit`` only trims what is displayed.
    """
    entries = [
        LeaderboardEntry(participant_id=record.participant_id, name=record.display_name, score=record.score(metric))
        for record in records
        if record.score(metric) > 0
    ]
    entries = sorted(entries, key=lambda entry: entry.score, reverse=True)
    if limit is not None:
        entries = entries[: max(0, limit)]
    return entries


class LeaderboardAggregator:
    def __init__(
        self,
        store: GiveawayStore,
        hub: BroadcastHub,
        bus: EventBus,
        *,
        leaders_count: Optional[Dict[Metric, int]] = None,
        debounce_ms: int = 1000,
        timer_factory: TimerFactory = OneShotTimer,
    ) -> None:
        self._store = store
        self._hub = hub
        self._leaders_count = {Metric.BITS: 10, Metric.SUBS: 10}
        self._leaders_count.update(leaders_count or {})
        self._debounce_ms = debounce_ms
        self._timer_factory = timer_factory

        self._giveaway_id: Optional[str] = None
        self._records: Dict[str, ContributionRecord] = {}

        # Pending debounced flush per metric; None means nothing is pending.
        self._bits_flush: Optional[OneShotTimer] = None
        self._subs_flush: Optional[OneShotTimer] = None

        bus.add_listener(EventType.SOCKET_CONNECT, self._on_client_connect)

    # ------------------------------------------------------------------
    # Cache lifecycle
    # ------------------------------------------------------------------
    @property
    def giveaway_id(self) -> Optional[str]:
        return self._giveaway_id

    @property
    def records(self) -> List[ContributionRecord]:
        return list(self._records.values())

    def load(self, giveaway_id: str, records: Iterable[ContributionRecord] = ()) -> None:
        """Replace the cache wholesale with the tallies of ``giveaway_id``."""
        self.cancel_pending()
        self._giveaway_id = giveaway_id
        self._records = {record.participant_id: record for record in records}
        logger.info("Leaderboard cache loaded for giveaway %s (%s participants)", giveaway_id, len(self._records))

    def clear(self) -> None:
        """Drop the cache and any pending flush, then publish empty leaderboards.

        The empty lists published here are the last leaderboard messages of
        the giveaway that was just discarded.
        """
        self.cancel_pending()
        self._giveaway_id = None
        self._records = {}
        self.broadcast_now()

    # ------------------------------------------------------------------
    # Contributions
    # ------------------------------------------------------------------
    async def record(self, contribution: Contribution) -> ContributionRecord:
        """Add ``contribution`` to the active giveaway's tallies.

        The cache is updated and the flush scheduled before the store write is
        awaited; a failed write is logged and retried by the next contribution
        of the same participant, which writes absolute counts.
        """
        if self._giveaway_id is None:
            raise RuntimeError("no giveaway loaded into the leaderboard cache")

        record = self._records.get(contribution.participant_id)
        if record is None:
            record = ContributionRecord(
                id=uuid.uuid4().hex,
                giveaway_id=self._giveaway_id,
                participant_id=contribution.participant_id,
                display_name=contribution.display_name,
            )
            self._records[record.participant_id] = record
            logger.info("New participant %s (%s)", record.display_name, record.participant_id)
        elif contribution.display_name and contribution.display_name != record.display_name:
            record.display_name = contribution.display_name

        record.add(contribution.bits, contribution.subs)
        for metric in contribution.metrics():
            self._schedule_flush(metric)

        try:
            await self._store.save_contribution(record)
        except PersistenceError as exc:
            logger.error("Could not persist contribution for %s: %s", record.participant_id, exc)
        return record

    # ------------------------------------------------------------------
    # Ranking & publishing
    # ------------------------------------------------------------------
    def leaderboard(self, metric: Metric) -> List[LeaderboardEntry]:
        return rank(self._records.values(), metric, self._leaders_count.get(metric))

    def payload(self, metric: Metric) -> List[dict]:
        return [entry.to_payload() for entry in self.leaderboard(metric)]

    def broadcast_now(self, metrics: Iterable[Metric] = (Metric.BITS, Metric.SUBS)) -> None:
        for metric in metrics:
            self._cancel_flush(metric)
            self._hub.broadcast(metric.message_type, self.payload(metric))

    def send_snapshot(self, client: ConnectedClient) -> None:
        """Send both leaderboards to one client right away, ignoring any pending window."""
        for metric in Metric:
            self._hub.send(client, metric.message_type, self.payload(metric))

    def _on_client_connect(self, event: ClientEvent) -> None:
        self.send_snapshot(event.client)

    # ------------------------------------------------------------------
    # Debounce handles
    # ------------------------------------------------------------------
    def pending(self, metric: Metric) -> bool:
        timer = self._flush_timer(metric)
        return timer is not None and timer.pending

    def cancel_pending(self) -> None:
        for metric in Metric:
            self._cancel_flush(metric)

    def _flush_timer(self, metric: Metric) -> Optional[OneShotTimer]:
        return self._bits_flush if metric is Metric.BITS else self._subs_flush

    def _set_flush_timer(self, metric: Metric, timer: Optional[OneShotTimer]) -> None:
        if metric is Metric.BITS:
            self._bits_flush = timer
        else:
            self._subs_flush = timer

    def _schedule_flush(self, metric: Metric) -> None:
        if self.pending(metric):
            return
        timer = self._timer_factory(self._debounce_ms / 1000, functools.partial(self._flush_due, metric))
        self._set_flush_timer(metric, timer)

    def _cancel_flush(self, metric: Metric) -> None:
        timer = self._flush_timer(metric)
        if timer is not None:
            timer.cancel()
            self._set_flush_timer(metric, None)

    async def _flush_due(self, metric: Metric) -> None:
        if self._flush_timer(metric) is None:
            return
        self._set_flush_timer(metric, None)
        logger.debug("Flushing %s leaderboard", metric.value)
        self._hub.broadcast(metric.message_type, self.payload(metric))
