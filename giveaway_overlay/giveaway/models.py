"""Core data models for the giveaway overlay backend."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class GiveawayState(str, Enum):
    """States of the single giveaway tracked by the server."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"
    CANCELLED = "cancelled"


class Metric(str, Enum):
    """Contribution metrics that get their own leaderboard."""

    BITS = "bits"
    SUBS = "subs"

    @property
    def message_type(self) -> str:
        return f"leaderboard-{self.value}-update"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="milliseconds") if value else None


@dataclass
class Giveaway:
    """One time-boxed giveaway; durations and elapsed time are in milliseconds."""

    id: str
    owner_id: str
    start_time: datetime
    duration: int
    elapsed_time: int = 0
    end_time: Optional[datetime] = None
    paused: bool = False
    cancelled: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.duration - self.elapsed_time)

    @property
    def is_terminal(self) -> bool:
        return self.cancelled or self.end_time is not None or self.elapsed_time >= self.duration

    @property
    def state(self) -> GiveawayState:
        if self.cancelled:
            return GiveawayState.CANCELLED
        if self.is_terminal:
            return GiveawayState.ENDED
        if self.paused:
            return GiveawayState.PAUSED
        return GiveawayState.RUNNING

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.owner_id,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "duration": self.duration,
            "elapsedTime": self.elapsed_time,
            "paused": self.paused,
            "cancelled": self.cancelled,
        }


@dataclass
class ContributionRecord:
    """Running tally of one participant's contributions to one giveaway."""

    id: str
    giveaway_id: str
    participant_id: str
    display_name: str
    bits: int = 0
    subs: int = 0

    def score(self, metric: Metric) -> int:
        return self.bits if metric is Metric.BITS else self.subs

    def add(self, bits: int, subs: int) -> None:
        if bits < 0 or subs < 0:
            raise ValueError("contribution counts can only increase")
        self.bits += bits
        self.subs += subs


@dataclass(frozen=True)
class LeaderboardEntry:
    participant_id: str
    name: str
    score: int

    def to_payload(self) -> Dict[str, Any]:
        return {"participantId": self.participant_id, "name": self.name, "score": self.score}


@dataclass(frozen=True)
class Contribution:
    """A normalized contribution event from the platform feed."""

    participant_id: str
    display_name: str
    bits: int = 0
    subs: int = 0

    def __post_init__(self) -> None:
        if self.bits < 0 or self.subs < 0:
            raise ValueError("contribution deltas must not be negative")

    def metrics(self) -> List[Metric]:
        affected = []
        if self.bits:
            affected.append(Metric.BITS)
        if self.subs:
            affected.append(Metric.SUBS)
        return affected


@dataclass
class OverlayPosition:
    """Where an overlay element was last dragged to."""

    name: str
    x: float
    y: float

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "x": self.x, "y": self.y}
