"""Normalization of platform feed messages into contributions.

Only contributions that can be credited to a known participant count toward
the leaderboards: anonymous cheers and anonymous or non-gift subscriptions
are dropped here.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from giveaway_overlay.giveaway.models import Contribution


class BitsMessage(BaseModel):
    bits: int = Field(ge=0)
    is_anonymous: bool = False
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    display_name: Optional[str] = None


class SubscriptionMessage(BaseModel):
    is_gift: bool = False
    is_anonymous: bool = False
    gifter_id: Optional[str] = None
    gifter_name: Optional[str] = None
    gifter_display_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_display_name: Optional[str] = None


def from_bits(message: BitsMessage) -> Optional[Contribution]:
    if message.is_anonymous or not message.user_id or message.bits <= 0:
        return None
    return Contribution(
        participant_id=message.user_id,
        display_name=message.display_name or message.user_name or message.user_id,
        bits=message.bits,
    )


def from_subscription(message: SubscriptionMessage) -> Optional[Contribution]:
    """A gifted sub credits the gifter, never the recipient."""
    if message.is_anonymous or not message.is_gift or not message.gifter_id:
        return None
    return Contribution(
        participant_id=message.gifter_id,
        display_name=message.gifter_display_name or message.gifter_name or message.gifter_id,
        subs=1,
    )
