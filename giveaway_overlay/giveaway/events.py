"""Typed in-process event bus connecting the giveaway subsystems."""

from __future__ import annotations

import inspect
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

from giveaway_overlay.utils.logger import get_logger

if TYPE_CHECKING:
    from giveaway_overlay.giveaway.broadcast import ConnectedClient

logger = get_logger(__name__)


class EventType(Enum):
    AUTHORIZE = "authorize"
    DEAUTHORIZE = "deauthorize"
    SOCKET_CONNECT = "socket-connect"
    SOCKET_DISCONNECT = "socket-disconnect"


@dataclass(frozen=True)
class AuthEvent:
    owner_id: Optional[str]
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ClientEvent:
    client: "ConnectedClient"
    role: str


Listener = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Dispatches a fixed vocabulary of events to registered listeners.

    Listeners run in registration order and may be plain functions or
    coroutine functions; emit() awaits each one before moving to the next so
    a listener sees the world exactly as the previous one left it.
    """

    def __init__(self) -> None:
        self._listeners: Dict[EventType, List[Listener]] = defaultdict(list)

    def add_listener(self, event_type: EventType, callback: Listener) -> None:
        self._listeners[event_type].append(callback)
        logger.debug("Adding listener for event_type=%s, callback=%s", event_type.value, callback)

    def remove_listener(self, event_type: EventType, callback: Listener) -> None:
        try:
            self._listeners[event_type].remove(callback)
        except ValueError:
            pass

    async def emit(self, event_type: EventType, payload: Any = None) -> None:
        for callback in list(self._listeners.get(event_type, [])):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.exception("Listener for %s failed: %s", event_type.value, exc)
