"""Boundary with the external identity collaborator.

Token handling lives outside this server; all the core needs to know is who
the authorized owner is and when that changes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from giveaway_overlay.giveaway.broadcast import BroadcastHub
from giveaway_overlay.giveaway.events import AuthEvent, ClientEvent, EventBus, EventType
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)


class AuthState:
    def __init__(self, bus: EventBus, hub: BroadcastHub) -> None:
        self._bus = bus
        self._hub = hub
        self.owner_id: Optional[str] = None
        self.display_name: Optional[str] = None
        bus.add_listener(EventType.SOCKET_CONNECT, self._on_client_connect)

    @property
    def authorized(self) -> bool:
        return self.owner_id is not None

    def payload(self) -> Dict[str, Any]:
        return {"authorized": self.authorized, "userName": self.display_name if self.authorized else None}

    async def authorize(self, owner_id: str, display_name: Optional[str] = None) -> None:
        if self.owner_id == owner_id:
            logger.info("Owner %s is already authorized", owner_id)
            return
        if self.authorized:
            await self.deauthorize()

        self.owner_id = owner_id
        self.display_name = display_name or owner_id
        logger.info("Authorized owner %s (%s)", self.owner_id, self.display_name)
        self._hub.broadcast("auth-state", self.payload())
        await self._bus.emit(EventType.AUTHORIZE, AuthEvent(owner_id=self.owner_id, display_name=self.display_name))

    async def deauthorize(self) -> None:
        if not self.authorized:
            return
        event = AuthEvent(owner_id=self.owner_id, display_name=self.display_name)
        logger.info("Deauthorizing owner %s", self.owner_id)
        self.owner_id = None
        self.display_name = None
        self._hub.broadcast("auth-state", self.payload())
        await self._bus.emit(EventType.DEAUTHORIZE, event)

    def _on_client_connect(self, event: ClientEvent) -> None:
        self._hub.send(event.client, "auth-state", self.payload())
