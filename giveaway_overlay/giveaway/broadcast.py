"""Registry of connected display clients and the single fan-out point for outbound messages."""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

from giveaway_overlay.giveaway.errors import TransportError
from giveaway_overlay.giveaway.events import ClientEvent, EventBus, EventType
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)


class Transport(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectedClient:
    """One connected client; inert until it announces a role."""

    def __init__(self, transport: Transport, client_id: Optional[str] = None) -> None:
        self.id = client_id or uuid.uuid4().hex[:12]
        self.transport = transport
        self.role: Optional[str] = None

    async def send(self, message_type: str, payload: Any) -> None:
        try:
            await self.transport.send_json({"type": message_type, "payload": payload})
        except Exception as exc:
            raise TransportError(f"send of {message_type} to client {self.id} failed: {exc}") from exc

    def __repr__(self) -> str:
        return f"ConnectedClient(id={self.id!r}, role={self.role!r})"


# Outbound queue item: (target, message_type, payload). The target is None for
# a full broadcast, a role name for a role broadcast or a single client.
_Outbound = Tuple[Any, str, Any]
_ALL = None


class BroadcastHub:
    """Fans out snapshots to clients in the order they were published.

    Every outbound message, broadcast or direct, goes through one queue that a
    single drain task empties, so each client sees messages in exactly the
    order the server published them. Payloads must be fresh objects at
    publish time; they are sent as-is later.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._connected: Set[ConnectedClient] = set()
        self._clients: Set[ConnectedClient] = set()
        self._roles: Dict[str, Set[ConnectedClient]] = defaultdict(set)
        self._queue: asyncio.Queue[_Outbound] = asyncio.Queue()
        self._drain_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain_loop(), name="giveaway-broadcast")

    async def stop(self) -> None:
        if self._drain_task:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        for client in list(self._connected):
            close = getattr(client.transport, "close", None)
            if close is None:
                continue
            try:
                await close(code=1001, reason="Server shutdown")
            except Exception as exc:
                logger.debug("Error closing client %s: %s", client.id, exc)
        self._connected.clear()
        self._clients.clear()
        self._roles.clear()

    async def drain(self) -> None:
        """Wait until every message published so far has been handed to its transport."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    def connect(self, transport: Transport) -> ConnectedClient:
        client = ConnectedClient(transport)
        self._connected.add(client)
        logger.info("Client %s connected (%s total)", client.id, len(self._connected))
        return client

    async def announce(self, client: ConnectedClient, role: str) -> None:
        """Admit ``client`` under ``role`` and let subsystems push it a snapshot."""
        role = (role or "").strip().lower()
        if not role:
            logger.warning("Client %s announced an empty role; ignoring", client.id)
            return
        if client not in self._connected:
            logger.debug("Ignoring role announcement from disconnected client %s", client.id)
            return

        if client.role and client.role != role:
            self._roles[client.role].discard(client)
        client.role = role
        self._clients.add(client)
        self._roles[role].add(client)
        logger.info("Client %s joined as %s (%s admitted)", client.id, role, len(self._clients))

        await self._bus.emit(EventType.SOCKET_CONNECT, ClientEvent(client=client, role=role))

    async def disconnect(self, client: ConnectedClient) -> None:
        was_known = client in self._connected
        self._connected.discard(client)
        self._clients.discard(client)

        # A client should sit in exactly one bucket, but check them all.
        found_roles: List[str] = []
        for role, members in list(self._roles.items()):
            if client in members:
                members.discard(client)
                found_roles.append(role)
                if not members:
                    del self._roles[role]

        if was_known:
            logger.info("Client %s disconnected (%s remaining)", client.id, len(self._connected))
        for role in found_roles:
            await self._bus.emit(EventType.SOCKET_DISCONNECT, ClientEvent(client=client, role=role))

    @property
    def clients(self) -> List[ConnectedClient]:
        return list(self._clients)

    def clients_for_role(self, role: str) -> List[ConnectedClient]:
        return list(self._roles.get(role, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connected)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def broadcast(self, message_type: str, payload: Any) -> None:
        self._queue.put_nowait((_ALL, message_type, payload))

    def broadcast_role(self, role: str, message_type: str, payload: Any) -> None:
        self._queue.put_nowait((role, message_type, payload))

    def send(self, client: ConnectedClient, message_type: str, payload: Any) -> None:
        self._queue.put_nowait((client, message_type, payload))

    async def _drain_loop(self) -> None:
        while True:
            target, message_type, payload = await self._queue.get()
            try:
                await self._deliver(target, message_type, payload)
            except Exception as exc:
                logger.exception("Broadcast loop error: %s", exc)
            finally:
                self._queue.task_done()

    def _resolve(self, target: Any) -> List[ConnectedClient]:
        if target is _ALL:
            return list(self._clients)
        if isinstance(target, ConnectedClient):
            return [target] if target in self._clients else []
        return list(self._roles.get(target, ()))

    async def _deliver(self, target: Any, message_type: str, payload: Any) -> None:
        recipients = self._resolve(target)
        if not recipients:
            return
        failed: List[ConnectedClient] = []
        for client in recipients:
            try:
                await client.send(message_type, payload)
            except TransportError as exc:
                logger.debug("%s", exc)
                failed.append(client)
        for client in failed:
            await self.disconnect(client)
        logger.debug("Delivered %s to %s client(s)", message_type, len(recipients) - len(failed))
