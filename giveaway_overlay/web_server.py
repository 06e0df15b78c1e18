"""FastAPI web server for the giveaway overlay: operator commands and the client WebSocket."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from giveaway_overlay.giveaway.auth import AuthState
from giveaway_overlay.giveaway.broadcast import BroadcastHub, ConnectedClient
from giveaway_overlay.giveaway.contributions import BitsMessage, SubscriptionMessage, from_bits, from_subscription
from giveaway_overlay.giveaway.errors import ConflictError, PersistenceError
from giveaway_overlay.giveaway.models import OverlayPosition
from giveaway_overlay.giveaway.state_machine import GiveawayManager
from giveaway_overlay.giveaway.store import GiveawayStore
from giveaway_overlay.utils.config import PROJECT_ROOT, get_bool, get_config_value, get_int
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)

PUBLIC_DIR = PROJECT_ROOT / "public"


class StartGiveawayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration_ms: int = Field(alias="durationMs", gt=0)
    owner_id: Optional[str] = Field(default=None, alias="ownerId")


class AuthorizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias="ownerId", min_length=1)
    display_name: Optional[str] = Field(default=None, alias="displayName")


class OverlayDragMessage(BaseModel):
    name: str = Field(min_length=1)
    x: float
    y: float


class OverlayWebServer:
    """HTTP and WebSocket gateway in front of the giveaway core."""

    def __init__(
        self,
        config: Dict[str, Any],
        manager: GiveawayManager,
        hub: BroadcastHub,
        auth: AuthState,
        store: GiveawayStore,
    ) -> None:
        self.config = config
        self._manager = manager
        self._hub = hub
        self._auth = auth
        self._store = store
        self._server = None

        self.app = FastAPI(
            title="Giveaway Overlay API",
            description="Command surface and live updates for the stream giveaway overlay",
            version="1.0.0",
            lifespan=self._lifespan,
        )

        self._setup_middleware()
        self._setup_routes()
        self._setup_static_files()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self._store.initialize()
        await self._hub.start()
        owner_id = get_config_value(self.config, "auth.owner_id")
        if owner_id:
            await self._auth.authorize(str(owner_id), get_config_value(self.config, "auth.display_name"))
        try:
            yield
        finally:
            await self._manager.shutdown()
            await self._hub.stop()
            await self._store.close()

    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_static_files(self) -> None:
        # Mounted last so it never shadows the API routes.
        if PUBLIC_DIR.exists():
            self.app.mount("/", StaticFiles(directory=str(PUBLIC_DIR), html=True), name="public")
            logger.info("Client pages mounted from %s", PUBLIC_DIR)
        else:
            logger.info("Client build directory not found; API-only mode")

            @self.app.get("/")
            async def index() -> HTMLResponse:
                return HTMLResponse("<h1>Giveaway overlay client pages not built</h1>")

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & client configuration
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "giveaway": self._manager.state.value,
                "authorized": self._auth.authorized,
                "websocket_connections": self._hub.connection_count,
            }

        @self.app.get("/config")
        async def client_config() -> Dict[str, Any]:
            try:
                overlays = [position.to_payload() for position in await self._store.list_overlays()]
            except PersistenceError as exc:
                logger.error("Could not load overlay positions: %s", exc)
                overlays = []
            return {
                "socketPath": "/ws",
                "bitsLeadersCount": get_int(self.config, "leaderboard.bits_leaders_count", 10),
                "subsLeadersCount": get_int(self.config, "leaderboard.subs_leaders_count", 10),
                "overlays": overlays,
            }

        # ------------------------------------------------------------------
        # Giveaway state
        # ------------------------------------------------------------------
        @self.app.get("/api/giveaway")
        async def get_giveaway() -> Dict[str, Any]:
            return {"state": self._manager.state.value, "giveaway": self._manager.snapshot()}

        @self.app.get("/api/giveaway/history")
        async def get_giveaway_history(limit: int = 20) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            if not self._auth.authorized:
                return {"giveaways": [], "pagination": {"limit": limit, "returned": 0}}
            try:
                giveaways = await self._store.list_giveaways(self._auth.owner_id, limit=limit)
            except PersistenceError as exc:
                logger.error("Could not load giveaway history: %s", exc)
                giveaways = []
            return {
                "giveaways": [dict(item.to_payload(), state=item.state.value) for item in giveaways],
                "pagination": {"limit": limit, "returned": len(giveaways)},
            }

        # ------------------------------------------------------------------
        # Operator commands; each one answers with a bare success flag
        # ------------------------------------------------------------------
        @self.app.post("/api/giveaway/start")
        async def start_giveaway(request: StartGiveawayRequest) -> Dict[str, bool]:
            owner_id = request.owner_id or self._auth.owner_id
            if not owner_id:
                logger.warning("Refusing to start a giveaway with no owner")
                return {"success": False}
            try:
                await self._manager.start(owner_id, request.duration_ms)
            except ConflictError as exc:
                logger.info("Start rejected: %s", exc)
                return {"success": False}
            return {"success": True}

        @self.app.post("/api/giveaway/pause")
        async def pause_giveaway() -> Dict[str, bool]:
            await self._manager.pause()
            return {"success": True}

        @self.app.post("/api/giveaway/resume")
        async def resume_giveaway() -> Dict[str, bool]:
            await self._manager.resume()
            return {"success": True}

        @self.app.post("/api/giveaway/cancel")
        async def cancel_giveaway() -> Dict[str, bool]:
            await self._manager.cancel()
            return {"success": True}

        # ------------------------------------------------------------------
        # Identity collaborator hooks
        # ------------------------------------------------------------------
        @self.app.post("/api/auth/authorize")
        async def authorize(request: AuthorizeRequest) -> Dict[str, bool]:
            await self._auth.authorize(request.owner_id, request.display_name)
            return {"success": True}

        @self.app.post("/api/auth/deauthorize")
        async def deauthorize() -> Dict[str, bool]:
            await self._auth.deauthorize()
            return {"success": True}

        # ------------------------------------------------------------------
        # Synthetic platform events for testing the overlay
        # ------------------------------------------------------------------
        if get_bool(self.config, "server.enable_test_routes"):

            @self.app.post("/test/bits")
            async def test_bits(message: BitsMessage) -> Dict[str, bool]:
                contribution = from_bits(message)
                if contribution is not None:
                    await self._manager.record_contribution(contribution)
                return {"success": True}

            @self.app.post("/test/subs")
            async def test_subs(message: SubscriptionMessage) -> Dict[str, bool]:
                contribution = from_subscription(message)
                if contribution is not None:
                    await self._manager.record_contribution(contribution)
                return {"success": True}

            logger.info("Test event routes enabled")

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            client = self._hub.connect(websocket)
            try:
                while True:
                    try:
                        message = await websocket.receive_json()
                    except WebSocketDisconnect:
                        break
                    except (KeyError, ValueError) as exc:
                        # Binary frames carry no "text" key.
                        logger.debug("Malformed frame from client %s: %s", client.id, exc)
                        continue
                    await self._handle_client_message(client, message)
            finally:
                await self._hub.disconnect(client)

    # ------------------------------------------------------------------
    # Client messages
    # ------------------------------------------------------------------
    async def _handle_client_message(self, client: ConnectedClient, message: Any) -> None:
        if not isinstance(message, dict):
            return
        message_type = message.get("type")
        payload = message.get("payload")

        if message_type == "role":
            role = payload.get("role") if isinstance(payload, dict) else payload
            await self._hub.announce(client, str(role or ""))
            return

        if client.role is None:
            logger.debug("Ignoring %s from client %s before its role announcement", message_type, client.id)
            return

        if message_type == "overlay-drag":
            await self._handle_overlay_drag(payload)
        else:
            logger.debug("Ignoring unknown message %s from client %s", message_type, client.id)

    async def _handle_overlay_drag(self, payload: Any) -> None:
        try:
            drag = OverlayDragMessage.model_validate(payload)
        except ValidationError as exc:
            logger.debug("Invalid overlay-drag payload: %s", exc)
            return
        position = OverlayPosition(name=drag.name, x=drag.x, y=drag.y)
        self._hub.broadcast("overlay-moved", position.to_payload())
        try:
            await self._store.save_overlay(position)
        except PersistenceError as exc:
            logger.error("Could not save overlay position for %s: %s", position.name, exc)

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 3000) -> None:
        import uvicorn

        logger.info("Starting giveaway overlay web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=False)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Giveaway overlay web server stopped")

    async def stop(self) -> None:
        if self._server is not None:
            logger.info("Stopping giveaway overlay web server")
            self._server.should_exit = True
            # Give uvicorn a moment to run the lifespan shutdown.
            await asyncio.sleep(0)
