#!/usr/bin/env python3
"""
Giveaway Overlay Server

Main entry point for the stream giveaway overlay backend: the giveaway state
machine, its tick scheduler, the leaderboards and the WebSocket fan-out to
the overlay pages.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from giveaway_overlay.giveaway.aggregator import LeaderboardAggregator
from giveaway_overlay.giveaway.auth import AuthState
from giveaway_overlay.giveaway.broadcast import BroadcastHub
from giveaway_overlay.giveaway.events import EventBus
from giveaway_overlay.giveaway.models import Metric
from giveaway_overlay.giveaway.scheduler import TickScheduler
from giveaway_overlay.giveaway.state_machine import GiveawayManager
from giveaway_overlay.giveaway.store import GiveawayStore
from giveaway_overlay.utils.config import PROJECT_ROOT, get_config_value, get_int, load_config
from giveaway_overlay.utils.logger import get_logger
from giveaway_overlay.web_server import OverlayWebServer

# Load .env from the project root before the config is read
load_dotenv(PROJECT_ROOT / '.env')

logger = get_logger(__name__)


def database_path(config) -> Path:
    path = Path(get_config_value(config, 'database.filename', 'giveaway.db'))
    return path if path.is_absolute() else PROJECT_ROOT / path


class GiveawayOverlayApp:
    """Giveaway overlay application.

    Wires the store, event bus, broadcast hub, leaderboard aggregator, tick
    scheduler and state machine together behind the FastAPI web server, and
    runs until a shutdown signal is received.
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config = load_config(config_file)
        self.web_server: Optional[OverlayWebServer] = None
        self.manager: Optional[GiveawayManager] = None
        self.running = True
        self._server_task: Optional[asyncio.Task] = None

        self._setup_signal_handlers()

        logger.info("🎁 Giveaway Overlay Application initialized")

    def _setup_signal_handlers(self):
        def _handler(signum, frame):
            logger.info(f"📡 Received signal {signum}, initiating graceful shutdown...")
            self.running = False

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

    def _display_config_summary(self):
        logger.info("=" * 60)
        logger.info("📋 CONFIGURATION SUMMARY")
        logger.info("=" * 60)

        logger.info(f"⏱️  Tick Interval: {get_int(self.config, 'giveaway.tick_interval_ms', 1000)}ms")
        logger.info(f"💾 Checkpoint Interval: {get_int(self.config, 'giveaway.checkpoint_interval_ms', 10000)}ms")
        logger.info(f"📊 Leaderboard Debounce: {get_int(self.config, 'leaderboard.debounce_ms', 1000)}ms")
        logger.info(
            f"🏆 Leaders Shown: bits={get_int(self.config, 'leaderboard.bits_leaders_count', 10)}, "
            f"subs={get_int(self.config, 'leaderboard.subs_leaders_count', 10)}"
        )
        logger.info(f"🗄️  Database: {database_path(self.config)}")
        logger.info(f"👤 Owner: {get_config_value(self.config, 'auth.owner_id', 'Not configured')}")

        server_config = self.config.get('server', {})
        logger.info(f"🌍 Server Host: {server_config.get('host', '0.0.0.0')}")
        logger.info(f"🔌 Server Port: {server_config.get('port', 3000)}")

        logger.info("=" * 60)

    def initialize(self):
        """Build the giveaway core and the web server around it."""
        logger.info("🚀 Initializing Giveaway Overlay Application")
        self._display_config_summary()

        store = GiveawayStore(database_path(self.config))
        bus = EventBus()
        hub = BroadcastHub(bus)
        aggregator = LeaderboardAggregator(
            store,
            hub,
            bus,
            leaders_count={
                Metric.BITS: get_int(self.config, 'leaderboard.bits_leaders_count', 10),
                Metric.SUBS: get_int(self.config, 'leaderboard.subs_leaders_count', 10),
            },
            debounce_ms=get_int(self.config, 'leaderboard.debounce_ms', 1000),
        )
        scheduler = TickScheduler(
            tick_interval_ms=get_int(self.config, 'giveaway.tick_interval_ms', 1000),
            checkpoint_interval_ms=get_int(self.config, 'giveaway.checkpoint_interval_ms', 10000),
        )
        self.manager = GiveawayManager(store, hub, aggregator, scheduler, bus)
        auth = AuthState(bus, hub)

        logger.info("🌐 Initializing web server...")
        self.web_server = OverlayWebServer(self.config, self.manager, hub, auth, store)

        logger.info("🎉 Application initialization completed")

    async def start(self):
        """Start the web server and run until a shutdown signal is received."""
        try:
            self.initialize()

            server_host = self.config.get('server', {}).get('host', '0.0.0.0')
            server_port = get_int(self.config, 'server.port', 3000)

            logger.info(f"🌍 Starting web server on {server_host}:{server_port}...")
            self._server_task = asyncio.create_task(self.web_server.start(host=server_host, port=server_port))
            # Give the server a moment to attempt bind; a failed bind ends the task right away
            await asyncio.sleep(0.2)
            if self._server_task.done():
                exc = self._server_task.exception()
                if exc:
                    logger.error(f"Web server task failed during startup: {exc}")
                    raise exc

            self._display_startup_summary(server_host, server_port)

            while self.running and not self._server_task.done():
                await asyncio.sleep(1)

            logger.info("🛑 Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        """Stop the web server; its lifespan checkpoints the giveaway and closes the store."""
        self.running = False
        if self.web_server is None:
            return

        logger.info("🛑 Stopping Giveaway Overlay Application")
        await self.web_server.stop()
        if self._server_task is not None and not self._server_task.done():
            try:
                await self._server_task
            except Exception as e:
                logger.error(f"❌ Error stopping web server: {e}")
        self.web_server = None

        logger.info("🟢 Giveaway Overlay Application stopped successfully")

    def _display_startup_summary(self, host, port):
        logger.info("=" * 60)
        logger.info("🎁 GIVEAWAY OVERLAY SERVER STARTED")
        logger.info("=" * 60)
        logger.info(f"🎲 Giveaway: {self.manager.state.value if self.manager else 'unknown'}")
        logger.info(f"🏠 Overlay Pages: http://{host}:{port}")
        logger.info(f"📡 WebSocket: ws://{host}:{port}/ws")
        logger.info(f"🔧 API Endpoints: http://{host}:{port}/api/")
        logger.info("=" * 60)


async def main():
    """Main entry point for the Giveaway Overlay Application"""
    app = GiveawayOverlayApp()

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("🛑 Application interrupted by user")
    except Exception as e:
        logger.exception(f"❌ Application failed: {e}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
