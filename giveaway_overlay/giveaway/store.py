"""SQLite-backed persistence for giveaways, contribution tallies and overlay positions.

The in-memory state owned by the state machine and the aggregator is always
authoritative; this store is only a checkpoint target that lets a restarted
process pick up where it left off.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aiosqlite

from giveaway_overlay.giveaway.errors import PersistenceError
from giveaway_overlay.giveaway.models import ContributionRecord, Giveaway, OverlayPosition
from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)


SCHEMA_SQL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS giveaways (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT,
        duration INTEGER NOT NULL,
        elapsed_time INTEGER NOT NULL DEFAULT 0,
        paused INTEGER NOT NULL DEFAULT 0,
        cancelled INTEGER NOT NULL DEFAULT 0
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_giveaways_owner_start ON giveaways(owner_id, start_time);",
    """
    CREATE TABLE IF NOT EXISTS contributions (
        id TEXT PRIMARY KEY,
        giveaway_id TEXT NOT NULL,
        participant_id TEXT NOT NULL,
        display_name TEXT NOT NULL,
        bits INTEGER NOT NULL DEFAULT 0,
        subs INTEGER NOT NULL DEFAULT 0,
        UNIQUE(giveaway_id, participant_id),
        FOREIGN KEY(giveaway_id) REFERENCES giveaways(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS overlays (
        name TEXT PRIMARY KEY,
        x REAL NOT NULL,
        y REAL NOT NULL
    );
    """,
)

GIVEAWAY_COLUMNS = "id, owner_id, start_time, end_time, duration, elapsed_time, paused, cancelled"


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_giveaway(row) -> Giveaway:
    return Giveaway(
        id=row[0],
        owner_id=row[1],
        start_time=_from_text(row[2]),
        end_time=_from_text(row[3]),
        duration=int(row[4]),
        elapsed_time=int(row[5]),
        paused=bool(row[6]),
        cancelled=bool(row[7]),
    )


class GiveawayStore:
    """Single-connection aiosqlite store; statements run in submission order."""

    def __init__(self, database_path: str | Path) -> None:
        self.database_path = Path(database_path)
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        if self._conn is not None:
            return
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self.database_path.as_posix())
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
            for statement in SCHEMA_SQL:
                await self._conn.execute(statement)
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to open giveaway database {self.database_path}: {exc}") from exc
        logger.info("Giveaway store ready at %s", self.database_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await conn.close()
        except aiosqlite.Error as exc:
            logger.warning("Error closing giveaway store: %s", exc)

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        if self._conn is None:
            raise PersistenceError(f"{action}: store is not initialized")
        try:
            yield self._conn
        except aiosqlite.Error as exc:
            raise PersistenceError(f"{action} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Giveaways
    # ------------------------------------------------------------------
    async def save_giveaway(self, giveaway: Giveaway) -> None:
        """Insert or overwrite the row for ``giveaway`` with its in-memory fields."""
        async with self._connection("save giveaway") as conn:
            await conn.execute(
                f"""
                INSERT INTO giveaways ({GIVEAWAY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    end_time = excluded.end_time,
                    duration = excluded.duration,
                    elapsed_time = excluded.elapsed_time,
                    paused = excluded.paused,
                    cancelled = excluded.cancelled
                """,
                (
                    giveaway.id,
                    giveaway.owner_id,
                    _to_text(giveaway.start_time),
                    _to_text(giveaway.end_time),
                    giveaway.duration,
                    giveaway.elapsed_time,
                    int(giveaway.paused),
                    int(giveaway.cancelled),
                ),
            )
            await conn.commit()

    async def get_giveaway(self, giveaway_id: str) -> Optional[Giveaway]:
        async with self._connection("get giveaway") as conn:
            async with conn.execute(
                f"SELECT {GIVEAWAY_COLUMNS} FROM giveaways WHERE id = ?", (giveaway_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return _row_to_giveaway(row) if row else None

    async def find_resumable_giveaway(self, owner_id: str) -> Optional[Giveaway]:
        """Most recent giveaway of ``owner_id`` that was neither cancelled nor ended."""
        async with self._connection("find resumable giveaway") as conn:
            async with conn.execute(
                f"""
                SELECT {GIVEAWAY_COLUMNS} FROM giveaways
                WHERE owner_id = ? AND cancelled = 0 AND end_time IS NULL
                ORDER BY start_time DESC, rowid DESC
                LIMIT 1
                """,
                (owner_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return _row_to_giveaway(row) if row else None

    async def list_giveaways(self, owner_id: str, limit: int = 50) -> List[Giveaway]:
        async with self._connection("list giveaways") as conn:
            async with conn.execute(
                f"""
                SELECT {GIVEAWAY_COLUMNS} FROM giveaways
                WHERE owner_id = ?
                ORDER BY start_time DESC, rowid DESC
                LIMIT ?
                """,
                (owner_id, limit),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_giveaway(row) for row in rows]

    # ------------------------------------------------------------------
    # Contributions
    # ------------------------------------------------------------------
    async def save_contribution(self, record: ContributionRecord) -> None:
        """Write the absolute counts of ``record``, creating the row on first use."""
        async with self._connection("save contribution") as conn:
            await conn.execute(
                """
                INSERT INTO contributions (id, giveaway_id, participant_id, display_name, bits, subs)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(giveaway_id, participant_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    bits = excluded.bits,
                    subs = excluded.subs
                """,
                (
                    record.id,
                    record.giveaway_id,
                    record.participant_id,
                    record.display_name,
                    record.bits,
                    record.subs,
                ),
            )
            await conn.commit()

    async def list_contributions(self, giveaway_id: str) -> List[ContributionRecord]:
        """All tallies of a giveaway in first-contribution order."""
        async with self._connection("list contributions") as conn:
            async with conn.execute(
                """
                SELECT id, giveaway_id, participant_id, display_name, bits, subs
                FROM contributions
                WHERE giveaway_id = ?
                ORDER BY rowid ASC
                """,
                (giveaway_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            ContributionRecord(
                id=row[0],
                giveaway_id=row[1],
                participant_id=row[2],
                display_name=row[3],
                bits=int(row[4]),
                subs=int(row[5]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Overlay positions
    # ------------------------------------------------------------------
    async def save_overlay(self, position: OverlayPosition) -> None:
        async with self._connection("save overlay") as conn:
            await conn.execute(
                """
                INSERT INTO overlays (name, x, y) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET x = excluded.x, y = excluded.y
                """,
                (position.name, position.x, position.y),
            )
            await conn.commit()

    async def list_overlays(self) -> List[OverlayPosition]:
        async with self._connection("list overlays") as conn:
            async with conn.execute("SELECT name, x, y FROM overlays ORDER BY name") as cursor:
                rows = await cursor.fetchall()
        return [OverlayPosition(name=row[0], x=float(row[1]), y=float(row[2])) for row in rows]
