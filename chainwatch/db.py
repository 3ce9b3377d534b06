"""SQLite event store for chainwatch.

Keeps a history of emitted domain events and the latest whale profile per
trader so `events list` / `whales top` work offline and running totals
survive restarts. All database operations are async (aiosqlite).

Schema:
  - events: one row per emitted domain event (JSON payload)
  - whale_profiles: latest cumulative profile per trader address
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import aiosqlite

from chainwatch.config import DEFAULT_CONFIG_DIR
from chainwatch.exceptions import DatabaseError
from chainwatch.models import DomainEvent, WhaleProfile
from chainwatch.output import DecimalEncoder

DEFAULT_DB_PATH = DEFAULT_CONFIG_DIR / "events.db"

# SQL schema, applied on connect if tables don't exist
_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS events (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    kind         TEXT NOT NULL CHECK (kind IN
                   ('mint_created', 'migration', 'large_transfer', 'large_trade', 'order_wall')),
    ref          TEXT NOT NULL DEFAULT '',
    slot         INTEGER,
    notional     TEXT NOT NULL DEFAULT '0',
    payload      TEXT NOT NULL,
    recorded_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS whale_profiles (
    address      TEXT PRIMARY KEY,
    total_volume TEXT NOT NULL,
    trade_count  INTEGER NOT NULL,
    first_seen   TEXT,
    last_seen    TEXT,
    symbols      TEXT NOT NULL DEFAULT '[]',
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_kind ON events(kind, recorded_at);
CREATE INDEX IF NOT EXISTS idx_events_recorded ON events(recorded_at);
"""

SCHEMA_VERSION = 1


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class Database:
    """
    Async SQLite database manager for chainwatch.

    Usage:
        db = Database(":memory:")
        await db.connect()
        await db.save_event(event)
        await db.close()

    Or as async context manager:
        async with Database(path) as db:
            ...
    """

    def __init__(self, db_path: str = str(DEFAULT_DB_PATH)) -> None:
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open DB connection and apply the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(str(Path(self.db_path).expanduser()))
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._apply_schema()
        except (aiosqlite.Error, OSError) as e:
            raise DatabaseError(f"Failed to connect to database: {e}") from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ──────────────────────────────────────────────────────────
    # Events
    # ──────────────────────────────────────────────────────────

    async def save_event(self, event: DomainEvent) -> int:
        """Persist one emitted event. Returns the generated row id."""
        assert self._conn is not None
        try:
            async with self._conn.execute(
                """
                INSERT INTO events (kind, ref, slot, notional, payload, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.kind,
                    event.signature_or_id,
                    getattr(event, "slot", None),
                    str(event.notional),
                    json.dumps(event.to_dict(), cls=DecimalEncoder),
                    _now_iso(),
                ),
            ) as cursor:
                row_id = cursor.lastrowid
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to save {event.kind} event: {e}") from e
        return int(row_id or 0)

    async def list_events(
        self,
        kind: str | None = None,
        limit: int = 20,
        since_hours: int | None = None,
    ) -> list[dict[str, Any]]:
        """List recent events, newest first."""
        assert self._conn is not None

        query = "SELECT * FROM events"
        params: list[Any] = []
        conditions: list[str] = []

        if kind:
            conditions.append("kind = ?")
            params.append(kind)

        if since_hours:
            cutoff = datetime.now(tz=timezone.utc) - timedelta(hours=since_hours)
            conditions.append("recorded_at >= ?")
            params.append(cutoff.isoformat())

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        rows = []
        async with self._conn.execute(query, params) as cursor:
            async for row in cursor:
                d = dict(row)
                d["event"] = json.loads(d.pop("payload"))
                rows.append(d)
        return rows

    async def count_events(self, kind: str | None = None) -> int:
        assert self._conn is not None
        if kind:
            query, params = "SELECT COUNT(*) FROM events WHERE kind = ?", (kind,)
        else:
            query, params = "SELECT COUNT(*) FROM events", ()
        async with self._conn.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ──────────────────────────────────────────────────────────
    # Whale profiles
    # ──────────────────────────────────────────────────────────

    async def save_whale_profiles(self, profiles: Iterable[WhaleProfile]) -> int:
        """Upsert cumulative profiles. Returns the number written."""
        assert self._conn is not None
        now = _now_iso()
        rows = [
            (
                p.address,
                str(p.total_volume),
                p.trade_count,
                p.first_seen,
                p.last_seen,
                json.dumps(sorted(p.symbols)),
                now,
            )
            for p in profiles
        ]
        if not rows:
            return 0
        try:
            await self._conn.executemany(
                """
                INSERT INTO whale_profiles
                (address, total_volume, trade_count, first_seen, last_seen, symbols, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    total_volume = excluded.total_volume,
                    trade_count  = excluded.trade_count,
                    first_seen   = excluded.first_seen,
                    last_seen    = excluded.last_seen,
                    symbols      = excluded.symbols,
                    updated_at   = excluded.updated_at
                """,
                rows,
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to save whale profiles: {e}") from e
        return len(rows)

    async def load_whale_profiles(self) -> list[WhaleProfile]:
        assert self._conn is not None
        profiles = []
        async with self._conn.execute("SELECT * FROM whale_profiles") as cursor:
            async for row in cursor:
                profiles.append(_row_to_profile(row))
        return profiles

    async def top_whales(self, limit: int = 10) -> list[dict[str, Any]]:
        """Profiles ordered by volume, largest first."""
        profiles = await self.load_whale_profiles()
        profiles.sort(key=lambda p: (-p.total_volume, p.address))
        return [p.to_dict() for p in profiles[:limit]]

    # ──────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────

    async def _apply_schema(self) -> None:
        """Apply schema migrations idempotently."""
        assert self._conn is not None
        await self._conn.executescript(_SCHEMA)
        await self._conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self._conn.commit()


def _row_to_profile(row: aiosqlite.Row) -> WhaleProfile:
    return WhaleProfile(
        address=row["address"],
        total_volume=Decimal(row["total_volume"]),
        trade_count=row["trade_count"],
        first_seen=row["first_seen"],
        last_seen=row["last_seen"],
        symbols=set(json.loads(row["symbols"] or "[]")),
    )
