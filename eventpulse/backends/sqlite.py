"""SQLite event log for eventpulse."""

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from eventpulse.core.event import Event, EventStatus, check_transition

logger = logging.getLogger("eventpulse.sqlite")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id              TEXT    PRIMARY KEY,
    type            TEXT    NOT NULL,
    payload         TEXT    NOT NULL,
    organization_id TEXT    NOT NULL,
    user_id         TEXT,
    status          TEXT    NOT NULL DEFAULT 'PENDING',
    attempts        INTEGER NOT NULL DEFAULT 0,
    created_at      REAL    NOT NULL,
    processed_at    REAL,
    last_error      TEXT
);

CREATE INDEX IF NOT EXISTS idx_events_status_created ON events(status, created_at);
CREATE INDEX IF NOT EXISTS idx_events_status_processed ON events(status, processed_at);
CREATE INDEX IF NOT EXISTS idx_events_org_created ON events(organization_id, created_at);
"""

_COLUMNS = (
    "id, type, payload, organization_id, user_id, status, attempts, "
    "created_at, processed_at, last_error"
)

_TRANSITION_FIELDS = frozenset({"attempts", "processed_at", "last_error"})


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


def _from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, UTC)


def _row_to_event(row: tuple) -> Event:
    return Event(
        id=row[0],
        type=row[1],
        payload=json.loads(row[2]),
        organization_id=row[3],
        user_id=row[4],
        status=EventStatus(row[5]),
        attempts=row[6],
        created_at=_from_epoch(row[7]),
        processed_at=_from_epoch(row[8]),
        last_error=row[9],
    )


class SqliteEventStore:
    """SQLite-backed event log. One connection per instance.

    Status changes are single conditional UPDATE statements, so two workers
    sharing the database file cannot both win the same transition.

    Args:
        db_path: Database file, or ``":memory:"``.
        busy_timeout: Milliseconds SQLite waits on a locked database.
    """

    def __init__(self, db_path: Path | str, busy_timeout: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None
        self._conn_lock = asyncio.Lock()

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        # The worker's two loops make their first call concurrently
        async with self._conn_lock:
            if self._conn is None:
                conn = await aiosqlite.connect(str(self._db_path))
                if str(self._db_path) != ":memory:":
                    await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
                await conn.executescript(_SCHEMA)
                await conn.commit()
                self._conn = conn
                logger.debug("Opened event store at %s", self._db_path)
            return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def append(self, event: Event) -> Event:
        conn = await self._ensure_conn()
        await conn.execute(
            f"INSERT INTO events ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event.id,
                event.type,
                json.dumps(event.payload, ensure_ascii=False),
                event.organization_id,
                event.user_id,
                event.status.value,
                event.attempts,
                _to_epoch(event.created_at),
                _to_epoch(event.processed_at) if event.processed_at else None,
                event.last_error,
            ),
        )
        await conn.commit()
        return event

    async def get(self, event_id: str) -> Event | None:
        conn = await self._ensure_conn()
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM events WHERE id = ?", (event_id,))
        row = await cursor.fetchone()
        return _row_to_event(row) if row else None

    async def fetch_pending(
        self,
        limit: int,
        types: Sequence[str] | None = None,
        max_attempts: int | None = None,
        include_processing: bool = False,
    ) -> list[Event]:
        conn = await self._ensure_conn()
        params: list[Any] = []
        clauses = ["status = 'PENDING'"]
        if max_attempts is not None:
            clauses.append("(status = 'FAILED' AND attempts < ?)")
            params.append(max_attempts)
        if include_processing:
            clauses.append("status = 'PROCESSING'")
        where = f"({' OR '.join(clauses)})"
        if types is not None:
            if not types:
                return []
            where += f" AND type IN ({','.join('?' * len(types))})"
            params.extend(types)
        params.append(limit)

        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM events WHERE {where} "
            "ORDER BY created_at, rowid LIMIT ?",
            params,
        )
        rows = await cursor.fetchall()
        return [_row_to_event(row) for row in rows]

    async def transition(
        self,
        event_id: str,
        from_status: EventStatus,
        to_status: EventStatus,
        **fields: Any,
    ) -> bool:
        check_transition(from_status, to_status)
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

        assignments = ["status = ?"]
        params: list[Any] = [to_status.value]
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            if isinstance(value, datetime):
                value = _to_epoch(value)
            params.append(value)
        params.extend([event_id, from_status.value])

        conn = await self._ensure_conn()
        cursor = await conn.execute(
            f"UPDATE events SET {', '.join(assignments)} WHERE id = ? AND status = ?",
            params,
        )
        await conn.commit()
        return cursor.rowcount == 1

    async def delete_older_than(
        self, status: EventStatus, cutoff: datetime, page_size: int
    ) -> int:
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            """
            DELETE FROM events WHERE id IN (
                SELECT id FROM events
                WHERE status = ? AND processed_at IS NOT NULL AND processed_at < ?
                ORDER BY processed_at
                LIMIT ?
            )
            """,
            (status.value, _to_epoch(cutoff), page_size),
        )
        await conn.commit()
        return cursor.rowcount or 0

    async def count_by_type_and_status(
        self, organization_id: str, since: datetime
    ) -> dict[str, dict[str, int]]:
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            """
            SELECT type, status, COUNT(*) FROM events
            WHERE organization_id = ? AND created_at >= ?
            GROUP BY type, status
            """,
            (organization_id, _to_epoch(since)),
        )
        stats: dict[str, dict[str, int]] = {}
        for event_type, status, count in await cursor.fetchall():
            stats.setdefault(event_type, {})[status] = count
        return stats

    async def requeue_failed(
        self, organization_id: str, event_type: str | None = None
    ) -> int:
        conn = await self._ensure_conn()
        sql = (
            "UPDATE events SET status = 'PENDING', attempts = 0 "
            "WHERE status = 'FAILED' AND organization_id = ?"
        )
        params: list[Any] = [organization_id]
        if event_type is not None:
            sql += " AND type = ?"
            params.append(event_type)
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor.rowcount or 0
