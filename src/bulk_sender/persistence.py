# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite-backed failure log for the bulk sender.

Terminally failed tasks are written to a ``failures`` table so operators can
inspect them after the process that sent the batch has exited. The store
implements the :class:`~bulk_sender.failure_sink.FailureSink` protocol and
can be plugged straight into the scheduler.

The persistence layer uses aiosqlite, supporting both file-based databases
and in-memory databases for testing.

Example:
    Recording and listing failures::

        store = FailureStore("/data/failures.db")
        await store.init_db()
        await store.record_failure("+3906123", "Hello", 5, exc)
        rows = await store.list_failures(limit=20)
"""

from __future__ import annotations

import time
from typing import Any

import aiosqlite

from .failure_sink import error_kind


class FailureStore:
    """Async SQLite store of terminal failures.

    Each operation opens and closes its own connection, which keeps the
    store safe to share between workers.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:".
    """

    def __init__(self, db_path: str = "/data/bulk_sender.db"):
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file. ":memory:" gives a
                fresh, empty database on every connection and is only
                useful for smoke tests.
        """
        self.db_path = db_path or ":memory:"

    async def init_db(self) -> None:
        """Create the schema. Safe to call repeatedly."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS failures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recipient TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    attempts INTEGER NOT NULL,
                    error TEXT,
                    error_kind TEXT,
                    failed_ts REAL NOT NULL
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_failures_ts ON failures(failed_ts)")
            await db.commit()

    async def record_failure(
        self,
        recipient: str,
        payload: str,
        final_attempt_count: int,
        last_error: BaseException,
    ) -> None:
        """Insert one terminal failure."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO failures (recipient, payload, attempts, error, error_kind, failed_ts)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    recipient,
                    payload,
                    int(final_attempt_count),
                    str(last_error),
                    error_kind(last_error),
                    time.time(),
                ),
            )
            await db.commit()

    async def list_failures(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Return failures oldest first, or the newest ``limit`` of them."""
        if limit is not None and limit < 0:
            raise ValueError("limit must be non-negative")
        query = "SELECT recipient, payload, attempts, error, error_kind, failed_ts FROM failures ORDER BY id"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query = (
                "SELECT * FROM (SELECT id, recipient, payload, attempts, error, error_kind, failed_ts "
                "FROM failures ORDER BY id DESC LIMIT ?) ORDER BY id"
            )
            params = (int(limit),)
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "recipient": row["recipient"],
                "payload": row["payload"],
                "attempts": row["attempts"],
                "error": row["error"],
                "error_kind": row["error_kind"],
                "failed_ts": row["failed_ts"],
            }
            for row in rows
        ]

    async def count_failures(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM failures") as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def clear(self) -> int:
        """Delete every stored failure and return how many were removed."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM failures")
            await db.commit()
            return cursor.rowcount
