"""SQLite mirror of the audit trail, enabled by AUDIT_DB_PATH."""

import json
import logging
from datetime import datetime

import aiosqlite

from aether.models.events import AuditEntry

logger = logging.getLogger(__name__)


class EventStore:
    """Async SQLite-based audit store."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and tables."""
        self._db = await aiosqlite.connect(self._db_path)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS audit_entries (
                entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT,
                action TEXT NOT NULL,
                params TEXT,
                succeeded INTEGER NOT NULL,
                message TEXT,
                timestamp TEXT NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_timestamp
            ON audit_entries(timestamp)
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_session
            ON audit_entries(session_id)
        """)

        await self._db.commit()
        logger.info(f"Audit store initialized at {self._db_path}")

    async def log_entry(self, entry: AuditEntry) -> None:
        """Persist one audit entry."""
        if not self._db:
            await self.initialize()

        await self._db.execute(
            "INSERT INTO audit_entries (session_id, action, params, succeeded, message, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                entry.session_id,
                entry.action,
                json.dumps(entry.params, default=str),
                1 if entry.succeeded else 0,
                entry.message,
                entry.timestamp.isoformat(),
            ),
        )
        await self._db.commit()

    async def get_entries(
        self,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Newest entries first, optionally for one session."""
        if not self._db:
            await self.initialize()

        query = "SELECT session_id, action, params, succeeded, message, timestamp FROM audit_entries"
        params: list = []
        if session_id:
            query += " WHERE session_id = ?"
            params.append(session_id)
        query += " ORDER BY entry_id DESC LIMIT ?"
        params.append(limit)

        async with self._db.execute(query, params) as cursor:
            rows = await cursor.fetchall()

        return [
            AuditEntry(
                session_id=row[0] or "",
                action=row[1],
                params=json.loads(row[2]) if row[2] else {},
                succeeded=bool(row[3]),
                message=row[4],
                timestamp=datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Audit store closed")
