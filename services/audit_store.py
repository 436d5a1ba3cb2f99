"""
Audit Store for SQLite persistence.

Append-only trail of admitted events and their outcomes. Every admitted event
produces two independent writes: an admission record before execution and a
result record after it. Writes are best-effort: a failure is logged and
reported to the caller, never raised, and duplicates are tolerated.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

import aiosqlite

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "./database.db"

# Seconds a writer waits for a concurrent writer to release the database
BUSY_TIMEOUT_SECONDS = 30.0

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS admissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    author_id TEXT NOT NULL,
    author_handle TEXT NOT NULL,
    event_id TEXT NOT NULL,
    script TEXT NOT NULL,
    event_timestamp INTEGER NOT NULL,
    recorded_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT NOT NULL,
    result TEXT NOT NULL,
    error TEXT,
    recorded_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_admissions_event_id
    ON admissions(event_id);
CREATE INDEX IF NOT EXISTS idx_results_event_id
    ON results(event_id);
"""


@dataclass(frozen=True)
class AdmissionRecord:
    """Written when an event is admitted, before execution."""

    author_id: str
    author_handle: str
    event_id: str
    script: str
    event_timestamp: int


@dataclass(frozen=True)
class ResultRecord:
    """Written when execution of an admitted event completes."""

    event_id: str
    result: str
    error: str | None = None


class AuditStore:
    """
    Append-only audit trail.

    Uses SQLite via aiosqlite; one short-lived connection per write.
    """

    def __init__(self, db_path: str | None = None):
        """
        Initialize the audit store.

        Args:
            db_path: Path to SQLite database. Defaults to AUDIT_DB_PATH env var or ./database.db
        """
        self._db_path = db_path or os.getenv("AUDIT_DB_PATH", DEFAULT_DB_PATH)

    @property
    def db_path(self) -> str:
        return self._db_path

    async def ensure_schema(self) -> None:
        """
        Apply the schema. Safe to call on every startup.

        Raises:
            aiosqlite.Error / OSError: the database cannot be opened. This is
                the one place errors propagate, so startup can fail loudly.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        async with aiosqlite.connect(self._db_path, timeout=BUSY_TIMEOUT_SECONDS) as conn:
            await conn.executescript(_SCHEMA_SQL)
            await conn.commit()

        logger.info("Audit store schema ready at %s", self._db_path)

    async def _append(self, sql: str, params: tuple) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        try:
            async with aiosqlite.connect(self._db_path, timeout=BUSY_TIMEOUT_SECONDS) as conn:
                await conn.execute(sql, (*params, now))
                await conn.commit()
        except (aiosqlite.Error, OSError) as exc:
            logger.error("Audit write failed (%s): %s", sql.split("(")[0].strip(), exc)
            return False
        return True

    async def record_admission(self, record: AdmissionRecord) -> bool:
        """Append an admission record. Returns False if the write failed."""
        ok = await self._append(
            """
            INSERT INTO admissions (
                author_id, author_handle, event_id, script, event_timestamp, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.author_id,
                record.author_handle,
                record.event_id,
                record.script,
                record.event_timestamp,
            ),
        )
        if ok:
            logger.debug("Recorded admission of %s", record.event_id)
        return ok

    async def record_result(self, record: ResultRecord) -> bool:
        """Append a result record. Returns False if the write failed."""
        ok = await self._append(
            """
            INSERT INTO results (event_id, result, error, recorded_at)
            VALUES (?, ?, ?, ?)
            """,
            (record.event_id, record.result, record.error),
        )
        if ok:
            logger.debug("Recorded result of %s", record.event_id)
        return ok

    async def list_admissions(self, event_id: str | None = None) -> list[AdmissionRecord]:
        """Read admission records, oldest first."""
        async with aiosqlite.connect(self._db_path, timeout=BUSY_TIMEOUT_SECONDS) as conn:
            conn.row_factory = aiosqlite.Row
            if event_id is None:
                cursor = await conn.execute("SELECT * FROM admissions ORDER BY id")
            else:
                cursor = await conn.execute(
                    "SELECT * FROM admissions WHERE event_id = ? ORDER BY id",
                    (event_id,),
                )
            rows = await cursor.fetchall()

        return [
            AdmissionRecord(
                author_id=row["author_id"],
                author_handle=row["author_handle"],
                event_id=row["event_id"],
                script=row["script"],
                event_timestamp=row["event_timestamp"],
            )
            for row in rows
        ]

    async def list_results(self, event_id: str | None = None) -> list[ResultRecord]:
        """Read result records, oldest first."""
        async with aiosqlite.connect(self._db_path, timeout=BUSY_TIMEOUT_SECONDS) as conn:
            conn.row_factory = aiosqlite.Row
            if event_id is None:
                cursor = await conn.execute("SELECT * FROM results ORDER BY id")
            else:
                cursor = await conn.execute(
                    "SELECT * FROM results WHERE event_id = ? ORDER BY id",
                    (event_id,),
                )
            rows = await cursor.fetchall()

        return [
            ResultRecord(
                event_id=row["event_id"],
                result=row["result"],
                error=row["error"],
            )
            for row in rows
        ]


__all__ = ["AdmissionRecord", "AuditStore", "ResultRecord"]
