"""SQLite-backed local session store using aiosqlite.

This module provides the SessionStore class, the durable record of every
agent session a watcher has reported. The orchestrator only needs a narrow
slice of it: existence checks for deduplication, inserts of newly detected
sessions, row lookups before processing, and a few status queries.

Tables:
    agent_sessions: One row per (session_id, file_name) with processing
        status columns maintained by the metrics/AI collaborators.

Usage:
    >>> from models.database import SessionStore
    >>> store = SessionStore("./data/sessions.db")
    >>> await store.init()
    >>> await store.session_exists("sess_abc123", "sess_abc123.jsonl")
    False
"""

import time
import uuid
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from events.types import SessionDetected
from models.schemas import ProcessingStatus, SessionRow

logger = structlog.get_logger(__name__)

_ROW_COLUMNS = """
    session_id, provider, file_path, file_name, project_name,
    core_metrics_status, processing_status, assessment_status, session_end_time
"""

_UPDATABLE_COLUMNS = {
    "core_metrics_status",
    "processing_status",
    "assessment_status",
    "session_end_time",
    "synced_to_server",
}


def _to_row(row: aiosqlite.Row) -> SessionRow:
    return SessionRow(**dict(row))


class SessionStore:
    """Async SQLite store for detected agent sessions.

    Read methods catch exceptions internally and log them, returning an
    empty result, so a database hiccup degrades to "nothing to do" rather
    than crashing a processing flow. ``insert_session`` raises: callers
    decide whether an insert failure matters.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the session store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(self) -> None:
        """Create tables and indexes if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS agent_sessions (
                        id TEXT PRIMARY KEY,
                        provider TEXT NOT NULL,
                        project_name TEXT NOT NULL,
                        session_id TEXT NOT NULL,
                        file_name TEXT NOT NULL,
                        file_path TEXT NOT NULL,
                        file_size INTEGER NOT NULL DEFAULT 0,
                        session_start_time INTEGER,
                        session_end_time INTEGER,
                        duration_ms INTEGER,
                        processing_status TEXT NOT NULL DEFAULT 'pending',
                        core_metrics_status TEXT,
                        assessment_status TEXT,
                        synced_to_server INTEGER NOT NULL DEFAULT 0,
                        created_at INTEGER NOT NULL,
                        uploaded_at INTEGER
                    )
                """)
                # Backs the (session_id, file_name) dedup check
                await db.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_agent_sessions_identity
                    ON agent_sessions(session_id, file_name)
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_agent_sessions_created_at
                    ON agent_sessions(created_at DESC)
                """)
                await db.commit()
            logger.info("session_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "session_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    async def session_exists(self, session_id: str, file_name: str) -> bool:
        """Return True if a row with this (session_id, file_name) exists."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM agent_sessions WHERE session_id = ? AND file_name = ?",
                (session_id, file_name),
            )
            row = await cursor.fetchone()
        return bool(row and row[0] > 0)

    async def insert_session(self, session: SessionDetected) -> str:
        """Insert a newly detected session with ``processing_status = pending``.

        Args:
            session: The detected-session payload.

        Returns:
            The generated row id.

        Raises:
            aiosqlite.Error: On any database failure, including a duplicate
                (session_id, file_name).
        """
        row_id = str(uuid.uuid4())
        now = int(time.time() * 1000)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO agent_sessions (
                    id, provider, project_name, session_id, file_name, file_path,
                    file_size, session_start_time, session_end_time, duration_ms,
                    processing_status, synced_to_server, created_at, uploaded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    row_id,
                    session.provider,
                    session.project_name,
                    session.session_id,
                    session.file_name,
                    session.file_path,
                    session.file_size,
                    session.session_start_time,
                    session.session_end_time,
                    session.duration_ms,
                    ProcessingStatus.PENDING.value,
                    now,
                    now,
                ),
            )
            await db.commit()
        logger.debug(
            "session_inserted",
            session_id=session.session_id,
            provider=session.provider,
        )
        return row_id

    async def get_session_row(self, session_id: str) -> SessionRow | None:
        """Look up the row used to drive processing of one session."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    f"SELECT {_ROW_COLUMNS} FROM agent_sessions WHERE session_id = ? LIMIT 1",
                    (session_id,),
                )
                row = await cursor.fetchone()
                return _to_row(row) if row is not None else None
        except Exception as e:
            logger.error(
                "session_row_get_failed",
                session_id=session_id,
                error=str(e),
            )
            return None

    async def list_sessions(self) -> list[SessionRow]:
        """Return every known session, newest first."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    f"SELECT {_ROW_COLUMNS} FROM agent_sessions ORDER BY created_at DESC"
                )
                rows = await cursor.fetchall()
                return [_to_row(row) for row in rows]
        except Exception as e:
            logger.error("session_list_failed", error=str(e))
            return []

    async def find_ai_eligible(
        self,
        now_ms: int,
        delay_ms: int,
        min_end_time_ms: int,
        limit: int,
    ) -> list[SessionRow]:
        """Find ended sessions ready for delayed AI processing.

        Eligible rows have core metrics completed, AI still pending, and a
        session end time that is older than ``delay_ms`` but newer than
        ``min_end_time_ms``.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    f"""
                    SELECT {_ROW_COLUMNS} FROM agent_sessions
                    WHERE core_metrics_status = 'completed'
                      AND processing_status = 'pending'
                      AND session_end_time IS NOT NULL
                      AND (? - session_end_time) > ?
                      AND session_end_time > ?
                    LIMIT ?
                    """,
                    (now_ms, delay_ms, min_end_time_ms, limit),
                )
                rows = await cursor.fetchall()
                return [_to_row(row) for row in rows]
        except Exception as e:
            logger.error("ai_eligible_query_failed", error=str(e))
            return []

    async def update_processing_status(self, session_id: str, status: str) -> None:
        """Set ``processing_status`` for every row of a session."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "UPDATE agent_sessions SET processing_status = ? WHERE session_id = ?",
                    (status, session_id),
                )
                await db.commit()
            logger.debug(
                "processing_status_updated",
                session_id=session_id,
                status=status,
            )
        except Exception as e:
            logger.error(
                "processing_status_update_failed",
                session_id=session_id,
                error=str(e),
            )

    async def update_fields(self, session_id: str, **fields: Any) -> None:
        """Set status columns on one row.

        The orchestrator never calls this. It is the write path for the
        metrics and AI collaborators a COLLABORATORS_FACTORY builds around
        this store, which record ``core_metrics_status`` and
        ``assessment_status`` once their work finishes.

        Raises:
            ValueError: If a column outside the status columns is named.
        """
        if not fields:
            return
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in fields)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"UPDATE agent_sessions SET {assignments} WHERE session_id = ?",
                (*fields.values(), session_id),
            )
            await db.commit()
