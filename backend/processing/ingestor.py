"""Ingestion of session-detected events into the local store."""

import structlog

from events.types import SessionDetected
from processing.collaborators import SessionStoreProtocol

logger = structlog.get_logger(__name__)


class EventIngestor:
    """Records newly detected sessions, ignoring ones already stored.

    The existence check on ``(session_id, file_name)`` is the only
    deduplication: watchers can report the same file more than once.
    Nothing here is fatal. A failed insert is logged and dropped; the
    watcher re-reports the session on its next change.
    """

    def __init__(self, store: SessionStoreProtocol) -> None:
        self.store = store

    async def ingest(self, event: SessionDetected) -> str | None:
        """Store a detected session.

        Args:
            event: The watcher payload.

        Returns:
            The new row id, or None if the session was a duplicate or the
            store could not be written.
        """
        try:
            exists = await self.store.session_exists(event.session_id, event.file_name)
        except Exception as e:
            logger.warning(
                "ingest_exists_check_failed",
                session_id=event.session_id,
                file_name=event.file_name,
                error=str(e),
            )
            return None

        if exists:
            logger.debug(
                "ingest_duplicate_ignored",
                session_id=event.session_id,
                file_name=event.file_name,
            )
            return None

        try:
            row_id = await self.store.insert_session(event)
        except Exception as e:
            logger.error(
                "ingest_insert_failed",
                session_id=event.session_id,
                provider=event.provider,
                error=str(e),
            )
            return None

        logger.info(
            "session_ingested",
            session_id=event.session_id,
            provider=event.provider,
            project_name=event.project_name,
        )
        return row_id
