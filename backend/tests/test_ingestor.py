"""Tests for processing/ingestor.py -- deduplicating session ingestion."""

from unittest.mock import AsyncMock

from processing.ingestor import EventIngestor
from tests.conftest import InMemoryStore, make_detected


class TestEventIngestor:
    """ingest() stores new sessions once and never raises."""

    async def test_new_session_is_inserted(self, store: InMemoryStore) -> None:
        ingestor = EventIngestor(store)
        row_id = await ingestor.ingest(make_detected("sess_1"))
        assert row_id is not None
        row = await store.get_session_row("sess_1")
        assert row is not None
        assert row.processing_status == "pending"

    async def test_duplicate_is_ignored(self, store: InMemoryStore) -> None:
        ingestor = EventIngestor(store)
        first = await ingestor.ingest(make_detected("sess_1"))
        second = await ingestor.ingest(make_detected("sess_1"))
        assert first is not None
        assert second is None
        assert len(await store.list_sessions()) == 1

    async def test_same_session_other_file_is_new(self, store: InMemoryStore) -> None:
        ingestor = EventIngestor(store)
        await ingestor.ingest(make_detected("sess_1"))
        await ingestor.ingest(make_detected("sess_1", file_name="sess_1.part2.jsonl"))
        assert len(await store.list_sessions()) == 2

    async def test_insert_failure_is_swallowed(self, store: InMemoryStore) -> None:
        store.fail_inserts = True
        ingestor = EventIngestor(store)
        assert await ingestor.ingest(make_detected("sess_1")) is None

    async def test_exists_check_failure_is_swallowed(self) -> None:
        broken = AsyncMock()
        broken.session_exists = AsyncMock(side_effect=RuntimeError("disk I/O error"))
        broken.insert_session = AsyncMock()
        ingestor = EventIngestor(broken)
        assert await ingestor.ingest(make_detected("sess_1")) is None
        broken.insert_session.assert_not_called()
