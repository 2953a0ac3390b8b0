"""Tests for processing/delayed_ai.py -- the delayed AI sweep."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config import Settings
from processing.delayed_ai import DelayedAiProcessor, is_auth_error
from processing.session_processor import SessionProcessor
from tests.conftest import InMemoryStore


@pytest.fixture()
def sweeper(
    processor: SessionProcessor,
    store: InMemoryStore,
    test_settings: Settings,
) -> DelayedAiProcessor:
    return DelayedAiProcessor(processor, store, test_settings, clock=lambda: 1_700_000_000.0)


class TestSweep:
    """One sweep over eligible sessions."""

    async def test_runs_ai_only_on_eligible_sessions(
        self,
        sweeper: DelayedAiProcessor,
        store: InMemoryStore,
        metrics: AsyncMock,
        ai: MagicMock,
    ) -> None:
        store.eligible = [store.add("sess_1"), store.add("sess_2")]
        assert await sweeper.sweep() == 2
        assert ai.compute_ai_summary.await_count == 2
        metrics.compute_core_metrics.assert_not_called()

    async def test_no_credential_skips_store_query(
        self,
        sweeper: DelayedAiProcessor,
        store: InMemoryStore,
        ai: MagicMock,
    ) -> None:
        ai.has_credential.return_value = False
        store.eligible = [store.add("sess_1")]
        store.find_ai_eligible = AsyncMock(return_value=store.eligible)  # type: ignore[method-assign]
        assert await sweeper.sweep() == 0
        store.find_ai_eligible.assert_not_called()

    async def test_query_window(
        self,
        sweeper: DelayedAiProcessor,
        store: InMemoryStore,
        test_settings: Settings,
    ) -> None:
        store.find_ai_eligible = AsyncMock(return_value=[])  # type: ignore[method-assign]
        await sweeper.sweep()
        now_ms = 1_700_000_000_000
        store.find_ai_eligible.assert_awaited_once_with(
            now_ms=now_ms,
            delay_ms=test_settings.ai_processing_delay_minutes * 60_000,
            min_end_time_ms=now_ms - test_settings.ai_processing_max_age_minutes * 60_000,
            limit=test_settings.ai_sweep_batch_size,
        )

    async def test_auth_failure_marks_failed(
        self,
        sweeper: DelayedAiProcessor,
        store: InMemoryStore,
        ai: MagicMock,
    ) -> None:
        store.eligible = [store.add("sess_1")]
        ai.compute_ai_summary.side_effect = RuntimeError("401: invalid API key")
        assert await sweeper.sweep() == 0
        assert store.status_updates == [("sess_1", "failed")]

    async def test_other_failure_leaves_pending(
        self,
        sweeper: DelayedAiProcessor,
        store: InMemoryStore,
        ai: MagicMock,
    ) -> None:
        store.eligible = [store.add("sess_1"), store.add("sess_2")]
        ai.compute_ai_summary.side_effect = [RuntimeError("rate limited"), None]
        assert await sweeper.sweep() == 1
        assert store.status_updates == []


class TestLifecycle:
    async def test_disabled_does_not_start(self, sweeper: DelayedAiProcessor) -> None:
        sweeper.start()
        assert not sweeper.running

    async def test_enabled_starts_and_stops(
        self,
        processor: SessionProcessor,
        store: InMemoryStore,
        test_settings: Settings,
    ) -> None:
        test_settings.delayed_ai_enabled = True
        sweeper = DelayedAiProcessor(processor, store, test_settings)
        sweeper.start()
        assert sweeper.running
        await sweeper.stop()
        assert not sweeper.running


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("401 Unauthorized", True),
        ("HTTP 403", True),
        ("Missing API key", True),
        ("unauthorized request", True),
        ("rate limit exceeded", False),
        ("connection reset", False),
    ],
)
def test_is_auth_error(message: str, expected: bool) -> None:
    assert is_auth_error(RuntimeError(message)) is expected
