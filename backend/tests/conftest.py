"""Shared test fixtures for backend tests.

Provides an in-memory session store, AsyncMock collaborators and a fresh
EventBus so tests never touch a real database, transcript files, AI
providers or a remote sync service.
"""

import sys
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from processing.gate import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from config import Settings  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import OrchestratorEvent, SessionDetected  # noqa: E402
from models.schemas import SessionInfo, SessionRow, SyncPhase, SyncProgress  # noqa: E402
from processing.collaborators import Collaborators  # noqa: E402
from processing.gate import ProcessingGate  # noqa: E402
from processing.session_processor import SessionProcessor  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryStore:
    """Dict-backed stand-in for SessionStore with the same read semantics."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], SessionRow] = {}
        self.status_updates: list[tuple[str, str]] = []
        self.fail_inserts = False
        self.eligible: list[SessionRow] = []

    def add(self, session_id: str, **fields: Any) -> SessionRow:
        row = SessionRow(
            session_id=session_id,
            provider=fields.pop("provider", "claude_code"),
            file_path=fields.pop("file_path", f"/tmp/{session_id}.jsonl"),
            file_name=fields.pop("file_name", f"{session_id}.jsonl"),
            **fields,
        )
        self.rows[(row.session_id, row.file_name)] = row
        return row

    async def session_exists(self, session_id: str, file_name: str) -> bool:
        return (session_id, file_name) in self.rows

    async def insert_session(self, session: SessionDetected) -> str:
        if self.fail_inserts:
            raise RuntimeError("database is locked")
        self.add(
            session.session_id,
            provider=session.provider,
            file_path=session.file_path,
            file_name=session.file_name,
            project_name=session.project_name,
            session_end_time=session.session_end_time,
        )
        return f"row_{len(self.rows)}"

    async def get_session_row(self, session_id: str) -> SessionRow | None:
        for row in self.rows.values():
            if row.session_id == session_id:
                return row
        return None

    async def list_sessions(self) -> list[SessionRow]:
        return list(self.rows.values())

    async def find_ai_eligible(
        self,
        now_ms: int,
        delay_ms: int,
        min_end_time_ms: int,
        limit: int,
    ) -> list[SessionRow]:
        return self.eligible[:limit]

    async def update_processing_status(self, session_id: str, status: str) -> None:
        self.status_updates.append((session_id, status))


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


def make_detected(session_id: str = "sess_1", **overrides: Any) -> SessionDetected:
    """Create a SessionDetected payload with sensible defaults."""
    data: dict[str, Any] = {
        "provider": "claude_code",
        "project_name": "demo",
        "session_id": session_id,
        "file_name": f"{session_id}.jsonl",
        "file_path": f"/tmp/{session_id}.jsonl",
        "file_size": 128,
    }
    data.update(overrides)
    return SessionDetected(**data)


def make_session_info(session_id: str) -> SessionInfo:
    return SessionInfo(
        provider="claude_code",
        project_name="demo",
        session_id=session_id,
        file_path=f"/tmp/{session_id}.jsonl",
        file_name=f"{session_id}.jsonl",
        file_size=64,
    )


@pytest.fixture()
def content() -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch_content = AsyncMock(return_value='{"type": "user"}\n')
    return fetcher


@pytest.fixture()
def metrics() -> AsyncMock:
    computer = AsyncMock()
    computer.compute_core_metrics = AsyncMock(return_value=None)
    computer.parse_session = AsyncMock(return_value={"messages": []})
    return computer


@pytest.fixture()
def ai() -> MagicMock:
    """AI summarizer with a configured credential."""
    summarizer = MagicMock()
    summarizer.has_credential = MagicMock(return_value=True)
    summarizer.compute_ai_summary = AsyncMock(return_value=None)
    return summarizer


@pytest.fixture()
def cache() -> AsyncMock:
    invalidator = AsyncMock()
    invalidator.invalidate = AsyncMock(return_value=None)
    return invalidator


@pytest.fixture()
def remote_sync() -> AsyncMock:
    remote = AsyncMock()
    remote.scan_historical_sessions = AsyncMock(return_value=[])
    remote.sync_historical_sessions = AsyncMock(return_value=None)
    remote.get_sync_progress = AsyncMock(return_value=SyncProgress(phase=SyncPhase.IDLE))
    remote.reset_sync_progress = AsyncMock(return_value=None)
    return remote


@pytest.fixture()
def collaborators(
    store: InMemoryStore,
    content: AsyncMock,
    metrics: AsyncMock,
    ai: MagicMock,
    cache: AsyncMock,
    remote_sync: AsyncMock,
) -> Collaborators:
    return Collaborators(
        store=store,
        content=content,
        metrics=metrics,
        ai=ai,
        remote_sync=remote_sync,
        cache=cache,
    )


@pytest.fixture()
def gate() -> ProcessingGate:
    return ProcessingGate()


@pytest.fixture()
def processor(
    gate: ProcessingGate,
    store: InMemoryStore,
    content: AsyncMock,
    metrics: AsyncMock,
    ai: MagicMock,
    cache: AsyncMock,
    event_bus: EventBus,
) -> SessionProcessor:
    return SessionProcessor(gate, store, content, metrics, ai, cache, event_bus=event_bus)


@pytest.fixture()
def test_settings() -> Settings:
    """Settings with short windows suited to tests."""
    return Settings(
        core_metrics_debounce_seconds=0.05,
        bulk_ai_rate_limit_ms=50,
        sync_poll_interval_ms=20,
        ai_sweep_interval_seconds=3600.0,
        delayed_ai_enabled=False,
        cors_origins=["http://testserver"],
    )


# ---------------------------------------------------------------------------
# Event Collection Helper
# ---------------------------------------------------------------------------


def drain(queue: Any) -> list[OrchestratorEvent]:
    """Return every event currently sitting in a subscriber queue."""
    events: list[OrchestratorEvent] = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events
