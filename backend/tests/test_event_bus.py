"""Tests for events/bus.py -- async pub/sub event bus.

Covers publish/subscribe, buffering, history, the close_channel sentinel,
thread-safe publish_sync, error isolation between subscribers, and the
global singleton accessor.
"""

import asyncio
import threading

from events.bus import EventBus, get_event_bus, reset_event_bus
from events.types import (
    PROCESSING_CHANNEL,
    WATCHER_CHANNEL,
    EventType,
    OrchestratorEvent,
    session_completed_event,
    session_detected_event,
    session_updated_event,
)
from tests.conftest import make_detected

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_event(
    channel: str = PROCESSING_CHANNEL,
    event_type: EventType = EventType.SESSION_PROCESSED,
    session_id: str = "sess_test",
) -> OrchestratorEvent:
    return OrchestratorEvent(
        type=event_type,
        channel=channel,
        session_id=session_id,
        data={"test": True},
    )


# =========================================================================
# Subscribe / Publish basics
# =========================================================================


class TestSubscribePublish:
    """Basic subscribe and async publish."""

    async def test_subscribe_returns_queue(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(PROCESSING_CHANNEL)
        assert isinstance(queue, asyncio.Queue)

    async def test_publish_delivers_to_subscriber(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(PROCESSING_CHANNEL)
        await event_bus.publish(_make_event())
        received = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert received.type == EventType.SESSION_PROCESSED
        assert received.session_id == "sess_test"

    async def test_publish_multiple_subscribers(self, event_bus: EventBus) -> None:
        q1 = event_bus.subscribe(PROCESSING_CHANNEL)
        q2 = event_bus.subscribe(PROCESSING_CHANNEL)
        await event_bus.publish(_make_event())
        r1 = await asyncio.wait_for(q1.get(), timeout=1.0)
        r2 = await asyncio.wait_for(q2.get(), timeout=1.0)
        assert r1.type == r2.type == EventType.SESSION_PROCESSED

    async def test_publish_does_not_cross_channels(self, event_bus: EventBus) -> None:
        processing = event_bus.subscribe(PROCESSING_CHANNEL)
        watcher = event_bus.subscribe(WATCHER_CHANNEL)
        await event_bus.publish(_make_event(PROCESSING_CHANNEL))
        assert not processing.empty()
        assert watcher.empty()

    async def test_watcher_event_helpers(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        await event_bus.publish(session_detected_event(make_detected("sess_1")))
        await event_bus.publish(session_updated_event("sess_1"))
        await event_bus.publish(session_completed_event("sess_1"))

        types = [queue.get_nowait().type for _ in range(3)]
        assert types == [
            EventType.SESSION_DETECTED,
            EventType.SESSION_UPDATED,
            EventType.SESSION_COMPLETED,
        ]


# =========================================================================
# Event Buffering and history
# =========================================================================


class TestEventBuffering:
    """Events published before a subscriber connects are buffered."""

    async def test_buffered_events_delivered_on_subscribe(
        self, event_bus: EventBus
    ) -> None:
        await event_bus.publish(session_detected_event(make_detected("sess_1")))
        await event_bus.publish(session_updated_event("sess_1"))

        queue = event_bus.subscribe(WATCHER_CHANNEL)
        r1 = await asyncio.wait_for(queue.get(), timeout=1.0)
        r2 = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert r1.type == EventType.SESSION_DETECTED
        assert r2.type == EventType.SESSION_UPDATED

    async def test_buffer_cleared_after_subscribe(self, event_bus: EventBus) -> None:
        await event_bus.publish(_make_event())
        q1 = event_bus.subscribe(PROCESSING_CHANNEL)
        assert not q1.empty()
        q2 = event_bus.subscribe(PROCESSING_CHANNEL)
        assert q2.empty()

    async def test_history_kept_for_replay(self, event_bus: EventBus) -> None:
        event_bus.subscribe(PROCESSING_CHANNEL)
        await event_bus.publish(_make_event(session_id="a"))
        await event_bus.publish(_make_event(session_id="b"))
        history = event_bus.get_event_history(PROCESSING_CHANNEL)
        assert [e.session_id for e in history] == ["a", "b"]

        event_bus.clear_event_history(PROCESSING_CHANNEL)
        assert event_bus.get_event_history(PROCESSING_CHANNEL) == []

    async def test_history_is_bounded(self, event_bus: EventBus) -> None:
        event_bus.subscribe(PROCESSING_CHANNEL)
        for i in range(EventBus.MAX_HISTORY_PER_CHANNEL + 5):
            await event_bus.publish(_make_event(session_id=str(i)))
        history = event_bus.get_event_history(PROCESSING_CHANNEL)
        assert len(history) == EventBus.MAX_HISTORY_PER_CHANNEL
        assert history[-1].session_id == str(EventBus.MAX_HISTORY_PER_CHANNEL + 4)

    async def test_buffer_is_bounded_without_subscribers(self, event_bus: EventBus) -> None:
        cap = EventBus.MAX_HISTORY_PER_CHANNEL
        for i in range(cap * 3):
            await event_bus.publish(_make_event(session_id=str(i)))

        queue = event_bus.subscribe(PROCESSING_CHANNEL)
        assert queue.qsize() == cap
        assert queue.get_nowait().session_id == str(cap * 2)


# =========================================================================
# Unsubscribe
# =========================================================================


class TestUnsubscribe:
    """Unsubscribe removes a specific queue from the channel."""

    async def test_unsubscribe_removes_queue(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(PROCESSING_CHANNEL)
        event_bus.unsubscribe(PROCESSING_CHANNEL, queue)
        assert event_bus.get_subscriber_count(PROCESSING_CHANNEL) == 0

    async def test_unsubscribe_nonexistent_is_noop(self, event_bus: EventBus) -> None:
        dummy: asyncio.Queue[OrchestratorEvent] = asyncio.Queue()
        event_bus.unsubscribe("no_such_channel", dummy)

    async def test_unsubscribe_wrong_queue_is_noop(self, event_bus: EventBus) -> None:
        event_bus.subscribe(PROCESSING_CHANNEL)
        wrong_queue: asyncio.Queue[OrchestratorEvent] = asyncio.Queue()
        event_bus.unsubscribe(PROCESSING_CHANNEL, wrong_queue)
        assert event_bus.get_subscriber_count(PROCESSING_CHANNEL) == 1


# =========================================================================
# close_channel -- sentinel
# =========================================================================


class TestCloseChannel:
    """close_channel sends a CHANNEL_CLOSED sentinel and cleans up."""

    async def test_close_sends_sentinel(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        await event_bus.close_channel(WATCHER_CHANNEL)
        sentinel = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert sentinel.type == EventType.CHANNEL_CLOSED
        assert sentinel.channel == WATCHER_CHANNEL

    async def test_close_removes_subscribers(self, event_bus: EventBus) -> None:
        event_bus.subscribe(WATCHER_CHANNEL)
        await event_bus.close_channel(WATCHER_CHANNEL)
        assert event_bus.get_subscriber_count(WATCHER_CHANNEL) == 0

    async def test_close_clears_buffer(self, event_bus: EventBus) -> None:
        await event_bus.publish(session_updated_event("sess_1"))
        await event_bus.close_channel(WATCHER_CHANNEL)
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        assert queue.empty()

    async def test_close_nonexistent_is_noop(self, event_bus: EventBus) -> None:
        await event_bus.close_channel("no_such_channel")


# =========================================================================
# publish_sync -- thread-safe synchronous publish
# =========================================================================


class TestPublishSync:
    """publish_sync uses call_soon_threadsafe for thread safety."""

    async def test_publish_sync_delivers_event(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        event_bus.bind_loop(asyncio.get_running_loop())

        event_bus.publish_sync(session_updated_event("sess_1"))

        # call_soon_threadsafe schedules on the loop; we need to yield
        await asyncio.sleep(0.05)
        assert not queue.empty()
        assert queue.get_nowait().type == EventType.SESSION_UPDATED

    async def test_publish_sync_from_watcher_thread(self, event_bus: EventBus) -> None:
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        event_bus.bind_loop(asyncio.get_running_loop())
        done = threading.Event()

        def watcher_thread() -> None:
            event_bus.publish_sync(session_updated_event("sess_1"))
            done.set()

        thread = threading.Thread(target=watcher_thread)
        thread.start()
        done.wait(timeout=2.0)
        thread.join(timeout=2.0)

        await asyncio.sleep(0.05)
        assert not queue.empty()
        assert queue.get_nowait().session_id == "sess_1"

    async def test_publish_sync_buffers_when_no_subscribers(
        self, event_bus: EventBus
    ) -> None:
        event_bus.bind_loop(asyncio.get_running_loop())
        event_bus.publish_sync(session_updated_event("sess_1"))
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        assert not queue.empty()

    async def test_publish_sync_no_loop_fallback(self, event_bus: EventBus) -> None:
        """Without a known loop, publish_sync puts directly."""
        queue = event_bus.subscribe(WATCHER_CHANNEL)
        event_bus.publish_sync(session_updated_event("sess_1"))
        assert not queue.empty()


# =========================================================================
# Error isolation
# =========================================================================


class TestErrorIsolation:
    """A failing subscriber should not prevent delivery to other subscribers."""

    async def test_error_does_not_block_other_subscribers(
        self, event_bus: EventBus
    ) -> None:
        q1 = event_bus.subscribe(PROCESSING_CHANNEL)
        q2 = event_bus.subscribe(PROCESSING_CHANNEL)
        call_count = 0

        async def failing_put(item: OrchestratorEvent) -> None:
            nonlocal call_count
            call_count += 1
            raise RuntimeError("subscriber error")

        q1.put = failing_put  # type: ignore[assignment]

        await event_bus.publish(_make_event())

        assert not q2.empty()
        assert q2.get_nowait().type == EventType.SESSION_PROCESSED
        assert call_count == 1


# =========================================================================
# Global singleton
# =========================================================================


class TestGlobalEventBus:
    """get_event_bus / reset_event_bus singleton pattern."""

    def test_get_event_bus_returns_same_instance(self) -> None:
        reset_event_bus()
        assert get_event_bus() is get_event_bus()

    def test_reset_event_bus_creates_new_instance(self) -> None:
        reset_event_bus()
        bus1 = get_event_bus()
        reset_event_bus()
        bus2 = get_event_bus()
        assert bus1 is not bus2
