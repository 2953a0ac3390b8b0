"""Async event bus for watcher notifications and orchestrator progress.

This module provides an EventBus class that carries inbound notifications
from the file watcher subsystem to the orchestrator, and outbound progress
events from the orchestrator to observers (WebSocket clients).

The event bus is thread-safe and supports:
- Multiple subscribers per channel
- Async event delivery via asyncio.Queue
- Buffering of events published before the first subscriber arrives
- Channel shutdown (close_channel terminates all subscribers)
"""

import asyncio
import contextlib
import threading
from collections import defaultdict

import structlog

from events.types import EventType, OrchestratorEvent

logger = structlog.get_logger()


class EventBus:
    """Async pub/sub event bus keyed by channel name.

    Event Buffering:
        Events published before any subscriber connects are buffered, up to
        MAX_HISTORY_PER_CHANNEL per channel with the oldest dropped first.
        When the first subscriber connects, the buffered events are
        delivered immediately. Watchers usually start reporting before the
        orchestrator has subscribed; what they report in that gap is kept.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock. File
        watchers run on their own threads and publish through
        ``publish_sync``, which hands the queue put to the loop thread.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("watcher")
        >>> await bus.publish(session_updated_event("sess_1"))
        >>> event = await queue.get()
        >>> bus.unsubscribe("watcher", queue)
        >>> await bus.close_channel("watcher")

    Attributes:
        _subscribers: Dict mapping channel to list of subscriber queues
        _event_buffer: Dict mapping channel to list of buffered events
        _event_history: Dict mapping channel to recent events for replay
        _lock: Threading lock for thread-safe subscriber management
    """

    # Maximum number of events to retain per channel, both for replay on
    # reconnect and in the buffer of a channel nobody subscribes to.
    MAX_HISTORY_PER_CHANNEL = 1000

    def __init__(self) -> None:
        """Initialize an empty event bus."""
        self._subscribers: dict[str, list[asyncio.Queue[OrchestratorEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[OrchestratorEvent]] = defaultdict(list)
        self._event_history: dict[str, list[OrchestratorEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        logger.info("event_bus_initialized")

    def subscribe(self, channel: str) -> asyncio.Queue[OrchestratorEvent]:
        """Subscribe to events for a channel.

        If there are buffered events for this channel (published before any
        subscriber connected), they are delivered immediately to the new
        subscriber.

        Args:
            channel: The channel to subscribe to

        Returns:
            An asyncio.Queue that will receive OrchestratorEvent objects
        """
        queue: asyncio.Queue[OrchestratorEvent] = asyncio.Queue()
        buffered_events: list[OrchestratorEvent] = []

        with self._lock:
            self._subscribers[channel].append(queue)
            subscriber_count = len(self._subscribers[channel])

            if channel in self._event_buffer:
                buffered_events = self._event_buffer.pop(channel)

        for event in buffered_events:
            queue.put_nowait(event)

        logger.info(
            "subscriber_added",
            channel=channel,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue[OrchestratorEvent]) -> None:
        """Remove a queue from a channel. Unknown queues are a no-op."""
        with self._lock:
            if channel not in self._subscribers:
                return
            try:
                self._subscribers[channel].remove(queue)
            except ValueError:
                logger.warning("unsubscribe_queue_not_found", channel=channel)
                return
            subscriber_count = len(self._subscribers[channel])
            if not self._subscribers[channel]:
                del self._subscribers[channel]
        logger.info(
            "subscriber_removed",
            channel=channel,
            subscriber_count=subscriber_count,
        )

    def _record(self, event: OrchestratorEvent) -> list[asyncio.Queue[OrchestratorEvent]]:
        """Store history and either buffer the event or return its subscribers.

        Must be called with ``_lock`` held.
        """
        if event.type != EventType.CHANNEL_CLOSED:
            history = self._event_history[event.channel]
            history.append(event)
            if len(history) > self.MAX_HISTORY_PER_CHANNEL:
                self._event_history[event.channel] = history[-self.MAX_HISTORY_PER_CHANNEL:]

        subscribers = list(self._subscribers.get(event.channel, []))
        if not subscribers:
            buffer = self._event_buffer[event.channel]
            buffer.append(event)
            if len(buffer) > self.MAX_HISTORY_PER_CHANNEL:
                self._event_buffer[event.channel] = buffer[-self.MAX_HISTORY_PER_CHANNEL:]
        return subscribers

    async def publish(self, event: OrchestratorEvent) -> None:
        """Publish an event to all subscribers of its channel.

        If there are no subscribers, the event is buffered until one
        connects. Delivery to a stalled consumer times out rather than
        blocking the publisher.

        Args:
            event: The OrchestratorEvent to publish
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        with self._lock:
            subscribers = self._record(event)

        if not subscribers:
            logger.debug(
                "event_buffered",
                channel=event.channel,
                event_type=event.type.value,
            )
            return

        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=5.0)
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    channel=event.channel,
                    event_type=event.type.value,
                )
            except Exception as e:
                logger.warning(
                    "event_delivery_failed",
                    channel=event.channel,
                    event_type=event.type.value,
                    error=str(e),
                )

        logger.debug(
            "event_published",
            channel=event.channel,
            event_type=event.type.value,
            session_id=event.session_id,
            subscriber_count=len(subscribers),
        )

    def publish_sync(self, event: OrchestratorEvent) -> None:
        """Publish from a non-async context such as a watcher thread.

        The queue put is scheduled on the event loop thread via
        call_soon_threadsafe, since asyncio.Queue is NOT thread-safe.

        Args:
            event: The OrchestratorEvent to publish
        """
        with self._lock:
            subscribers = self._record(event)
            loop = self._loop

        if not subscribers:
            logger.debug(
                "event_buffered_sync",
                channel=event.channel,
                event_type=event.type.value,
            )
            return

        if loop is not None and not loop.is_closed():
            for queue in subscribers:
                with contextlib.suppress(RuntimeError):
                    loop.call_soon_threadsafe(queue.put_nowait, event)
        else:
            # No loop seen yet; we are most likely on the loop thread already.
            for queue in subscribers:
                queue.put_nowait(event)

        logger.debug(
            "event_published_sync",
            channel=event.channel,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
        )

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remember the loop that ``publish_sync`` should deliver on."""
        with self._lock:
            self._loop = loop

    def get_event_history(self, channel: str) -> list[OrchestratorEvent]:
        """Return stored events for a channel in chronological order."""
        with self._lock:
            return list(self._event_history.get(channel, []))

    async def close_channel(self, channel: str) -> None:
        """Close a channel and notify all subscribers.

        Puts a CHANNEL_CLOSED sentinel into each subscriber queue so
        consumers can leave their read loops, then drops the subscribers
        and any buffered events. History is preserved.

        Args:
            channel: The channel to close
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(channel, [])
            buffered = self._event_buffer.pop(channel, [])

        for queue in queues_to_signal:
            await queue.put(
                OrchestratorEvent(
                    type=EventType.CHANNEL_CLOSED,
                    channel=channel,
                    data={"reason": "channel_closed"},
                )
            )

        logger.info(
            "channel_closed",
            channel=channel,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=len(buffered),
        )

    def get_subscriber_count(self, channel: str) -> int:
        """Return the number of subscribers for a channel."""
        with self._lock:
            return len(self._subscribers.get(channel, []))

    def clear_event_history(self, channel: str) -> None:
        """Drop stored history for a channel."""
        with self._lock:
            self._event_history.pop(channel, None)


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance, creating it on first call."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance.

    Primarily useful for testing to ensure a clean state between runs.
    """
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
