"""WebSocket handler for real-time progress streaming.

Clients connect to ``/ws/{channel}`` (``processing`` or ``sync``) and
receive every event published on that channel, starting with a replay of
the channel's history.
"""

import asyncio
import contextlib

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from events import PROCESSING_CHANNEL, SYNC_CHANNEL, EventType, get_event_bus

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

STREAMABLE_CHANNELS = frozenset({PROCESSING_CHANNEL, SYNC_CHANNEL})


@websocket_router.websocket("/ws/{channel}")
async def websocket_endpoint(websocket: WebSocket, channel: str) -> None:
    """Stream outbound orchestrator events for one channel.

    Server -> Client: events (bulk progress, cache invalidations, sync
    progress). Client -> Server: only ``ping``, answered with ``pong``.

    Args:
        websocket: The WebSocket connection.
        channel: The event channel to stream.
    """
    if channel not in STREAMABLE_CHANNELS:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        logger.warning("websocket_unknown_channel", channel=channel)
        return

    await websocket.accept()
    logger.info("websocket_connected", channel=channel)

    event_bus = get_event_bus()

    # Subscribe before reading history so nothing published in between is
    # missed; duplicates are filtered by timestamp below.
    queue = event_bus.subscribe(channel)

    try:
        last_replay_timestamp: float = 0.0
        history = event_bus.get_event_history(channel)
        if history:
            logger.info(
                "replaying_event_history",
                channel=channel,
                event_count=len(history),
            )
            for event in history:
                try:
                    await websocket.send_json(event.model_dump(mode="json"))
                    last_replay_timestamp = event.timestamp
                except WebSocketDisconnect:
                    logger.info("websocket_disconnect_during_replay", channel=channel)
                    return
                except Exception as e:
                    logger.error("websocket_replay_error", channel=channel, error=str(e))
                    return

        async def send_events() -> None:
            """Forward events from the bus, skipping ones already replayed."""
            try:
                while True:
                    event = await queue.get()
                    if event.type == EventType.CHANNEL_CLOSED:
                        logger.info("channel_closed_sentinel", channel=channel)
                        break

                    if event.timestamp <= last_replay_timestamp:
                        continue

                    await websocket.send_json(event.model_dump(mode="json"))
                    logger.debug(
                        "event_sent",
                        channel=channel,
                        event_type=event.type.value,
                    )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send", channel=channel)
            except Exception as e:
                logger.error("websocket_send_error", channel=channel, error=str(e))

        async def receive_commands() -> None:
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message", channel=channel)
                        continue
                    if data.get("type") == "ping":
                        await websocket.send_json(
                            {"type": "pong", "timestamp": data.get("timestamp")}
                        )
                    else:
                        logger.warning(
                            "unknown_command",
                            channel=channel,
                            command_type=data.get("type"),
                        )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive", channel=channel)
            except Exception as e:
                logger.error("websocket_receive_error", channel=channel, error=str(e))

        send_task = asyncio.create_task(send_events())
        receive_task = asyncio.create_task(receive_commands())

        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", channel=channel)
    except Exception as e:
        logger.error("websocket_error", channel=channel, error=str(e))
    finally:
        event_bus.unsubscribe(channel, queue)
        logger.info("websocket_cleanup_complete", channel=channel)
