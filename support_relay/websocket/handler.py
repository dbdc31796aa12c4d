"""WebSocket connection handling: frames in, events out"""
import asyncio
import logging

from fastapi import WebSocket

from support_relay.domain.models import ConnectionClosed, InboundFrame
from support_relay.events.publisher import EventPublisher
from support_relay.websocket.transport import WebSocketConnection

logger = logging.getLogger(__name__)


def frame_text(message: dict) -> str:
    """Text of a received frame; binary frames are decoded so bad bytes fail envelope parsing"""
    if message.get("text") is not None:
        return message["text"]
    return (message.get("bytes") or b"").decode("utf-8", errors="replace")


async def handle_websocket_connection(websocket: WebSocket, publisher: EventPublisher, queue_size: int = 256) -> None:
    """Accept a socket, publish every frame, publish the close exactly once"""
    await websocket.accept()
    connection = WebSocketConnection(websocket, queue_size)
    writer = asyncio.create_task(connection.run_writer())
    logger.info("Connection %r opened", connection)
    failed = False

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Connection %r closed by client (code %s)", connection, message.get("code"))
                break
            await publisher.publish(InboundFrame(connection, frame_text(message)))
    except Exception as e:
        failed = True
        logger.warning("Connection %r failed: %s", connection, e)
    finally:
        connection.close()
        writer.cancel()
        if failed:
            try:
                await websocket.close()
            except (RuntimeError, OSError) as e:
                logger.debug("Connection %r already closed: %s", connection, e)
        await publisher.publish(ConnectionClosed(connection))
