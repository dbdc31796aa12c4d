"""Per-connection transport: non-blocking sends drained by a writer task"""
import asyncio
import logging
import uuid
from typing import Iterable, Protocol

from fastapi import WebSocket

from support_relay.websocket.protocol import WsOutbound

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """What the relay core needs from a live transport channel"""

    token: str

    @property
    def writable(self) -> bool: ...

    def send(self, text: str) -> bool: ...


class WebSocketConnection:
    """Wraps a FastAPI WebSocket with a bounded outbox

    send() never awaits: frames are queued and written by run_writer(),
    so a slow client cannot stall routing for everyone else.
    """

    def __init__(self, websocket: WebSocket, queue_size: int = 256) -> None:
        self.websocket = websocket
        self.token = uuid.uuid4().hex
        self.closed = False
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)

    def __repr__(self) -> str:
        return f"<WebSocketConnection {self.token[:8]}>"

    @property
    def writable(self) -> bool:
        return not self.closed

    def send(self, text: str) -> bool:
        """Queue a frame; returns False when the frame was dropped"""
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("Outbox full for %r, dropping frame", self)
            return False
        return True

    def close(self) -> None:
        self.closed = True

    async def run_writer(self) -> None:
        """Drain the outbox until the connection closes or a write fails"""
        while not self.closed:
            text = await self._outbox.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                logger.info("Write to %r failed: %s", self, e)
                self.close()


def deliver(connections: Iterable[Connection], envelope: WsOutbound) -> int:
    """Send an envelope to every writable connection, returns how many accepted it

    Non-writable connections are skipped; there is no retry.
    """
    text = envelope.model_dump_json()
    delivered = 0
    for connection in connections:
        if connection.writable and connection.send(text):
            delivered += 1
    return delivered
