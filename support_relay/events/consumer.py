"""Event consuming and dispatch for the support relay"""
import asyncio
import logging

from support_relay.domain.constants import (
    ERROR_PERSISTENCE_FAILURE,
    ERROR_ROLE_CONFLICT,
    EVENT_JOIN,
    EVENT_MARK_AS_READ,
    EVENT_MESSAGE,
    EVENT_TYPING,
    OUT_ERROR,
)
from support_relay.domain.exceptions import MalformedEvent, PersistenceFailure, RelayError, RoleConflict
from support_relay.domain.models import ConnectionClosed, InboundFrame
from support_relay.events.lifecycle import SessionLifecycle
from support_relay.events.publisher import RelayEvent
from support_relay.events.router import MessageRouter
from support_relay.events.typing_broadcaster import TypingBroadcaster
from support_relay.websocket.protocol import (
    JoinData,
    MarkAsReadData,
    MessageData,
    TypingData,
    WsOutbound,
    parse_envelope,
    parse_payload,
)
from support_relay.websocket.transport import Connection, deliver

logger = logging.getLogger(__name__)


class EventConsumer:
    """Processes transport events one at a time, in arrival order

    Being the only consumer of the queue makes it the only writer of the
    registry and the conversation index.
    """

    def __init__(self, queue: asyncio.Queue[RelayEvent], lifecycle: SessionLifecycle,
                 router: MessageRouter, typing: TypingBroadcaster) -> None:
        self.queue = queue
        self.lifecycle = lifecycle
        self.router = router
        self.typing = typing

    async def consume(self) -> None:
        """Continuously consume and process events"""
        while True:
            event = await self.queue.get()
            try:
                await self.handle_event(event)
            finally:
                self.queue.task_done()

    async def handle_event(self, event: RelayEvent) -> None:
        """Dispatch one event; failures drop the event but never the connection"""
        connection = event.connection
        try:
            if isinstance(event, ConnectionClosed):
                await self.lifecycle.close(connection)
            elif isinstance(event, InboundFrame):
                await self.handle_frame(connection, event.raw)
        except PersistenceFailure as e:
            logger.error("Persistence failure for %r: %s", connection, e.detail)
            self._reply_error(connection, ERROR_PERSISTENCE_FAILURE, e.detail)
        except RoleConflict as e:
            logger.warning("Rejected join on %r: %s", connection, e.detail)
            self._reply_error(connection, ERROR_ROLE_CONFLICT, e.detail)
        except MalformedEvent as e:
            logger.warning("Malformed event from %r: %s", connection, e.detail)
        except RelayError as e:
            logger.info("Dropped %s from %r: %s", type(e).__name__, connection, e.detail)
        except Exception:
            logger.exception("Unexpected error handling event from %r", connection)

    async def handle_frame(self, connection: Connection, raw: str) -> None:
        """Parse an envelope and hand it to the component that owns its type"""
        envelope = parse_envelope(raw)

        if envelope.type == EVENT_JOIN:
            await self.lifecycle.join(connection, parse_payload(JoinData, envelope.data))
        elif envelope.type == EVENT_MESSAGE:
            await self.router.route(connection, parse_payload(MessageData, envelope.data))
        elif envelope.type == EVENT_TYPING:
            self.typing.relay(connection, parse_payload(TypingData, envelope.data))
        elif envelope.type == EVENT_MARK_AS_READ:
            await self.router.mark_as_read(connection, parse_payload(MarkAsReadData, envelope.data))
        else:
            raise MalformedEvent(f"unknown event type {envelope.type!r}")

    @staticmethod
    def _reply_error(connection: Connection, code: str, detail: str) -> None:
        deliver([connection], WsOutbound(type=OUT_ERROR, data={"code": code, "detail": detail}))
