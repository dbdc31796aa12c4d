"""Routing of chat messages: durable write first, then fan-out"""
import logging

import aiosqlite

from support_relay.database.chat_database import ChatDatabase
from support_relay.domain.constants import ADMIN_USERNAME, OUT_MESSAGE
from support_relay.domain.exceptions import MissingTarget, PersistenceFailure, UnidentifiedConnection
from support_relay.domain.models import Identity, Message
from support_relay.events.conversation_index import ConversationIndex
from support_relay.websocket.connection_registry import ConnectionRegistry
from support_relay.websocket.protocol import MarkAsReadData, MessageData, WsOutbound
from support_relay.websocket.transport import Connection, deliver

logger = logging.getLogger(__name__)


class MessageRouter:
    """Persists inbound messages and delivers them to the right connections

    Admin messages go to every session of the target user plus the sending
    admin's own sessions. User messages go to every admin session plus the
    sender's own sessions.
    """

    def __init__(self, registry: ConnectionRegistry, db: ChatDatabase, index: ConversationIndex) -> None:
        self.registry = registry
        self.db = db
        self.index = index

    async def route(self, connection: Connection, data: MessageData) -> Message:
        sender = self._identify(connection)

        if sender.is_admin:
            target = (data.target_username or "").strip()
            if not target:
                raise MissingTarget(f"admin message from {sender.username} has no targetUsername")
            if target in (ADMIN_USERNAME, sender.username):
                raise MissingTarget(f"admin message from {sender.username} targets an admin, not a user")
            receiver = target
            room_id = target
        else:
            receiver = ADMIN_USERNAME
            room_id = sender.username

        try:
            message = await self.db.save_message(room_id, sender.username, receiver, data.body)
        except aiosqlite.Error as e:
            raise PersistenceFailure(f"could not save message from {sender.username}: {e}") from e

        targets = [conn for conn, _ in self.registry.find(self._fan_out_predicate(sender, receiver))]
        delivered = deliver(targets, WsOutbound(type=OUT_MESSAGE, data=message.to_dict()))
        logger.debug("Message %d %s -> %s delivered to %d/%d connections",
                     message.id, sender.username, receiver, delivered, len(targets))

        self.index.record(message)
        return message

    async def mark_as_read(self, connection: Connection, data: MarkAsReadData) -> int:
        """Mark messages in a room addressed to the reader as read; repeatable"""
        reader = self._identify(connection)
        # User messages are always addressed to the shared admin username
        recipient = ADMIN_USERNAME if reader.is_admin else reader.username

        try:
            changed = await self.db.mark_read(data.room_id, recipient)
        except aiosqlite.Error as e:
            raise PersistenceFailure(f"could not mark room {data.room_id} read: {e}") from e

        if reader.is_admin:
            self.index.mark_read(data.room_id)
            self.index.set_viewing(connection, data.room_id)
        return changed

    def _identify(self, connection: Connection) -> Identity:
        identity = self.registry.identity_of(connection)
        if identity is None:
            raise UnidentifiedConnection(f"{connection!r} has not joined")
        return identity

    @staticmethod
    def _fan_out_predicate(sender: Identity, receiver: str):
        if sender.is_admin:
            return lambda identity: identity.username == receiver or (
                identity.is_admin and identity.username == sender.username
            )
        return lambda identity: identity.is_admin or identity.username == sender.username
