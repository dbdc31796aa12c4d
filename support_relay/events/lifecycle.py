"""Session lifecycle: join, bootstrap and departure of connections"""
import logging

import aiosqlite

from support_relay.database.chat_database import ChatDatabase
from support_relay.domain.constants import (
    ADMIN_ROOM,
    ADMIN_USERNAME,
    OUT_ADMIN_JOINED,
    OUT_HELP_REQUEST,
    OUT_NEW_USER,
    OUT_USER_JOINED,
    OUT_USER_LEFT,
    ROLE_ADMIN,
)
from support_relay.domain.exceptions import PersistenceFailure, RoleConflict
from support_relay.domain.models import HelpRequest, Identity
from support_relay.events.conversation_index import ConversationIndex
from support_relay.websocket.connection_registry import ConnectionRegistry
from support_relay.websocket.protocol import JoinData, WsOutbound
from support_relay.websocket.transport import Connection, deliver

logger = logging.getLogger(__name__)


class SessionLifecycle:
    """Moves connections through Connecting -> Joined -> Closed

    A connection is Connecting until join() registers it, Joined while it
    is in the registry, and Closed once close() removed it.
    """

    def __init__(self, registry: ConnectionRegistry, db: ChatDatabase, index: ConversationIndex,
                 pin_roles: bool = False) -> None:
        self.registry = registry
        self.db = db
        self.index = index
        self.pin_roles = pin_roles

    async def join(self, connection: Connection, data: JoinData) -> Identity | None:
        """Register the connection and send role-specific bootstrap data

        Returns the new identity, or None when the join was ignored.
        """
        if self.registry.identity_of(connection) is not None:
            logger.warning("Ignoring second join on %r", connection)
            return None
        if not connection.writable:
            logger.debug("Ignoring join on closed %r", connection)
            return None

        role = data.resolved_role
        room_id = ADMIN_ROOM if role == ROLE_ADMIN else data.username
        if data.room_id and data.room_id != room_id:
            logger.debug("Join from %s asked for room %s, using %s", data.username, data.room_id, room_id)
        identity = Identity(username=data.username, role=role, room_id=room_id)

        try:
            user = await self.db.get_or_create_user(identity.username, identity.is_admin)
        except aiosqlite.Error as e:
            raise PersistenceFailure(f"could not load user {identity.username}: {e}") from e

        if user.role != role:
            if self.pin_roles:
                raise RoleConflict(f"{identity.username} is registered as {user.role}, not {role}")
            logger.warning("%s joined as %s but was provisioned as %s", identity.username, role, user.role)

        try:
            await self.db.add_presence(identity.username, room_id, connection.token, role)
            if identity.is_admin:
                bootstrap = {
                    "usersWithMessages": [entry.to_dict() for entry in self.index.snapshot()],
                    "onlineUsers": [record.to_dict() for record in await self.db.list_presence()],
                }
            else:
                history = await self.db.list_messages_between(identity.username, ADMIN_USERNAME)
                bootstrap = {
                    "messages": [message.to_dict() for message in history],
                    "roomId": room_id,
                }
        except aiosqlite.Error as e:
            await self._drop_presence(connection)
            raise PersistenceFailure(f"could not bootstrap {identity.username}: {e}") from e

        self.registry.register(connection, identity)
        logger.info("%s joined as %s on %r. Total connections: %d",
                    identity.username, role, connection, self.registry.count())

        if identity.is_admin:
            deliver([connection], WsOutbound(type=OUT_ADMIN_JOINED, data=bootstrap))
            return identity

        deliver([connection], WsOutbound(type=OUT_USER_JOINED, data=bootstrap))
        self.index.ensure(identity.username, room_id)
        deliver(self.registry.admins(), WsOutbound(type=OUT_NEW_USER, data={
            "username": identity.username,
            "roomId": room_id,
            "isOnline": True,
        }))
        return identity

    async def close(self, connection: Connection) -> Identity | None:
        """Tear down a closed connection; a connection that never joined is a no-op"""
        self.index.clear_viewing(connection)
        identity = self.registry.unregister(connection)
        if identity is None:
            return None

        await self._drop_presence(connection)
        logger.info("%s left %r. Total connections: %d", identity.username, connection, self.registry.count())

        if not identity.is_admin:
            deliver(self.registry.admins(), WsOutbound(type=OUT_USER_LEFT, data={
                "username": identity.username,
                "roomId": identity.room_id,
                "isOnline": bool(self.registry.sessions_of(identity.username)),
            }))
        return identity

    def announce_help_request(self, help_request: HelpRequest) -> int:
        """Push a freshly created help request to every admin connection"""
        return deliver(self.registry.admins(), WsOutbound(type=OUT_HELP_REQUEST, data=help_request.to_dict()))

    async def _drop_presence(self, connection: Connection) -> None:
        try:
            await self.db.remove_presence(connection.token)
        except aiosqlite.Error as e:
            logger.warning("Could not remove presence for %r: %s", connection, e)
