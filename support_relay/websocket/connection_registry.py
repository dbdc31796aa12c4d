"""Registry of live connections and the identities that joined on them"""
import logging
from typing import Callable

from support_relay.domain.exceptions import ConnectionAlreadyRegistered
from support_relay.domain.models import Identity
from support_relay.websocket.transport import Connection

logger = logging.getLogger(__name__)

Predicate = Callable[[Identity], bool]


class ConnectionRegistry:
    """Owns the connection → identity mapping

    Only the event consumer mutates it, so lookups always see a consistent
    state. Fan-out sets are computed with find().
    """

    def __init__(self) -> None:
        self._entries: dict[Connection, Identity] = {}

    def register(self, connection: Connection, identity: Identity) -> None:
        """Bind a connection to an identity; several connections may share a username"""
        if connection in self._entries:
            raise ConnectionAlreadyRegistered(f"{connection!r} already joined as {self._entries[connection].username}")
        self._entries[connection] = identity
        logger.debug("Registered %r as %s (%s). Total: %d", connection, identity.username, identity.role, len(self._entries))

    def unregister(self, connection: Connection) -> Identity | None:
        """Remove a connection, returns its identity or None if it was never registered"""
        identity = self._entries.pop(connection, None)
        if identity is not None:
            logger.debug("Unregistered %r (%s). Total: %d", connection, identity.username, len(self._entries))
        return identity

    def identity_of(self, connection: Connection) -> Identity | None:
        return self._entries.get(connection)

    def find(self, predicate: Predicate) -> list[tuple[Connection, Identity]]:
        """All (connection, identity) pairs whose identity matches predicate"""
        return [(connection, identity) for connection, identity in self._entries.items() if predicate(identity)]

    def admins(self) -> list[Connection]:
        return [connection for connection, _ in self.find(lambda identity: identity.is_admin)]

    def sessions_of(self, username: str) -> list[Connection]:
        return [connection for connection, _ in self.find(lambda identity: identity.username == username)]

    def count(self) -> int:
        return len(self._entries)
