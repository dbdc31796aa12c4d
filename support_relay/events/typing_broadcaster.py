"""Typing indicators: relayed, never stored"""
from support_relay.domain.constants import ADMIN_USERNAME, OUT_TYPING
from support_relay.domain.exceptions import MissingTarget, UnidentifiedConnection
from support_relay.websocket.connection_registry import ConnectionRegistry
from support_relay.websocket.protocol import TypingData, WsOutbound
from support_relay.websocket.transport import Connection, deliver


class TypingBroadcaster:
    """User typing goes to every admin; admin typing goes to the target user's sessions"""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def relay(self, connection: Connection, data: TypingData) -> int:
        """Forward a typing state, returns the number of connections reached"""
        sender = self.registry.identity_of(connection)
        if sender is None:
            raise UnidentifiedConnection(f"typing from {connection!r} before join")

        if sender.is_admin:
            target = (data.target_username or "").strip()
            if not target:
                raise MissingTarget(f"admin typing from {sender.username} has no targetUsername")
            if target in (ADMIN_USERNAME, sender.username):
                raise MissingTarget(f"admin typing from {sender.username} targets an admin, not a user")
            envelope = WsOutbound(type=OUT_TYPING, data={
                "username": sender.username,
                "isTyping": data.is_typing,
            })
            return deliver(self.registry.sessions_of(target), envelope)

        envelope = WsOutbound(type=OUT_TYPING, data={
            "username": sender.username,
            "isTyping": data.is_typing,
            "roomId": sender.room_id,
        })
        return deliver(self.registry.admins(), envelope)
