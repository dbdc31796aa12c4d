"""Incrementally maintained per-user conversation summaries for the admin dashboard"""
import logging
from typing import Iterable

from support_relay.domain.models import ConversationProjection, Message
from support_relay.websocket.transport import Connection

logger = logging.getLogger(__name__)


class ConversationIndex:
    """Last message and unread count for every user that talks to the admin

    Rebuilt from the store on cold start, then updated as messages are routed.
    Also remembers which room each admin connection last marked read. A user
    message landing in a room that is on screen does not add to its unread
    count, but its stored read flag only changes on mark-as-read.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ConversationProjection] = {}
        self._viewing: dict[Connection, str] = {}

    def rebuild(self, messages: Iterable[Message]) -> None:
        """Replace the index with a full scan of admin<->user messages"""
        self._entries = {}
        for message in messages:
            entry = self._entry_for(message)
            self._advance_last_message(entry, message)
            if message.is_to_admin and not message.is_read:
                entry.unread_count += 1
        logger.info("Conversation index rebuilt with %d conversations", len(self._entries))

    def record(self, message: Message) -> ConversationProjection:
        """Fold a newly routed message into its conversation"""
        entry = self._entry_for(message)
        self._advance_last_message(entry, message)
        if message.is_to_admin and not message.is_read and not self.is_viewed(message.room_id):
            entry.unread_count += 1
        return entry

    def ensure(self, username: str, room_id: str) -> ConversationProjection:
        """Zero-state entry so a user shows up before sending anything"""
        entry = self._entries.get(username)
        if entry is None:
            entry = ConversationProjection(username=username, room_id=room_id)
            self._entries[username] = entry
        return entry

    def mark_read(self, username: str) -> None:
        entry = self._entries.get(username)
        if entry is not None:
            entry.unread_count = 0

    def get(self, username: str) -> ConversationProjection | None:
        return self._entries.get(username)

    def snapshot(self) -> list[ConversationProjection]:
        """Entries ordered by most recent message; conversations without messages go last"""
        with_messages = [entry for entry in self._entries.values() if entry.last_message is not None]
        without = [entry for entry in self._entries.values() if entry.last_message is None]
        with_messages.sort(key=lambda entry: entry.last_message.timestamp, reverse=True)
        return with_messages + without

    # Admin viewing state

    def set_viewing(self, connection: Connection, room_id: str) -> None:
        self._viewing[connection] = room_id

    def clear_viewing(self, connection: Connection) -> None:
        self._viewing.pop(connection, None)

    def is_viewed(self, room_id: str) -> bool:
        return room_id in self._viewing.values()

    def _entry_for(self, message: Message) -> ConversationProjection:
        username = message.counterpart
        entry = self._entries.get(username)
        if entry is None:
            entry = ConversationProjection(username=username, room_id=message.room_id)
            self._entries[username] = entry
        return entry

    @staticmethod
    def _advance_last_message(entry: ConversationProjection, message: Message) -> None:
        if entry.last_message is None or message.timestamp >= entry.last_message.timestamp:
            entry.last_message = message
