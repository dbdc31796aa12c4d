"""Domain models for the support relay"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .constants import Role, HelpRequestStatus, ROLE_ADMIN, ROLE_USER, ADMIN_USERNAME, HELP_PENDING

if TYPE_CHECKING:
    from support_relay.websocket.transport import Connection


@dataclass(frozen=True)
class Identity:
    """Who is behind a live connection

    Fields:
    - username: self-asserted name; several connections may share it (tabs)
    - role: admin or user
    - room_id: the user's own username, or the admin sentinel room
    """
    username: str
    role: Role
    room_id: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class User:
    """Represents a provisioned user record"""
    id: int
    username: str
    is_admin: bool = False
    created_at: datetime | None = None

    @property
    def role(self) -> Role:
        return ROLE_ADMIN if self.is_admin else ROLE_USER

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "isAdmin": self.is_admin,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Message:
    """A persisted message between one user and the admin

    Fields:
    - room_id: always the non-admin party's username
    - receiver_username: "admin" for user-authored messages, the target user otherwise
    - timestamp: assigned by the server when the message is saved
    """
    id: int
    room_id: str
    sender_username: str
    receiver_username: str
    body: str
    timestamp: datetime
    is_read: bool = False

    @property
    def is_to_admin(self) -> bool:
        return self.receiver_username == ADMIN_USERNAME

    @property
    def counterpart(self) -> str:
        """The non-admin party of the conversation"""
        return self.sender_username if self.is_to_admin else self.receiver_username

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "senderUsername": self.sender_username,
            "receiverUsername": self.receiver_username,
            "body": self.body,
            "timestamp": _iso(self.timestamp),
            "isRead": self.is_read,
        }


@dataclass
class PresenceRecord:
    """Marks one open connection for a username"""
    id: int
    username: str
    room_id: str
    connection_token: str
    role: Role
    joined_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "roomId": self.room_id,
            "connectionToken": self.connection_token,
            "joinedAt": _iso(self.joined_at),
            "role": self.role,
            "isAdmin": self.role == ROLE_ADMIN,
        }


@dataclass
class HelpRequest:
    """A user's request for attention from the admin"""
    id: int
    username: str
    room_id: str
    message: str
    status: HelpRequestStatus = HELP_PENDING
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "roomId": self.room_id,
            "message": self.message,
            "status": self.status,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class ConversationProjection:
    """Per-user summary shown on the admin dashboard"""
    username: str
    room_id: str
    last_message: Message | None = None
    unread_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "roomId": self.room_id,
            "lastMessage": self.last_message.to_dict() if self.last_message else None,
            "unreadCount": self.unread_count,
        }


@dataclass
class InboundFrame:
    """Event: a raw text frame arrived on a connection"""
    connection: Connection
    raw: str


@dataclass
class ConnectionClosed:
    """Event: the transport reported a connection as closed"""
    connection: Connection


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
