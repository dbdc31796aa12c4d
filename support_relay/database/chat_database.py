"""Database access layer for the support relay"""
import logging
from datetime import datetime, timezone

import aiosqlite

from support_relay.domain.constants import ADMIN_USERNAME, HELP_PENDING, HelpRequestStatus, Role
from support_relay.domain.models import HelpRequest, Message, PresenceRecord, User

logger = logging.getLogger(__name__)

# Database path
DB_PATH = "chat_history.db"

DEFAULT_HISTORY_LIMIT = 500


class ChatDatabase:
    """Manages the SQLite store for users, messages, presence and help requests"""

    def __init__(self, db_path: str = DB_PATH, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.db_path = db_path
        self.history_limit = history_limit
        self.conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create tables"""
        self.conn = await aiosqlite.connect(self.db_path)
        assert self.conn is not None
        self.conn.row_factory = aiosqlite.Row

        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                is_admin INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        # room_id is always the non-admin party's username
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                room_id TEXT NOT NULL,
                sender_username TEXT NOT NULL,
                receiver_username TEXT NOT NULL,
                body TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                is_read INTEGER NOT NULL DEFAULT 0
            )
        """)

        # One row per open connection
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS online_users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL,
                room_id TEXT NOT NULL,
                connection_token TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL,
                joined_at TEXT NOT NULL
            )
        """)

        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS help_requests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL,
                room_id TEXT NOT NULL,
                message TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL
            )
        """)

        await self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_room
            ON messages(room_id, timestamp)
        """)

        await self.conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_parties
            ON messages(sender_username, receiver_username)
        """)

        # Presence does not survive a restart: no connection from a previous process is alive
        await self.conn.execute("DELETE FROM online_users")

        await self.conn.commit()
        logger.info("Database initialized at %s", self.db_path)

    async def close(self) -> None:
        """Close database connection"""
        if self.conn:
            await self.conn.close()
            self.conn = None

    # Users

    async def get_user_by_username(self, username: str) -> User | None:
        assert self.conn is not None
        cursor = await self.conn.execute(
            "SELECT id, username, is_admin, created_at FROM users WHERE username = ?",
            (username,)
        )
        row = await cursor.fetchone()
        return _row_to_user(row) if row else None

    async def create_user(self, username: str, is_admin: bool = False) -> User:
        """Insert a new user; raises aiosqlite.IntegrityError if the username is taken"""
        assert self.conn is not None
        created_at = _now()
        cursor = await self.conn.execute(
            "INSERT INTO users (username, is_admin, created_at) VALUES (?, ?, ?)",
            (username, int(is_admin), created_at.isoformat(timespec="microseconds"))
        )
        await self.conn.commit()
        return User(id=cursor.lastrowid, username=username, is_admin=is_admin, created_at=created_at)

    async def get_or_create_user(self, username: str, is_admin: bool = False) -> User:
        """Fetch the user by username, provisioning it with the given role on first sight"""
        user = await self.get_user_by_username(username)
        if user:
            return user
        return await self.create_user(username, is_admin)

    # Messages

    async def save_message(self, room_id: str, sender_username: str, receiver_username: str, body: str) -> Message:
        """Persist a message with a server-assigned timestamp and return it"""
        assert self.conn is not None
        timestamp = _now()
        cursor = await self.conn.execute(
            "INSERT INTO messages (room_id, sender_username, receiver_username, body, timestamp, is_read) "
            "VALUES (?, ?, ?, ?, ?, 0)",
            (room_id, sender_username, receiver_username, body, timestamp.isoformat(timespec="microseconds"))
        )
        await self.conn.commit()
        return Message(
            id=cursor.lastrowid,
            room_id=room_id,
            sender_username=sender_username,
            receiver_username=receiver_username,
            body=body,
            timestamp=timestamp,
            is_read=False,
        )

    async def list_messages_for_room(self, room_id: str) -> list[Message]:
        """Most recent messages of a room, oldest first"""
        return await self._fetch_messages("room_id = ?", (room_id,))

    async def list_messages_between(self, first: str, second: str) -> list[Message]:
        """Most recent messages exchanged by two usernames in either direction, oldest first"""
        return await self._fetch_messages(
            "(sender_username = ? AND receiver_username = ?) OR (sender_username = ? AND receiver_username = ?)",
            (first, second, second, first)
        )

    async def list_admin_messages(self) -> list[Message]:
        """Every message sent to or by the admin, oldest first (no limit)"""
        assert self.conn is not None
        cursor = await self.conn.execute(
            "SELECT * FROM messages WHERE receiver_username = ? OR sender_username = ? "
            "ORDER BY timestamp ASC, id ASC",
            (ADMIN_USERNAME, ADMIN_USERNAME)
        )
        rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def mark_read(self, room_id: str, recipient: str) -> int:
        """Mark every message in the room addressed to recipient as read, returns rows changed"""
        assert self.conn is not None
        cursor = await self.conn.execute(
            "UPDATE messages SET is_read = 1 WHERE room_id = ? AND receiver_username = ? AND is_read = 0",
            (room_id, recipient)
        )
        await self.conn.commit()
        return cursor.rowcount

    async def _fetch_messages(self, where: str, params: tuple) -> list[Message]:
        assert self.conn is not None
        cursor = await self.conn.execute(
            f"SELECT * FROM (SELECT * FROM messages WHERE {where} ORDER BY timestamp DESC, id DESC LIMIT ?) "
            "ORDER BY timestamp ASC, id ASC",
            (*params, self.history_limit)
        )
        rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    # Presence

    async def add_presence(self, username: str, room_id: str, connection_token: str, role: Role) -> PresenceRecord:
        assert self.conn is not None
        joined_at = _now()
        cursor = await self.conn.execute(
            "INSERT INTO online_users (username, room_id, connection_token, role, joined_at) VALUES (?, ?, ?, ?, ?)",
            (username, room_id, connection_token, role, joined_at.isoformat(timespec="microseconds"))
        )
        await self.conn.commit()
        return PresenceRecord(
            id=cursor.lastrowid,
            username=username,
            room_id=room_id,
            connection_token=connection_token,
            role=role,
            joined_at=joined_at,
        )

    async def remove_presence(self, connection_token: str) -> None:
        assert self.conn is not None
        await self.conn.execute(
            "DELETE FROM online_users WHERE connection_token = ?",
            (connection_token,)
        )
        await self.conn.commit()

    async def list_presence(self) -> list[PresenceRecord]:
        assert self.conn is not None
        cursor = await self.conn.execute("SELECT * FROM online_users ORDER BY joined_at ASC, id ASC")
        rows = await cursor.fetchall()
        return [
            PresenceRecord(
                id=row["id"],
                username=row["username"],
                room_id=row["room_id"],
                connection_token=row["connection_token"],
                role=row["role"],
                joined_at=_parse(row["joined_at"]),
            )
            for row in rows
        ]

    # Help requests

    async def create_help_request(self, username: str, room_id: str, message: str,
                                  status: HelpRequestStatus = HELP_PENDING) -> HelpRequest:
        assert self.conn is not None
        created_at = _now()
        cursor = await self.conn.execute(
            "INSERT INTO help_requests (username, room_id, message, status, created_at) VALUES (?, ?, ?, ?, ?)",
            (username, room_id, message, status, created_at.isoformat(timespec="microseconds"))
        )
        await self.conn.commit()
        return HelpRequest(
            id=cursor.lastrowid,
            username=username,
            room_id=room_id,
            message=message,
            status=status,
            created_at=created_at,
        )

    async def list_help_requests(self) -> list[HelpRequest]:
        """All help requests, newest first"""
        assert self.conn is not None
        cursor = await self.conn.execute("SELECT * FROM help_requests ORDER BY created_at DESC, id DESC")
        rows = await cursor.fetchall()
        return [_row_to_help_request(row) for row in rows]

    async def update_help_request_status(self, request_id: int, status: HelpRequestStatus) -> HelpRequest | None:
        assert self.conn is not None
        await self.conn.execute(
            "UPDATE help_requests SET status = ? WHERE id = ?",
            (status, request_id)
        )
        await self.conn.commit()
        cursor = await self.conn.execute("SELECT * FROM help_requests WHERE id = ?", (request_id,))
        row = await cursor.fetchone()
        return _row_to_help_request(row) if row else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        is_admin=bool(row["is_admin"]),
        created_at=_parse(row["created_at"]),
    )


def _row_to_message(row: aiosqlite.Row) -> Message:
    return Message(
        id=row["id"],
        room_id=row["room_id"],
        sender_username=row["sender_username"],
        receiver_username=row["receiver_username"],
        body=row["body"],
        timestamp=_parse(row["timestamp"]),
        is_read=bool(row["is_read"]),
    )


def _row_to_help_request(row: aiosqlite.Row) -> HelpRequest:
    return HelpRequest(
        id=row["id"],
        username=row["username"],
        room_id=row["room_id"],
        message=row["message"],
        status=row["status"],
        created_at=_parse(row["created_at"]),
    )
