"""Pytest configuration and shared fixtures for all tests"""
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from support_relay.database.chat_database import ChatDatabase
from support_relay.domain.constants import ADMIN_USERNAME
from support_relay.domain.models import Message
from support_relay.events.consumer import EventConsumer
from support_relay.events.conversation_index import ConversationIndex
from support_relay.events.lifecycle import SessionLifecycle
from support_relay.events.publisher import EventPublisher
from support_relay.events.router import MessageRouter
from support_relay.events.typing_broadcaster import TypingBroadcaster
from support_relay.websocket.connection_registry import ConnectionRegistry
from support_relay.websocket.protocol import JoinData


class FakeConnection:
    """In-memory stand-in for a transport connection; records every frame sent to it"""

    def __init__(self, name: str = "conn") -> None:
        self.name = name
        self.token = f"{name}-{uuid.uuid4().hex[:8]}"
        self.closed = False
        self.frames: list[dict] = []

    def __repr__(self) -> str:
        return f"<FakeConnection {self.name}>"

    @property
    def writable(self) -> bool:
        return not self.closed

    def send(self, text: str) -> bool:
        self.frames.append(json.loads(text))
        return True

    def of_type(self, event_type: str) -> list[dict]:
        return [frame["data"] for frame in self.frames if frame["type"] == event_type]


BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_message(id: int, sender: str, receiver: str, body: str = "hello",
                 minutes: int = 0, is_read: bool = False) -> Message:
    """Build a Message whose room is the non-admin party"""
    room_id = sender if receiver == ADMIN_USERNAME else receiver
    return Message(
        id=id,
        room_id=room_id,
        sender_username=sender,
        receiver_username=receiver,
        body=body,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        is_read=is_read,
    )


@pytest.fixture
def connection_factory():
    """Create named fake connections"""
    return FakeConnection


@pytest.fixture
async def in_memory_db():
    """Create an in-memory SQLite database for testing"""
    db = ChatDatabase(":memory:")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def conversation_index():
    return ConversationIndex()


@pytest.fixture
def lifecycle(registry, in_memory_db, conversation_index):
    return SessionLifecycle(registry, in_memory_db, conversation_index)


@pytest.fixture
def message_router(registry, in_memory_db, conversation_index):
    return MessageRouter(registry, in_memory_db, conversation_index)


@pytest.fixture
def typing_broadcaster(registry):
    return TypingBroadcaster(registry)


@pytest.fixture
async def event_queue():
    """Create a new event queue for each test"""
    return asyncio.Queue()


@pytest.fixture
async def event_publisher(event_queue):
    return EventPublisher(event_queue)


@pytest.fixture
async def event_consumer(event_queue, lifecycle, message_router, typing_broadcaster):
    return EventConsumer(event_queue, lifecycle, message_router, typing_broadcaster)


@pytest.fixture
def join(lifecycle):
    """Join a fake connection as a user or as the admin"""
    async def _join(connection, username: str, role: str = "user"):
        return await lifecycle.join(connection, JoinData(username=username, role=role))
    return _join
