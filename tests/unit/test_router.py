"""Unit tests for MessageRouter: persistence, fan-out and read state"""
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from support_relay.domain.exceptions import MissingTarget, PersistenceFailure, UnidentifiedConnection
from support_relay.domain.models import Identity
from support_relay.events.conversation_index import ConversationIndex
from support_relay.events.router import MessageRouter
from support_relay.websocket.connection_registry import ConnectionRegistry
from support_relay.websocket.protocol import MarkAsReadData, MessageData

from conftest import FakeConnection


def _message(body: str, target: str | None = None) -> MessageData:
    return MessageData(body=body, targetUsername=target)


@pytest.mark.unit
class TestUserMessages:
    """A user's message goes to every admin connection and to the user's own tabs"""

    async def test_user_message_reaches_admin_and_echoes(self, join, message_router, conversation_index):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")

        await message_router.route(alice, _message("hello"))

        admin_messages = admin.of_type("message")
        assert len(admin_messages) == 1
        assert admin_messages[0]["senderUsername"] == "alice"
        assert admin_messages[0]["receiverUsername"] == "admin"
        assert admin_messages[0]["body"] == "hello"
        assert alice.of_type("message") == admin_messages
        assert conversation_index.get("alice").unread_count == 1

    async def test_user_message_ignores_client_target(self, join, message_router):
        alice = FakeConnection("alice")
        bob = FakeConnection("bob")
        await join(alice, "alice")
        await join(bob, "bob")

        message = await message_router.route(alice, _message("psst", target="bob"))

        assert message.receiver_username == "admin"
        assert message.room_id == "alice"
        assert bob.of_type("message") == []

    async def test_sibling_tabs_each_get_one_copy(self, join, message_router):
        admins = [FakeConnection("admin1"), FakeConnection("admin2")]
        tabs = [FakeConnection("bob1"), FakeConnection("bob2")]
        for admin in admins:
            await join(admin, "admin", "admin")
        for tab in tabs:
            await join(tab, "bob")

        await message_router.route(tabs[0], _message("from tab one"))

        for conn in admins + tabs:
            assert len(conn.of_type("message")) == 1

    async def test_other_users_do_not_see_message(self, join, message_router):
        alice = FakeConnection("alice")
        carol = FakeConnection("carol")
        await join(alice, "alice")
        await join(carol, "carol")

        await message_router.route(alice, _message("private"))

        assert carol.of_type("message") == []

    async def test_message_is_persisted_once(self, join, message_router, in_memory_db):
        alice = FakeConnection("alice")
        await join(alice, "alice")

        sent = await message_router.route(alice, _message("keep me"))

        history = await in_memory_db.list_messages_between("alice", "admin")
        assert [(m.id, m.body, m.sender_username, m.receiver_username) for m in history] == [
            (sent.id, "keep me", "alice", "admin")
        ]

    async def test_delivered_payload_carries_assigned_id_and_timestamp(self, join, message_router):
        alice = FakeConnection("alice")
        await join(alice, "alice")

        sent = await message_router.route(alice, _message("hi"))

        echoed = alice.of_type("message")[0]
        assert echoed["id"] == sent.id
        assert echoed["timestamp"] == sent.timestamp.isoformat()
        assert echoed["isRead"] is False


@pytest.mark.unit
class TestAdminMessages:
    """An admin's message goes to the target user's tabs and the admin's own tabs"""

    async def test_admin_message_reaches_target_and_admin_tabs(self, join, message_router):
        admin_tab1 = FakeConnection("admin1")
        admin_tab2 = FakeConnection("admin2")
        alice = FakeConnection("alice")
        bob = FakeConnection("bob")
        await join(admin_tab1, "admin", "admin")
        await join(admin_tab2, "admin", "admin")
        await join(alice, "alice")
        await join(bob, "bob")

        message = await message_router.route(admin_tab1, _message("hi", target="alice"))

        assert message.sender_username == "admin"
        assert message.receiver_username == "alice"
        assert message.room_id == "alice"
        assert len(alice.of_type("message")) == 1
        assert alice.of_type("message")[0]["senderUsername"] == "admin"
        assert len(admin_tab1.of_type("message")) == 1
        assert len(admin_tab2.of_type("message")) == 1
        assert bob.of_type("message") == []

    async def test_admin_message_to_offline_user_is_still_stored(self, join, message_router, in_memory_db):
        admin = FakeConnection("admin")
        await join(admin, "admin", "admin")

        await message_router.route(admin, _message("are you there?", target="dave"))

        history = await in_memory_db.list_messages_between("dave", "admin")
        assert [m.body for m in history] == ["are you there?"]
        assert len(admin.of_type("message")) == 1

    async def test_admin_message_without_target_is_dropped(self, join, message_router, in_memory_db):
        admin = FakeConnection("admin")
        await join(admin, "admin", "admin")

        with pytest.raises(MissingTarget):
            await message_router.route(admin, _message("to whom?"))
        with pytest.raises(MissingTarget):
            await message_router.route(admin, _message("to whom?", target="   "))

        assert await in_memory_db.list_admin_messages() == []
        assert admin.of_type("message") == []

    @pytest.mark.parametrize("target", ["admin", "root"])
    async def test_admin_cannot_target_an_admin(self, join, message_router, conversation_index, in_memory_db,
                                                target):
        admin = FakeConnection("root")
        await join(admin, "root", "admin")

        with pytest.raises(MissingTarget):
            await message_router.route(admin, _message("to myself", target=target))

        assert await in_memory_db.list_messages_for_room(target) == []
        assert conversation_index.snapshot() == []
        assert admin.of_type("message") == []

    async def test_admin_message_does_not_count_as_unread(self, join, message_router, conversation_index):
        admin = FakeConnection("admin")
        await join(admin, "admin", "admin")

        await message_router.route(admin, _message("hello", target="erin"))

        assert conversation_index.get("erin").unread_count == 0


@pytest.mark.unit
class TestRoutingFailures:

    async def test_unjoined_connection_is_rejected(self, message_router, in_memory_db):
        with pytest.raises(UnidentifiedConnection):
            await message_router.route(FakeConnection("stranger"), _message("hi"))
        assert await in_memory_db.list_admin_messages() == []

    async def test_persistence_failure_delivers_nothing(self):
        registry = ConnectionRegistry()
        index = ConversationIndex()
        db = AsyncMock()
        db.save_message.side_effect = aiosqlite.OperationalError("disk I/O error")
        router = MessageRouter(registry, db, index)

        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        registry.register(admin, Identity("admin", "admin", "admin"))
        registry.register(alice, Identity("alice", "user", "alice"))

        with pytest.raises(PersistenceFailure):
            await router.route(alice, _message("lost"))

        assert admin.frames == []
        assert alice.frames == []
        assert index.get("alice") is None

    async def test_closed_connections_are_skipped(self, join, message_router):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")
        admin.closed = True

        await message_router.route(alice, _message("anyone?"))

        assert admin.of_type("message") == []
        assert len(alice.of_type("message")) == 1


@pytest.mark.unit
class TestMarkAsRead:

    async def test_admin_mark_as_read_resets_unread(self, join, message_router, conversation_index, in_memory_db):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")
        sent = await message_router.route(alice, _message("hello"))

        await message_router.mark_as_read(admin, MarkAsReadData(roomId="alice"))

        entry = conversation_index.get("alice")
        assert entry.unread_count == 0
        assert entry.last_message.id == sent.id
        assert all(m.is_read for m in await in_memory_db.list_messages_for_room("alice"))

    async def test_mark_as_read_twice_is_harmless(self, join, message_router, conversation_index):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")
        await message_router.route(alice, _message("hello"))

        assert await message_router.mark_as_read(admin, MarkAsReadData(roomId="alice")) == 1
        assert conversation_index.get("alice").unread_count == 0
        assert await message_router.mark_as_read(admin, MarkAsReadData(roomId="alice")) == 0
        assert conversation_index.get("alice").unread_count == 0

    async def test_user_mark_as_read_leaves_admin_unread_alone(self, join, message_router, conversation_index,
                                                               in_memory_db):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")
        await message_router.route(alice, _message("question"))
        await message_router.route(admin, _message("answer", target="alice"))

        await message_router.mark_as_read(alice, MarkAsReadData(roomId="alice"))

        read_state = {m.body: m.is_read for m in await in_memory_db.list_messages_for_room("alice")}
        assert read_state == {"question": False, "answer": True}
        assert conversation_index.get("alice").unread_count == 1

    async def test_viewed_room_suppresses_unread_without_touching_store(self, join, message_router,
                                                                         conversation_index, in_memory_db):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")
        await message_router.mark_as_read(admin, MarkAsReadData(roomId="alice"))

        await message_router.route(alice, _message("you're looking at me"))

        assert conversation_index.get("alice").unread_count == 0
        assert admin.of_type("message")[0]["isRead"] is False
        assert [m.is_read for m in await in_memory_db.list_messages_for_room("alice")] == [False]

    async def test_admin_reply_does_not_mark_room_viewed(self, join, message_router, conversation_index,
                                                        in_memory_db):
        admin = FakeConnection("admin")
        alice = FakeConnection("alice")
        await join(admin, "admin", "admin")
        await join(alice, "alice")
        await message_router.route(admin, _message("how can I help?", target="alice"))

        await message_router.route(alice, _message("later"))

        assert conversation_index.is_viewed("alice") is False
        assert conversation_index.get("alice").unread_count == 1
        assert admin.of_type("message")[-1]["isRead"] is False
        read_state = {m.body: m.is_read for m in await in_memory_db.list_messages_for_room("alice")}
        assert read_state["later"] is False

    async def test_unjoined_mark_as_read_is_rejected(self, message_router):
        with pytest.raises(UnidentifiedConnection):
            await message_router.mark_as_read(FakeConnection("stranger"), MarkAsReadData(roomId="alice"))
