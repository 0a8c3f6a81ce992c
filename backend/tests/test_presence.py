"""Tests for the presence registry and the typing-state tracker."""
import pytest

from chatbox.chat.connection import Connection
from chatbox.chat.presence import ABSENT, Present, PresenceRegistry
from chatbox.chat.typing_state import TypingTracker


class TestPresenceRegistry:
    @pytest.mark.asyncio
    async def test_register_and_lookup(self, fake_socket):
        registry = PresenceRegistry()
        conn = Connection(fake_socket())

        assert await registry.register("alice", conn) is None
        assert await registry.lookup("alice") == Present(conn)
        assert await registry.lookup("bob") is ABSENT
        assert await registry.is_online("alice")
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_last_register_wins(self, fake_socket):
        registry = PresenceRegistry()
        h1, h2 = Connection(fake_socket()), Connection(fake_socket())

        await registry.register("alice", h1)
        superseded = await registry.register("alice", h2)

        assert superseded is h1
        assert await registry.lookup("alice") == Present(h2)
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_stale_unregister_keeps_newer_binding(self, fake_socket):
        registry = PresenceRegistry()
        h1, h2 = Connection(fake_socket()), Connection(fake_socket())
        await registry.register("alice", h1)
        await registry.register("alice", h2)

        assert await registry.unregister(h1) is None
        assert await registry.lookup("alice") == Present(h2)

        assert await registry.unregister(h2) == "alice"
        assert await registry.lookup("alice") is ABSENT

    @pytest.mark.asyncio
    async def test_unregister_unknown_handle_is_noop(self, fake_socket):
        registry = PresenceRegistry()
        assert await registry.unregister(Connection(fake_socket())) is None

    @pytest.mark.asyncio
    async def test_reregister_same_handle(self, fake_socket):
        registry = PresenceRegistry()
        conn = Connection(fake_socket())
        await registry.register("alice", conn)
        assert await registry.register("alice", conn) is None

    @pytest.mark.asyncio
    async def test_handle_switching_identity_drops_old_binding(self, fake_socket):
        registry = PresenceRegistry()
        conn = Connection(fake_socket())
        await registry.register("alice", conn)
        await registry.register("bob", conn)
        assert await registry.online_user_ids() == ["bob"]
        assert await registry.unregister(conn) == "bob"
        assert len(registry) == 0


class TestTypingTracker:
    @pytest.mark.asyncio
    async def test_set_is_idempotent(self):
        tracker = TypingTracker()
        await tracker.set_typing("alice", "bob")
        await tracker.set_typing("alice", "bob")
        assert await tracker.typing_senders("bob") == frozenset({"alice"})

    @pytest.mark.asyncio
    async def test_clear_twice_is_noop(self):
        tracker = TypingTracker()
        await tracker.set_typing("alice", "bob")
        await tracker.clear_typing("alice", "bob")
        await tracker.clear_typing("alice", "bob")
        assert await tracker.typing_senders("bob") == frozenset()
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_clear_non_member_leaves_others(self):
        tracker = TypingTracker()
        await tracker.set_typing("alice", "bob")
        await tracker.clear_typing("carol", "bob")
        assert await tracker.typing_senders("bob") == frozenset({"alice"})

    @pytest.mark.asyncio
    async def test_clear_all_for_sender(self):
        tracker = TypingTracker()
        await tracker.set_typing("alice", "bob")
        await tracker.set_typing("alice", "carol")
        await tracker.set_typing("dave", "carol")

        affected = await tracker.clear_all_for_sender("alice")

        assert sorted(affected) == ["bob", "carol"]
        assert await tracker.typing_senders("bob") == frozenset()
        assert await tracker.typing_senders("carol") == frozenset({"dave"})
        # bob's empty set is dropped
        assert len(tracker) == 1
