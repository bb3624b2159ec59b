"""Tests for the SSE session registry."""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pipedrive_mcp.mcp.sessions import SessionRegistry


class TestSessionRegistry:
    """Register, look up and remove sessions."""

    def test_register_and_lookup(self):
        """A registered session is found with its channel."""
        registry = SessionRegistry()
        channel = object()

        session_id = registry.register(channel)
        session = registry.lookup(session_id)

        assert session is not None
        assert session.session_id == session_id
        assert session.channel is channel
        assert session_id in registry
        assert len(registry) == 1

    def test_ids_are_unique(self):
        """Live sessions never share an id."""
        registry = SessionRegistry()
        ids = {registry.register(object()) for _ in range(200)}

        assert len(ids) == 200
        assert sorted(registry.session_ids()) == sorted(ids)

    def test_lookup_miss_is_not_an_error(self):
        registry = SessionRegistry()
        assert registry.lookup("does-not-exist") is None

    def test_remove(self):
        """After removal the session can no longer be found."""
        registry = SessionRegistry()
        session_id = registry.register(object())

        assert registry.remove(session_id) is True
        assert registry.lookup(session_id) is None
        assert session_id not in registry
        assert len(registry) == 0

    def test_remove_is_idempotent(self):
        """Removing twice reports the second removal as a no-op."""
        registry = SessionRegistry()
        session_id = registry.register(object())

        registry.remove(session_id)
        assert registry.remove(session_id) is False

    def test_remove_leaves_other_sessions(self):
        registry = SessionRegistry()
        first = registry.register(object())
        second = registry.register(object())

        registry.remove(first)

        assert registry.lookup(second) is not None
