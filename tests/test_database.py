"""
Tests for storage backends
"""
import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import make_event

from adl.core.config import Settings
from adl.core.exceptions import StorageUnavailableError
from adl.crowdsource.events import EventType, UserProfile
from adl.database import build_store
from adl.database.connection import is_connection_error, to_async_url
from adl.database.memory import MemoryStore
from adl.database.models import PointEventRecord, UserProfileRecord
from adl.database.postgres import PostgresStore


def run(coro):
    return asyncio.run(coro)


class TestMemoryStore:
    """Test suite for the in-memory store."""

    def setup_method(self):
        """Setup test fixtures."""
        self.store = MemoryStore()

    def test_insert_and_list(self):
        """Test events are returned in insertion order."""
        run(self.store.insert_point_event(make_event("e1")))
        run(self.store.insert_point_event(make_event("e2")))

        assert [e.id for e in run(self.store.get_point_events())] == ["e1", "e2"]

    def test_idempotency_lookup(self):
        """Test lookups are keyed by normalized user and key."""
        event = replace(make_event("e1", user_id="Alice"), idempotency_key="k1")
        run(self.store.insert_point_event(event))

        assert run(self.store.find_event_by_idempotency_key(" alice ", "k1")) == event
        assert run(self.store.find_event_by_idempotency_key("bob", "k1")) is None

    def test_profiles(self):
        """Test profile upsert and case-insensitive lookup."""
        profile = UserProfile(id="alice", email="alice@example.com", name="Alice", xp=10)
        run(self.store.upsert_user_profile("ALICE", profile))

        assert run(self.store.get_user_profile("alice")) == profile
        assert run(self.store.get_user_profile("bob")) is None

    def test_ping(self):
        """Test the memory store is always reachable."""
        assert run(self.store.ping()) is True


class TestRecords:
    """Test suite for row conversions."""

    def test_event_round_trip(self):
        """Test a row converts back to the same event."""
        event = make_event("e1", event_type=EventType.ENRICH, user_id="Alice ")

        restored = PointEventRecord.from_event(event).to_event()

        assert restored.id == "e1"
        assert restored.event_type == EventType.ENRICH
        assert restored.user_id == "alice"
        assert restored.created_at == "2025-01-01T10:00:00.000Z"
        assert restored.details == event.details

    def test_unknown_event_type(self):
        """Test unknown event types read as creates."""
        record = PointEventRecord.from_event(make_event("e1"))
        record.event_type = "MERGE_EVENT"

        assert record.to_event().event_type == EventType.CREATE

    def test_profile_xp_floor(self):
        """Test negative XP is clamped."""
        record = UserProfileRecord(id="alice", email="", name="", xp=-5, is_admin=None, map_scope=None)

        profile = record.to_profile()

        assert profile.xp == 0
        assert profile.is_admin is False
        assert profile.map_scope == "bonamoussadi"


class TestConnectionHelpers:
    """Test suite for connection helpers."""

    def test_async_url(self):
        """Test plain URLs are pointed at asyncpg."""
        assert to_async_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert to_async_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
        assert to_async_url("postgresql+asyncpg://h/db") == "postgresql+asyncpg://h/db"

    def test_connection_error_detection(self):
        """Test connection failures are told apart from query errors."""
        assert is_connection_error(ConnectionRefusedError())
        assert is_connection_error(OperationalError("SELECT 1", {}, Exception("could not connect to server")))
        assert not is_connection_error(IntegrityError("INSERT", {}, Exception("duplicate key")))
        assert not is_connection_error(ValueError("bad"))


class TestPostgresStore:
    """Test suite for PostgreSQL error mapping."""

    def setup_method(self):
        """Setup test fixtures."""
        connection = MagicMock()
        connection.query_timeout_ms = 50
        self.store = PostgresStore(connection)

    def test_unreachable_maps_to_unavailable(self):
        """Test connection failures become StorageUnavailableError."""
        failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("connection refused")))

        with pytest.raises(StorageUnavailableError):
            run(self.store._guard("get_point_events", failing()))

    def test_timeout_maps_to_unavailable(self):
        """Test slow statements become StorageUnavailableError."""
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(StorageUnavailableError):
            run(self.store._guard("get_point_events", slow()))

    def test_other_errors_propagate(self):
        """Test query errors are not masked."""
        failing = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

        with pytest.raises(IntegrityError):
            run(self.store._guard("insert_point_event", failing()))


class TestBuildStore:
    """Test suite for backend selection."""

    def test_memory_default(self):
        """Test the memory store is used without a database URL."""
        store = build_store(Settings(data_store_driver="memory"))

        assert isinstance(store, MemoryStore)
