"""
Tests for the session store.

Tests cover:
- Session record JSON shape (camelCase keys, seconds timestamp)
- Validity window (initialized flag, TTL boundary)
- Save / load / clear round trip over memory and redis-like backends
- Malformed and missing records
- Unavailable store and failing backends
"""
from unittest.mock import AsyncMock

import orjson
import pytest

from secretvault_session.conf import SESSION_TTL, VAULT_SESSION_KEY
from secretvault_session.models import VaultSession
from secretvault_session.storage import MemoryStorage, RedisStorage, SessionStore


class Clock:
    """Settable clock for deterministic expiry."""
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def session(clock):
    return VaultSession(
        user_address="0xabc",
        collection_id="col-1",
        builder_identity="did:nil:02aa",
        initialized=True,
        created_at=clock.now,
    )


class TestSessionRecord:
    """Tests for the persisted JSON shape."""

    def test_json_uses_camel_case_keys(self, session):
        data = orjson.loads(session.to_json())
        assert set(data) == {
            "userAddress", "collectionId", "builderIdentity", "initialized", "createdAt"
        }
        assert data["userAddress"] == "0xabc"

    def test_from_json_accepts_str_bytes_and_dict(self, session):
        raw = session.to_json()
        assert VaultSession.from_json(raw) == session
        assert VaultSession.from_json(raw.decode()) == session
        assert VaultSession.from_json(orjson.loads(raw)) == session

    def test_default_key(self):
        assert VAULT_SESSION_KEY == "secretvault_session"


class TestValidity:
    """Tests for SessionStore.is_valid."""

    def test_fresh_session_is_valid(self, session, clock):
        store = SessionStore(MemoryStorage(), clock=clock)
        assert store.is_valid(session) is True

    def test_expired_after_ttl(self, session, clock):
        store = SessionStore(MemoryStorage(), clock=clock)
        clock.now += SESSION_TTL + 1
        assert store.is_valid(session) is False

    def test_exact_ttl_is_expired(self, session, clock):
        store = SessionStore(MemoryStorage(), clock=clock)
        clock.now += SESSION_TTL
        assert store.is_valid(session) is False

    def test_not_initialized_is_invalid(self, session, clock):
        store = SessionStore(MemoryStorage(), clock=clock)
        pending = session.model_copy(update={"initialized": False})
        assert store.is_valid(pending) is False

    def test_none_is_invalid(self):
        assert SessionStore(MemoryStorage()).is_valid(None) is False


class TestPersistence:
    """Tests for save, load and clear."""

    @pytest.mark.asyncio
    async def test_round_trip(self, session):
        store = SessionStore(MemoryStorage())
        await store.save(session)
        assert await store.load() == session

    @pytest.mark.asyncio
    async def test_load_missing_returns_none(self):
        assert await SessionStore(MemoryStorage()).load() is None

    @pytest.mark.asyncio
    async def test_clear(self, session):
        storage = MemoryStorage()
        store = SessionStore(storage)
        await store.save(session)
        await store.clear()
        assert VAULT_SESSION_KEY not in storage
        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_malformed_record_is_discarded(self):
        storage = MemoryStorage()
        await storage.set(VAULT_SESSION_KEY, b"{not json")
        assert await SessionStore(storage).load() is None

    @pytest.mark.asyncio
    async def test_record_missing_fields_is_discarded(self):
        storage = MemoryStorage()
        await storage.set(VAULT_SESSION_KEY, orjson.dumps({"initialized": True}))
        assert await SessionStore(storage).load() is None

    @pytest.mark.asyncio
    async def test_memory_storage_expires_entries(self, session, clock):
        storage = MemoryStorage(clock=clock)
        store = SessionStore(storage, ttl=120, clock=clock)
        await store.save(session)
        clock.now += 121
        assert await store.load() is None


class TestUnavailableStore:
    """A store without backend persists nothing."""

    @pytest.mark.asyncio
    async def test_operations_are_noops(self, session):
        store = SessionStore(None)
        assert store.available is False
        await store.save(session)
        assert await store.load() is None
        await store.clear()


class TestRedisStorage:
    """Tests for the redis-compatible backend."""

    @pytest.mark.asyncio
    async def test_save_uses_setex_with_ttl(self, session):
        redis = AsyncMock()
        store = SessionStore(RedisStorage(redis, prefix="app:"), ttl=300)
        await store.save(session)
        redis.setex.assert_awaited_once_with(
            "app:secretvault_session", 300, session.to_json()
        )

    @pytest.mark.asyncio
    async def test_load_decodes_stored_bytes(self, session):
        redis = AsyncMock()
        redis.get.return_value = session.to_json()
        store = SessionStore(RedisStorage(redis))
        assert await store.load() == session
        redis.get.assert_awaited_once_with("secretvault_session")

    @pytest.mark.asyncio
    async def test_backend_failure_is_swallowed(self, session):
        redis = AsyncMock()
        redis.setex.side_effect = ConnectionError("redis down")
        redis.get.side_effect = ConnectionError("redis down")
        redis.delete.side_effect = ConnectionError("redis down")
        store = SessionStore(RedisStorage(redis))
        await store.save(session)
        assert await store.load() is None
        await store.clear()
