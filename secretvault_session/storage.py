"""
Session storage — persist, load and expire the vault session record.

The session record lives under one fixed key in a client-scoped key-value
store. Persistence is best-effort: storage failures are logged and never
fail the operation that triggered them.
"""
import time
import logging
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable

from .conf import SESSION_TTL, VAULT_SESSION_KEY
from .models import VaultSession

logger = logging.getLogger("secretvault.session")

StoredValue = Union[bytes, str]


@runtime_checkable
class SessionStorage(Protocol):
    """Async key-value backend holding the session record."""

    async def get(self, key: str) -> Optional[StoredValue]: ...

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage with optional per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._items: dict[str, tuple[StoredValue, Optional[float]]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[StoredValue]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            self._items.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._items[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._items


class RedisStorage:
    """Storage over a redis-compatible async client (``get/setex/set/delete``)."""

    def __init__(self, redis: Any, prefix: str = ""):
        self._redis = redis
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[StoredValue]:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        if ttl:
            await self._redis.setex(self._key(key), ttl, value)
        else:
            await self._redis.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))


class SessionStore:
    """Save, load, clear and validate the single vault session record.

    A store built with ``storage=None`` is unavailable: nothing is persisted
    and ``load()`` always returns None.
    """

    def __init__(
        self,
        storage: Optional[SessionStorage],
        key: str = VAULT_SESSION_KEY,
        ttl: int = SESSION_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._key = key
        self._ttl = ttl
        self._clock = clock

    @property
    def available(self) -> bool:
        return self._storage is not None

    @property
    def ttl(self) -> int:
        return self._ttl

    def is_valid(self, session: Optional[VaultSession]) -> bool:
        """True while the session is initialized and younger than the TTL."""
        if session is None or not session.initialized:
            return False
        return (self._clock() - session.created_at) < self._ttl

    async def save(self, session: VaultSession) -> None:
        if self._storage is None:
            return
        try:
            await self._storage.set(self._key, session.to_json(), ttl=self._ttl)
        except Exception as err:
            logger.error("Failed to save vault session: %s", err)
            return
        logger.debug("Vault session saved for %s", session.user_address)

    async def load(self) -> Optional[VaultSession]:
        if self._storage is None:
            return None
        try:
            raw = await self._storage.get(self._key)
        except Exception as err:
            logger.error("Failed to load vault session: %s", err)
            return None
        if not raw:
            return None
        try:
            session = VaultSession.from_json(raw)
        except (ValueError, TypeError) as err:
            logger.warning("Discarding malformed vault session: %s", err)
            return None
        logger.debug("Vault session loaded for %s", session.user_address)
        return session

    async def clear(self) -> None:
        if self._storage is None:
            return
        try:
            await self._storage.delete(self._key)
        except Exception as err:
            logger.error("Failed to clear vault session: %s", err)
            return
        logger.debug("Vault session cleared")
