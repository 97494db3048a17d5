"""SecretVault Session.

Per-user vault sessions over a decentralized secret-storage network:
single-flight initialization, persisted session records and delegated
record operations.
"""
from .version import __version__
from .exceptions import ErrorCode, SubscriptionExpiredError, VaultError
from .models import (
    BookmarkInput,
    BookmarkUpdate,
    InitState,
    Record,
    VaultHandle,
    VaultSession,
    VaultState,
)
from .storage import MemoryStorage, RedisStorage, SessionStore
from .vault import VaultConfig
from .orchestrator import VaultOrchestrator
from .records import RecordRepository
from .hook import VaultSessionHook

__all__ = (
    "__version__",
    "ErrorCode",
    "VaultError",
    "SubscriptionExpiredError",
    "BookmarkInput",
    "BookmarkUpdate",
    "InitState",
    "Record",
    "VaultHandle",
    "VaultSession",
    "VaultState",
    "MemoryStorage",
    "RedisStorage",
    "SessionStore",
    "VaultConfig",
    "VaultOrchestrator",
    "RecordRepository",
    "VaultSessionHook",
)
