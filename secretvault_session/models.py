"""
Data models shared by the session store, the orchestrator and the façade.

Wire-facing models (session record, bookmark records) dump with the camelCase
field names the stored JSON uses; Python code reads the snake_case attributes.
"""
import time
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator


class InitState(str, Enum):
    """Lifecycle of one registry entry."""
    IDLE = 'idle'
    INITIALIZING = 'initializing'
    READY = 'ready'


class VaultSession(BaseModel):
    """Persisted marker of a successful initialization."""

    model_config = ConfigDict(populate_by_name=True)

    user_address: str = Field(alias='userAddress')
    collection_id: str = Field(alias='collectionId')
    builder_identity: Optional[str] = Field(default=None, alias='builderIdentity')
    initialized: bool = False
    created_at: float = Field(default_factory=time.time, alias='createdAt')

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(by_alias=True))

    @classmethod
    def from_json(cls, data: Any) -> "VaultSession":
        """Parse a stored session record (bytes, str or already-decoded dict)."""
        if isinstance(data, (bytes, bytearray, memoryview, str)):
            data = orjson.loads(data)
        return cls.model_validate(data)


class BookmarkInput(BaseModel):
    """Fields a caller supplies when creating a record."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    title: str = Field(min_length=1)
    url: str = Field(min_length=1)
    description: str = ''
    image: str = ''
    tags: list[str] = Field(default_factory=list)
    archived: bool = False
    favorite: bool = False

    @field_validator('description', 'image', mode='before')
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return '' if v is None else v


class BookmarkUpdate(BaseModel):
    """Partial record changes (accepted for validation, never applied)."""

    model_config = ConfigDict(extra='ignore')

    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    tags: Optional[list[str]] = None
    archived: Optional[bool] = None
    favorite: Optional[bool] = None


class Record(BaseModel):
    """A bookmark record as stored in the vault."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    storage_id: str = Field(alias='storageId')
    title: str
    url: str
    description: str = ''
    image: str = ''
    tags: list[str] = Field(default_factory=list)
    archived: bool = False
    favorite: bool = False
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias='createdAt'
    )

    def to_document(self) -> dict[str, Any]:
        """Vault document body (the collection schema's item shape)."""
        return {
            '_id': self.storage_id,
            'id': self.id,
            'title': self.title,
            'url': self.url,
            'description': self.description,
            'image': self.image,
            'tags': list(self.tags),
            'archived': self.archived,
            'favorite': self.favorite,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_document(
        cls,
        document: dict[str, Any],
        storage_id: Optional[str] = None
    ) -> "Record":
        """Build a Record out of a vault document.

        Documents written by older clients may lack fields; those get the
        model defaults. ``storage_id`` wins over the document's ``_id``.
        """
        storage_id = storage_id or document.get('_id') or document.get('id')
        data = {
            'id': document.get('id') or storage_id,
            'storageId': storage_id,
            'title': document.get('title') or document.get('url') or '',
            'url': document.get('url') or '',
            'description': document.get('description') or '',
            'image': document.get('image') or '',
            'tags': [str(t) for t in document.get('tags') or []],
            'archived': bool(document.get('archived', False)),
            'favorite': bool(document.get('favorite', False)),
        }
        created = document.get('created_at') or document.get('createdAt')
        if created:
            data['createdAt'] = created
        return cls.model_validate(data)


class RecordReference(BaseModel):
    """Pointer to one owned record, as returned by the user-data listing."""

    model_config = ConfigDict(extra='ignore')

    collection: str
    document: str
    name: Optional[str] = None
    builder: Optional[str] = None

    def matches(self, record_id: str) -> bool:
        return record_id in (self.document, self.name)


@dataclass(frozen=True)
class VaultHandle:
    """In-memory result of a successful initialization."""
    builder_client: Any
    user_client: Any
    collection_id: str
    user_address: str
    builder_identity: str

    @property
    def user_identity(self) -> str:
        return self.user_client.did


@dataclass(frozen=True)
class DelegationToken:
    """Short-lived credential authorizing one command for one audience."""
    token: str
    issuer: str
    audience: str
    command: str
    expires_at: int

    def expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    def __str__(self) -> str:
        return self.token

    def __repr__(self) -> str:
        return (
            f'<DelegationToken aud={self.audience} cmd={self.command} '
            f'exp={self.expires_at}>'
        )


class VaultState(BaseModel):
    """Observable state of the façade."""

    is_initialized: bool = False
    is_initializing: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    can_retry: bool = False
    session: Optional[VaultSession] = None
