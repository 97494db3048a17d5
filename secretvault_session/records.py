"""
Record Repository — owned bookmark records of one user.

Records carry two identifiers: the application ``id`` handed to callers and
the vault ``storage_id`` (document id). Nodes index by storage id, so lookups
by application id walk the user's record references, whose ``name`` is the
application id written at create time.

Owned records cannot be changed in place on the vault; ``update`` always
fails with ``UPDATE_NOT_IMPLEMENTED``.
"""
import uuid
import asyncio
import logging
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from .conf import CMD_DATA_CREATE, CMD_DATA_DELETE, DELEGATION_TTL
from .exceptions import ErrorCode, SubscriptionExpiredError, VaultError
from .models import (
    BookmarkInput,
    BookmarkUpdate,
    Record,
    RecordReference,
    VaultHandle,
)
from .vault.tokens import DelegationIssuer

logger = logging.getLogger("secretvault.records")


def owner_acl(grantee: str) -> dict[str, Any]:
    """Access entry for the owning identity: read and write, never execute."""
    return {"grantee": grantee, "read": True, "write": True, "execute": False}


def reject_update(record_id: str) -> None:
    logger.warning("Update requested for %s; owned records are immutable", record_id)
    raise VaultError(
        "Owned records cannot be updated in place",
        ErrorCode.UPDATE_NOT_IMPLEMENTED,
    )


class RecordRepository:
    """Create, list, read and delete the owned records of one vault handle."""

    def __init__(
        self,
        handle: Optional[VaultHandle],
        issuer: DelegationIssuer,
        delegation_ttl: int = DELEGATION_TTL,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        if handle is None:
            raise VaultError(
                "Vault is not initialized for this user",
                ErrorCode.VAULT_NOT_INITIALIZED,
            )
        self._handle = handle
        self._issuer = issuer
        self._ttl = delegation_ttl
        self._id_factory = id_factory

    @property
    def collection_id(self) -> str:
        return self._handle.collection_id

    def _delegation(self, command: str):
        return self._issuer.issue(
            self._handle.builder_client.root_token,
            audience=self._handle.user_client.did,
            command=command,
            ttl_seconds=self._ttl,
        )

    async def create(self, bookmark: Union[BookmarkInput, dict[str, Any]]) -> str:
        """Store a new record and return its application id."""
        try:
            data = (
                bookmark if isinstance(bookmark, BookmarkInput)
                else BookmarkInput.model_validate(bookmark)
            )
        except ValidationError as err:
            raise VaultError(f"Invalid bookmark: {err}", ErrorCode.CREATE_FAILED) from err
        record = Record(
            id=self._id_factory(),
            storage_id=self._id_factory(),
            **data.model_dump(),
        )
        user = self._handle.user_client
        try:
            await user.create_record(
                self._delegation(CMD_DATA_CREATE),
                self.collection_id,
                [record.to_document()],
                acl=owner_acl(user.did),
                name=record.id,
            )
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            logger.error("Failed to create bookmark %r: %s", record.title, err)
            raise VaultError(
                str(err) or "Failed to create bookmark", ErrorCode.CREATE_FAILED
            ) from err
        logger.info("Bookmark created: %s (storage %s)", record.id, record.storage_id)
        return record.id

    async def _references(self, code: ErrorCode) -> list[RecordReference]:
        try:
            return await self._handle.user_client.list_record_references(
                self.collection_id
            )
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            logger.error("Failed to list record references: %s", err)
            raise VaultError(str(err) or "Failed to list bookmarks", code) from err

    async def _find(self, record_id: str, code: ErrorCode) -> RecordReference:
        for ref in await self._references(code):
            if ref.matches(record_id):
                return ref
        raise VaultError(f"Bookmark {record_id} not found", ErrorCode.BOOKMARK_NOT_FOUND)

    async def _fetch(self, ref: RecordReference) -> Record:
        document = await self._handle.user_client.read_record(ref)
        return Record.from_document(document, storage_id=ref.document)

    async def list(self) -> list[Record]:
        """All readable records; a record that fails to load is skipped."""
        refs = await self._references(ErrorCode.READ_FAILED)
        results = await asyncio.gather(
            *(self._fetch(ref) for ref in refs), return_exceptions=True
        )
        records: list[Record] = []
        for ref, result in zip(refs, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("Skipping unreadable record %s: %s", ref.document, result)
                continue
            records.append(result)
        logger.debug("Bookmarks retrieved: %d of %d", len(records), len(refs))
        return records

    async def read(self, record_id: str) -> Record:
        ref = await self._find(record_id, ErrorCode.READ_FAILED)
        try:
            return await self._fetch(ref)
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            raise VaultError(
                str(err) or "Failed to read bookmark", ErrorCode.READ_FAILED
            ) from err

    async def delete(self, record_id: str) -> None:
        ref = await self._find(record_id, ErrorCode.DELETE_FAILED)
        try:
            await self._handle.user_client.delete_record(
                ref, self._delegation(CMD_DATA_DELETE)
            )
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            logger.error("Failed to delete bookmark %s: %s", record_id, err)
            raise VaultError(
                str(err) or "Failed to delete bookmark", ErrorCode.DELETE_FAILED
            ) from err
        logger.info("Bookmark deleted: %s", record_id)

    async def update(
        self,
        record_id: str,
        changes: Union[BookmarkUpdate, dict[str, Any], None] = None
    ) -> None:
        reject_update(record_id)
