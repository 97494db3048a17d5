"""
Vault Clients — builder and user views of the remote vault protocol.

``BuilderClient`` administers the service side (root token, registration,
collections). ``UserClient`` acts for one end user over owned records.

Writes fan out to every configured node; a node answering "already exists"
while the others succeed counts as success, which also heals state left
half-provisioned by an earlier crash. Reads go to the first node that
answers.
"""
import time
import asyncio
import logging
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import quote

from ..conf import (
    CMD_AUTH_ROOT,
    CMD_BUILDERS,
    CMD_COLLECTIONS,
    CMD_DATA_READ,
    CMD_USERS,
)
from ..exceptions import VaultRequestError, is_duplicate_error
from ..models import DelegationToken, RecordReference
from .crypto import Keypair
from .tokens import ENVELOPE_SEPARATOR, mint_token
from .transport import VaultTransport

logger = logging.getLogger("secretvault.vault")

# Lifetime of self-issued invocation tokens (seconds).
INVOCATION_TTL = 60


@runtime_checkable
class BuilderAPI(Protocol):
    """Service-side calls the orchestrator makes."""

    did: str

    @property
    def root_token(self) -> Optional[str]: ...

    async def refresh_root_token(self) -> str: ...

    async def register(self, name: str) -> None: ...

    async def read_profile(self) -> dict: ...

    async def list_collections(self) -> list[dict]: ...

    async def create_collection(self, body: dict) -> None: ...


@runtime_checkable
class UserAPI(Protocol):
    """Owned-record calls made on behalf of one user identity."""

    did: str

    async def create_record(
        self,
        delegation: DelegationToken,
        collection: str,
        data: list[dict],
        acl: dict,
        name: Optional[str] = None,
    ) -> None: ...

    async def list_record_references(
        self, collection: Optional[str] = None
    ) -> list[RecordReference]: ...

    async def read_record(self, ref: RecordReference) -> dict: ...

    async def delete_record(
        self, ref: RecordReference, delegation: DelegationToken
    ) -> None: ...


def _data(body: Any) -> Any:
    """Unwrap the ``{"data": ...}`` envelope nodes answer with."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class _NodeClient:
    """Node fan-out helpers shared by builder and user clients."""

    def __init__(self, keypair: Keypair, transport: VaultTransport, db_urls: list[str]):
        if not db_urls:
            raise ValueError("At least one vault node URL is required")
        self._keypair = keypair
        self._transport = transport
        self._db_urls = [url.rstrip("/") for url in db_urls]

    @property
    def did(self) -> str:
        return self._keypair.did

    def _invocation(self, command: str, node: str, proof: Optional[str] = None) -> str:
        token = mint_token(
            self._keypair,
            audience=node,
            command=command,
            expires_at=int(time.time()) + INVOCATION_TTL,
            proof=proof,
        )
        if proof:
            return f"{token}{ENVELOPE_SEPARATOR}{proof}"
        return token

    async def _broadcast(
        self,
        method: str,
        path: str,
        payload: Any = None,
        token: Optional[str] = None,
        command: Optional[str] = None,
        proof: Optional[str] = None,
    ) -> list[Any]:
        """Send the same write to every node.

        Raises the first non-duplicate failure. If every node reports a
        duplicate, the duplicate error is raised so callers can recover it.
        """
        calls = []
        for node in self._db_urls:
            auth = token
            if auth is None and command is not None:
                auth = self._invocation(command, node, proof)
            calls.append(
                self._transport.request(method, f"{node}{path}", token=auth, payload=payload)
            )
        results = await asyncio.gather(*calls, return_exceptions=True)
        errors = []
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                errors.append(result)
        if not errors:
            return results
        for err in errors:
            if not is_duplicate_error(err):
                raise err
        if len(errors) == len(results):
            raise errors[0]
        logger.info(
            "%s %s already applied on %d of %d node(s)",
            method, path, len(errors), len(results),
        )
        return [r for r in results if not isinstance(r, BaseException)]

    async def _first(
        self,
        method: str,
        path: str,
        command: str,
        proof: Optional[str] = None,
    ) -> Any:
        """Read from the first node that answers; 4xx answers are final."""
        last_error: Optional[VaultRequestError] = None
        for node in self._db_urls:
            try:
                return await self._transport.request(
                    method, f"{node}{path}", token=self._invocation(command, node, proof)
                )
            except VaultRequestError as err:
                if err.status is not None and err.status < 500:
                    raise
                logger.warning("Vault node %s unavailable: %s", node, err)
                last_error = err
        raise last_error


class BuilderClient(_NodeClient):
    """Builder (service) identity client."""

    def __init__(
        self,
        keypair: Keypair,
        transport: VaultTransport,
        auth_url: str,
        db_urls: list[str],
    ):
        super().__init__(keypair, transport, db_urls)
        self._auth_url = auth_url.rstrip("/")
        self._root_token: Optional[str] = None

    @property
    def root_token(self) -> Optional[str]:
        return self._root_token

    async def refresh_root_token(self) -> str:
        """Obtain a fresh root credential from the auth service."""
        request_token = mint_token(
            self._keypair,
            audience=self._auth_url,
            command=CMD_AUTH_ROOT,
            expires_at=int(time.time()) + INVOCATION_TTL,
        )
        body = await self._transport.request(
            "POST",
            f"{self._auth_url}/api/v1/nucs/create",
            token=request_token,
            payload={"did": self.did},
        )
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise VaultRequestError(
                "Auth service returned no root token", body=body, url=self._auth_url
            )
        self._root_token = token
        logger.debug("Root token refreshed for builder %s", self.did)
        return token

    async def register(self, name: str) -> None:
        await self._broadcast(
            "POST", "/v1/builders/register", payload={"did": self.did, "name": name}
        )

    async def read_profile(self) -> dict:
        body = await self._first(
            "GET", "/v1/builders/me", CMD_BUILDERS, proof=self._root_token
        )
        return _data(body) or {}

    async def list_collections(self) -> list[dict]:
        body = await self._first(
            "GET", "/v1/collections", CMD_COLLECTIONS, proof=self._root_token
        )
        return [c for c in (_data(body) or []) if isinstance(c, dict)]

    async def create_collection(self, body: dict) -> None:
        await self._broadcast(
            "POST",
            "/v1/collections",
            payload=body,
            command=CMD_COLLECTIONS,
            proof=self._root_token,
        )


class UserClient(_NodeClient):
    """End-user identity client for owned records."""

    async def create_record(
        self,
        delegation: DelegationToken,
        collection: str,
        data: list[dict],
        acl: dict,
        name: Optional[str] = None,
    ) -> None:
        payload = {
            "owner": self.did,
            "collection": collection,
            "data": data,
            "acl": acl,
        }
        if name:
            payload["name"] = name
        await self._broadcast(
            "POST", "/v1/data/owned", payload=payload, token=delegation.token
        )

    async def list_record_references(
        self, collection: Optional[str] = None
    ) -> list[RecordReference]:
        body = await self._first("GET", "/v1/users/data", CMD_USERS)
        refs = [
            RecordReference.model_validate(item)
            for item in (_data(body) or [])
            if isinstance(item, dict)
        ]
        if collection is not None:
            refs = [ref for ref in refs if ref.collection == collection]
        return refs

    def _record_path(self, ref: RecordReference) -> str:
        return (
            f"/v1/users/data/{quote(ref.collection, safe='')}"
            f"/{quote(ref.document, safe='')}"
        )

    async def read_record(self, ref: RecordReference) -> dict:
        body = await self._first("GET", self._record_path(ref), CMD_DATA_READ)
        data = _data(body)
        if not isinstance(data, dict):
            raise VaultRequestError(
                f"Unexpected record payload for {ref.document}", body=body
            )
        return data

    async def delete_record(
        self, ref: RecordReference, delegation: DelegationToken
    ) -> None:
        await self._broadcast("DELETE", self._record_path(ref), token=delegation.token)
