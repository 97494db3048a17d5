"""
Shared fixtures: an in-memory vault service and clients talking to it.

``FakeVault`` counts every provisioning call so tests can assert how many
times registration and collection creation actually reached the service.
"""
import asyncio
from typing import Any, Optional

import pytest

from secretvault_session.conf import CMD_AUTH_ROOT
from secretvault_session.exceptions import VaultRequestError
from secretvault_session.models import DelegationToken, RecordReference
from secretvault_session.orchestrator import VaultOrchestrator
from secretvault_session.storage import MemoryStorage, SessionStore
from secretvault_session.vault.config import VaultConfig, generate_builder_key
from secretvault_session.vault.crypto import Keypair
from secretvault_session.vault.tokens import mint_token
from secretvault_session.vault.transport import VaultTransport


class FakeVault:
    """Server-side state shared by every fake client."""

    def __init__(self):
        self.registered: set[str] = set()
        self.collections: list[dict[str, Any]] = []
        self.records: dict[str, tuple[RecordReference, dict[str, Any]]] = {}
        self.calls: dict[str, int] = {
            "root": 0, "register": 0, "profile": 0,
            "list": 0, "create": 0, "record": 0, "delete": 0,
        }
        self.delegations: list[DelegationToken] = []
        self.root_error: Optional[BaseException] = None
        self.register_error: Optional[BaseException] = None
        self.list_error: Optional[BaseException] = None
        self.create_error: Optional[BaseException] = None
        self.record_error: Optional[BaseException] = None
        self.unreadable: set[str] = set()

    def add_collection(self, collection_id: str, name: str) -> None:
        self.collections.append({"_id": collection_id, "name": name, "type": "owned"})


class FakeBuilderClient:
    def __init__(self, keypair: Keypair, vault: FakeVault):
        self.did = keypair.did
        self._keypair = keypair
        self._vault = vault
        self._root_token: Optional[str] = None

    @property
    def root_token(self) -> Optional[str]:
        return self._root_token

    async def refresh_root_token(self) -> str:
        self._vault.calls["root"] += 1
        await asyncio.sleep(0)
        if self._vault.root_error is not None:
            raise self._vault.root_error
        self._root_token = mint_token(
            self._keypair, audience="did:nil:auth", command=CMD_AUTH_ROOT
        )
        return self._root_token

    async def register(self, name: str) -> None:
        self._vault.calls["register"] += 1
        await asyncio.sleep(0)
        if self._vault.register_error is not None:
            raise self._vault.register_error
        if self.did in self._vault.registered:
            raise VaultRequestError("Builder already exists", status=409)
        self._vault.registered.add(self.did)

    async def read_profile(self) -> dict:
        self._vault.calls["profile"] += 1
        if self.did not in self._vault.registered:
            raise VaultRequestError("Builder not found", status=404)
        return {"_id": self.did}

    async def list_collections(self) -> list[dict]:
        self._vault.calls["list"] += 1
        await asyncio.sleep(0)
        if self._vault.list_error is not None:
            raise self._vault.list_error
        return [dict(c) for c in self._vault.collections]

    async def create_collection(self, body: dict) -> None:
        self._vault.calls["create"] += 1
        await asyncio.sleep(0)
        if self._vault.create_error is not None:
            raise self._vault.create_error
        if any(c["name"] == body["name"] for c in self._vault.collections):
            raise VaultRequestError("E11000 duplicate key error", status=400)
        self._vault.add_collection(body["_id"], body["name"])


class FakeUserClient:
    def __init__(self, keypair: Keypair, vault: FakeVault):
        self.did = keypair.did
        self._vault = vault

    async def create_record(self, delegation, collection, data, acl, name=None) -> None:
        self._vault.calls["record"] += 1
        self._vault.delegations.append(delegation)
        if self._vault.record_error is not None:
            raise self._vault.record_error
        for document in data:
            ref = RecordReference(
                collection=collection, document=document["_id"], name=name
            )
            self._vault.records[document["_id"]] = (ref, dict(document))

    async def list_record_references(self, collection=None) -> list[RecordReference]:
        if self._vault.list_error is not None:
            raise self._vault.list_error
        return [
            ref for ref, _ in self._vault.records.values()
            if collection is None or ref.collection == collection
        ]

    async def read_record(self, ref: RecordReference) -> dict:
        if ref.document in self._vault.unreadable:
            raise VaultRequestError("Record is corrupted", status=500)
        return dict(self._vault.records[ref.document][1])

    async def delete_record(self, ref: RecordReference, delegation) -> None:
        self._vault.calls["delete"] += 1
        self._vault.delegations.append(delegation)
        if ref.document not in self._vault.records:
            raise VaultRequestError("Record not found", status=404)
        del self._vault.records[ref.document]


@pytest.fixture
def vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def config() -> VaultConfig:
    return VaultConfig(
        builder_key=generate_builder_key(),
        auth_url="http://auth.test",
        db_urls=["http://node1.test", "http://node2.test"],
    )


@pytest.fixture
def store() -> SessionStore:
    return SessionStore(MemoryStorage())


@pytest.fixture
def make_orchestrator(vault, config, store):
    """Factory of orchestrators sharing the fake vault and the session store."""

    def factory(**kwargs: Any) -> VaultOrchestrator:
        kwargs.setdefault("store", store)
        kwargs.setdefault("transport", VaultTransport())
        settings = kwargs.pop("config", config)
        return VaultOrchestrator(
            settings,
            builder_factory=lambda kp, transport, cfg: FakeBuilderClient(kp, vault),
            user_factory=lambda kp, transport, cfg: FakeUserClient(kp, vault),
            **kwargs,
        )
    return factory


@pytest.fixture
def orchestrator(make_orchestrator) -> VaultOrchestrator:
    return make_orchestrator()
