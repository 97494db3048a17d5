"""
Vault Orchestrator — single-flight initialization and handle registry.

Each user address has one registry entry moving through
``IDLE -> INITIALIZING -> READY``; a failure sends it back to ``IDLE``.
While an entry is INITIALIZING, every caller awaits the same task, so
builder registration and collection creation run once per address no
matter how many callers arrive. Provisioning runs as its own task:
a caller that stops waiting does not stop it.

Initialization sequence (strictly ordered):
    builder keypair -> builder client + root token -> registration
    -> collection -> user client -> session save
"""
import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from .exceptions import ErrorCode, SubscriptionExpiredError, VaultError
from .models import InitState, VaultHandle, VaultSession
from .records import RecordRepository
from .storage import MemoryStorage, SessionStore
from .vault.client import BuilderAPI, BuilderClient, UserAPI, UserClient
from .vault.collections import CollectionProvisioner
from .vault.config import VaultConfig
from .vault.crypto import Keypair
from .vault.identity import IdentityProvisioner
from .vault.tokens import DelegationIssuer
from .vault.transport import VaultTransport

logger = logging.getLogger("secretvault.session")

BuilderFactory = Callable[[Keypair, VaultTransport, VaultConfig], BuilderAPI]
UserFactory = Callable[[Keypair, VaultTransport, VaultConfig], UserAPI]


def default_builder_factory(
    keypair: Keypair, transport: VaultTransport, config: VaultConfig
) -> BuilderAPI:
    return BuilderClient(keypair, transport, config.auth_url, config.db_urls)


def default_user_factory(
    keypair: Keypair, transport: VaultTransport, config: VaultConfig
) -> UserAPI:
    return UserClient(keypair, transport, config.db_urls)


@dataclass
class _Entry:
    state: InitState = InitState.IDLE
    handle: Optional[VaultHandle] = None
    task: Optional["asyncio.Task[VaultHandle]"] = None


def _consume_result(task: "asyncio.Task[Any]") -> None:
    # Failures are logged by _run; mark them retrieved when nobody awaited.
    if not task.cancelled():
        task.exception()


class VaultOrchestrator:
    """Own the vault handles of this process, one per user address."""

    def __init__(
        self,
        config: VaultConfig,
        store: Optional[SessionStore] = None,
        transport: Optional[VaultTransport] = None,
        builder_factory: BuilderFactory = default_builder_factory,
        user_factory: UserFactory = default_user_factory,
        identities: Optional[IdentityProvisioner] = None,
        collections: Optional[CollectionProvisioner] = None,
    ):
        self.config = config
        self.store = store if store is not None else SessionStore(
            MemoryStorage(), ttl=config.session_ttl
        )
        self._owns_transport = transport is None
        self.transport = transport or VaultTransport(timeout=config.request_timeout)
        self.identities = identities or IdentityProvisioner(config)
        self.collections = collections or CollectionProvisioner()
        self._builder_factory = builder_factory
        self._user_factory = user_factory
        self._entries: dict[str, _Entry] = {}

    # ------------------------------------------------------------------
    # Registry inspection
    # ------------------------------------------------------------------

    def state(self, user_address: str) -> InitState:
        entry = self._entries.get(user_address)
        return entry.state if entry else InitState.IDLE

    def is_ready(self, user_address: str) -> bool:
        return self.state(user_address) is InitState.READY

    def handle(self, user_address: Optional[str]) -> VaultHandle:
        """Return the READY handle for ``user_address``.

        Raises:
            VaultError: ``VAULT_NOT_INITIALIZED`` if there is none.
        """
        entry = self._entries.get(user_address) if user_address else None
        if entry is None or entry.state is not InitState.READY or entry.handle is None:
            raise VaultError(
                "Vault is not initialized for this user",
                ErrorCode.VAULT_NOT_INITIALIZED,
            )
        return entry.handle

    def records(self, user_address: Optional[str]) -> RecordRepository:
        """Record repository bound to the READY handle of ``user_address``."""
        handle = self.handle(user_address)
        issuer = DelegationIssuer(
            self.identities.builder_keypair(),
            default_ttl=self.config.delegation_ttl,
        )
        return RecordRepository(handle, issuer, delegation_ttl=self.config.delegation_ttl)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self, user_address: str) -> VaultHandle:
        """Provision (once) and return the vault handle for ``user_address``.

        Raises:
            VaultError: categorized failure, shared by every concurrent caller.
        """
        if not user_address:
            raise VaultError(
                "Cannot initialize vault without user address",
                ErrorCode.MISSING_USER_ADDRESS,
            )
        if not self.store.available:
            raise VaultError(
                "Vault initialization requires a client session store",
                ErrorCode.BROWSER_REQUIRED,
            )
        return await self._single_flight(user_address, self._provision)

    async def restore(self, session: Optional[VaultSession]) -> Optional[VaultHandle]:
        """Rebuild the handle of a persisted session without re-provisioning.

        Invalid sessions, builder identity mismatches and reconnection
        failures clear the stored session and return None.
        """
        if session is None or not self.store.is_valid(session):
            logger.info("Invalid or expired vault session, clearing")
            if session is not None:
                await self._forget_session(session.user_address)
            return None
        try:
            return await self._single_flight(
                session.user_address, partial(self._reconnect, session)
            )
        except VaultError as err:
            logger.error(
                "Failed to restore vault session for %s: %s",
                session.user_address, err,
            )
            return None

    async def _single_flight(
        self,
        user_address: str,
        sequence: Callable[[str], Awaitable[VaultHandle]],
    ) -> VaultHandle:
        entry = self._entries.setdefault(user_address, _Entry())
        if entry.state is InitState.READY and entry.handle is not None:
            return entry.handle
        if entry.task is None:
            logger.info("Initializing vault for %s", user_address)
            entry.state = InitState.INITIALIZING
            entry.task = asyncio.ensure_future(self._run(user_address, entry, sequence))
            entry.task.add_done_callback(_consume_result)
        else:
            logger.info(
                "Vault initialization already in progress for %s, waiting",
                user_address,
            )
        return await asyncio.shield(entry.task)

    async def _run(
        self,
        user_address: str,
        entry: _Entry,
        sequence: Callable[[str], Awaitable[VaultHandle]],
    ) -> VaultHandle:
        try:
            handle = await sequence(user_address)
        except Exception as err:
            entry.handle = None
            entry.state = InitState.IDLE
            entry.task = None
            await self._forget_session(user_address)
            logger.error("Vault initialization failed for %s: %s", user_address, err)
            if isinstance(err, VaultError):
                raise
            raise VaultError(
                str(err) or "Failed to initialize vault",
                ErrorCode.INITIALIZATION_FAILED,
            ) from err
        entry.handle = handle
        entry.state = InitState.READY
        entry.task = None
        logger.info(
            "Vault ready for %s (collection %s)", user_address, handle.collection_id
        )
        return handle

    async def _connect_builder(self, keypair: Keypair) -> BuilderAPI:
        try:
            builder = self._builder_factory(keypair, self.transport, self.config)
            await builder.refresh_root_token()
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            raise VaultError(
                f"Failed to initialize vault client: {err}",
                ErrorCode.CLIENT_INIT_FAILED,
            ) from err
        logger.debug("Builder client connected as %s", builder.did)
        return builder

    def _connect_user(self, user_address: str) -> UserAPI:
        keypair = self.identities.user_keypair(user_address)
        try:
            return self._user_factory(keypair, self.transport, self.config)
        except Exception as err:
            raise VaultError(
                f"Failed to initialize user client: {err}",
                ErrorCode.CLIENT_INIT_FAILED,
            ) from err

    async def _provision(self, user_address: str) -> VaultHandle:
        keypair = self.identities.builder_keypair()
        builder = await self._connect_builder(keypair)
        await self.identities.provision(builder)
        collection_id = await self.collections.ensure_collection(
            builder, self.config.collection_name, owner=user_address
        )
        user = self._connect_user(user_address)
        handle = VaultHandle(
            builder_client=builder,
            user_client=user,
            collection_id=collection_id,
            user_address=user_address,
            builder_identity=builder.did,
        )
        await self.store.save(VaultSession(
            user_address=user_address,
            collection_id=collection_id,
            builder_identity=builder.did,
            initialized=True,
        ))
        return handle

    async def _reconnect(self, session: VaultSession, user_address: str) -> VaultHandle:
        keypair = self.identities.builder_keypair()
        if session.builder_identity and session.builder_identity != keypair.did:
            raise VaultError(
                "Persisted session belongs to a different builder identity",
                ErrorCode.INITIALIZATION_FAILED,
            )
        builder = await self._connect_builder(keypair)
        user = self._connect_user(user_address)
        logger.info(
            "Vault session restored for %s (collection %s)",
            user_address, session.collection_id,
        )
        return VaultHandle(
            builder_client=builder,
            user_client=user,
            collection_id=session.collection_id,
            user_address=user_address,
            builder_identity=builder.did,
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def clear(self, user_address: Optional[str] = None) -> None:
        """Forget cached handles (one address or all) and the stored session."""
        if user_address is None:
            self._entries.clear()
            await self.store.clear()
        else:
            self._entries.pop(user_address, None)
            await self._forget_session(user_address)
        logger.info("Vault cleared%s", f" for {user_address}" if user_address else "")

    async def _forget_session(self, user_address: str) -> None:
        """Clear the stored session unless it belongs to another address."""
        session = await self.store.load()
        if session is None or session.user_address == user_address:
            await self.store.clear()

    async def close(self) -> None:
        self._entries.clear()
        if self._owns_transport:
            await self.transport.close()

    async def __aenter__(self) -> "VaultOrchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
