"""
VaultSessionHook — observable façade for UI code.

Holds no vault logic: it forwards to a :class:`VaultOrchestrator` and keeps a
:class:`VaultState` that listeners are notified about on every change.

Mount behavior (page load / reload):
    - no address: state reset.
    - stored session valid and for the same address: restored without
      re-provisioning.
    - stored session expired or for another address: vault cleared.
"""
import logging
from typing import Any, Callable, Optional, Union

from .exceptions import ErrorCode, VaultError
from .models import BookmarkInput, BookmarkUpdate, Record, VaultSession, VaultState
from .orchestrator import VaultOrchestrator
from .records import reject_update

logger = logging.getLogger("secretvault.session")

Listener = Callable[[VaultState], None]


class VaultSessionHook:
    """Reactive wrapper over the orchestrator for one connected wallet."""

    def __init__(self, orchestrator: VaultOrchestrator):
        self._orchestrator = orchestrator
        self._address: Optional[str] = None
        self._state = VaultState()
        self._listeners: list[Listener] = []

    # --- state ---

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def user_address(self) -> Optional[str]:
        return self._address

    @property
    def is_initialized(self) -> bool:
        return self._state.is_initialized

    @property
    def is_initializing(self) -> bool:
        return self._state.is_initializing

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def session(self) -> Optional[VaultSession]:
        return self._state.session

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _update(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Vault state listener failed")

    def _reset(self) -> None:
        self._update(
            is_initialized=False,
            is_initializing=False,
            error=None,
            error_code=None,
            can_retry=False,
            session=None,
        )

    # --- lifecycle ---

    async def mount(self, user_address: Optional[str]) -> None:
        """Attach to a wallet address and restore its persisted session."""
        self._address = user_address
        if not user_address:
            self._reset()
            return
        store = self._orchestrator.store
        session = await store.load()
        if session is None:
            return
        if not store.is_valid(session) or session.user_address != user_address:
            logger.info("Invalid or mismatched vault session, clearing")
            await self._orchestrator.clear(session.user_address)
            self._reset()
            return
        self._update(is_initializing=True)
        handle = await self._orchestrator.restore(session)
        if handle is None:
            logger.warning("Failed to restore vault session for %s", user_address)
            self._reset()
            return
        self._update(
            is_initialized=True,
            is_initializing=False,
            error=None,
            error_code=None,
            can_retry=False,
            session=session,
        )

    async def initialize(self, user_address: str) -> None:
        """Initialize the vault; failures land in ``state.error``."""
        if self._state.is_initializing:
            logger.info("Vault initialization already in progress, skipping")
            return
        self._address = user_address
        self._update(is_initializing=True, error=None, error_code=None, can_retry=False)
        try:
            handle = await self._orchestrator.initialize(user_address)
        except VaultError as err:
            self._update(
                is_initialized=False,
                is_initializing=False,
                session=None,
                error=err.message or "Failed to initialize vault",
                error_code=err.code.value,
                can_retry=err.retryable,
            )
            return
        self._update(
            is_initialized=True,
            is_initializing=False,
            session=VaultSession(
                user_address=user_address,
                collection_id=handle.collection_id,
                builder_identity=handle.builder_identity,
                initialized=True,
            ),
        )

    async def retry(self) -> None:
        """Run initialization again for the mounted address."""
        if not self._address:
            raise VaultError(
                "Cannot initialize vault without user address",
                ErrorCode.MISSING_USER_ADDRESS,
            )
        await self.initialize(self._address)

    async def clear_vault(self) -> None:
        """Forget the vault of the mounted address only."""
        if self._address:
            await self._orchestrator.clear(self._address)
        else:
            await self._orchestrator.store.clear()
        self._reset()

    # --- records ---

    async def create_bookmark(self, bookmark: Union[BookmarkInput, dict[str, Any]]) -> str:
        return await self._orchestrator.records(self._address).create(bookmark)

    async def read_bookmarks(self) -> list[Record]:
        return await self._orchestrator.records(self._address).list()

    async def read_bookmark(self, record_id: str) -> Record:
        return await self._orchestrator.records(self._address).read(record_id)

    async def update_bookmark(
        self,
        record_id: str,
        changes: Union[BookmarkUpdate, dict[str, Any], None] = None
    ) -> None:
        reject_update(record_id)

    async def delete_bookmark(self, record_id: str) -> None:
        await self._orchestrator.records(self._address).delete(record_id)
