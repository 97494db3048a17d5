"""
Tests for the VaultSessionHook façade.

Tests cover:
- Observable state after initialization (success, failure, expired subscription)
- Mount behavior on reload (restore, address mismatch, expired session)
- Retry and clear
- Record operations forwarded to the repository
- Listener subscription
"""
import pytest

from secretvault_session.exceptions import (
    ErrorCode,
    SubscriptionExpiredError,
    VaultError,
    VaultRequestError,
)
from secretvault_session.hook import VaultSessionHook
from secretvault_session.models import VaultSession

ADDRESS = "0xabc"


@pytest.fixture
def hook(orchestrator):
    return VaultSessionHook(orchestrator)


class TestInitialize:
    """Tests for VaultSessionHook.initialize."""

    @pytest.mark.asyncio
    async def test_success_state(self, hook):
        await hook.initialize(ADDRESS)
        assert hook.is_initialized is True
        assert hook.is_initializing is False
        assert hook.error is None
        assert hook.session.user_address == ADDRESS
        assert hook.session.initialized is True

    @pytest.mark.asyncio
    async def test_failure_state(self, hook, vault):
        vault.root_error = VaultRequestError("auth down", status=503)
        await hook.initialize(ADDRESS)
        assert hook.is_initialized is False
        assert hook.is_initializing is False
        assert hook.error
        assert hook.state.error_code == ErrorCode.CLIENT_INIT_FAILED.value
        assert hook.state.can_retry is True

    @pytest.mark.asyncio
    async def test_subscription_expired_state(self, hook, vault):
        vault.register_error = SubscriptionExpiredError()
        await hook.initialize(ADDRESS)
        assert hook.state.error_code == "SUBSCRIPTION_EXPIRED"
        assert "subscription" in hook.error.lower()
        assert hook.state.can_retry is False

    @pytest.mark.asyncio
    async def test_missing_key_is_not_retryable(self, make_orchestrator, config):
        hook = VaultSessionHook(make_orchestrator(
            config=config.model_copy(update={"builder_key": None})
        ))
        await hook.initialize(ADDRESS)
        assert hook.state.error_code == "MISSING_PRIVATE_KEY"
        assert hook.state.can_retry is False

    @pytest.mark.asyncio
    async def test_retry(self, hook, vault):
        vault.root_error = VaultRequestError("auth down", status=503)
        await hook.initialize(ADDRESS)
        vault.root_error = None
        await hook.retry()
        assert hook.is_initialized is True
        assert hook.error is None

    @pytest.mark.asyncio
    async def test_retry_without_address(self, hook):
        with pytest.raises(VaultError) as exc:
            await hook.retry()
        assert exc.value.code is ErrorCode.MISSING_USER_ADDRESS


class TestMount:
    """Tests for VaultSessionHook.mount (page reload)."""

    @pytest.mark.asyncio
    async def test_restores_matching_session(self, make_orchestrator, vault):
        await VaultSessionHook(make_orchestrator()).initialize(ADDRESS)
        calls = dict(vault.calls)

        hook = VaultSessionHook(make_orchestrator())
        await hook.mount(ADDRESS)
        assert hook.is_initialized is True
        assert hook.session.user_address == ADDRESS
        assert vault.calls["register"] == calls["register"]
        assert vault.calls["create"] == calls["create"]

    @pytest.mark.asyncio
    async def test_mismatched_address_clears_session(self, make_orchestrator, store):
        await VaultSessionHook(make_orchestrator()).initialize("0x1")

        hook = VaultSessionHook(make_orchestrator())
        await hook.mount("0x2")
        assert hook.is_initialized is False
        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_mismatch_keeps_other_handles(self, hook, orchestrator, store):
        await orchestrator.initialize("0x2")
        await orchestrator.initialize("0x1")
        await hook.mount("0x2")
        assert hook.is_initialized is False
        assert await store.load() is None
        assert not orchestrator.is_ready("0x1")
        assert orchestrator.is_ready("0x2")

    @pytest.mark.asyncio
    async def test_expired_session_clears(self, hook, store):
        await store.save(VaultSession(
            user_address=ADDRESS, collection_id="c", initialized=True, created_at=0
        ))
        await hook.mount(ADDRESS)
        assert hook.is_initialized is False
        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_no_session(self, hook):
        await hook.mount(ADDRESS)
        assert hook.is_initialized is False
        assert hook.user_address == ADDRESS

    @pytest.mark.asyncio
    async def test_no_address_resets(self, hook):
        await hook.initialize(ADDRESS)
        await hook.mount(None)
        assert hook.is_initialized is False
        assert hook.session is None


class TestRecords:
    """Record operations through the façade."""

    @pytest.mark.asyncio
    async def test_create_read_delete(self, hook):
        await hook.initialize(ADDRESS)
        record_id = await hook.create_bookmark({"title": "T", "url": "https://t.test"})
        assert [r.title for r in await hook.read_bookmarks()] == ["T"]
        assert (await hook.read_bookmark(record_id)).id == record_id
        await hook.delete_bookmark(record_id)
        assert await hook.read_bookmarks() == []

    @pytest.mark.asyncio
    async def test_requires_initialization(self, hook):
        with pytest.raises(VaultError) as exc:
            await hook.read_bookmarks()
        assert exc.value.code is ErrorCode.VAULT_NOT_INITIALIZED

    @pytest.mark.asyncio
    async def test_update_always_rejected(self, hook):
        with pytest.raises(VaultError) as exc:
            await hook.update_bookmark("any", {"title": "x"})
        assert exc.value.code is ErrorCode.UPDATE_NOT_IMPLEMENTED

    @pytest.mark.asyncio
    async def test_clear_vault(self, hook, store):
        await hook.initialize(ADDRESS)
        await hook.clear_vault()
        assert hook.is_initialized is False
        assert await store.load() is None
        with pytest.raises(VaultError):
            await hook.read_bookmarks()

    @pytest.mark.asyncio
    async def test_clear_vault_keeps_other_addresses(self, hook, orchestrator):
        await orchestrator.initialize("0x1")
        await hook.initialize("0x2")
        await hook.clear_vault()
        assert orchestrator.is_ready("0x1")
        assert not orchestrator.is_ready("0x2")


class TestSubscribe:
    """Listener notification."""

    @pytest.mark.asyncio
    async def test_listener_sees_transitions(self, hook):
        seen = []
        hook.subscribe(lambda state: seen.append(
            (state.is_initializing, state.is_initialized)
        ))
        await hook.initialize(ADDRESS)
        assert seen == [(True, False), (False, True)]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, hook):
        seen = []
        unsubscribe = hook.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        await hook.initialize(ADDRESS)
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_state(self, hook):
        def broken(state):
            raise RuntimeError("listener bug")
        hook.subscribe(broken)
        await hook.initialize(ADDRESS)
        assert hook.is_initialized is True
