"""
Vault Identity — builder keypair loading and builder registration.

Registration is conceptually idempotent even though the remote call is not:
"already registered" answers are success, and any other failure is logged
and tolerated (the builder may still be usable). Only an expired
subscription aborts, because nothing after it can succeed.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..exceptions import (
    ErrorCode,
    SubscriptionExpiredError,
    VaultError,
    is_duplicate_error,
)
from .client import BuilderAPI
from .config import VaultConfig
from .crypto import Keypair, derive_user_keypair

logger = logging.getLogger("secretvault.vault")


@dataclass(frozen=True)
class Identity:
    """Outcome of provisioning the builder identity."""
    did: str
    name: str
    registered: bool


class IdentityProvisioner:
    """Hold the builder keypair and register it with the vault."""

    def __init__(self, config: VaultConfig):
        self._config = config
        self._secret: Optional[bytes] = None
        self._keypair: Optional[Keypair] = None

    def builder_keypair(self) -> Keypair:
        """Derive (once) the builder keypair from the configured secret.

        Raises:
            VaultError: ``MISSING_PRIVATE_KEY`` or ``KEYPAIR_CREATION_FAILED``.
        """
        if self._keypair is None:
            secret = self._config.builder_secret()
            try:
                keypair = Keypair.from_bytes(secret)
            except ValueError as err:
                raise VaultError(
                    f"Failed to derive builder keypair: {err}",
                    ErrorCode.KEYPAIR_CREATION_FAILED,
                ) from err
            self._secret = secret
            self._keypair = keypair
        return self._keypair

    def user_keypair(self, user_address: str) -> Keypair:
        """Deterministic identity that owns ``user_address``'s records."""
        self.builder_keypair()
        return derive_user_keypair(self._secret, user_address)

    async def provision(
        self,
        client: BuilderAPI,
        name: Optional[str] = None
    ) -> Identity:
        """Register the builder, tolerating an existing registration.

        Args:
            client: Connected builder client.
            name: Display name for the builder (config default otherwise).

        Returns:
            Identity with ``registered=True`` when this call registered it.

        Raises:
            SubscriptionExpiredError: The builder subscription is not active.
        """
        name = name or self._config.builder_name
        try:
            await client.register(name)
        except SubscriptionExpiredError:
            raise
        except Exception as err:
            if is_duplicate_error(err):
                logger.info("Builder %s already registered", client.did)
                return Identity(did=client.did, name=name, registered=False)
            try:
                await client.read_profile()
            except SubscriptionExpiredError:
                raise
            except Exception as profile_err:
                logger.warning(
                    "Builder registration failed for %s, continuing: %s "
                    "(profile lookup: %s)",
                    client.did, err, profile_err,
                )
            else:
                logger.info(
                    "Builder %s registration failed but profile exists: %s",
                    client.did, err,
                )
            return Identity(did=client.did, name=name, registered=False)
        logger.info("Builder %s registered as %s", client.did, name)
        return Identity(did=client.did, name=name, registered=True)
