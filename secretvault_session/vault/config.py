"""
Vault Configuration — Builder key loading and validated settings.

Reads settings from environment variables:
    VAULT_BUILDER_KEY = <hex-encoded 32-byte secp256k1 secret, optional 0x>
    VAULT_NETWORK = testnet | devnet
    VAULT_CHAIN_URL / VAULT_AUTH_URL = <url>
    VAULT_DB_URLS = <url>,<url>,...
    VAULT_COLLECTION_NAME, VAULT_BUILDER_NAME
    VAULT_SESSION_TTL, VAULT_DELEGATION_TTL, VAULT_REQUEST_TIMEOUT

Security Note:
    Never log key material. Only log DIDs and node URLs.
"""
import os
import re
import secrets
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from ..conf import (
    NETWORKS,
    SESSION_TTL,
    DELEGATION_TTL,
    DEFAULT_BUILDER_NAME,
    DEFAULT_COLLECTION_NAME,
)
from ..exceptions import ErrorCode, VaultError

logger = logging.getLogger("secretvault.vault")

_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]*$")

BUILDER_KEY_ENV = "VAULT_BUILDER_KEY"
KEY_LENGTH = 32


def parse_builder_key(value: Optional[str]) -> bytes:
    """Decode a hex-encoded builder secret.

    Args:
        value: Hex string, optionally prefixed with ``0x``.

    Returns:
        Raw 32-byte secret.

    Raises:
        VaultError: ``MISSING_PRIVATE_KEY`` if value is empty,
            ``KEYPAIR_CREATION_FAILED`` if it is not 32 bytes of hex.
    """
    if not value or not value.strip():
        raise VaultError(
            f"{BUILDER_KEY_ENV} not found in environment variables",
            ErrorCode.MISSING_PRIVATE_KEY,
        )
    normalized = value.strip()
    if normalized.lower().startswith("0x"):
        normalized = normalized[2:]
    if len(normalized) % 2 != 0 or not _HEX_PATTERN.match(normalized):
        raise VaultError(
            "Invalid hex string for builder key",
            ErrorCode.KEYPAIR_CREATION_FAILED,
        )
    key_bytes = bytes.fromhex(normalized)
    if len(key_bytes) != KEY_LENGTH:
        raise VaultError(
            f"Builder key must decode to exactly {KEY_LENGTH} bytes, "
            f"got {len(key_bytes)}",
            ErrorCode.KEYPAIR_CREATION_FAILED,
        )
    return key_bytes


def load_builder_key() -> bytes:
    """Load the builder secret from the VAULT_BUILDER_KEY environment variable."""
    return parse_builder_key(os.environ.get(BUILDER_KEY_ENV))


def generate_builder_key() -> str:
    """Generate a random 32-byte builder key and return it hex-encoded.

    This is a utility for operators to provision new builders.

    Returns:
        Hex-encoded 32-byte key string.
    """
    return secrets.token_bytes(KEY_LENGTH).hex()


def _split_urls(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class VaultConfig(BaseModel):
    """Validated vault configuration.

    ``chain_url`` is reserved for the payment and subscription layer; the
    session flow itself only talks to ``auth_url`` and ``db_urls``.
    """

    builder_key: Optional[SecretStr] = None
    chain_url: str = Field(default=NETWORKS["testnet"]["chain_url"])
    auth_url: str = Field(default=NETWORKS["testnet"]["auth_url"])
    db_urls: list[str] = Field(
        default_factory=lambda: list(NETWORKS["testnet"]["db_urls"])
    )
    collection_name: str = Field(default=DEFAULT_COLLECTION_NAME, min_length=1)
    builder_name: str = Field(default=DEFAULT_BUILDER_NAME, min_length=1)
    session_ttl: int = Field(default=SESSION_TTL, ge=60)
    delegation_ttl: int = Field(default=DELEGATION_TTL, ge=1, le=3600)
    request_timeout: Optional[float] = Field(default=None, gt=0)

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("db_urls", mode="before")
    @classmethod
    def split_db_urls(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        return _split_urls(v)

    @field_validator("db_urls")
    @classmethod
    def validate_db_urls(cls, v: list[str]) -> list[str]:
        """Require at least one http(s) node URL, without trailing slash."""
        if not v:
            raise ValueError("At least one vault node URL is required")
        urls = []
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Unsupported vault node URL: {url}")
            urls.append(url.rstrip("/"))
        return urls

    @field_validator("chain_url", "auth_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported URL: {v}")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_ttls(self) -> "VaultConfig":
        """A delegation must never outlive the session that issued it."""
        if self.delegation_ttl >= self.session_ttl:
            raise ValueError(
                f"delegation_ttl ({self.delegation_ttl}s) must be shorter "
                f"than session_ttl ({self.session_ttl}s)"
            )
        return self

    def builder_secret(self) -> bytes:
        """Return the raw builder secret.

        Raises:
            VaultError: ``MISSING_PRIVATE_KEY`` / ``KEYPAIR_CREATION_FAILED``.
        """
        raw = self.builder_key.get_secret_value() if self.builder_key else None
        return parse_builder_key(raw)

    @classmethod
    def from_env(cls, **overrides: Any) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        The builder key is not validated here: a missing or malformed key
        surfaces as a categorized error when the vault is initialized.

        Returns:
            Populated VaultConfig instance.
        """
        network = os.environ.get("VAULT_NETWORK", "testnet").lower()
        if network not in NETWORKS:
            raise ValueError(f"Unsupported vault network: {network}")
        defaults = NETWORKS[network]
        values: dict[str, Any] = {
            "builder_key": os.environ.get(BUILDER_KEY_ENV) or None,
            "chain_url": os.environ.get("VAULT_CHAIN_URL", defaults["chain_url"]),
            "auth_url": os.environ.get("VAULT_AUTH_URL", defaults["auth_url"]),
            "db_urls": os.environ.get("VAULT_DB_URLS") or list(defaults["db_urls"]),
            "collection_name": os.environ.get(
                "VAULT_COLLECTION_NAME", DEFAULT_COLLECTION_NAME
            ),
            "builder_name": os.environ.get("VAULT_BUILDER_NAME", DEFAULT_BUILDER_NAME),
            "session_ttl": int(os.environ.get("VAULT_SESSION_TTL", SESSION_TTL)),
            "delegation_ttl": int(
                os.environ.get("VAULT_DELEGATION_TTL", DELEGATION_TTL)
            ),
        }
        timeout = os.environ.get("VAULT_REQUEST_TIMEOUT")
        if timeout:
            values["request_timeout"] = float(timeout)
        values.update(overrides)
        config = cls(**values)
        logger.debug(
            "Vault config loaded: network=%s nodes=%d collection=%s",
            network, len(config.db_urls), config.collection_name,
        )
        return config
