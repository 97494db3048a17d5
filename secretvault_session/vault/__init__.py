"""Vault — identities, capability tokens and the remote vault protocol.

Security Note (Threat Model):
    The builder secret is held in process memory for the lifetime of the
    orchestrator, and every user identity is derived from it. Anyone able
    to read that memory, or the VAULT_BUILDER_KEY environment variable,
    can act as the builder and as every user it provisions.
    Delegations are short-lived bearer tokens and are never persisted.
"""

from .config import VaultConfig, load_builder_key, generate_builder_key
from .crypto import Keypair, derive_user_keypair
from .tokens import DelegationIssuer, mint_token, verify_token
from .client import BuilderAPI, BuilderClient, UserAPI, UserClient
from .identity import Identity, IdentityProvisioner
from .collections import CollectionProvisioner
from .transport import NetworkLogger, RequestInterceptor, VaultTransport

__all__ = [
    "VaultConfig",
    "load_builder_key",
    "generate_builder_key",
    "Keypair",
    "derive_user_keypair",
    "DelegationIssuer",
    "mint_token",
    "verify_token",
    "BuilderAPI",
    "BuilderClient",
    "UserAPI",
    "UserClient",
    "Identity",
    "IdentityProvisioner",
    "CollectionProvisioner",
    "NetworkLogger",
    "RequestInterceptor",
    "VaultTransport",
]
