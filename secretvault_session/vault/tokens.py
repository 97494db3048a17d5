"""
Vault Tokens — Signed capability tokens and delegation issuing.

Token layout: ``b64url(header).b64url(payload).b64url(signature)`` where the
signature is ES256K over the first two segments. A delegation travels as an
envelope ``<delegation>/<root token>`` so the receiving node can walk the
proof chain: the delegation's ``prf`` holds the SHA-256 of the root token.

Security Note:
    Tokens are bearer credentials. Never log them; log audience, command
    and expiry only.
"""
import time
import hashlib
import logging
import secrets
from typing import Any, Callable, Optional

from ..conf import DELEGATION_TTL
from ..exceptions import ErrorCode, VaultError
from ..models import DelegationToken
from .crypto import (
    Keypair,
    b64url_decode,
    b64url_encode,
    deserialize_value,
    serialize_value,
    verify_signature,
)

logger = logging.getLogger("secretvault.vault")

TOKEN_HEADER = {"alg": "ES256K", "typ": "nuc"}
ENVELOPE_SEPARATOR = "/"


def token_hash(token: str) -> str:
    """SHA-256 (hex) of a serialized token, used as proof reference."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def mint_token(
    signer: Keypair,
    audience: str,
    command: str,
    expires_at: Optional[int] = None,
    proof: Optional[str] = None,
    subject: Optional[str] = None,
) -> str:
    """Build and sign a capability token.

    Args:
        signer: Keypair of the issuer.
        audience: DID allowed to use the token.
        command: Single command the token grants.
        expires_at: Absolute expiry (epoch seconds); None means no expiry.
        proof: Serialized parent token this one extends, if any.
        subject: DID on whose behalf the command runs (defaults to issuer).

    Returns:
        Serialized token string.
    """
    payload: dict[str, Any] = {
        "iss": signer.did,
        "aud": audience,
        "sub": subject or signer.did,
        "cmd": command,
        "nonce": secrets.token_hex(16),
        "prf": [token_hash(proof)] if proof else [],
    }
    if expires_at is not None:
        payload["exp"] = int(expires_at)
    signing_input = ".".join((
        b64url_encode(serialize_value(TOKEN_HEADER)),
        b64url_encode(serialize_value(payload)),
    ))
    signature = signer.sign(signing_input.encode("ascii"))
    return f"{signing_input}.{b64url_encode(signature)}"


def decode_token(token: str) -> dict[str, Any]:
    """Decode a token (or the head of an envelope) without verifying it.

    Raises:
        ValueError: If the token is malformed.
    """
    head = token.split(ENVELOPE_SEPARATOR, 1)[0]
    parts = head.split(".")
    if len(parts) != 3:
        raise ValueError("Malformed token: expected three segments")
    try:
        header = deserialize_value(b64url_decode(parts[0]))
        payload = deserialize_value(b64url_decode(parts[1]))
    except ValueError as err:
        raise ValueError(f"Malformed token: {err}") from err
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise ValueError("Malformed token: header and payload must be objects")
    return payload


def verify_token(token: str, now: Optional[float] = None) -> dict[str, Any]:
    """Verify signature, expiry and proof chain of a token or envelope.

    Returns:
        The payload of the head token.

    Raises:
        ValueError: If any token in the chain is invalid or expired.
    """
    now = time.time() if now is None else now
    chain = token.split(ENVELOPE_SEPARATOR)
    head_payload: Optional[dict[str, Any]] = None
    for position, item in enumerate(chain):
        payload = decode_token(item)
        signing_input, _, signature = item.rpartition(".")
        if not verify_signature(
            payload["iss"], b64url_decode(signature), signing_input.encode("ascii")
        ):
            raise ValueError("Invalid token signature")
        exp = payload.get("exp")
        if exp is not None and now >= exp:
            raise ValueError("Token has expired")
        if position + 1 < len(chain):
            if token_hash(chain[position + 1]) not in payload.get("prf", []):
                raise ValueError("Token proof chain is broken")
        if head_payload is None:
            head_payload = payload
    return head_payload


class DelegationIssuer:
    """Mint delegations that extend the builder's root credential.

    Pure derivation, no network. A new token is issued for every mutating
    record operation; tokens are never cached.
    """

    def __init__(
        self,
        signer: Keypair,
        default_ttl: int = DELEGATION_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._signer = signer
        self._default_ttl = default_ttl
        self._clock = clock

    @property
    def issuer(self) -> str:
        return self._signer.did

    def issue(
        self,
        root_credential: str,
        audience: str,
        command: str,
        ttl_seconds: Optional[int] = None,
    ) -> DelegationToken:
        """Scope the root credential to one audience and one command.

        Args:
            root_credential: Serialized root token of the builder.
            audience: DID of the user identity that will use the token.
            command: Command granted (e.g. ``/nil/db/data/create``).
            ttl_seconds: Validity; defaults to the configured delegation TTL.

        Returns:
            DelegationToken whose ``token`` is the envelope to send.

        Raises:
            VaultError: ``CLIENT_INIT_FAILED`` if no root credential is
                available, ``REQUEST_FAILED`` for invalid arguments.
        """
        if not root_credential:
            raise VaultError(
                "Builder root credential is not available",
                ErrorCode.CLIENT_INIT_FAILED,
            )
        if not audience or not command:
            raise VaultError(
                "A delegation needs an audience and a command",
                ErrorCode.REQUEST_FAILED,
            )
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise VaultError(
                f"Delegation TTL must be positive, got {ttl}",
                ErrorCode.REQUEST_FAILED,
            )
        expires_at = int(self._clock()) + ttl
        delegation = mint_token(
            self._signer,
            audience=audience,
            command=command,
            expires_at=expires_at,
            proof=root_credential,
        )
        logger.debug(
            "Delegation issued: aud=%s cmd=%s exp=%d", audience, command, expires_at,
        )
        return DelegationToken(
            token=f"{delegation}{ENVELOPE_SEPARATOR}{root_credential}",
            issuer=self._signer.did,
            audience=audience,
            command=command,
            expires_at=expires_at,
        )
