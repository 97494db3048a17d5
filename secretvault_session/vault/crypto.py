"""
Vault Crypto Core — Key derivation, identities, signatures and serialization.

- Builder identity: secp256k1 keypair from the configured secret;
  DID = ``did:nil:<compressed public key hex>``.
- User identity: HKDF(builder secret, "vault-user:<address>") → secp256k1
  scalar, so the same address always maps to the same DID.
- Signatures: ECDSA-SHA256, raw ``r || s`` (64 bytes).

Security Note:
    Never log private scalars, secrets or signed tokens.
"""
import base64
import logging
from typing import Any, Optional, Union

import orjson
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger("secretvault.vault")

KEY_LENGTH = 32
SIGNATURE_LENGTH = 64
DID_PREFIX = "did:nil:"

# Order of the secp256k1 group.
SECP256K1_ORDER = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(seed: bytes, context: str, length: int = KEY_LENGTH) -> bytes:
    """Derive key material using HKDF-SHA256.

    Args:
        seed: Input key material (builder secret or DID bytes).
        context: Context string for domain separation (e.g. "vault-user:...").
        length: Number of bytes to derive.

    Returns:
        ``length`` bytes of derived key material.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=None,  # deterministic: same input, same identity
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------

class Keypair:
    """secp256k1 keypair identified by a ``did:nil`` DID."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        self._private_key = private_key
        self._public_bytes = private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.CompressedPoint,
        )

    @classmethod
    def from_bytes(cls, secret: bytes) -> "Keypair":
        """Build a keypair from a raw 32-byte scalar.

        Raises:
            ValueError: If the secret is not a valid secp256k1 scalar.
        """
        if len(secret) != KEY_LENGTH:
            raise ValueError(
                f"secp256k1 secret must be {KEY_LENGTH} bytes, got {len(secret)}"
            )
        scalar = int.from_bytes(secret, "big")
        if not 0 < scalar < SECP256K1_ORDER:
            raise ValueError("secp256k1 secret is out of range")
        return cls(ec.derive_private_key(scalar, ec.SECP256K1()))

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(ec.generate_private_key(ec.SECP256K1()))

    @property
    def public_key(self) -> bytes:
        """Compressed SEC1 public key (33 bytes)."""
        return self._public_bytes

    @property
    def did(self) -> str:
        return f"{DID_PREFIX}{self._public_bytes.hex()}"

    def sign(self, data: bytes) -> bytes:
        """Sign data with ECDSA-SHA256, returning raw ``r || s``."""
        der = self._private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return r.to_bytes(32, "big") + s.to_bytes(32, "big")

    def __repr__(self) -> str:
        return f"<Keypair did={self.did}>"


def public_key_from_did(did: str) -> ec.EllipticCurvePublicKey:
    """Recover the public key embedded in a ``did:nil`` DID.

    Raises:
        ValueError: If the DID is not a ``did:nil`` secp256k1 identifier.
    """
    if not did.startswith(DID_PREFIX):
        raise ValueError(f"Unsupported DID method: {did}")
    raw = bytes.fromhex(did[len(DID_PREFIX):])
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), raw)


def verify_signature(
    signer: Union[str, ec.EllipticCurvePublicKey],
    signature: bytes,
    data: bytes,
) -> bool:
    """Check a raw ``r || s`` signature against a DID or public key."""
    if len(signature) != SIGNATURE_LENGTH:
        return False
    public_key = public_key_from_did(signer) if isinstance(signer, str) else signer
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    try:
        public_key.verify(
            encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256())
        )
    except InvalidSignature:
        return False
    return True


def derive_user_keypair(builder_secret: bytes, user_address: str) -> Keypair:
    """Derive the per-user identity owned by ``user_address``.

    Args:
        builder_secret: Raw builder secret (32 bytes).
        user_address: Wallet address of the end user.

    Returns:
        Deterministic secp256k1 keypair for the user.
    """
    material = derive_key(builder_secret, f"vault-user:{user_address}")
    scalar = int.from_bytes(material, "big") % (SECP256K1_ORDER - 1) + 1
    return Keypair.from_bytes(scalar.to_bytes(KEY_LENGTH, "big"))


def derive_identifier(did: str, context: str, length: int = 4) -> str:
    """Short deterministic hex identifier bound to a DID and a context."""
    return derive_key(did.encode("utf-8"), context, length=length).hex()


# ---------------------------------------------------------------------------
# Encoding / serialization
# ---------------------------------------------------------------------------

def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to canonical JSON bytes.

    Keys are sorted so that signed payloads are stable.

    Args:
        value: JSON-compatible value (dicts, lists, str, numbers, bool, None).

    Returns:
        orjson-encoded bytes.
    """
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS)


def deserialize_value(data: Optional[Union[bytes, str]]) -> Any:
    """Deserialize JSON bytes back to a Python value.

    Args:
        data: orjson-encoded bytes (or str). Empty input yields None.

    Returns:
        Decoded Python value.
    """
    if not data:
        return None
    return orjson.loads(data)
