"""secp256k1 key material for nostrsign.

This is the only module that talks to the curve library. Everything above it
(NIP-44, NIP-04, event signing) is written against these few functions.
"""

import hashlib
import os
from dataclasses import dataclass, field
from typing import Optional

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly

from .types import (
    PRIVATE_KEY_SIZE,
    SIGNATURE_SIZE,
    XONLY_PUBLIC_KEY_SIZE,
    InvalidKeyError,
)


def sha256(data: bytes) -> bytes:
    """SHA-256 digest of data."""
    return hashlib.sha256(data).digest()


def ecdh(private_key: bytes, public_key: bytes) -> bytes:
    """
    Multiply a compressed public key by our scalar and return the shared x.

    Unlike libsecp256k1's default ECDH there is no hashing of the shared
    point: Nostr protocols use the raw x-coordinate.

    Args:
        private_key: 32-byte secret scalar
        public_key: 33-byte compressed public key (02/03 prefix)

    Returns:
        32-byte x-coordinate of the shared point

    Raises:
        InvalidKeyError: If either key is invalid
    """
    try:
        point = PublicKey(public_key).multiply(private_key)
    except (ValueError, TypeError) as e:
        raise InvalidKeyError(f"ECDH failed: {e}") from e
    return point.format(compressed=True)[1:]


def schnorr_sign(private_key: bytes, message: bytes, aux_rand: Optional[bytes] = None) -> bytes:
    """
    Create a BIP-340 Schnorr signature over a 32-byte message.

    Args:
        private_key: 32-byte secret scalar
        message: 32-byte message (an event id)
        aux_rand: Optional 32 bytes of auxiliary randomness (random if omitted)

    Returns:
        64-byte signature
    """
    if len(message) != 32:
        raise ValueError(f"Message must be 32 bytes, got {len(message)}")
    if aux_rand is None:
        aux_rand = os.urandom(32)
    return PrivateKey(private_key).sign_schnorr(message, aux_rand)


def schnorr_verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Verify a BIP-340 signature; malformed inputs verify as False."""
    if len(public_key) != XONLY_PUBLIC_KEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        return PublicKeyXOnly(public_key).verify(signature, message)
    except ValueError:
        return False


def xonly_public_key(private_key: bytes) -> bytes:
    """Derive the 32-byte x-only public key for a secret scalar."""
    try:
        return PrivateKey(private_key).public_key.format(compressed=True)[1:]
    except ValueError as e:
        raise InvalidKeyError(f"Invalid private key: {e}") from e


def parse_public_key_hex(public_key_hex: str) -> bytes:
    """
    Decode a hex x-only public key.

    Raises:
        InvalidKeyError: If the value is not 32 bytes of hex
    """
    try:
        data = bytes.fromhex(public_key_hex)
    except (ValueError, TypeError) as e:
        raise InvalidKeyError(f"Public key is not hex: {public_key_hex!r}") from e
    if len(data) != XONLY_PUBLIC_KEY_SIZE:
        raise InvalidKeyError(
            f"Public key must be {XONLY_PUBLIC_KEY_SIZE} bytes, got {len(data)}"
        )
    return data


@dataclass(frozen=True)
class KeyPair:
    """
    A secp256k1 keypair in Nostr form.

    Attributes:
        private_key: 32-byte secret scalar.
        public_key: 32-byte x-only public key.
    """

    private_key: bytes = field(repr=False)
    public_key: bytes

    @classmethod
    def generate(cls) -> "KeyPair":
        """Generate a fresh random keypair."""
        secret = PrivateKey().secret
        return cls(private_key=secret, public_key=xonly_public_key(secret))

    @classmethod
    def from_private_key(cls, private_key: bytes) -> "KeyPair":
        """
        Create a keypair from a 32-byte secret.

        Raises:
            InvalidKeyError: If the secret is not a valid scalar
        """
        if len(private_key) != PRIVATE_KEY_SIZE:
            raise InvalidKeyError(
                f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(private_key)}"
            )
        return cls(private_key=bytes(private_key), public_key=xonly_public_key(private_key))

    @classmethod
    def from_private_key_hex(cls, private_key_hex: str) -> "KeyPair":
        """Create a keypair from a hex-encoded secret."""
        try:
            data = bytes.fromhex(private_key_hex)
        except (ValueError, TypeError) as e:
            raise InvalidKeyError("Private key is not hex") from e
        return cls.from_private_key(data)

    @property
    def private_key_hex(self) -> str:
        return self.private_key.hex()

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    def sign(self, message: bytes) -> bytes:
        """Schnorr-sign a 32-byte message with this keypair."""
        return schnorr_sign(self.private_key, message)
