"""Legacy NIP-04 encryption (AES-256-CBC over the raw ECDH x-coordinate).

Kept for signers that still answer in NIP-04. New traffic uses NIP-44.
"""

import base64
import binascii
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .keys import ecdh
from .types import DecodeError, CryptoError

IV_SEPARATOR = "?iv="
IV_SIZE = 16


def compute_shared_secret(private_key: bytes, public_key: bytes) -> bytes:
    """Shared x-coordinate with the peer's x-only key (even parity)."""
    return ecdh(private_key, b"\x02" + public_key)


def encrypt(plaintext: str, private_key: bytes, public_key: bytes) -> str:
    """Encrypt to '<base64 ciphertext>?iv=<base64 iv>'."""
    key = compute_shared_secret(private_key, public_key)
    iv = os.urandom(IV_SIZE)

    padder = padding.PKCS7(128).padder()
    data = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(data) + encryptor.finalize()

    return (
        base64.b64encode(ciphertext).decode("ascii")
        + IV_SEPARATOR
        + base64.b64encode(iv).decode("ascii")
    )


def decrypt(payload: str, private_key: bytes, public_key: bytes) -> str:
    """
    Decrypt a NIP-04 payload.

    Raises:
        DecodeError: If the payload is not in '<b64>?iv=<b64>' form
        CryptoError: If the padding is wrong (wrong key or corrupted data)
    """
    parts = payload.split(IV_SEPARATOR)
    if len(parts) != 2:
        raise DecodeError("Invalid NIP-04 payload format")

    try:
        ciphertext = base64.b64decode(parts[0], validate=True)
        iv = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64: {e}") from e

    if len(iv) != IV_SIZE or not ciphertext or len(ciphertext) % 16:
        raise DecodeError("Invalid NIP-04 ciphertext or IV length")

    key = compute_shared_secret(private_key, public_key)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    data = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(128).unpadder()
    try:
        plaintext = unpadder.update(data) + unpadder.finalize()
    except ValueError as e:
        raise CryptoError("Invalid NIP-04 padding") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError("Plaintext is not valid UTF-8") from e
