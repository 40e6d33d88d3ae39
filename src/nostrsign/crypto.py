"""NIP-44 v2 encryption and decryption.

secp256k1 ECDH -> HKDF-Extract conversation key -> per-message HKDF-Expand
into ChaCha20 key/nonce and HMAC key -> padded ChaCha20 ciphertext with an
HMAC-SHA256 tag over nonce || ciphertext.
"""

import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .envelope import Envelope, encode_envelope, decode_envelope
from .keys import ecdh
from .types import (
    NIP44_VERSION,
    NIP44_SALT,
    NONCE_SIZE,
    CONVERSATION_KEY_SIZE,
    MESSAGE_KEYS_SIZE,
    CHACHA_KEY_SIZE,
    CHACHA_NONCE_SIZE,
    MIN_PLAINTEXT_SIZE,
    MAX_PLAINTEXT_SIZE,
    PRIVATE_KEY_SIZE,
    XONLY_PUBLIC_KEY_SIZE,
    DecodeError,
    InvalidKeyError,
    InvalidLengthError,
    InvalidMacError,
    InvalidPaddingError,
)


@dataclass(frozen=True)
class MessageKeys:
    """Per-message keys expanded from a conversation key and nonce."""
    chacha_key: bytes  # 32 bytes
    chacha_nonce: bytes  # 12 bytes
    hmac_key: bytes  # 32 bytes


def _hmac_sha256(key: bytes, *parts: bytes) -> hmac.HMAC:
    h = hmac.HMAC(key, SHA256())
    for part in parts:
        h.update(part)
    return h


def get_conversation_key(private_key: bytes, public_key: bytes) -> bytes:
    """
    Derive the conversation key shared by two parties.

    The remote key is x-only, so both point parities are tried (02 then 03);
    either yields the same shared x when the point exists.

    Args:
        private_key: Our 32-byte secret
        public_key: Their 32-byte x-only public key

    Returns:
        32-byte conversation key

    Raises:
        InvalidKeyError: If no valid point exists for the key
    """
    if len(private_key) != PRIVATE_KEY_SIZE:
        raise InvalidKeyError(f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(private_key)}")
    if len(public_key) != XONLY_PUBLIC_KEY_SIZE:
        raise InvalidKeyError(
            f"Public key must be {XONLY_PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
        )

    for prefix in (b"\x02", b"\x03"):
        try:
            shared_x = ecdh(private_key, prefix + public_key)
        except InvalidKeyError:
            continue
        # HKDF-Extract(salt, ikm) is HMAC(salt, ikm)
        return _hmac_sha256(NIP44_SALT, shared_x).finalize()

    raise InvalidKeyError(f"Invalid public key: {public_key.hex()}")


def get_message_keys(conversation_key: bytes, nonce: bytes) -> MessageKeys:
    """Expand a conversation key and 32-byte nonce into message keys."""
    if len(conversation_key) != CONVERSATION_KEY_SIZE:
        raise InvalidKeyError(
            f"Conversation key must be {CONVERSATION_KEY_SIZE} bytes, got {len(conversation_key)}"
        )
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    keys = HKDFExpand(algorithm=SHA256(), length=MESSAGE_KEYS_SIZE, info=nonce).derive(
        conversation_key
    )
    nonce_end = CHACHA_KEY_SIZE + CHACHA_NONCE_SIZE
    return MessageKeys(
        chacha_key=keys[:CHACHA_KEY_SIZE],
        chacha_nonce=keys[CHACHA_KEY_SIZE:nonce_end],
        hmac_key=keys[nonce_end:],
    )


def calc_padded_len(unpadded_len: int) -> int:
    """
    Padded length for a plaintext length.

    32 bytes minimum, then rounded up to a chunk that grows with the size
    class of the message (1/8 of the next power of two, at least 32).
    """
    if unpadded_len <= 0:
        raise InvalidLengthError(unpadded_len)
    if unpadded_len <= 32:
        return 32

    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def pad(plaintext: bytes) -> bytes:
    """
    Pad plaintext as u16be(length) || plaintext || zeros.

    Raises:
        InvalidLengthError: If plaintext is empty or longer than 65535 bytes
    """
    length = len(plaintext)
    if length < MIN_PLAINTEXT_SIZE or length > MAX_PLAINTEXT_SIZE:
        raise InvalidLengthError(length)

    padding = calc_padded_len(length) - length
    return length.to_bytes(2, "big") + plaintext + bytes(padding)


def unpad(padded: bytes) -> bytes:
    """
    Strip padding and return the original plaintext.

    Raises:
        InvalidPaddingError: If the length prefix or buffer size is inconsistent
    """
    if len(padded) < 2:
        raise InvalidPaddingError("Padded data too short")

    length = int.from_bytes(padded[:2], "big")
    if length < MIN_PLAINTEXT_SIZE or length > len(padded) - 2:
        raise InvalidPaddingError(
            f"Invalid padding length: {length}, padded size: {len(padded)}"
        )
    if len(padded) != 2 + calc_padded_len(length):
        raise InvalidPaddingError(
            f"Padded size {len(padded)} does not match length {length}"
        )

    return padded[2 : 2 + length]


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 32-bit little-endian counter || 96-bit nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00\x00\x00\x00" + nonce), mode=None)
    encryptor = cipher.encryptor()
    return encryptor.update(data) + encryptor.finalize()


def encrypt(plaintext: str, conversation_key: bytes, nonce: Optional[bytes] = None) -> str:
    """
    Encrypt a message with a conversation key.

    Args:
        plaintext: Message to encrypt (1..65535 UTF-8 bytes)
        conversation_key: 32-byte key from get_conversation_key
        nonce: Fixed 32-byte nonce, only for reproducing test vectors

    Returns:
        Base64 payload

    Raises:
        InvalidLengthError: If the encoded plaintext is empty or too long
    """
    if nonce is None:
        nonce = os.urandom(NONCE_SIZE)

    keys = get_message_keys(conversation_key, nonce)
    padded = pad(plaintext.encode("utf-8"))
    ciphertext = _chacha20(keys.chacha_key, keys.chacha_nonce, padded)
    mac = _hmac_sha256(keys.hmac_key, nonce, ciphertext).finalize()

    return encode_envelope(
        Envelope(version=NIP44_VERSION, nonce=nonce, ciphertext=ciphertext, mac=mac)
    )


def decrypt(payload: str, conversation_key: bytes) -> str:
    """
    Decrypt a payload with a conversation key.

    Args:
        payload: Base64 payload
        conversation_key: 32-byte key from get_conversation_key

    Returns:
        The plaintext

    Raises:
        DecodeError: If the payload framing or plaintext encoding is invalid
        UnsupportedVersionError: If the version byte is not 2
        InvalidMacError: If authentication fails
    """
    envelope = decode_envelope(payload)
    keys = get_message_keys(conversation_key, envelope.nonce)

    try:
        _hmac_sha256(keys.hmac_key, envelope.nonce, envelope.ciphertext).verify(envelope.mac)
    except InvalidSignature as e:
        raise InvalidMacError("Invalid MAC") from e

    padded = _chacha20(keys.chacha_key, keys.chacha_nonce, envelope.ciphertext)
    try:
        return unpad(padded).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError("Plaintext is not valid UTF-8") from e


def encrypt_for(plaintext: str, private_key: bytes, public_key: bytes) -> str:
    """Encrypt for a peer, deriving the conversation key on the fly."""
    return encrypt(plaintext, get_conversation_key(private_key, public_key))


def decrypt_from(payload: str, private_key: bytes, public_key: bytes) -> str:
    """Decrypt from a peer, deriving the conversation key on the fly."""
    return decrypt(payload, get_conversation_key(private_key, public_key))
