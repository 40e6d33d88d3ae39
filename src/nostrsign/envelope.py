"""Envelope encoding and decoding for NIP-44 v2 payloads."""

import base64
import binascii
from dataclasses import dataclass

from .types import (
    NIP44_VERSION,
    NONCE_SIZE,
    MAC_SIZE,
    MIN_PAYLOAD_SIZE,
    MAX_PAYLOAD_SIZE,
    DecodeError,
    TooShortError,
    PayloadTooLargeError,
    UnsupportedVersionError,
)


@dataclass
class Envelope:
    """NIP-44 v2 encrypted payload."""
    version: int
    nonce: bytes  # 32 bytes
    ciphertext: bytes  # padded plaintext length (2 + 32.. bytes)
    mac: bytes  # 32 bytes


def encode_envelope(envelope: Envelope) -> str:
    """
    Encode an envelope to base64 text.

    Format:
        [0]        version (0x02)
        [1-32]     nonce (32 bytes)
        [33..-32]  ciphertext (variable)
        [-32:]     HMAC-SHA256 over nonce || ciphertext

    Args:
        envelope: Envelope to encode

    Returns:
        Standard base64 without line breaks
    """
    raw = bytes([envelope.version]) + envelope.nonce + envelope.ciphertext + envelope.mac
    return base64.b64encode(raw).decode("ascii")


def decode_envelope(payload: str) -> Envelope:
    """
    Decode base64 text into an envelope.

    Only framing is checked here; the MAC is checked by the caller. Length and
    version are validated before any key material is touched.

    Args:
        payload: Base64 payload as carried in an event's content

    Returns:
        Decoded Envelope

    Raises:
        DecodeError: If the text is not base64 or uses the future-version marker
        TooShortError: If the payload is below the minimum size
        PayloadTooLargeError: If the payload exceeds the maximum size
        UnsupportedVersionError: If the version byte is not 2
    """
    if not payload:
        raise TooShortError("Payload is empty")
    if payload[0] == "#":
        raise DecodeError("Unknown encryption version marker '#'")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64: {e}") from e

    if len(data) < MIN_PAYLOAD_SIZE:
        raise TooShortError(f"Payload too short: {len(data)} bytes (minimum {MIN_PAYLOAD_SIZE})")
    if len(data) > MAX_PAYLOAD_SIZE:
        raise PayloadTooLargeError(
            f"Payload too large: {len(data)} bytes (maximum {MAX_PAYLOAD_SIZE})"
        )

    version = data[0]
    if version != NIP44_VERSION:
        raise UnsupportedVersionError(version)

    return Envelope(
        version=version,
        nonce=data[1 : 1 + NONCE_SIZE],
        ciphertext=data[1 + NONCE_SIZE : -MAC_SIZE],
        mac=data[-MAC_SIZE:],
    )


def is_nip04_payload(content: str) -> bool:
    """Whether event content looks like a legacy NIP-04 payload."""
    return "?iv=" in content
