"""Type definitions and protocol constants for nostrsign."""


# NIP-44 constants
NIP44_VERSION = 0x02
NIP44_SALT = b"nip44-v2"
NONCE_SIZE = 32
MAC_SIZE = 32
CONVERSATION_KEY_SIZE = 32
MESSAGE_KEYS_SIZE = 76
CHACHA_KEY_SIZE = 32
CHACHA_NONCE_SIZE = 12
HMAC_KEY_SIZE = 32
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535
MIN_PAYLOAD_SIZE = 99  # version + nonce + (2 + 32) padded + mac
MAX_PAYLOAD_SIZE = 65603  # version + nonce + (2 + 65536) padded + mac

# secp256k1 / BIP-340 sizes
PRIVATE_KEY_SIZE = 32
XONLY_PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64

# Event kinds
KIND_NOSTR_CONNECT = 24133
KIND_RELAY_LIST = 10002

# NIP-46 protocol
CONNECT_ACK = "ack"
AUTH_URL_RESULT = "auth_url"
PONG = "pong"
REQUEST_ID_SIZE = 16


# Exception types
class NostrSignError(Exception):
    """Base exception for nostrsign errors."""
    pass


class DecodeError(NostrSignError):
    """Malformed payload (bad base64, bad framing, bad UTF-8)."""
    pass


class TooShortError(DecodeError):
    """Decoded payload is shorter than the smallest valid envelope."""
    pass


class PayloadTooLargeError(DecodeError):
    """Decoded payload is larger than the biggest valid envelope."""
    pass


class InvalidPaddingError(DecodeError):
    """Decrypted buffer has an inconsistent length prefix or padding."""
    pass


class CryptoError(NostrSignError):
    """Cryptographic failure."""
    pass


class InvalidMacError(CryptoError):
    """Message authentication code did not verify."""
    pass


class UnsupportedVersionError(CryptoError):
    """Envelope version byte is not supported."""

    def __init__(self, version: int) -> None:
        self.version = version
        super().__init__(f"Unsupported encryption version: {version}")


class InvalidKeyError(CryptoError):
    """Key material is malformed or not on the curve."""
    pass


class InvalidLengthError(CryptoError):
    """Plaintext length is outside the encryptable range."""

    def __init__(self, length: int) -> None:
        self.length = length
        super().__init__(
            f"Invalid plaintext length: {length} bytes "
            f"(must be {MIN_PLAINTEXT_SIZE}..{MAX_PLAINTEXT_SIZE})"
        )


class ProtocolError(NostrSignError):
    """Unexpected message shape or protocol violation."""
    pass


class ConnectRejectedError(ProtocolError):
    """Remote signer answered the connect handshake with something unexpected."""

    def __init__(self, response: str) -> None:
        self.response = response
        super().__init__(f"Connect failed: unexpected response '{response}'")


class SignerError(ProtocolError):
    """Remote signer answered a request with an error."""

    def __init__(self, method: str, message: str) -> None:
        self.method = method
        self.message = message
        super().__init__(f"{method} failed: {message}")


class PermissionDeniedError(SignerError):
    """Remote signer explicitly refused the operation."""
    pass


class InvalidBunkerUrlError(ProtocolError, ValueError):
    """Bunker URL could not be parsed."""
    pass


class TransportError(NostrSignError):
    """Relay transport failure."""
    pass


class NoRelayReachableError(TransportError):
    """None of the requested relays could be connected."""

    def __init__(self, relays: list[str]) -> None:
        self.relays = relays
        super().__init__(f"Failed to connect to any relay: {', '.join(relays) or 'none given'}")


class RequestTimeoutError(NostrSignError, TimeoutError):
    """No correlated response arrived within the allowed window."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"{method} timed out after {timeout:g}s")


class DisconnectedError(NostrSignError):
    """Session was disconnected while a request was outstanding."""
    pass
