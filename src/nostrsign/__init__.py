"""
nostrsign - Encrypted remote signing for Nostr clients

Python implementation of NIP-44 v2 encryption, the NIP-46 remote signer
protocol, NIP-65 relay list discovery and cross-relay event deduplication.
"""

from .keys import KeyPair, ecdh, schnorr_sign, schnorr_verify, sha256
from .crypto import (
    MessageKeys,
    get_conversation_key,
    get_message_keys,
    calc_padded_len,
    pad,
    unpad,
    encrypt,
    decrypt,
    encrypt_for,
    decrypt_from,
)
from .envelope import Envelope, encode_envelope, decode_envelope, is_nip04_payload
from .types import (
    KIND_NOSTR_CONNECT,
    KIND_RELAY_LIST,
    NostrSignError,
    DecodeError,
    TooShortError,
    PayloadTooLargeError,
    InvalidPaddingError,
    CryptoError,
    InvalidMacError,
    UnsupportedVersionError,
    InvalidKeyError,
    InvalidLengthError,
    ProtocolError,
    ConnectRejectedError,
    SignerError,
    PermissionDeniedError,
    InvalidBunkerUrlError,
    TransportError,
    NoRelayReachableError,
    RequestTimeoutError,
    DisconnectedError,
)
from .models import (
    Event,
    SignerRequest,
    SignerResponse,
    AuthChallenge,
    SessionState,
    Nip65Relay,
    CachedRelayList,
)
from .config import (
    DEFAULT_BOOTSTRAP_RELAYS,
    SignerConfig,
    OutboxConfig,
)
from .storage import (
    PersistentStore,
    InMemoryStore,
    SessionStore,
    RelayListCache,
)
from .transport import (
    RelaySession,
    RelayTransport,
    WebSocketTransport,
)
from .dedup import (
    DeduplicationStats,
    EventDeduplicator,
)
from .bunker import (
    BunkerInfo,
    parse_bunker_url,
    create_bunker_url,
)
from .signer import (
    RemoteSignerSession,
    is_already_connected_error,
    is_permission_error,
)
from .outbox import (
    OutboxModel,
    RelayListManager,
    parse_relay_list,
)
from .account import BunkerAccount
from . import nip04

__version__ = "0.1.0"

__all__ = [
    # Keys
    "KeyPair",
    "ecdh",
    "schnorr_sign",
    "schnorr_verify",
    "sha256",
    # Crypto
    "MessageKeys",
    "get_conversation_key",
    "get_message_keys",
    "calc_padded_len",
    "pad",
    "unpad",
    "encrypt",
    "decrypt",
    "encrypt_for",
    "decrypt_from",
    "nip04",
    # Envelope
    "Envelope",
    "encode_envelope",
    "decode_envelope",
    "is_nip04_payload",
    # Constants
    "KIND_NOSTR_CONNECT",
    "KIND_RELAY_LIST",
    # Errors
    "NostrSignError",
    "DecodeError",
    "TooShortError",
    "PayloadTooLargeError",
    "InvalidPaddingError",
    "CryptoError",
    "InvalidMacError",
    "UnsupportedVersionError",
    "InvalidKeyError",
    "InvalidLengthError",
    "ProtocolError",
    "ConnectRejectedError",
    "SignerError",
    "PermissionDeniedError",
    "InvalidBunkerUrlError",
    "TransportError",
    "NoRelayReachableError",
    "RequestTimeoutError",
    "DisconnectedError",
    # Models
    "Event",
    "SignerRequest",
    "SignerResponse",
    "AuthChallenge",
    "SessionState",
    "Nip65Relay",
    "CachedRelayList",
    # Config
    "DEFAULT_BOOTSTRAP_RELAYS",
    "SignerConfig",
    "OutboxConfig",
    # Storage
    "PersistentStore",
    "InMemoryStore",
    "SessionStore",
    "RelayListCache",
    # Transport
    "RelaySession",
    "RelayTransport",
    "WebSocketTransport",
    # Dedup
    "DeduplicationStats",
    "EventDeduplicator",
    # Bunker
    "BunkerInfo",
    "parse_bunker_url",
    "create_bunker_url",
    # Signer
    "RemoteSignerSession",
    "is_already_connected_error",
    "is_permission_error",
    # Outbox
    "OutboxModel",
    "RelayListManager",
    "parse_relay_list",
    # Account
    "BunkerAccount",
]
