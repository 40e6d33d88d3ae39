"""Configuration for signer sessions and relay list discovery."""

from dataclasses import dataclass, field, replace
from datetime import timedelta

from .types import KIND_NOSTR_CONNECT


DEFAULT_BOOTSTRAP_RELAYS = [
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.nostr.net",
    "wss://purplepag.es",  # specialised for NIP-65
]


@dataclass
class SignerConfig:
    """Configuration for a remote signer session."""

    request_timeout: timedelta = field(default_factory=lambda: timedelta(minutes=2))
    """How long a request waits for its correlated response."""

    settle_delay: timedelta = field(default_factory=lambda: timedelta(milliseconds=500))
    """Pause between subscribing and publishing a request."""

    since_window: timedelta = field(default_factory=lambda: timedelta(seconds=120))
    """How far back the response subscription looks."""

    event_kind: int = KIND_NOSTR_CONNECT
    """Event kind carrying signer traffic."""

    max_queued_challenges: int = 32
    """Undrained authorization challenges kept; the oldest is dropped beyond this."""

    @classmethod
    def fast(cls) -> "SignerConfig":
        """Short timeouts, for tests and local signers."""
        return cls(
            request_timeout=timedelta(seconds=2),
            settle_delay=timedelta(0),
        )


@dataclass
class OutboxConfig:
    """Configuration for relay list discovery and caching."""

    bootstrap_relays: list[str] = field(default_factory=lambda: list(DEFAULT_BOOTSTRAP_RELAYS))
    """Relays queried for relay lists and used as fallback."""

    cache_ttl: timedelta = field(default_factory=lambda: timedelta(hours=1))
    """How long a fetched relay list stays fresh."""

    max_cache_size: int = 1000
    """Maximum number of cached relay lists."""

    fetch_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=5))
    """Shared deadline for one parallel fetch across bootstrap relays."""

    pending_wait: timedelta = field(default_factory=lambda: timedelta(milliseconds=500))
    """How long a caller waits on somebody else's in-flight fetch."""

    def with_bootstrap_relays(self, relays: list[str]) -> "OutboxConfig":
        """Returns a copy using the given bootstrap relays."""
        return replace(self, bootstrap_relays=list(relays))
