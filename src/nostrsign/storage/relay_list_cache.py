"""Relay list cache with TTL expiration and bounded size."""

import time
from datetime import timedelta
from typing import Callable, Optional

from ..models import CachedRelayList, Nip65Relay


# Default TTL: 1 hour
DEFAULT_TTL = timedelta(hours=1)

# Default capacity
DEFAULT_MAX_SIZE = 1000


def epoch_millis() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class RelayListCache:
    """
    In-memory cache for relay lists keyed by pubkey.

    Entries expire ttl after they were fetched. When the cache is full, storing
    a new pubkey evicts the entry with the oldest fetch time.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """Creates a cache; clock returns epoch milliseconds (default: wall clock)."""
        self._cache: dict[str, CachedRelayList] = {}
        self._ttl_ms = int(ttl.total_seconds() * 1000)
        self._max_size = max_size
        self._clock = clock or epoch_millis

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, pubkey: str) -> bool:
        return pubkey in self._cache

    def now(self) -> int:
        return self._clock()

    def store(self, pubkey: str, relays: list[Nip65Relay]) -> CachedRelayList:
        """Store a freshly fetched relay list and return the cache entry."""
        now = self._clock()
        entry = CachedRelayList(
            pubkey=pubkey,
            relays=list(relays),
            fetched_at=now,
            expires_at=now + self._ttl_ms,
        )
        self.put(entry)
        return entry

    def put(self, entry: CachedRelayList) -> None:
        """Insert an existing entry (e.g. restored from storage) as-is."""
        if entry.pubkey not in self._cache and len(self._cache) >= self._max_size:
            oldest = min(self._cache.values(), key=lambda e: e.fetched_at)
            del self._cache[oldest.pubkey]
        self._cache[entry.pubkey] = entry

    def retrieve(self, pubkey: str) -> Optional[list[Nip65Relay]]:
        """Retrieve relays for a pubkey (returns None if missing or expired)."""
        entry = self._cache.get(pubkey)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return list(entry.relays)

    def peek(self, pubkey: str) -> list[Nip65Relay]:
        """Relays for a pubkey regardless of expiry (empty if never cached)."""
        entry = self._cache.get(pubkey)
        return list(entry.relays) if entry else []

    def entry(self, pubkey: str) -> Optional[CachedRelayList]:
        return self._cache.get(pubkey)

    def invalidate(self, pubkey: str) -> None:
        """Invalidate the cached list for a pubkey."""
        self._cache.pop(pubkey, None)

    def clear(self) -> None:
        """Clear all cached lists."""
        self._cache.clear()

    def prune_expired(self) -> None:
        """Remove all expired entries."""
        now = self._clock()
        expired = [pk for pk, entry in self._cache.items() if entry.is_expired(now)]
        for pk in expired:
            del self._cache[pk]
