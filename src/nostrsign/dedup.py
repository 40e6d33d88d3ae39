"""
Cross-relay event deduplication.

The same event routinely arrives from several relays. EventDeduplicator keeps
a bounded, insertion-ordered record of seen ids so handlers process each event
once without growing memory without bound.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass


DEFAULT_MAX_SIZE = 10_000


@dataclass
class DeduplicationStats:
    """Counters for a deduplicator."""

    total_events: int
    unique_events: int
    duplicate_events: int
    deduplication_rate: float
    cache_size: int
    max_cache_size: int

    def __str__(self) -> str:
        return (
            f"EventDeduplicator: {self.unique_events} unique, "
            f"{self.duplicate_events} duplicates ({self.deduplication_rate:.1f}% dedup rate), "
            f"cache {self.cache_size}/{self.max_cache_size}"
        )


class EventDeduplicator:
    """
    Bounded FIFO set of seen event ids.

    When full, adding a new id evicts the single oldest insertion. Lookups do
    not refresh recency.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._seen: OrderedDict[str, int] = OrderedDict()
        self._lock = asyncio.Lock()
        self._total = 0
        self._duplicates = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        """Number of ids currently remembered."""
        return len(self._seen)

    async def try_add(self, event_id: str) -> bool:
        """Records an id. Returns True if it was new, False if already seen."""
        async with self._lock:
            self._total += 1
            if event_id in self._seen:
                self._duplicates += 1
                return False

            if len(self._seen) >= self._max_size:
                self._seen.popitem(last=False)

            self._seen[event_id] = int(time.time() * 1000)
            return True

    async def contains(self, event_id: str) -> bool:
        async with self._lock:
            return event_id in self._seen

    async def remove(self, event_id: str) -> None:
        async with self._lock:
            self._seen.pop(event_id, None)

    async def clear(self) -> None:
        """Forgets all ids and resets the counters."""
        async with self._lock:
            self._seen.clear()
            self._total = 0
            self._duplicates = 0

    async def filter_new(self, event_ids: list[str]) -> list[str]:
        """Returns the ids not seen before, recording them."""
        return [event_id for event_id in event_ids if await self.try_add(event_id)]

    def stats(self) -> DeduplicationStats:
        rate = (self._duplicates / self._total * 100) if self._total else 0.0
        return DeduplicationStats(
            total_events=self._total,
            unique_events=self._total - self._duplicates,
            duplicate_events=self._duplicates,
            deduplication_rate=rate,
            cache_size=len(self._seen),
            max_cache_size=self._max_size,
        )
