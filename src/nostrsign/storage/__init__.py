"""nostrsign storage module."""

from .persistent_store import PersistentStore, InMemoryStore
from .session_store import SessionStore
from .relay_list_cache import RelayListCache, epoch_millis

__all__ = [
    "PersistentStore",
    "InMemoryStore",
    "SessionStore",
    "RelayListCache",
    "epoch_millis",
]
