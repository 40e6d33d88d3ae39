"""Persistent key/value store interface and implementations."""

from abc import ABC, abstractmethod
from typing import Optional


class PersistentStore(ABC):
    """
    Interface for opaque string storage that survives restarts.

    Platform backends (keychain, keystore, browser storage) implement this;
    nostrsign only needs get/set/delete/clear.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Returns the stored value, or None if absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Stores a value, replacing any previous one."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Removes a value (no-op if absent)."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """Lists all stored keys."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Removes every value."""
        ...


class InMemoryStore(PersistentStore):
    """
    In-memory implementation of PersistentStore (for testing).

    WARNING: Values are kept unencrypted in process memory and are lost when
    the process exits.
    """

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._values.keys())

    async def clear(self) -> None:
        self._values.clear()
