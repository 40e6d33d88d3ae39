"""Session continuity state on top of a PersistentStore.

Values are opaque strings under fixed names. A value that does not parse is
treated exactly like a missing one.
"""

import logging
import re
from typing import Optional

from ..models import CachedRelayList
from .persistent_store import PersistentStore

logger = logging.getLogger(__name__)

CLIENT_PRIVATE_KEY = "bunker_client_private_key"
BUNKER_URL = "bunker_url"
BUNKER_USER_PUBKEY = "bunker_user_pubkey"
RELAY_LIST_PREFIX = "relay_list:"

_HEX32 = re.compile(r"^[0-9a-f]{64}$")


class SessionStore:
    """Typed access to the values a bunker login needs across restarts."""

    def __init__(self, store: PersistentStore) -> None:
        self._store = store

    @property
    def backend(self) -> PersistentStore:
        return self._store

    async def _get_hex32(self, key: str) -> Optional[str]:
        value = await self._store.get(key)
        if value is None:
            return None
        if not _HEX32.match(value.strip().lower()):
            logger.warning("Ignoring corrupt value stored under %s", key)
            return None
        return value.strip().lower()

    # MARK: - Client keypair

    async def get_client_private_key(self) -> Optional[str]:
        return await self._get_hex32(CLIENT_PRIVATE_KEY)

    async def save_client_private_key(self, private_key_hex: str) -> None:
        await self._store.set(CLIENT_PRIVATE_KEY, private_key_hex)

    async def clear_client_private_key(self) -> None:
        await self._store.delete(CLIENT_PRIVATE_KEY)

    # MARK: - Bunker URL and user

    async def get_bunker_url(self) -> Optional[str]:
        value = await self._store.get(BUNKER_URL)
        if value is not None and not value.startswith("bunker://"):
            logger.warning("Ignoring corrupt value stored under %s", BUNKER_URL)
            return None
        return value

    async def save_bunker_url(self, bunker_url: str) -> None:
        await self._store.set(BUNKER_URL, bunker_url)

    async def clear_bunker_url(self) -> None:
        await self._store.delete(BUNKER_URL)

    async def get_bunker_user_pubkey(self) -> Optional[str]:
        return await self._get_hex32(BUNKER_USER_PUBKEY)

    async def save_bunker_user_pubkey(self, pubkey: str) -> None:
        await self._store.set(BUNKER_USER_PUBKEY, pubkey)

    async def clear_bunker_user_pubkey(self) -> None:
        await self._store.delete(BUNKER_USER_PUBKEY)

    async def clear_bunker_credentials(self) -> None:
        """Forget the bunker URL and user, keeping the client key."""
        await self.clear_bunker_url()
        await self.clear_bunker_user_pubkey()

    # MARK: - Relay lists

    async def get_relay_list(self, pubkey: str) -> Optional[CachedRelayList]:
        value = await self._store.get(RELAY_LIST_PREFIX + pubkey)
        if value is None:
            return None
        try:
            cached = CachedRelayList.from_json(value)
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring corrupt relay list stored for %s", pubkey[:8])
            return None
        if cached.pubkey != pubkey:
            return None
        return cached

    async def save_relay_list(self, cached: CachedRelayList) -> None:
        await self._store.set(RELAY_LIST_PREFIX + cached.pubkey, cached.to_json())

    async def delete_relay_list(self, pubkey: str) -> None:
        await self._store.delete(RELAY_LIST_PREFIX + pubkey)

    async def relay_list_pubkeys(self) -> list[str]:
        """Pubkeys with a stored relay list."""
        return [
            key[len(RELAY_LIST_PREFIX):]
            for key in await self._store.keys()
            if key.startswith(RELAY_LIST_PREFIX)
        ]

    async def clear_relay_lists(self) -> None:
        for pubkey in await self.relay_list_pubkeys():
            await self.delete_relay_list(pubkey)
