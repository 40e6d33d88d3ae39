"""
Relay list discovery and relay selection (NIP-65 outbox model).

Bootstrap relays are used only to discover kind 10002 relay lists. An
author's WRITE relays are where their events are fetched from; a user's READ
relays are where mentions for them are delivered. Bootstrap relays are the
fallback whenever no list is known.
"""

import asyncio
import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .config import OutboxConfig
from .models import Event, Nip65Relay
from .storage.relay_list_cache import RelayListCache
from .storage.session_store import SessionStore
from .transport import RelaySession, RelayTransport
from .types import KIND_RELAY_LIST, ProtocolError, TransportError

logger = logging.getLogger(__name__)


def parse_relay_list(event: Event) -> list[Nip65Relay]:
    """
    Extracts relays from a kind 10002 event.

    Tags are ["r", url, marker?]; a missing marker means read and write.
    Other and malformed tags are skipped.
    """
    relays = []
    for tag in event.tags:
        relay = Nip65Relay.from_tag(tag)
        if relay is not None:
            relays.append(relay)
    return relays


def _unique(urls: list[str]) -> list[str]:
    return list(dict.fromkeys(urls))


class OutboxModel(ABC):
    """Interface for choosing relays per pubkey and purpose."""

    @property
    @abstractmethod
    def bootstrap_relays(self) -> list[str]:
        """Relays used for discovery and as fallback."""
        pass

    @property
    @abstractmethod
    def my_relay_list(self) -> list[Nip65Relay]:
        """The current user's relay list."""
        pass

    @abstractmethod
    async def get_relay_list(self, pubkey: str) -> list[Nip65Relay]:
        """Relay list for a pubkey, from cache or fetched."""
        pass

    @abstractmethod
    def select_fetch_relays(self, author_pubkey: str) -> list[str]:
        """Relays to read an author's events from."""
        pass

    @abstractmethod
    def select_publish_relays(self) -> list[str]:
        """Relays to publish the current user's events to."""
        pass

    @abstractmethod
    def select_inbox_relays(self, pubkey: str) -> list[str]:
        """Relays to deliver mentions of a user to."""
        pass


class RelayListManager(OutboxModel):
    """
    Discovers, caches and applies NIP-65 relay lists.

    At most one fetch runs per pubkey; concurrent callers wait briefly for
    it and then take whatever it cached. The cache is bounded and entries
    expire after the configured TTL.

    Example:
        manager = RelayListManager(WebSocketTransport())
        relays = await manager.get_relay_list(pubkey)
        urls = manager.select_fetch_relays(pubkey)
    """

    def __init__(
        self,
        transport: RelayTransport,
        config: Optional[OutboxConfig] = None,
        store: Optional[SessionStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Creates a manager.

        Args:
            transport: Relay transport used for fetches
            config: Discovery settings (defaults to OutboxConfig())
            store: Optional store that relay lists are persisted to
            clock: Returns epoch milliseconds (defaults to the wall clock)
        """
        self._transport = transport
        self._config = config or OutboxConfig()
        self._store = store
        self._cache = RelayListCache(
            ttl=self._config.cache_ttl,
            max_size=self._config.max_cache_size,
            clock=clock,
        )
        self._cache_lock = asyncio.Lock()
        self._in_flight: dict[str, asyncio.Future] = {}
        self._in_flight_lock = asyncio.Lock()
        self._my_pubkey: Optional[str] = None
        self._my_relays: list[Nip65Relay] = []

    @property
    def bootstrap_relays(self) -> list[str]:
        return list(self._config.bootstrap_relays)

    @property
    def my_relay_list(self) -> list[Nip65Relay]:
        return list(self._my_relays)

    @property
    def my_pubkey(self) -> Optional[str]:
        return self._my_pubkey

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # MARK: - Discovery

    async def get_relay_list(self, pubkey: str) -> list[Nip65Relay]:
        """
        Returns the relay list for a pubkey.

        A fresh cached list is returned directly. Otherwise the list is
        fetched from every bootstrap relay in parallel and the first
        non-empty answer wins. An empty list means nothing was found and
        callers should fall back to bootstrap relays.
        """
        async with self._cache_lock:
            cached = self._cache.retrieve(pubkey)
        if cached is not None:
            logger.debug("Relay list cache hit for %s", pubkey[:8])
            return cached

        async with self._in_flight_lock:
            pending = self._in_flight.get(pubkey)
            if pending is None:
                future = asyncio.get_running_loop().create_future()
                self._in_flight[pubkey] = future

        if pending is not None:
            logger.debug("Waiting for pending relay list fetch for %s", pubkey[:8])
            try:
                await asyncio.wait_for(
                    asyncio.shield(pending), self._config.pending_wait.total_seconds()
                )
            except asyncio.TimeoutError:
                pass
            async with self._cache_lock:
                return self._cache.retrieve(pubkey) or []

        relays: list[Nip65Relay] = []
        try:
            relays = await self._fetch_from_bootstrap(pubkey)
            if relays:
                await self._cache_relay_list(pubkey, relays)
            return relays
        finally:
            async with self._in_flight_lock:
                self._in_flight.pop(pubkey, None)
            if not future.done():
                future.set_result(relays)

    async def _fetch_from_bootstrap(self, pubkey: str) -> list[Nip65Relay]:
        relay_urls = self._config.bootstrap_relays
        logger.info(
            "Fetching relay list for %s from %d bootstrap relays", pubkey[:8], len(relay_urls)
        )

        tasks = [
            asyncio.create_task(self._fetch_from_relay_safe(url, pubkey)) for url in relay_urls
        ]
        try:
            for next_done in asyncio.as_completed(
                tasks, timeout=self._config.fetch_timeout.total_seconds()
            ):
                relays = await next_done
                if relays:
                    logger.info("Found relay list for %s: %d relays", pubkey[:8], len(relays))
                    return relays
        except asyncio.TimeoutError:
            logger.warning("Relay list fetch for %s timed out", pubkey[:8])
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("No relay list found for %s, using fallback", pubkey[:8])
        return []

    async def _fetch_from_relay_safe(self, url: str, pubkey: str) -> list[Nip65Relay]:
        try:
            return await self._fetch_from_relay(url, pubkey)
        except (TransportError, ProtocolError, OSError) as e:
            logger.warning("Failed to fetch relay list from %s: %s", url, e)
            return []

    async def _fetch_from_relay(self, url: str, pubkey: str) -> list[Nip65Relay]:
        """Queries one relay for the newest relay list of pubkey, until EOSE."""
        sub_id = f"nip65-{pubkey[:8]}-{secrets.token_hex(4)}"
        eose = asyncio.Event()
        newest: list[Event] = []

        async def on_message(session: RelaySession, text: str) -> None:
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                return
            if not isinstance(message, list) or len(message) < 2 or message[1] != sub_id:
                return

            if message[0] == "EOSE":
                eose.set()
            elif message[0] == "EVENT" and len(message) >= 3:
                try:
                    event = Event.from_dict(message[2])
                except ProtocolError:
                    return
                if event.kind != KIND_RELAY_LIST or event.pubkey != pubkey:
                    return
                if not event.verify():
                    logger.debug("Dropping relay list with invalid signature from %s", url)
                    return
                if not newest or event.created_at > newest[0].created_at:
                    newest[:] = [event]

        session = await self._transport.connect(url, on_message)
        try:
            request = ["REQ", sub_id, {"kinds": [KIND_RELAY_LIST], "authors": [pubkey], "limit": 1}]
            await self._transport.send(session, json.dumps(request))
            await eose.wait()
            await self._transport.send(session, json.dumps(["CLOSE", sub_id]))
        finally:
            await self._transport.close(session)

        return parse_relay_list(newest[0]) if newest else []

    # MARK: - Cache

    async def _cache_relay_list(self, pubkey: str, relays: list[Nip65Relay]) -> None:
        async with self._cache_lock:
            entry = self._cache.store(pubkey, relays)
        logger.debug("Cached relay list for %s: %d relays", pubkey[:8], len(relays))
        if self._store is not None:
            await self._store.save_relay_list(entry)

    async def set_my_relay_list(self, pubkey: str, relays: list[Nip65Relay]) -> None:
        """Sets the current user's relay list and caches it."""
        self._my_pubkey = pubkey
        self._my_relays = list(relays)
        await self._cache_relay_list(pubkey, relays)

    async def cache_relay_list_for_user(self, pubkey: str, relays: list[Nip65Relay]) -> None:
        """Caches a relay list received elsewhere (e.g. a kind 10002 event)."""
        await self._cache_relay_list(pubkey, relays)

    def get_cached_relay_list(self, pubkey: str) -> list[Nip65Relay]:
        """Cached relays for a pubkey without fetching."""
        if pubkey == self._my_pubkey:
            return list(self._my_relays)
        return self._cache.peek(pubkey)

    async def invalidate_cache(self, pubkey: str) -> None:
        """Drops the cached list for a pubkey so the next lookup refetches."""
        async with self._cache_lock:
            self._cache.invalidate(pubkey)
        if self._store is not None:
            await self._store.delete_relay_list(pubkey)

    async def clear_cache(self) -> None:
        """Drops all in-memory relay lists (e.g. after switching relays)."""
        async with self._cache_lock:
            self._cache.clear()

    async def clear(self) -> None:
        """Forgets all relay lists including the user's own and persisted ones."""
        await self.clear_cache()
        self._my_pubkey = None
        self._my_relays = []
        if self._store is not None:
            await self._store.clear_relay_lists()

    async def load_persisted(self, pubkeys: Optional[list[str]] = None) -> int:
        """
        Warms the cache from the store.

        Args:
            pubkeys: Pubkeys to load (defaults to every stored list)

        Returns:
            Number of lists loaded. Expired and corrupt entries are skipped.
        """
        if self._store is None:
            return 0
        if pubkeys is None:
            pubkeys = await self._store.relay_list_pubkeys()

        loaded = 0
        for pubkey in pubkeys:
            entry = await self._store.get_relay_list(pubkey)
            if entry is None:
                continue
            async with self._cache_lock:
                if entry.is_expired(self._cache.now()):
                    continue
                self._cache.put(entry)
            loaded += 1
        logger.debug("Loaded %d persisted relay lists", loaded)
        return loaded

    # MARK: - Selection

    def select_fetch_relays(self, author_pubkey: str) -> list[str]:
        """Author's WRITE relays followed by bootstrap relays."""
        write = [r.url for r in self.get_cached_relay_list(author_pubkey) if r.write]
        if not write:
            logger.debug("No WRITE relays for %s, using bootstrap", author_pubkey[:8])
            return self.bootstrap_relays
        return _unique(write + self.bootstrap_relays)

    def select_publish_relays(self) -> list[str]:
        """Current user's WRITE relays, or bootstrap relays if none."""
        write = [r.url for r in self._my_relays if r.write]
        if not write:
            return self.bootstrap_relays
        return _unique(write)

    def select_inbox_relays(self, pubkey: str) -> list[str]:
        """Target's READ relays followed by bootstrap relays."""
        read = [r.url for r in self.get_cached_relay_list(pubkey) if r.read]
        if not read:
            logger.debug("No READ relays for %s, using bootstrap", pubkey[:8])
            return self.bootstrap_relays
        return _unique(read + self.bootstrap_relays)
