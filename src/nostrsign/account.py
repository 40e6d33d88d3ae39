"""
Bunker account for nostrsign.

A BunkerAccount is the calling layer above RemoteSignerSession: it logs in
with a bunker URL, persists what is needed to resume after a restart, and
applies the forced re-login policy when the signer revokes permission.
"""

import logging
from typing import AsyncIterator, Optional

from .bunker import BunkerInfo, parse_bunker_url
from .config import SignerConfig
from .keys import KeyPair
from .models import AuthChallenge, Event
from .signer import RemoteSignerSession
from .storage import PersistentStore, SessionStore
from .transport import RelayTransport
from .types import DisconnectedError, InvalidKeyError, NostrSignError, PermissionDeniedError

logger = logging.getLogger(__name__)


class BunkerAccount:
    """
    A user identity whose key lives in a remote signer.

    The client keypair is persisted and reused so the signer recognises this
    client on reconnect. Logging out forgets the bunker but keeps that
    keypair; forget() removes it too.

    Example:
        account = BunkerAccount(WebSocketTransport(), store)
        if not await account.restore():
            await account.login("bunker://<pubkey>?relay=wss://...")
        signed = await account.sign(event)
    """

    def __init__(
        self,
        transport: RelayTransport,
        store: PersistentStore,
        config: Optional[SignerConfig] = None,
    ) -> None:
        self._transport = transport
        self._store = SessionStore(store)
        self._config = config
        self._session: Optional[RemoteSignerSession] = None
        self._user_pubkey: Optional[str] = None

    @property
    def session(self) -> Optional[RemoteSignerSession]:
        return self._session

    @property
    def user_pubkey(self) -> Optional[str]:
        return self._user_pubkey

    @property
    def is_logged_in(self) -> bool:
        return self._user_pubkey is not None

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_connected

    async def _client_keypair(self) -> tuple[KeyPair, bool]:
        """Stored client keypair, or a new one; the flag says whether it was stored."""
        private_key_hex = await self._store.get_client_private_key()
        if private_key_hex is not None:
            try:
                keypair = KeyPair.from_private_key_hex(private_key_hex)
            except InvalidKeyError:
                logger.warning("Stored client key is not a valid secret, replacing it")
                await self._store.clear_client_private_key()
            else:
                logger.debug("Reusing stored client keypair")
                return keypair, True
        logger.debug("Generating new client keypair")
        return KeyPair.generate(), False

    async def _open_session(self, info: BunkerInfo) -> RemoteSignerSession:
        """Connects a new session with the persisted client keypair."""
        keypair, stored = await self._client_keypair()
        session = RemoteSignerSession(self._transport, keypair=keypair, config=self._config)
        await session.connect(info.pubkey, info.relays, info.secret)
        if not stored:
            await self._store.save_client_private_key(session.client_private_key_hex)
        return session

    async def _replace_session(self, session: Optional[RemoteSignerSession]) -> None:
        previous, self._session = self._session, session
        if previous is not None and previous is not session:
            await previous.disconnect()

    # MARK: - Login

    async def login(self, bunker_url: str) -> str:
        """
        Logs in through a remote signer.

        Args:
            bunker_url: bunker://<signer pubkey>?relay=...&secret=...

        Returns:
            The user's hex pubkey

        Raises:
            InvalidBunkerUrlError: If the URL cannot be parsed
            NostrSignError: If connecting or fetching the pubkey fails
        """
        info = parse_bunker_url(bunker_url)
        session = await self._open_session(info)
        try:
            user_pubkey = await session.get_public_key()
        except NostrSignError:
            await session.disconnect()
            raise

        await self._replace_session(session)
        self._user_pubkey = user_pubkey

        await self._store.save_bunker_url(bunker_url)
        await self._store.save_bunker_user_pubkey(user_pubkey)
        logger.info("Bunker login successful, user %s", user_pubkey[:16])
        return user_pubkey

    async def restore(self) -> bool:
        """
        Resumes a persisted bunker login.

        Returns:
            True if the session was restored. On failure the persisted
            bunker URL and user are cleared and False is returned.
        """
        bunker_url = await self._store.get_bunker_url()
        saved_pubkey = await self._store.get_bunker_user_pubkey()
        if bunker_url is None or saved_pubkey is None:
            return False

        logger.info("Restoring bunker session for %s", saved_pubkey[:16])
        try:
            session = await self._open_session(parse_bunker_url(bunker_url))
        except NostrSignError as e:
            logger.warning("Failed to restore bunker session: %s", e)
            await self._store.clear_bunker_credentials()
            return False

        await self._replace_session(session)
        self._user_pubkey = saved_pubkey

        try:
            actual_pubkey = await session.get_public_key()
        except NostrSignError as e:
            logger.warning("Could not verify user pubkey, using saved one: %s", e)
        else:
            if actual_pubkey != saved_pubkey:
                self._user_pubkey = actual_pubkey
                await self._store.save_bunker_user_pubkey(actual_pubkey)

        logger.info("Bunker session restored")
        return True

    async def ensure_connected(self) -> bool:
        """Reconnects with the persisted bunker URL if the session is gone."""
        if self.is_connected:
            return True

        bunker_url = await self._store.get_bunker_url()
        if bunker_url is None:
            return False

        try:
            session = await self._open_session(parse_bunker_url(bunker_url))
        except NostrSignError as e:
            logger.warning("Bunker reconnection failed: %s", e)
            return False

        await self._replace_session(session)
        logger.info("Bunker reconnected")
        return True

    # MARK: - Signing

    async def sign(self, event: Event) -> Event:
        """
        Signs an event with the remote signer.

        Raises:
            DisconnectedError: If the signer cannot be reached
            PermissionDeniedError: If the signer refused; the login is
                discarded and the user must log in again
        """
        if not await self.ensure_connected():
            raise DisconnectedError("Bunker not connected and reconnection failed")

        try:
            return await self._session.sign(event)
        except PermissionDeniedError:
            logger.warning("Signing permission denied, clearing bunker login")
            await self.logout()
            raise

    async def auth_challenges(self) -> AsyncIterator[AuthChallenge]:
        """Authorization challenges from the current session."""
        if self._session is None:
            raise DisconnectedError("No bunker session")
        async for challenge in self._session.auth_challenges():
            yield challenge

    async def next_auth_challenge(self, timeout: Optional[float] = None) -> AuthChallenge:
        if self._session is None:
            raise DisconnectedError("No bunker session")
        return await self._session.next_auth_challenge(timeout)

    # MARK: - Logout

    async def logout(self) -> None:
        """Disconnects and forgets the bunker, keeping the client keypair."""
        await self._replace_session(None)
        self._user_pubkey = None
        await self._store.clear_bunker_credentials()

    async def forget(self) -> None:
        """Logs out and also deletes the client keypair."""
        await self.logout()
        await self._store.clear_client_private_key()
