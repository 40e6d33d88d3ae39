"""
Remote signer session (NIP-46).

Requests are JSON-RPC bodies encrypted with NIP-44 to the signer, published
as kind 24133 events tagged with the signer's pubkey. Replies arrive as
events tagged with ours and are correlated by request id.
"""

import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from . import nip04
from .config import SignerConfig
from .crypto import decrypt, encrypt, get_conversation_key
from .dedup import EventDeduplicator
from .envelope import is_nip04_payload
from .keys import KeyPair, parse_public_key_hex
from .models import AuthChallenge, Event, SessionState, SignerRequest, SignerResponse
from .transport import RelaySession, RelayTransport
from .types import (
    CONNECT_ACK,
    PONG,
    REQUEST_ID_SIZE,
    ConnectRejectedError,
    CryptoError,
    DecodeError,
    DisconnectedError,
    NoRelayReachableError,
    NostrSignError,
    PermissionDeniedError,
    ProtocolError,
    RequestTimeoutError,
    SignerError,
    TransportError,
)

logger = logging.getLogger(__name__)

ALREADY_CONNECTED_PATTERN = "already connected"

PERMISSION_ERROR_PATTERNS = (
    "no permission",
    "not authorized",
    "permission denied",
)


def is_already_connected_error(message: Optional[str]) -> bool:
    """
    Whether a signer error means the signer already knows this client.

    Signers report this as free text rather than a status code; a match is
    treated as a successful connect.
    """
    return bool(message) and ALREADY_CONNECTED_PATTERN in message.lower()


def is_permission_error(message: Optional[str]) -> bool:
    """Whether a signer error means the operation was refused."""
    if not message:
        return False
    lowered = message.lower()
    return any(pattern in lowered for pattern in PERMISSION_ERROR_PATTERNS)


def _signer_error(method: str, message: str) -> SignerError:
    if is_permission_error(message):
        return PermissionDeniedError(method, message)
    return SignerError(method, message)


@dataclass
class _PendingRequest:
    method: str
    future: asyncio.Future
    challenged: bool = False


class RemoteSignerSession:
    """
    Client side of a NIP-46 remote signer connection.

    The session owns one client keypair. Reusing the same keypair across
    restarts lets the signer recognise the client and skip re-approval, so
    callers should persist client_private_key_hex.

    Example:
        session = RemoteSignerSession(WebSocketTransport())
        await session.connect(info.pubkey, info.relays, info.secret)
        user_pubkey = await session.get_public_key()
        signed = await session.sign(event)
    """

    def __init__(
        self,
        transport: RelayTransport,
        keypair: Optional[KeyPair] = None,
        config: Optional[SignerConfig] = None,
        deduplicator: Optional[EventDeduplicator] = None,
        on_auth_url: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Creates a session.

        Args:
            transport: Relay transport
            keypair: Client keypair (a fresh one is generated if omitted)
            config: Timeouts and event kind (defaults to SignerConfig())
            deduplicator: Seen-event set for replies arriving from several relays
            on_auth_url: Optional hook called with each authorization URL, in
                addition to the auth_challenges() channel
        """
        self._transport = transport
        self._keypair = keypair or KeyPair.generate()
        self._config = config or SignerConfig()
        self._deduplicator = deduplicator or EventDeduplicator()
        self._on_auth_url = on_auth_url

        self._state = SessionState.DISCONNECTED
        self._resume_state = SessionState.CONNECTED
        self._remote_signer_pubkey: Optional[str] = None
        self._user_pubkey: Optional[str] = None
        self._sessions: dict[str, RelaySession] = {}
        self._conversation_keys: dict[str, bytes] = {}

        self._pending: dict[str, _PendingRequest] = {}
        self._pending_lock = asyncio.Lock()
        self._challenges: asyncio.Queue[AuthChallenge] = asyncio.Queue(
            maxsize=self._config.max_queued_challenges
        )

    # MARK: - Properties

    @property
    def keypair(self) -> KeyPair:
        return self._keypair

    @property
    def client_pubkey(self) -> str:
        return self._keypair.public_key_hex

    @property
    def client_private_key_hex(self) -> str:
        """Client secret, for persistence across restarts."""
        return self._keypair.private_key_hex

    @property
    def remote_signer_pubkey(self) -> Optional[str]:
        return self._remote_signer_pubkey

    @property
    def user_pubkey(self) -> Optional[str]:
        """User pubkey from the last get_public_key call."""
        return self._user_pubkey

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def relays(self) -> list[str]:
        """URLs of the currently open relay sessions."""
        return list(self._sessions)

    @property
    def is_connected(self) -> bool:
        return bool(self._sessions) and self._state in (
            SessionState.CONNECTED,
            SessionState.AWAITING_AUTHORIZATION,
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # MARK: - Connection

    async def connect(
        self,
        remote_signer_pubkey: str,
        relays: list[str],
        secret: Optional[str] = None,
    ) -> str:
        """
        Connects to a remote signer.

        Opens a session to every relay (failures are skipped) and performs
        the connect handshake.

        Args:
            remote_signer_pubkey: Signer's hex pubkey
            relays: Relays the signer listens on
            secret: Optional connection secret from the bunker URL

        Returns:
            The signer's acknowledgement ("ack", or the echoed secret)

        Raises:
            NoRelayReachableError: If no relay could be connected
            ConnectRejectedError: If the signer answered unexpectedly
            SignerError: If the signer refused the connection
            RequestTimeoutError: If the signer did not answer in time
        """
        parse_public_key_hex(remote_signer_pubkey)
        self._remote_signer_pubkey = remote_signer_pubkey.lower()
        self._state = SessionState.CONNECTING

        logger.info(
            "Connecting to signer %s via %d relays as client %s",
            self._remote_signer_pubkey[:16],
            len(relays),
            self.client_pubkey[:16],
        )

        for relay_url in relays:
            url = relay_url.rstrip("/")
            if url in self._sessions:
                continue
            try:
                self._sessions[url] = await self._transport.connect(url, self._handle_message)
                logger.info("Connected to bunker relay %s", url)
            except TransportError as e:
                logger.warning("Failed to connect to bunker relay %s: %s", url, e)

        if not self._sessions:
            self._state = SessionState.DISCONNECTED
            raise NoRelayReachableError(relays)

        params = [self._remote_signer_pubkey]
        if secret is not None:
            params.append(secret)

        try:
            response = await self.call("connect", params)
        except SignerError as e:
            if is_already_connected_error(e.message):
                logger.info("Signer reports already connected, reusing session")
                self._state = SessionState.CONNECTED
                return CONNECT_ACK
            await self._teardown()
            raise
        except NostrSignError:
            await self._teardown()
            raise

        if response != CONNECT_ACK and (secret is None or response != secret):
            await self._teardown()
            raise ConnectRejectedError(response)

        self._state = SessionState.CONNECTED
        logger.info("Connected to signer %s", self._remote_signer_pubkey[:16])
        return response

    async def disconnect(self) -> None:
        """
        Closes all relay sessions.

        Requests still waiting for a reply fail with DisconnectedError.
        """
        await self._teardown()

        async with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(DisconnectedError("Session disconnected"))

        if pending:
            logger.info("Disconnected with %d pending requests", len(pending))

    async def _teardown(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._state = SessionState.DISCONNECTED
        for session in sessions:
            try:
                await self._transport.close(session)
            except TransportError as e:
                logger.warning("Error closing relay %s: %s", session.url, e)

    # MARK: - Signer methods

    async def get_public_key(self) -> str:
        """Returns the user's hex pubkey as reported by the signer."""
        pubkey = await self.call("get_public_key", [])
        self._user_pubkey = pubkey
        logger.info("Got user public key %s", pubkey[:16])
        return pubkey

    async def sign_event(self, event_json: str) -> str:
        """
        Asks the signer to sign an unsigned event.

        Args:
            event_json: Serialized unsigned event

        Returns:
            The signer's signed event JSON

        Raises:
            PermissionDeniedError: If the signer refused to sign
            SignerError: If the signer reported any other error
        """
        return await self.call("sign_event", [event_json])

    async def sign(self, event: Event) -> Event:
        """
        Signs an event remotely and checks the result.

        Raises:
            ProtocolError: If the reply is not a validly signed copy of the event
        """
        unsigned = {
            "kind": event.kind,
            "content": event.content,
            "tags": event.tags,
            "created_at": event.created_at,
        }
        if event.pubkey:
            unsigned["pubkey"] = event.pubkey

        reply = await self.sign_event(json.dumps(unsigned, separators=(",", ":"), ensure_ascii=False))
        signed = Event.from_json(reply)

        if signed.kind != event.kind or signed.content != event.content or signed.tags != event.tags:
            raise ProtocolError("Signer returned a different event")
        if not signed.verify():
            raise ProtocolError("Signer returned an event with an invalid signature")
        return signed

    async def ping(self) -> str:
        """Checks the signer is responsive."""
        response = await self.call("ping", [])
        if response != PONG:
            raise ProtocolError(f"Unexpected ping response '{response}'")
        return response

    # MARK: - Authorization challenges

    async def auth_challenges(self) -> AsyncIterator[AuthChallenge]:
        """Yields authorization challenges as the signer issues them."""
        while True:
            yield await self._challenges.get()

    async def next_auth_challenge(self, timeout: Optional[float] = None) -> AuthChallenge:
        """
        Waits for the next authorization challenge.

        Raises:
            asyncio.TimeoutError: If none arrives within timeout seconds
        """
        return await asyncio.wait_for(self._challenges.get(), timeout)

    # MARK: - RPC

    async def call(self, method: str, params: Optional[list[str]] = None) -> str:
        """
        Sends one request and waits for its correlated reply.

        Args:
            method: NIP-46 method name
            params: String parameters

        Returns:
            The reply's result (empty string if it carried none)

        Raises:
            DisconnectedError: If there is no open session, or it is closed
                while waiting
            TransportError: If the request could not be sent to any relay
            SignerError: If the signer replied with an error
            RequestTimeoutError: If no reply arrived in time
        """
        signer_pubkey = self._remote_signer_pubkey
        if signer_pubkey is None or not self._sessions:
            raise DisconnectedError("Not connected to a signer")

        request_id = secrets.token_hex(REQUEST_ID_SIZE)
        request = SignerRequest(id=request_id, method=method, params=list(params or []))
        content = encrypt(request.to_json(), self._conversation_key(signer_pubkey))
        event = Event(
            pubkey=self.client_pubkey,
            kind=self._config.event_kind,
            content=content,
            tags=[["p", signer_pubkey]],
        ).sign(self._keypair)

        future = asyncio.get_running_loop().create_future()
        async with self._pending_lock:
            self._pending[request_id] = _PendingRequest(method=method, future=future)

        subscription_id = f"nip46-{request_id[:8]}"
        since = int(time.time() - self._config.since_window.total_seconds())
        subscription = {
            "kinds": [self._config.event_kind],
            "#p": [self.client_pubkey],
            "since": since,
        }
        timeout = self._config.request_timeout.total_seconds()

        logger.debug("NIP-46 request %s (%s)", method, request_id[:8])
        try:
            await self._broadcast(["REQ", subscription_id, subscription])
            await asyncio.sleep(self._config.settle_delay.total_seconds())
            await self._broadcast(["EVENT", event.to_dict()])
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(method, timeout) from None
        finally:
            async with self._pending_lock:
                self._pending.pop(request_id, None)
                still_challenged = any(p.challenged for p in self._pending.values())
            if self._state is SessionState.AWAITING_AUTHORIZATION and not still_challenged:
                self._state = self._resume_state
            await self._broadcast(["CLOSE", subscription_id], required=False)

    async def _broadcast(self, message: list, required: bool = True) -> None:
        """Sends to every open relay; raises only if all of them fail."""
        text = json.dumps(message, separators=(",", ":"), ensure_ascii=False)
        sessions = list(self._sessions.values())
        failures = 0
        for session in sessions:
            try:
                await self._transport.send(session, text)
            except TransportError as e:
                failures += 1
                logger.warning("Send to %s failed: %s", session.url, e)

        if required and failures == len(sessions):
            if not sessions:
                raise DisconnectedError("Session disconnected")
            # Every relay is gone; drop them so is_connected reports it
            await self._teardown()
            raise TransportError(f"{message[0]} could not be sent to any relay")

    def _conversation_key(self, pubkey: str) -> bytes:
        key = self._conversation_keys.get(pubkey)
        if key is None:
            key = get_conversation_key(self._keypair.private_key, parse_public_key_hex(pubkey))
            self._conversation_keys[pubkey] = key
        return key

    # MARK: - Inbound

    async def _handle_message(self, session: RelaySession, text: str) -> None:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON message from %s", session.url)
            return
        if not isinstance(message, list) or len(message) < 3 or message[0] != "EVENT":
            return

        try:
            event = Event.from_dict(message[2])
        except ProtocolError as e:
            logger.debug("Ignoring malformed event from %s: %s", session.url, e)
            return
        if event.kind != self._config.event_kind or self.client_pubkey not in event.tag_values("p"):
            return
        if not event.verify():
            logger.debug("Ignoring event with invalid signature from %s", session.url)
            return
        if not await self._deduplicator.try_add(event.id):
            return

        try:
            plaintext = self._decrypt(event)
            response = SignerResponse.from_json(plaintext)
        except (DecodeError, CryptoError, ProtocolError) as e:
            logger.debug("Could not read event %s: %s", event.id[:8], e)
            return

        await self._dispatch(response)

    def _decrypt(self, event: Event) -> str:
        if is_nip04_payload(event.content):
            return nip04.decrypt(
                event.content, self._keypair.private_key, parse_public_key_hex(event.pubkey)
            )
        return decrypt(event.content, self._conversation_key(event.pubkey))

    async def _dispatch(self, response: SignerResponse) -> None:
        async with self._pending_lock:
            pending = self._pending.get(response.id)
        if pending is None or pending.future.done():
            logger.debug("Ignoring unmatched response %s", response.id[:8])
            return

        if response.is_auth_challenge:
            challenge = AuthChallenge(request_id=response.id, method=pending.method, url=response.error)
            logger.info("Signer requires authorization for %s", pending.method)
            if self._state is not SessionState.AWAITING_AUTHORIZATION:
                self._resume_state = self._state
            self._state = SessionState.AWAITING_AUTHORIZATION
            pending.challenged = True
            if self._challenges.full():
                dropped = self._challenges.get_nowait()
                logger.debug("Dropping undrained challenge for %s", dropped.request_id[:8])
            self._challenges.put_nowait(challenge)
            if self._on_auth_url is not None:
                self._on_auth_url(challenge.url)
            return

        pending.challenged = False
        if self._state is SessionState.AWAITING_AUTHORIZATION and not any(
            p.challenged for p in self._pending.values()
        ):
            self._state = self._resume_state

        if response.is_error:
            pending.future.set_exception(_signer_error(pending.method, response.error))
        else:
            pending.future.set_result(response.result or "")
