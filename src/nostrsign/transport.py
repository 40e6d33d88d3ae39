"""
Relay transport interfaces.

The signer session and relay list manager only ever talk to relays through
RelayTransport. WebSocketTransport is the default implementation; tests and
embedding applications can supply their own.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .types import TransportError

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)


@dataclass(frozen=True)
class RelaySession:
    """Handle for one open connection to a relay."""

    url: str
    """Relay URL the session is connected to."""

    id: int = field(default_factory=lambda: next(_session_ids))
    """Process-unique session number."""


MessageHandler = Callable[[RelaySession, str], Awaitable[None]]


class RelayTransport(ABC):
    """Abstract interface for relay connections."""

    @abstractmethod
    async def connect(self, url: str, on_message: MessageHandler) -> RelaySession:
        """
        Opens a session to a relay.

        Args:
            url: Relay websocket URL
            on_message: Awaited with every inbound text frame

        Returns:
            The new session

        Raises:
            TransportError: If the relay cannot be reached
        """
        pass

    @abstractmethod
    async def send(self, session: RelaySession, text: str) -> None:
        """
        Sends a text frame.

        Raises:
            TransportError: If the session is closed or the send fails
        """
        pass

    @abstractmethod
    async def close(self, session: RelaySession) -> None:
        """Closes a session. Closing an unknown or closed session is a no-op."""
        pass


class WebSocketTransport(RelayTransport):
    """RelayTransport over websockets, one reader task per session."""

    def __init__(self, open_timeout: float = 10.0) -> None:
        self._open_timeout = open_timeout
        self._connections: dict[RelaySession, websockets.ClientConnection] = {}
        self._readers: dict[RelaySession, asyncio.Task] = {}

    async def connect(self, url: str, on_message: MessageHandler) -> RelaySession:
        try:
            ws = await websockets.connect(url, open_timeout=self._open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Failed to connect to {url}: {e}") from e

        session = RelaySession(url=url)
        self._connections[session] = ws
        self._readers[session] = asyncio.create_task(self._read(session, ws, on_message))
        logger.debug("Opened relay session %d to %s", session.id, url)
        return session

    async def _read(self, session: RelaySession, ws, on_message: MessageHandler) -> None:
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    continue
                try:
                    await on_message(session, message)
                except Exception:
                    logger.exception("Message handler failed for %s", session.url)
        except ConnectionClosed:
            logger.debug("Relay %s closed session %d", session.url, session.id)
        finally:
            self._connections.pop(session, None)
            self._readers.pop(session, None)

    async def send(self, session: RelaySession, text: str) -> None:
        ws = self._connections.get(session)
        if ws is None:
            raise TransportError(f"Session to {session.url} is closed")
        try:
            await ws.send(text)
        except WebSocketException as e:
            raise TransportError(f"Send to {session.url} failed: {e}") from e

    async def close(self, session: RelaySession) -> None:
        ws = self._connections.pop(session, None)
        reader = self._readers.pop(session, None)
        if ws is not None:
            await ws.close()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
