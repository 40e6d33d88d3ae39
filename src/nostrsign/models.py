"""Models for Nostr events, signer RPC messages and relay lists."""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .keys import KeyPair, sha256, schnorr_verify
from .types import AUTH_URL_RESULT, ProtocolError


def _json_dumps(value: Any) -> str:
    # NIP-01 canonical form: compact, non-ASCII left unescaped
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


@dataclass
class Event:
    """A Nostr event (NIP-01)."""
    pubkey: str
    kind: int
    content: str
    tags: list[list[str]] = field(default_factory=list)
    created_at: int = field(default_factory=lambda: int(time.time()))
    id: Optional[str] = None
    sig: Optional[str] = None

    def serialize(self) -> str:
        """Canonical serialization the event id is computed over."""
        return _json_dumps([0, self.pubkey, self.created_at, self.kind, self.tags, self.content])

    def compute_id(self) -> str:
        """Returns the hex sha256 of the canonical serialization."""
        return sha256(self.serialize().encode("utf-8")).hex()

    def sign(self, keypair: KeyPair) -> "Event":
        """Returns a copy with pubkey, id and sig filled in from keypair."""
        signed = Event(
            pubkey=keypair.public_key_hex,
            kind=self.kind,
            content=self.content,
            tags=[list(tag) for tag in self.tags],
            created_at=self.created_at,
        )
        signed.id = signed.compute_id()
        signed.sig = keypair.sign(bytes.fromhex(signed.id)).hex()
        return signed

    def verify(self) -> bool:
        """Whether the id matches the content and the signature is valid."""
        if not self.id or not self.sig:
            return False
        try:
            if self.id != self.compute_id():
                return False
            return schnorr_verify(
                bytes.fromhex(self.pubkey), bytes.fromhex(self.id), bytes.fromhex(self.sig)
            )
        except ValueError:
            return False

    def tag_values(self, name: str) -> list[str]:
        """Returns the first value of every tag with the given name."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def to_dict(self) -> dict:
        result = {
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
        }
        if self.id is not None:
            result["id"] = self.id
        if self.sig is not None:
            result["sig"] = self.sig
        return result

    def to_json(self) -> str:
        return _json_dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """
        Build an event from a decoded JSON object.

        Raises:
            ProtocolError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise ProtocolError("Event must be a JSON object")
        try:
            tags = data.get("tags", [])
            if not isinstance(tags, list) or not all(isinstance(t, list) for t in tags):
                raise ProtocolError("Event tags must be a list of lists")
            event = cls(
                pubkey=str(data.get("pubkey", "")),
                kind=int(data["kind"]),
                content=str(data.get("content", "")),
                tags=[[str(v) for v in tag] for tag in tags],
                created_at=int(data.get("created_at", 0)),
                id=data.get("id"),
                sig=data.get("sig"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed event: {e}") from e
        return event

    @classmethod
    def from_json(cls, text: str) -> "Event":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Event is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass
class SignerRequest:
    """NIP-46 request: {id, method, params}."""
    id: str
    method: str
    params: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        return _json_dumps({"id": self.id, "method": self.method, "params": self.params})


@dataclass
class SignerResponse:
    """NIP-46 response: {id, result?, error?}."""
    id: str
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_auth_challenge(self) -> bool:
        """An auth_url result with a URL in error is a challenge, not an answer."""
        return self.result == AUTH_URL_RESULT and bool(self.error)

    @property
    def is_error(self) -> bool:
        return bool(self.error and self.error.strip()) and not self.is_auth_challenge

    @classmethod
    def from_json(cls, text: str) -> "SignerResponse":
        """
        Parse a decrypted response body.

        Raises:
            ProtocolError: If the body is not a JSON object with a string id
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Response is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("id"), str):
            raise ProtocolError("Response must be an object with a string id")

        result = data.get("result")
        error = data.get("error")
        return cls(
            id=data["id"],
            result=None if result is None else (result if isinstance(result, str) else _json_dumps(result)),
            error=None if error is None else str(error),
        )


@dataclass
class AuthChallenge:
    """The signer wants the user to approve a request out of band."""
    request_id: str
    method: str
    url: str


class SessionState(Enum):
    """Lifecycle of a remote signer session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AWAITING_AUTHORIZATION = "awaiting_authorization"


@dataclass(frozen=True)
class Nip65Relay:
    """A relay with read/write markers (NIP-65)."""
    url: str
    read: bool = True
    write: bool = True

    @classmethod
    def from_tag(cls, tag: list[str]) -> Optional["Nip65Relay"]:
        """Parses ["r", url, marker?]; returns None for other tags."""
        if len(tag) < 2 or tag[0] != "r" or not tag[1]:
            return None
        marker = tag[2] if len(tag) > 2 else None
        if marker == "read":
            return cls(tag[1], read=True, write=False)
        if marker == "write":
            return cls(tag[1], read=False, write=True)
        return cls(tag[1])

    def to_tag(self) -> list[str]:
        if self.read and not self.write:
            return ["r", self.url, "read"]
        if self.write and not self.read:
            return ["r", self.url, "write"]
        return ["r", self.url]


@dataclass
class CachedRelayList:
    """A relay list with fetch and expiry times in epoch milliseconds."""
    pubkey: str
    relays: list[Nip65Relay]
    fetched_at: int
    expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def to_json(self) -> str:
        return _json_dumps({
            "pubkey": self.pubkey,
            "relays": [r.to_tag() for r in self.relays],
            "fetched_at": self.fetched_at,
            "expires_at": self.expires_at,
        })

    @classmethod
    def from_json(cls, text: str) -> "CachedRelayList":
        """
        Raises:
            ValueError: If the stored text is not a cached relay list
        """
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Cached relay list must be an object")
        relays = [Nip65Relay.from_tag([str(v) for v in tag]) for tag in data["relays"]]
        return cls(
            pubkey=str(data["pubkey"]),
            relays=[r for r in relays if r is not None],
            fetched_at=int(data["fetched_at"]),
            expires_at=int(data["expires_at"]),
        )
