"""Bunker URL handling for connecting to a remote signer."""

import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode, urlparse, parse_qs

from .types import InvalidBunkerUrlError

_PUBKEY = re.compile(r"^[0-9a-f]{64}$")


@dataclass
class BunkerInfo:
    """Connection details advertised by a remote signer."""

    pubkey: str
    """Signer's hex public key."""

    relays: list[str] = field(default_factory=list)
    """Relays the signer listens on."""

    secret: Optional[str] = None
    """Optional one-time connection secret."""


def create_bunker_url(info: BunkerInfo) -> str:
    """Create a bunker URL.

    Format: bunker://<pubkey>?relay=...&relay=...&secret=...

    Args:
        info: The signer's connection details.

    Returns:
        The bunker URL string.
    """
    params = [("relay", relay) for relay in info.relays]
    if info.secret is not None:
        params.append(("secret", info.secret))

    query = urlencode(params)
    return f"bunker://{info.pubkey}?{query}"


def parse_bunker_url(url: str) -> BunkerInfo:
    """Parse a bunker URL.

    Args:
        url: The bunker URL string.

    Returns:
        The signer's connection details.

    Raises:
        InvalidBunkerUrlError: If the URL is invalid.
    """
    parsed = urlparse(url.strip())

    if parsed.scheme != "bunker":
        raise InvalidBunkerUrlError(f"Invalid scheme: {parsed.scheme}")

    pubkey = parsed.netloc.lower()
    if not _PUBKEY.match(pubkey):
        raise InvalidBunkerUrlError(f"Invalid signer pubkey: {parsed.netloc}")

    params = parse_qs(parsed.query)

    relays = [relay for relay in params.get("relay", []) if relay]
    if not relays:
        raise InvalidBunkerUrlError("Missing relay parameter")

    secrets = params.get("secret")
    return BunkerInfo(
        pubkey=pubkey,
        relays=relays,
        secret=secrets[0] if secrets else None,
    )
