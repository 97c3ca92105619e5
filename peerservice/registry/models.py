"""
Peer data model and url normalization.

A peer is identified by its normalized base url. Two announces that only
differ in letter case of scheme/host, an explicit default port or trailing
slashes refer to the same peer.
"""

import ipaddress
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidPeerError

DEFAULT_PORTS = {
    "http": 80,
    "https": 443,
}

# One DNS label, after IDNA encoding. Underscores are tolerated for
# container and service names.
HOST_LABEL = re.compile(r"^(?!-)[a-z0-9_-]{1,63}(?<!-)$")


def _valid_host(host: str) -> bool:
    if ":" in host:
        try:
            ipaddress.IPv6Address(host.split("%", 1)[0])
            return True
        except ValueError:
            return False

    try:
        ascii_host = host.encode("idna").decode("ascii")
    except UnicodeError:
        return False
    if ascii_host.endswith("."):
        ascii_host = ascii_host[:-1]
    if not ascii_host or len(ascii_host) > 253:
        return False
    return all(HOST_LABEL.match(label) for label in ascii_host.split("."))


def normalize_url(url: str) -> str:
    """
    Normalize a peer url into its storage key.

    Strips trailing slashes, lower-cases scheme and host and drops the
    port when it is the scheme default. Path, query and fragment are kept
    as given, since a peer may live under a base path.

    Raises:
        InvalidPeerError: if the url is not an absolute http(s) url
    """
    if not isinstance(url, str):
        raise InvalidPeerError(f"Peer url must be a string, got {type(url).__name__}", url=url)
    if not url.strip():
        raise InvalidPeerError("Peer url is empty", url=url)

    raw = url.strip()
    # urlsplit silently drops tabs and newlines, so check before parsing
    if any(c.isspace() or ord(c) < 0x20 or ord(c) == 0x7f for c in raw):
        raise InvalidPeerError("Peer url contains whitespace or control characters", url=url)
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError as e:
        raise InvalidPeerError(f"Malformed peer url: {e}", url=url)

    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise InvalidPeerError(f"Unsupported scheme: {parts.scheme or '(none)'}", url=url)

    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidPeerError("Peer url has no host", url=url)
    if not _valid_host(host):
        raise InvalidPeerError(f"Invalid host: {host}", url=url)
    if parts.username or parts.password:
        raise InvalidPeerError("Peer url must not carry credentials", url=url)

    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def is_valid_url(url: str) -> bool:
    """Check whether a url can be normalized."""
    try:
        normalize_url(url)
        return True
    except InvalidPeerError:
        return False


@dataclass(frozen=True)
class Peer:
    """
    A network participant that offers the peer service.

    Instances are immutable, attributes included (they are held as a
    read-only mapping over a private copy). An update replaces the whole
    object so a reader never observes half of an attribute change.
    """
    url: str
    attributes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes or {})))

    def normalized(self) -> "Peer":
        """Return a copy with the url normalized and attributes as plain strings."""
        return Peer(
            url=normalize_url(self.url),
            attributes={str(k): str(v) for k, v in (self.attributes or {}).items()},
        )

    @property
    def key(self) -> str:
        return normalize_url(self.url)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Peer":
        return cls(
            url=data.get("url", ""),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True)
class SnapshotPosition:
    """
    Resume point in a store's total order.

    ``sequence`` is the insertion sequence of the last entry already
    returned; listing continues strictly after it. ``epoch`` names the
    store lifetime the sequence belongs to. The initial position has an
    empty epoch and resolves against any store.
    """
    epoch: str = ""
    sequence: int = 0

    @classmethod
    def initial(cls) -> "SnapshotPosition":
        return cls()

    @property
    def is_initial(self) -> bool:
        return self.sequence == 0 and not self.epoch


@dataclass(frozen=True)
class PageToken:
    """A decoded pagination token."""
    position: SnapshotPosition
    page_size: Optional[int] = None
