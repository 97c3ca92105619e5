"""
Registry service: the three peer service operations.

The service holds no state of its own beyond references to an injected
store, cursor and policy, so one instance can serve any number of
concurrent requests.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from .cursor import PaginationCursor
from .errors import InvalidPeerError
from .models import Peer
from .policy import AcceptAllPolicy, AnnouncePolicy
from .store import PeerStore

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "0.6.0a10"


@dataclass
class ListPeersResult:
    """One page of peers."""
    peers: List[Peer] = field(default_factory=list)
    next_page_token: str = ""

    def to_dict(self) -> dict:
        return {
            "peers": [p.to_dict() for p in self.peers],
            "next_page_token": self.next_page_token,
        }


@dataclass
class AnnounceResult:
    """Outcome of an announce request."""
    success: bool
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"success": self.success, "attributes": dict(self.attributes)}


@dataclass
class InfoResult:
    """Protocol version and service attributes."""
    protocol_version: str
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "protocol_version": self.protocol_version,
            "attributes": dict(self.attributes),
        }


class RegistryService:
    """
    Orchestrates ListPeers, AnnouncePeer and Info.

    Usage:
        service = RegistryService(store=MemoryPeerStore())
        service.announce_peer(Peer(url="http://peer.example.org"))
        page = service.list_peers(page_size=10)
    """

    def __init__(
        self,
        store: PeerStore,
        cursor: Optional[PaginationCursor] = None,
        policy: Optional[AnnouncePolicy] = None,
        protocol_version: str = PROTOCOL_VERSION,
        attributes: Optional[Dict[str, str]] = None,
    ):
        self.store = store
        self.cursor = cursor or PaginationCursor()
        self.policy = policy or AcceptAllPolicy()
        self.protocol_version = protocol_version
        self.attributes = dict(attributes or {})

    def list_peers(self, page_size: Optional[int] = None, page_token: Optional[str] = None) -> ListPeersResult:
        """
        List one page of peers.

        When no page size is requested, a size carried by the token is
        reused so a chain of requests keeps a constant page size.

        Raises:
            InvalidPageTokenError: if the token is invalid or stale
            StoreUnavailableError: if the store cannot be read
        """
        decoded = self.cursor.decode_page(page_token)
        requested = page_size if page_size and page_size > 0 else decoded.page_size
        limit = self.cursor.resolve_page_size(requested)

        peers, next_position = self.store.snapshot_from(decoded.position, limit)

        next_token = ""
        if next_position is not None:
            next_token = self.cursor.encode(next_position, page_size=limit)

        logger.debug(f"Listed {len(peers)} peers (limit={limit}, more={bool(next_token)})")
        return ListPeersResult(peers=peers, next_page_token=next_token)

    def announce_peer(self, peer: Union[Peer, dict]) -> AnnounceResult:
        """
        Evaluate an announced peer and store it if the policy accepts.

        The result only tells whether the announce was accepted; it does
        not reveal whether the peer was already known.

        Raises:
            StoreUnavailableError: if the store cannot be written
        """
        if isinstance(peer, dict):
            peer = Peer.from_dict(peer)

        decision = self.policy.evaluate(peer)
        if not decision.accepted:
            logger.info(
                f"Announce rejected for {peer.url!r}: {decision.reason}",
                extra={"peer_url": peer.url, "accepted": False, "reason": decision.reason},
            )
            return AnnounceResult(success=False)

        try:
            is_new = self.store.upsert(peer)
        except InvalidPeerError as e:
            logger.info(
                f"Announce rejected for {peer.url!r}: {e}",
                extra={"peer_url": peer.url, "accepted": False, "reason": str(e)},
            )
            return AnnounceResult(success=False)

        logger.info(
            f"Announce accepted for {peer.url!r}",
            extra={"peer_url": peer.url, "accepted": True, "is_new": is_new},
        )
        return AnnounceResult(success=True)

    def info(self) -> InfoResult:
        """Protocol version and configured attributes."""
        return InfoResult(protocol_version=self.protocol_version, attributes=dict(self.attributes))

    def seed(self, urls: Iterable[Union[str, dict]]) -> int:
        """
        Announce a list of initial peers through the normal policy path.

        Returns the number of accepted peers.
        """
        accepted = 0
        for item in urls:
            peer = Peer(url=item) if isinstance(item, str) else Peer.from_dict(item)
            if self.announce_peer(peer).success:
                accepted += 1
            else:
                logger.warning(f"Skipping initial peer {peer.url!r}")
        logger.info(f"Seeded {accepted} initial peers")
        return accepted
