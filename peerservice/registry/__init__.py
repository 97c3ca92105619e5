"""
Peer registry for the peer service.

Provides:
- Peer storage with stable ordering
- Authenticated pagination tokens
- Announce admission policies
- The registry service tying them together
"""

from .errors import (
    RegistryError,
    InvalidPeerError,
    InvalidPageTokenError,
    StoreUnavailableError,
    PeerNotFoundError,
)
from .models import Peer, SnapshotPosition, PageToken, normalize_url
from .store import PeerStore, MemoryPeerStore, FilePeerStore, create_store
from .cursor import PaginationCursor, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .policy import (
    AnnouncePolicy,
    AcceptAllPolicy,
    HostListPolicy,
    RateLimitPolicy,
    ChainPolicy,
    Decision,
    build_policy,
)
from .service import (
    RegistryService,
    ListPeersResult,
    AnnounceResult,
    InfoResult,
    PROTOCOL_VERSION,
)

__all__ = [
    # Errors
    "RegistryError",
    "InvalidPeerError",
    "InvalidPageTokenError",
    "StoreUnavailableError",
    "PeerNotFoundError",
    # Models
    "Peer",
    "SnapshotPosition",
    "PageToken",
    "normalize_url",
    # Store
    "PeerStore",
    "MemoryPeerStore",
    "FilePeerStore",
    "create_store",
    # Cursor
    "PaginationCursor",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Policy
    "AnnouncePolicy",
    "AcceptAllPolicy",
    "HostListPolicy",
    "RateLimitPolicy",
    "ChainPolicy",
    "Decision",
    "build_policy",
    # Service
    "RegistryService",
    "ListPeersResult",
    "AnnounceResult",
    "InfoResult",
    "PROTOCOL_VERSION",
]
