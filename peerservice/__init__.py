"""
Peer service - voluntary peer discovery

Nodes exchange lists of known network participants so ad-hoc service
networks can be built without central coordination.

Example:
    >>> from peerservice import MemoryPeerStore, Peer, RegistryService
    >>> service = RegistryService(store=MemoryPeerStore())
    >>> service.announce_peer(Peer(url="http://1kgenomes.ga4gh.org"))
    >>> page = service.list_peers(page_size=10)
"""

__version__ = "0.6.0"

from .config import Config, get_config
from .registry import (
    Peer,
    PeerStore,
    MemoryPeerStore,
    FilePeerStore,
    PaginationCursor,
    RegistryService,
)

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "Peer",
    "PeerStore",
    "MemoryPeerStore",
    "FilePeerStore",
    "PaginationCursor",
    "RegistryService",
]
