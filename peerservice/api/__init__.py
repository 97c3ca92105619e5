"""
API server for the peer service.

Provides JSON-over-HTTP endpoints for:
- Peer listing with pagination
- Peer announcements
- Service info
"""

from .server import create_app, PeerServer, get_server, run_server
from .routes import router

__all__ = [
    "create_app",
    "PeerServer",
    "get_server",
    "run_server",
    "router",
]
