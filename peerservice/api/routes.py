"""
API routes for the peer service.

Endpoints mirror the peer service protocol:
- POST /peers/list  - page through known peers
- POST /announce    - notify the service of a potential peer
- GET  /info        - protocol version and service attributes
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ..registry.models import Peer
from ..registry.service import RegistryService

logger = logging.getLogger(__name__)

router = APIRouter()

INT32_MAX = 2**31 - 1
INT32_MIN = -(2**31)


# ============ Request/Response Models ============

class PeerModel(BaseModel):
    """Information used to connect to a peer."""
    url: str = Field(default="", description="Base URL where the service can be accessed")
    attributes: Dict[str, str] = Field(default_factory=dict, description="Additional information")


class ListPeersRequest(BaseModel):
    """Body of POST /peers/list."""
    page_size: int = Field(
        default=0, ge=INT32_MIN, le=INT32_MAX,
        description="Maximum results per page; a system default is used when unset"
    )
    page_token: str = Field(default="", description="next_page_token of the previous page")


class ListPeersResponse(BaseModel):
    """Response from POST /peers/list."""
    peers: List[PeerModel] = []
    next_page_token: str = ""


class AnnouncedPeerModel(BaseModel):
    """
    A peer as announced by a caller.

    The url is accepted as any JSON value so that a malformed one is
    answered with success=false by the registry, like any other bad url.
    """
    url: Any = Field(default="", description="Base URL where the service can be accessed")
    attributes: Dict[str, str] = Field(default_factory=dict, description="Additional information")


class AnnouncePeerRequest(BaseModel):
    """Body of POST /announce."""
    peer: AnnouncedPeerModel = Field(default_factory=AnnouncedPeerModel)


class AnnouncePeerResponse(BaseModel):
    """Response from POST /announce. Only says whether the request was accepted."""
    success: bool
    attributes: Dict[str, str] = {}


class GetInfoResponse(BaseModel):
    """Response from GET /info."""
    protocol_version: str
    attributes: Dict[str, str] = {}


def _service(request: Request) -> RegistryService:
    server = getattr(request.app.state, "server", None)
    if not server or not server.service:
        raise HTTPException(status_code=503, detail="Server not ready")
    return server.service


def _peer_model(peer: Peer) -> PeerModel:
    return PeerModel(url=peer.url, attributes=dict(peer.attributes))


# ============ Routes ============

@router.post("/peers/list", response_model=ListPeersResponse)
def list_peers(request: Request, body: Optional[ListPeersRequest] = None):
    """
    List the peers managed by this service.

    Long lists are spread across pages; pass `next_page_token` back as
    `page_token` to get the next one. An invalid or stale token is a 400,
    in which case the caller restarts from an empty token.
    """
    service = _service(request)
    body = body or ListPeersRequest()

    result = service.list_peers(page_size=body.page_size, page_token=body.page_token)

    return ListPeersResponse(
        peers=[_peer_model(p) for p in result.peers],
        next_page_token=result.next_page_token,
    )


@router.post("/announce", response_model=AnnouncePeerResponse)
def announce_peer(request: Request, body: AnnouncePeerRequest):
    """
    Notify this service of a potential peer.

    The response only reports whether the announce was accepted. Use
    /peers/list to find out whether the peer is listed.
    """
    service = _service(request)
    client = request.client.host if request.client else "unknown"
    logger.debug(f"Announce from {client}: {body.peer.url!r}")

    result = service.announce_peer(Peer(url=body.peer.url, attributes=dict(body.peer.attributes)))

    return AnnouncePeerResponse(success=result.success, attributes=result.attributes)


@router.get("/info", response_model=GetInfoResponse)
def get_info(request: Request):
    """Protocol version offered by this service, plus descriptive attributes."""
    service = _service(request)
    info = service.info()
    return GetInfoResponse(protocol_version=info.protocol_version, attributes=info.attributes)
