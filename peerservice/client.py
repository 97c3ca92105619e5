"""
Client for remote peer services.

Talks to another node's peer service over HTTP: announce a peer to it,
page through its peer list, or read its info.
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional, Tuple

import aiohttp

from .registry.models import Peer
from .registry.service import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class PeerClientError(Exception):
    """Raised when a remote peer service returns an error."""

    def __init__(self, message: str, status: int = 0, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.status in (0, 502, 503, 504)


class PeerClient:
    """
    Client for a remote peer service.

    Usage:
        async with PeerClient("http://peer.example.org") as client:
            info = await client.info()
            await client.announce(Peer(url="http://me.example.org"))
            async for peer in client.iter_peers():
                print(peer.url)
    """

    def __init__(
        self,
        base_url: str,
        protocol_version: Optional[str] = PROTOCOL_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        base = base_url.rstrip("/")
        if protocol_version:
            base = f"{base}/v{protocol_version}"
        self.base_url = base
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "PeerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, json=payload) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = {}
                if resp.status != 200:
                    detail = data.get("detail") if isinstance(data, dict) else None
                    code = data.get("code") if isinstance(data, dict) else None
                    raise PeerClientError(
                        f"{method} {url} failed: {resp.status} {detail or resp.reason}",
                        status=resp.status,
                        code=code,
                    )
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PeerClientError(f"{method} {url} failed: {e}")

    async def info(self) -> Tuple[str, Dict[str, str]]:
        """Get the remote protocol version and attributes."""
        data = await self._request("GET", "/info")
        return data.get("protocol_version", ""), data.get("attributes") or {}

    async def announce(self, peer: Peer) -> bool:
        """Announce a peer to the remote service. Returns its success flag."""
        data = await self._request("POST", "/announce", {"peer": peer.to_dict()})
        success = bool(data.get("success"))
        logger.info(f"Announced {peer.url} to {self.base_url}: success={success}")
        return success

    async def list_peers(self, page_size: int = 0, page_token: str = "") -> Tuple[List[Peer], str]:
        """Fetch one page. Returns the peers and the next page token ("" at the end)."""
        payload = {"page_size": page_size, "page_token": page_token}
        data = await self._request("POST", "/peers/list", payload)
        peers = [Peer.from_dict(p) for p in data.get("peers") or []]
        return peers, data.get("next_page_token") or ""

    async def iter_peers(self, page_size: int = 0) -> AsyncIterator[Peer]:
        """Walk every page of the remote peer list."""
        token = ""
        while True:
            peers, token = await self.list_peers(page_size=page_size, page_token=token)
            for peer in peers:
                yield peer
            if not token:
                break

    async def all_peers(self, page_size: int = 0) -> List[Peer]:
        return [peer async for peer in self.iter_peers(page_size=page_size)]
