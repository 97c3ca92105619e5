"""
Tests for the remote peer service client.

A small aiohttp application backed by a real RegistryService stands in
for the remote node.
"""

import pytest
from aiohttp import web
from aiohttp import test_utils

from peerservice.client import PeerClient, PeerClientError
from peerservice.registry.errors import InvalidPageTokenError
from peerservice.registry.models import Peer
from peerservice.registry.service import RegistryService
from peerservice.registry.store import MemoryPeerStore

PREFIX = "/v0.6.0a10"


def make_remote(service: RegistryService) -> web.Application:
    async def info(request):
        return web.json_response(service.info().to_dict())

    async def announce(request):
        body = await request.json()
        return web.json_response(service.announce_peer(body.get("peer") or {}).to_dict())

    async def list_peers(request):
        body = await request.json()
        try:
            result = service.list_peers(body.get("page_size", 0), body.get("page_token", ""))
        except InvalidPageTokenError as e:
            return web.json_response({"detail": str(e), "code": e.code}, status=400)
        return web.json_response(result.to_dict())

    app = web.Application()
    app.router.add_get(f"{PREFIX}/info", info)
    app.router.add_post(f"{PREFIX}/announce", announce)
    app.router.add_post(f"{PREFIX}/peers/list", list_peers)
    return app


@pytest.fixture
def service():
    return RegistryService(store=MemoryPeerStore(), attributes={"name": "remote"})


class TestPeerClient:
    """Tests for PeerClient against a live aiohttp server."""

    @pytest.mark.asyncio
    async def test_info(self, service):
        async with test_utils.TestServer(make_remote(service)) as server:
            async with PeerClient(f"http://{server.host}:{server.port}/") as client:
                version, attributes = await client.info()

        assert version == "0.6.0a10"
        assert attributes == {"name": "remote"}

    @pytest.mark.asyncio
    async def test_announce_and_list(self, service):
        async with test_utils.TestServer(make_remote(service)) as server:
            async with PeerClient(f"http://{server.host}:{server.port}") as client:
                assert await client.announce(Peer(url="http://me.example.org/", attributes={"k": "v"}))
                assert not await client.announce(Peer(url="not-a-url"))
                peers, token = await client.list_peers()

        assert peers == [Peer(url="http://me.example.org", attributes={"k": "v"})]
        assert token == ""

    @pytest.mark.asyncio
    async def test_iter_all_pages(self, service):
        for i in range(25):
            service.announce_peer(Peer(url=f"http://p{i}.example.org"))

        async with test_utils.TestServer(make_remote(service)) as server:
            async with PeerClient(f"http://{server.host}:{server.port}") as client:
                peers = await client.all_peers(page_size=4)

        assert len(peers) == 25
        assert len({p.url for p in peers}) == 25

    @pytest.mark.asyncio
    async def test_error_status(self, service):
        async with test_utils.TestServer(make_remote(service)) as server:
            async with PeerClient(f"http://{server.host}:{server.port}") as client:
                with pytest.raises(PeerClientError) as exc_info:
                    await client.list_peers(page_token="bogus")

        assert exc_info.value.status == 400
        assert exc_info.value.code == "INVALID_PAGE_TOKEN"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_connection_error(self):
        async with PeerClient("http://127.0.0.1:1", timeout=2) as client:
            with pytest.raises(PeerClientError) as exc_info:
                await client.info()

        assert exc_info.value.retryable is True

    def test_base_url(self):
        assert PeerClient("http://a.example.org/").base_url == "http://a.example.org/v0.6.0a10"
        assert PeerClient("http://a.example.org", protocol_version=None).base_url == "http://a.example.org"
