"""
FastAPI server for the peer service.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import DATA_DIR_ENV, Config, get_config, set_config
from ..registry.cursor import PaginationCursor
from ..registry.errors import (
    InvalidPageTokenError,
    InvalidPeerError,
    PeerNotFoundError,
    RegistryError,
    StoreUnavailableError,
)
from ..registry.policy import build_policy
from ..registry.service import RegistryService
from ..registry.store import PeerStore, create_store

logger = logging.getLogger(__name__)

# HTTP status for each registry error surfaced at the transport boundary
ERROR_STATUS = {
    InvalidPageTokenError: 400,
    InvalidPeerError: 400,
    PeerNotFoundError: 404,
    StoreUnavailableError: 503,
}

# Global server instance
_server: Optional["PeerServer"] = None


def get_server() -> Optional["PeerServer"]:
    """Get the global server instance."""
    return _server


class PeerServer:
    """
    Peer service API server.

    Wires the components together:
    - Peer store (memory or file backed)
    - Pagination cursor
    - Announce policy
    - Registry service
    """

    def __init__(self, config: Optional[Config] = None, store: Optional[PeerStore] = None):
        self.config = config or get_config()
        self.store = store
        self.service: Optional[RegistryService] = None
        self._running = False

    def initialize(self) -> None:
        """Build the registry from configuration."""
        logger.info("Initializing peer service...")
        config = self.config
        registry = config.registry

        if self.store is None:
            self.store = create_store(registry.backend, config.data_dir)

        cursor = PaginationCursor(
            secret=registry.token_secret_bytes,
            default_page_size=registry.default_page_size,
            max_page_size=registry.max_page_size,
        )
        policy = build_policy(
            allow_hosts=config.policy.allow_hosts,
            deny_hosts=config.policy.deny_hosts,
            rate_limit=config.policy.rate_limit,
            rate_window=config.policy.rate_window,
        )
        self.service = RegistryService(
            store=self.store,
            cursor=cursor,
            policy=policy,
            protocol_version=config.protocol_version,
            attributes=config.attributes,
        )

        if registry.initial_peers:
            self.service.seed(registry.initial_peers)

        logger.info(
            f"Peer service initialized (backend={registry.backend}, "
            f"peers={self.store.count()}, policy={policy.name})"
        )

    def start(self) -> None:
        if self.service is None:
            self.initialize()
        self._running = True
        logger.info(f"Peer service v{self.config.protocol_version} started")

    def stop(self) -> None:
        self._running = False
        logger.info("Peer service stopped")

    def status(self) -> dict:
        """Get server status."""
        return {
            "running": self._running,
            "protocol_version": self.config.protocol_version,
            "backend": self.config.registry.backend,
            "peer_count": self.store.count() if self.store else 0,
        }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    server: PeerServer = app.state.server

    try:
        server.start()
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise

    yield

    server.stop()


async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    """Map registry errors to HTTP responses."""
    status_code = 500
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")

    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(
    config: Optional[Config] = None,
    store: Optional[PeerStore] = None,
) -> FastAPI:
    """Create the FastAPI application."""
    global _server
    from .routes import router

    if config:
        set_config(config)
    config = config or get_config()

    server = PeerServer(config, store=store)
    server.initialize()
    _server = server

    app = FastAPI(
        title="Peer Service",
        description="Voluntary peer discovery for ad-hoc service networks",
        version=__version__,
        lifespan=lifespan
    )
    app.state.server = server

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RegistryError, registry_error_handler)

    # Versioned routes, plus the same routes at the root for unversioned clients
    app.include_router(router, prefix=config.api_prefix)
    app.include_router(router)

    # Health check
    @app.get("/health")
    async def health():
        return {"status": "ok", **server.status()}

    return app


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
    config: Optional[Config] = None,
):
    """Run the server with uvicorn."""
    if reload:
        # The reloader imports the factory in a fresh process, which only
        # sees the config through the environment
        config = config or get_config()
        os.environ[DATA_DIR_ENV] = str(config.data_dir)
        uvicorn.run(
            "peerservice.api.server:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="info"
        )
        return

    app = create_app(config)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )
