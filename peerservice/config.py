"""
Configuration management for the peer service.

Handles:
- Protocol version and advertised info attributes
- API server settings
- Peer store backend and pagination limits
- Announce policy settings
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .registry.cursor import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .registry.service import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".peerservice"

# Overrides the default data dir for get_config (used by serve --reload)
DATA_DIR_ENV = "PEERSERVICE_DATA_DIR"

DEFAULT_API_PORT = 8000


def _known(cls, data: dict) -> dict:
    # Filter to only known fields to handle config evolution
    known_fields = set(cls.__dataclass_fields__)
    return {k: v for k, v in data.items() if k in known_fields}


@dataclass
class ServerConfig:
    """Configuration for the API server."""
    host: str = "0.0.0.0"
    port: int = DEFAULT_API_PORT
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    debug: bool = False

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "cors_origins": self.cors_origins,
            "debug": self.debug
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        return cls(**_known(cls, data))


@dataclass
class RegistryConfig:
    """Configuration for peer storage and pagination."""
    backend: str = "memory"  # memory, file
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    token_secret: Optional[str] = None  # hex; random per process when unset
    initial_peers: List[str] = field(default_factory=list)

    @property
    def token_secret_bytes(self) -> Optional[bytes]:
        if not self.token_secret:
            return None
        return bytes.fromhex(self.token_secret)

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "default_page_size": self.default_page_size,
            "max_page_size": self.max_page_size,
            "token_secret": self.token_secret,
            "initial_peers": self.initial_peers
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RegistryConfig":
        return cls(**_known(cls, data))


@dataclass
class PolicyConfig:
    """Configuration for announce admission."""
    allow_hosts: List[str] = field(default_factory=list)
    deny_hosts: List[str] = field(default_factory=list)
    rate_limit: int = 0  # announces per host per window, 0 = unlimited
    rate_window: float = 60.0

    def to_dict(self) -> dict:
        return {
            "allow_hosts": self.allow_hosts,
            "deny_hosts": self.deny_hosts,
            "rate_limit": self.rate_limit,
            "rate_window": self.rate_window
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyConfig":
        return cls(**_known(cls, data))


@dataclass
class Config:
    """
    Main peer service configuration.

    Stored at ~/.peerservice/config.json
    """
    # Paths
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    # Info
    protocol_version: str = PROTOCOL_VERSION
    attributes: Dict[str, str] = field(default_factory=dict)

    # Components
    server: ServerConfig = field(default_factory=ServerConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def api_prefix(self) -> str:
        return f"/v{self.protocol_version}"

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def ensure_token_secret(self) -> str:
        """Generate a persistent token secret if none is configured."""
        if not self.registry.token_secret:
            self.registry.token_secret = secrets.token_hex(32)
        return self.registry.token_secret

    def to_dict(self) -> dict:
        return {
            "protocol_version": self.protocol_version,
            "attributes": self.attributes,
            "server": self.server.to_dict(),
            "registry": self.registry.to_dict(),
            "policy": self.policy.to_dict()
        }

    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk."""
        data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, 'r') as f:
            data = json.load(f)

        config = cls(
            data_dir=data_dir,
            protocol_version=data.get("protocol_version", PROTOCOL_VERSION),
            attributes={str(k): str(v) for k, v in data.get("attributes", {}).items()},
        )

        if "server" in data:
            config.server = ServerConfig.from_dict(data["server"])
        if "registry" in data:
            config.registry = RegistryConfig.from_dict(data["registry"])
        if "policy" in data:
            config.policy = PolicyConfig.from_dict(data["policy"])

        return config

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """
    Get the global configuration instance.

    Loaded on first use from ``data_dir``, else from $PEERSERVICE_DATA_DIR,
    else from ~/.peerservice.
    """
    global _config
    if _config is None:
        if data_dir is None and os.environ.get(DATA_DIR_ENV):
            data_dir = Path(os.environ[DATA_DIR_ENV])
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
