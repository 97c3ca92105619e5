"""
Registry error taxonomy.

Every error carries a stable ``code`` used on the wire and a ``retryable``
flag so the transport layer can tell transient faults from terminal ones.
"""

from typing import Optional


class RegistryError(Exception):
    """Base exception for registry errors."""

    def __init__(self, message: str, code: str = "REGISTRY_ERROR", retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.retryable = retryable

    def to_dict(self) -> dict:
        """Error body returned at the HTTP boundary."""
        return {"detail": str(self), "code": self.code, "retryable": self.retryable}


class InvalidPeerError(RegistryError):
    """Raised when a peer url is malformed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, code="INVALID_PEER")
        self.url = url


class InvalidPageTokenError(RegistryError):
    """Raised when a page token fails validation or can no longer be resolved."""

    def __init__(self, message: str = "Invalid page token"):
        super().__init__(message, code="INVALID_PAGE_TOKEN")


class StoreUnavailableError(RegistryError):
    """Raised when the backing store cannot be read or written."""

    def __init__(self, message: str):
        super().__init__(message, code="STORE_UNAVAILABLE", retryable=True)


class PeerNotFoundError(RegistryError):
    """Raised when a peer is not in the store."""

    def __init__(self, url: str):
        super().__init__(f"Peer not found: {url}", code="PEER_NOT_FOUND")
        self.url = url
