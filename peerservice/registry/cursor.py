"""
Pagination tokens.

A token is a versioned, authenticated encoding of a snapshot position:

    v1.<payload>.<tag>

``payload`` is compact JSON in unpadded base64url, ``tag`` an HMAC-SHA256
over ``v1.<payload>``. Tokens are opaque to callers; anything that does
not verify is rejected instead of being mapped to some nearby position.
"""

import base64
import binascii
import json
import logging
import re
import secrets
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .errors import InvalidPageTokenError
from .models import PageToken, SnapshotPosition

logger = logging.getLogger(__name__)

TOKEN_VERSION = "v1"
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(segment: str) -> bytes:
    if not _SEGMENT_RE.match(segment):
        raise InvalidPageTokenError("Malformed page token")
    try:
        data = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError):
        raise InvalidPageTokenError("Malformed page token")
    # Reject non-canonical encodings that decode to the same bytes
    if _b64encode(data) != segment:
        raise InvalidPageTokenError("Malformed page token")
    return data


class PaginationCursor:
    """
    Encodes and decodes page tokens and applies the page size policy.

    Usage:
        cursor = PaginationCursor(secret=b"...")
        token = cursor.encode(SnapshotPosition(epoch, 42), page_size=50)
        position = cursor.decode(token)
    """

    def __init__(
        self,
        secret: Optional[bytes] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        if default_page_size <= 0 or max_page_size <= 0:
            raise ValueError("Page sizes must be positive")
        if default_page_size > max_page_size:
            raise ValueError("Default page size cannot exceed the maximum")

        self._secret = secret or secrets.token_bytes(32)
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def resolve_page_size(self, requested: Optional[int]) -> int:
        """Apply the page size policy: default for <= 0, clamp above the maximum."""
        if requested is None or requested <= 0:
            return self.default_page_size
        return min(requested, self.max_page_size)

    def _tag(self, message: bytes) -> hmac.HMAC:
        h = hmac.HMAC(self._secret, hashes.SHA256())
        h.update(message)
        return h

    def encode(self, position: SnapshotPosition, page_size: Optional[int] = None) -> str:
        """Encode a position (and optionally the page size in use) into a token."""
        payload = {"e": position.epoch, "s": position.sequence}
        if page_size is not None:
            payload["n"] = page_size

        body = _b64encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode())
        signed = f"{TOKEN_VERSION}.{body}"
        tag = _b64encode(self._tag(signed.encode("ascii")).finalize())
        return f"{signed}.{tag}"

    def decode_page(self, token: Optional[str]) -> PageToken:
        """
        Decode a token into its position and page size.

        An empty token means the start of the set.

        Raises:
            InvalidPageTokenError: on any structural, version or tag failure
        """
        if not token:
            return PageToken(position=SnapshotPosition.initial())
        if not isinstance(token, str):
            raise InvalidPageTokenError("Malformed page token")

        parts = token.split(".")
        if len(parts) != 3:
            raise InvalidPageTokenError("Malformed page token")
        version, body, tag_segment = parts
        if version != TOKEN_VERSION:
            raise InvalidPageTokenError(f"Unsupported page token version: {version[:16]}")

        tag = _b64decode(tag_segment)
        try:
            self._tag(f"{version}.{body}".encode("ascii")).verify(tag)
        except (InvalidSignature, UnicodeEncodeError):
            logger.debug("Rejected page token with bad tag")
            raise InvalidPageTokenError("Page token failed verification")

        try:
            payload = json.loads(_b64decode(body))
        except ValueError:
            raise InvalidPageTokenError("Malformed page token")

        if not isinstance(payload, dict):
            raise InvalidPageTokenError("Malformed page token")

        epoch = payload.get("e")
        sequence = payload.get("s")
        page_size = payload.get("n")
        if not isinstance(epoch, str):
            raise InvalidPageTokenError("Malformed page token")
        if not isinstance(sequence, int) or isinstance(sequence, bool) or sequence < 0:
            raise InvalidPageTokenError("Malformed page token")
        if page_size is not None and (
            not isinstance(page_size, int) or isinstance(page_size, bool) or page_size <= 0
        ):
            raise InvalidPageTokenError("Malformed page token")

        return PageToken(
            position=SnapshotPosition(epoch=epoch, sequence=sequence),
            page_size=page_size,
        )

    def decode(self, token: Optional[str]) -> SnapshotPosition:
        """Decode a token into a snapshot position."""
        return self.decode_page(token).position
