"""
Announce admission policies.

A policy decides whether an announced peer may be stored. Every policy
first applies the structural check (absolute http/https url with a host);
on top of that a node can restrict hosts or rate-limit announces.

The outcome is only ever reported to the caller as success/failure;
reasons stay in the logs.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from .errors import InvalidPeerError
from .models import Peer, normalize_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Result of evaluating an announced peer."""
    accepted: bool
    reason: str = ""

    @classmethod
    def accept(cls) -> "Decision":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: str) -> "Decision":
        return cls(accepted=False, reason=reason)


def validate_peer(peer: Peer) -> Optional[str]:
    """Structural validation. Returns a rejection reason, or None if valid."""
    try:
        normalize_url(peer.url)
    except InvalidPeerError as e:
        return str(e)
    return None


class AnnouncePolicy(ABC):
    """Base class for admission policies."""

    name: str = "policy"

    def evaluate(self, peer: Peer) -> Decision:
        """Validate the peer, then apply the policy rule."""
        reason = validate_peer(peer)
        if reason is not None:
            return Decision.reject(f"invalid peer: {reason}")
        return self.admit(peer.normalized())

    @abstractmethod
    def admit(self, peer: Peer) -> Decision:
        """Policy rule for a structurally valid, normalized peer."""
        pass


class AcceptAllPolicy(AnnouncePolicy):
    """Accept every structurally valid peer."""

    name = "accept-all"

    def admit(self, peer: Peer) -> Decision:
        return Decision.accept()


def _host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


class HostListPolicy(AnnouncePolicy):
    """
    Allow/deny lists of hosts.

    A deny entry always wins. With an empty allow list every host that is
    not denied is accepted. Entries match the host exactly or any
    subdomain of it ("example.org" matches "a.example.org").
    """

    name = "host-list"

    def __init__(self, allow: Optional[Iterable[str]] = None, deny: Optional[Iterable[str]] = None):
        self.allow = {h.lower().strip(".") for h in (allow or [])}
        self.deny = {h.lower().strip(".") for h in (deny or [])}

    @staticmethod
    def _matches(host: str, entries: set) -> bool:
        return any(host == e or host.endswith("." + e) for e in entries)

    def admit(self, peer: Peer) -> Decision:
        host = _host_of(peer.url)
        if self._matches(host, self.deny):
            return Decision.reject(f"host {host} is denied")
        if self.allow and not self._matches(host, self.allow):
            return Decision.reject(f"host {host} is not allowed")
        return Decision.accept()


class RateLimitPolicy(AnnouncePolicy):
    """
    Sliding-window rate limit on announces per host.

    At most ``limit`` announces for the same host are accepted within
    ``window`` seconds. Hosts with no announce inside the window are
    swept at most once per window, so memory is bounded by the hosts
    seen in the last two windows.
    """

    name = "rate-limit"

    def __init__(
        self,
        limit: int = 10,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit <= 0 or window <= 0:
            raise ValueError("Rate limit and window must be positive")
        self.limit = limit
        self.window = window
        self._clock = clock
        self._timestamps: Dict[str, List[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    @property
    def tracked_hosts(self) -> int:
        with self._lock:
            return len(self._timestamps)

    def _sweep(self, now: float, cutoff: float) -> None:
        """Forget hosts whose newest announce has left the window."""
        if now - self._last_sweep < self.window:
            return
        expired = [host for host, stamps in self._timestamps.items() if not stamps or stamps[-1] <= cutoff]
        for host in expired:
            del self._timestamps[host]
        self._last_sweep = now
        if expired:
            logger.debug(f"Rate limit forgot {len(expired)} idle hosts")

    def admit(self, peer: Peer) -> Decision:
        host = _host_of(peer.url)
        now = self._clock()
        cutoff = now - self.window

        with self._lock:
            self._sweep(now, cutoff)
            recent = [ts for ts in self._timestamps.get(host, []) if ts > cutoff]
            if len(recent) >= self.limit:
                self._timestamps[host] = recent
                return Decision.reject(f"rate limit exceeded for {host}")
            recent.append(now)
            self._timestamps[host] = recent

        return Decision.accept()


class ChainPolicy(AnnouncePolicy):
    """Accept only if every policy in the chain accepts."""

    name = "chain"

    def __init__(self, policies: Iterable[AnnouncePolicy]):
        self.policies = list(policies)

    def admit(self, peer: Peer) -> Decision:
        for policy in self.policies:
            decision = policy.admit(peer)
            if not decision.accepted:
                return decision
        return Decision.accept()


def build_policy(
    allow_hosts: Optional[List[str]] = None,
    deny_hosts: Optional[List[str]] = None,
    rate_limit: int = 0,
    rate_window: float = 60.0,
) -> AnnouncePolicy:
    """Build the policy chain for a node's settings."""
    policies: List[AnnouncePolicy] = []
    if allow_hosts or deny_hosts:
        policies.append(HostListPolicy(allow=allow_hosts, deny=deny_hosts))
    if rate_limit > 0:
        policies.append(RateLimitPolicy(limit=rate_limit, window=rate_window))

    if not policies:
        return AcceptAllPolicy()
    if len(policies) == 1:
        return policies[0]
    return ChainPolicy(policies)
