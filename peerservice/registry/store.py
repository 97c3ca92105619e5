"""
Peer storage.

The store keeps at most one entry per normalized url and lists entries in
insertion-sequence order. Each entry gets a monotonically increasing
sequence number on first insert; updates keep that number, so the order of
unmutated entries never changes retroactively. A listing position is just
"the last sequence already returned", which makes pagination immune to
entries disappearing between requests.

Implementations:
- MemoryPeerStore: process-local, lost on restart
- FilePeerStore: same semantics, persisted to a JSON file
"""

import bisect
import json
import logging
import os
import secrets
import threading
import time
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import (
    InvalidPageTokenError,
    InvalidPeerError,
    PeerNotFoundError,
    StoreUnavailableError,
)
from .models import Peer, SnapshotPosition, normalize_url

logger = logging.getLogger(__name__)

# Upserts on the same key serialize on one of these stripes.
KEY_LOCK_STRIPES = 64

STORE_FILE_VERSION = 1


def _new_epoch() -> str:
    return secrets.token_hex(8)


@dataclass(frozen=True)
class StoredPeer:
    """A peer together with its position in the store order."""
    sequence: int
    peer: Peer


class PeerStore(ABC):
    """
    Contract for peer storage.

    Subclasses must keep a stable total order over entries and must
    reject positions they cannot resolve rather than guess.
    """

    @property
    @abstractmethod
    def epoch(self) -> str:
        """Identifier of the current store lifetime."""
        pass

    @abstractmethod
    def upsert(self, peer: Peer) -> bool:
        """
        Insert or update a peer by normalized url.

        Returns:
            True if the peer was not known before

        Raises:
            InvalidPeerError: if the url is malformed
        """
        pass

    @abstractmethod
    def snapshot_from(
        self,
        position: SnapshotPosition,
        limit: int
    ) -> Tuple[List[Peer], Optional[SnapshotPosition]]:
        """
        Return at most ``limit`` peers strictly after ``position``.

        The second element is the position to resume from, or None when
        the page reaches the end of the store.

        Raises:
            InvalidPageTokenError: if the position cannot be resolved
        """
        pass

    @abstractmethod
    def get(self, url: str) -> Peer:
        """Get a peer by url, raising PeerNotFoundError if unknown."""
        pass

    @abstractmethod
    def remove(self, url: str) -> bool:
        """Remove a peer. Returns False if it was not stored."""
        pass

    @abstractmethod
    def peers(self) -> List[Peer]:
        """All peers in store order."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Drop every entry and start a new epoch."""
        pass

    def count(self) -> int:
        return len(self.peers())

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, url: str) -> bool:
        try:
            self.get(url)
            return True
        except (PeerNotFoundError, InvalidPeerError):
            return False


class MemoryPeerStore(PeerStore):
    """
    In-memory peer store.

    Thread-safe. Same-key upserts are serialized on a striped per-key lock,
    while the shared ordering structures are guarded by a short structure
    lock. Entries are immutable and swapped in whole, so a snapshot sees a
    peer either before or after an update, never in between.
    """

    def __init__(self, epoch: Optional[str] = None):
        self._epoch = epoch or _new_epoch()
        self._entries: Dict[str, StoredPeer] = {}
        self._by_sequence: Dict[int, str] = {}
        self._sequences: List[int] = []
        self._next_sequence = 1
        self._lock = threading.RLock()
        self._key_locks = [threading.Lock() for _ in range(KEY_LOCK_STRIPES)]

    @property
    def epoch(self) -> str:
        return self._epoch

    def _key_lock(self, key: str) -> threading.Lock:
        return self._key_locks[zlib.crc32(key.encode("utf-8")) % KEY_LOCK_STRIPES]

    def upsert(self, peer: Peer) -> bool:
        normalized = peer.normalized()
        key = normalized.url

        with self._key_lock(key):
            with self._lock:
                existing = self._entries.get(key)
                if existing is not None:
                    self._entries[key] = StoredPeer(existing.sequence, normalized)
                else:
                    sequence = self._next_sequence
                    self._next_sequence += 1
                    self._entries[key] = StoredPeer(sequence, normalized)
                    self._by_sequence[sequence] = key
                    self._sequences.append(sequence)

                try:
                    self._after_mutation()
                except StoreUnavailableError:
                    # A failed write must leave memory as it was
                    if existing is not None:
                        self._entries[key] = existing
                    else:
                        del self._entries[key]
                        del self._by_sequence[sequence]
                        self._sequences.pop()
                    raise
        is_new = existing is None

        if is_new:
            logger.debug(f"Stored new peer {key}")
        else:
            logger.debug(f"Updated peer {key}")
        return is_new

    def _resolve(self, position: SnapshotPosition) -> None:
        """Check that a position belongs to this store lifetime."""
        if position.is_initial:
            return
        if position.epoch != self._epoch:
            raise InvalidPageTokenError("Page token refers to a different store epoch")
        if position.sequence < 0 or position.sequence >= self._next_sequence:
            raise InvalidPageTokenError("Page token refers to an unknown position")

    def snapshot_from(
        self,
        position: SnapshotPosition,
        limit: int
    ) -> Tuple[List[Peer], Optional[SnapshotPosition]]:
        if limit <= 0:
            raise ValueError("limit must be positive")

        with self._lock:
            self._resolve(position)
            start = bisect.bisect_right(self._sequences, position.sequence)
            sequences = self._sequences[start:start + limit]
            peers = [self._entries[self._by_sequence[s]].peer for s in sequences]
            has_more = start + len(sequences) < len(self._sequences)

            next_position = None
            if has_more and sequences:
                next_position = SnapshotPosition(epoch=self._epoch, sequence=sequences[-1])

        return peers, next_position

    def get(self, url: str) -> Peer:
        key = normalize_url(url)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            raise PeerNotFoundError(key)
        return entry.peer

    def remove(self, url: str) -> bool:
        key = normalize_url(url)
        with self._key_lock(key):
            with self._lock:
                entry = self._entries.pop(key, None)
                if entry is None:
                    return False
                del self._by_sequence[entry.sequence]
                index = bisect.bisect_left(self._sequences, entry.sequence)
                del self._sequences[index]

                try:
                    self._after_mutation()
                except StoreUnavailableError:
                    self._entries[key] = entry
                    self._by_sequence[entry.sequence] = key
                    self._sequences.insert(index, entry.sequence)
                    raise

        logger.info(f"Removed peer {key}")
        return True

    def peers(self) -> List[Peer]:
        with self._lock:
            return [self._entries[self._by_sequence[s]].peer for s in self._sequences]

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def reset(self) -> None:
        with self._lock:
            previous = (self._entries, self._by_sequence, self._sequences, self._next_sequence, self._epoch)
            self._entries = {}
            self._by_sequence = {}
            self._sequences = []
            self._next_sequence = 1
            self._epoch = _new_epoch()

            try:
                self._after_mutation()
            except StoreUnavailableError:
                (self._entries, self._by_sequence, self._sequences,
                 self._next_sequence, self._epoch) = previous
                raise
        logger.info(f"Peer store reset, new epoch {self._epoch}")

    def _after_mutation(self) -> None:
        """
        Hook for subclasses that persist state.

        Called with the structure lock held, after the change is applied in
        memory. Raising StoreUnavailableError rolls the change back.
        """
        pass

    def _dump(self) -> dict:
        with self._lock:
            return {
                "version": STORE_FILE_VERSION,
                "epoch": self._epoch,
                "next_sequence": self._next_sequence,
                "updated": time.time(),
                "peers": [
                    {
                        "sequence": s,
                        **self._entries[self._by_sequence[s]].peer.to_dict(),
                    }
                    for s in self._sequences
                ],
            }

    def _restore(self, data: dict) -> None:
        if data.get("version") != STORE_FILE_VERSION:
            raise StoreUnavailableError(
                f"Unsupported peer store version: {data.get('version')}"
            )

        entries: Dict[str, StoredPeer] = {}
        for item in data.get("peers", []):
            peer = Peer.from_dict(item).normalized()
            entries[peer.url] = StoredPeer(int(item["sequence"]), peer)

        with self._lock:
            self._entries = entries
            self._by_sequence = {e.sequence: key for key, e in entries.items()}
            self._sequences = sorted(self._by_sequence)
            highest = self._sequences[-1] if self._sequences else 0
            self._next_sequence = max(int(data.get("next_sequence", 1)), highest + 1)
            self._epoch = data.get("epoch") or _new_epoch()


class FilePeerStore(MemoryPeerStore):
    """
    Peer store persisted to a JSON file.

    Stored in <data_dir>/peers.json. The whole store is rewritten after
    every mutation through a temporary file, so a crash leaves either the
    old or the new content on disk.
    """

    FILE_NAME = "peers.json"

    def __init__(self, data_dir: Union[str, Path]):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / self.FILE_NAME
        self._io_lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            self._restore(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StoreUnavailableError(f"Failed to load peer store {self.path}: {e}")
        logger.info(f"Loaded {self.count()} peers from {self.path}")

    def _after_mutation(self) -> None:
        with self._io_lock:
            data = self._dump()
            tmp_path = self.path.with_suffix(".json.tmp")
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise StoreUnavailableError(f"Failed to save peer store {self.path}: {e}")
        logger.debug(f"Saved {len(data['peers'])} peers to {self.path}")


def create_store(backend: str = "memory", data_dir: Optional[Union[str, Path]] = None) -> PeerStore:
    """Create a peer store for the configured backend."""
    if backend == "memory":
        return MemoryPeerStore()
    if backend == "file":
        if data_dir is None:
            raise ValueError("File peer store requires a data directory")
        return FilePeerStore(data_dir)
    raise ValueError(f"Unknown store backend: {backend}")
