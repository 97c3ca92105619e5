"""
Tests for peer stores.
"""

import json
import random
import tempfile
import threading
from pathlib import Path

import pytest

from peerservice.registry.errors import (
    InvalidPageTokenError,
    InvalidPeerError,
    PeerNotFoundError,
    StoreUnavailableError,
)
from peerservice.registry.models import Peer, SnapshotPosition
from peerservice.registry.store import FilePeerStore, MemoryPeerStore, create_store


def fill(store, count: int, prefix: str = "peer"):
    for i in range(count):
        store.upsert(Peer(url=f"http://{prefix}{i:04d}.example.org"))


def walk(store, limit: int):
    """Collect every peer by chaining positions."""
    position = SnapshotPosition.initial()
    seen = []
    while True:
        peers, position = store.snapshot_from(position, limit)
        seen.extend(p.url for p in peers)
        if position is None:
            return seen


class TestUpsert:
    """Tests for MemoryPeerStore.upsert."""

    def test_new_and_update(self):
        """First upsert is new, second is an update."""
        store = MemoryPeerStore()

        assert store.upsert(Peer(url="http://a.example.org")) is True
        assert store.upsert(Peer(url="http://a.example.org", attributes={"k": "v"})) is False
        assert store.count() == 1
        assert store.get("http://a.example.org").attributes == {"k": "v"}

    def test_trailing_slash_collapses(self):
        """Both spellings normalize to the same key."""
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://a.example.org/"))
        store.upsert(Peer(url="http://a.example.org"))

        assert len(store) == 1
        assert store.peers()[0].url == "http://a.example.org"

    def test_last_write_wins(self):
        """Attributes are replaced, not merged."""
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://a.example.org", attributes={"a": "1"}))
        store.upsert(Peer(url="HTTP://A.EXAMPLE.ORG:80/", attributes={"b": "2"}))

        assert store.get("http://a.example.org").attributes == {"b": "2"}

    def test_invalid_url(self):
        """Malformed urls are rejected without mutation."""
        store = MemoryPeerStore()

        with pytest.raises(InvalidPeerError):
            store.upsert(Peer(url="not-a-url"))
        assert store.count() == 0

    def test_uniqueness_under_random_upserts(self):
        """Random spellings of a small url set never create duplicates."""
        rng = random.Random(7)
        store = MemoryPeerStore()
        hosts = [f"h{i}.example.org" for i in range(20)]

        for _ in range(500):
            host = rng.choice(hosts)
            scheme = rng.choice(["http", "HTTP"])
            port = rng.choice(["", ":80"])
            slash = rng.choice(["", "/", "//"])
            store.upsert(Peer(url=f"{scheme}://{host.upper() if rng.random() < 0.5 else host}{port}{slash}"))

        urls = [p.url for p in store.peers()]
        assert len(urls) == len(set(urls))
        assert len(urls) <= len(hosts)

    def test_concurrent_upserts(self):
        """Parallel announces of overlapping urls leave one entry per url."""
        store = MemoryPeerStore()

        def worker(offset):
            for i in range(200):
                store.upsert(Peer(url=f"http://p{(i + offset) % 100}.example.org", attributes={"w": str(offset)}))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.count() == 100
        urls = [p.url for p in store.peers()]
        assert len(set(urls)) == 100


class TestGetRemove:
    """Tests for get/remove/contains."""

    def test_get_not_found(self):
        store = MemoryPeerStore()
        with pytest.raises(PeerNotFoundError):
            store.get("http://missing.example.org")

    def test_get_normalizes(self):
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://a.example.org"))
        assert store.get("HTTP://a.example.org/").url == "http://a.example.org"

    def test_returned_peers_cannot_modify_store(self):
        """Stored peers change only through upsert."""
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://a.example.org", attributes={"k": "v"}))

        with pytest.raises(TypeError):
            store.peers()[0].attributes["k"] = "tampered"
        with pytest.raises(TypeError):
            store.get("http://a.example.org").attributes["k"] = "tampered"
        peers, _ = store.snapshot_from(SnapshotPosition.initial(), 10)
        with pytest.raises(TypeError):
            peers[0].attributes["extra"] = "x"

        assert store.get("http://a.example.org").attributes == {"k": "v"}

    def test_contains(self):
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://a.example.org"))
        assert "http://a.example.org/" in store
        assert "http://b.example.org" not in store
        assert "not-a-url" not in store

    def test_remove(self):
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://a.example.org"))

        assert store.remove("http://a.example.org/") is True
        assert store.remove("http://a.example.org") is False
        assert store.count() == 0


class TestSnapshot:
    """Tests for snapshot_from."""

    def test_empty_store(self):
        store = MemoryPeerStore()
        peers, position = store.snapshot_from(SnapshotPosition.initial(), 10)
        assert peers == []
        assert position is None

    @pytest.mark.parametrize("limit", [1, 2, 3, 7, 10, 11, 100])
    def test_complete_without_duplicates(self, limit):
        """Chaining positions returns every peer exactly once."""
        store = MemoryPeerStore()
        fill(store, 23)

        seen = walk(store, limit)

        assert len(seen) == 23
        assert len(set(seen)) == 23

    def test_insertion_order(self):
        """Peers are listed in first-insert order; updates keep their place."""
        store = MemoryPeerStore()
        store.upsert(Peer(url="http://c.example.org"))
        store.upsert(Peer(url="http://a.example.org"))
        store.upsert(Peer(url="http://b.example.org"))
        store.upsert(Peer(url="http://c.example.org", attributes={"updated": "yes"}))

        urls = [p.url for p in store.peers()]
        assert urls == ["http://c.example.org", "http://a.example.org", "http://b.example.org"]

    def test_exact_page_boundary(self):
        """A page that ends on the last entry reports no next position."""
        store = MemoryPeerStore()
        fill(store, 4)

        peers, position = store.snapshot_from(SnapshotPosition.initial(), 4)
        assert len(peers) == 4
        assert position is None

    def test_removal_between_pages(self):
        """Removed entries are skipped; nothing is repeated or lost."""
        store = MemoryPeerStore()
        fill(store, 10)
        all_urls = [p.url for p in store.peers()]

        first, position = store.snapshot_from(SnapshotPosition.initial(), 4)
        # Remove an already returned entry and a pending one
        store.remove(all_urls[1])
        store.remove(all_urls[6])

        rest = []
        while position is not None:
            peers, position = store.snapshot_from(position, 4)
            rest.extend(p.url for p in peers)

        returned = [p.url for p in first] + rest
        assert len(returned) == len(set(returned))
        assert all_urls[6] not in rest
        assert set(returned) == set(all_urls) - {all_urls[6]}

    def test_removal_of_position_entry(self):
        """Removing the entry a position points at does not break the next page."""
        store = MemoryPeerStore()
        fill(store, 6)
        urls = [p.url for p in store.peers()]

        first, position = store.snapshot_from(SnapshotPosition.initial(), 3)
        store.remove(urls[2])
        second, position = store.snapshot_from(position, 3)

        assert [p.url for p in second] == urls[3:]
        assert position is None

    def test_new_entries_appear_later(self):
        """Peers added during pagination show up on later pages."""
        store = MemoryPeerStore()
        fill(store, 5)

        _, position = store.snapshot_from(SnapshotPosition.initial(), 3)
        store.upsert(Peer(url="http://late.example.org"))
        peers, _ = store.snapshot_from(position, 10)

        assert peers[-1].url == "http://late.example.org"

    def test_foreign_epoch_rejected(self):
        store = MemoryPeerStore()
        fill(store, 5)
        with pytest.raises(InvalidPageTokenError):
            store.snapshot_from(SnapshotPosition(epoch="other", sequence=2), 10)

    def test_unknown_sequence_rejected(self):
        store = MemoryPeerStore()
        fill(store, 5)
        with pytest.raises(InvalidPageTokenError):
            store.snapshot_from(SnapshotPosition(epoch=store.epoch, sequence=99), 10)

    def test_reset_invalidates_positions(self):
        """After a reset, positions from the old epoch fail closed."""
        store = MemoryPeerStore()
        fill(store, 5)
        _, position = store.snapshot_from(SnapshotPosition.initial(), 2)
        old_epoch = store.epoch

        store.reset()

        assert store.epoch != old_epoch
        assert store.count() == 0
        with pytest.raises(InvalidPageTokenError):
            store.snapshot_from(position, 2)

    def test_invalid_limit(self):
        store = MemoryPeerStore()
        with pytest.raises(ValueError):
            store.snapshot_from(SnapshotPosition.initial(), 0)


class TestFilePeerStore:
    """Tests for the JSON-file store."""

    def test_persists_across_instances(self):
        """Peers, order and epoch survive reopening the store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store1 = FilePeerStore(tmpdir)
            fill(store1, 5)
            store1.upsert(Peer(url="http://peer0002.example.org", attributes={"k": "v"}))
            _, position = store1.snapshot_from(SnapshotPosition.initial(), 2)

            store2 = FilePeerStore(tmpdir)

            assert store2.epoch == store1.epoch
            assert [p.url for p in store2.peers()] == [p.url for p in store1.peers()]
            assert store2.get("http://peer0002.example.org").attributes == {"k": "v"}
            peers, _ = store2.snapshot_from(position, 10)
            assert len(peers) == 3

    def test_sequences_continue_after_reload(self):
        """Removing the newest peer does not let its sequence be reused."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store1 = FilePeerStore(tmpdir)
            fill(store1, 3)
            store1.remove("http://peer0002.example.org")

            store2 = FilePeerStore(tmpdir)
            store2.upsert(Peer(url="http://new.example.org"))

            assert [p.url for p in store2.peers()][-1] == "http://new.example.org"
            assert store2._entries["http://new.example.org"].sequence == 4

    def test_file_format(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = FilePeerStore(tmpdir)
            store.upsert(Peer(url="http://a.example.org/"))

            with open(Path(tmpdir) / "peers.json") as f:
                data = json.load(f)

            assert data["version"] == 1
            assert data["epoch"] == store.epoch
            assert data["peers"][0]["url"] == "http://a.example.org"
            assert data["peers"][0]["sequence"] == 1

    def test_corrupt_file(self):
        """An unreadable store file is reported as unavailable."""
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "peers.json").write_text("{not json")

            with pytest.raises(StoreUnavailableError) as exc_info:
                FilePeerStore(tmpdir)
            assert exc_info.value.retryable is True

    def test_failed_write_leaves_store_unchanged(self):
        """A mutation whose write fails is not visible afterwards."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = FilePeerStore(tmpdir)
            store.upsert(Peer(url="http://a.example.org", attributes={"k": "v"}))
            epoch = store.epoch

            # A directory in the way of the temporary file makes every write fail
            (Path(tmpdir) / "peers.json.tmp").mkdir()

            with pytest.raises(StoreUnavailableError):
                store.upsert(Peer(url="http://b.example.org"))
            with pytest.raises(StoreUnavailableError):
                store.upsert(Peer(url="http://a.example.org", attributes={"k": "changed"}))
            with pytest.raises(StoreUnavailableError):
                store.remove("http://a.example.org")
            with pytest.raises(StoreUnavailableError):
                store.reset()

            assert store.count() == 1
            assert store.epoch == epoch
            assert store.get("http://a.example.org").attributes == {"k": "v"}
            peers, next_position = store.snapshot_from(SnapshotPosition.initial(), 10)
            assert [p.url for p in peers] == ["http://a.example.org"]
            assert next_position is None

            # Memory still matches disk once writes work again
            (Path(tmpdir) / "peers.json.tmp").rmdir()
            store.upsert(Peer(url="http://c.example.org"))
            reopened = FilePeerStore(tmpdir)
            assert [p.url for p in reopened.peers()] == ["http://a.example.org", "http://c.example.org"]

    def test_unsupported_version(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "peers.json").write_text(json.dumps({"version": 99, "peers": []}))

            with pytest.raises(StoreUnavailableError):
                FilePeerStore(tmpdir)


class TestCreateStore:
    """Tests for create_store."""

    def test_memory(self):
        assert isinstance(create_store("memory"), MemoryPeerStore)

    def test_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert isinstance(create_store("file", tmpdir), FilePeerStore)

    def test_file_requires_dir(self):
        with pytest.raises(ValueError):
            create_store("file")

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_store("redis")
