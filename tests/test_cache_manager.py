from __future__ import annotations

import threading

import pytest

from core.proxy.cache_manager import AssetCache, CacheEntry, DEFAULT_TTL_SECONDS


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_default_ttl_is_thirty_days():
    assert DEFAULT_TTL_SECONDS == 30 * 24 * 60 * 60
    assert AssetCache().ttl_seconds == DEFAULT_TTL_SECONDS


def test_store_then_lookup_returns_stored_payload_and_type():
    cache = AssetCache(clock=FakeClock())
    cache.store("/e/1/a.png", b"\x89PNG", "image/png")

    entry = cache.lookup("/e/1/a.png")
    assert isinstance(entry, CacheEntry)
    assert entry.path == "/e/1/a.png"
    assert entry.payload == b"\x89PNG"
    assert entry.content_type == "image/png"
    assert entry.created_at == 1_000.0


def test_lookup_within_ttl_is_a_hit():
    clock = FakeClock()
    cache = AssetCache(ttl_seconds=60, clock=clock)
    cache.store("/e/2/x.js", b"x", "text/javascript")

    clock.now += 59.999
    assert cache.lookup("/e/2/x.js") is not None
    assert len(cache) == 1


def test_lookup_at_ttl_is_absent_and_entry_removed():
    clock = FakeClock()
    cache = AssetCache(ttl_seconds=60, clock=clock)
    cache.store("/e/2/x.js", b"x", "text/javascript")

    clock.now += 60
    assert cache.lookup("/e/2/x.js") is None
    assert "/e/2/x.js" not in cache
    assert len(cache) == 0
    assert cache.get_stats()["expired"] == 1


def test_stale_entries_linger_until_their_key_is_read():
    clock = FakeClock()
    cache = AssetCache(ttl_seconds=10, clock=clock)
    cache.store("/e/1/a", b"a", "application/octet-stream")
    cache.store("/e/1/b", b"b", "application/octet-stream")

    clock.now += 100
    assert cache.lookup("/e/1/a") is None
    assert "/e/1/a" not in cache
    assert "/e/1/b" in cache


def test_store_overwrites_existing_entry_and_resets_age():
    clock = FakeClock()
    cache = AssetCache(ttl_seconds=10, clock=clock)
    first = cache.store("/e/1/a", b"old", "text/plain")

    clock.now += 8
    second = cache.store("/e/1/a", b"new", "text/css")
    clock.now += 8

    entry = cache.lookup("/e/1/a")
    assert entry is second
    assert entry is not first
    assert entry.payload == b"new"
    assert entry.content_type == "text/css"
    assert len(cache) == 1


def test_entries_are_immutable():
    cache = AssetCache()
    entry = cache.store("/e/1/a", bytearray(b"abc"), "text/plain")

    assert isinstance(entry.payload, bytes)
    with pytest.raises(AttributeError):
        entry.payload = b"other"


def test_miss_on_unknown_key_counts_in_stats():
    cache = AssetCache()
    assert cache.lookup("/e/1/missing") is None

    stats = cache.get_stats()
    assert stats["misses"] == 1
    assert stats["hits"] == 0
    assert stats["hit_rate"] == "0.0%"


def test_stats_track_hits_and_stores():
    cache = AssetCache()
    cache.store("/e/1/a", b"12345", "text/plain")
    cache.lookup("/e/1/a")
    cache.lookup("/e/1/a")
    cache.lookup("/e/1/b")

    stats = cache.get_stats()
    assert stats["size"] == 1
    assert stats["payload_bytes"] == 5
    assert stats["stores"] == 1
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["total_requests"] == 3


@pytest.mark.parametrize("ttl", [0, -1])
def test_non_positive_ttl_is_rejected(ttl):
    with pytest.raises(ValueError):
        AssetCache(ttl_seconds=ttl)


def test_concurrent_stores_and_lookups_keep_one_entry_per_key():
    cache = AssetCache()
    keys = [f"/e/1/file-{i}.bin" for i in range(20)]
    errors = []

    def worker(tag: int):
        for _ in range(200):
            for key in keys:
                cache.store(key, f"{tag}".encode(), "application/octet-stream")
                entry = cache.lookup(key)
                if entry is None or entry.path != key:
                    errors.append(key)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(cache) == len(keys)
    for key in keys:
        assert cache.lookup(key).payload in {f"{n}".encode() for n in range(8)}
