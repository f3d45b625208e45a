"""Tests for the archive listing cache."""

import os

from longbox.archive_models import ArchiveInfo
from longbox.formats import ArchiveFormat
from longbox.listing_cache import ArchiveListingCache, file_fingerprint


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _info(path) -> ArchiveInfo:
    return ArchiveInfo.from_entries(str(path), ArchiveFormat.ZIP, [])


def _archive(tmp_path, name="a.cbz", data=b"PK\x03\x04data"):
    path = tmp_path / name
    path.write_bytes(data)
    return path


def test_hit_returns_cached_listing(tmp_path):
    path = _archive(tmp_path)
    cache = ArchiveListingCache()
    info = _info(path)
    cache.put(path, info)
    assert cache.get(path) is info
    assert len(cache) == 1


def test_ttl_expiry(tmp_path):
    clock = FakeClock()
    path = _archive(tmp_path)
    cache = ArchiveListingCache(ttl_seconds=10, clock=clock)
    cache.put(path, _info(path))

    clock.now += 9
    assert cache.get(path) is not None
    clock.now += 2
    assert cache.get(path) is None
    assert len(cache) == 0


def test_fingerprint_change_invalidates(tmp_path):
    path = _archive(tmp_path)
    cache = ArchiveListingCache()
    cache.put(path, _info(path))

    path.write_bytes(b"PK\x03\x04different length")
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))
    assert cache.get(path) is None


def test_deleted_file_is_a_miss(tmp_path):
    path = _archive(tmp_path)
    cache = ArchiveListingCache()
    cache.put(path, _info(path))
    path.unlink()
    assert cache.get(path) is None
    assert file_fingerprint(path) is None


def test_lru_eviction_drops_least_recently_used(tmp_path):
    clock = FakeClock()
    cache = ArchiveListingCache(max_entries=2, clock=clock)
    a, b, c = (_archive(tmp_path, f"{n}.cbz") for n in "abc")

    cache.put(a, _info(a))
    clock.now += 1
    cache.put(b, _info(b))
    clock.now += 1
    assert cache.get(a) is not None  # a is now more recent than b
    clock.now += 1
    cache.put(c, _info(c))

    assert len(cache) == 2
    assert cache.get(b) is None
    assert cache.get(a) is not None
    assert cache.get(c) is not None


def test_invalidate_clear_and_stats(tmp_path):
    path = _archive(tmp_path)
    cache = ArchiveListingCache(max_entries=7, ttl_seconds=30)
    cache.put(path, _info(path))
    cache.invalidate(path)
    assert cache.get(path) is None

    cache.put(path, _info(path))
    cache.clear()
    assert cache.stats() == {"size": 0, "max_size": 7, "ttl_seconds": 30}


def test_put_for_missing_file_is_ignored(tmp_path):
    cache = ArchiveListingCache()
    cache.put(tmp_path / "gone.cbz", _info(tmp_path / "gone.cbz"))
    assert len(cache) == 0
