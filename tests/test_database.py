"""
Unit tests for database/caching module.
"""

import os
import sqlite3

import numpy as np
import pytest

from differ.database import CacheStats, FeatureCache, open_cache
from differ.database.schema import SCHEMA_VERSION, get_schema_version
from differ.database.utils import (
    FILETIME_EPOCH_OFFSET,
    encode_features,
    get_file_stats,
    is_database_corrupted,
    to_filetime,
)
from differ.models import CacheEntry


def vector(seed: int, dims: int = 384) -> np.ndarray:
    rng = np.random.default_rng(seed)
    v = rng.standard_normal(dims).astype(np.float32)
    return v / np.linalg.norm(v)


def bump_mtime(path, seconds: int = 5):
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


class TestCacheStats:
    """Test CacheStats dataclass."""

    def test_hit_rate_calculation(self):
        """Test hit rate percentage calculation."""
        stats = CacheStats(cache_hits=75, cache_misses=25, total_files=100)
        assert stats.hit_rate == 75.0

    def test_hit_rate_no_files(self):
        """Test hit rate when no files."""
        stats = CacheStats(cache_hits=0, cache_misses=0, total_files=0)
        assert stats.hit_rate == 0.0

    def test_hit_rate_all_misses(self):
        """Test hit rate with all cache misses."""
        stats = CacheStats(cache_hits=0, cache_misses=100, total_files=100)
        assert stats.hit_rate == 0.0


class TestUtils:
    """Test file identity and payload helpers."""

    def test_filetime_of_unix_epoch(self):
        assert to_filetime(0) == FILETIME_EPOCH_OFFSET

    def test_filetime_resolution_is_100ns(self):
        assert to_filetime(1_000) - to_filetime(0) == 10

    def test_get_file_stats(self, sample_images):
        size, mtime = get_file_stats(sample_images['base'])
        assert size == os.path.getsize(sample_images['base'])
        assert mtime == to_filetime(os.stat(sample_images['base']).st_mtime_ns)

    def test_encode_little_endian_float32(self):
        payload, length = encode_features(np.array([1.0, -2.5], dtype=np.float64))
        assert length == 2
        assert payload == np.array([1.0, -2.5], dtype='<f4').tobytes()

    def test_cache_entry_rejects_bad_length(self):
        payload, _ = encode_features(vector(1, 8))
        entry = CacheEntry("/x.png", "x.png", 1, 1, features=payload, feature_length=9)
        assert entry.embedding() is None

    def test_cache_entry_decodes(self):
        original = vector(2, 8)
        payload, length = encode_features(original)
        entry = CacheEntry("/x.png", "x.png", 1, 1, features=payload, feature_length=length)
        assert np.array_equal(entry.embedding(), original)


class TestFeatureCache:
    """Test FeatureCache class."""

    def test_initialization_creates_database_in_folder(self, temp_dir):
        cache = FeatureCache(temp_dir)
        try:
            assert os.path.exists(temp_dir / ".differ_cache.db")
            assert cache.is_open
        finally:
            cache.close()
        assert not cache.is_open

    def test_schema_version_recorded(self, temp_dir, temp_cache_db):
        FeatureCache(temp_dir, db_path=temp_cache_db).close()
        conn = sqlite3.connect(temp_cache_db)
        conn.row_factory = sqlite3.Row
        try:
            assert get_schema_version(conn) == SCHEMA_VERSION
        finally:
            conn.close()

    def test_store_and_lookup(self, temp_dir, sample_images):
        """Test caching and retrieving an embedding."""
        with FeatureCache(temp_dir) as cache:
            original = vector(1)
            assert cache.store(sample_images['base'], original) is True

            entry = cache.lookup(sample_images['base'])
            assert entry is not None
            assert entry.file_name == "base.png"
            assert entry.feature_length == 384
            assert np.array_equal(entry.embedding(), original)

    def test_lookup_nonexistent(self, temp_dir):
        """Test getting non-existent entry returns None."""
        with FeatureCache(temp_dir) as cache:
            assert cache.lookup("/nonexistent/file.jpg") is None

    def test_store_nonexistent_file(self, temp_dir):
        """Test that storing features for a nonexistent file fails gracefully."""
        with FeatureCache(temp_dir) as cache:
            assert cache.store("/nonexistent/file.jpg", vector(1)) is False

    def test_store_empty_vector(self, temp_dir, sample_images):
        with FeatureCache(temp_dir) as cache:
            assert cache.store(sample_images['base'], np.array([], dtype=np.float32)) is False

    def test_invalidated_by_mtime_change(self, temp_dir, sample_images):
        """Test that cache is invalidated when the file is touched."""
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
            bump_mtime(sample_images['base'])
            assert cache.lookup(sample_images['base']) is None

    def test_invalidated_by_size_change(self, temp_dir, sample_images):
        with FeatureCache(temp_dir) as cache:
            path = sample_images['other1']
            stat = os.stat(path)
            cache.store(path, vector(1))
            with open(path, 'ab') as f:
                f.write(b"\0" * 16)
            os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))
            assert cache.lookup(path) is None

    def test_store_overwrites(self, temp_dir, sample_images):
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
            cache.store(sample_images['base'], vector(2))
            entry = cache.lookup(sample_images['base'])
            assert np.array_equal(entry.embedding(), vector(2))
            assert cache.statistics().total_entries == 1

    def test_refresh_after_modification(self, temp_dir, sample_images):
        """Re-storing after a change makes the entry valid again."""
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
            bump_mtime(sample_images['base'])
            cache.store(sample_images['base'], vector(3))
            entry = cache.lookup(sample_images['base'])
            assert entry is not None
            assert np.array_equal(entry.embedding(), vector(3))

    def test_store_batch(self, temp_dir, sample_images):
        """Test batch caching."""
        with FeatureCache(temp_dir) as cache:
            count = cache.store_batch([
                (sample_images['base'], vector(1)),
                (sample_images['other1'], vector(2)),
                ("/nonexistent/file.jpg", vector(3)),
            ])
            assert count == 2

    def test_lookup_batch(self, temp_dir, sample_images):
        """Test batch retrieval."""
        with FeatureCache(temp_dir) as cache:
            cache.store_batch([
                (sample_images['base'], vector(1)),
                (sample_images['other1'], vector(2)),
            ])
            bump_mtime(sample_images['other1'])

            paths = [sample_images['base'], sample_images['other1'], sample_images['other2']]
            results = cache.lookup_batch(paths)

            assert set(results) == set(paths)
            assert np.array_equal(results[sample_images['base']].embedding(), vector(1))
            assert results[sample_images['other1']] is None
            assert results[sample_images['other2']] is None

    def test_invalidate(self, temp_dir, sample_images):
        """Test invalidating a specific file."""
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
            cache.invalidate(sample_images['base'])
            assert cache.lookup(sample_images['base']) is None

    def test_persists_across_instances(self, temp_dir, sample_images):
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
        with FeatureCache(temp_dir) as cache:
            assert np.array_equal(cache.lookup(sample_images['base']).embedding(), vector(1))

    def test_concurrent_stores(self, temp_dir, sample_images):
        """The shared connection serializes writers from several threads."""
        from concurrent.futures import ThreadPoolExecutor

        keys = ['base', 'brighter', 'resized', 'other1', 'other2', 'jpeg']
        with FeatureCache(temp_dir) as cache:
            with ThreadPoolExecutor(max_workers=6) as pool:
                stored = list(pool.map(lambda i: cache.store(sample_images[keys[i]], vector(i)), range(6)))
            assert all(stored)
            assert cache.statistics().total_entries == 6

    def test_operations_after_close_fail_gracefully(self, temp_dir, sample_images):
        cache = FeatureCache(temp_dir)
        cache.close()
        assert cache.store(sample_images['base'], vector(1)) is False
        assert cache.lookup(sample_images['base']) is None
        assert cache.cleanup_expired() == 0


class TestMaintenance:
    """Test cleanup, statistics and reset."""

    def test_cleanup_expired_exact(self, temp_dir, sample_images):
        """Only entries whose files are gone are removed."""
        with FeatureCache(temp_dir) as cache:
            cache.store_batch([
                (sample_images['base'], vector(1)),
                (sample_images['other1'], vector(2)),
                (sample_images['other2'], vector(3)),
            ])
            os.remove(sample_images['other1'])
            os.remove(sample_images['other2'])

            assert cache.cleanup_expired() == 2
            assert cache.statistics().total_entries == 1
            assert cache.lookup(sample_images['base']) is not None

    def test_cleanup_expired_idempotent(self, temp_dir, sample_images):
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['other1'], vector(1))
            os.remove(sample_images['other1'])
            assert cache.cleanup_expired() == 1
            assert cache.cleanup_expired() == 0

    def test_statistics(self, temp_dir, sample_images):
        """Test getting cache statistics."""
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
            stats = cache.statistics()
            assert stats.total_entries == 1
            assert stats.embedding_entries == 1
            assert stats.db_size_bytes > 0
            assert stats.db_path == str(temp_dir / ".differ_cache.db")
            assert 'db_size_mb' in stats.to_dict()

    def test_clear(self, temp_dir, sample_images):
        """Test clearing all cache data."""
        with FeatureCache(temp_dir) as cache:
            cache.store(sample_images['base'], vector(1))
            cache.clear()
            assert cache.statistics().total_entries == 0
            assert cache.lookup(sample_images['base']) is None


class TestCorruption:
    """Test recovery from a damaged database file."""

    def test_integrity_check_detects_garbage(self, temp_cache_db):
        with open(temp_cache_db, 'wb') as f:
            f.write(b"this is not a sqlite database" * 100)
        assert is_database_corrupted(temp_cache_db)

    def test_integrity_check_accepts_valid_database(self, temp_dir, temp_cache_db):
        FeatureCache(temp_dir, db_path=temp_cache_db).close()
        assert not is_database_corrupted(temp_cache_db)

    def test_corrupt_database_is_recreated_empty(self, temp_dir, sample_images):
        db_path = temp_dir / ".differ_cache.db"
        db_path.write_bytes(b"garbage" * 500)

        with FeatureCache(temp_dir) as cache:
            assert cache.statistics().total_entries == 0
            assert cache.store(sample_images['base'], vector(1))
            assert cache.lookup(sample_images['base']) is not None

    def _damage_data_pages(self, temp_dir):
        """Fill a cache with 300 entries, then overwrite pages past the header."""
        files = temp_dir / "files"
        files.mkdir()
        with FeatureCache(temp_dir) as cache:
            items = []
            for i in range(300):
                path = files / f"{i:03d}.bin"
                path.write_bytes(b"x" * (i + 1))
                items.append((str(path), vector(i)))
            assert cache.store_batch(items) == 300

        db_path = temp_dir / ".differ_cache.db"
        with open(db_path, 'r+b') as f:
            f.seek(4096)
            f.write(b"\xff" * (16384 - 4096))
        return db_path

    def test_integrity_check_detects_damaged_data_pages(self, temp_dir):
        db_path = self._damage_data_pages(temp_dir)
        assert is_database_corrupted(str(db_path))

    def test_damaged_data_pages_are_recreated_empty(self, temp_dir, sample_images):
        self._damage_data_pages(temp_dir)

        cache = open_cache(temp_dir)
        assert cache is not None
        try:
            assert cache.statistics().total_entries == 0
            assert cache.store(sample_images['base'], vector(1))
            assert cache.lookup(sample_images['base']) is not None
        finally:
            cache.close()


class TestOpenCache:
    """Test the open_cache helper."""

    def test_opens(self, temp_dir):
        cache = open_cache(temp_dir)
        assert cache is not None
        cache.close()

    def test_unopenable_returns_none(self, temp_dir):
        """A path that cannot hold a database yields None instead of raising."""
        blocker = temp_dir / "blocker"
        blocker.write_text("a file, not a folder")
        assert open_cache(blocker / "sub") is None
