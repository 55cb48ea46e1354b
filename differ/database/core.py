"""
FeatureCache facade class for coordinating database operations.

Provides a unified interface to all cache operations using the facade pattern.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Iterable, Optional

from ..config import CACHE_DB_NAME
from ..models import CacheEntry, CacheStatistics
from .connection import ConnectionManager
from .schema import initialize_schema, SCHEMA_VERSION
from .operations import CacheOperations
from .maintenance import MaintenanceOperations
from .utils import is_database_corrupted


logger = logging.getLogger(__name__)


def _remove_database_files(db_path: str) -> None:
    for suffix in ('', '-wal', '-shm', '-journal'):
        path = db_path + suffix
        if os.path.exists(path):
            os.remove(path)


class FeatureCache:
    """
    Per-folder SQLite cache of image embeddings.

    The database lives at ``<folder>/.differ_cache.db``. One shared
    connection serializes all reads and writes, so the cache may be used from
    several threads at once. Uses facade pattern to delegate to specialized
    components.

    Usage:
        cache = FeatureCache(folder)

        entry = cache.lookup(filepath)
        if entry is None:
            vector = extractor.extract(filepath)
            cache.store(filepath, vector)

        cache.close()
    """

    # Schema version - increment when changing table structure
    SCHEMA_VERSION = SCHEMA_VERSION

    def __init__(self, folder_path: str | Path, db_path: Optional[str] = None):
        """
        Open (creating if needed) the cache for a folder.

        A database file that exists but fails a read-only integrity probe, or
        that turns out malformed while the schema is set up, is deleted and
        recreated empty.

        Args:
            folder_path: Root of the scanned folder
            db_path: Override for the database file location (testing)
        """
        self.folder_path = os.path.abspath(str(folder_path))
        self.db_path = db_path or os.path.join(self.folder_path, CACHE_DB_NAME)

        if os.path.exists(self.db_path) and is_database_corrupted(self.db_path):
            try:
                _remove_database_files(self.db_path)
                logger.warning(f"Deleted corrupted cache database: {self.db_path}")
            except OSError as e:
                logger.error(f"Failed to delete corrupted cache database {self.db_path}: {e}")

        # Initialize components
        self._conn_mgr = ConnectionManager(self.db_path)
        self._operations = CacheOperations(self._conn_mgr)
        self._maintenance = MaintenanceOperations(self._conn_mgr)

        try:
            self._open_schema()
        except sqlite3.DatabaseError as e:
            # Damage the integrity probe missed surfaces here; recreate once
            logger.warning(f"Cache database is malformed, recreating {self.db_path}: {e}")
            _remove_database_files(self.db_path)
            self._open_schema()

        logger.info(f"Initialized feature cache for folder: {self.folder_path}")

    def _open_schema(self) -> None:
        self._conn_mgr.open()
        try:
            with self._conn_mgr.connection() as conn:
                initialize_schema(conn)
        except Exception:
            self._conn_mgr.close()
            raise

    @property
    def is_open(self) -> bool:
        return self._conn_mgr.is_open

    # Delegate to CacheOperations
    def lookup(self, filepath: str) -> Optional[CacheEntry]:
        """Get the cached entry if the file's size and mtime still match."""
        return self._operations.lookup(filepath)

    def lookup_batch(self, filepaths: list[str]) -> dict[str, Optional[CacheEntry]]:
        """Look up multiple files efficiently."""
        return self._operations.lookup_batch(filepaths)

    def store(self, filepath: str, embedding) -> bool:
        """Upsert the embedding for a file."""
        return self._operations.store(filepath, embedding)

    def store_batch(self, items: Iterable[tuple[str, object]]) -> int:
        """Upsert multiple embeddings in one transaction."""
        return self._operations.store_batch(items)

    def invalidate(self, filepath: str):
        """Remove a specific file from the cache."""
        self._operations.invalidate(filepath)

    # Delegate to MaintenanceOperations
    def cleanup_expired(self) -> int:
        """Remove cache entries for files that no longer exist."""
        return self._maintenance.cleanup_expired()

    def statistics(self) -> CacheStatistics:
        """Get cache statistics."""
        return self._maintenance.statistics()

    def clear(self):
        """Clear all cached data."""
        self._maintenance.clear()

    def vacuum(self):
        """Compact the database file."""
        self._maintenance.vacuum()

    def close(self):
        """Release the shared connection."""
        self._conn_mgr.close()

    def __enter__(self) -> 'FeatureCache':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ['FeatureCache']
