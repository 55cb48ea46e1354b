"""
Core CRUD operations for the feature cache.

Provides CacheOperations class for single and batch operations.
"""

from __future__ import annotations

import os
import logging
from typing import Iterable, Optional

from ..models import CacheEntry
from .connection import ConnectionManager
from .utils import get_file_stats, encode_features, row_to_cache_entry, CHUNK_SIZE


logger = logging.getLogger(__name__)

_UPSERT_SQL = """
    INSERT INTO image_features (
        file_path, file_name, file_size, last_modified,
        features, feature_length, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, strftime('%s', 'now'))
    ON CONFLICT(file_path) DO UPDATE SET
        file_name = excluded.file_name,
        file_size = excluded.file_size,
        last_modified = excluded.last_modified,
        features = excluded.features,
        feature_length = excluded.feature_length,
        updated_at = excluded.updated_at
"""


class CacheOperations:
    """
    Handles CRUD operations for the feature cache.

    A lookup is a hit only when the stored size and FILETIME modification
    time equal the live file's current values; any write or touch of the
    file invalidates its entry.
    """

    def __init__(self, connection_manager: ConnectionManager):
        """
        Initialize cache operations.

        Args:
            connection_manager: ConnectionManager instance for database access
        """
        self.conn_mgr = connection_manager

    def lookup(self, filepath: str) -> Optional[CacheEntry]:
        """
        Get the cached entry if the file is unchanged.

        Args:
            filepath: Absolute path of the image file

        Returns:
            CacheEntry on a hit, None on a miss or error
        """
        try:
            if not os.path.exists(filepath):
                logger.debug(f"Cache lookup for missing file: {filepath}")
                return None

            file_size, last_modified = get_file_stats(filepath)

            with self.conn_mgr.connection() as conn:
                row = conn.execute("""
                    SELECT * FROM image_features
                    WHERE file_path = ? AND file_size = ? AND last_modified = ?
                    LIMIT 1
                """, (filepath, file_size, last_modified)).fetchone()

            if row is None:
                logger.debug(f"Cache MISS for: {filepath}")
                return None

            logger.debug(f"Cache HIT for: {filepath}")
            return row_to_cache_entry(row)

        except Exception as e:
            logger.warning(f"Failed to get cached features for {filepath}: {e}")
            return None

    def lookup_batch(self, filepaths: list[str]) -> dict[str, Optional[CacheEntry]]:
        """
        Look up multiple files efficiently.

        Args:
            filepaths: List of absolute file paths

        Returns:
            Dict mapping filepath to CacheEntry (or None on a miss)
        """
        results: dict[str, Optional[CacheEntry]] = {fp: None for fp in filepaths}

        try:
            live_stats = {}
            for fp in filepaths:
                try:
                    live_stats[fp] = get_file_stats(fp)
                except OSError:
                    continue

            if not live_stats:
                return results

            path_list = list(live_stats.keys())

            with self.conn_mgr.connection() as conn:
                for i in range(0, len(path_list), CHUNK_SIZE):
                    chunk = path_list[i:i + CHUNK_SIZE]
                    placeholders = ','.join('?' * len(chunk))

                    rows = conn.execute(f"""
                        SELECT * FROM image_features WHERE file_path IN ({placeholders})
                    """, chunk).fetchall()

                    for row in rows:
                        filepath = row['file_path']
                        if live_stats.get(filepath) == (row['file_size'], row['last_modified']):
                            results[filepath] = row_to_cache_entry(row)

        except Exception as e:
            logger.warning(f"Error during batch retrieval: {e}")

        return results

    def store(self, filepath: str, embedding) -> bool:
        """
        Cache an embedding, capturing the file's current size and mtime.

        Args:
            filepath: Absolute path of the image file
            embedding: 1-D float vector

        Returns:
            True if successfully cached
        """
        try:
            if not os.path.exists(filepath):
                return False

            file_size, last_modified = get_file_stats(filepath)
            payload, length = encode_features(embedding)
            if length == 0:
                return False

            with self.conn_mgr.connection() as conn:
                conn.execute(_UPSERT_SQL, (
                    filepath, os.path.basename(filepath), file_size, last_modified,
                    payload, length,
                ))

            logger.debug(f"Cached {length} features for {filepath}")
            return True

        except Exception as e:
            logger.warning(f"Failed to cache features for {filepath}: {e}")
            return False

    def store_batch(self, items: Iterable[tuple[str, object]]) -> int:
        """
        Cache multiple embeddings in a single transaction.

        Args:
            items: Iterable of (filepath, embedding) pairs

        Returns:
            Number of successfully cached entries
        """
        cached = 0

        try:
            with self.conn_mgr.connection() as conn:
                for filepath, embedding in items:
                    try:
                        if not os.path.exists(filepath):
                            continue

                        file_size, last_modified = get_file_stats(filepath)
                        payload, length = encode_features(embedding)
                        if length == 0:
                            continue

                        conn.execute(_UPSERT_SQL, (
                            filepath, os.path.basename(filepath), file_size, last_modified,
                            payload, length,
                        ))
                        cached += 1

                    except OSError as e:
                        logger.debug(f"Skipping cache write for {filepath}: {e}")
                        continue

        except Exception as e:
            logger.warning(f"Error during batch caching: {e}")
            return 0

        return cached

    def invalidate(self, filepath: str):
        """
        Remove a specific file from the cache.

        Args:
            filepath: Path to the file to invalidate
        """
        try:
            with self.conn_mgr.connection() as conn:
                conn.execute("DELETE FROM image_features WHERE file_path = ?", (filepath,))
        except Exception as e:
            logger.debug(f"Failed to invalidate cache for {filepath}: {e}")


__all__ = ['CacheOperations']
