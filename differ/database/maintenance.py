"""
Maintenance operations for the feature cache.

Provides expired-entry cleanup, statistics, reset and vacuum operations.
"""

from __future__ import annotations

import os
import logging

from ..models import CacheStatistics
from .connection import ConnectionManager
from .utils import CHUNK_SIZE


logger = logging.getLogger(__name__)


class MaintenanceOperations:
    """
    Handles maintenance operations for the feature cache.

    Nothing here runs implicitly: entries for deleted files stay in the
    database until cleanup_expired() is called.
    """

    def __init__(self, connection_manager: ConnectionManager):
        """
        Initialize maintenance operations.

        Args:
            connection_manager: ConnectionManager instance for database access
        """
        self.conn_mgr = connection_manager

    def cleanup_expired(self) -> int:
        """
        Remove cache entries for files that no longer exist.

        Returns:
            Number of entries removed
        """
        try:
            with self.conn_mgr.connection() as conn:
                rows = conn.execute("SELECT file_path FROM image_features").fetchall()
                expired = [row['file_path'] for row in rows if not os.path.exists(row['file_path'])]

                # Delete in chunks to avoid SQLite variable limit
                removed = 0
                for i in range(0, len(expired), CHUNK_SIZE):
                    chunk = expired[i:i + CHUNK_SIZE]
                    placeholders = ','.join('?' * len(chunk))
                    result = conn.execute(
                        f"DELETE FROM image_features WHERE file_path IN ({placeholders})",
                        chunk
                    )
                    removed += result.rowcount

            if removed:
                logger.info(f"Cleaned {removed} expired cache entries")
            return removed
        except Exception as e:
            logger.warning(f"Failed to clean expired cache entries: {e}")
            return 0

    def statistics(self) -> CacheStatistics:
        """
        Get cache statistics.

        Returns:
            CacheStatistics with entry counts and database size
        """
        db_path = self.conn_mgr.db_path
        try:
            with self.conn_mgr.connection() as conn:
                row = conn.execute("""
                    SELECT
                        COUNT(*) AS total_entries,
                        COUNT(CASE WHEN feature_length > 0 THEN 1 END) AS embedding_entries
                    FROM image_features
                """).fetchone()

            db_size = os.path.getsize(db_path) if os.path.exists(db_path) else 0

            return CacheStatistics(
                total_entries=row['total_entries'],
                embedding_entries=row['embedding_entries'],
                db_size_bytes=db_size,
                db_path=db_path,
            )
        except Exception as e:
            logger.warning(f"Failed to get cache statistics: {e}")
            return CacheStatistics(db_path=db_path)

    def clear(self):
        """Remove every cached entry."""
        try:
            with self.conn_mgr.connection() as conn:
                conn.execute("DELETE FROM image_features")
            # VACUUM outside transaction
            self.vacuum()
        except Exception as e:
            logger.warning(f"Failed to clear cache: {e}")

    def vacuum(self):
        """Compact the database file."""
        try:
            self.conn_mgr.execute_outside_transaction("VACUUM")
        except Exception as e:
            logger.debug(f"Failed to vacuum database: {e}")


__all__ = ['MaintenanceOperations']
