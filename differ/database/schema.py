"""
Database schema initialization and migrations.

Provides schema versioning and table creation for the per-folder cache.
"""

from __future__ import annotations

import sqlite3

from ..config import CACHE_SCHEMA_VERSION


# Schema version - increment when changing table structure
SCHEMA_VERSION = CACHE_SCHEMA_VERSION


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the stored schema version, 0 if none is recorded."""
    result = conn.execute(
        "SELECT MAX(version) AS version FROM database_version"
    ).fetchone()
    return int(result['version']) if result and result['version'] is not None else 0


def initialize_schema(conn: sqlite3.Connection) -> None:
    """
    Initialize database schema with versioning support.

    Creates tables and indexes if they don't exist. Drops and recreates the
    feature table if the stored schema version is older; the cache is
    derived data, so nothing is migrated.

    Args:
        conn: Active database connection

    Tables created:
        - database_version: Single-row schema version tracking
        - image_features: Cached embeddings keyed by absolute file path
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS database_version (
            version INTEGER PRIMARY KEY,
            applied_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
        )
    """)

    current_version = get_schema_version(conn)

    if 0 < current_version < SCHEMA_VERSION:
        conn.execute("DROP TABLE IF EXISTS image_features")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS image_features (
            file_path TEXT PRIMARY KEY,
            file_name TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            last_modified INTEGER NOT NULL,

            -- Raw little-endian float32 vector and its element count
            features BLOB NOT NULL,
            feature_length INTEGER NOT NULL,

            created_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
            updated_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_image_features_last_modified
        ON image_features(last_modified)
    """)

    if current_version != SCHEMA_VERSION:
        conn.execute("DELETE FROM database_version")
        conn.execute(
            "INSERT INTO database_version (version) VALUES (?)",
            (SCHEMA_VERSION,)
        )


__all__ = ['SCHEMA_VERSION', 'get_schema_version', 'initialize_schema']
