"""
Unit tests for data models (ImageRecord, CacheStatistics, search results).
"""

import numpy as np
import pytest
from PIL import Image

from differ.models import (
    CacheStatistics,
    ImageRecord,
    SearchOutcome,
    SearchResult,
    format_size,
)


class TestFormatSize:
    """Test the format_size utility function."""

    def test_bytes(self):
        assert format_size(500) == "500.0 B"

    def test_kilobytes(self):
        assert format_size(2048) == "2.0 KB"

    def test_megabytes(self):
        assert format_size(5242880) == "5.0 MB"

    def test_gigabytes(self):
        assert format_size(3221225472) == "3.0 GB"

    def test_zero(self):
        assert format_size(0) == "0.0 B"


class TestImageRecord:
    """Test ImageRecord data class."""

    def test_creation(self):
        record = ImageRecord(path="/test/image.jpg", file_size=1024, last_modified=1.5)
        assert record.path == "/test/image.jpg"
        assert record.file_size == 1024
        assert record.embedding is None
        assert record.perceptual_hash is None
        assert record.similarity == 0.0

    def test_file_name_defaults_to_basename(self):
        record = ImageRecord(path="/path/to/image.jpg")
        assert record.file_name == "image.jpg"

    def test_directory_property(self):
        record = ImageRecord(path="/path/to/image.jpg")
        assert record.directory == "/path/to"

    def test_file_size_formatted(self):
        record = ImageRecord(path="/test.jpg", file_size=1048576)
        assert record.file_size_formatted == "1.0 MB"

    def test_representations(self):
        record = ImageRecord(path="/test.jpg")
        assert not record.is_searchable

        record.perceptual_hash = 0
        assert record.has_hash
        assert record.is_searchable

        record.perceptual_hash = None
        record.embedding = np.array([], dtype=np.float32)
        assert not record.has_embedding
        assert not record.is_searchable

        record.embedding = np.ones(4, dtype=np.float32) / 2
        assert record.has_embedding
        assert record.is_searchable

    def test_equality_by_path(self):
        a = ImageRecord(path="/same.jpg", file_size=1)
        b = ImageRecord(path="/same.jpg", file_size=2)
        assert a == b
        assert len({a, b}) == 1
        assert a != ImageRecord(path="/other.jpg")

    def test_release_thumbnail(self):
        record = ImageRecord(path="/test.jpg", thumbnail=Image.new('RGB', (4, 4)))
        record.release_thumbnail()
        assert record.thumbnail is None

    def test_to_dict(self):
        record = ImageRecord(
            path="/path/to/image.jpg",
            file_size=2048,
            embedding=np.ones(8, dtype=np.float32),
            perceptual_hash=0xFF,
            similarity=87.456,
            from_cache=True,
        )
        data = record.to_dict()
        assert data['file_name'] == "image.jpg"
        assert data['file_size_formatted'] == "2.0 KB"
        assert data['embedding_length'] == 8
        assert len(data['perceptual_hash']) == 16
        assert data['similarity'] == 87.46
        assert data['from_cache'] is True

    def test_to_dict_without_features(self):
        data = ImageRecord(path="/x.png").to_dict()
        assert data['embedding_length'] == 0
        assert data['perceptual_hash'] is None


class TestCacheStatistics:
    """Test CacheStatistics data class."""

    def test_size_formatting(self):
        stats = CacheStatistics(total_entries=3, embedding_entries=3, db_size_bytes=2 * 1024 * 1024)
        assert stats.db_size_formatted == "2.0 MB"
        assert stats.to_dict()['db_size_mb'] == 2.0


class TestSearchOutcome:
    """Test search result containers."""

    def test_count_and_path(self):
        record = ImageRecord(path="/a.png")
        outcome = SearchOutcome(results=[SearchResult(record=record, score=91.0)], status="Found 1")
        assert outcome.count == 1
        assert outcome.ok
        assert outcome.results[0].path == "/a.png"

    def test_defaults(self):
        outcome = SearchOutcome()
        assert outcome.count == 0
        assert outcome.ok
        assert outcome.status == ""
