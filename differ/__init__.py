"""
differ
======
Find visually similar images in a folder.

Features:
- Deep embeddings from an ONNX vision model (GPU with CPU fallback)
- 64-bit DCT perceptual hashes as a fallback representation
- Per-folder SQLite cache keyed on file size and modification time
- Serialized inference lane with parallel hashing and thumbnail loading
- Threshold search ranked by similarity (0-100)
- CLI for automation and cache maintenance
"""

__version__ = "1.0.0"

from .models import ImageRecord, CacheEntry, CacheStatistics, SearchResult, SearchOutcome
from .config import IMAGE_EXTENSIONS, DEFAULT_THRESHOLD
from .features import (
    EmbeddingExtractor,
    HashExtractor,
    SimilarityScorer,
    ThumbnailCache,
    find_image_files,
    compute_perceptual_hash,
    hash_similarity,
    embedding_similarity,
)
from .database import FeatureCache, CacheStats, open_cache
from .pipeline import ExtractionPipeline, PipelineSettings, PipelineState, ScanSummary

__all__ = [
    "ImageRecord",
    "CacheEntry",
    "CacheStatistics",
    "SearchResult",
    "SearchOutcome",
    "IMAGE_EXTENSIONS",
    "DEFAULT_THRESHOLD",
    "EmbeddingExtractor",
    "HashExtractor",
    "SimilarityScorer",
    "ThumbnailCache",
    "find_image_files",
    "compute_perceptual_hash",
    "hash_similarity",
    "embedding_similarity",
    "FeatureCache",
    "CacheStats",
    "open_cache",
    "ExtractionPipeline",
    "PipelineSettings",
    "PipelineState",
    "ScanSummary",
]
