"""
Features package for differ.

Provides per-image feature extraction and scoring:
- find_image_files / probe_image_file: Discover image files and read metadata
- HashExtractor / compute_perceptual_hash: 64-bit DCT perceptual fingerprints
- EmbeddingExtractor: L2-normalized deep embeddings from an ONNX model
- SimilarityScorer: 0-100 scores with embedding-over-hash precedence
- ThumbnailCache / load_thumbnail: Downscaled rasters for display
"""

from __future__ import annotations

from .file_discovery import (
    find_image_files,
    probe_image_file,
    is_supported_image,
    supported_extensions,
)
from .hashing import (
    HashExtractor,
    compute_perceptual_hash,
    hamming_distance,
    fingerprint_to_hex,
    hex_to_fingerprint,
)
from .embedding import EmbeddingExtractor, normalize_l2, resolve_model_path
from .similarity import SimilarityScorer, hash_similarity, embedding_similarity
from .thumbnails import ThumbnailCache, load_thumbnail

from .dependencies import HAS_HEIF_SUPPORT, HAS_ONNXRUNTIME


def has_heif_support() -> bool:
    """Check if HEIC/HEIF support is available."""
    return HAS_HEIF_SUPPORT


def has_onnxruntime() -> bool:
    """Check if the embedding runtime is installed."""
    return HAS_ONNXRUNTIME


__all__ = [
    # File discovery
    'find_image_files',
    'probe_image_file',
    'is_supported_image',
    'supported_extensions',
    # Hashing
    'HashExtractor',
    'compute_perceptual_hash',
    'hamming_distance',
    'fingerprint_to_hex',
    'hex_to_fingerprint',
    # Embeddings
    'EmbeddingExtractor',
    'normalize_l2',
    'resolve_model_path',
    # Scoring
    'SimilarityScorer',
    'hash_similarity',
    'embedding_similarity',
    # Thumbnails
    'ThumbnailCache',
    'load_thumbnail',
    # Feature detection
    'has_heif_support',
    'has_onnxruntime',
]
