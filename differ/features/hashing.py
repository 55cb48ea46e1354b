"""
Hashing module for the features package.

Computes 64-bit perceptual fingerprints from pixel content with a reduced
2-D DCT, and converts fingerprints to and from their hex form.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Optional

from ..config import HASH_SIZE, HASH_IMAGE_SIZE, HASH_BITS
from .dependencies import Image, np, imagehash, _logger


# Cosine table [x, u] for the 32-point DCT, restricted to the first 8
# frequencies. Depends only on the sizes, so it is built once.
_COS_TABLE = np.cos(
    (2 * np.arange(HASH_IMAGE_SIZE)[:, None] + 1)
    * np.arange(HASH_SIZE)[None, :]
    * math.pi / (2 * HASH_IMAGE_SIZE)
)

_coefficient_scale = np.full(HASH_SIZE, math.sqrt(2.0 / HASH_IMAGE_SIZE))
_coefficient_scale[0] = math.sqrt(1.0 / HASH_IMAGE_SIZE)
_SCALE = np.outer(_coefficient_scale, _coefficient_scale)


def low_frequency_dct(pixels: np.ndarray) -> np.ndarray:
    """
    Compute the top-left 8x8 block of the orthonormal 2-D DCT-II.

    Only the 64 needed coefficients are produced: two matrix products against
    the precomputed cosine table instead of a full 32x32 transform.

    Args:
        pixels: 32x32 array of luminance values (rows x columns)

    Returns:
        8x8 array of coefficients, [u, v] = (row frequency, column frequency)
    """
    return _SCALE * (_COS_TABLE.T @ pixels @ _COS_TABLE)


def hash_image(img: Image.Image) -> int:
    """
    Calculate the perceptual fingerprint of an already opened image.

    Args:
        img: PIL image in any mode

    Returns:
        64-bit fingerprint; bit i is set when low-frequency coefficient i
        (row-major) is above the median of all 64 coefficients
    """
    gray = img.convert('L').resize(
        (HASH_IMAGE_SIZE, HASH_IMAGE_SIZE), Image.Resampling.BICUBIC
    )
    pixels = np.asarray(gray, dtype=np.float64)

    coefficients = low_frequency_dct(pixels).ravel()
    median = np.sort(coefficients)[HASH_BITS // 2]

    bits = coefficients > median
    return int.from_bytes(np.packbits(bits, bitorder='little').tobytes(), 'little')


def compute_perceptual_hash(filepath: str | Path) -> int:
    """
    Calculate the perceptual fingerprint of an image file.

    Args:
        filepath: Path to the image

    Returns:
        64-bit fingerprint, or 0 if the image could not be decoded. Zero is
        also a valid (degenerate) fingerprint, so it is not a reliable error
        marker.
    """
    try:
        with Image.open(filepath) as img:
            img.load()  # Force load to detect truncated/corrupt images early
            return hash_image(img)
    except Exception as e:
        _logger.debug(f"Perceptual hash calculation failed for {filepath}: {e}")
        return 0


def hamming_distance(hash1: int, hash2: int) -> int:
    """Number of differing bits between two fingerprints."""
    return bin((hash1 ^ hash2) & ((1 << HASH_BITS) - 1)).count('1')


def fingerprint_to_imagehash(fingerprint: int) -> imagehash.ImageHash:
    """Wrap a fingerprint as an 8x8 ``imagehash.ImageHash`` bit matrix."""
    bits = np.array(
        [(fingerprint >> i) & 1 for i in range(HASH_BITS)], dtype=bool
    ).reshape(HASH_SIZE, HASH_SIZE)
    return imagehash.ImageHash(bits)


def fingerprint_to_hex(fingerprint: int) -> str:
    """Render a fingerprint as the 16-character hex string imagehash uses."""
    return str(fingerprint_to_imagehash(fingerprint))


def hex_to_fingerprint(hex_string: str) -> int:
    """Parse a hex string produced by :func:`fingerprint_to_hex`."""
    bits = imagehash.hex_to_hash(hex_string).hash.ravel()
    fingerprint = 0
    for i, bit in enumerate(bits):
        if bit:
            fingerprint |= 1 << i
    return fingerprint


class HashExtractor:
    """
    Stateless, reentrant perceptual-hash extractor.

    Safe to call from any number of worker threads at once.
    """

    name = "dct-phash"
    bits = HASH_BITS

    def hash(self, filepath: str | Path) -> int:
        """Fingerprint for ``filepath`` (0 on decode failure)."""
        return compute_perceptual_hash(filepath)

    def try_hash(self, filepath: str | Path) -> Optional[int]:
        """
        Fingerprint for ``filepath``, or None if the file cannot be decoded.

        Unlike :meth:`hash` this distinguishes failures from the all-zero
        fingerprint, which the pipeline needs to decide whether a record has
        any representation at all.
        """
        try:
            with Image.open(filepath) as img:
                img.load()
                return hash_image(img)
        except Exception as e:
            _logger.warning(f"Could not hash {filepath}: {e}")
            return None


__all__ = [
    'HashExtractor',
    'compute_perceptual_hash',
    'hash_image',
    'low_frequency_dct',
    'hamming_distance',
    'fingerprint_to_imagehash',
    'fingerprint_to_hex',
    'hex_to_fingerprint',
]
