"""Vector encoding and similarity helpers."""

from __future__ import annotations

from typing import Sequence

import numpy as np

# Fixed-width little-endian float32, 4 bytes per dimension
VECTOR_DTYPE = np.dtype("<f4")


def to_float32_bytes(values: Sequence[float] | np.ndarray) -> bytes:
    """Encode a vector as little-endian float32 bytes."""
    arr = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0)
    return arr.astype(VECTOR_DTYPE).tobytes()


def from_float32_bytes(blob: bytes | None) -> np.ndarray:
    """Decode bytes written by :func:`to_float32_bytes`.

    Returns an empty array for missing or misaligned blobs.
    """
    if not blob or len(blob) % VECTOR_DTYPE.itemsize != 0:
        return np.array([], dtype=np.float32)
    return np.frombuffer(blob, dtype=VECTOR_DTYPE).astype(np.float32)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity in ``[-1, 1]``.

    Vectors of different length are compared over their common prefix.
    Zero or empty vectors score 0.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    size = min(va.size, vb.size)
    if size == 0:
        return 0.0
    va = va[:size]
    vb = vb[:size]
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    score = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))
