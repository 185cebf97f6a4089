"""Embedding vectors: blob codec, per-run decode cache and distance metrics.

Embeddings travel as opaque blobs (little-endian float32 bytes) and are turned
into 1-D numpy vectors once per comparison run.
"""

import logging
from enum import Enum
from typing import Hashable

import numpy as np

from faceroster.errors import EmbeddingDecodeError

logger = logging.getLogger(__name__)

EMBEDDING_DTYPE = np.dtype("<f4")


class Metric(str, Enum):
    """Dissimilarity between two embeddings. Lower = more alike."""

    COSINE = "cosine"  # 1 - cos(a, b), for L2-normalized or raw vectors
    EUCLIDEAN = "euclidean"


def embedding_to_bytes(embedding: np.ndarray) -> bytes:
    """Serialize a numpy embedding to bytes for storage."""
    return np.asarray(embedding, dtype=EMBEDDING_DTYPE).ravel().tobytes()


def bytes_to_embedding(data: bytes) -> np.ndarray:
    """Deserialize bytes back to a numpy embedding.

    Raises:
        EmbeddingDecodeError: empty blob, truncated float, or NaN/inf values.
    """
    if not data:
        raise EmbeddingDecodeError("empty embedding blob")
    if len(data) % EMBEDDING_DTYPE.itemsize:
        raise EmbeddingDecodeError(
            f"embedding blob length {len(data)} is not a multiple of {EMBEDDING_DTYPE.itemsize}"
        )
    vector = np.frombuffer(data, dtype=EMBEDDING_DTYPE)
    if not np.all(np.isfinite(vector)):
        raise EmbeddingDecodeError("embedding contains non-finite values")
    return vector


def normalize(embedding: np.ndarray) -> np.ndarray:
    """Return an L2-normalized copy (zero vectors are returned unchanged)."""
    norm = np.linalg.norm(embedding)
    if norm > 0:
        return embedding / norm
    return embedding


def compute_distance(a: np.ndarray, b: np.ndarray, metric: Metric = Metric.COSINE) -> float | None:
    """Distance between two vectors, or None when it is undefined.

    Undefined means: different lengths, or a zero-norm vector under cosine.
    """
    if a.shape != b.shape:
        return None

    if metric == Metric.EUCLIDEAN:
        return float(np.linalg.norm(a.astype(np.float64) - b.astype(np.float64)))

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0 or norm_b == 0:
        return None
    similarity = float(np.dot(a.astype(np.float64), b.astype(np.float64))) / (norm_a * norm_b)
    return max(0.0, 1.0 - similarity)


def confidence(distance: float) -> float:
    """Map a distance to a 0-1 confidence (higher = more confident)."""
    return max(0.0, 1.0 - distance)


class EmbeddingCache:
    """Memoizes blob decoding for the lifetime of one clustering or matching run.

    Keys are caller-chosen (face id, ``(face_id, "supplementary")``, embedding
    id...). A blob that fails to decode is remembered as unusable, so a corrupt
    record costs one decode attempt per run.
    """

    def __init__(self, expected_dim: int | None = None):
        self._vectors: dict[Hashable, np.ndarray | None] = {}
        self._expected_dim = expected_dim
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, blob: bytes | None) -> np.ndarray | None:
        """Return the decoded vector for ``key``, decoding ``blob`` on first use."""
        if key in self._vectors:
            self.hits += 1
            return self._vectors[key]

        self.misses += 1
        vector = None
        if blob:
            try:
                vector = bytes_to_embedding(blob)
                if self._expected_dim is not None and vector.shape[0] != self._expected_dim:
                    raise EmbeddingDecodeError(
                        f"expected {self._expected_dim} dimensions, got {vector.shape[0]}"
                    )
            except EmbeddingDecodeError as e:
                logger.debug("Unusable embedding for %s: %s", key, e)
                vector = None

        self._vectors[key] = vector
        return vector

    def clear(self) -> None:
        self._vectors.clear()

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._vectors
