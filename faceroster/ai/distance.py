"""Face-to-face and group-to-group distances.

A ``FaceDistance`` compares two detected faces using their primary (face-only)
embeddings and, in face+clothing mode, blends in the supplementary embedding:

    combined = face_weight * d_face + supplementary_weight * d_supplementary

If either face has no usable supplementary embedding the plain face distance
is used. If either primary embedding is unusable there is no distance (None).
"""

import logging
import math
from enum import Enum
from typing import Iterable, Sequence

import numpy as np

from faceroster.ai.embedding import EmbeddingCache, Metric, compute_distance
from faceroster.models.face import DetectedFace, RecognitionMode
from faceroster.utils.validation import require_weights

logger = logging.getLogger(__name__)

SUPPLEMENTARY_KEY = "supplementary"


class Linkage(str, Enum):
    """How a cluster-to-cluster distance is derived from member pair distances."""

    AVERAGE = "average"
    MEDIAN = "median"


class FaceDistance:
    """Distance function bound to one embedding cache."""

    def __init__(
        self,
        cache: EmbeddingCache | None = None,
        metric: Metric = Metric.COSINE,
        mode: RecognitionMode = RecognitionMode.FACE_ONLY,
        face_weight: float = 0.7,
        supplementary_weight: float = 0.3,
    ):
        self.cache = cache if cache is not None else EmbeddingCache()
        self.metric = Metric(metric)
        self.mode = RecognitionMode(mode)
        self.face_weight, self.supplementary_weight = require_weights(face_weight, supplementary_weight)

    def primary(self, a: DetectedFace, b: DetectedFace) -> float | None:
        """Face-only distance."""
        va = self.cache.get(a.id, a.embedding)
        vb = self.cache.get(b.id, b.embedding)
        if va is None or vb is None:
            return None
        return compute_distance(va, vb, self.metric)

    def supplementary(self, a: DetectedFace, b: DetectedFace) -> float | None:
        if a.supplementary_embedding is None or b.supplementary_embedding is None:
            return None
        va = self.cache.get((a.id, SUPPLEMENTARY_KEY), a.supplementary_embedding)
        vb = self.cache.get((b.id, SUPPLEMENTARY_KEY), b.supplementary_embedding)
        if va is None or vb is None:
            return None
        return compute_distance(va, vb, self.metric)

    def between(self, a: DetectedFace, b: DetectedFace) -> float | None:
        """Distance used for clustering (dual-embedding aware)."""
        face_distance = self.primary(a, b)
        if face_distance is None:
            return None
        if self.mode is not RecognitionMode.FACE_AND_CLOTHING:
            return face_distance

        clothing_distance = self.supplementary(a, b)
        if clothing_distance is None:
            return face_distance
        return self.face_weight * face_distance + self.supplementary_weight * clothing_distance


def pair_distances(
    group_a: Iterable[DetectedFace],
    group_b: Sequence[DetectedFace],
    distance: FaceDistance,
) -> list[float]:
    """All defined cross-group pair distances."""
    values = []
    for a in group_a:
        for b in group_b:
            d = distance.between(a, b)
            if d is not None:
                values.append(d)
    return values


def average_linkage(group_a, group_b, distance: FaceDistance) -> float:
    """Mean pairwise distance between two face collections (inf if none defined)."""
    values = pair_distances(group_a, list(group_b), distance)
    if not values:
        return math.inf
    return float(sum(values) / len(values))


def median_linkage(group_a, group_b, distance: FaceDistance) -> float:
    """Median pairwise distance between two face collections (inf if none defined)."""
    values = pair_distances(group_a, list(group_b), distance)
    if not values:
        return math.inf
    return float(np.median(values))


def linkage_distance(group_a, group_b, distance: FaceDistance, linkage: Linkage = Linkage.AVERAGE) -> float:
    if linkage is Linkage.MEDIAN:
        return median_linkage(group_a, group_b, distance)
    return average_linkage(group_a, group_b, distance)


def distance_matrix(faces: Sequence[DetectedFace], distance: FaceDistance) -> np.ndarray:
    """Symmetric (n, n) matrix of face distances; NaN where undefined and on the diagonal."""
    n = len(faces)
    matrix = np.full((n, n), np.nan, dtype=np.float64)
    for i in range(n):
        for j in range(i + 1, n):
            d = distance.between(faces[i], faces[j])
            if d is not None:
                matrix[i, j] = matrix[j, i] = d
    return matrix
