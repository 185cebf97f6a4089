"""Shared fixtures: face factories and a table-driven distance."""

import math

import numpy as np
import pytest

from faceroster.ai.distance import FaceDistance
from faceroster.ai.embedding import embedding_to_bytes
from faceroster.models.face import DetectedFace


def _at_angle(degrees: float) -> np.ndarray:
    """Unit 2-D vector; cosine distance between two of them is 1 - cos(delta)."""
    rad = math.radians(degrees)
    return np.array([math.cos(rad), math.sin(rad)], dtype=np.float32)


class TableDistance(FaceDistance):
    """Distances looked up by image_path pair, for hand-written scenarios.

    Pairs missing from the table are ``default`` apart.
    """

    def __init__(self, table: dict[tuple[str, str], float], default: float | None = 1.0):
        super().__init__()
        self.table = {frozenset(pair): d for pair, d in table.items()}
        self.default = default

    def between(self, a, b):
        return self.table.get(frozenset((a.image_path, b.image_path)), self.default)


@pytest.fixture
def make_face():
    def factory(vector=(1.0, 0.0), image_path="photo.jpg", quality=None, supplementary=None, **kwargs):
        return DetectedFace(
            image_path=image_path,
            embedding=embedding_to_bytes(np.asarray(vector, dtype=np.float32)),
            supplementary_embedding=(
                embedding_to_bytes(np.asarray(supplementary, dtype=np.float32))
                if supplementary is not None else None
            ),
            quality_score=quality,
            **kwargs,
        )
    return factory


@pytest.fixture
def named_faces(make_face):
    """Faces called by name (image_path), for use with TableDistance."""
    def factory(*names, quality=None):
        return [make_face(image_path=name, quality=quality) for name in names]
    return factory


@pytest.fixture
def table_distance():
    return TableDistance


@pytest.fixture
def at_angle():
    return _at_angle
