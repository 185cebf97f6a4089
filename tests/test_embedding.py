"""Embedding codec, metrics, decode cache and face distance."""

import math
import struct

import numpy as np
import pytest

from faceroster.ai.distance import FaceDistance, Linkage, average_linkage, linkage_distance, median_linkage
from faceroster.ai.embedding import (
    EmbeddingCache,
    Metric,
    bytes_to_embedding,
    compute_distance,
    confidence,
    embedding_to_bytes,
    normalize,
)
from faceroster.errors import ConfigurationError, EmbeddingDecodeError
from faceroster.models.face import RecognitionMode


# --- Codec ---


def test_blob_is_little_endian_float32():
    blob = embedding_to_bytes(np.array([1.0, -2.5]))
    assert blob == struct.pack("<2f", 1.0, -2.5)
    assert bytes_to_embedding(blob).tolist() == [1.0, -2.5]


@pytest.mark.parametrize("blob", [b"", b"\x00\x00\x80", struct.pack("<2f", 1.0, float("nan"))])
def test_decode_rejects_bad_blobs(blob):
    with pytest.raises(EmbeddingDecodeError):
        bytes_to_embedding(blob)


def test_normalize():
    assert np.allclose(normalize(np.array([3.0, 4.0])), [0.6, 0.8])
    assert normalize(np.zeros(3)).tolist() == [0.0, 0.0, 0.0]


# --- Metrics ---


def test_cosine_distance(at_angle):
    a = at_angle(0)
    assert compute_distance(a, a) == pytest.approx(0.0, abs=1e-6)
    assert compute_distance(a, at_angle(90)) == pytest.approx(1.0, abs=1e-6)
    assert compute_distance(a, at_angle(60)) == pytest.approx(0.5, abs=1e-6)


def test_cosine_ignores_magnitude():
    assert compute_distance(np.array([1.0, 1.0]), np.array([5.0, 5.0])) == pytest.approx(0.0, abs=1e-6)


def test_euclidean_distance():
    d = compute_distance(np.array([0.0, 0.0], dtype=np.float32), np.array([3.0, 4.0], dtype=np.float32), Metric.EUCLIDEAN)
    assert d == pytest.approx(5.0)


def test_distance_is_symmetric():
    rng = np.random.default_rng(3)
    for _ in range(20):
        a, b = rng.normal(size=8).astype(np.float32), rng.normal(size=8).astype(np.float32)
        for metric in Metric:
            assert compute_distance(a, b, metric) == pytest.approx(compute_distance(b, a, metric))


def test_undefined_distances():
    assert compute_distance(np.ones(3), np.ones(4)) is None
    assert compute_distance(np.zeros(3), np.ones(3)) is None
    assert compute_distance(np.ones(3), np.ones(4), Metric.EUCLIDEAN) is None


def test_confidence_is_clamped():
    assert confidence(0.2) == pytest.approx(0.8)
    assert confidence(1.7) == 0.0


# --- Cache ---


def test_cache_decodes_once():
    cache = EmbeddingCache()
    blob = embedding_to_bytes(np.array([1.0, 2.0]))
    first = cache.get("fac_1", blob)
    second = cache.get("fac_1", blob)
    assert first is second
    assert (cache.hits, cache.misses) == (1, 1)
    assert "fac_1" in cache and len(cache) == 1


def test_cache_remembers_corrupt_blob():
    cache = EmbeddingCache()
    assert cache.get("bad", b"\x01\x02\x03") is None
    assert cache.get("bad", b"\x01\x02\x03") is None
    assert (cache.hits, cache.misses) == (1, 1)


def test_cache_missing_blob_and_dimension_check():
    cache = EmbeddingCache(expected_dim=3)
    assert cache.get("none", None) is None
    assert cache.get("short", embedding_to_bytes(np.ones(2))) is None
    assert cache.get("ok", embedding_to_bytes(np.ones(3))) is not None
    cache.clear()
    assert len(cache) == 0


# --- Face distance ---


def test_face_distance_primary_only(make_face, at_angle):
    a = make_face(at_angle(0), supplementary=at_angle(90))
    b = make_face(at_angle(60), supplementary=at_angle(90))
    assert FaceDistance().between(a, b) == pytest.approx(0.5, abs=1e-6)


def test_face_distance_blends_supplementary(make_face, at_angle):
    a = make_face(at_angle(0), supplementary=at_angle(0))
    b = make_face(at_angle(60), supplementary=at_angle(90))
    distance = FaceDistance(mode=RecognitionMode.FACE_AND_CLOTHING, face_weight=0.7, supplementary_weight=0.3)
    assert distance.between(a, b) == pytest.approx(0.7 * 0.5 + 0.3 * 1.0, abs=1e-6)


def test_face_distance_falls_back_without_supplementary(make_face, at_angle):
    a = make_face(at_angle(0), supplementary=at_angle(0))
    b = make_face(at_angle(60))
    distance = FaceDistance(mode=RecognitionMode.FACE_AND_CLOTHING)
    assert distance.between(a, b) == pytest.approx(0.5, abs=1e-6)


def test_corrupt_primary_has_no_distance(make_face):
    good = make_face((1.0, 0.0))
    bad = make_face((1.0, 0.0))
    bad.embedding = b"\x00"
    assert FaceDistance().between(good, bad) is None


def test_both_weights_zero_is_rejected():
    with pytest.raises(ConfigurationError):
        FaceDistance(face_weight=0, supplementary_weight=0)


def test_linkages(named_faces, table_distance):
    a, b, c = named_faces("A", "B", "C")
    distance = table_distance({("A", "B"): 0.2, ("A", "C"): 0.3, ("B", "C"): None}, default=None)
    # undefined pairs are skipped
    assert average_linkage([a], [b, c], distance) == pytest.approx(0.25)
    assert median_linkage([c], [a, b], distance) == pytest.approx(0.3)
    assert linkage_distance([b], [c], distance, Linkage.MEDIAN) == math.inf
