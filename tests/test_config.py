"""Settings, clustering options and match policy."""

import pytest
from pydantic import ValidationError

from faceroster.ai.embedding import Metric
from faceroster.ai.face_cluster import ClusteringAlgorithm
from faceroster.config import ClusteringOptions, MatchPolicy, Settings
from faceroster.errors import ConfigurationError
from faceroster.models.face import RecognitionMode


def test_defaults():
    s = Settings()
    options = s.clustering_options()
    assert options.algorithm is ClusteringAlgorithm.CHINESE_WHISPERS
    assert options.threshold == pytest.approx(0.40)
    assert options.supplementary_weight == pytest.approx(0.3)
    assert s.match_policy() == MatchPolicy(threshold=0.45, min_confidence=0.60, min_confidence_gap=0.05)


def test_clothing_mode_uses_its_own_threshold():
    s = Settings(recognition_mode=RecognitionMode.FACE_AND_CLOTHING)
    assert s.effective_clustering_threshold == pytest.approx(0.48)
    assert s.clustering_options().recognition_mode is RecognitionMode.FACE_AND_CLOTHING


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FACEROSTER_CLUSTERING_ALGORITHM", "quality_gated")
    monkeypatch.setenv("FACEROSTER_FACE_ONLY_CLUSTERING_THRESHOLD", "0.35")
    monkeypatch.setenv("FACEROSTER_METRIC", "euclidean")
    monkeypatch.setenv("FACEROSTER_WHISPERS_SEED", "17")

    options = Settings().clustering_options()

    assert options.algorithm is ClusteringAlgorithm.QUALITY_GATED
    assert options.threshold == pytest.approx(0.35)
    assert options.metric is Metric.EUCLIDEAN
    assert options.seed == 17


@pytest.mark.parametrize(
    "field, value",
    [("face_only_clustering_threshold", -0.1), ("face_weight", 1.5), ("whispers_max_iterations", 0)],
)
def test_settings_reject_invalid_values(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"threshold": -1.0},
        {"threshold": float("nan")},
        {"merge_margin": -0.1},
        {"quality_gate": 1.2},
        {"max_iterations": 0},
        {"face_weight": 0.0, "supplementary_weight": 0.0},
        {"algorithm": "spectral"},
        {"metric": "manhattan"},
    ],
)
def test_clustering_options_reject_invalid_values(kwargs):
    with pytest.raises(ConfigurationError):
        ClusteringOptions(**kwargs)


def test_clustering_options_accept_names():
    options = ClusteringOptions(algorithm="hierarchical_median", metric="euclidean", recognition_mode="face_and_clothing")
    assert options.algorithm is ClusteringAlgorithm.HIERARCHICAL_MEDIAN
    distance = options.make_distance()
    assert distance.metric is Metric.EUCLIDEAN
    assert distance.mode is RecognitionMode.FACE_AND_CLOTHING


def test_match_policy_validation():
    with pytest.raises(ConfigurationError):
        MatchPolicy(min_confidence=1.5)
    with pytest.raises(ConfigurationError):
        MatchPolicy(threshold=-0.2)
