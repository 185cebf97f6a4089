"""faceroster configuration.

Core functions take their tuning values as explicit arguments. ``Settings``
gathers the application-level defaults (overridable through ``FACEROSTER_*``
environment variables) and turns them into the option objects the service
layer passes down.
"""

from dataclasses import dataclass

from pydantic import Field
from pydantic_settings import BaseSettings

from faceroster.ai.distance import FaceDistance
from faceroster.ai.embedding import EmbeddingCache, Metric
from faceroster.ai.face_cluster import ClusteringAlgorithm
from faceroster.errors import ConfigurationError
from faceroster.models.face import RecognitionMode
from faceroster.utils.validation import (
    require_positive_int,
    require_threshold,
    require_unit_interval,
    require_weights,
)


@dataclass(frozen=True)
class ClusteringOptions:
    """Everything one clustering run needs besides the faces."""

    algorithm: ClusteringAlgorithm = ClusteringAlgorithm.CHINESE_WHISPERS
    threshold: float = 0.40
    quality_gate: float = 0.6
    max_iterations: int = 100
    quality_edge_weight: float = 0.3
    use_quality_weighted_edges: bool = True
    seed: int | None = None
    metric: Metric = Metric.COSINE
    recognition_mode: RecognitionMode = RecognitionMode.FACE_ONLY
    face_weight: float = 0.7
    supplementary_weight: float = 0.3
    merge_margin: float = 0.15

    def __post_init__(self):
        for name, enum_type in (
            ("algorithm", ClusteringAlgorithm),
            ("metric", Metric),
            ("recognition_mode", RecognitionMode),
        ):
            try:
                object.__setattr__(self, name, enum_type(getattr(self, name)))
            except ValueError:
                raise ConfigurationError(f"invalid {name}: {getattr(self, name)!r}") from None
        require_threshold(self.threshold)
        require_threshold(self.merge_margin, "merge_margin")
        require_unit_interval(self.quality_gate, "quality_gate")
        require_unit_interval(self.quality_edge_weight, "quality_edge_weight")
        require_positive_int(self.max_iterations, "max_iterations")
        require_weights(self.face_weight, self.supplementary_weight)

    def make_distance(self, cache: EmbeddingCache | None = None) -> FaceDistance:
        return FaceDistance(
            cache=cache,
            metric=self.metric,
            mode=self.recognition_mode,
            face_weight=self.face_weight,
            supplementary_weight=self.supplementary_weight,
        )


@dataclass(frozen=True)
class MatchPolicy:
    """Known-person auto-match policy.

    A match is accepted only when its confidence reaches ``min_confidence`` and
    it beats the runner-up by at least ``min_confidence_gap``.
    """

    threshold: float = 0.45
    min_confidence: float = 0.60
    min_confidence_gap: float = 0.05

    def __post_init__(self):
        require_threshold(self.threshold)
        require_unit_interval(self.min_confidence, "min_confidence")
        require_unit_interval(self.min_confidence_gap, "min_confidence_gap")


class Settings(BaseSettings):
    # Recognition
    recognition_mode: RecognitionMode = RecognitionMode.FACE_ONLY
    metric: Metric = Metric.COSINE
    face_weight: float = Field(default=0.7, ge=0.0, le=1.0)  # clothing weight = 1 - face_weight

    # Clustering
    face_only_clustering_threshold: float = Field(default=0.40, ge=0.0)
    face_clothing_clustering_threshold: float = Field(default=0.48, ge=0.0)
    clustering_algorithm: ClusteringAlgorithm = ClusteringAlgorithm.CHINESE_WHISPERS
    quality_gate_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    use_quality_weighted_edges: bool = True
    quality_edge_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    whispers_max_iterations: int = Field(default=100, ge=1)
    whispers_seed: int | None = None
    merge_suggestion_margin: float = Field(default=0.15, ge=0.0)

    # Known people
    known_people_threshold: float = Field(default=0.45, ge=0.0)
    known_people_min_confidence: float = Field(default=0.60, ge=0.0, le=1.0)
    known_people_min_confidence_gap: float = Field(default=0.05, ge=0.0, le=1.0)
    known_people_max_results: int = Field(default=5, ge=1)

    model_config = {"env_prefix": "FACEROSTER_"}

    @property
    def clothing_weight(self) -> float:
        return 1.0 - self.face_weight

    @property
    def effective_clustering_threshold(self) -> float:
        """Clustering threshold for the active recognition mode."""
        if self.recognition_mode is RecognitionMode.FACE_AND_CLOTHING:
            return self.face_clothing_clustering_threshold
        return self.face_only_clustering_threshold

    def clustering_options(self) -> ClusteringOptions:
        return ClusteringOptions(
            algorithm=self.clustering_algorithm,
            threshold=self.effective_clustering_threshold,
            quality_gate=self.quality_gate_threshold,
            max_iterations=self.whispers_max_iterations,
            quality_edge_weight=self.quality_edge_weight,
            use_quality_weighted_edges=self.use_quality_weighted_edges,
            seed=self.whispers_seed,
            metric=self.metric,
            recognition_mode=self.recognition_mode,
            face_weight=self.face_weight,
            supplementary_weight=self.clothing_weight,
            merge_margin=self.merge_suggestion_margin,
        )

    def match_policy(self) -> MatchPolicy:
        return MatchPolicy(
            threshold=self.known_people_threshold,
            min_confidence=self.known_people_min_confidence,
            min_confidence_gap=self.known_people_min_confidence_gap,
        )


settings = Settings()
