"""Face clustering strategies.

Groups unclustered faces into person clusters. Four interchangeable strategies
are dispatched through :func:`cluster_faces`:

- hierarchical agglomerative clustering with average linkage
- hierarchical agglomerative clustering with median linkage
- Chinese Whispers label propagation over a thresholded similarity graph
- quality-gated two-pass (Chinese Whispers on sharp faces, then attach the rest)

A face pair whose distance exceeds the threshold is never linked directly.
"""

import logging
import math
import random
from collections import defaultdict
from enum import Enum
from typing import Callable, Sequence

import numpy as np

from faceroster.ai.distance import FaceDistance, Linkage, distance_matrix
from faceroster.ai.quality import effective_quality, pick_representative
from faceroster.errors import ClusteringCancelled, ConfigurationError
from faceroster.models.face import DetectedFace, FaceGroup
from faceroster.utils.validation import (
    require_positive_int,
    require_threshold,
    require_unit_interval,
)

logger = logging.getLogger(__name__)

# Faces with distance <= threshold may end up in the same group
CLUSTER_DISTANCE_THRESHOLD = 0.40
QUALITY_GATE_THRESHOLD = 0.6
QUALITY_EDGE_WEIGHT = 0.3
MAX_WHISPERS_ITERATIONS = 100


class ClusteringAlgorithm(str, Enum):
    HIERARCHICAL_AVERAGE = "hierarchical_average"
    HIERARCHICAL_MEDIAN = "hierarchical_median"
    CHINESE_WHISPERS = "chinese_whispers"
    QUALITY_GATED = "quality_gated"

    @property
    def linkage(self) -> Linkage:
        """Linkage used when comparing a face against a whole existing group."""
        if self is ClusteringAlgorithm.HIERARCHICAL_MEDIAN:
            return Linkage.MEDIAN
        return Linkage.AVERAGE


def check_cancelled(should_cancel: Callable[[], bool] | None) -> None:
    if should_cancel is not None and should_cancel():
        raise ClusteringCancelled("clustering cancelled by caller")


def make_group(members: Sequence[DetectedFace]) -> FaceGroup:
    """New unnamed group; representative = highest-quality member."""
    representative = pick_representative(list(members))
    return FaceGroup(
        representative_face_id=representative.id,
        face_ids=[f.id for f in members],
    )


# --- Hierarchical ---


def cluster_hierarchical(
    faces: Sequence[DetectedFace],
    threshold: float = CLUSTER_DISTANCE_THRESHOLD,
    distance: FaceDistance | None = None,
    linkage: Linkage = Linkage.AVERAGE,
    should_cancel: Callable[[], bool] | None = None,
) -> list[FaceGroup]:
    """Agglomerative clustering with average or median linkage.

    Starts from singletons and repeatedly merges the globally closest pair of
    clusters while their linkage distance is <= threshold. Ties go to the pair
    with the lowest cluster indices, so identical input always produces
    identical groups.

    Args:
        faces: unclustered faces
        threshold: maximum linkage distance for a merge
        distance: face distance function (a fresh cache is used if omitted)
        linkage: AVERAGE (mean of cross pairs) or MEDIAN (median of cross pairs)
        should_cancel: polled between merges

    Returns:
        New FaceGroups, one per final cluster.
    """
    threshold = require_threshold(threshold)
    if not faces:
        return []
    distance = distance or FaceDistance()
    reduce = np.nanmedian if linkage is Linkage.MEDIAN else np.nanmean

    pairwise = distance_matrix(faces, distance)
    clusters: list[list[int]] = [[i] for i in range(len(faces))]

    def cluster_distance(a: list[int], b: list[int]) -> float:
        block = pairwise[np.ix_(a, b)]
        if np.all(np.isnan(block)):
            return math.inf
        return float(reduce(block))

    # Between singletons the linkage is just the pair distance
    link = np.where(np.isnan(pairwise), np.inf, pairwise)
    np.fill_diagonal(link, np.inf)

    merges = 0
    while len(clusters) > 1:
        check_cancelled(should_cancel)

        # First minimum in row-major order; the diagonal is inf so i < j
        i, j = divmod(int(np.argmin(link)), len(clusters))
        if link[i, j] > threshold:
            break

        clusters[i] = clusters[i] + clusters[j]
        del clusters[j]
        link = np.delete(np.delete(link, j, axis=0), j, axis=1)
        for k in range(len(clusters)):
            if k != i:
                link[i, k] = link[k, i] = cluster_distance(clusters[i], clusters[k])
        merges += 1

    logger.debug("Hierarchical %s linkage: %d merges", linkage.value, merges)
    return [make_group([faces[idx] for idx in cluster]) for cluster in clusters]


# --- Chinese Whispers ---


def build_similarity_graph(
    faces: Sequence[DetectedFace],
    threshold: float,
    distance: FaceDistance,
    quality_edge_weight: float = 0.0,
) -> list[dict[int, float]]:
    """Weighted adjacency lists: edge i-j when distance < threshold.

    Edge weight is ``1 - d / threshold``, blended with the pair's mean quality
    when ``quality_edge_weight`` > 0 so sharp faces pull harder.
    """
    n = len(faces)
    adjacency: list[dict[int, float]] = [{} for _ in range(n)]
    if threshold <= 0:
        return adjacency

    qualities = [effective_quality(f) for f in faces]
    for i in range(n):
        for j in range(i + 1, n):
            d = distance.between(faces[i], faces[j])
            if d is None or d >= threshold:
                continue
            weight = 1.0 - d / threshold
            if quality_edge_weight > 0:
                pair_quality = (qualities[i] + qualities[j]) / 2
                weight = (1.0 - quality_edge_weight) * weight + quality_edge_weight * pair_quality
            adjacency[i][j] = adjacency[j][i] = weight
    return adjacency


def chinese_whispers_labels(
    adjacency: list[dict[int, float]],
    max_iterations: int = MAX_WHISPERS_ITERATIONS,
    rng: random.Random | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[int]:
    """Run label propagation and return one label per node.

    Each node starts with its own label. On every pass nodes are visited in a
    shuffled order and adopt the neighbour label with the highest total edge
    weight. A node keeps its label when that label is among the best; other
    ties go to the smallest label.
    """
    rng = rng or random.Random()
    labels = list(range(len(adjacency)))
    order = list(range(len(adjacency)))

    for iteration in range(max_iterations):
        check_cancelled(should_cancel)
        rng.shuffle(order)
        changed = 0
        for node in order:
            neighbors = adjacency[node]
            if not neighbors:
                continue

            scores: dict[int, float] = defaultdict(float)
            for neighbor, weight in neighbors.items():
                scores[labels[neighbor]] += weight
            best_score = max(scores.values())
            if scores.get(labels[node]) == best_score:
                continue
            labels[node] = min(label for label, score in scores.items() if score == best_score)
            changed += 1

        if changed == 0:
            logger.debug("Chinese Whispers converged after %d iterations", iteration + 1)
            break

    return labels


def cluster_chinese_whispers(
    faces: Sequence[DetectedFace],
    threshold: float = CLUSTER_DISTANCE_THRESHOLD,
    distance: FaceDistance | None = None,
    max_iterations: int = MAX_WHISPERS_ITERATIONS,
    quality_edge_weight: float = QUALITY_EDGE_WEIGHT,
    use_quality_weighted_edges: bool = True,
    seed: int | None = None,
    rng: random.Random | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[FaceGroup]:
    """Graph-based clustering; faces with no qualifying edge stay singletons.

    Visiting order is random. Pass ``seed`` (or an ``rng``) to make a run
    reproducible; with neither, ambiguous graphs may split differently from
    run to run.
    """
    threshold = require_threshold(threshold)
    max_iterations = require_positive_int(max_iterations, "max_iterations")
    quality_edge_weight = require_unit_interval(quality_edge_weight, "quality_edge_weight")
    if not faces:
        return []
    distance = distance or FaceDistance()
    rng = rng or random.Random(seed)

    adjacency = build_similarity_graph(
        faces,
        threshold,
        distance,
        quality_edge_weight if use_quality_weighted_edges else 0.0,
    )
    labels = chinese_whispers_labels(adjacency, max_iterations, rng, should_cancel)

    members: dict[int, list[DetectedFace]] = {}
    for face, label in zip(faces, labels):
        members.setdefault(label, []).append(face)

    edges = sum(len(adj) for adj in adjacency) // 2
    logger.debug("Chinese Whispers: %d nodes, %d edges, %d clusters", len(faces), edges, len(members))
    return [make_group(group_faces) for group_faces in members.values()]


# --- Quality-gated two-pass ---


def find_nearest_group(
    face: DetectedFace,
    groups: Sequence[FaceGroup],
    face_lookup: dict[str, DetectedFace],
    threshold: float,
    distance: FaceDistance,
) -> tuple[FaceGroup | None, float]:
    """Find the group whose representative face is nearest to ``face``.

    Args:
        face: face to place
        groups: candidate groups
        face_lookup: face id -> face, must contain the representatives
        threshold: distance must be strictly below this
        distance: face distance function

    Returns:
        (group, distance) of the best match, or (None, best distance seen).
    """
    best_group = None
    best_distance = math.inf
    for group in groups:
        representative = face_lookup.get(group.representative_face_id)
        if representative is None:
            continue
        d = distance.between(face, representative)
        if d is not None and d < best_distance:
            best_group, best_distance = group, d

    if best_group is not None and best_distance < threshold:
        return best_group, best_distance
    return None, best_distance


def cluster_quality_gated(
    faces: Sequence[DetectedFace],
    threshold: float = CLUSTER_DISTANCE_THRESHOLD,
    distance: FaceDistance | None = None,
    quality_gate: float = QUALITY_GATE_THRESHOLD,
    max_iterations: int = MAX_WHISPERS_ITERATIONS,
    quality_edge_weight: float = QUALITY_EDGE_WEIGHT,
    use_quality_weighted_edges: bool = True,
    seed: int | None = None,
    rng: random.Random | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[FaceGroup]:
    """Cluster sharp faces first, then hang blurry/small faces onto those clusters.

    Faces with quality >= ``quality_gate`` are clustered with Chinese Whispers.
    Each remaining face joins the group whose representative is closest (only
    if under threshold) or becomes a singleton. Low-quality faces never seed
    a group that other faces can join.
    """
    threshold = require_threshold(threshold)
    quality_gate = require_unit_interval(quality_gate, "quality_gate")
    if not faces:
        return []
    distance = distance or FaceDistance()

    high = [f for f in faces if effective_quality(f) >= quality_gate]
    low = [f for f in faces if effective_quality(f) < quality_gate]

    groups = cluster_chinese_whispers(
        high,
        threshold,
        distance,
        max_iterations=max_iterations,
        quality_edge_weight=quality_edge_weight,
        use_quality_weighted_edges=use_quality_weighted_edges,
        seed=seed,
        rng=rng,
        should_cancel=should_cancel,
    )

    lookup = {f.id: f for f in high}
    singles: list[FaceGroup] = []
    attached = 0
    for face in low:
        group, _ = find_nearest_group(face, groups, lookup, threshold, distance)
        if group is not None:
            group.face_ids.append(face.id)
            attached += 1
        else:
            singles.append(make_group([face]))

    logger.debug(
        "Quality gate %.2f: %d high-quality faces in %d groups, %d low-quality attached, %d singletons",
        quality_gate, len(high), len(groups), attached, len(singles),
    )
    return groups + singles


# --- Dispatch ---


def cluster_faces(
    faces: Sequence[DetectedFace],
    algorithm: ClusteringAlgorithm | str = ClusteringAlgorithm.CHINESE_WHISPERS,
    threshold: float = CLUSTER_DISTANCE_THRESHOLD,
    distance: FaceDistance | None = None,
    *,
    quality_gate: float = QUALITY_GATE_THRESHOLD,
    max_iterations: int = MAX_WHISPERS_ITERATIONS,
    quality_edge_weight: float = QUALITY_EDGE_WEIGHT,
    use_quality_weighted_edges: bool = True,
    seed: int | None = None,
    rng: random.Random | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[FaceGroup]:
    """Cluster unclustered faces with the selected strategy.

    Args:
        faces: faces to cluster (existing group membership is ignored)
        algorithm: strategy to use
        threshold: dissimilarity threshold, must be >= 0

    Returns:
        New FaceGroups. Empty input gives an empty list.
    """
    try:
        algorithm = ClusteringAlgorithm(algorithm)
    except ValueError:
        raise ConfigurationError(f"unknown clustering algorithm: {algorithm!r}") from None
    threshold = require_threshold(threshold)
    distance = distance or FaceDistance()

    if algorithm in (ClusteringAlgorithm.HIERARCHICAL_AVERAGE, ClusteringAlgorithm.HIERARCHICAL_MEDIAN):
        groups = cluster_hierarchical(faces, threshold, distance, algorithm.linkage, should_cancel)
    elif algorithm is ClusteringAlgorithm.CHINESE_WHISPERS:
        groups = cluster_chinese_whispers(
            faces,
            threshold,
            distance,
            max_iterations=max_iterations,
            quality_edge_weight=quality_edge_weight,
            use_quality_weighted_edges=use_quality_weighted_edges,
            seed=seed,
            rng=rng,
            should_cancel=should_cancel,
        )
    else:
        groups = cluster_quality_gated(
            faces,
            threshold,
            distance,
            quality_gate=quality_gate,
            max_iterations=max_iterations,
            quality_edge_weight=quality_edge_weight,
            use_quality_weighted_edges=use_quality_weighted_edges,
            seed=seed,
            rng=rng,
            should_cancel=should_cancel,
        )

    logger.info(
        "Clustered %d faces into %d groups (%s, threshold=%.2f)",
        len(faces), len(groups), algorithm.value, threshold,
    )
    return groups
