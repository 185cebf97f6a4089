"""Incremental assignment of new faces to existing groups.

A rescanned folder keeps its groups: each new face first tries to join the
existing group it is closest to, and only the leftovers go through a batch
clustering pass.
"""

import logging
import random
from typing import Callable, Sequence

from faceroster.ai.distance import FaceDistance, Linkage, linkage_distance
from faceroster.ai.embedding import EmbeddingCache
from faceroster.ai.face_cluster import check_cancelled, cluster_faces
from faceroster.ai.quality import effective_quality
from faceroster.config import ClusteringOptions
from faceroster.models.face import DetectedFace, FaceGroup
from faceroster.utils.validation import require_threshold

logger = logging.getLogger(__name__)


def assign_to_existing_groups(
    faces: Sequence[DetectedFace],
    all_faces: Sequence[DetectedFace],
    groups: Sequence[FaceGroup],
    threshold: float,
    distance: FaceDistance | None = None,
    linkage: Linkage = Linkage.AVERAGE,
    should_cancel: Callable[[], bool] | None = None,
) -> list[DetectedFace]:
    """Fold each face into the closest existing group, if close enough.

    The distance to a group is the linkage distance to all of its members
    (members missing from ``all_faces`` are ignored). A face joins the closest
    group strictly under ``threshold``; faces placed earlier in this call count
    as members for later ones. Groups are mutated in place and the face's
    ``group_id`` is set. A joining face that outranks the representative on
    quality becomes the new representative.

    Returns:
        Faces that did not fit any group.
    """
    threshold = require_threshold(threshold)
    distance = distance or FaceDistance()
    lookup = {f.id: f for f in all_faces}
    for face in faces:
        lookup.setdefault(face.id, face)

    remaining = []
    for face in faces:
        check_cancelled(should_cancel)
        best_group = None
        best_distance = threshold

        for group in groups:
            members = [lookup[fid] for fid in group.face_ids if fid in lookup and fid != face.id]
            if not members:
                continue
            d = linkage_distance([face], members, distance, linkage)
            if d < best_distance:
                best_group, best_distance = group, d

        if best_group is None:
            remaining.append(face)
            continue

        best_group.face_ids.append(face.id)
        face.group_id = best_group.id
        representative = lookup.get(best_group.representative_face_id)
        if representative is None or effective_quality(face) > effective_quality(representative):
            best_group.representative_face_id = face.id

    return remaining


def cluster_new_faces(
    faces: Sequence[DetectedFace],
    all_faces: Sequence[DetectedFace],
    existing_groups: Sequence[FaceGroup],
    options: ClusteringOptions | None = None,
    cache: EmbeddingCache | None = None,
    rng: random.Random | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[FaceGroup]:
    """Assign unclustered faces to existing groups, then cluster the rest.

    Args:
        faces: candidate faces; only those with ``group_id`` None are used
        all_faces: every face of the folder, so group members can be looked up
        existing_groups: groups from earlier scans (mutated in place)
        options: clustering configuration (defaults if omitted)
        cache: embedding cache to share with later phases; a fresh one otherwise

    Returns:
        Existing groups followed by the newly formed ones. Every face in a
        returned group has its ``group_id`` set.
    """
    options = options or ClusteringOptions()
    groups = list(existing_groups)
    unclustered = [f for f in faces if f.group_id is None]
    if not unclustered:
        return groups

    distance = options.make_distance(cache)
    remaining = assign_to_existing_groups(
        unclustered,
        all_faces,
        groups,
        options.threshold,
        distance,
        options.algorithm.linkage,
        should_cancel,
    )

    new_groups = cluster_faces(
        remaining,
        options.algorithm,
        options.threshold,
        distance,
        quality_gate=options.quality_gate,
        max_iterations=options.max_iterations,
        quality_edge_weight=options.quality_edge_weight,
        use_quality_weighted_edges=options.use_quality_weighted_edges,
        seed=options.seed,
        rng=rng,
        should_cancel=should_cancel,
    )

    lookup = {f.id: f for f in remaining}
    for group in new_groups:
        for face_id in group.face_ids:
            lookup[face_id].group_id = group.id
    groups.extend(new_groups)

    logger.info(
        "Assigned %d of %d new faces to existing groups, formed %d new groups",
        len(unclustered) - len(remaining), len(unclustered), len(new_groups),
    )
    return groups
