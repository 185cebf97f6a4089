"""Merge suggestions for groups that narrowly missed the clustering threshold.

Borderline pairs are surfaced for a human to confirm instead of being merged
automatically.
"""

import logging
from typing import Sequence

from faceroster.ai.distance import FaceDistance, average_linkage
from faceroster.ai.embedding import confidence
from faceroster.models.face import DetectedFace, FaceGroup, MergeSuggestion
from faceroster.utils.validation import require_threshold

logger = logging.getLogger(__name__)

MERGE_SUGGESTION_MARGIN = 0.15


def compute_merge_suggestions(
    groups: Sequence[FaceGroup],
    faces: Sequence[DetectedFace],
    threshold: float,
    margin: float = MERGE_SUGGESTION_MARGIN,
    distance: FaceDistance | None = None,
) -> list[MergeSuggestion]:
    """Suggest group pairs whose average-linkage distance is just over threshold.

    A pair qualifies when ``threshold < d < threshold * (1 + margin)``.

    Returns:
        Suggestions sorted by similarity (``1 - d``), most similar first.
    """
    threshold = require_threshold(threshold)
    margin = require_threshold(margin, "margin")
    distance = distance or FaceDistance()
    upper = threshold * (1 + margin)

    lookup = {f.id: f for f in faces}
    members = [[lookup[fid] for fid in g.face_ids if fid in lookup] for g in groups]

    suggestions = []
    for i in range(len(groups)):
        if not members[i]:
            continue
        for j in range(i + 1, len(groups)):
            if not members[j]:
                continue
            d = average_linkage(members[i], members[j], distance)
            if threshold < d < upper:
                suggestions.append(MergeSuggestion(
                    group1_id=groups[i].id,
                    group2_id=groups[j].id,
                    similarity=confidence(d),
                ))

    suggestions.sort(key=lambda s: s.similarity, reverse=True)
    logger.debug("%d merge suggestions among %d groups", len(suggestions), len(groups))
    return suggestions
