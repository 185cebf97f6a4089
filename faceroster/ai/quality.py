"""Composite face quality score (detection confidence, pixel size, sharpness)."""

from faceroster.models.face import DetectedFace

# Face width in pixels mapped linearly onto 0-1
MIN_USEFUL_FACE_SIZE = 50
FULL_QUALITY_FACE_SIZE = 200

CONFIDENCE_WEIGHT = 0.4
SIZE_WEIGHT = 0.3
BLUR_WEIGHT = 0.3


def compute_quality_score(confidence: float, face_size: int, blur_score: float) -> float:
    """Weighted combination of the perception metrics, in [0, 1]."""
    span = FULL_QUALITY_FACE_SIZE - MIN_USEFUL_FACE_SIZE
    size_score = min(1.0, max(0.0, (face_size - MIN_USEFUL_FACE_SIZE) / span))
    score = (
        CONFIDENCE_WEIGHT * confidence
        + SIZE_WEIGHT * size_score
        + BLUR_WEIGHT * blur_score
    )
    return min(1.0, max(0.0, score))


def effective_quality(face: DetectedFace) -> float:
    """Stored quality score, else one derived from the raw metrics, else 0."""
    if face.quality_score is not None:
        return face.quality_score
    if face.confidence is not None and face.face_size is not None and face.blur_score is not None:
        return compute_quality_score(face.confidence, face.face_size, face.blur_score)
    return 0.0


def pick_representative(faces: list[DetectedFace]) -> DetectedFace:
    """Highest-quality face; the earliest one wins a tie."""
    best = faces[0]
    best_quality = effective_quality(best)
    for face in faces[1:]:
        quality = effective_quality(face)
        if quality > best_quality:
            best, best_quality = face, quality
    return best
