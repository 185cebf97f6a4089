"""faceroster data models."""

from faceroster.models.face import (
    BoundingBox,
    DetectedFace,
    FaceCleanupPolicy,
    FaceGroup,
    FileSignature,
    FolderFaceData,
    MergeSuggestion,
    RecognitionMode,
)
from faceroster.models.person import (
    DuplicateCheckResult,
    DuplicateKind,
    KnownPeopleDatabase,
    KnownPeopleManifest,
    KnownPerson,
    KnownPersonMatch,
    PersonEmbedding,
)

__all__ = [
    "BoundingBox",
    "DetectedFace",
    "FaceCleanupPolicy",
    "FaceGroup",
    "FileSignature",
    "FolderFaceData",
    "MergeSuggestion",
    "RecognitionMode",
    "DuplicateCheckResult",
    "DuplicateKind",
    "KnownPeopleDatabase",
    "KnownPeopleManifest",
    "KnownPerson",
    "KnownPersonMatch",
    "PersonEmbedding",
]
