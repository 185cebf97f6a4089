"""Detected faces, face groups and per-folder scan data."""

import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(16)}"


class RecognitionMode(str, Enum):
    """Embedding configuration active when a face was captured."""

    FACE_ONLY = "face_only"
    FACE_AND_CLOTHING = "face_and_clothing"


class BoundingBox(BaseModel):
    """Normalized (0-1) rectangle inside the source image."""

    x: float = Field(default=0.0, ge=0.0, le=1.0)
    y: float = Field(default=0.0, ge=0.0, le=1.0)
    width: float = Field(default=0.0, ge=0.0, le=1.0)
    height: float = Field(default=0.0, ge=0.0, le=1.0)


class DetectedFace(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    id: str = Field(default_factory=lambda: _new_id("fac"))
    image_path: str
    bbox: BoundingBox = Field(default_factory=BoundingBox)
    embedding: bytes  # primary, face-only
    supplementary_embedding: Optional[bytes] = None  # clothing/torso, clustering only
    supplementary_region: Optional[BoundingBox] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    face_size: Optional[int] = Field(default=None, ge=0)  # pixels
    blur_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)  # higher = sharper
    quality_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    recognition_mode: RecognitionMode = RecognitionMode.FACE_ONLY
    group_id: Optional[str] = None
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FaceGroup(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("grp"))
    name: Optional[str] = None
    representative_face_id: str
    face_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _representative_is_member(self) -> "FaceGroup":
        if self.face_ids and self.representative_face_id not in self.face_ids:
            raise ValueError(
                f"representative {self.representative_face_id} is not a member of group {self.id}"
            )
        return self


class MergeSuggestion(BaseModel):
    """Two groups that narrowly missed the merge threshold."""

    id: str = Field(default_factory=lambda: _new_id("sug"))
    group1_id: str
    group2_id: str
    similarity: float = Field(ge=0.0, le=1.0)  # higher = more alike


class FileSignature(BaseModel):
    """Identity of a scanned file for incremental rescans."""

    modified_at: datetime
    file_size: int


class FaceCleanupPolicy(str, Enum):
    SEVEN_DAYS = "7days"
    THIRTY_DAYS = "30days"
    NEVER = "never"

    @property
    def max_age(self) -> timedelta | None:
        if self is FaceCleanupPolicy.SEVEN_DAYS:
            return timedelta(days=7)
        if self is FaceCleanupPolicy.THIRTY_DAYS:
            return timedelta(days=30)
        return None


class FolderFaceData(BaseModel):
    """Everything known about the faces of one folder."""

    folder_path: str
    faces: list[DetectedFace] = Field(default_factory=list)
    groups: list[FaceGroup] = Field(default_factory=list)
    last_scan_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scan_complete: bool = False
    scanned_files: dict[str, FileSignature] = Field(default_factory=dict)

    def face_by_id(self, face_id: str) -> DetectedFace | None:
        return next((f for f in self.faces if f.id == face_id), None)

    def group_by_id(self, group_id: str) -> FaceGroup | None:
        return next((g for g in self.groups if g.id == group_id), None)

    def faces_in_group(self, group: FaceGroup) -> list[DetectedFace]:
        lookup = {f.id: f for f in self.faces}
        return [lookup[fid] for fid in group.face_ids if fid in lookup]
