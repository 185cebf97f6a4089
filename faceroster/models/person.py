"""Known people roster.

The roster stores face-only embeddings. Supplementary (clothing) embeddings
help within-folder clustering but would make the same person look different
from one event to the next, so they never enter a ``PersonEmbedding``.
"""

import secrets
from datetime import datetime, timezone
from enum import Enum
from platform import platform as platform_string
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from faceroster.models.face import DetectedFace, RecognitionMode

# Ids name thumbnail files, so they stay filename-safe.
ID_PATTERN = r"^[A-Za-z0-9_-]+$"

MANIFEST_VERSION = "1.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersonEmbedding(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    id: str = Field(default_factory=lambda: f"emb_{secrets.token_hex(16)}", pattern=ID_PATTERN)
    embedding: bytes  # always face-only
    source_description: Optional[str] = None
    added_at: datetime = Field(default_factory=_utcnow)
    recognition_mode: Optional[RecognitionMode] = None  # metadata only

    @classmethod
    def from_face(cls, face: DetectedFace, source_description: str | None = None) -> "PersonEmbedding":
        """Build a roster sample from a detected face (primary embedding only)."""
        return cls(
            embedding=face.embedding,
            source_description=source_description or face.image_path,
            recognition_mode=face.recognition_mode,
        )


class KnownPerson(BaseModel):
    id: str = Field(default_factory=lambda: f"per_{secrets.token_hex(16)}", pattern=ID_PATTERN)
    name: str
    role: Optional[str] = None
    notes: Optional[str] = None
    embeddings: list[PersonEmbedding] = Field(default_factory=list)
    representative_embedding_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def subtitle(self) -> str | None:
        """Role and notes joined for display."""
        parts = [p for p in (self.role, self.notes) if p]
        return " • ".join(parts) if parts else None


class KnownPeopleDatabase(BaseModel):
    people: list[KnownPerson] = Field(default_factory=list)
    last_modified: datetime = Field(default_factory=_utcnow)

    @property
    def people_count(self) -> int:
        return len(self.people)

    @property
    def embedding_count(self) -> int:
        return sum(len(p.embeddings) for p in self.people)


class KnownPersonMatch(BaseModel):
    person: KnownPerson
    confidence: float
    matched_embedding_id: str


class DuplicateKind(str, Enum):
    NONE = "none"
    NAME = "name"  # same name, face did not match (or was not checked)
    FACE = "face"  # similar face under a different name
    BOTH = "both"  # name and face point at the same person


class DuplicateCheckResult(BaseModel):
    kind: DuplicateKind = DuplicateKind.NONE
    person: Optional[KnownPerson] = None
    confidence: Optional[float] = None

    @property
    def is_duplicate(self) -> bool:
        return self.kind is not DuplicateKind.NONE


class KnownPeopleManifest(BaseModel):
    """Header of a roster export archive."""

    version: str = MANIFEST_VERSION
    platform: str = Field(default_factory=platform_string)
    created_at: datetime = Field(default_factory=_utcnow)
    exported_by: Optional[str] = None
    people_count: int
    embedding_count: int
