"""Person thumbnail storage.

Thumbnails are opaque JPEG bytes keyed by person id. Rendering them is the
host application's job; faceroster only keeps them next to the roster.
"""

import logging
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

THUMBNAIL_SUFFIX = ".jpg"
_SAFE_ID = re.compile(r"[A-Za-z0-9_-]+")


class ThumbnailStore(Protocol):
    def save(self, person_id: str, data: bytes) -> None: ...

    def load(self, person_id: str) -> bytes | None: ...

    def delete(self, person_id: str) -> None: ...


class InMemoryThumbnailStore:
    """Dict-backed store, used by default and in tests."""

    def __init__(self):
        self._data: dict[str, bytes] = {}

    def save(self, person_id: str, data: bytes) -> None:
        self._data[person_id] = bytes(data)

    def load(self, person_id: str) -> bytes | None:
        return self._data.get(person_id)

    def delete(self, person_id: str) -> None:
        self._data.pop(person_id, None)

    def __contains__(self, person_id: str) -> bool:
        return person_id in self._data

    def __len__(self) -> int:
        return len(self._data)


class DirectoryThumbnailStore:
    """One ``<person_id>.jpg`` file per person inside ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, person_id: str) -> Path:
        if not _SAFE_ID.fullmatch(person_id):
            raise ValueError(f"Unsafe thumbnail id: {person_id!r}")
        return self.root / f"{person_id}{THUMBNAIL_SUFFIX}"

    def save(self, person_id: str, data: bytes) -> None:
        self._path(person_id).write_bytes(data)

    def load(self, person_id: str) -> bytes | None:
        path = self._path(person_id)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, person_id: str) -> None:
        path = self._path(person_id)
        if path.exists():
            path.unlink()
            logger.debug("Deleted thumbnail %s", path)
