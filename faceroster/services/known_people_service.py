"""Known people roster - matching faces against named people and managing the roster.

The service owns one ``KnownPeopleDatabase`` snapshot. Writers serialize on a
lock, edit a deep copy and swap it in; readers work on whatever snapshot was
current when they started, so they never see a half-applied change. Every
committed change is reported through ``on_change`` so the host application can
persist it.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, NamedTuple, Sequence

from faceroster.ai.embedding import (
    EmbeddingCache,
    Metric,
    bytes_to_embedding,
    compute_distance,
    confidence,
)
from faceroster.config import MatchPolicy, settings
from faceroster.errors import EmbeddingDecodeError
from faceroster.models.face import DetectedFace
from faceroster.models.person import (
    DuplicateCheckResult,
    DuplicateKind,
    KnownPeopleDatabase,
    KnownPerson,
    KnownPersonMatch,
    PersonEmbedding,
)
from faceroster.utils.thumbnails import InMemoryThumbnailStore, ThumbnailStore
from faceroster.utils.validation import require_positive_int, require_threshold

logger = logging.getLogger(__name__)


class RosterStatistics(NamedTuple):
    people_count: int
    embedding_count: int


def _normalized_name(name: str) -> str:
    return name.strip().casefold()


def _find_by_name(db: KnownPeopleDatabase, name: str) -> KnownPerson | None:
    wanted = _normalized_name(name)
    for person in db.people:
        if _normalized_name(person.name) == wanted:
            return person.model_copy(deep=True)
    return None


def _index_of(db: KnownPeopleDatabase, person_id: str) -> int | None:
    for i, person in enumerate(db.people):
        if person.id == person_id:
            return i
    return None


def _new_embeddings(person: KnownPerson, embeddings: Iterable[PersonEmbedding]) -> list[PersonEmbedding]:
    """Embeddings whose blob the person does not hold yet (batch duplicates dropped too)."""
    seen = {e.embedding for e in person.embeddings}
    fresh = []
    for embedding in embeddings:
        if embedding.embedding in seen:
            continue
        seen.add(embedding.embedding)
        fresh.append(embedding.model_copy())
    return fresh


class KnownPeopleService:
    def __init__(
        self,
        database: KnownPeopleDatabase | None = None,
        thumbnails: ThumbnailStore | None = None,
        metric: Metric = Metric.COSINE,
        on_change: Callable[[KnownPeopleDatabase], None] | None = None,
    ):
        initial = database.model_copy(deep=True) if database is not None else KnownPeopleDatabase()
        # (snapshot, decode cache for that snapshot) swapped as one reference
        self._state = (initial, EmbeddingCache())
        self._lock = threading.Lock()
        self.thumbnails = thumbnails if thumbnails is not None else InMemoryThumbnailStore()
        self.metric = Metric(metric)
        self.on_change = on_change

    # --- Snapshot handling ---

    @property
    def database(self) -> KnownPeopleDatabase:
        """Current snapshot. Treat as read-only."""
        return self._state[0]

    def _working_copy(self) -> KnownPeopleDatabase:
        return self._state[0].model_copy(deep=True)

    def _commit(self, db: KnownPeopleDatabase) -> None:
        """Publish ``db`` as the new snapshot. Caller holds the lock."""
        db.last_modified = datetime.now(timezone.utc)
        self._state = (db, EmbeddingCache())
        if self.on_change is not None:
            self.on_change(db)

    # --- Matching ---

    def match_face(
        self,
        embedding: bytes,
        threshold: float | None = None,
        max_results: int | None = None,
    ) -> list[KnownPersonMatch]:
        """Find the known people closest to a face embedding.

        Each person scores the minimum distance over all of their embeddings;
        people at or beyond ``threshold`` are dropped.

        Args:
            embedding: primary (face-only) embedding blob of the query face
            threshold: maximum distance, exclusive (settings default if None)
            max_results: number of matches to keep (settings default if None)

        Returns:
            Matches by confidence, highest first. Empty if the query blob is
            unusable.
        """
        return self._match(self._state, embedding, threshold, max_results)

    def _match(
        self,
        state: tuple[KnownPeopleDatabase, EmbeddingCache],
        embedding: bytes,
        threshold: float | None,
        max_results: int | None,
    ) -> list[KnownPersonMatch]:
        threshold = require_threshold(
            settings.known_people_threshold if threshold is None else threshold
        )
        max_results = require_positive_int(
            settings.known_people_max_results if max_results is None else max_results,
            "max_results",
        )

        try:
            query = bytes_to_embedding(embedding)
        except EmbeddingDecodeError as e:
            logger.debug("Unusable query embedding: %s", e)
            return []

        db, cache = state
        scored = []
        for person in db.people:
            best_distance = None
            best_embedding_id = None
            for sample in person.embeddings:
                vector = cache.get(sample.id, sample.embedding)
                if vector is None:
                    continue
                d = compute_distance(query, vector, self.metric)
                if d is not None and (best_distance is None or d < best_distance):
                    best_distance, best_embedding_id = d, sample.id

            if best_distance is not None and best_distance < threshold:
                scored.append((confidence(best_distance), person, best_embedding_id))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            KnownPersonMatch(
                person=person.model_copy(deep=True),
                confidence=conf,
                matched_embedding_id=embedding_id,
            )
            for conf, person, embedding_id in scored[:max_results]
        ]

    def match_faces(
        self,
        faces: Sequence[DetectedFace],
        threshold: float | None = None,
    ) -> dict[str, KnownPersonMatch]:
        """Best match per face id, for faces that have one.

        Only the primary embedding is compared; clothing embeddings never
        reach the roster.
        """
        results = {}
        for face in faces:
            matches = self.match_face(face.embedding, threshold, max_results=1)
            if matches:
                results[face.id] = matches[0]
        return results

    def best_auto_match(self, embedding: bytes, policy: MatchPolicy | None = None) -> KnownPersonMatch | None:
        """Top match, only if it is confident and clearly ahead of the runner-up."""
        policy = policy or settings.match_policy()
        matches = self.match_face(embedding, policy.threshold, max_results=2)
        if not matches or matches[0].confidence < policy.min_confidence:
            return None
        if len(matches) > 1 and matches[0].confidence - matches[1].confidence < policy.min_confidence_gap:
            return None
        return matches[0]

    # --- Duplicate detection ---

    def check_for_duplicate(
        self,
        name: str,
        embedding: bytes,
        threshold: float | None = None,
        allow_face_match: bool = True,
    ) -> DuplicateCheckResult:
        """Look for an existing person with this name or a similar face.

        Names compare trimmed and case-insensitively. A name match wins over a
        face match that points at somebody else.
        """
        state = self._state
        name_match = _find_by_name(state[0], name)
        face_match = None
        if allow_face_match:
            matches = self._match(state, embedding, threshold, max_results=1)
            face_match = matches[0] if matches else None

        if name_match is not None and face_match is not None and name_match.id == face_match.person.id:
            return DuplicateCheckResult(kind=DuplicateKind.BOTH, person=name_match, confidence=face_match.confidence)
        if name_match is not None:
            return DuplicateCheckResult(kind=DuplicateKind.NAME, person=name_match)
        if face_match is not None:
            return DuplicateCheckResult(
                kind=DuplicateKind.FACE, person=face_match.person, confidence=face_match.confidence
            )
        return DuplicateCheckResult()

    def add_or_merge_person(
        self,
        name: str,
        embeddings: Sequence[PersonEmbedding],
        duplicate_check: DuplicateCheckResult,
        role: str | None = None,
        thumbnail: bytes | None = None,
    ) -> tuple[KnownPerson, bool]:
        """Create a person, or add the embeddings to the duplicate that was found.

        Returns:
            (person, added_to_existing)
        """
        existing = duplicate_check.person
        if not duplicate_check.is_duplicate or existing is None:
            return self.add_person(name, embeddings, role=role, thumbnail=thumbnail), False

        self.add_embeddings_deduped(existing.id, embeddings)
        return self.person_by_id(existing.id) or existing, True

    # --- People ---

    def add_person(
        self,
        name: str,
        embeddings: Sequence[PersonEmbedding] = (),
        role: str | None = None,
        notes: str | None = None,
        thumbnail: bytes | None = None,
    ) -> KnownPerson:
        embeddings = [e.model_copy() for e in embeddings]
        person = KnownPerson(
            name=name,
            role=role,
            notes=notes,
            embeddings=embeddings,
            representative_embedding_id=embeddings[0].id if embeddings else None,
        )
        with self._lock:
            db = self._working_copy()
            db.people.append(person)
            if thumbnail is not None:
                self.thumbnails.save(person.id, thumbnail)
            self._commit(db)
        logger.info("Added known person %s with %d embeddings", person.id, len(embeddings))
        return person.model_copy(deep=True)

    def update_person(self, person: KnownPerson) -> bool:
        """Replace the stored record with the same id. False if unknown."""
        with self._lock:
            db = self._working_copy()
            index = _index_of(db, person.id)
            if index is None:
                return False
            updated = person.model_copy(deep=True)
            updated.updated_at = datetime.now(timezone.utc)
            db.people[index] = updated
            self._commit(db)
        return True

    def remove_person(self, person_id: str) -> bool:
        with self._lock:
            db = self._working_copy()
            index = _index_of(db, person_id)
            if index is None:
                return False
            del db.people[index]
            self.thumbnails.delete(person_id)
            self._commit(db)
        return True

    def merge_people(self, source_id: str, target_id: str) -> KnownPerson | None:
        """Move the source's embeddings into the target and delete the source.

        Blobs the target already holds are not duplicated. Returns the updated
        target, or None if either id is unknown or both are the same.
        """
        with self._lock:
            db = self._working_copy()
            source_index = _index_of(db, source_id)
            target_index = _index_of(db, target_id)
            if source_index is None or target_index is None or source_index == target_index:
                return None

            target = db.people[target_index]
            moved = _new_embeddings(target, db.people[source_index].embeddings)
            target.embeddings.extend(moved)
            if target.representative_embedding_id is None and target.embeddings:
                target.representative_embedding_id = target.embeddings[0].id
            target.updated_at = datetime.now(timezone.utc)

            del db.people[source_index]
            self.thumbnails.delete(source_id)
            self._commit(db)

        logger.info("Merged person %s into %s (%d embeddings moved)", source_id, target_id, len(moved))
        return target.model_copy(deep=True)

    # --- Embeddings ---

    def add_embedding(self, person_id: str, embedding: PersonEmbedding) -> bool:
        with self._lock:
            db = self._working_copy()
            index = _index_of(db, person_id)
            if index is None:
                return False
            person = db.people[index]
            person.embeddings.append(embedding.model_copy())
            if person.representative_embedding_id is None:
                person.representative_embedding_id = embedding.id
            person.updated_at = datetime.now(timezone.utc)
            self._commit(db)
        return True

    def add_embeddings_deduped(self, person_id: str, embeddings: Iterable[PersonEmbedding]) -> int:
        """Append embeddings whose blob is new for this person.

        Returns:
            Number of embeddings actually added (0 for an unknown person).
        """
        with self._lock:
            db = self._working_copy()
            index = _index_of(db, person_id)
            if index is None:
                return 0
            person = db.people[index]
            fresh = _new_embeddings(person, embeddings)
            if not fresh:
                return 0
            person.embeddings.extend(fresh)
            if person.representative_embedding_id is None:
                person.representative_embedding_id = fresh[0].id
            person.updated_at = datetime.now(timezone.utc)
            self._commit(db)
        return len(fresh)

    def remove_embedding(self, person_id: str, embedding_id: str) -> bool:
        """Drop one embedding; the representative moves to the first remaining one."""
        with self._lock:
            db = self._working_copy()
            index = _index_of(db, person_id)
            if index is None:
                return False
            person = db.people[index]
            kept = [e for e in person.embeddings if e.id != embedding_id]
            if len(kept) == len(person.embeddings):
                return False
            person.embeddings = kept
            if person.representative_embedding_id == embedding_id:
                person.representative_embedding_id = kept[0].id if kept else None
            person.updated_at = datetime.now(timezone.utc)
            self._commit(db)
        return True

    # --- Thumbnails ---

    def thumbnail(self, person_id: str) -> bytes | None:
        return self.thumbnails.load(person_id)

    def replace_thumbnail(self, person_id: str, data: bytes) -> bool:
        with self._lock:
            db = self._working_copy()
            index = _index_of(db, person_id)
            if index is None:
                return False
            self.thumbnails.save(person_id, data)
            db.people[index].updated_at = datetime.now(timezone.utc)
            self._commit(db)
        return True

    # --- Lookup & bulk ---

    def person_by_id(self, person_id: str) -> KnownPerson | None:
        db = self.database
        index = _index_of(db, person_id)
        return db.people[index].model_copy(deep=True) if index is not None else None

    def person_by_name(self, name: str) -> KnownPerson | None:
        """First person whose trimmed name equals ``name`` ignoring case."""
        return _find_by_name(self.database, name)

    def all_people(self) -> list[KnownPerson]:
        return [p.model_copy(deep=True) for p in self.database.people]

    def statistics(self) -> RosterStatistics:
        db = self.database
        return RosterStatistics(people_count=db.people_count, embedding_count=db.embedding_count)

    def clear(self) -> None:
        """Forget every person and their thumbnails."""
        with self._lock:
            for person in self._state[0].people:
                self.thumbnails.delete(person.id)
            self._commit(KnownPeopleDatabase())
        logger.info("Cleared known people roster")

    def import_people(
        self,
        people: Iterable[KnownPerson],
        thumbnails: dict[str, bytes] | None = None,
    ) -> int:
        """Append people as-is (ids are globally unique, nothing is merged)."""
        imported = [p.model_copy(deep=True) for p in people]
        with self._lock:
            db = self._working_copy()
            db.people.extend(imported)
            for person in imported:
                data = (thumbnails or {}).get(person.id)
                if data is not None:
                    self.thumbnails.save(person.id, data)
            self._commit(db)
        logger.info("Imported %d known people", len(imported))
        return len(imported)
