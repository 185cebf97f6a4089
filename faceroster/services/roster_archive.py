"""Export and import of the known people roster as a zip archive.

Layout::

    manifest.json              KnownPeopleManifest
    people.json                list of KnownPerson (embeddings base64-encoded)
    thumbnails/<person_id>.jpg optional thumbnail per person

Ids are globally unique, so an import simply appends.
"""

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from pydantic import TypeAdapter, ValidationError

from faceroster.errors import RosterArchiveError
from faceroster.models.person import KnownPeopleDatabase, KnownPeopleManifest, KnownPerson
from faceroster.utils.thumbnails import THUMBNAIL_SUFFIX, ThumbnailStore

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
PEOPLE_NAME = "people.json"
THUMBNAIL_DIR = "thumbnails"

_people_adapter = TypeAdapter(list[KnownPerson])


@dataclass
class RosterArchive:
    manifest: KnownPeopleManifest
    people: list[KnownPerson]
    thumbnails: dict[str, bytes] = field(default_factory=dict)


def _thumbnail_name(person_id: str) -> str:
    return f"{THUMBNAIL_DIR}/{person_id}{THUMBNAIL_SUFFIX}"


def export_roster(
    database: KnownPeopleDatabase,
    destination: str | Path | BinaryIO,
    thumbnails: ThumbnailStore | None = None,
    exported_by: str | None = None,
) -> KnownPeopleManifest:
    """Write the roster to a zip archive.

    Args:
        database: roster snapshot to export
        destination: file path or writable binary file object
        thumbnails: store to copy person thumbnails from
        exported_by: free-form author recorded in the manifest

    Returns:
        The manifest written into the archive.
    """
    manifest = KnownPeopleManifest(
        exported_by=exported_by,
        people_count=database.people_count,
        embedding_count=database.embedding_count,
    )

    thumbnail_count = 0
    with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(MANIFEST_NAME, manifest.model_dump_json())
        archive.writestr(PEOPLE_NAME, _people_adapter.dump_json(database.people, indent=2))
        if thumbnails is not None:
            for person in database.people:
                data = thumbnails.load(person.id)
                if data is not None:
                    archive.writestr(_thumbnail_name(person.id), data)
                    thumbnail_count += 1

    logger.info(
        "Exported %d people (%d embeddings, %d thumbnails)",
        manifest.people_count, manifest.embedding_count, thumbnail_count,
    )
    return manifest


def read_roster_archive(source: str | Path | BinaryIO) -> RosterArchive:
    """Load an export archive without touching any roster.

    Raises:
        RosterArchiveError: not a zip file, missing or invalid people.json.
    """
    try:
        archive = zipfile.ZipFile(source)
    except (zipfile.BadZipFile, OSError) as e:
        raise RosterArchiveError(f"cannot open roster archive: {e}") from e

    with archive:
        names = set(archive.namelist())
        if PEOPLE_NAME not in names:
            raise RosterArchiveError(f"invalid roster archive: missing {PEOPLE_NAME}")

        try:
            people = _people_adapter.validate_json(archive.read(PEOPLE_NAME))
        except ValidationError as e:
            raise RosterArchiveError(f"invalid {PEOPLE_NAME}: {e}") from e

        if MANIFEST_NAME in names:
            try:
                manifest = KnownPeopleManifest.model_validate_json(archive.read(MANIFEST_NAME))
            except ValidationError as e:
                raise RosterArchiveError(f"invalid {MANIFEST_NAME}: {e}") from e
        else:
            logger.warning("Roster archive has no %s, recomputing counts", MANIFEST_NAME)
            manifest = KnownPeopleManifest(
                people_count=len(people),
                embedding_count=sum(len(p.embeddings) for p in people),
            )

        thumbnails = {}
        for person in people:
            name = _thumbnail_name(person.id)
            if name not in names:
                continue
            try:
                thumbnails[person.id] = archive.read(name)
            except (zipfile.BadZipFile, OSError) as e:
                logger.warning("Skipping unreadable thumbnail %s: %s", name, e)

    return RosterArchive(manifest=manifest, people=people, thumbnails=thumbnails)


def import_roster(service, source: str | Path | BinaryIO) -> int:
    """Append every person of an archive to ``service`` (a KnownPeopleService).

    Returns:
        Number of people imported.
    """
    archive = read_roster_archive(source)
    return service.import_people(archive.people, archive.thumbnails)
