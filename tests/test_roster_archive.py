"""Roster export/import archives."""

import io
import json
import zipfile

import numpy as np
import pytest

from faceroster.ai.embedding import embedding_to_bytes
from faceroster.errors import RosterArchiveError
from faceroster.models.person import MANIFEST_VERSION, PersonEmbedding
from faceroster.services.known_people_service import KnownPeopleService
from faceroster.services.roster_archive import export_roster, import_roster, read_roster_archive
from faceroster.utils.thumbnails import DirectoryThumbnailStore, InMemoryThumbnailStore


def sample(*values):
    return PersonEmbedding(embedding=embedding_to_bytes(np.array(values, dtype=np.float32)))


@pytest.fixture
def roster():
    service = KnownPeopleService(thumbnails=InMemoryThumbnailStore())
    ada = service.add_person("Ada", [sample(1.0, 0.0), sample(0.9, 0.1)], role="Reporter", thumbnail=b"ada-jpg")
    bob = service.add_person("Bob", [sample(0.0, 1.0)])
    return service, ada, bob


def test_export_layout(tmp_path, roster):
    service, ada, bob = roster
    path = tmp_path / "roster.zip"

    manifest = export_roster(service.database, path, service.thumbnails, exported_by="desk")

    assert (manifest.people_count, manifest.embedding_count) == (2, 3)
    with zipfile.ZipFile(path) as archive:
        names = set(archive.namelist())
        assert names == {"manifest.json", "people.json", f"thumbnails/{ada.id}.jpg"}
        stored_manifest = json.loads(archive.read("manifest.json"))
        assert stored_manifest["version"] == MANIFEST_VERSION
        assert stored_manifest["exported_by"] == "desk"
        assert [p["name"] for p in json.loads(archive.read("people.json"))] == ["Ada", "Bob"]


def test_export_then_import_into_another_roster(tmp_path, roster):
    service, ada, bob = roster
    path = tmp_path / "roster.zip"
    export_roster(service.database, path, service.thumbnails)

    other = KnownPeopleService(thumbnails=InMemoryThumbnailStore())
    other.add_person("Carol", [sample(0.5, 0.5)])

    assert import_roster(other, path) == 2
    assert other.statistics() == (3, 4)
    imported = other.person_by_id(ada.id)
    assert imported.role == "Reporter"
    assert [e.embedding for e in imported.embeddings] == [e.embedding for e in ada.embeddings]
    assert other.thumbnail(ada.id) == b"ada-jpg"
    assert other.thumbnail(bob.id) is None


def test_import_matches_like_the_source(tmp_path, roster):
    service, ada, _ = roster
    buffer = io.BytesIO()
    export_roster(service.database, buffer)
    buffer.seek(0)

    other = KnownPeopleService()
    import_roster(other, buffer)

    query = embedding_to_bytes(np.array([1.0, 0.02], dtype=np.float32))
    assert other.match_face(query, 0.45, 1)[0].person.id == ada.id


def test_missing_people_file_is_rejected(tmp_path):
    path = tmp_path / "broken.zip"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("manifest.json", "{}")

    with pytest.raises(RosterArchiveError):
        read_roster_archive(path)


def test_not_a_zip_is_rejected(tmp_path):
    path = tmp_path / "roster.zip"
    path.write_bytes(b"definitely not a zip")
    with pytest.raises(RosterArchiveError):
        read_roster_archive(path)


def test_missing_manifest_is_tolerated(tmp_path, roster):
    service, _, _ = roster
    source = tmp_path / "full.zip"
    export_roster(service.database, source)
    stripped = tmp_path / "stripped.zip"
    with zipfile.ZipFile(source) as src, zipfile.ZipFile(stripped, "w") as dst:
        dst.writestr("people.json", src.read("people.json"))

    archive = read_roster_archive(stripped)

    assert (archive.manifest.people_count, archive.manifest.embedding_count) == (2, 3)
    assert len(archive.people) == 2


def test_directory_thumbnail_store(tmp_path):
    store = DirectoryThumbnailStore(tmp_path / "thumbs")
    store.save("per_1", b"jpg")
    assert (tmp_path / "thumbs" / "per_1.jpg").read_bytes() == b"jpg"
    assert store.load("per_1") == b"jpg"
    store.delete("per_1")
    store.delete("per_1")
    assert store.load("per_1") is None


def test_person_id_cannot_escape_thumbnail_directory(tmp_path):
    path = tmp_path / "hostile.zip"
    people = [{"id": "../../escaped", "name": "Eve", "embeddings": []}]
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("people.json", json.dumps(people))
        archive.writestr("thumbnails/../../escaped.jpg", b"jpg")
    service = KnownPeopleService(thumbnails=DirectoryThumbnailStore(tmp_path / "store" / "thumbs"))

    with pytest.raises(RosterArchiveError):
        import_roster(service, path)

    assert not (tmp_path / "escaped.jpg").exists()
    assert service.statistics() == (0, 0)


@pytest.mark.parametrize("person_id", ["../x", "a/b", "a\\b", "..", ""])
def test_directory_thumbnail_store_rejects_unsafe_ids(tmp_path, person_id):
    store = DirectoryThumbnailStore(tmp_path / "thumbs")
    with pytest.raises(ValueError):
        store.save(person_id, b"jpg")
    assert list((tmp_path / "thumbs").iterdir()) == []
