"""Face group business logic - clustering a folder, naming, merging, splitting.

Every function works on a loaded ``FolderFaceData`` and mutates it in place;
persisting the result is the caller's job. Group membership and
``DetectedFace.group_id`` are kept in sync, empty groups are dropped, and a
group whose representative leaves picks a new one.
"""

import logging
import os
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Sequence

from faceroster.ai.assignment import cluster_new_faces
from faceroster.ai.embedding import EmbeddingCache
from faceroster.ai.quality import pick_representative
from faceroster.ai.suggestions import compute_merge_suggestions
from faceroster.config import ClusteringOptions, settings
from faceroster.models.face import (
    DetectedFace,
    FaceCleanupPolicy,
    FaceGroup,
    FileSignature,
    FolderFaceData,
    MergeSuggestion,
)

logger = logging.getLogger(__name__)


# --- Clustering ---


def apply_clustering(
    data: FolderFaceData,
    new_faces: Sequence[DetectedFace] = (),
    scanned_files: Mapping[str, FileSignature] | None = None,
    options: ClusteringOptions | None = None,
    rng: random.Random | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> list[FaceGroup]:
    """Add freshly detected faces to the folder and group every unclustered face.

    Existing groups are kept: new faces first try to join them, the rest are
    clustered with the configured algorithm. The folder is only updated once
    the run completes, so a cancelled run leaves ``data`` untouched.

    Args:
        data: folder face data to update
        new_faces: faces from the files scanned in this pass
        scanned_files: signatures of those files, recorded for the next rescan
        options: clustering configuration (application settings if None)

    Returns:
        The folder's groups after clustering.
    """
    options = options or settings.clustering_options()
    faces = [f.model_copy(deep=True) for f in data.faces]
    faces.extend(f.model_copy(deep=True) for f in new_faces)
    groups = [g.model_copy(deep=True) for g in data.groups]

    groups = cluster_new_faces(
        faces,
        faces,
        groups,
        options,
        cache=EmbeddingCache(),
        rng=rng,
        should_cancel=should_cancel,
    )

    data.faces = faces
    data.groups = groups
    if scanned_files:
        data.scanned_files.update(scanned_files)
    data.last_scan_date = datetime.now(timezone.utc)
    data.scan_complete = True

    logger.info("Folder %s: %d faces in %d groups", data.folder_path, len(faces), len(groups))
    return groups


def merge_suggestions(data: FolderFaceData, options: ClusteringOptions | None = None) -> list[MergeSuggestion]:
    """Group pairs that narrowly missed the clustering threshold."""
    options = options or settings.clustering_options()
    return compute_merge_suggestions(
        data.groups,
        data.faces,
        options.threshold,
        options.merge_margin,
        options.make_distance(),
    )


def apply_merge_suggestion(data: FolderFaceData, suggestion: MergeSuggestion) -> bool:
    """Accept a suggestion: the second group is merged into the first."""
    return merge_groups(data, suggestion.group2_id, suggestion.group1_id)


# --- Naming & merging ---


def sorted_groups(data: FolderFaceData) -> list[FaceGroup]:
    """Named groups alphabetically, then unnamed groups largest first."""
    named = sorted((g for g in data.groups if g.name), key=lambda g: g.name.casefold())
    unnamed = sorted((g for g in data.groups if not g.name), key=lambda g: len(g.face_ids), reverse=True)
    return named + unnamed


def name_group(data: FolderFaceData, group_id: str, name: str | None) -> bool:
    """Set a group's name; a blank name clears it."""
    group = data.group_by_id(group_id)
    if group is None:
        return False
    group.name = name.strip() if name and name.strip() else None
    return True


def _move_members(data: FolderFaceData, source: FaceGroup, target: FaceGroup) -> None:
    lookup = {f.id: f for f in data.faces}
    target.face_ids.extend(source.face_ids)
    for face_id in source.face_ids:
        if face_id in lookup:
            lookup[face_id].group_id = target.id
    data.groups = [g for g in data.groups if g.id != source.id]


def merge_groups(data: FolderFaceData, source_id: str, target_id: str) -> bool:
    """Move every face of ``source`` into ``target`` and drop ``source``."""
    source = data.group_by_id(source_id)
    target = data.group_by_id(target_id)
    if source is None or target is None or source is target:
        return False
    _move_members(data, source, target)
    return True


def merge_multiple_groups(data: FolderFaceData, group_ids: Iterable[str]) -> FaceGroup | None:
    """Merge several groups into the one listed first by :func:`sorted_groups`.

    Returns:
        The surviving group, or None if fewer than two of the ids are known.
    """
    wanted = set(group_ids)
    selected = [g for g in sorted_groups(data) if g.id in wanted]
    if len(selected) < 2:
        return None
    target = selected[0]
    for source in selected[1:]:
        _move_members(data, source, target)
    return target


# --- Splitting & moving ---


def _new_solo_group(data: FolderFaceData, face: DetectedFace) -> FaceGroup:
    group = FaceGroup(representative_face_id=face.id, face_ids=[face.id])
    data.groups.append(group)
    face.group_id = group.id
    return group


def _repair_representative(data: FolderFaceData, group: FaceGroup) -> None:
    if not group.face_ids or group.representative_face_id in group.face_ids:
        return
    members = data.faces_in_group(group)
    group.representative_face_id = pick_representative(members).id if members else group.face_ids[0]


def ungroup_face(data: FolderFaceData, face_id: str) -> FaceGroup | None:
    """Split one face out of its group into a new single-face group.

    A face that is already alone stays where it is.
    """
    face = data.face_by_id(face_id)
    if face is None or face.group_id is None:
        return None
    group = data.group_by_id(face.group_id)
    if group is None or len(group.face_ids) <= 1:
        return None

    group.face_ids.remove(face_id)
    _repair_representative(data, group)
    return _new_solo_group(data, face)


def ungroup_multiple(data: FolderFaceData, group_ids: Iterable[str]) -> list[FaceGroup]:
    """Break each group into single-face groups; the first member keeps the group."""
    lookup = {f.id: f for f in data.faces}
    created = []
    for group_id in group_ids:
        group = data.group_by_id(group_id)
        if group is None or len(group.face_ids) <= 1:
            continue
        keep, rest = group.face_ids[0], group.face_ids[1:]
        group.face_ids = [keep]
        group.representative_face_id = keep
        for face_id in rest:
            if face_id in lookup:
                created.append(_new_solo_group(data, lookup[face_id]))
    return created


def remove_faces_from_groups(data: FolderFaceData, face_ids: Iterable[str]) -> None:
    """Detach faces from their groups, dropping groups that become empty."""
    removed = set(face_ids)
    for face in data.faces:
        if face.id in removed:
            face.group_id = None

    kept = []
    for group in data.groups:
        if removed.intersection(group.face_ids):
            group.face_ids = [fid for fid in group.face_ids if fid not in removed]
            if not group.face_ids:
                continue
            _repair_representative(data, group)
        kept.append(group)
    data.groups = kept


def move_face(data: FolderFaceData, face_id: str, target_group_id: str) -> bool:
    return move_faces(data, [face_id], target_group_id)


def move_faces(data: FolderFaceData, face_ids: Iterable[str], target_group_id: str) -> bool:
    """Move faces from wherever they are into an existing group."""
    target = data.group_by_id(target_group_id)
    if target is None:
        return False
    lookup = {f.id: f for f in data.faces}
    moving = [fid for fid in dict.fromkeys(face_ids) if fid in lookup and fid not in target.face_ids]
    if not moving:
        return False

    remove_faces_from_groups(data, moving)
    target.face_ids.extend(moving)
    for face_id in moving:
        lookup[face_id].group_id = target.id
    return True


def create_new_group(data: FolderFaceData, face_ids: Iterable[str]) -> FaceGroup | None:
    """Pull faces out of their groups into a brand new group."""
    lookup = {f.id: f for f in data.faces}
    members = [lookup[fid] for fid in dict.fromkeys(face_ids) if fid in lookup]
    if not members:
        return None

    remove_faces_from_groups(data, [f.id for f in members])
    group = FaceGroup(
        representative_face_id=pick_representative(members).id,
        face_ids=[f.id for f in members],
    )
    data.groups.append(group)
    for face in members:
        face.group_id = group.id
    return group


# --- Deleting ---


def delete_faces(data: FolderFaceData, face_ids: Iterable[str]) -> int:
    """Remove faces from the folder entirely. Returns how many were deleted."""
    doomed = set(face_ids)
    remove_faces_from_groups(data, doomed)
    before = len(data.faces)
    data.faces = [f for f in data.faces if f.id not in doomed]
    return before - len(data.faces)


def delete_group(data: FolderFaceData, group_id: str) -> set[str]:
    """Delete a group and all of its faces.

    Returns:
        Image paths of the deleted faces, for callers that also discard the
        photos themselves.
    """
    group = data.group_by_id(group_id)
    if group is None:
        return set()
    paths = image_paths_for_group(data, group)
    delete_faces(data, list(group.face_ids))
    logger.info("Deleted group %s (%d images)", group_id, len(paths))
    return paths


def image_paths_for_group(data: FolderFaceData, group: FaceGroup) -> set[str]:
    return {f.image_path for f in data.faces_in_group(group)}


# --- Incremental rescan ---


@dataclass
class RescanPlan:
    to_scan: list[str] = field(default_factory=list)  # new or modified files
    to_remove: set[str] = field(default_factory=set)  # deleted or modified files
    unchanged: set[str] = field(default_factory=set)


def file_signature(path: str) -> FileSignature | None:
    """Modification time and size of a file, None if it cannot be read."""
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return FileSignature(
        modified_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc),
        file_size=stat.st_size,
    )


def categorize_files(
    current_files: Mapping[str, FileSignature | None],
    scanned_files: Mapping[str, FileSignature],
) -> RescanPlan:
    """Compare the folder's files against the signatures of the last scan.

    Args:
        current_files: path -> current signature (None if unreadable, which
            forces a rescan)
        scanned_files: path -> signature recorded at the last scan
    """
    plan = RescanPlan()
    for path, signature in current_files.items():
        previous = scanned_files.get(path)
        if signature is not None and previous is not None and previous == signature:
            plan.unchanged.add(path)
        else:
            plan.to_scan.append(path)

    plan.to_remove = (set(scanned_files) - set(current_files)) | (set(plan.to_scan) & set(scanned_files))
    return plan


def prepare_rescan(
    data: FolderFaceData | None,
    current_files: Mapping[str, FileSignature | None],
) -> RescanPlan:
    """Work out which files to scan and drop faces of files that are not unchanged.

    Faces survive only on files whose recorded signature still matches, so a
    file that is scanned again never keeps its old faces. With no previous data
    every file is scanned.
    """
    if data is None:
        return RescanPlan(to_scan=list(current_files))

    plan = categorize_files(current_files, data.scanned_files)
    stale = [f.id for f in data.faces if f.image_path not in plan.unchanged]
    if stale:
        delete_faces(data, stale)
    for path in plan.to_remove:
        data.scanned_files.pop(path, None)

    logger.info(
        "Rescan of %s: %d to scan, %d removed, %d unchanged (%d stale faces dropped)",
        data.folder_path, len(plan.to_scan), len(plan.to_remove), len(plan.unchanged), len(stale),
    )
    return plan


def should_cleanup(data: FolderFaceData, policy: FaceCleanupPolicy, now: datetime | None = None) -> bool:
    """True when the folder's face data is older than the policy allows.

    Naive datetimes are taken as UTC.
    """
    max_age = FaceCleanupPolicy(policy).max_age
    if max_age is None:
        return False
    now = _as_utc(now or datetime.now(timezone.utc))
    return now - _as_utc(data.last_scan_date) > max_age


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
