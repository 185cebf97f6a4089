"""Incremental assignment of new faces to existing groups."""

import pytest

from faceroster.ai.assignment import assign_to_existing_groups, cluster_new_faces
from faceroster.ai.face_cluster import ClusteringAlgorithm, make_group
from faceroster.config import ClusteringOptions
from faceroster.errors import ClusteringCancelled


@pytest.fixture
def existing(make_face, at_angle):
    """One folder with a group of two faces around 0 degrees."""
    members = [make_face(at_angle(d), image_path=f"old{d}.jpg", quality=0.5) for d in (0, 4)]
    group = make_group(members)
    for face in members:
        face.group_id = group.id
    return members, group


def test_new_face_joins_closest_group(make_face, at_angle, existing):
    members, group = existing
    newcomer = make_face(at_angle(2), image_path="new.jpg", quality=0.4)

    remaining = assign_to_existing_groups([newcomer], members + [newcomer], [group], 0.4)

    assert remaining == []
    assert newcomer.id in group.face_ids
    assert newcomer.group_id == group.id
    assert group.representative_face_id == members[0].id


def test_better_face_becomes_representative(make_face, at_angle, existing):
    members, group = existing
    sharp = make_face(at_angle(1), image_path="sharp.jpg", quality=0.99)

    assign_to_existing_groups([sharp], members + [sharp], [group], 0.4)

    assert group.representative_face_id == sharp.id


def test_assignment_threshold_is_strict(named_faces, table_distance):
    a, b = named_faces("A", "B")
    group = make_group([a])
    distance = table_distance({("A", "B"): 0.4})

    remaining = assign_to_existing_groups([b], [a, b], [group], 0.4, distance)

    assert remaining == [b]
    assert group.face_ids == [a.id]
    assert b.group_id is None


def test_face_goes_to_nearest_of_several_groups(named_faces, table_distance):
    a, b, c = named_faces("A", "B", "C")
    first, second = make_group([a]), make_group([b])
    distance = table_distance({("A", "C"): 0.3, ("B", "C"): 0.1})

    assign_to_existing_groups([c], [a, b, c], [first, second], 0.4, distance)

    assert c.id in second.face_ids and c.id not in first.face_ids


def test_group_distance_uses_all_members(named_faces, table_distance):
    a1, a2, c = named_faces("A1", "A2", "C")
    group = make_group([a1, a2])
    # Close to one member, far from the other: average 0.5
    distance = table_distance({("A1", "C"): 0.1, ("A2", "C"): 0.9, ("A1", "A2"): 0.1})

    assert assign_to_existing_groups([c], [a1, a2, c], [group], 0.4, distance) == [c]


def test_cluster_new_faces_assigns_then_clusters(make_face, at_angle, existing):
    members, group = existing
    near = make_face(at_angle(3), image_path="near.jpg")
    stranger_a = make_face(at_angle(90), image_path="stranger_a.jpg")
    stranger_b = make_face(at_angle(92), image_path="stranger_b.jpg")
    all_faces = members + [near, stranger_a, stranger_b]

    options = ClusteringOptions(algorithm=ClusteringAlgorithm.HIERARCHICAL_AVERAGE, threshold=0.4)
    groups = cluster_new_faces(all_faces, all_faces, [group], options)

    assert groups[0] is group
    assert near.group_id == group.id
    assert len(groups) == 2
    new_group = groups[1]
    assert set(new_group.face_ids) == {stranger_a.id, stranger_b.id}
    assert stranger_a.group_id == stranger_b.group_id == new_group.id


def test_cluster_new_faces_without_unclustered_faces(existing):
    members, group = existing
    assert cluster_new_faces(members, members, [group]) == [group]


def test_cluster_new_faces_from_scratch(make_face, at_angle):
    faces = [make_face(at_angle(d), image_path=f"{d}.jpg", quality=0.9) for d in (0, 2, 180)]
    options = ClusteringOptions(seed=9)

    groups = cluster_new_faces(faces, faces, [], options)

    assert len(groups) == 2
    assert all(f.group_id is not None for f in faces)
    for group in groups:
        for face_id in group.face_ids:
            assert next(f for f in faces if f.id == face_id).group_id == group.id


def test_cluster_new_faces_can_be_cancelled(make_face, at_angle, existing):
    members, group = existing
    newcomer = make_face(at_angle(1), image_path="new.jpg")
    with pytest.raises(ClusteringCancelled):
        cluster_new_faces([newcomer], members + [newcomer], [group], should_cancel=lambda: True)
