from __future__ import annotations

import numpy as np
import pytest
from shapely.geometry import Polygon

from gridfinity_rebase.contracts import HullShape
from gridfinity_rebase.detection import (
    DisjointSet,
    build_hull,
    extract_bottom_faces,
    hull_bounds,
    hull_centroid,
    hull_size,
    mesh_min_z,
    partition_islands,
    shape_hulls_for_faces,
    shape_hulls_for_triangles,
)
from gridfinity_rebase.mesh_io import mesh_triangles


def triangle(*points):
    return np.asarray(points, dtype=float)


def _tri3(z_values, offset=(0.0, 0.0)):
    ox, oy = offset
    xy = [(ox, oy), (ox + 1.0, oy), (ox, oy + 1.0)]
    return [(x, y, z) for (x, y), z in zip(xy, z_values)]


def test_bottom_faces_require_all_three_vertices_on_floor():
    triangles = np.asarray(
        [
            _tri3([0.0, 0.0, 0.0]),
            _tri3([0.0, 0.0009, 0.0]),
            _tri3([0.0, 0.0011, 0.0]),
            _tri3([0.0, 0.0, 5.0]),
        ]
    )
    faces = extract_bottom_faces(triangles, mesh_min_z(triangles))
    assert faces.shape == (2, 3, 2)
    assert np.allclose(faces[0], [(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])


def test_bottom_faces_of_empty_input_is_empty():
    empty = np.zeros((0, 3, 3))
    faces = extract_bottom_faces(empty, mesh_min_z(empty))
    assert faces.shape == (0, 3, 2)
    assert partition_islands(faces) == []
    shapes, _, count = shape_hulls_for_triangles(empty)
    assert shapes == [] and count == 0


def test_disjoint_set_groups_in_first_seen_root_order():
    forest = DisjointSet(5)
    forest.union(4, 1)
    forest.union(3, 0)
    assert forest.groups() == [[0, 3], [1, 4], [2]]


def test_faces_sharing_a_vertex_form_one_island():
    faces = np.asarray(
        [
            triangle((0, 0), (1, 0), (0, 1)),
            triangle((1, 0), (2, 0), (2, 1)),
        ]
    )
    assert partition_islands(faces) == [[0, 1]]


def test_closeness_is_strict_and_per_axis():
    base = triangle((0, 0), (1, 0), (0, 1))
    near = triangle((1.0005, 0.0005), (2, 0), (2, 1))
    far = triangle((1.002, 0.0), (2, 0), (2, 1))
    assert partition_islands(np.asarray([base, near])) == [[0, 1]]
    assert partition_islands(np.asarray([base, far])) == [[0], [1]]


def test_island_order_follows_lowest_face_index():
    faces = np.asarray(
        [
            triangle((0, 0), (1, 0), (0, 1)),  # A
            triangle((50, 50), (51, 50), (50, 51)),  # B
            triangle((1, 0), (1, 1), (0, 1)),  # A again
            triangle((51, 50), (51, 51), (50, 51)),  # B again
        ]
    )
    assert partition_islands(faces) == [[0, 2], [1, 3]]


def test_connectivity_is_transitive():
    faces = np.asarray(
        [
            triangle((0, 0), (1, 0), (0, 1)),
            triangle((10, 0), (11, 0), (10, 1)),
            triangle((1, 0), (5, 0), (10, 0)),  # bridges the two
        ]
    )
    assert partition_islands(faces) == [[0, 1, 2]]


def test_partition_covers_every_face_exactly_once():
    rng = np.random.default_rng(7)
    # Snap to a coarse grid so that plenty of vertices coincide.
    faces = rng.integers(0, 12, size=(60, 3, 2)).astype(float)
    islands = partition_islands(faces)

    members = [i for island in islands for i in island]
    assert sorted(members) == list(range(len(faces)))
    assert len(members) == len(set(members))
    for island in islands:
        assert island == sorted(island)
    assert [island[0] for island in islands] == sorted(island[0] for island in islands)


def test_partition_matches_all_pairs_scan():
    rng = np.random.default_rng(11)
    faces = np.round(rng.uniform(0, 6, size=(40, 3, 2)), 1)
    islands = partition_islands(faces)

    forest = DisjointSet(len(faces))
    for i in range(len(faces)):
        for j in range(i):
            close = np.abs(faces[i][:, None, :] - faces[j][None, :, :]) < 0.001
            if np.any(np.all(close, axis=2)):
                forest.union(i, j)
    assert islands == forest.groups()


def test_hull_is_closed_and_counter_clockwise():
    points = [(0, 0), (4, 0), (4, 3), (0, 3), (2, 1), (1, 2)]
    ring = build_hull(points)
    assert ring[0] == ring[-1]
    assert len(ring) == 5
    assert Polygon(ring).exterior.is_ccw
    assert Polygon(ring).area == pytest.approx(12.0)


def test_degenerate_hulls_do_not_fail():
    single = build_hull([(0, 0), (1, 0), (0, 1)])
    assert len(single) == 4

    collinear = build_hull([(0, 0), (1, 1), (2, 2)])
    assert collinear[0] == collinear[-1]
    assert {tuple(p) for p in collinear} == {(0.0, 0.0), (2.0, 2.0)}

    point = build_hull([(3, 3), (3, 3), (3, 3)])
    assert point == [(3.0, 3.0), (3.0, 3.0)]


def test_hull_centroid_is_bounding_box_midpoint():
    shape = HullShape(
        island_index=0,
        face_indices=[0],
        points=[(1.5, -2.0), (9.25, -2.0), (3.0, 7.5), (1.5, -2.0)],
    )
    assert hull_bounds(shape) == (1.5, -2.0, 9.25, 7.5)
    assert hull_size(shape) == (7.75, 9.5)
    assert hull_centroid(shape) == ((1.5 + 9.25) / 2, (-2.0 + 7.5) / 2)


def test_box_feet_become_two_square_hulls(two_base_mesh):
    shapes, min_z, count = shape_hulls_for_triangles(mesh_triangles(two_base_mesh))
    assert min_z == pytest.approx(0.0)
    assert count == 4
    assert len(shapes) == 2
    centroids = sorted(hull_centroid(s) for s in shapes)
    assert centroids[0] == pytest.approx((-30.0, 0.0))
    assert centroids[1] == pytest.approx((30.0, 0.0))
    for shape in shapes:
        width, height = hull_size(shape)
        assert width == pytest.approx(35.6)
        assert height == pytest.approx(35.6)


def test_shape_numbering_is_stable():
    faces = np.asarray(
        [
            triangle((20, 0), (21, 0), (20, 1)),
            triangle((0, 0), (1, 0), (0, 1)),
        ]
    )
    first = shape_hulls_for_faces(faces)
    second = shape_hulls_for_faces(faces.copy())
    assert [s.face_indices for s in first] == [[0], [1]]
    assert [s.points for s in first] == [s.points for s in second]
    assert [s.island_index for s in first] == [0, 1]
