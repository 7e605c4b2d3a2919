"""Bottom-face extraction, island partitioning and island hulls.

The detector looks at the lowest layer of a mesh only: triangles whose three
vertices all sit on the minimum Z plane.  Those faces are grouped into
islands (faces connected through near-coincident vertices) and each island
is summarised by the convex hull of its vertices in the XY plane.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree
from shapely.geometry import MultiPoint, Polygon
from shapely.geometry.polygon import orient

from gridfinity_rebase.contracts import HullShape, Vec2, to_vec2

logger = logging.getLogger(__name__)

Z_TOLERANCE = 0.001
CLOSENESS_THRESHOLD = 0.001


class DisjointSet:
    """Union-find over ``range(n)`` with path compression."""

    def __init__(self, n: int):
        self.parent = list(range(n))

    def find(self, x: int) -> int:
        parent = self.parent
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[ra] = rb

    def groups(self) -> List[List[int]]:
        """Members grouped by root, in first-seen root order."""
        by_root: dict[int, List[int]] = {}
        for i in range(len(self.parent)):
            by_root.setdefault(self.find(i), []).append(i)
        return list(by_root.values())


def mesh_min_z(triangles: np.ndarray) -> float:
    if len(triangles) == 0:
        return 0.0
    return float(np.min(triangles[:, :, 2]))


def extract_bottom_faces(
    triangles: np.ndarray,
    min_z: float,
    z_tolerance: float = Z_TOLERANCE,
) -> np.ndarray:
    """Return ``(m, 3, 2)`` XY faces of triangles lying on the ``min_z`` plane."""
    triangles = np.asarray(triangles, dtype=float).reshape(-1, 3, 3)
    on_floor = np.all(np.abs(triangles[:, :, 2] - min_z) < z_tolerance, axis=1)
    return triangles[on_floor][:, :, :2].copy()


def partition_islands(
    faces: np.ndarray,
    closeness_threshold: float = CLOSENESS_THRESHOLD,
) -> List[List[int]]:
    """Group bottom faces into islands of transitively touching faces.

    Two faces touch when any vertex of one is closer than
    ``closeness_threshold`` to any vertex of the other in both X and Y.
    The tree query only proposes candidate pairs; the strict per-axis test
    decides, so the result is the same as comparing every face pair.
    """
    faces = np.asarray(faces, dtype=float).reshape(-1, 3, 2)
    n = len(faces)
    forest = DisjointSet(n)
    if n < 2:
        return forest.groups()

    points = faces.reshape(-1, 2)
    tree = cKDTree(points)
    pairs = tree.query_pairs(r=closeness_threshold, p=np.inf, output_type="ndarray")
    if len(pairs):
        delta = np.abs(points[pairs[:, 0]] - points[pairs[:, 1]])
        close = np.all(delta < closeness_threshold, axis=1)
        face_pairs = pairs[close] // 3
        for a, b in face_pairs:
            if a != b:
                forest.union(int(a), int(b))

    return forest.groups()


def build_hull(points: Sequence[Sequence[float]]) -> List[Vec2]:
    """Closed counter-clockwise convex hull ring of 2D *points*.

    Collinear input collapses to a closed segment ring and a single point to
    a two-point ring; degenerate islands still get a hull.
    """
    hull = MultiPoint([to_vec2(p) for p in points]).convex_hull
    if isinstance(hull, Polygon):
        ring = list(orient(hull, sign=1.0).exterior.coords)
    else:
        ring = list(hull.coords)
        ring.append(ring[0])
    return [to_vec2(p) for p in ring]


def shape_hulls_for_faces(
    faces: np.ndarray,
    closeness_threshold: float = CLOSENESS_THRESHOLD,
) -> List[HullShape]:
    shapes: List[HullShape] = []
    for island_index, members in enumerate(
        partition_islands(faces, closeness_threshold)
    ):
        points = faces[members].reshape(-1, 2)
        shapes.append(
            HullShape(
                island_index=island_index,
                face_indices=list(members),
                points=build_hull(points),
            )
        )
    return shapes


def shape_hulls_for_triangles(
    triangles: np.ndarray,
    z_tolerance: float = Z_TOLERANCE,
    closeness_threshold: float = CLOSENESS_THRESHOLD,
) -> Tuple[List[HullShape], float, int]:
    """Run extraction, partitioning and hulling on one triangle set.

    Returns ``(shapes, min_z, bottom_face_count)``.
    """
    min_z = mesh_min_z(triangles)
    faces = extract_bottom_faces(triangles, min_z, z_tolerance)
    shapes = shape_hulls_for_faces(faces, closeness_threshold)
    logger.debug(
        "min_z=%.4f bottom_faces=%d islands=%d", min_z, len(faces), len(shapes)
    )
    return shapes, min_z, len(faces)


def hull_bounds(shape: HullShape) -> Tuple[float, float, float, float]:
    """``(min_x, min_y, max_x, max_y)`` of the hull ring."""
    xs = [p[0] for p in shape.points]
    ys = [p[1] for p in shape.points]
    return min(xs), min(ys), max(xs), max(ys)


def hull_size(shape: HullShape) -> Tuple[float, float]:
    min_x, min_y, max_x, max_y = hull_bounds(shape)
    return max_x - min_x, max_y - min_y


def hull_centroid(shape: HullShape) -> Vec2:
    """Midpoint of the hull's bounding box (not the area centroid)."""
    min_x, min_y, max_x, max_y = hull_bounds(shape)
    return (min_x + max_x) / 2, (min_y + max_y) / 2
