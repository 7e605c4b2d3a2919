"""Search the six canonical mesh rotations for the one whose floor holds bases.

Each candidate rotation re-runs bottom-face detection on a rotated copy of
the mesh.  A candidate's badness is the number of island hulls whose
bounding box is not the expected base footprint; the lowest badness wins and
earlier candidates win ties, so an already upright mesh keeps "original".
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Tuple

import numpy as np
import trimesh

from gridfinity_rebase.contracts import (
    BaseAnnotation,
    HullShape,
    NoBaseGeometryError,
    OrientationCandidate,
    OrientationResult,
    RebaseConfig,
    to_vec3,
)
from gridfinity_rebase.detection import (
    CLOSENESS_THRESHOLD,
    Z_TOLERANCE,
    hull_centroid,
    hull_size,
    shape_hulls_for_triangles,
)
from gridfinity_rebase.mesh_io import mesh_triangles

logger = logging.getLogger(__name__)

EXPECTED_BASE_SIZE_MM = 35.6
BADNESS_THRESHOLD_MM = 1.0
LABEL_LIFT_MM = 6.0

# Enumeration order is the tie-break order.
ROTATION_TYPES = ("original", "x+", "x-", "y+", "y-", "180")

_X = [1.0, 0.0, 0.0]
_Y = [0.0, 1.0, 0.0]
_ROTATION_AXIS_ANGLE = {
    "x+": (math.pi / 2, _X),
    "x-": (-math.pi / 2, _X),
    "y+": (math.pi / 2, _Y),
    "y-": (-math.pi / 2, _Y),
    "180": (math.pi, _Y),
}


def rotation_matrix_for(rotation_type: str) -> np.ndarray:
    """4x4 homogeneous rotation for one of :data:`ROTATION_TYPES`."""
    if rotation_type == "original":
        return np.eye(4)
    if rotation_type not in _ROTATION_AXIS_ANGLE:
        raise ValueError(f"Unknown rotation type: {rotation_type}")
    angle, axis = _ROTATION_AXIS_ANGLE[rotation_type]
    return trimesh.transformations.rotation_matrix(angle, axis)


def is_hull_bad(
    shape: HullShape,
    expected: float = EXPECTED_BASE_SIZE_MM,
    threshold: float = BADNESS_THRESHOLD_MM,
) -> bool:
    width, height = hull_size(shape)
    return abs(width - expected) > threshold or abs(height - expected) > threshold


def score_badness(
    shapes: List[HullShape],
    expected: float = EXPECTED_BASE_SIZE_MM,
    threshold: float = BADNESS_THRESHOLD_MM,
) -> int:
    return sum(1 for shape in shapes if is_hull_bad(shape, expected, threshold))


def build_candidates(mesh: trimesh.Trimesh) -> List[OrientationCandidate]:
    """Rotated copies of *mesh*, one per rotation type, not yet scored."""
    candidates: List[OrientationCandidate] = []
    for rotation_type in ROTATION_TYPES:
        matrix = rotation_matrix_for(rotation_type)
        rotated = mesh.copy()
        if rotation_type != "original" and len(rotated.faces):
            rotated.apply_transform(matrix)
        candidates.append(
            OrientationCandidate(
                rotation_type=rotation_type,
                rotation_matrix=matrix,
                mesh=rotated,
                triangle_count=int(len(rotated.faces)),
            )
        )
    return candidates


def select_best_orientation(
    mesh: trimesh.Trimesh,
    config: Optional[RebaseConfig] = None,
) -> OrientationResult:
    """Score all six rotations of *mesh* and return the least bad one.

    Raises
    ------
    NoBaseGeometryError
        If no rotation has any triangle to inspect.
    """
    z_tolerance = config.z_tolerance if config else Z_TOLERANCE
    closeness = config.closeness_threshold if config else CLOSENESS_THRESHOLD
    expected = config.expected_base_size_mm if config else EXPECTED_BASE_SIZE_MM
    threshold = config.badness_threshold_mm if config else BADNESS_THRESHOLD_MM

    best: Optional[OrientationCandidate] = None
    scores: List[Dict[str, object]] = []

    for candidate in build_candidates(mesh):
        if candidate.triangle_count == 0:
            scores.append(
                {"rotation": candidate.rotation_type, "evaluated": False}
            )
            continue

        shapes, min_z, bottom_count = shape_hulls_for_triangles(
            mesh_triangles(candidate.mesh),
            z_tolerance=z_tolerance,
            closeness_threshold=closeness,
        )
        candidate.shapes = shapes
        candidate.min_z = min_z
        candidate.bottom_face_count = bottom_count
        candidate.badness = score_badness(shapes, expected, threshold)
        scores.append(
            {
                "rotation": candidate.rotation_type,
                "evaluated": True,
                "badness": candidate.badness,
                "islands": len(shapes),
                "bottom_faces": bottom_count,
                "min_z": min_z,
            }
        )
        logger.debug(
            "rotation %s: %d islands, badness %d",
            candidate.rotation_type,
            len(shapes),
            candidate.badness,
        )

        if best is None or candidate.badness < best.badness:
            best = candidate

    if best is None:
        raise NoBaseGeometryError("cannot detect any base: mesh has no triangles")

    logger.info(
        "Selected rotation %s (badness %d, %d bases)",
        best.rotation_type,
        best.badness,
        len(best.shapes),
    )
    return OrientationResult(
        badness=best.badness,
        shapes=best.shapes,
        rotation_type=best.rotation_type,
        rotation_matrix=best.rotation_matrix,
        rotated_mesh=best.mesh,
        min_z=best.min_z,
        candidate_scores=scores,
    )


def select_reference_base(
    mesh: trimesh.Trimesh,
    config: Optional[RebaseConfig] = None,
) -> Tuple[OrientationResult, HullShape]:
    """Best orientation of the reference mesh and its first detected base."""
    result = select_best_orientation(mesh, config)
    if not result.shapes:
        raise NoBaseGeometryError("cannot detect any base on the reference mesh")
    return result, result.shapes[0]


def annotate_bases(result: OrientationResult) -> List[BaseAnnotation]:
    """Numbered base overlays with labels placed in the source frame.

    ``hull`` and ``centroid`` stay in the rotated frame.  ``outline`` is the
    hull ring on the floor plane mapped back through the inverse rotation, so
    it overlays the unrotated model.  Each label anchor is the centroid mapped
    the same way, then lifted along +Z.
    """
    inverse = np.linalg.inv(result.rotation_matrix)
    annotations: List[BaseAnnotation] = []
    for number, shape in enumerate(result.shapes, start=1):
        cx, cy = hull_centroid(shape)
        ring = np.array(
            [(x, y, result.min_z) for x, y in shape.points] + [(cx, cy, result.min_z)],
            dtype=float,
        )
        mapped = trimesh.transform_points(ring, inverse)
        anchor = mapped[-1]
        anchor[2] += LABEL_LIFT_MM
        annotations.append(
            BaseAnnotation(
                number=number,
                hull=list(shape.points),
                centroid=(cx, cy),
                min_z=result.min_z,
                label_anchor=to_vec3(anchor),
                outline=[to_vec3(p) for p in mapped[:-1]],
            )
        )
    return annotations
