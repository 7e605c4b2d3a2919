"""Contracts for base detection, orientation search and cut-script runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import trimesh

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]

RotationType = str  # one of orientation.ROTATION_TYPES

# Evaluator diagnostic lines carrying this marker mean the cut failed.
ERROR_MARKER = "ERROR:"


class NoBaseGeometryError(ValueError):
    """Raised when a mesh offers no geometry to detect a base on."""


@dataclass(frozen=True)
class RebaseConfig:
    """Configuration for subject + reference mesh -> OpenSCAD rebase run."""

    subject_mesh_path: str
    reference_mesh_path: str
    design_name: str = "rebase"
    evaluate: bool = True
    openscad_command: Tuple[str, ...] = ("openscad",)
    evaluator_args: Tuple[str, ...] = ("--backend=manifold",)

    # Detection tolerances (model units, mm)
    z_tolerance: float = 0.001
    closeness_threshold: float = 0.001

    # Orientation scoring
    expected_base_size_mm: float = 35.6
    badness_threshold_mm: float = 1.0


@dataclass
class HullShape:
    """Convex hull of one island of bottom faces, projected onto XY."""

    island_index: int
    face_indices: List[int]
    points: List[Vec2]  # closed ring, counter-clockwise


@dataclass
class OrientationCandidate:
    """One of the six fixed whole-mesh rotations and its detections."""

    rotation_type: RotationType
    rotation_matrix: np.ndarray
    mesh: trimesh.Trimesh
    triangle_count: int
    min_z: float = 0.0
    bottom_face_count: int = 0
    shapes: List[HullShape] = field(default_factory=list)
    badness: int = 0


@dataclass
class OrientationResult:
    """Best-scoring orientation for a mesh."""

    badness: int
    shapes: List[HullShape]
    rotation_type: RotationType
    rotation_matrix: np.ndarray
    rotated_mesh: trimesh.Trimesh
    min_z: float
    candidate_scores: List[Dict[str, object]] = field(default_factory=list)


@dataclass
class BaseAnnotation:
    """Numbered overlay for a detected base, for presentation layers."""

    number: int
    hull: List[Vec2]  # closed ring in the rotated (detection) frame
    centroid: Vec2  # rotated frame
    min_z: float
    label_anchor: Vec3  # unrotated source frame
    outline: List[Vec3] = field(default_factory=list)  # hull ring, source frame


@dataclass
class EvaluatorResult:
    """Outcome of a single external evaluator call."""

    output: Optional[bytes]
    diagnostics: List[str]
    returncode: Optional[int] = None

    @property
    def failed(self) -> bool:
        if self.output is None:
            return True
        return any(ERROR_MARKER in line for line in self.diagnostics)


@dataclass
class RebaseRunResult:
    """In-memory result of a rebase run."""

    run_id: str
    status: str  # "not_evaluated" | "ok" | "failed"
    subject_hash_sha256: str
    reference_hash_sha256: str
    subject: OrientationResult
    reference: OrientationResult
    reference_shape: HullShape
    annotations: List[BaseAnnotation]
    openscad_code: str
    detection_payload: Dict[str, object]
    evaluation: Optional[EvaluatorResult]
    checkpoints: List[Path]
    decision_log_path: Path
    decision_hash_chain_path: Path
    debug: Dict[str, object] = field(default_factory=dict)


def to_vec3(values: Sequence[float]) -> Vec3:
    return (float(values[0]), float(values[1]), float(values[2]))


def to_vec2(values: Sequence[float]) -> Vec2:
    return (float(values[0]), float(values[1]))
