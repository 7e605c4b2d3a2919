"""Subject + reference mesh -> detected bases -> OpenSCAD rebase program."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import trimesh

from gridfinity_rebase.audit import AuditTrail, CheckpointHandle
from gridfinity_rebase.contracts import (
    BaseAnnotation,
    EvaluatorResult,
    HullShape,
    OrientationResult,
    RebaseConfig,
    RebaseRunResult,
)
from gridfinity_rebase.detection import hull_bounds, hull_centroid
from gridfinity_rebase.evaluator import run_openscad
from gridfinity_rebase.mesh_io import load_mesh, sha256_file
from gridfinity_rebase.orientation import (
    ROTATION_TYPES,
    annotate_bases,
    select_best_orientation,
    select_reference_base,
)
from gridfinity_rebase.scad_writer import (
    CUT_INNER_SIZE_MM,
    CUT_OUTER_SIZE_MM,
    render_rebase_scad,
)

logger = logging.getLogger(__name__)

DETECTION_SCHEMA = "gridfinity_rebase.detection.v1"


def detect_and_render(
    subject_mesh: trimesh.Trimesh,
    reference_mesh: trimesh.Trimesh,
    config: Optional[RebaseConfig] = None,
) -> Tuple[OrientationResult, OrientationResult, HullShape, str, List[BaseAnnotation]]:
    """Detection for both meshes plus the rendered program.

    Pure computation over the given meshes; raises ``NoBaseGeometryError``
    when either mesh offers nothing to detect.
    """
    subject = select_best_orientation(subject_mesh, config)
    reference, reference_shape = select_reference_base(reference_mesh, config)
    scad_code = render_rebase_scad(
        shapes=subject.shapes,
        min_z=subject.min_z,
        rotation_type=subject.rotation_type,
        reference_shape=reference_shape,
        reference_min_z=reference.min_z,
        reference_rotation_type=reference.rotation_type,
    )
    return subject, reference, reference_shape, scad_code, annotate_bases(subject)


def run_rebase_pipeline(
    *,
    config: RebaseConfig,
    run_id: str,
    artifacts_dir: Path,
    audit: Optional[AuditTrail] = None,
) -> RebaseRunResult:
    """One audited run: load, detect, render and (optionally) evaluate.

    Detection failures propagate; evaluator failures only set the run status
    to ``"failed"``.
    """
    audit = audit or AuditTrail(run_id=run_id, artifacts_dir=artifacts_dir)

    subject_path = Path(config.subject_mesh_path)
    reference_path = Path(config.reference_mesh_path)
    subject_mesh = load_mesh(subject_path)
    reference_mesh = load_mesh(reference_path)
    hashes = {
        "subject_sha256": sha256_file(subject_path),
        "reference_sha256": sha256_file(reference_path),
    }
    last = audit.write_checkpoint(
        0,
        "preflight",
        counts={
            "subject_triangles": int(len(subject_mesh.faces)),
            "reference_triangles": int(len(reference_mesh.faces)),
        },
        invariants={
            "units": "mm",
            "z_tolerance": config.z_tolerance,
            "closeness_threshold": config.closeness_threshold,
        },
        input_hashes=hashes,
    )

    subject, reference, reference_shape, scad_code, annotations = detect_and_render(
        subject_mesh, reference_mesh, config
    )
    last = _checkpoint_orientations(
        audit, config, subject, reference, reference_shape, last
    )
    last = audit.write_checkpoint(
        3,
        "scad_emit",
        counts={
            "simple_cut_placements": len(subject.shapes),
            "preferred_bottom_placements": len(subject.shapes),
        },
        metrics={"openscad_lines": float(len(scad_code.splitlines()))},
        invariants={
            "cut_outer_mm": CUT_OUTER_SIZE_MM,
            "cut_inner_mm": CUT_INNER_SIZE_MM,
        },
        previous=last,
    )

    evaluation: Optional[EvaluatorResult] = None
    status = "not_evaluated"
    if config.evaluate:
        evaluation = run_openscad(
            scad_code,
            subject_path.read_bytes(),
            reference_path.read_bytes(),
            command=config.openscad_command,
            extra_args=config.evaluator_args,
        )
        status = "failed" if evaluation.failed else "ok"
    _checkpoint_evaluation(audit, evaluation, status, last)
    audit.finalize()

    logger.info(
        "Run %s: %d bases, rotation %s, status %s",
        run_id,
        len(subject.shapes),
        subject.rotation_type,
        status,
    )
    return RebaseRunResult(
        run_id=run_id,
        status=status,
        subject_hash_sha256=hashes["subject_sha256"],
        reference_hash_sha256=hashes["reference_sha256"],
        subject=subject,
        reference=reference,
        reference_shape=reference_shape,
        annotations=annotations,
        openscad_code=scad_code,
        detection_payload=build_detection_payload(
            run_id=run_id,
            config=config,
            subject=subject,
            reference=reference,
            reference_shape=reference_shape,
            annotations=annotations,
            status=status,
        ),
        evaluation=evaluation,
        checkpoints=[c.path for c in audit.checkpoints],
        decision_log_path=audit.decision_log_path,
        decision_hash_chain_path=audit.hash_chain_path,
        debug={
            "subject_candidates": subject.candidate_scores,
            "reference_candidates": reference.candidate_scores,
        },
    )


def build_detection_payload(
    *,
    run_id: str,
    config: RebaseConfig,
    subject: OrientationResult,
    reference: OrientationResult,
    reference_shape: HullShape,
    annotations: List[BaseAnnotation],
    status: str,
) -> Dict[str, object]:
    bases = []
    for annotation, shape in zip(annotations, subject.shapes):
        bases.append(
            {
                "number": annotation.number,
                "centroid": list(annotation.centroid),
                "bounds": list(hull_bounds(shape)),
                "hull": [list(p) for p in annotation.hull],
                "label_anchor": list(annotation.label_anchor),
                "outline": [list(p) for p in annotation.outline],
            }
        )
    return {
        "schema_version": DETECTION_SCHEMA,
        "run_id": run_id,
        "status": status,
        "design_name": config.design_name,
        "subject": {
            "rotation": subject.rotation_type,
            "badness": subject.badness,
            "min_z": subject.min_z,
            "candidates": subject.candidate_scores,
            "bases": bases,
        },
        "reference": {
            "rotation": reference.rotation_type,
            "badness": reference.badness,
            "min_z": reference.min_z,
            "detected_bases": len(reference.shapes),
            "selected_centroid": list(hull_centroid(reference_shape)),
            "selected_bounds": list(hull_bounds(reference_shape)),
        },
    }


def _checkpoint_orientations(
    audit: AuditTrail,
    config: RebaseConfig,
    subject: OrientationResult,
    reference: OrientationResult,
    reference_shape: HullShape,
    previous: CheckpointHandle,
) -> CheckpointHandle:
    _record_orientation(audit, 1, "subject", subject)
    handle = audit.write_checkpoint(
        1,
        "subject_orientation",
        counts={"bases": len(subject.shapes)},
        metrics={"badness": float(subject.badness), "min_z": float(subject.min_z)},
        invariants={
            "rotation_order": list(ROTATION_TYPES),
            "expected_base_size_mm": config.expected_base_size_mm,
            "badness_threshold_mm": config.badness_threshold_mm,
        },
        outputs={
            "rotation": subject.rotation_type,
            "candidates": subject.candidate_scores,
        },
        previous=previous,
    )

    _record_orientation(audit, 2, "reference", reference)
    return audit.write_checkpoint(
        2,
        "reference_base",
        counts={"bases": len(reference.shapes)},
        metrics={"badness": float(reference.badness), "min_z": float(reference.min_z)},
        invariants={"selected_island": 0},
        outputs={
            "rotation": reference.rotation_type,
            "centroid": list(hull_centroid(reference_shape)),
        },
        previous=handle,
    )


def _checkpoint_evaluation(
    audit: AuditTrail,
    evaluation: Optional[EvaluatorResult],
    status: str,
    previous: CheckpointHandle,
) -> CheckpointHandle:
    diagnostics = list(evaluation.diagnostics) if evaluation else []
    output = evaluation.output if evaluation else None
    return audit.write_checkpoint(
        4,
        "evaluation",
        counts={"diagnostics": len(diagnostics), "output_bytes": len(output or b"")},
        invariants={"status": status},
        outputs={"diagnostics": diagnostics},
        previous=previous,
    )


def _record_orientation(
    audit: AuditTrail, phase_index: int, role: str, result: OrientationResult
) -> None:
    alternatives = [
        {"name": str(score["rotation"]), "cost": float(score["badness"])}
        for score in result.candidate_scores
        if score.get("evaluated")
    ]
    audit.append_decision(
        phase_index=phase_index,
        decision_type=f"{role}_orientation",
        role=role,
        alternatives=alternatives,
        selected=result.rotation_type,
        reason_codes=["lowest_badness", "first_seen_wins_ties"],
        evidence={
            "badness": float(result.badness),
            "islands": float(len(result.shapes)),
            "min_z": float(result.min_z),
        },
    )
