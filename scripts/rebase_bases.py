#!/usr/bin/env python3
"""Detect the bases of a module and swap them for a reference base."""

from __future__ import annotations

import argparse
import logging
import os
import shlex
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gridfinity_rebase import NoBaseGeometryError, RebaseConfig, run_rebase_pipeline
from gridfinity_rebase.audit import AuditTrail
from run_protocol import (
    copy_input,
    prepare_run_dir,
    update_latest_pointer,
    write_bytes,
    write_json,
    write_text,
)

logger = logging.getLogger("rebase_bases")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replace every detected base of a mesh with a reference base"
    )
    parser.add_argument("--mesh", required=True, help="Mesh whose bases get replaced")
    parser.add_argument(
        "--reference", required=True, help="Mesh whose base style is wanted"
    )
    parser.add_argument("--name", default="rebase", help="Design/run name")
    parser.add_argument("--runs-dir", default="runs", help="Runs output root")
    parser.add_argument(
        "--openscad",
        default=os.environ.get("OPENSCAD_BIN", "openscad"),
        help="OpenSCAD command (default: $OPENSCAD_BIN or 'openscad')",
    )
    parser.add_argument(
        "--skip-evaluate",
        action="store_true",
        help="Only detect bases and write the .scad program",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def _build_summary(*, run_id: str, elapsed_s: float, result) -> str:
    lines = [
        f"# Run {run_id}",
        "",
        f"- Status: **{result.status.upper()}**",
        f"- Duration: {elapsed_s:.2f}s",
        f"- Bases detected: {len(result.subject.shapes)}",
        f"- Rotation: {result.subject.rotation_type} (badness {result.subject.badness})",
        f"- Reference rotation: {result.reference.rotation_type}",
        "",
    ]
    if result.evaluation is not None and result.evaluation.diagnostics:
        lines.append("## Evaluator diagnostics")
        lines.extend(f"    {line}" for line in result.evaluation.diagnostics)
        lines.append("")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    started = time.perf_counter()
    run_paths = prepare_run_dir(args.runs_dir, args.name)
    subject_copy = copy_input(args.mesh, run_paths.input_dir, "subject.stl")
    reference_copy = copy_input(args.reference, run_paths.input_dir, "reference.stl")

    config = RebaseConfig(
        subject_mesh_path=str(subject_copy),
        reference_mesh_path=str(reference_copy),
        design_name=args.name,
        evaluate=not args.skip_evaluate,
        openscad_command=tuple(shlex.split(args.openscad)),
    )

    audit = AuditTrail(run_id=run_paths.run_id, artifacts_dir=run_paths.artifacts_dir)
    try:
        result = run_rebase_pipeline(
            config=config,
            run_id=run_paths.run_id,
            artifacts_dir=run_paths.artifacts_dir,
            audit=audit,
        )
    except NoBaseGeometryError as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    elapsed = time.perf_counter() - started

    write_text(run_paths.scad_path, result.openscad_code)
    write_json(run_paths.detection_path, result.detection_payload)
    if result.evaluation is not None:
        write_text(
            run_paths.diagnostics_path,
            "\n".join(result.evaluation.diagnostics) + "\n",
        )
        if result.evaluation.output is not None:
            write_bytes(run_paths.output_mesh_path, result.evaluation.output)

    write_json(
        run_paths.metrics_path,
        {
            "run_id": result.run_id,
            "status": result.status,
            "elapsed_s": round(elapsed, 3),
            "subject_sha256": result.subject_hash_sha256,
            "reference_sha256": result.reference_hash_sha256,
            "rotation": result.subject.rotation_type,
            "badness": result.subject.badness,
            "bases": len(result.subject.shapes),
            "reference_rotation": result.reference.rotation_type,
            "diagnostics": len(result.evaluation.diagnostics)
            if result.evaluation
            else 0,
            "debug": result.debug,
        },
    )
    write_text(
        run_paths.summary_path,
        _build_summary(run_id=result.run_id, elapsed_s=elapsed, result=result),
    )
    write_json(
        run_paths.manifest_path,
        {
            "run_id": result.run_id,
            "design_name": args.name,
            "created_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "status": result.status,
            "config": {
                "subject_mesh": str(subject_copy),
                "reference_mesh": str(reference_copy),
                "evaluate": config.evaluate,
                "openscad_command": list(config.openscad_command),
                "evaluator_args": list(config.evaluator_args),
                "expected_base_size_mm": config.expected_base_size_mm,
                "badness_threshold_mm": config.badness_threshold_mm,
            },
            "artifacts": {
                "openscad_code": str(run_paths.scad_path),
                "detection_json": str(run_paths.detection_path),
                "output_mesh": str(run_paths.output_mesh_path)
                if run_paths.output_mesh_path.exists()
                else None,
                "checkpoints": [str(path) for path in result.checkpoints],
                "decision_log": str(result.decision_log_path),
                "decision_hash_chain": str(result.decision_hash_chain_path),
            },
        },
    )
    update_latest_pointer(args.runs_dir, run_paths.run_dir)

    print(f"Run ID: {result.run_id}")
    print(f"Run dir: {run_paths.run_dir}")
    print(f"Status: {result.status.upper()}")
    print(f"Bases: {len(result.subject.shapes)}")
    print(f"Rotation: {result.subject.rotation_type}")
    for annotation in result.annotations:
        cx, cy = annotation.centroid
        print(f"  base #{annotation.number}: centre ({cx:.3f}, {cy:.3f})")
    print(f"OpenSCAD: {run_paths.scad_path}")
    if result.evaluation is not None:
        for line in result.evaluation.diagnostics:
            print(line)
        if result.evaluation.output is not None:
            print(f"Output mesh: {run_paths.output_mesh_path}")
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    raise SystemExit(main())
