"""Run folders for rebase runs: inputs, artifacts and a ``latest`` pointer."""

from __future__ import annotations

import json
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict


@dataclass
class RunPaths:
    run_id: str
    run_dir: Path
    input_dir: Path
    artifacts_dir: Path
    manifest_path: Path
    metrics_path: Path
    summary_path: Path

    @property
    def scad_path(self) -> Path:
        return self.artifacts_dir / "rebase.scad"

    @property
    def detection_path(self) -> Path:
        return self.artifacts_dir / "detection.json"

    @property
    def output_mesh_path(self) -> Path:
        return self.artifacts_dir / "fixed.stl"

    @property
    def diagnostics_path(self) -> Path:
        return self.artifacts_dir / "evaluator_diagnostics.txt"


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower())
    return slug.strip("-") or "run"


def prepare_run_dir(runs_root: str, design_name: str) -> RunPaths:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    run_id = f"{stamp}_{slugify(design_name)}"
    run_dir = Path(runs_root) / run_id
    paths = RunPaths(
        run_id=run_id,
        run_dir=run_dir,
        input_dir=run_dir / "input",
        artifacts_dir=run_dir / "artifacts",
        manifest_path=run_dir / "manifest.json",
        metrics_path=run_dir / "metrics.json",
        summary_path=run_dir / "summary.md",
    )
    paths.input_dir.mkdir(parents=True, exist_ok=True)
    paths.artifacts_dir.mkdir(parents=True, exist_ok=True)
    return paths


def copy_input(source: str, input_dir: Path, name: str) -> Path:
    """Copy an input mesh under a fixed role name (e.g. ``subject.stl``)."""
    dst = input_dir / name
    shutil.copy2(source, dst)
    return dst


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def write_bytes(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def update_latest_pointer(runs_root: str, run_dir: Path) -> None:
    latest = Path(runs_root) / "latest"
    if latest.is_symlink() or latest.is_file():
        latest.unlink()
    elif latest.exists():
        shutil.rmtree(latest)

    try:
        latest.symlink_to(os.path.relpath(run_dir, runs_root))
    except OSError:
        # No symlinks on this filesystem; leave a marker file instead.
        latest.mkdir(parents=True, exist_ok=True)
        (latest / "latest_run.txt").write_text(run_dir.name, encoding="utf-8")
