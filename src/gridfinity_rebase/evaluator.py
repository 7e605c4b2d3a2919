"""External OpenSCAD invocation.

Each call runs in its own temporary working directory and its own OpenSCAD
process, so nothing is shared between invocations.  The evaluator can take
well over a minute on complex meshes; no timeout is applied here.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import List, Sequence

from gridfinity_rebase.contracts import EvaluatorResult
from gridfinity_rebase.scad_writer import REFERENCE_IMPORT_PATH, SUBJECT_IMPORT_PATH

logger = logging.getLogger(__name__)

SCRIPT_NAME = "input.scad"
OUTPUT_NAME = "fixed.stl"
DEFAULT_COMMAND = ("openscad",)
# manifold is one or two orders of magnitude faster than CGAL here
DEFAULT_ARGS = ("--backend=manifold",)


def run_openscad(
    scad_code: str,
    subject_stl: bytes,
    reference_stl: bytes,
    command: Sequence[str] = DEFAULT_COMMAND,
    extra_args: Sequence[str] = DEFAULT_ARGS,
) -> EvaluatorResult:
    """Evaluate *scad_code* against both meshes and collect the output STL.

    Failures never raise: a missing executable or a crashed run comes back as
    ``EvaluatorResult(output=None, diagnostics=[...])`` so callers can show
    the diagnostics verbatim.
    """
    with tempfile.TemporaryDirectory(prefix="rebase_scad_") as workdir:
        work = Path(workdir)
        (work / SCRIPT_NAME).write_text(scad_code, encoding="utf-8")
        (work / SUBJECT_IMPORT_PATH).write_bytes(subject_stl)
        (work / REFERENCE_IMPORT_PATH).write_bytes(reference_stl)

        cmd = [*command, SCRIPT_NAME, *extra_args, "-o", OUTPUT_NAME]
        logger.info("Running evaluator: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd, cwd=work, capture_output=True, text=True, check=False
            )
        except OSError as exc:
            logger.error("Evaluator could not be started: %s", exc)
            return EvaluatorResult(
                output=None,
                diagnostics=[f"ERROR: could not start evaluator {cmd[0]!r}: {exc}"],
            )

        diagnostics = _collect_lines(proc.stderr) + _collect_lines(proc.stdout)
        output_path = work / OUTPUT_NAME
        output = output_path.read_bytes() if output_path.is_file() else None

    if proc.returncode != 0:
        logger.warning("Evaluator exited with code %d", proc.returncode)
        output = None
    result = EvaluatorResult(
        output=output, diagnostics=diagnostics, returncode=proc.returncode
    )
    if result.failed:
        logger.warning("Evaluation failed with %d diagnostic lines", len(diagnostics))
    else:
        logger.info(
            "Evaluation produced %d bytes (%d diagnostic lines)",
            len(output or b""),
            len(diagnostics),
        )
    return result


def _collect_lines(text: str) -> List[str]:
    return [line for line in (text or "").splitlines() if line.strip()]
