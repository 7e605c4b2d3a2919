"""OpenSCAD emission for swapping detected bases with a reference base."""

from __future__ import annotations

import math
from typing import List, Sequence

from gridfinity_rebase.contracts import HullShape
from gridfinity_rebase.detection import hull_centroid

# Physical cutout in mm: a full 42 x 42 grid-cell slab plus a taller core.
CUT_OUTER_SIZE_MM = 42
CUT_OUTER_HEIGHT_MM = 2.6
CUT_INNER_SIZE_MM = 34
CUT_INNER_HEIGHT_MM = 5.5

SUBJECT_IMPORT_PATH = "toFix.stl"
REFERENCE_IMPORT_PATH = "gold.stl"

_SCAD_ROTATIONS = {
    "original": "",
    "x+": "rotate([90, 0, 0])",
    "x-": "rotate([-90, 0, 0])",
    "y+": "rotate([0, 90, 0])",
    "y-": "rotate([0, -90, 0])",
    "180": "rotate([0, 180, 0])",
}


def rotation_to_scad(rotation_type: str) -> str:
    """OpenSCAD rotate prefix reproducing a detected rotation ("" for none)."""
    try:
        return _SCAD_ROTATIONS[rotation_type]
    except KeyError:
        raise ValueError(f"Unknown rotation type: {rotation_type}") from None


def format_scad_number(value: float) -> str:
    """Shortest text that parses back to exactly ``value``."""
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"Cannot emit non-finite number: {value}")
    if value == 0.0:
        return "0"
    text = repr(value)
    if text.endswith(".0"):
        text = text[:-2]
    return text


def _vector(values: Sequence[float]) -> str:
    return "[" + ", ".join(format_scad_number(v) for v in values) + "]"


def _prefixed(prefix: str, statement: str) -> str:
    return f"{prefix} {statement}" if prefix else statement


def render_rebase_scad(
    *,
    shapes: List[HullShape],
    min_z: float,
    rotation_type: str,
    reference_shape: HullShape,
    reference_min_z: float,
    reference_rotation_type: str,
    subject_path: str = SUBJECT_IMPORT_PATH,
    reference_path: str = REFERENCE_IMPORT_PATH,
) -> str:
    """Render the cut-and-replace program for one subject/reference pair."""
    centers = [hull_centroid(shape) for shape in shapes]
    ref_x, ref_y = hull_centroid(reference_shape)
    reference_offset = _vector((-ref_x, -ref_y, -reference_min_z))
    outer = format_scad_number(CUT_OUTER_SIZE_MM)
    inner = format_scad_number(CUT_INNER_SIZE_MM)

    reference_import = _prefixed(
        rotation_to_scad(reference_rotation_type), f'import("{reference_path}");'
    )
    subject_import = _prefixed(
        rotation_to_scad(rotation_type), f'import("{subject_path}");'
    )
    placements = [_vector((cx, cy, min_z)) for cx, cy in centers]

    lines = [
        "module simple_cut() {",
        f"    translate([-{outer} / 2, -{outer} / 2, 0]) "
        f"cube([{outer}, {outer}, {format_scad_number(CUT_OUTER_HEIGHT_MM)}]);",
        f"    translate([-{inner} / 2, -{inner} / 2, 0]) "
        f"cube([{inner}, {inner}, {format_scad_number(CUT_INNER_HEIGHT_MM)}]);",
        "}",
        "",
        "module preferred_bottom() {",
        "    intersection() {",
        f"        translate({reference_offset}) {reference_import}",
        "        simple_cut();",
        "    }",
        "}",
        "",
        "union() {",
        "    difference() {",
        f"        {subject_import}",
    ]
    lines.extend(f"        translate({where}) simple_cut();" for where in placements)
    lines.append("    }")
    lines.extend(f"    translate({where}) preferred_bottom();" for where in placements)
    lines.append("}")
    return "\n".join(lines) + "\n"
