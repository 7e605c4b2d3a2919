from __future__ import annotations

import pytest

from gridfinity_rebase.contracts import HullShape
from gridfinity_rebase.orientation import (
    ROTATION_TYPES,
    select_best_orientation,
    select_reference_base,
)
from gridfinity_rebase.scad_writer import (
    format_scad_number,
    render_rebase_scad,
    rotation_to_scad,
)


def _square(cx: float, cy: float, size: float = 36.0) -> HullShape:
    half = size / 2
    points = [
        (cx - half, cy - half),
        (cx + half, cy - half),
        (cx + half, cy + half),
        (cx - half, cy + half),
        (cx - half, cy - half),
    ]
    return HullShape(island_index=0, face_indices=[0], points=points)


def _render(shapes, **overrides):
    kwargs = dict(
        shapes=shapes,
        min_z=0.0,
        rotation_type="original",
        reference_shape=_square(0.0, 0.0),
        reference_min_z=0.0,
        reference_rotation_type="original",
    )
    kwargs.update(overrides)
    return render_rebase_scad(**kwargs)


def test_rotation_prefixes():
    assert rotation_to_scad("original") == ""
    assert rotation_to_scad("x+") == "rotate([90, 0, 0])"
    assert rotation_to_scad("x-") == "rotate([-90, 0, 0])"
    assert rotation_to_scad("y+") == "rotate([0, 90, 0])"
    assert rotation_to_scad("y-") == "rotate([0, -90, 0])"
    assert rotation_to_scad("180") == "rotate([0, 180, 0])"
    assert all(rotation_to_scad(r) is not None for r in ROTATION_TYPES)
    with pytest.raises(ValueError):
        rotation_to_scad("upside-down")


@pytest.mark.parametrize(
    "value,text",
    [
        (0.0, "0"),
        (-0.0, "0"),
        (42, "42"),
        (-17.8, "-17.8"),
        (2.6, "2.6"),
        (0.1 + 0.2, "0.30000000000000004"),
    ],
)
def test_numbers_are_emitted_without_loss(value, text):
    assert format_scad_number(value) == text
    assert float(text) == float(value)


def test_non_finite_numbers_are_rejected():
    with pytest.raises(ValueError):
        format_scad_number(float("nan"))


def test_cut_module_dimensions():
    code = _render([_square(0.0, 0.0)])
    assert "module simple_cut() {" in code
    assert "translate([-42 / 2, -42 / 2, 0]) cube([42, 42, 2.6]);" in code
    assert "translate([-34 / 2, -34 / 2, 0]) cube([34, 34, 5.5]);" in code


def test_one_cut_and_one_replacement_per_base():
    shapes = [_square(-30.0, 0.0), _square(30.0, 12.5), _square(0.25, -40.0)]
    code = _render(shapes, min_z=1.5)
    lines = code.splitlines()

    cuts = [
        line.strip()
        for line in lines
        if line.strip().startswith("translate([") and line.endswith(") simple_cut();")
    ]
    bottoms = [line.strip() for line in lines if line.endswith("preferred_bottom();")]
    assert cuts == [
        "translate([-30, 0, 1.5]) simple_cut();",
        "translate([30, 12.5, 1.5]) simple_cut();",
        "translate([0.25, -40, 1.5]) simple_cut();",
    ]
    assert bottoms == [
        "translate([-30, 0, 1.5]) preferred_bottom();",
        "translate([30, 12.5, 1.5]) preferred_bottom();",
        "translate([0.25, -40, 1.5]) preferred_bottom();",
    ]
    # cuts live inside difference(), replacements after it
    difference_end = len(lines) - 1 - lines[::-1].index("    }")
    assert lines.index("    difference() {") < lines.index("        " + cuts[0])
    assert lines.index("        " + cuts[-1]) < difference_end
    assert lines.index("    " + bottoms[0]) > difference_end


def test_no_bases_still_renders_both_modules():
    code = _render([])
    assert "simple_cut();" in code
    assert "translate([" not in code.split("union() {")[1].replace('import("toFix.stl");', "")
    assert code.endswith("}\n")


def test_reference_is_rotated_then_centred():
    code = _render(
        [_square(0.0, 0.0)],
        reference_shape=_square(10.0, -4.0),
        reference_min_z=2.0,
        reference_rotation_type="y-",
    )
    assert (
        'translate([-10, 4, -2]) rotate([0, -90, 0]) import("gold.stl");' in code
    )


def test_subject_import_carries_rotation():
    code = _render([_square(0.0, 0.0)], rotation_type="180")
    assert '        rotate([0, 180, 0]) import("toFix.stl");' in code.splitlines()
    plain = _render([_square(0.0, 0.0)])
    assert '        import("toFix.stl");' in plain.splitlines()


def test_script_for_detected_meshes(rotated_two_base_mesh, reference_mesh):
    subject = select_best_orientation(rotated_two_base_mesh)
    reference, reference_shape = select_reference_base(reference_mesh)
    code = render_rebase_scad(
        shapes=subject.shapes,
        min_z=subject.min_z,
        rotation_type=subject.rotation_type,
        reference_shape=reference_shape,
        reference_min_z=reference.min_z,
        reference_rotation_type=reference.rotation_type,
    )
    assert 'rotate([-90, 0, 0]) import("toFix.stl");' in code
    assert code.count("preferred_bottom();") == 2
    assert code.count(") simple_cut();") == 2

    gold = next(line for line in code.splitlines() if 'import("gold.stl")' in line)
    offset = gold.split("translate([", 1)[1].split("])", 1)[0]
    assert [float(v) for v in offset.split(", ")] == pytest.approx([-10.0, 4.0, -2.0])
    assert gold.endswith(') import("gold.stl");')
    assert "rotate(" not in gold


def test_rendering_is_deterministic(two_base_mesh, reference_mesh):
    def render():
        subject = select_best_orientation(two_base_mesh)
        reference, reference_shape = select_reference_base(reference_mesh)
        return render_rebase_scad(
            shapes=subject.shapes,
            min_z=subject.min_z,
            rotation_type=subject.rotation_type,
            reference_shape=reference_shape,
            reference_min_z=reference.min_z,
            reference_rotation_type=reference.rotation_type,
        )

    assert render() == render()
