"""
Shared fixtures: synthetic modules with square bases and a fake evaluator.
"""
import math
import sys
import textwrap
from pathlib import Path

import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

BASE_SIZE = 35.6


def make_two_base_mesh() -> trimesh.Trimesh:
    """Two 35.6 x 35.6 feet at z=0 under a 100 x 45 plate.

    The plate overhangs the feet on every side, so any rotation other than
    "original" puts a plate face (never 35.6 square) on the floor.
    """
    feet = []
    for x in (-30.0, 30.0):
        foot = trimesh.creation.box(extents=[BASE_SIZE, BASE_SIZE, 5.0])
        foot.apply_translation([x, 0.0, 2.5])
        feet.append(foot)
    plate = trimesh.creation.box(extents=[100.0, 45.0, 3.0])
    plate.apply_translation([0.0, 0.0, 6.5])
    return trimesh.util.concatenate(feet + [plate])


def make_reference_mesh() -> trimesh.Trimesh:
    """A single foot of a different height, offset from the origin."""
    foot = trimesh.creation.box(extents=[BASE_SIZE, BASE_SIZE, 7.0])
    foot.apply_translation([10.0, -4.0, 3.5 + 2.0])
    return foot


def make_pointed_mesh() -> trimesh.Trimesh:
    """A tetrahedron that rests on a single vertex in every rotation."""
    return trimesh.Trimesh(
        vertices=[[0, 0, 0], [10, 3, 10], [2, 11, 9], [-9, -8, 12]],
        faces=[[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]],
        process=False,
    )


@pytest.fixture
def two_base_mesh():
    return make_two_base_mesh()


@pytest.fixture
def rotated_two_base_mesh():
    """The two-base module tipped +90 degrees about X."""
    mesh = make_two_base_mesh()
    mesh.apply_transform(
        trimesh.transformations.rotation_matrix(math.pi / 2, [1.0, 0.0, 0.0])
    )
    return mesh


@pytest.fixture
def reference_mesh():
    return make_reference_mesh()


@pytest.fixture
def subject_stl_bytes():
    return make_two_base_mesh().export(file_type="stl")


@pytest.fixture
def reference_stl_bytes():
    return make_reference_mesh().export(file_type="stl")


@pytest.fixture
def pointed_mesh():
    return make_pointed_mesh()


@pytest.fixture
def pointed_stl_bytes():
    return make_pointed_mesh().export(file_type="stl")


@pytest.fixture
def subject_mesh_file(tmp_path, subject_stl_bytes):
    path = tmp_path / "subject.stl"
    path.write_bytes(subject_stl_bytes)
    return str(path)


@pytest.fixture
def reference_mesh_file(tmp_path, reference_stl_bytes):
    path = tmp_path / "reference.stl"
    path.write_bytes(reference_stl_bytes)
    return str(path)


_FAKE_EVALUATOR = textwrap.dedent(
    """
    import shutil
    import sys

    mode = {mode!r}
    args = sys.argv[1:]
    output = args[args.index("-o") + 1]
    assert args[0] == "input.scad"
    source = open("input.scad", encoding="utf-8").read()
    assert 'import("toFix.stl")' in source

    if mode == "crash":
        print("ERROR: Parser error in input.scad", file=sys.stderr)
        sys.exit(1)
    shutil.copyfile("toFix.stl", output)
    print("WARNING: Object may not be a valid 2-manifold", file=sys.stderr)
    if mode == "error":
        print("ERROR: The given mesh is not closed!", file=sys.stderr)
    print("Total rendering time: 0:00:00.1")
    """
)


@pytest.fixture
def fake_evaluator(tmp_path):
    """Factory for a command tuple running a scripted stand-in for OpenSCAD."""

    def _make(mode: str = "ok"):
        script = tmp_path / f"fake_openscad_{mode}.py"
        script.write_text(_FAKE_EVALUATOR.format(mode=mode), encoding="utf-8")
        return (sys.executable, str(script))

    return _make
