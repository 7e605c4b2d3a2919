"""Triangle-mesh loading for subject and reference meshes."""

from __future__ import annotations

import hashlib
import io
import logging
from pathlib import Path
from typing import Union

import numpy as np
import trimesh

logger = logging.getLogger(__name__)


def load_mesh(mesh_path: Union[str, Path]) -> trimesh.Trimesh:
    """Load a mesh file as a raw triangle soup.

    ``process=False`` keeps every triangle exactly as stored: no vertex
    merging and no removal of degenerate or duplicate faces, so detection
    sees the same faces the evaluator will import.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file holds something other than triangle geometry.
    """
    path = Path(mesh_path)
    if not path.is_file():
        raise FileNotFoundError(f"Mesh file not found: {path}")
    loaded = trimesh.load(str(path), force="mesh", process=False)
    return _as_trimesh(loaded, source=str(path))


def load_mesh_bytes(data: bytes, file_type: str = "stl") -> trimesh.Trimesh:
    """Load a mesh from an in-memory buffer (e.g. an uploaded STL)."""
    loaded = trimesh.load(
        io.BytesIO(data), file_type=file_type, force="mesh", process=False
    )
    return _as_trimesh(loaded, source=f"<{len(data)} bytes {file_type}>")


def mesh_triangles(mesh: trimesh.Trimesh) -> np.ndarray:
    """Return the ``(n, 3, 3)`` triangle vertex array of *mesh*."""
    if len(mesh.faces) == 0:
        return np.zeros((0, 3, 3), dtype=float)
    return np.asarray(mesh.triangles, dtype=float)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Union[str, Path]) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _as_trimesh(loaded, source: str) -> trimesh.Trimesh:
    if isinstance(loaded, trimesh.Scene):
        meshes = [
            g for g in loaded.geometry.values() if isinstance(g, trimesh.Trimesh)
        ]
        if not meshes:
            raise ValueError(f"Scene has no mesh geometry: {source}")
        loaded = trimesh.util.concatenate(meshes)
    if not isinstance(loaded, trimesh.Trimesh):
        raise ValueError(f"Unsupported mesh type from {source}")
    logger.debug("Loaded %s: %d triangles", source, len(loaded.faces))
    return loaded
