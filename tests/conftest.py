"""
Shared test fixtures for the waterline CAM engine tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cnc_waterline.mesh import TriangleMesh


def _box(extents, min_corner):
    mesh = trimesh.creation.box(extents=extents)
    mesh.apply_translation(np.asarray(min_corner, dtype=float) + np.asarray(extents) / 2.0)
    return mesh


@pytest.fixture
def box_mesh():
    """A 10x10x10mm cube occupying [0, 10]^3."""
    return _box([10, 10, 10], [0, 0, 0])


@pytest.fixture
def plate_mesh():
    """A flat 20x20x2mm plate resting on z=0."""
    return _box([20, 20, 2], [0, 0, 0])


@pytest.fixture
def stacked_mesh():
    """Two 20x20x2 plates with an air gap: base z in [0, 2], roof z in [10, 12]."""
    base = _box([20, 20, 2], [0, 0, 0])
    roof = _box([20, 20, 2], [0, 0, 10])
    return trimesh.util.concatenate([base, roof])


@pytest.fixture
def lying_cylinder_mesh():
    """Cylinder (r=5, length 20) lying along X with its lowest line on z=0."""
    mesh = trimesh.creation.cylinder(radius=5, height=20, sections=32)
    mesh.apply_transform(trimesh.transformations.rotation_matrix(np.pi / 2, [0, 1, 0]))
    mesh.apply_translation(-mesh.bounds[0])
    return mesh


@pytest.fixture
def square_sheet_mesh():
    """Zero-thickness 10x10 square made of two triangles."""
    vertices = np.array([[0, 0, 0], [10, 0, 0], [10, 10, 0], [0, 10, 0]], dtype=float)
    faces = np.array([[0, 1, 2], [0, 2, 3]])
    return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)


@pytest.fixture
def stl_bytes():
    """Binary (default) or ASCII STL bytes of a trimesh mesh."""

    def _export(mesh: trimesh.Trimesh, ascii: bool = False) -> bytes:
        if ascii:
            data = mesh.export(file_type="stl_ascii")
            return data.encode("utf-8") if isinstance(data, str) else data
        return mesh.export(file_type="stl")

    return _export


@pytest.fixture
def triangle_mesh():
    """Unwelded TriangleMesh view of a trimesh mesh, as the STL loader makes it."""

    def _convert(mesh: trimesh.Trimesh) -> TriangleMesh:
        corners = np.asarray(mesh.triangles, dtype=float).reshape(-1, 3)
        faces = np.arange(len(corners)).reshape(-1, 3)
        return TriangleMesh(vertices=corners, faces=faces)

    return _convert


@pytest.fixture
def indexed_mesh():
    """Welded TriangleMesh sharing the trimesh vertex indexing."""

    def _convert(mesh: trimesh.Trimesh) -> TriangleMesh:
        return TriangleMesh(vertices=np.array(mesh.vertices), faces=np.array(mesh.faces))

    return _convert


@pytest.fixture
def plate_stl_file(plate_mesh, tmp_path):
    path = tmp_path / "plate.stl"
    plate_mesh.export(str(path))
    return str(path)


@pytest.fixture
def stacked_stl_file(stacked_mesh, tmp_path):
    path = tmp_path / "stacked.stl"
    stacked_mesh.export(str(path))
    return str(path)
