"""
Minimal mesh repair applied before any analysis or slicing.

The pass has three steps:
1. Drop degenerate / non-finite triangles.
2. Weld coincident vertices on a quantization grid.
3. Make triangle winding point away from the vertex centroid.

Welding must happen before edge adjacency is built: STL stores three
private vertices per triangle, so without it every edge looks like a
boundary edge and no mesh is ever watertight.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from cnc_waterline.errors import EmptyGeometryError
from cnc_waterline.mesh import TriangleMesh

logger = logging.getLogger(__name__)

MIN_WELD_EPS = 1e-9


@dataclass
class RepairStats:
    """Face/vertex counts through the repair stages."""

    faces_in: int = 0
    faces_sanitized: int = 0
    faces_welded: int = 0
    vertices_in: int = 0
    vertices_welded: int = 0
    faces_flipped: int = 0
    weld_eps: float = 0.0


def sanitize_mesh(mesh: TriangleMesh, area_eps: float = 1e-12) -> TriangleMesh:
    """Drop zero-area or non-finite triangles and unreferenced vertices.

    Raises:
        EmptyGeometryError: if no triangle survives.
    """
    if mesh.is_empty:
        raise EmptyGeometryError("Mesh has no triangles")

    finite = np.all(np.isfinite(mesh.triangles), axis=(1, 2))
    with np.errstate(invalid="ignore", over="ignore"):
        double_area = np.linalg.norm(mesh.face_cross, axis=1)
    keep = finite & (double_area > area_eps)

    dropped = int(np.count_nonzero(~keep))
    if dropped:
        logger.debug("Sanitize dropped %d degenerate triangles", dropped)
    if not np.any(keep):
        raise EmptyGeometryError("All triangles are degenerate")

    return _compact(mesh.vertices, mesh.faces[keep])


def weld_eps_for(mesh: TriangleMesh, relative_tolerance: float) -> float:
    return max(float(relative_tolerance) * mesh.diagonal, MIN_WELD_EPS)


def weld_vertices(
    mesh: TriangleMesh,
    relative_tolerance: float = 1e-6,
    eps: Optional[float] = None,
) -> TriangleMesh:
    """Merge vertices that fall in the same grid cell of size *eps*.

    The first vertex seen in a cell is kept as the canonical position.
    Triangles that collapse (two or three equal indices) are discarded.
    """
    if eps is None:
        eps = weld_eps_for(mesh, relative_tolerance)
    if mesh.n_vertices == 0:
        return mesh

    key = np.round(mesh.vertices / eps).astype(np.int64)
    _, first, inverse = np.unique(key, axis=0, return_index=True, return_inverse=True)
    inverse = inverse.reshape(-1)
    new_faces = inverse[mesh.faces]

    keep = (
        (new_faces[:, 0] != new_faces[:, 1])
        & (new_faces[:, 1] != new_faces[:, 2])
        & (new_faces[:, 0] != new_faces[:, 2])
    )
    welded = _compact(mesh.vertices[first], new_faces[keep])
    logger.debug(
        "Weld eps=%.3g: vertices %d -> %d, faces %d -> %d",
        eps,
        mesh.n_vertices,
        welded.n_vertices,
        mesh.n_faces,
        welded.n_faces,
    )
    return welded


def orient_faces_outward(mesh: TriangleMesh) -> Tuple[TriangleMesh, int]:
    """Flip triangles whose normal points toward the vertex centroid.

    Assumes the solid is roughly star-shaped about its centroid; for
    strongly re-entrant parts some faces can end up flipped the wrong way.
    """
    if mesh.is_empty:
        return mesh, 0
    outward = mesh.face_centroids - mesh.centroid
    dots = np.einsum("ij,ij->i", mesh.face_normals, outward)
    flip = dots < 0.0
    if not np.any(flip):
        return mesh, 0
    faces = mesh.faces.copy()
    faces[flip] = faces[flip][:, [0, 2, 1]]
    return mesh.with_faces(faces), int(np.count_nonzero(flip))


def prepare_mesh(
    mesh: TriangleMesh,
    relative_tolerance: float = 1e-6,
) -> Tuple[TriangleMesh, RepairStats]:
    """Sanitize, weld and orient *mesh* in that order."""
    stats = RepairStats(faces_in=mesh.n_faces, vertices_in=mesh.n_vertices)

    cleaned = sanitize_mesh(mesh)
    stats.faces_sanitized = cleaned.n_faces

    stats.weld_eps = weld_eps_for(cleaned, relative_tolerance)
    welded = weld_vertices(cleaned, eps=stats.weld_eps)
    if welded.is_empty:
        raise EmptyGeometryError("No triangles left after welding")
    stats.faces_welded = welded.n_faces
    stats.vertices_welded = welded.n_vertices

    oriented, flipped = orient_faces_outward(welded)
    stats.faces_flipped = flipped
    logger.debug("Mesh repair: %s", stats)
    return oriented, stats


def _compact(vertices: np.ndarray, faces: np.ndarray) -> TriangleMesh:
    """Drop vertices no face references and remap indices."""
    used = np.zeros(len(vertices), dtype=bool)
    used[faces.reshape(-1)] = True
    remap = np.cumsum(used) - 1
    return TriangleMesh(vertices=vertices[used], faces=remap[faces])
