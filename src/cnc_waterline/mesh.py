"""Indexed triangle mesh value shared by the analysis and slicing stages."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Optional

import numpy as np
import trimesh
from scipy.spatial.transform import Rotation

from cnc_waterline.contracts import ModelRotation


@dataclass(frozen=True, eq=False)
class TriangleMesh:
    """Vertices (V, 3) float64 and faces (F, 3) int64.

    Treated as immutable: every repair or transform returns a new mesh, so
    derived arrays are computed once and cached on first access.
    """

    vertices: np.ndarray
    faces: np.ndarray

    def __post_init__(self):
        vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)
        object.__setattr__(self, "vertices", vertices)
        object.__setattr__(self, "faces", faces)

    def to_trimesh(self) -> trimesh.Trimesh:
        """Unprocessed trimesh view, used to export the prepared geometry."""
        return trimesh.Trimesh(vertices=self.vertices.copy(), faces=self.faces.copy(), process=False)

    @property
    def n_faces(self) -> int:
        return int(len(self.faces))

    @property
    def n_vertices(self) -> int:
        return int(len(self.vertices))

    @property
    def is_empty(self) -> bool:
        return self.n_faces == 0

    @cached_property
    def triangles(self) -> np.ndarray:
        """Corner coordinates, shape (F, 3, 3)."""
        return self.vertices[self.faces]

    @cached_property
    def face_cross(self) -> np.ndarray:
        """Un-normalised (v1 - v0) x (v2 - v0); its length is twice the area."""
        tri = self.triangles
        return np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])

    @cached_property
    def face_normals(self) -> np.ndarray:
        cross = self.face_cross
        lengths = np.linalg.norm(cross, axis=1)
        lengths[lengths == 0.0] = 1.0
        return cross / lengths[:, None]

    @cached_property
    def face_centroids(self) -> np.ndarray:
        return self.triangles.mean(axis=1)

    @cached_property
    def bounds(self) -> np.ndarray:
        """[[minx, miny, minz], [maxx, maxy, maxz]] over finite vertices."""
        finite = self.vertices[np.all(np.isfinite(self.vertices), axis=1)]
        if len(finite) == 0:
            return np.zeros((2, 3), dtype=np.float64)
        return np.array([finite.min(axis=0), finite.max(axis=0)])

    @property
    def extents(self) -> np.ndarray:
        return self.bounds[1] - self.bounds[0]

    @property
    def diagonal(self) -> float:
        return float(np.linalg.norm(self.extents))

    @property
    def bbox_center(self) -> np.ndarray:
        return self.bounds.mean(axis=0)

    @cached_property
    def centroid(self) -> np.ndarray:
        """Unweighted mean of all vertices."""
        if self.n_vertices == 0:
            return np.zeros(3, dtype=np.float64)
        return self.vertices.mean(axis=0)

    def with_faces(self, faces: np.ndarray) -> "TriangleMesh":
        return TriangleMesh(vertices=self.vertices, faces=faces)

    def scaled_about(self, center: np.ndarray, scale: float) -> "TriangleMesh":
        return TriangleMesh(vertices=(self.vertices - center) / scale, faces=self.faces)

    def rotated(self, rotation: Optional[ModelRotation]) -> "TriangleMesh":
        """Rotate about the bounding-box centre (Euler X -> Y -> Z, extrinsic)."""
        if rotation is None or rotation.is_identity:
            return self
        center = self.bbox_center
        matrix = rotation_matrix(rotation)
        vertices = (self.vertices - center) @ matrix.T + center
        return TriangleMesh(vertices=vertices, faces=self.faces)


def rotation_matrix(rotation: ModelRotation) -> np.ndarray:
    return Rotation.from_euler("xyz", rotation.as_tuple()).as_matrix()
