"""
Convexity analysis of a repaired (welded, outward-oriented) mesh.

Three independent tests are combined:
1. Volume ratio: mesh volume against its convex hull volume.
2. Edge concavity: dihedral edges whose summed normal points back inside.
3. Multi-axis re-entry: grid rays along X, Y and Z that cross the surface
   more than twice.

Degenerate geometry (flat parts, zero volume, hulls that cannot be built)
never raises; it yields a populated result with a diagnostic string.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from scipy.spatial import ConvexHull, QhullError

from cnc_waterline.contracts import AnalysisConfig, ConvexityAnalysis, MachinabilityResult
from cnc_waterline.machinability import analyze_machinability
from cnc_waterline.mesh import TriangleMesh
from cnc_waterline.raycast import AXIS_NAMES, Deadline, cast_grid, group_contacts, plane_samples

logger = logging.getLogger(__name__)

MULTI_HIT_MAX = 0.005  # 0.5% of rays
CONCAVE_EDGE_MAX = 0.002  # 0.2% of interior edges
VOLUME_RATIO_FLOOR = 0.95
CONCAVE_DIHEDRAL_COS = math.cos(math.radians(5.0))
MULTI_AXIS_GRID_MIN = 32
MULTI_AXIS_GRID_MAX = 200


@dataclass
class EdgeStats:
    """Edge adjacency summary of a welded mesh."""

    edge_count: int
    interior: int
    boundary: int
    concave: int

    @property
    def concave_ratio(self) -> float:
        return self.concave / self.interior if self.interior > 0 else 1.0

    @property
    def boundary_ratio(self) -> float:
        return self.boundary / max(self.edge_count, 1)

    @property
    def watertight(self) -> bool:
        return self.boundary == 0


def signed_volume(vertices: np.ndarray, faces: np.ndarray) -> float:
    """Divergence-theorem volume, positive for outward winding."""
    if len(faces) == 0:
        return 0.0
    tri = vertices[faces]
    return float(np.einsum("ij,ij->i", tri[:, 0], np.cross(tri[:, 1], tri[:, 2])).sum() / 6.0)


def hull_volume(points: np.ndarray, eps: float = 1e-6) -> Optional[float]:
    """Convex hull volume, tried first on a coarsely deduplicated point set.

    Thin parts can collapse onto one plane at the coarse key; the hull is
    then rebuilt from every finite point. Returns None only when that also
    fails (too few or coplanar points).
    """
    finite = points[np.all(np.isfinite(points), axis=1)]
    coarse = _dedup_for_hull(finite, eps)
    volume = _try_hull(coarse)
    if volume is None and len(coarse) < len(finite):
        logger.debug("Coarse hull failed on %d points; retrying on %d", len(coarse), len(finite))
        volume = _try_hull(finite)
    if volume is None:
        logger.warning("Convex hull could not be built from %d points", len(finite))
    return volume


def _try_hull(points: np.ndarray) -> Optional[float]:
    if len(points) < 4:
        return None
    try:
        hull = ConvexHull(points)
    except (QhullError, ValueError) as exc:
        logger.debug("Qhull rejected %d points: %s", len(points), exc)
        return None
    return float(hull.volume)


def edge_statistics(mesh: TriangleMesh) -> EdgeStats:
    """Count boundary, interior and concave edges.

    Edges shared by more than two faces use the first two face normals.
    """
    if mesh.is_empty:
        return EdgeStats(edge_count=0, interior=0, boundary=0, concave=0)

    faces = mesh.faces
    edges = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])
    edge_face = np.tile(np.arange(len(faces)), 3)
    edges = np.sort(edges, axis=1)

    unique, inverse, counts = np.unique(
        edges, axis=0, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)
    order = np.argsort(inverse, kind="stable")
    starts = np.searchsorted(inverse[order], np.arange(len(unique)), side="left")

    paired = counts >= 2
    boundary = int(np.count_nonzero(counts == 1))
    interior = int(np.count_nonzero(paired))
    if interior == 0:
        return EdgeStats(edge_count=len(unique), interior=0, boundary=boundary, concave=0)

    normals = mesh.face_normals
    first = edge_face[order[starts[paired]]]
    second = edge_face[order[starts[paired] + 1]]
    n1 = normals[first]
    n2 = normals[second]

    pair_edges = unique[paired]
    mid = 0.5 * (mesh.vertices[pair_edges[:, 0]] + mesh.vertices[pair_edges[:, 1]])
    towards = mid - mesh.centroid

    dots = np.einsum("ij,ij->i", n1, n2)
    summed = np.einsum("ij,ij->i", n1 + n2, towards)
    concave = int(np.count_nonzero((dots < CONCAVE_DIHEDRAL_COS) & (summed < 0.0)))
    return EdgeStats(edge_count=len(unique), interior=interior, boundary=boundary, concave=concave)


def multi_axis_concavity(
    mesh: TriangleMesh,
    grid: int = 128,
    deadline: Optional[Deadline] = None,
) -> Dict[str, float]:
    """Fraction of grid rays per axis crossing more than two contact groups."""
    resolution = int(np.clip(grid, MULTI_AXIS_GRID_MIN, MULTI_AXIS_GRID_MAX))
    z_eps = max(1e-9, mesh.diagonal * 1e-6)
    ratios: Dict[str, float] = {}
    for axis in (2, 0, 1):
        name = AXIS_NAMES[axis]
        if mesh.is_empty:
            ratios[name] = 1.0
            continue
        coords_a, coords_b = plane_samples(mesh, axis, resolution)
        n_rays = len(coords_a) * len(coords_b)
        hits = cast_grid(mesh, axis, coords_a, coords_b, deadline)
        contacts = group_contacts(hits, n_rays, z_eps)
        ratios[name] = float(np.count_nonzero(contacts.count > 2)) / n_rays
    return ratios


def confidence_from_ratio(ratio: float, bad_gap: float = 0.05) -> float:
    if not math.isfinite(ratio):
        return 0.0
    if bad_gap <= 0.0:
        return 100.0 if ratio >= 1.0 else 0.0
    gap = max(0.0, 1.0 - ratio)
    return 100.0 * (1.0 - min(1.0, gap / bad_gap))


def analyze_convexity(
    mesh: TriangleMesh,
    config: Optional[AnalysisConfig] = None,
    deadline: Optional[Deadline] = None,
) -> ConvexityAnalysis:
    """Classify a repaired mesh as convex or not and score 3-axis access.

    *mesh* must already be sanitized, welded and oriented.
    """
    if config is None:
        config = AnalysisConfig()
    if deadline is None:
        deadline = Deadline(config.timeout_s)

    machinability = analyze_machinability(mesh, config, deadline)

    extents = mesh.extents
    diag = mesh.diagonal
    len_eps = max(config.eps * max(diag, 1.0), 1e-9)
    if np.any(extents < len_eps):
        dx, dy, dz = (float(v) for v in extents)
        return _degenerate(
            machinability,
            f"Flat geometry: dx={dx:.6g}, dy={dy:.6g}, dz={dz:.6g}, len_eps={len_eps:.3g}",
        )

    # Normalised frame: bbox centred, unit diagonal.
    center = mesh.bbox_center
    scale = diag
    normalized = mesh.scaled_about(center, scale)

    v_mesh_n = abs(signed_volume(normalized.vertices, normalized.faces))
    if not math.isfinite(v_mesh_n) or v_mesh_n <= 0.0:
        return _degenerate(machinability, "Mesh volume is zero or not finite")

    v_hull_n = hull_volume(normalized.vertices, config.eps)
    vol_scale = scale ** 3
    if v_hull_n is None:
        return _degenerate(
            machinability,
            "Convex hull could not be constructed",
            mesh_volume=v_mesh_n * vol_scale,
        )
    if not math.isfinite(v_hull_n) or v_hull_n <= 0.0:
        return _degenerate(
            machinability,
            "Convex hull volume is zero or not finite",
            mesh_volume=v_mesh_n * vol_scale,
        )

    edges = edge_statistics(normalized)
    multi = multi_axis_concavity(normalized, config.grid, deadline)
    multi_max = max(multi.values())

    ratio = v_mesh_n / v_hull_n
    volume_pass = ratio >= config.tolerance or ratio > VOLUME_RATIO_FLOOR
    multi_pass = multi_max <= MULTI_HIT_MAX
    edge_pass = edges.concave_ratio <= CONCAVE_EDGE_MAX
    is_convex = bool(volume_pass and multi_pass and edge_pass)

    confidence = confidence_from_ratio(ratio, config.bad_gap)
    if not multi_pass:
        confidence = min(confidence, 20.0)
    confidence *= 1.0 - min(1.0, edges.concave_ratio)
    if not edges.watertight:
        confidence = min(confidence, 60.0) * (1.0 - edges.boundary_ratio)
    confidence = float(np.clip(confidence, 0.0, 100.0))

    v_mesh = v_mesh_n * vol_scale
    v_hull = v_hull_n * vol_scale
    diagnostic = (
        f"V={v_mesh:.4e} | H={v_hull:.4e} | ratio={ratio:.6f} | tol={config.tolerance} | "
        f"multi(Z={multi['Z'] * 100:.2f}%,X={multi['X'] * 100:.2f}%,Y={multi['Y'] * 100:.2f}%) | "
        f"edgeConcave={edges.concave_ratio * 100:.3f}% | watertight={edges.watertight} | "
        f"{machinability.details}"
    )
    logger.info(
        "Convexity: convex=%s ratio=%.4f confidence=%.1f machinable=%s",
        is_convex,
        ratio,
        confidence,
        machinability.is_three_axis_machable,
    )
    return ConvexityAnalysis(
        is_convex=is_convex,
        mesh_volume=v_mesh,
        hull_volume=v_hull,
        convexity_ratio=float(np.clip(ratio, 0.0, 1.0)),
        confidence=confidence,
        machinability=machinability,
        diagnostic=diagnostic,
        concave_edge_ratio=edges.concave_ratio,
        multi_axis_ratios=multi,
        watertight=edges.watertight,
        boundary_edge_ratio=edges.boundary_ratio,
    )


def _degenerate(
    machinability: MachinabilityResult,
    reason: str,
    mesh_volume: float = 0.0,
) -> ConvexityAnalysis:
    logger.warning("Convexity analysis skipped: %s", reason)
    return ConvexityAnalysis(
        is_convex=False,
        mesh_volume=float(mesh_volume),
        hull_volume=0.0,
        convexity_ratio=0.0,
        confidence=0.0,
        machinability=machinability,
        diagnostic=reason,
    )


def _dedup_for_hull(points: np.ndarray, eps: float) -> np.ndarray:
    """Keep one point per coarse cell; points are finite, in the unit-diagonal frame."""
    if len(points) == 0:
        return points
    k = 1.0 / (max(1e-9, eps) * 1e5)
    keys = np.round(points * k).astype(np.int64)
    _, first = np.unique(keys, axis=0, return_index=True)
    return points[np.sort(first)]
