"""
Waterline slicing: horizontal plane sections of a mesh, stitched into
per-layer polylines.

Segment stitching is greedy: the first unused segment whose endpoint lies
within ``contour_tol`` of the current tail (XY only) extends the polyline.
It is not globally optimal and can merge loops that touch within the
tolerance. Each extension scans all remaining segments, so a layer costs
O(segments^2).
"""

import logging
import math
from typing import List, Optional

import numpy as np
from shapely.geometry import Polygon

from cnc_waterline.contracts import Layer, Polyline, SlicingConfig
from cnc_waterline.mesh import TriangleMesh

logger = logging.getLogger(__name__)

PARALLEL_EDGE_EPS = 1e-10
CLOSE_LOOP_EPS = 1e-6


def compute_layer_heights(
    z_min: float,
    z_max: float,
    layer_height: float,
    top_down: bool = True,
) -> np.ndarray:
    """N + 1 evenly spaced plane heights covering [z_min, z_max] inclusive.

    N = max(1, ceil(span / layer_height)).
    """
    if not layer_height > 0.0:
        raise ValueError(f"layer_height must be positive, got {layer_height}")
    span = max(0.0, float(z_max) - float(z_min))
    n = max(1, int(math.ceil(span / layer_height)))
    heights = np.linspace(float(z_min), float(z_max), n + 1)
    return heights[::-1].copy() if top_down else heights


def intersect_plane(triangles: np.ndarray, z: float) -> np.ndarray:
    """Segments where the plane Z = *z* cuts the triangles, shape (S, 2, 3).

    Edges touching the plane count as crossing it; edges within
    PARALLEL_EDGE_EPS of horizontal are skipped. Only triangles with exactly
    two crossing edges produce a segment.
    """
    if len(triangles) == 0:
        return np.zeros((0, 2, 3), dtype=np.float64)

    a = triangles
    b = np.roll(triangles, -1, axis=1)  # edge i runs from corner i to i + 1
    az, bz = a[:, :, 2], b[:, :, 2]
    dz = bz - az
    straddle = ((az <= z) & (bz >= z)) | ((az >= z) & (bz <= z))
    valid = straddle & (np.abs(dz) >= PARALLEL_EDGE_EPS)

    two = np.count_nonzero(valid, axis=1) == 2
    if not np.any(two):
        return np.zeros((0, 2, 3), dtype=np.float64)

    a, b, dz, az, valid = a[two], b[two], dz[two], az[two], valid[two]
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(valid, (z - az) / np.where(valid, dz, 1.0), 0.0)
    points = a + t[:, :, None] * (b - a)
    points[:, :, 2] = z

    # first two crossing edges in edge order
    pick = np.argsort(~valid, axis=1, kind="stable")[:, :2]
    return np.take_along_axis(points, pick[:, :, None], axis=1)


class SegmentArena:
    """Segments of one layer plus a visited bitset."""

    def __init__(self, segments: np.ndarray):
        self.segments = np.asarray(segments, dtype=np.float64).reshape(-1, 2, 3)
        self.visited = np.zeros(len(self.segments), dtype=bool)
        self._starts = self.segments[:, 0, :2]
        self._ends = self.segments[:, 1, :2]

    def __len__(self) -> int:
        return len(self.segments)

    def take(self, index: int) -> np.ndarray:
        self.visited[index] = True
        return self.segments[index]

    def next_unvisited(self) -> int:
        """Lowest unvisited index, or -1."""
        free = np.flatnonzero(~self.visited)
        return int(free[0]) if len(free) else -1

    def extend_from(self, tail: np.ndarray, tol: float):
        """Claim the first unvisited segment touching *tail*; return its far end."""
        d_start = np.hypot(*(self._starts - tail[:2]).T)
        d_end = np.hypot(*(self._ends - tail[:2]).T)
        hit_start = (d_start < tol) & ~self.visited
        hit_end = (d_end < tol) & ~self.visited
        candidates = np.flatnonzero(hit_start | hit_end)
        if len(candidates) == 0:
            return None
        j = int(candidates[0])
        segment = self.take(j)
        return segment[1] if hit_start[j] else segment[0]


def stitch_segments(segments: np.ndarray, tol: float) -> List[Polyline]:
    """Chain segments into polylines by greedy tail extension."""
    arena = SegmentArena(segments)
    polylines: List[Polyline] = []
    while True:
        i = arena.next_unvisited()
        if i < 0:
            break
        first = arena.take(i)
        points = [first[0], first[1]]
        while True:
            nxt = arena.extend_from(points[-1], tol)
            if nxt is None:
                break
            points.append(nxt)
        polylines.append(Polyline(points=np.array(points)))
    return polylines


def slice_mesh(mesh: TriangleMesh, config: Optional[SlicingConfig] = None) -> List[Layer]:
    """Cut *mesh* with horizontal planes; empty planes are dropped."""
    if config is None:
        config = SlicingConfig()
    if mesh.is_empty:
        return []

    z_min, z_max = float(mesh.bounds[0, 2]), float(mesh.bounds[1, 2])
    heights = compute_layer_heights(z_min, z_max, config.layer_height, config.top_down)
    triangles = mesh.triangles

    layers: List[Layer] = []
    for i, z in enumerate(heights):
        segments = intersect_plane(triangles, float(z))
        polylines = stitch_segments(segments, config.contour_tol)
        if config.close_loops:
            polylines = [_close_loop(p) for p in polylines]
        if config.zigzag and i % 2 == 1:
            polylines = [p.reversed() for p in polylines]
        if polylines:
            layers.append(Layer(z=float(z), polylines=polylines))

    logger.info(
        "Sliced %d planes into %d layers (%d polylines)",
        len(heights),
        len(layers),
        sum(len(layer.polylines) for layer in layers),
    )
    return layers


def closed_contour_area(polylines: List[Polyline]) -> float:
    """Area enclosed by the closed polylines of a layer, even-odd filled."""
    region = Polygon()
    for polyline in polylines:
        if not polyline.is_closed or len(polyline) < 4:
            continue
        poly = Polygon(polyline.points[:, :2])
        if not poly.is_valid:
            poly = poly.buffer(0)
        if poly.is_empty:
            continue
        region = region.symmetric_difference(poly)
    return float(region.area)


def _close_loop(polyline: Polyline) -> Polyline:
    pts = polyline.points
    if len(pts) >= 2 and np.hypot(*(pts[0, :2] - pts[-1, :2])) > CLOSE_LOOP_EPS:
        return Polyline(points=np.vstack([pts, pts[:1]]))
    return polyline
