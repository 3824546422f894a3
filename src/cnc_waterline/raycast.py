"""Axis-aligned grid ray casting against a triangle mesh.

A single barycentric routine handles all three axes through an axis
permutation: the ray runs along axis ``k`` and samples live on the plane
spanned by the two remaining axes ``(a, b)``.

Each triangle only tests the grid samples inside its projected bounding
box, located with ``searchsorted`` on the sorted sample coordinates. That
bounds the work by the covered area instead of rays x triangles.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from cnc_waterline.errors import AnalysisTimeout
from cnc_waterline.mesh import TriangleMesh

# ray axis -> (first plane axis, second plane axis)
AXIS_PLANES = {0: (1, 2), 1: (0, 2), 2: (0, 1)}
AXIS_NAMES = {0: "X", 1: "Y", 2: "Z"}

DEN_EPS = 1e-18
BARY_EPS = 1e-12
MAX_CANDIDATES_PER_CHUNK = 1 << 20


class Deadline:
    """Optional wall-clock limit shared by the ray-casting passes."""

    def __init__(self, timeout_s: Optional[float] = None):
        self.timeout_s = timeout_s
        self._expires = None if timeout_s is None else time.monotonic() + float(timeout_s)

    def check(self) -> None:
        if self._expires is not None and time.monotonic() > self._expires:
            raise AnalysisTimeout(f"Analysis exceeded {self.timeout_s:.3g}s time limit")


@dataclass
class RayHits:
    """Flat hit list: one entry per (ray, triangle) intersection."""

    ray: np.ndarray  # int64, row-major index b * n_a + a
    depth: np.ndarray  # coordinate along the ray axis
    face: np.ndarray  # triangle index


@dataclass
class Contacts:
    """Hits merged into surface contacts, depth-descending within each ray."""

    ray: np.ndarray
    depth: np.ndarray
    face: np.ndarray
    count: np.ndarray  # contacts per ray, length n_rays
    first: np.ndarray  # index of the highest contact per ray (valid if count > 0)
    last: np.ndarray  # index of the lowest contact per ray (valid if count > 0)

    @property
    def n_rays(self) -> int:
        return int(len(self.count))


def grid_coordinates(lo: float, hi: float, n: int) -> np.ndarray:
    """*n* evenly spaced samples covering [lo, hi] inclusive."""
    if n <= 1:
        return np.array([(lo + hi) * 0.5], dtype=np.float64)
    return np.linspace(lo, hi, n)


def cast_grid(
    mesh: TriangleMesh,
    axis: int,
    coords_a: np.ndarray,
    coords_b: np.ndarray,
    deadline: Optional[Deadline] = None,
) -> RayHits:
    """Intersect every grid ray parallel to *axis* with every triangle.

    ``coords_a``/``coords_b`` must be sorted ascending; they index the plane
    axes given by ``AXIS_PLANES[axis]``.
    """
    a_ax, b_ax = AXIS_PLANES[axis]
    n_a = len(coords_a)
    empty = RayHits(
        ray=np.zeros(0, dtype=np.int64),
        depth=np.zeros(0, dtype=np.float64),
        face=np.zeros(0, dtype=np.int64),
    )
    if mesh.is_empty or n_a == 0 or len(coords_b) == 0:
        return empty

    tri = mesh.triangles[:, :, [a_ax, b_ax, axis]]
    x0, y0, z0 = tri[:, 0, 0], tri[:, 0, 1], tri[:, 0, 2]
    x1, y1, z1 = tri[:, 1, 0], tri[:, 1, 1], tri[:, 1, 2]
    x2, y2, z2 = tri[:, 2, 0], tri[:, 2, 1], tri[:, 2, 2]
    with np.errstate(invalid="ignore", over="ignore"):
        den = (y1 - y2) * (x0 - x2) + (x2 - x1) * (y0 - y2)

    lo = tri[:, :, :2].min(axis=1)
    hi = tri[:, :, :2].max(axis=1)
    usable = (np.abs(den) >= DEN_EPS) & np.all(np.isfinite(lo), axis=1) & np.all(np.isfinite(hi), axis=1)

    ia0 = np.searchsorted(coords_a, lo[:, 0], side="left")
    ia1 = np.searchsorted(coords_a, hi[:, 0], side="right")
    ib0 = np.searchsorted(coords_b, lo[:, 1], side="left")
    ib1 = np.searchsorted(coords_b, hi[:, 1], side="right")
    na = np.maximum(ia1 - ia0, 0)
    nb = np.maximum(ib1 - ib0, 0)
    counts = np.where(usable, na * nb, 0).astype(np.int64)

    face_ids = np.nonzero(counts)[0]
    if len(face_ids) == 0:
        return empty

    rays, depths, faces = [], [], []
    for chunk in _chunk_faces(face_ids, counts[face_ids]):
        if deadline is not None:
            deadline.check()
        cnt = counts[chunk]
        t = np.repeat(chunk, cnt)
        starts = np.cumsum(cnt) - cnt
        local = np.arange(int(cnt.sum()), dtype=np.int64) - np.repeat(starts, cnt)
        ja = ia0[t] + local % na[t]
        jb = ib0[t] + local // na[t]

        X = coords_a[ja]
        Y = coords_b[jb]
        d = den[t]
        l1 = ((y1[t] - y2[t]) * (X - x2[t]) + (x2[t] - x1[t]) * (Y - y2[t])) / d
        l2 = ((y2[t] - y0[t]) * (X - x2[t]) + (x0[t] - x2[t]) * (Y - y2[t])) / d
        l3 = 1.0 - l1 - l2
        inside = (l1 >= -BARY_EPS) & (l2 >= -BARY_EPS) & (l3 >= -BARY_EPS)
        depth = l1 * z0[t] + l2 * z1[t] + l3 * z2[t]
        inside &= np.isfinite(depth)

        rays.append(jb[inside] * n_a + ja[inside])
        depths.append(depth[inside])
        faces.append(t[inside])

    return RayHits(
        ray=np.concatenate(rays).astype(np.int64),
        depth=np.concatenate(depths),
        face=np.concatenate(faces).astype(np.int64),
    )


def group_contacts(hits: RayHits, n_rays: int, eps: float) -> Contacts:
    """Sort hits per ray from high to low and merge them into contacts.

    A hit joins the current contact while it lies within *eps* of that
    contact's first (highest) hit, which is also the contact's face.
    """
    order = np.lexsort((-hits.depth, hits.ray))
    ray = hits.ray[order]
    depth = hits.depth[order]
    face = hits.face[order]

    # Neighbour gaps give every split; only runs spanning more than eps
    # need the sequential pass against their anchor hit.
    start = np.ones(len(ray), dtype=bool)
    if len(ray) > 1:
        same_ray = ray[1:] == ray[:-1]
        close = np.abs(depth[:-1] - depth[1:]) <= eps
        start[1:] = ~(same_ray & close)
        run_begin = np.flatnonzero(start)
        run_end = np.append(run_begin[1:], len(ray))
        long_runs = (depth[run_begin] - depth[run_end - 1]) > eps
        for begin, end in zip(run_begin[long_runs], run_end[long_runs]):
            anchor = depth[begin]
            for i in range(begin + 1, end):
                if anchor - depth[i] > eps:
                    start[i] = True
                    anchor = depth[i]

    c_ray = ray[start]
    count = np.bincount(c_ray, minlength=n_rays).astype(np.int64)
    ray_ids = np.arange(n_rays, dtype=np.int64)
    first = np.searchsorted(c_ray, ray_ids, side="left")
    last = np.searchsorted(c_ray, ray_ids, side="right") - 1
    return Contacts(
        ray=c_ray,
        depth=depth[start],
        face=face[start],
        count=count,
        first=first,
        last=last,
    )


def plane_samples(
    mesh: TriangleMesh, axis: int, resolution: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Regular sample coordinates over the mesh extent on the plane normal to *axis*."""
    a_ax, b_ax = AXIS_PLANES[axis]
    lo, hi = mesh.bounds
    return (
        grid_coordinates(float(lo[a_ax]), float(hi[a_ax]), resolution),
        grid_coordinates(float(lo[b_ax]), float(hi[b_ax]), resolution),
    )


def _chunk_faces(face_ids: np.ndarray, counts: np.ndarray):
    """Yield slices of *face_ids* whose candidate totals stay bounded."""
    totals = np.cumsum(counts)
    begin = 0
    while begin < len(face_ids):
        base = totals[begin - 1] if begin > 0 else 0
        end = int(np.searchsorted(totals, base + MAX_CANDIDATES_PER_CHUNK, side="right"))
        end = max(end, begin + 1)
        yield face_ids[begin:end]
        begin = end
