"""Top-down 3-axis accessibility analysis by vertical grid ray casting."""

from __future__ import annotations

import logging
import math
from typing import List, Optional

import numpy as np

from cnc_waterline.contracts import AnalysisConfig, MachinabilityIssue, MachinabilityResult
from cnc_waterline.mesh import TriangleMesh
from cnc_waterline.raycast import Deadline, cast_grid, group_contacts, plane_samples

logger = logging.getLogger(__name__)

GRID_MIN = 32
GRID_MAX = 512
MAX_UP_ANGLE_LIMIT = 89.9

UNDERCUT_MAX = 0.02
TOP_DOWN_MAX = 0.02
ACCESSIBILITY_MIN = 95.0
BASE_FLAT_MIN = 0.9

DOWNWARD_NZ = -0.1
CORRUPT_TOP_NZ = -0.95


def analyze_machinability(
    mesh: TriangleMesh,
    config: Optional[AnalysisConfig] = None,
    deadline: Optional[Deadline] = None,
) -> MachinabilityResult:
    """Cast one +Z ray per XY grid column and classify what the tool meets.

    A column is blocked when it shows an undercut (more than two surface
    contacts), an overhang (a downward face above the base plane) or an
    inverted top face. Base flatness is reported as a warning only.
    """
    if config is None:
        config = AnalysisConfig()

    if mesh.is_empty or not np.all(np.isfinite(mesh.triangles), axis=(1, 2)).any():
        logger.warning("Machinability skipped: no usable triangles")
        return MachinabilityResult.unavailable("No usable triangles to evaluate")

    grid = int(np.clip(config.grid, GRID_MIN, GRID_MAX))
    max_up = float(np.clip(config.max_up_angle_deg, 0.0, MAX_UP_ANGLE_LIMIT))
    cos_max = math.cos(math.radians(max_up))

    diag = mesh.diagonal or 1.0
    z_eps = config.z_eps if config.z_eps is not None else max(1e-9, diag * 1e-5)
    base_tol = max(4.0 * z_eps, diag * 0.002)
    min_z = float(mesh.bounds[0, 2])

    xs, ys = plane_samples(mesh, 2, grid)
    samples = len(xs) * len(ys)
    hits = cast_grid(mesh, 2, xs, ys, deadline)
    contacts = group_contacts(hits, samples, z_eps)

    count = contacts.count
    covered = count > 0
    nz = mesh.face_normals[contacts.face, 2]

    undercut = count > 2

    downward = (nz < DOWNWARD_NZ) & (contacts.depth > min_z + base_tol)
    overhang = np.bincount(contacts.ray, weights=downward.astype(np.float64), minlength=samples) > 0

    top_down = np.zeros(samples, dtype=bool)
    top_nz = nz[contacts.first[covered]]
    top_nz = np.where(top_nz < CORRUPT_TOP_NZ, 1.0, top_nz)
    top_down[covered] = top_nz < cos_max

    blocked = undercut | overhang | top_down
    undercut_ratio = float(np.count_nonzero(undercut | overhang)) / samples
    overhang_ratio = float(np.count_nonzero(overhang)) / samples
    top_face_down_ratio = float(np.count_nonzero(top_down)) / samples
    accessibility = 100.0 * float(samples - np.count_nonzero(blocked)) / samples

    z_low = contacts.depth[contacts.last[covered]]
    base_flat_ratio = _modal_fraction(z_low, base_tol)

    failures: List[MachinabilityIssue] = []
    if undercut_ratio > UNDERCUT_MAX:
        failures.append(
            MachinabilityIssue(
                code="undercut_ratio",
                severity="error",
                message=f"{undercut_ratio * 100:.2f}% of columns have undercuts or overhangs",
                value=undercut_ratio,
                limit=UNDERCUT_MAX,
            )
        )
    if top_face_down_ratio > TOP_DOWN_MAX:
        failures.append(
            MachinabilityIssue(
                code="top_face_down_ratio",
                severity="error",
                message=f"{top_face_down_ratio * 100:.2f}% of columns see an inverted top face",
                value=top_face_down_ratio,
                limit=TOP_DOWN_MAX,
            )
        )
    if accessibility < ACCESSIBILITY_MIN:
        failures.append(
            MachinabilityIssue(
                code="accessibility",
                severity="error",
                message=f"Only {accessibility:.1f}% of columns are reachable from above",
                value=accessibility,
                limit=ACCESSIBILITY_MIN,
            )
        )

    warnings: List[MachinabilityIssue] = []
    if base_flat_ratio < BASE_FLAT_MIN:
        warnings.append(
            MachinabilityIssue(
                code="base_not_flat",
                severity="warning",
                message=f"Only {base_flat_ratio * 100:.1f}% of the base lies on one plane",
                value=base_flat_ratio,
                limit=BASE_FLAT_MIN,
            )
        )

    details = (
        f"grid={grid}x{grid}, undercuts={undercut_ratio * 100:.2f}%, "
        f"overhangs={overhang_ratio * 100:.2f}%, topDown={top_face_down_ratio * 100:.2f}%, "
        f"baseFlat={base_flat_ratio * 100:.2f}%, access={accessibility:.1f}"
    )
    result = MachinabilityResult(
        is_three_axis_machable=not failures,
        accessibility_score=accessibility,
        undercut_ratio=undercut_ratio,
        overhang_ratio=overhang_ratio,
        top_face_down_ratio=top_face_down_ratio,
        base_flat_ratio=base_flat_ratio,
        samples=samples,
        failure_reasons=failures,
        warnings=warnings,
        details=details,
    )
    logger.debug("Machinability: %s", details)
    return result


def _modal_fraction(values: np.ndarray, bin_width: float) -> float:
    """Share of *values* in the most populated bin of width *bin_width*."""
    if len(values) == 0:
        return 1.0
    bins = np.round(values / max(bin_width, 1e-12)).astype(np.int64)
    _, counts = np.unique(bins, return_counts=True)
    return float(counts.max()) / len(values)
