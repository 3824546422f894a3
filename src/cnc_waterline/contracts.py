"""Configuration and result records for the STL -> G-code engine."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]


# ─── Configuration ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ModelRotation:
    """Euler rotation applied X, then Y, then Z about fixed axes (radians)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_degrees(cls, x: float = 0.0, y: float = 0.0, z: float = 0.0) -> "ModelRotation":
        return cls(math.radians(x), math.radians(y), math.radians(z))

    @property
    def is_identity(self) -> bool:
        return self.x == 0.0 and self.y == 0.0 and self.z == 0.0

    def as_tuple(self) -> Vec3:
        return (float(self.x), float(self.y), float(self.z))


@dataclass(frozen=True)
class SlicingConfig:
    """Waterline slicing parameters."""

    layer_height: float = 0.5
    contour_tol: float = 0.01  # XY distance for joining segment endpoints
    zigzag: bool = True
    close_loops: bool = True
    top_down: bool = True  # Zmax -> Zmin, router style

    def __post_init__(self):
        if not self.layer_height > 0.0:
            raise ValueError(f"layer_height must be positive, got {self.layer_height}")
        if self.contour_tol < 0.0:
            raise ValueError(f"contour_tol must be non-negative, got {self.contour_tol}")


@dataclass(frozen=True)
class MachineConfig:
    """Machine motion and placement parameters."""

    z_safe: float = 5.0
    lead_in: float = 0.5
    feed_xy: float = 600.0  # mm/min
    feed_z: float = 300.0  # mm/min
    xy_margin: float = 1.0
    z_bed: float = 0.0
    z_gap: float = 0.0
    snap_bottom_to_bed: bool = True
    rapid_feed: float = 3000.0  # only used for time estimates

    def __post_init__(self):
        for name in ("feed_xy", "feed_z", "rapid_feed"):
            value = getattr(self, name)
            if not value > 0.0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.lead_in < 0.0:
            raise ValueError(f"lead_in must be non-negative, got {self.lead_in}")


@dataclass(frozen=True)
class ProgramConfig:
    """NC program header/footer and number formatting."""

    units_mm: bool = True
    absolute: bool = True
    spindle_on: bool = True
    spindle_rpm: float = 1000
    z_safe: float = 5.0
    program_name: str = "STL_WATERLINE"
    comment_prefix: str = "; "
    precision: int = 3

    def __post_init__(self):
        if self.precision < 0:
            raise ValueError(f"precision must be non-negative, got {self.precision}")
        if self.spindle_rpm < 0:
            raise ValueError(f"spindle_rpm must be non-negative, got {self.spindle_rpm}")


@dataclass(frozen=True)
class AnalysisConfig:
    """Convexity and machinability analysis parameters."""

    tolerance: float = 0.99  # volume ratio treated as convex
    bad_gap: float = 0.05  # volume gap that drives confidence to zero
    eps: float = 1e-6  # relative weld / length tolerance
    grid: int = 128  # XY samples per side for machinability
    max_up_angle_deg: float = 89.9
    z_eps: Optional[float] = None  # None -> derived from the bbox diagonal
    timeout_s: Optional[float] = None

    def __post_init__(self):
        if self.grid < 1:
            raise ValueError(f"grid must be >= 1, got {self.grid}")
        if not self.eps > 0.0:
            raise ValueError(f"eps must be positive, got {self.eps}")


# ─── Analysis results ───────────────────────────────────────────────────────


@dataclass
class MachinabilityIssue:
    """A single itemized machinability finding."""

    code: str
    severity: str  # "error" blocks the verdict, "warning" is advisory
    message: str
    value: float = 0.0
    limit: float = 0.0


@dataclass
class MachinabilityResult:
    """Top-down 3-axis accessibility verdict."""

    is_three_axis_machable: bool
    accessibility_score: float  # 0-100
    undercut_ratio: float  # 0..1, includes overhangs
    overhang_ratio: float
    top_face_down_ratio: float
    base_flat_ratio: float
    samples: int
    failure_reasons: List[MachinabilityIssue] = field(default_factory=list)
    warnings: List[MachinabilityIssue] = field(default_factory=list)
    details: str = ""

    @property
    def failure_reason(self) -> List[str]:
        return [issue.code for issue in self.failure_reasons]

    @classmethod
    def unavailable(cls, details: str) -> "MachinabilityResult":
        return cls(
            is_three_axis_machable=False,
            accessibility_score=0.0,
            undercut_ratio=1.0,
            overhang_ratio=1.0,
            top_face_down_ratio=1.0,
            base_flat_ratio=0.0,
            samples=0,
            failure_reasons=[
                MachinabilityIssue(
                    code="no_samples",
                    severity="error",
                    message=details,
                )
            ],
            details=details,
        )


@dataclass
class ConvexityAnalysis:
    """Convexity verdict with embedded machinability result."""

    is_convex: bool
    mesh_volume: float
    hull_volume: float
    convexity_ratio: float  # clamped 0..1
    confidence: float  # 0..100
    machinability: MachinabilityResult
    diagnostic: Optional[str] = None
    concave_edge_ratio: float = 0.0
    multi_axis_ratios: Dict[str, float] = field(default_factory=dict)
    watertight: bool = False
    boundary_edge_ratio: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["machinability"]["failure_reason"] = self.machinability.failure_reason
        return payload


# ─── Toolpath records ───────────────────────────────────────────────────────


@dataclass
class Polyline:
    """Ordered contour points on one slicing plane."""

    points: np.ndarray  # (n, 3)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_closed(self) -> bool:
        if len(self.points) < 3:
            return False
        return float(np.linalg.norm(self.points[0, :2] - self.points[-1, :2])) <= 1e-6

    def reversed(self) -> "Polyline":
        return Polyline(points=self.points[::-1].copy())


@dataclass
class Layer:
    """Contours produced by one slicing plane."""

    z: float
    polylines: List[Polyline] = field(default_factory=list)


class MoveKind(Enum):
    RAPID = "G0"
    CUT = "G1"


@dataclass
class Move:
    """One motion primitive. Missing axes are not emitted."""

    kind: MoveKind
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    feed: Optional[float] = None


@dataclass
class GCodeProgram:
    """Generated NC program plus summary counts."""

    gcode: str
    lines: int
    layers: int
    moves: int = 0
    estimated_minutes: float = 0.0
    z_lift: float = 0.0
    xy_offset: Tuple[float, float] = (0.0, 0.0)
    layer_areas: List[float] = field(default_factory=list)
