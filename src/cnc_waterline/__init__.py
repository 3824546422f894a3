"""Public API for the STL waterline CAM engine."""

from cnc_waterline.contracts import (
    AnalysisConfig,
    ConvexityAnalysis,
    GCodeProgram,
    MachinabilityIssue,
    MachinabilityResult,
    MachineConfig,
    ModelRotation,
    ProgramConfig,
    SlicingConfig,
)
from cnc_waterline.errors import AnalysisTimeout, EmptyGeometryError, FormatError, MeshError
from cnc_waterline.pipeline import (
    analyze_mesh,
    analyze_stl,
    generate_gcode_from_stl,
    load_config_file,
    load_mesh,
    with_overrides,
)

__all__ = [
    "AnalysisConfig",
    "AnalysisTimeout",
    "ConvexityAnalysis",
    "EmptyGeometryError",
    "FormatError",
    "GCodeProgram",
    "MachinabilityIssue",
    "MachinabilityResult",
    "MachineConfig",
    "MeshError",
    "ModelRotation",
    "ProgramConfig",
    "SlicingConfig",
    "analyze_mesh",
    "analyze_stl",
    "generate_gcode_from_stl",
    "load_config_file",
    "load_mesh",
    "with_overrides",
]
