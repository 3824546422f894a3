"""Public entry points: STL bytes -> analysis verdict, STL bytes -> NC program."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cnc_waterline.contracts import (
    AnalysisConfig,
    ConvexityAnalysis,
    GCodeProgram,
    MachineConfig,
    ModelRotation,
    ProgramConfig,
    SlicingConfig,
)
from cnc_waterline.convexity import analyze_convexity
from cnc_waterline.gcode import emit_program
from cnc_waterline.mesh import TriangleMesh
from cnc_waterline.mesh_repair import prepare_mesh
from cnc_waterline.raycast import Deadline
from cnc_waterline.slicer import closed_contour_area, slice_mesh
from cnc_waterline.stl_io import BufferLike, parse_stl
from cnc_waterline.toolpath import (
    build_moves,
    estimate_machining_minutes,
    placement_offsets,
    translate_moves,
)

logger = logging.getLogger(__name__)

CONFIG_SECTIONS = {
    "analysis": AnalysisConfig,
    "slicing": SlicingConfig,
    "machine": MachineConfig,
    "program": ProgramConfig,
    "rotation": ModelRotation,
}


def load_mesh(
    buffer: BufferLike,
    rotation: Optional[ModelRotation] = None,
    relative_tolerance: float = 1e-6,
) -> TriangleMesh:
    """Parse, repair and optionally rotate an STL buffer."""
    started = time.perf_counter()
    raw = parse_stl(buffer)
    mesh, stats = prepare_mesh(raw, relative_tolerance=relative_tolerance)
    mesh = mesh.rotated(rotation)
    logger.info(
        "Loaded mesh: %d -> %d faces, %d vertices after weld (%.3fs)",
        stats.faces_in,
        stats.faces_welded,
        stats.vertices_welded,
        time.perf_counter() - started,
    )
    return mesh


def analyze_mesh(mesh: TriangleMesh, config: Optional[AnalysisConfig] = None) -> ConvexityAnalysis:
    """Convexity and 3-axis machinability of a mesh from :func:`load_mesh`.

    Raises:
        AnalysisTimeout: ``config.timeout_s`` elapsed during ray casting.
    """
    if config is None:
        config = AnalysisConfig()
    started = time.perf_counter()
    result = analyze_convexity(mesh, config, Deadline(config.timeout_s))
    logger.info("Analysis finished in %.3fs", time.perf_counter() - started)
    return result


def analyze_stl(
    buffer: BufferLike,
    config: Optional[AnalysisConfig] = None,
    rotation: Optional[ModelRotation] = None,
) -> ConvexityAnalysis:
    """Convexity and 3-axis machinability of an STL part.

    Raises:
        FormatError, EmptyGeometryError: the buffer is not usable STL.
        AnalysisTimeout: ``config.timeout_s`` elapsed during ray casting.
    """
    if config is None:
        config = AnalysisConfig()
    mesh = load_mesh(buffer, rotation, relative_tolerance=config.eps)
    return analyze_mesh(mesh, config)


def generate_gcode_from_stl(
    buffer: BufferLike,
    rotation: Optional[ModelRotation] = None,
    slicing: Optional[SlicingConfig] = None,
    machine: Optional[MachineConfig] = None,
    program: Optional[ProgramConfig] = None,
) -> GCodeProgram:
    """Waterline NC program for an STL part, cut top-down layer by layer."""
    slicing = slicing or SlicingConfig()
    machine = machine or MachineConfig()
    program = program or ProgramConfig()

    mesh = load_mesh(buffer, rotation)

    started = time.perf_counter()
    layers = slice_mesh(mesh, slicing)
    moves = build_moves(layers, machine)

    dx, dy, lift = placement_offsets(mesh.bounds, machine)
    moves = translate_moves(moves, dx, dy, lift)
    lines = emit_program(moves, program, z_lift=lift)

    result = GCodeProgram(
        gcode="\n".join(lines),
        lines=len(lines),
        layers=len(layers),
        moves=len(moves),
        estimated_minutes=estimate_machining_minutes(moves, machine.rapid_feed),
        z_lift=lift,
        xy_offset=(dx, dy),
        layer_areas=[closed_contour_area(layer.polylines) for layer in layers],
    )
    logger.info(
        "Generated %d lines over %d layers, ~%.1f min (%.3fs)",
        result.lines,
        result.layers,
        result.estimated_minutes,
        time.perf_counter() - started,
    )
    return result


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read config sections from a JSON file.

    Each top-level key names a section (``analysis``, ``slicing``,
    ``machine``, ``program``, ``rotation``) and maps to that record's
    fields. Rotation angles are radians.

    Raises:
        ValueError: unknown section or field names, or invalid values.
    """
    with Path(path).open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError(f"Config file must hold a JSON object: {path}")

    configs: Dict[str, Any] = {}
    for section, values in payload.items():
        cls = CONFIG_SECTIONS.get(section)
        if cls is None:
            raise ValueError(
                f"Unknown config section {section!r}; expected one of {sorted(CONFIG_SECTIONS)}"
            )
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown {section} fields: {sorted(unknown)}")
        configs[section] = cls(**values)
    return configs


def with_overrides(config, **overrides):
    """Copy of a frozen config record with the non-None *overrides* applied."""
    changes = {key: value for key, value in overrides.items() if value is not None}
    return replace(config, **changes) if changes else config
