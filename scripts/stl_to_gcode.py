#!/usr/bin/env python3
"""Convert an STL part into a top-down waterline NC program."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cnc_waterline import (
    AnalysisConfig,
    MachineConfig,
    MeshError,
    ModelRotation,
    ProgramConfig,
    SlicingConfig,
    analyze_stl,
    generate_gcode_from_stl,
    load_config_file,
    with_overrides,
)
from cnc_waterline.run_protocol import Artifact, open_run

logger = logging.getLogger("stl_to_gcode")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Slice an STL into waterline contours and emit G-code"
    )
    parser.add_argument("--mesh", required=True, help="Path to input STL (binary or ASCII)")
    parser.add_argument("--name", default="waterline", help="Run name")
    parser.add_argument("--runs-dir", default="runs", help="Runs output root")
    parser.add_argument("--config", default=None, help="JSON file with config sections")
    parser.add_argument(
        "--output", default=None, help="Also copy the program to this path"
    )
    parser.add_argument(
        "--rotate-deg",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=None,
        help="Rotate the part before slicing (degrees, X then Y then Z)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Skip the machinability check and generate anyway",
    )

    slicing = parser.add_argument_group("slicing")
    slicing.add_argument("--layer-height", type=float, default=None, help="Layer step in mm")
    slicing.add_argument(
        "--contour-tol", type=float, default=None, help="Segment join distance in mm"
    )
    slicing.add_argument("--no-zigzag", action="store_true", help="Keep contour direction")
    slicing.add_argument("--no-close-loops", action="store_true", help="Leave contours open")
    slicing.add_argument("--bottom-up", action="store_true", help="Slice from Zmin upwards")

    machine = parser.add_argument_group("machine")
    machine.add_argument("--z-safe", type=float, default=None, help="Safe height in mm")
    machine.add_argument("--lead-in", type=float, default=None, help="Lead-in length in mm")
    machine.add_argument("--feed-xy", type=float, default=None, help="Cutting feed, mm/min")
    machine.add_argument("--feed-z", type=float, default=None, help="Plunge feed, mm/min")
    machine.add_argument("--xy-margin", type=float, default=None, help="XY offset from origin")
    machine.add_argument("--z-bed", type=float, default=None, help="Bed height in mm")
    machine.add_argument("--z-gap", type=float, default=None, help="Gap above the bed in mm")
    machine.add_argument(
        "--no-snap-bed", action="store_true", help="Do not lift the part onto the bed"
    )

    program = parser.add_argument_group("program")
    program.add_argument("--rpm", type=float, default=None, help="Spindle speed")
    program.add_argument("--no-spindle", action="store_true", help="Omit M3/M5")
    program.add_argument("--inch", action="store_true", help="Emit G20 instead of G21")
    program.add_argument("--incremental", action="store_true", help="Emit G91 instead of G90")
    program.add_argument("--program-name", default=None, help="Program name comment")
    program.add_argument("--precision", type=int, default=None, help="Decimal places")

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def _build_configs(args, configs):
    slicing = with_overrides(
        configs.get("slicing", SlicingConfig()),
        layer_height=args.layer_height,
        contour_tol=args.contour_tol,
        zigzag=None if not args.no_zigzag else False,
        close_loops=None if not args.no_close_loops else False,
        top_down=None if not args.bottom_up else False,
    )
    machine = with_overrides(
        configs.get("machine", MachineConfig()),
        z_safe=args.z_safe,
        lead_in=args.lead_in,
        feed_xy=args.feed_xy,
        feed_z=args.feed_z,
        xy_margin=args.xy_margin,
        z_bed=args.z_bed,
        z_gap=args.z_gap,
        snap_bottom_to_bed=None if not args.no_snap_bed else False,
    )
    program = with_overrides(
        configs.get("program", ProgramConfig()),
        spindle_rpm=args.rpm,
        spindle_on=None if not args.no_spindle else False,
        units_mm=None if not args.inch else False,
        absolute=None if not args.incremental else False,
        program_name=args.program_name,
        precision=args.precision,
        z_safe=args.z_safe,
    )
    return slicing, machine, program


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    configs = {}
    if args.config:
        try:
            configs = load_config_file(args.config)
        except (OSError, ValueError) as exc:
            parser.error(f"--config: {exc}")
    try:
        slicing, machine, program = _build_configs(args, configs)
    except ValueError as exc:
        parser.error(str(exc))
    rotation = configs.get("rotation")
    if args.rotate_deg is not None:
        rotation = ModelRotation.from_degrees(*args.rotate_deg)

    started = time.perf_counter()
    try:
        buffer = Path(args.mesh).read_bytes()
        analysis = None
        if not args.force:
            analysis = analyze_stl(
                buffer, config=configs.get("analysis", AnalysisConfig()), rotation=rotation
            )
            mach = analysis.machinability
            if not mach.is_three_axis_machable:
                logger.error(
                    "Part is not 3-axis machinable (%s); use --force to generate anyway",
                    ", ".join(mach.failure_reason),
                )
                print(f"Not machinable: {', '.join(mach.failure_reason)}")
                return 3
        result = generate_gcode_from_stl(
            buffer, rotation=rotation, slicing=slicing, machine=machine, program=program
        )
    except (OSError, MeshError) as exc:
        logger.error("Cannot convert %s: %s", args.mesh, exc)
        return 2
    elapsed = time.perf_counter() - started

    run = open_run(args.runs_dir, args.name, args.mesh)
    program_path = run.write(Artifact.PROGRAM, result.gcode + "\n")
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.gcode + "\n", encoding="utf-8")
    run.write(
        Artifact.REPORT,
        "\n".join(
            [
                f"# Run {run.run_id}",
                "",
                f"- Layers: {result.layers}",
                f"- Lines: {result.lines}",
                f"- Estimated time: {result.estimated_minutes:.1f} min",
                f"- Duration: {elapsed:.2f}s",
                "",
            ]
        ),
    )
    run.finish(
        "stl_to_gcode",
        config={
            "slicing": vars(slicing),
            "machine": vars(machine),
            "program": vars(program),
            "rotation": None if rotation is None else vars(rotation),
        },
        results={
            "elapsed_s": round(elapsed, 3),
            "lines": result.lines,
            "layers": result.layers,
            "moves": result.moves,
            "estimated_minutes": round(result.estimated_minutes, 3),
            "z_lift": result.z_lift,
            "xy_offset": list(result.xy_offset),
            "layer_areas": result.layer_areas,
            "analysis_skipped": analysis is None,
        },
    )

    print(f"Run ID: {run.run_id}")
    print(f"Run dir: {run.root}")
    print(f"Layers: {result.layers}")
    print(f"Lines: {result.lines}")
    print(f"Estimated time: {result.estimated_minutes:.1f} min")
    print(f"Program: {program_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
