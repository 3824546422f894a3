#!/usr/bin/env python3
"""Report convexity and 3-axis machinability of an STL part."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cnc_waterline import (
    AnalysisConfig,
    MeshError,
    ModelRotation,
    analyze_mesh,
    load_config_file,
    load_mesh,
    with_overrides,
)
from cnc_waterline.run_protocol import Artifact, open_run

logger = logging.getLogger("analyze_stl")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Analyze an STL for convexity and top-down 3-axis machinability"
    )
    parser.add_argument("--mesh", required=True, help="Path to input STL (binary or ASCII)")
    parser.add_argument("--name", default="analysis", help="Run name")
    parser.add_argument("--runs-dir", default="runs", help="Runs output root")
    parser.add_argument("--config", default=None, help="JSON file with config sections")
    parser.add_argument(
        "--grid", type=int, default=None, help="Ray grid samples per side (32-512)"
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Mesh/hull volume ratio treated as convex",
    )
    parser.add_argument(
        "--max-up-angle",
        type=float,
        default=None,
        help="Max top-face deviation from +Z in degrees",
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="Ray-casting time limit in seconds"
    )
    parser.add_argument(
        "--rotate-deg",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=None,
        help="Rotate the part before analysis (degrees, X then Y then Z)",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the full result as JSON only"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def _build_summary(*, run_id: str, elapsed_s: float, result) -> str:
    mach = result.machinability
    lines = [
        f"# Run {run_id}",
        "",
        f"- Machinable (3-axis): **{'YES' if mach.is_three_axis_machable else 'NO'}**",
        f"- Convex: {'yes' if result.is_convex else 'no'} "
        f"(ratio {result.convexity_ratio:.4f}, confidence {result.confidence:.1f})",
        f"- Accessibility: {mach.accessibility_score:.1f}%",
        f"- Undercuts: {mach.undercut_ratio * 100:.2f}%",
        f"- Base flat: {mach.base_flat_ratio * 100:.1f}%",
        f"- Duration: {elapsed_s:.2f}s",
        "",
    ]
    if mach.failure_reasons or mach.warnings:
        lines.append("## Findings")
        for issue in mach.failure_reasons + mach.warnings:
            lines.append(f"- [{issue.severity}] {issue.code}: {issue.message}")
        lines.append("")
    if result.diagnostic:
        lines += ["## Diagnostic", f"`{result.diagnostic}`", ""]
    return "\n".join(lines)


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
        config = with_overrides(
            configs.get("analysis", AnalysisConfig()),
            grid=None if args.grid is None else max(1, int(args.grid)),
            tolerance=args.tolerance,
            max_up_angle_deg=args.max_up_angle,
            timeout_s=args.timeout,
        )
    except ValueError as exc:
        parser.error(str(exc))
    rotation = configs.get("rotation")
    if args.rotate_deg is not None:
        rotation = ModelRotation.from_degrees(*args.rotate_deg)

    started = time.perf_counter()
    try:
        buffer = Path(args.mesh).read_bytes()
        mesh = load_mesh(buffer, rotation, relative_tolerance=config.eps)
        result = analyze_mesh(mesh, config)
    except (OSError, MeshError) as exc:
        logger.error("Cannot analyze %s: %s", args.mesh, exc)
        return 2
    elapsed = time.perf_counter() - started

    run = open_run(args.runs_dir, args.name, args.mesh)
    payload = result.to_dict()
    analysis_path = run.write(Artifact.ANALYSIS, payload)
    run.write(Artifact.PREPARED_MESH, mesh.to_trimesh().export(file_type="stl"))
    run.write(
        Artifact.REPORT,
        _build_summary(run_id=run.run_id, elapsed_s=elapsed, result=result),
    )

    mach = result.machinability
    run.finish(
        "analyze_stl",
        config={
            "analysis": vars(config),
            "rotation": None if rotation is None else vars(rotation),
        },
        results={
            "elapsed_s": round(elapsed, 3),
            "is_convex": result.is_convex,
            "is_three_axis_machable": mach.is_three_axis_machable,
            "convexity_ratio": result.convexity_ratio,
            "confidence": result.confidence,
            "accessibility_score": mach.accessibility_score,
            "undercut_ratio": mach.undercut_ratio,
            "failure_reason": mach.failure_reason,
            "warnings": [issue.code for issue in mach.warnings],
        },
    )

    if args.json:
        print(json.dumps(payload, indent=2))
        return 0

    print(f"Run ID: {run.run_id}")
    print(f"Run dir: {run.root}")
    print(f"Machinable: {'YES' if mach.is_three_axis_machable else 'NO'}")
    print(f"Convex: {'YES' if result.is_convex else 'NO'}")
    print(f"Convexity ratio: {result.convexity_ratio:.4f}")
    print(f"Confidence: {result.confidence:.1f}")
    print(f"Accessibility: {mach.accessibility_score:.1f}%")
    print(f"Failure reasons: {', '.join(mach.failure_reason) or 'none'}")
    print(f"Warnings: {', '.join(issue.code for issue in mach.warnings) or 'none'}")
    print(f"Analysis JSON: {analysis_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
