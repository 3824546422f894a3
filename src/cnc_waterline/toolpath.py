"""Contour layers -> approach / cut / retract motion primitives."""

import logging
import math
from typing import Iterable, List, Optional, Tuple

import numpy as np

from cnc_waterline.contracts import Layer, MachineConfig, Move, MoveKind

logger = logging.getLogger(__name__)


def build_moves(layers: Iterable[Layer], machine: Optional[MachineConfig] = None) -> List[Move]:
    """Waterline moves for each polyline of each layer, in layer order.

    Per polyline: rapid over the start at safe Z, plunge at ``feed_z``,
    optional lead-in along the first segment, cut through the remaining
    points at ``feed_xy``, rapid retract over the end.
    """
    if machine is None:
        machine = MachineConfig()
    z_safe = machine.z_safe
    moves: List[Move] = []

    for layer in layers:
        z = layer.z
        for polyline in layer.polylines:
            pts = polyline.points
            if len(pts) == 0:
                continue
            sx, sy = float(pts[0, 0]), float(pts[0, 1])

            moves.append(Move(MoveKind.RAPID, x=sx, y=sy, z=z_safe))
            moves.append(Move(MoveKind.CUT, x=sx, y=sy, z=z, feed=machine.feed_z))

            if machine.lead_in > 0 and len(pts) > 1:
                dx = float(pts[1, 0]) - sx
                dy = float(pts[1, 1]) - sy
                length = math.hypot(dx, dy) or 1.0
                step = min(machine.lead_in, 0.5 * length)
                moves.append(
                    Move(
                        MoveKind.CUT,
                        x=sx + dx / length * step,
                        y=sy + dy / length * step,
                        z=z,
                        feed=machine.feed_xy,
                    )
                )

            for px, py in pts[1:, :2]:
                moves.append(Move(MoveKind.CUT, x=float(px), y=float(py), z=z, feed=machine.feed_xy))

            ex, ey = float(pts[-1, 0]), float(pts[-1, 1])
            moves.append(Move(MoveKind.RAPID, x=ex, y=ey, z=z_safe))

    logger.debug("Built %d moves", len(moves))
    return moves


def placement_offsets(bounds: np.ndarray, machine: Optional[MachineConfig] = None) -> Tuple[float, float, float]:
    """(dx, dy, z_lift) that put the part at the XY margin and above the bed."""
    if machine is None:
        machine = MachineConfig()
    lo = bounds[0]
    dx = -float(lo[0]) + machine.xy_margin
    dy = -float(lo[1]) + machine.xy_margin
    lift = 0.0
    if machine.snap_bottom_to_bed:
        lift = max(0.0, machine.z_bed + machine.z_gap - float(lo[2]))
    return dx, dy, lift


def translate_moves(moves: Iterable[Move], dx: float, dy: float, dz: float) -> List[Move]:
    """Shift every present axis word; absent axes stay absent."""
    shifted = []
    for move in moves:
        shifted.append(
            Move(
                move.kind,
                x=None if move.x is None else move.x + dx,
                y=None if move.y is None else move.y + dy,
                z=None if move.z is None else move.z + dz,
                feed=move.feed,
            )
        )
    return shifted


def estimate_machining_minutes(moves: Iterable[Move], rapid_feed: float = 3000.0) -> float:
    """Path length over feed rate, summed across moves.

    The first move only establishes a position. Cuts without a feed are
    timed at the rapid feed.
    """
    position: List[Optional[float]] = [None, None, None]
    minutes = 0.0
    for move in moves:
        target = [move.x, move.y, move.z]
        delta = 0.0
        for axis in range(3):
            if target[axis] is None:
                continue
            if position[axis] is not None:
                delta += (target[axis] - position[axis]) ** 2
            position[axis] = target[axis]
        length = math.sqrt(delta)
        feed = move.feed if move.kind is MoveKind.CUT and move.feed else rapid_feed
        minutes += length / feed
    return minutes
