"""Modal NC program text from motion primitives."""

import logging
from typing import Iterable, List, Optional

from cnc_waterline.contracts import Move, MoveKind, ProgramConfig

logger = logging.getLogger(__name__)

GENERATOR = "cnc-waterline"
FEED_EPS = 1e-9


def format_number(x: float, precision: int) -> str:
    """Fixed-point text with "-0.000" style artifacts snapped to "0.000"."""
    text = f"{x:.{precision}f}"
    if text.startswith("-") and abs(x) < 0.5 * 10 ** (-precision):
        text = text[1:]
    return text


def format_verbatim(value) -> str:
    """Spindle speed or feed as given; integral floats lose the ".0"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def emit_program(
    moves: Iterable[Move],
    program: Optional[ProgramConfig] = None,
    z_lift: float = 0.0,
) -> List[str]:
    """Header, one line per move with modal suppression, footer.

    The motion word is written only when it changes. Feed words appear only
    on cuts and only when the feed differs from the last one written.
    *z_lift* raises the header/footer safe height with the rest of the part.
    """
    if program is None:
        program = ProgramConfig()
    p = program.precision
    safe = format_number(program.z_safe + z_lift, p)
    prefix = program.comment_prefix

    lines = [
        f"{prefix}Program: {program.program_name}",
        f"{prefix}Generated by {GENERATOR}",
        "G21" if program.units_mm else "G20",
        "G90" if program.absolute else "G91",
        "G17",
        f"G0 Z{safe}",
    ]
    if program.spindle_on:
        lines.append(f"M3 S{format_verbatim(program.spindle_rpm)}")

    mode: Optional[MoveKind] = None
    feed: Optional[float] = None
    for move in moves:
        words = []
        if move.kind is not mode:
            words.append(move.kind.value)
            mode = move.kind
        if move.x is not None:
            words.append(f"X{format_number(move.x, p)}")
        if move.y is not None:
            words.append(f"Y{format_number(move.y, p)}")
        if move.z is not None:
            words.append(f"Z{format_number(move.z, p)}")
        if move.kind is MoveKind.CUT and move.feed is not None:
            if feed is None or abs(move.feed - feed) > FEED_EPS:
                words.append(f"F{format_verbatim(move.feed)}")
                feed = move.feed
        if words:
            lines.append(" ".join(words))

    lines.append(f"G0 Z{safe}")
    if program.spindle_on:
        lines.append("M5")
    lines.append("M30")
    return lines
