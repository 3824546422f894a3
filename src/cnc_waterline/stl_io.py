"""STL decoding (binary and ASCII) into an unwelded indexed mesh."""

from __future__ import annotations

import logging
import re
import struct
from pathlib import Path
from typing import Union

import numpy as np

from cnc_waterline.errors import EmptyGeometryError, FormatError
from cnc_waterline.mesh import TriangleMesh

logger = logging.getLogger(__name__)

HEADER_SIZE = 80
RECORD_SIZE = 50

# 12-byte normal, 3 x 12-byte vertices, 2-byte attribute count
_RECORD_DTYPE = np.dtype(
    [
        ("normal", "<f4", (3,)),
        ("vertices", "<f4", (3, 3)),
        ("attribute", "<u2"),
    ]
)

_VERTEX_RE = re.compile(
    rb"vertex\s+([-+\d.eE]+)\s+([-+\d.eE]+)\s+([-+\d.eE]+)"
)

BufferLike = Union[bytes, bytearray, memoryview]


def is_ascii_stl(data: bytes) -> bool:
    head = data[:HEADER_SIZE].decode("utf-8", errors="ignore")
    return head.lower().startswith("solid") and b"facet" in data


def parse_stl(buffer: BufferLike) -> TriangleMesh:
    """Decode an STL byte buffer.

    Every triangle gets its own three vertices; welding happens later.

    Raises:
        FormatError: truncated binary data or malformed ASCII vertices.
        EmptyGeometryError: the buffer declares no triangles.
    """
    data = bytes(buffer)
    if is_ascii_stl(data):
        corners = _parse_ascii(data)
        kind = "ascii"
    else:
        corners = _parse_binary(data)
        kind = "binary"

    n_tri = len(corners) // 3
    if n_tri == 0:
        raise EmptyGeometryError("STL contains no triangles")

    faces = np.arange(n_tri * 3, dtype=np.int64).reshape(n_tri, 3)
    logger.debug("Parsed %s STL: %d triangles", kind, n_tri)
    return TriangleMesh(vertices=corners, faces=faces)


def load_stl(path: Union[str, Path]) -> TriangleMesh:
    return parse_stl(Path(path).read_bytes())


def _parse_binary(data: bytes) -> np.ndarray:
    if len(data) < HEADER_SIZE + 4:
        raise FormatError(
            f"Binary STL too short: {len(data)} bytes, need at least {HEADER_SIZE + 4}"
        )
    (tri_count,) = struct.unpack_from("<I", data, HEADER_SIZE)
    need = HEADER_SIZE + 4 + tri_count * RECORD_SIZE
    if len(data) < need:
        raise FormatError(
            f"Binary STL truncated: header declares {tri_count} triangles "
            f"({need} bytes) but buffer has {len(data)} bytes"
        )
    records = np.frombuffer(
        data, dtype=_RECORD_DTYPE, count=tri_count, offset=HEADER_SIZE + 4
    )
    return records["vertices"].astype(np.float64).reshape(-1, 3)


def _parse_ascii(data: bytes) -> np.ndarray:
    values = []
    for match in _VERTEX_RE.finditer(data):
        try:
            values.extend(float(token) for token in match.groups())
        except ValueError as exc:
            raise FormatError(f"Malformed ASCII STL vertex: {match.group(0)!r}") from exc
    if len(values) % 9 != 0:
        raise FormatError(
            f"Malformed ASCII STL: {len(values)} coordinates is not a multiple of 9"
        )
    return np.asarray(values, dtype=np.float64).reshape(-1, 3)
