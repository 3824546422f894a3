"""Exceptions raised by the waterline engine.

Only input problems are exceptions. Geometric degeneracies (zero volume,
failed hulls, flat parts) are reported as ordinary result data.
"""


class MeshError(Exception):
    """Base exception for mesh input errors."""
    pass


class FormatError(MeshError):
    """STL buffer is truncated or malformed."""
    pass


class EmptyGeometryError(MeshError):
    """Buffer parsed but holds no usable triangles."""
    pass


class AnalysisTimeout(MeshError):
    """Ray-casting pass exceeded its time limit."""
    pass
