"""
Request-scoped failures of the visualization pipeline.

Every error aborts the current run only. The `kind` string is stable: it is
sent back to synchronous callers and used as a metrics label.
"""

from __future__ import annotations


class VisualizationError(Exception):
    kind = "visualization_error"


class DecodeError(VisualizationError):
    """Malformed or unsupported encoded image / point cloud."""
    kind = "decode_error"


class MessageFormatError(DecodeError):
    """Transport envelope could not be parsed into a query."""
    kind = "message_format_error"


class DimensionMismatchError(VisualizationError):
    """Mask and color image differ in size."""
    kind = "dimension_mismatch"


class CompositionError(VisualizationError):
    """Panel composition routine failed."""
    kind = "composition_error"


__all__ = [
    "VisualizationError",
    "DecodeError",
    "MessageFormatError",
    "DimensionMismatchError",
    "CompositionError",
]
