"""Domain models for deskscope.

This package contains the payload shapes produced by the observers
and the stream: wake observations, live observations, diff envelopes
and their nested value types. All models use Pydantic v2 and are
immutable.
"""

from deskscope.domain.compact import compact_wake
from deskscope.domain.models import (
    SCHEMA_VERSION,
    Bounds,
    ConnInfo,
    DiffEnvelope,
    DisplayInfo,
    FSEvent,
    FSEventKind,
    Observation,
    Point,
    SchemaVersionError,
    TerminalCtx,
    WakeObservation,
    WindowInfo,
    check_schema_version,
    to_wire,
)

__all__ = [
    "SCHEMA_VERSION",
    "Bounds",
    "ConnInfo",
    "DiffEnvelope",
    "DisplayInfo",
    "FSEvent",
    "FSEventKind",
    "Observation",
    "Point",
    "SchemaVersionError",
    "TerminalCtx",
    "WakeObservation",
    "WindowInfo",
    "check_schema_version",
    "compact_wake",
    "to_wire",
]
