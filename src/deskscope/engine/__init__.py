"""Engine module for deskscope.

Public API:
    ObservationEngine -- Sequential poller owning one observer
    StreamLoop -- Interval loop emitting full observations or diffs
    StreamState -- Streaming loop states
    create_diff_envelope -- Patch between two observations
"""

from deskscope.engine.diff import apply_envelope, create_diff_envelope, make_patch
from deskscope.engine.engine import ObservationEngine
from deskscope.engine.stream import StreamLoop, StreamState

__all__ = [
    "ObservationEngine",
    "StreamLoop",
    "StreamState",
    "apply_envelope",
    "create_diff_envelope",
    "make_patch",
]
