"""Newline-delimited JSON output sink.

Each emitted unit is rendered to text and flushed on its own, so a
consumer reading the stream line by line never waits on buffering.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, TextIO

from pydantic import BaseModel

from deskscope.domain.models import to_wire

logger = logging.getLogger(__name__)


class JsonLineSink:
    """Writes one JSON value per unit to a text stream.

    Compact output puts each value on exactly one line. Pretty output
    indents each value and is meant for humans, not line-framed parsers.
    """

    def __init__(self, stream: TextIO | None = None, pretty: bool = False) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._pretty = pretty
        self._count = 0

    @property
    def count(self) -> int:
        """Number of units written so far."""
        return self._count

    def render(self, unit: BaseModel | dict[str, Any]) -> str:
        data = to_wire(unit) if isinstance(unit, BaseModel) else unit
        if self._pretty:
            return json.dumps(data, indent=2, ensure_ascii=False)
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)

    def emit(self, unit: BaseModel | dict[str, Any]) -> None:
        self._stream.write(self.render(unit) + "\n")
        self._stream.flush()
        self._count += 1

    def flush(self) -> None:
        try:
            self._stream.flush()
        except (OSError, ValueError) as e:
            logger.debug("Flush failed: %s", e)
