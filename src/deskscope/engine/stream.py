"""Streaming loop: polls the engine on an interval and emits NDJSON units.

State machine::

    INIT -> STREAMING -> TERMINATED   (stop requested)
                      -> FAILED       (a poll raised)

The first unit is always a full observation. With diff mode on, each
later unit is a DiffEnvelope against the previously polled observation;
otherwise every unit is a full observation. The sink is flushed on every
exit path.
"""

from __future__ import annotations

import asyncio
import enum
import logging

from deskscope.domain.models import Observation
from deskscope.engine.diff import create_diff_envelope
from deskscope.engine.engine import ObservationEngine
from deskscope.output import JsonLineSink

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 1000


class StreamState(str, enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    TERMINATED = "terminated"
    FAILED = "failed"


class StreamLoop:
    """Drives an ObservationEngine and writes each tick to a sink.

    Cancellation is cooperative: ``stop()`` is checked between ticks, so
    an in-flight poll always completes before the loop exits.
    """

    def __init__(
        self,
        engine: ObservationEngine,
        sink: JsonLineSink,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        diff: bool = False,
        max_ticks: int | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._engine = engine
        self._sink = sink
        self._interval = interval_ms / 1000.0
        self._diff = diff
        self._max_ticks = max_ticks
        self._stop_event = asyncio.Event()
        self._state = StreamState.INIT
        self._ticks = 0
        self._error: BaseException | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def ticks(self) -> int:
        """Number of units emitted."""
        return self._ticks

    @property
    def error(self) -> BaseException | None:
        """The exception that moved the loop to FAILED, if any."""
        return self._error

    def stop(self) -> None:
        """Request termination after the current tick."""
        self._stop_event.set()

    async def run(self) -> StreamState:
        """Stream until stopped or a poll fails.

        The engine must already be open. Returns the final state.
        """
        if self._state is not StreamState.INIT:
            raise RuntimeError(f"StreamLoop cannot run from state {self._state.value}")
        self._state = StreamState.STREAMING
        logger.info(
            "Streaming every %.0fms (%s)", self._interval * 1000, "diff" if self._diff else "full"
        )

        previous: Observation | None = None
        try:
            while not self._stop_event.is_set():
                current = await self._engine.poll()
                if previous is None or not self._diff:
                    self._sink.emit(current)
                else:
                    self._sink.emit(create_diff_envelope(previous, current))
                previous = current
                self._ticks += 1

                if self._max_ticks is not None and self._ticks >= self._max_ticks:
                    break
                await self._wait_interval()
        except asyncio.CancelledError:
            self._state = StreamState.TERMINATED
            raise
        except Exception as e:
            self._error = e
            self._state = StreamState.FAILED
            logger.error("Stream failed after %d ticks: %s", self._ticks, e)
        else:
            self._state = StreamState.TERMINATED
        finally:
            self._sink.flush()

        logger.info("Stream %s after %d ticks", self._state.value, self._ticks)
        return self._state

    async def _wait_interval(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass
