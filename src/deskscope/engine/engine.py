"""Stateful observation engine.

Owns one live observer for the lifetime of the process, together with
the last observation it produced. Polls are serialized: a second
``poll()`` issued while one is in flight waits for the first to finish,
so the observer's filesystem-event cursor is never read or advanced by
two polls at once.
"""

from __future__ import annotations

import asyncio
import logging

from deskscope.domain.models import Observation
from deskscope.observer.base import Observer

logger = logging.getLogger(__name__)


class ObservationEngine:
    """Sequential poller around a single observer.

    Example usage::

        async with ObservationEngine(create_observer(config)) as engine:
            first = await engine.poll()
            second = await engine.poll()
    """

    def __init__(self, observer: Observer) -> None:
        self._observer = observer
        self._lock = asyncio.Lock()
        self._previous: Observation | None = None
        self._poll_count = 0

    @property
    def observer(self) -> Observer:
        return self._observer

    @property
    def previous(self) -> Observation | None:
        """The most recent observation, or None before the first poll."""
        return self._previous

    @property
    def poll_count(self) -> int:
        return self._poll_count

    async def open(self) -> None:
        """Open the observer.

        Raises:
            ObserverError: If the observer cannot start its watch.
        """
        await self._observer.open()

    async def close(self) -> None:
        await self._observer.close()

    async def poll(self) -> Observation:
        """Take one observation.

        Concurrent calls are queued behind the lock and run one at a
        time, in arrival order.
        """
        async with self._lock:
            observation = await self._observer.snapshot()
            observation = self._clamp_monotonic(observation)
            self._previous = observation
            self._poll_count += 1
            logger.debug(
                "Poll %d: %d windows, %d connections, %d fs events",
                self._poll_count,
                len(observation.windows),
                len(observation.net_connections),
                len(observation.fs_events),
            )
            return observation

    def _clamp_monotonic(self, observation: Observation) -> Observation:
        if self._previous is None or observation.monotonic_ms >= self._previous.monotonic_ms:
            return observation
        logger.debug(
            "Observer clock went backwards (%d < %d); clamping",
            observation.monotonic_ms,
            self._previous.monotonic_ms,
        )
        return observation.model_copy(update={"monotonic_ms": self._previous.monotonic_ms})

    async def __aenter__(self) -> ObservationEngine:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()
