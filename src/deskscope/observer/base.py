"""Abstract base classes for observers and wakers.

Every platform backend conforms to these interfaces, enabling the
engine and CLI to run unchanged on any operating system. A backend is
either the portable baseline collector or an enriching wrapper that
starts from the baseline result and overrides individual fields with
higher-fidelity native data.

Probes are fail-open: a probe that cannot read its source degrades to
the field's empty representation and never aborts the other probes.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

from deskscope.domain.models import Observation, WakeObservation

logger = logging.getLogger(__name__)

T = TypeVar("T")

OverrideStep = Callable[[T], T]


def run_probe(name: str, probe: Callable[..., T], default: T, *args: Any) -> T:
    """Run a single probe, substituting ``default`` if it raises.

    Args:
        name: Probe name used in debug logging.
        probe: The data-gathering callable.
        default: The field's empty representation.
        *args: Passed through to ``probe``.
    """
    try:
        return probe(*args)
    except Exception as e:
        logger.debug("Probe %s failed: %s", name, e)
        return default


def is_populated(value: object) -> bool:
    """Whether a probe produced a usable value (not None and not empty)."""
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) > 0
    return True


def prefer(native: T | None, baseline: T) -> T:
    """Return the native value unless it is less populated than the baseline."""
    return native if is_populated(native) else baseline  # type: ignore[return-value]


def apply_overrides(base: T, steps: list[OverrideStep[T]]) -> T:
    """Apply enrichment steps in order, skipping any that fail.

    Each step receives the current result and returns a new one. A step
    that raises leaves the result as it was before that step.
    """
    result = base
    for step in steps:
        try:
            result = step(result)
        except Exception as e:
            logger.debug("Enrichment step %s skipped: %s", getattr(step, "__name__", step), e)
    return result


class Observer(ABC):
    """Abstract interface for live-state observers.

    An observer owns the filesystem-event cursor for its lifetime, so
    one instance must back one engine. Implementations hold OS
    resources (the filesystem watch) between ``open()`` and ``close()``.

    Example usage::

        async with create_observer(config) as observer:
            first = await observer.snapshot()
            second = await observer.snapshot()
    """

    def __init__(self) -> None:
        self._is_open: bool = False

    @property
    def is_open(self) -> bool:
        """Whether the observer has been opened and not yet closed."""
        return self._is_open

    @abstractmethod
    async def open(self) -> None:
        """Acquire resources needed by every snapshot.

        Raises:
            ObserverError: If a resource required for every poll cannot
                be initialized.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Safe to call multiple times."""
        ...

    @abstractmethod
    async def snapshot(self) -> Observation:
        """Gather one live observation.

        Reads the filesystem events recorded since the previous snapshot,
        advances the cursor, and collects every other live field in the
        same pass. Not safe to call concurrently; callers serialize.
        """
        ...

    async def __aenter__(self) -> Observer:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


class Waker(ABC):
    """Abstract interface for building the one-shot wake observation."""

    @abstractmethod
    async def wake(self) -> WakeObservation:
        """Collect a fresh wake observation. Never retains state between calls."""
        ...


class EnrichingObserver(Observer):
    """Observer that overrides baseline fields with platform-native data.

    Subclasses list their override steps in ``observation_steps()``.
    The baseline observer owns the cursor; this wrapper only reads the
    baseline's finished observation.
    """

    platform: str = "baseline"

    def __init__(self, baseline: Observer) -> None:
        super().__init__()
        self._baseline = baseline

    @property
    def is_open(self) -> bool:
        return self._baseline.is_open

    async def open(self) -> None:
        await self._baseline.open()

    async def close(self) -> None:
        await self._baseline.close()

    async def snapshot(self) -> Observation:
        observation = await self._baseline.snapshot()
        return await asyncio.to_thread(apply_overrides, observation, self.observation_steps())

    @abstractmethod
    def observation_steps(self) -> list[OverrideStep[Observation]]:
        """Ordered override steps applied to each baseline observation."""
        ...


class EnrichingWaker(Waker):
    """Waker that overrides baseline wake fields with platform-native data."""

    platform: str = "baseline"

    def __init__(self, baseline: Waker) -> None:
        self._baseline = baseline

    async def wake(self) -> WakeObservation:
        wake = await self._baseline.wake()
        return await asyncio.to_thread(apply_overrides, wake, self.wake_steps())

    @abstractmethod
    def wake_steps(self) -> list[OverrideStep[WakeObservation]]:
        """Ordered override steps applied to the baseline wake observation."""
        ...


class ObserverError(Exception):
    """Raised when a resource required for every poll fails.

    Unlike a single probe's failure, this ends a stream.
    """

    def __init__(self, message: str, backend: str = "") -> None:
        super().__init__(message)
        self.backend = backend
