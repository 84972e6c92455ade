"""Tests for the ObservationEngine."""

from __future__ import annotations

import asyncio

import pytest

from deskscope.engine.engine import ObservationEngine
from deskscope.observer.base import ObserverError


class TestObservationEngine:
    """Polling, ordering and lifecycle of the engine."""

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes(self, scripted_observer, sample_observation) -> None:
        observer = scripted_observer([sample_observation])
        async with ObservationEngine(observer) as engine:
            assert observer.open_count == 1
            assert engine.observer is observer
        assert observer.close_count == 1

    @pytest.mark.asyncio
    async def test_poll_records_previous(self, scripted_observer, observation_factory) -> None:
        first, second = observation_factory(0), observation_factory(1)
        engine = ObservationEngine(scripted_observer([first, second]))
        assert engine.previous is None
        assert await engine.poll() == first
        assert engine.previous == first
        assert await engine.poll() == second
        assert engine.previous == second
        assert engine.poll_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_polls_are_queued(self, scripted_observer, observation_factory) -> None:
        observations = [observation_factory(i) for i in range(3)]
        observer = scripted_observer(observations, delay=0.02)
        engine = ObservationEngine(observer)

        results = await asyncio.gather(engine.poll(), engine.poll(), engine.poll())

        assert observer.max_active == 1
        assert observer.calls == 3
        assert list(results) == observations

    @pytest.mark.asyncio
    async def test_monotonic_never_decreases(self, scripted_observer, observation_factory) -> None:
        engine = ObservationEngine(
            scripted_observer([observation_factory(5), observation_factory(2), observation_factory(7)])
        )
        values = [(await engine.poll()).monotonic_ms for _ in range(3)]
        assert values == [5000, 5000, 7000]

    @pytest.mark.asyncio
    async def test_observer_error_propagates(self, scripted_observer, sample_observation) -> None:
        engine = ObservationEngine(
            scripted_observer([sample_observation, ObserverError("watch lost", backend="baseline")])
        )
        await engine.poll()
        with pytest.raises(ObserverError):
            await engine.poll()
        assert engine.previous == sample_observation
        assert engine.poll_count == 1
