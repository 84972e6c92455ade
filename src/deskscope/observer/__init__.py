"""Observer module for deskscope.

Collects the live observation and the one-shot wake observation. The
baseline backend works on any OS; platform backends enrich it with
native window, display and idle data.

Public API:
    Observer -- Abstract live-state observer
    Waker -- Abstract wake-observation collector
    ObserverError -- Engine-fatal observer failure
    create_observer -- Platform dispatch for observers
    create_waker -- Platform dispatch for wakers
    BaselineObserver, BaselineWaker -- Portable implementations
"""

from deskscope.observer.base import Observer, ObserverError, Waker

__all__ = [
    "Observer",
    "ObserverError",
    "Waker",
    "create_observer",
    "create_waker",
    "BaselineObserver",
    "BaselineWaker",
]


def __getattr__(name: str) -> object:
    """Lazy import for implementations that load psutil and watchdog."""
    if name in ("create_observer", "create_waker"):
        from deskscope.observer import factory

        return getattr(factory, name)
    if name in ("BaselineObserver", "BaselineWaker"):
        from deskscope.observer import baseline

        return getattr(baseline, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
