"""Selects the observer and waker backend for the running platform.

Dispatch happens once per process: a recognized platform gets its
enriching backend wrapped around the baseline, anything else gets the
baseline itself.
"""

from __future__ import annotations

import logging
import sys

from deskscope.config.settings import ObserverConfig, WakeConfig
from deskscope.observer.base import Observer, Waker
from deskscope.observer.baseline import BaselineObserver, BaselineWaker

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("linux", "darwin", "win32")


def detect_platform(platform: str | None = None) -> str:
    """Normalize ``sys.platform`` (or an override) to a backend key."""
    value = sys.platform if platform is None else platform
    for known in SUPPORTED_PLATFORMS:
        if value.startswith(known):
            return known
    return "baseline"


def create_observer(config: ObserverConfig | None = None, platform: str | None = None) -> Observer:
    """Instantiate the live observer for this platform.

    Args:
        config: Observer settings; defaults are used when omitted.
        platform: Override for ``sys.platform``, mainly for tests.
    """
    config = config or ObserverConfig()
    baseline = BaselineObserver(config)
    key = detect_platform(platform)
    logger.debug("Using %s observer backend", key)

    if key == "linux":
        from deskscope.observer.linux import LinuxObserver

        return LinuxObserver(baseline)
    if key == "darwin":
        from deskscope.observer.macos import MacObserver

        return MacObserver(baseline, all_connections=config.all_connections)
    if key == "win32":
        from deskscope.observer.windows import WindowsObserver

        return WindowsObserver(baseline)
    return baseline


def create_waker(config: WakeConfig | None = None, platform: str | None = None) -> Waker:
    """Instantiate the wake collector for this platform."""
    config = config or WakeConfig()
    baseline = BaselineWaker(config)
    key = detect_platform(platform)
    logger.debug("Using %s waker backend", key)

    if key == "linux":
        from deskscope.observer.linux import LinuxWaker

        return LinuxWaker(baseline)
    if key == "darwin":
        from deskscope.observer.macos import MacWaker

        return MacWaker(baseline)
    if key == "win32":
        from deskscope.observer.windows import WindowsWaker

        return WindowsWaker(baseline)
    return baseline
