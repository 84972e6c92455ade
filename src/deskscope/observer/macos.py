"""macOS enrichment backend.

Reads displays and GPUs from ``system_profiler``, the frontmost window
through System Events (``osascript``) and idle time from the HID system
registry entry. Wake data comes from ``sw_vers``, ``sysctl``,
``netstat``, ``scutil`` and ``lsof``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from deskscope.domain.models import (
    Bounds,
    DisplayInfo,
    GpuInfo,
    Observation,
    WakeObservation,
    WindowInfo,
)
from deskscope.observer.base import (
    EnrichingObserver,
    EnrichingWaker,
    Observer,
    OverrideStep,
    prefer,
)
from deskscope.observer.baseline import MAX_PLAUSIBLE_UPTIME_S
from deskscope.utils.commands import command_stdout
from deskscope.utils.net import connections_from_lsof, listening_from_lsof

logger = logging.getLogger(__name__)

FULLSCREEN_RATIO = 0.95

FRONT_WINDOW_SCRIPT = """
tell application "System Events"
    set p to first application process whose frontmost is true
    set appName to name of p
    set appPid to unix id of p
    set winTitle to ""
    set winPos to {-1, -1}
    set winSize to {0, 0}
    try
        set w to front window of p
        set winTitle to name of w
        set winPos to position of w
        set winSize to size of w
    end try
    return appName & tab & appPid & tab & winTitle & tab & (item 1 of winPos) & tab & (item 2 of winPos) & tab & (item 1 of winSize) & tab & (item 2 of winSize)
end tell
"""

_RESOLUTION_RE = re.compile(r"(\d+)\s*x\s*(\d+)")
_HID_IDLE_RE = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')
_BOOTTIME_RE = re.compile(r"sec\s*=\s*(\d+)")


def _parse_resolution(value: Any) -> tuple[int, int] | None:
    if not isinstance(value, str):
        return None
    match = _RESOLUTION_RE.search(value)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def parse_system_profiler(output: str) -> tuple[list[GpuInfo], list[DisplayInfo]]:
    """Extract GPUs and attached displays from ``SPDisplaysDataType -json``.

    system_profiler does not report display origins; every display is
    placed at the desktop origin with its logical resolution as size.
    """
    try:
        root = json.loads(output)
    except json.JSONDecodeError:
        return [], []
    adapters = root.get("SPDisplaysDataType") if isinstance(root, dict) else None
    if not isinstance(adapters, list):
        return [], []

    gpus: list[GpuInfo] = []
    displays: list[DisplayInfo] = []
    for adapter in adapters:
        if not isinstance(adapter, dict):
            continue
        name = adapter.get("sppci_model") or adapter.get("_name")
        if isinstance(name, str) and name:
            gpus.append(GpuInfo(name=name, driver="metal"))
        for screen in adapter.get("spdisplays_ndrvs") or []:
            if not isinstance(screen, dict):
                continue
            logical = _parse_resolution(screen.get("_spdisplays_resolution"))
            pixels = _parse_resolution(screen.get("_spdisplays_pixels"))
            size = logical or pixels
            if size is None:
                continue
            scale = pixels[0] / logical[0] if pixels and logical and logical[0] else None
            displays.append(
                DisplayInfo(
                    id=len(displays),
                    bounds=Bounds(x=0, y=0, w=size[0], h=size[1]),
                    is_primary=screen.get("spdisplays_main") == "spdisplays_yes",
                    scale_factor=scale,
                )
            )
    return gpus, displays


def is_fullscreen(bounds: Bounds, displays: list[DisplayInfo]) -> bool | None:
    if not displays:
        return None
    return any(
        bounds.w / max(d.bounds.w, 1) >= FULLSCREEN_RATIO
        and bounds.h / max(d.bounds.h, 1) >= FULLSCREEN_RATIO
        for d in displays
    )


def parse_front_window(output: str, displays: list[DisplayInfo]) -> WindowInfo | None:
    """Parse the tab-separated reply of ``FRONT_WINDOW_SCRIPT``."""
    parts = output.split("\t")
    if len(parts) != 7 or not parts[0]:
        return None
    app, pid_text, title = parts[0], parts[1], parts[2]
    try:
        pid = int(pid_text)
        x, y, w, h = (int(float(v)) for v in parts[3:])
    except ValueError:
        return None
    bounds = Bounds(x=x, y=y, w=w, h=h) if w > 0 and h > 0 else None
    return WindowInfo(
        id=f"{pid}:{title}",
        title=title,
        app=app,
        pid=pid,
        bounds=bounds,
        is_minimized=False if bounds is not None else None,
        is_fullscreen=is_fullscreen(bounds, displays) if bounds is not None else None,
    )


def parse_hid_idle_ms(output: str) -> int | None:
    match = _HID_IDLE_RE.search(output)
    if match is None:
        return None
    return int(match.group(1)) // 1_000_000


def parse_netstat_gateway(output: str) -> str | None:
    for line in output.splitlines():
        cols = line.split()
        if len(cols) >= 2 and cols[0] == "default" and not cols[1].startswith("link#"):
            return cols[1]
    return None


def parse_scutil_dns(output: str) -> list[str]:
    servers = set()
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("nameserver["):
            _, _, value = line.partition(":")
            if value.strip():
                servers.add(value.strip())
    return sorted(servers)


def parse_boottime(output: str, now_ts: float) -> int | None:
    """Uptime from ``sysctl -n kern.boottime`` (``{ sec = 1700000000, usec = 0 } ...``)."""
    match = _BOOTTIME_RE.search(output)
    if match is None:
        return None
    boot = int(match.group(1))
    uptime = now_ts - boot
    if boot <= 0 or uptime < 0 or uptime > MAX_PLAUSIBLE_UPTIME_S:
        return None
    return int(uptime)


def chassis_from_model(model: str) -> str:
    return "Laptop" if model.startswith("MacBook") else "Desktop"


class MacObserver(EnrichingObserver):
    """Baseline observer enriched with System Events and HID data."""

    platform = "macos"

    def __init__(self, baseline: Observer, all_connections: bool = False) -> None:
        super().__init__(baseline)
        self._all_connections = all_connections

    def observation_steps(self) -> list[OverrideStep[Observation]]:
        return [self._with_displays, self._with_focus, self._with_idle, self._with_connections]

    @staticmethod
    def _with_displays(obs: Observation) -> Observation:
        output = command_stdout("system_profiler", ["SPDisplaysDataType", "-json"], timeout=5.0)
        _, displays = parse_system_profiler(output) if output else ([], [])
        return obs.model_copy(update={"displays": prefer(displays, obs.displays)})

    @staticmethod
    def _with_focus(obs: Observation) -> Observation:
        output = command_stdout("osascript", ["-e", FRONT_WINDOW_SCRIPT])
        focus = parse_front_window(output, obs.displays) if output else None
        if focus is None:
            return obs
        return obs.model_copy(
            update={"focus": focus, "windows": prefer([focus], obs.windows)}
        )

    @staticmethod
    def _with_idle(obs: Observation) -> Observation:
        output = command_stdout("ioreg", ["-c", "IOHIDSystem"])
        idle = parse_hid_idle_ms(output) if output else None
        return obs.model_copy(update={"idle_ms": prefer(idle, obs.idle_ms)})

    def _with_connections(self, obs: Observation) -> Observation:
        if obs.net_connections:
            return obs
        return obs.model_copy(
            update={"net_connections": connections_from_lsof(self._all_connections)}
        )


class MacWaker(EnrichingWaker):
    """Baseline waker enriched with macOS system tools."""

    platform = "macos"

    def wake_steps(self) -> list[OverrideStep[WakeObservation]]:
        return [
            self._with_machine,
            self._with_groups,
            self._with_network,
            self._with_gpus,
            self._with_uptime,
            self._with_listening_ports,
        ]

    @staticmethod
    def _with_machine(wake: WakeObservation) -> WakeObservation:
        kernel = command_stdout("uname", ["-r"])
        model = command_stdout("sysctl", ["-n", "hw.model"])
        vmm = command_stdout("sysctl", ["-n", "kern.hv_vmm_present"])
        machine = wake.machine.model_copy(
            update={
                "os": "macOS",
                "os_version": prefer(command_stdout("sw_vers", ["-productVersion"]), wake.machine.os_version),
                "kernel": f"Darwin {kernel}" if kernel else wake.machine.kernel,
                "chassis": chassis_from_model(model) if model else wake.machine.chassis,
                "is_vm": vmm == "1" if vmm in ("0", "1") else wake.machine.is_vm,
            }
        )
        return wake.model_copy(update={"machine": machine})

    @staticmethod
    def _with_groups(wake: WakeObservation) -> WakeObservation:
        output = command_stdout("id", ["-Gn"])
        groups = output.split() if output else []
        user = wake.user.model_copy(update={"groups": prefer(groups, wake.user.groups)})
        return wake.model_copy(update={"user": user})

    @staticmethod
    def _with_network(wake: WakeObservation) -> WakeObservation:
        netstat = command_stdout("netstat", ["-nr"])
        scutil = command_stdout("scutil", ["--dns"])
        identity = wake.network_identity
        identity = identity.model_copy(
            update={
                "default_gateway": prefer(
                    parse_netstat_gateway(netstat) if netstat else None, identity.default_gateway
                ),
                "dns_servers": prefer(
                    parse_scutil_dns(scutil) if scutil else [], identity.dns_servers
                ),
            }
        )
        return wake.model_copy(update={"network_identity": identity})

    @staticmethod
    def _with_gpus(wake: WakeObservation) -> WakeObservation:
        output = command_stdout("system_profiler", ["SPDisplaysDataType", "-json"], timeout=5.0)
        gpus, _ = parse_system_profiler(output) if output else ([], [])
        resources = wake.resources.model_copy(update={"gpus": prefer(gpus, wake.resources.gpus)})
        return wake.model_copy(update={"resources": resources})

    @staticmethod
    def _with_uptime(wake: WakeObservation) -> WakeObservation:
        output = command_stdout("sysctl", ["-n", "kern.boottime"])
        uptime = parse_boottime(output, wake.ts) if output else None
        if uptime is None:
            return wake
        login_ts = wake.ts - uptime
        if wake.datetime.login_ts is not None:
            login_ts = min(login_ts, wake.datetime.login_ts)
        date_info = wake.datetime.model_copy(
            update={"uptime_seconds": uptime, "login_ts": login_ts}
        )
        return wake.model_copy(update={"datetime": date_info})

    @staticmethod
    def _with_listening_ports(wake: WakeObservation) -> WakeObservation:
        if wake.listening_ports:
            return wake
        return wake.model_copy(update={"listening_ports": listening_from_lsof()})
