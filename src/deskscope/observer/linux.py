"""Linux enrichment backend.

Live data comes from the Hyprland compositor's IPC socket when one is
running, and from ``xprintidle`` for idle time. Wake data comes from
``/etc/os-release``, DMI firmware fields, ``/proc`` and a handful of
standard commands.
"""

from __future__ import annotations

import json
import logging
import os
import socket
from pathlib import Path
from typing import Any

from deskscope.domain.models import (
    Bounds,
    DisplayInfo,
    GpuInfo,
    Observation,
    Point,
    TerminalCtx,
    WakeObservation,
    WindowInfo,
)
from deskscope.observer.base import (
    EnrichingObserver,
    EnrichingWaker,
    OverrideStep,
    prefer,
)
from deskscope.observer.baseline import MAX_PLAUSIBLE_UPTIME_S
from deskscope.utils.commands import command_stdout, read_text

logger = logging.getLogger(__name__)

HYPRLAND_TIMEOUT_S = 0.5
TERMINAL_APPS = ("alacritty", "kitty", "wezterm", "gnome-terminal", "konsole", "xterm", "foot")

# SMBIOS chassis type codes
LAPTOP_CHASSIS = frozenset(range(8, 15)) | {30, 31, 32}
DESKTOP_CHASSIS = frozenset({3, 4, 5, 6, 7, 15, 16, 35, 36})
HYPERVISOR_VENDORS = {
    "qemu": "qemu",
    "kvm": "kvm",
    "vmware": "vmware",
    "virtualbox": "virtualbox",
    "innotek": "virtualbox",
    "xen": "xen",
    "microsoft corporation": "hyperv",
    "parallels": "parallels",
    "amazon ec2": "kvm",
}

DMI_DIR = Path("/sys/class/dmi/id")


# ---------------------------------------------------------------------------
# Hyprland IPC
# ---------------------------------------------------------------------------


def hyprland_socket_path(env: dict[str, str] | None = None) -> Path | None:
    env = os.environ if env is None else env
    signature = env.get("HYPRLAND_INSTANCE_SIGNATURE")
    runtime = env.get("XDG_RUNTIME_DIR")
    if not signature or not runtime:
        return None
    path = Path(runtime) / "hypr" / signature / ".socket.sock"
    return path if path.exists() else None


class HyprlandClient:
    """Minimal request/response client for Hyprland's command socket.

    Each query opens a new connection, sends one command and reads the
    JSON reply until the compositor closes the socket.
    """

    def __init__(self, socket_path: Path, timeout: float = HYPRLAND_TIMEOUT_S) -> None:
        self._socket_path = socket_path
        self._timeout = timeout

    def query(self, command: str) -> Any:
        """Send ``command`` (e.g. ``j/clients``) and return the decoded reply.

        Returns None if the socket is unreachable or the reply is not JSON.
        """
        chunks = []
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(self._timeout)
                sock.connect(str(self._socket_path))
                sock.sendall(command.encode())
                sock.shutdown(socket.SHUT_WR)
                while chunk := sock.recv(65536):
                    chunks.append(chunk)
        except OSError as e:
            logger.debug("Hyprland query %s failed: %s", command, e)
            return None
        raw = b"".join(chunks).decode(errors="replace").strip()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Hyprland query %s returned non-JSON output", command)
            return None


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _pair(value: Any) -> tuple[int, int] | None:
    if not isinstance(value, list) or len(value) < 2:
        return None
    first, second = _int_or_none(value[0]), _int_or_none(value[1])
    if first is None or second is None:
        return None
    return first, second


def parse_hypr_window(client: dict[str, Any]) -> WindowInfo | None:
    """Convert one Hyprland client object into a WindowInfo."""
    address = client.get("address")
    if not isinstance(address, str) or not address:
        return None
    at, size = _pair(client.get("at")), _pair(client.get("size"))
    bounds = Bounds(x=at[0], y=at[1], w=size[0], h=size[1]) if at and size else None
    workspace = client.get("workspace")
    fullscreen = client.get("fullscreen")
    if isinstance(fullscreen, bool):
        is_fullscreen: bool | None = fullscreen
    elif isinstance(fullscreen, int):
        is_fullscreen = fullscreen > 0
    else:
        is_fullscreen = None
    return WindowInfo(
        id=address,
        title=str(client.get("title") or ""),
        app=str(client.get("class") or ""),
        pid=_int_or_none(client.get("pid")),
        bounds=bounds,
        workspace=_int_or_none(workspace.get("id")) if isinstance(workspace, dict) else None,
        is_minimized=bool(client["hidden"]) if isinstance(client.get("hidden"), bool) else None,
        is_fullscreen=is_fullscreen,
    )


def parse_hypr_clients(clients: Any) -> list[WindowInfo]:
    """Visible windows ordered front to back.

    Hyprland reports ``focusHistoryID`` 0 for the most recently focused
    window; clients without it keep their reported order at the back.
    """
    if not isinstance(clients, list):
        return []
    visible = [
        c
        for c in clients
        if isinstance(c, dict) and c.get("mapped", True) and not c.get("hidden", False)
    ]
    ordered = sorted(
        enumerate(visible),
        key=lambda item: (
            _int_or_none(item[1].get("focusHistoryID")) is None,
            _int_or_none(item[1].get("focusHistoryID")) or 0,
            item[0],
        ),
    )
    windows = (parse_hypr_window(client) for _, client in ordered)
    return [w for w in windows if w is not None]


def parse_hypr_monitors(monitors: Any) -> list[DisplayInfo]:
    if not isinstance(monitors, list):
        return []
    displays = []
    for monitor in monitors:
        if not isinstance(monitor, dict):
            continue
        values = [_int_or_none(monitor.get(key)) for key in ("id", "x", "y", "width", "height")]
        if any(v is None for v in values):
            continue
        monitor_id, x, y, w, h = values
        scale = monitor.get("scale")
        displays.append(
            DisplayInfo(
                id=monitor_id,
                bounds=Bounds(x=x, y=y, w=w, h=h),
                is_primary=monitor["focused"] if isinstance(monitor.get("focused"), bool) else None,
                scale_factor=float(scale) if isinstance(scale, (int, float)) else None,
            )
        )
    return displays


def parse_hypr_cursor(value: Any) -> Point | None:
    if not isinstance(value, dict):
        return None
    x, y = _int_or_none(value.get("x")), _int_or_none(value.get("y"))
    if x is None or y is None:
        return None
    return Point(x=x, y=y)


def is_terminal_app(app: str) -> bool:
    app = app.lower()
    return any(name in app for name in TERMINAL_APPS)


def process_cwd(pid: int) -> str | None:
    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        return None


def xprintidle_ms() -> int | None:
    output = command_stdout("xprintidle")
    if output is None:
        return None
    try:
        value = int(output.split()[0])
    except (ValueError, IndexError):
        return None
    return value if value >= 0 else None


# ---------------------------------------------------------------------------
# Wake helpers
# ---------------------------------------------------------------------------


def parse_os_release(text: str) -> dict[str, str]:
    values = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key and not key.startswith("#"):
            values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def container_from_cgroup(text: str) -> bool:
    return any(marker in text for marker in ("docker", "containerd", "kubepods", "libpod"))


def chassis_from_code(code: str) -> str | None:
    try:
        value = int(code.strip())
    except ValueError:
        return None
    if value in LAPTOP_CHASSIS:
        return "Laptop"
    if value in DESKTOP_CHASSIS:
        return "Desktop"
    return None


def hypervisor_from_vendor(vendor: str) -> str | None:
    vendor = vendor.strip().lower()
    for marker, name in HYPERVISOR_VENDORS.items():
        if marker in vendor:
            return name
    return None


def parse_default_gateway(output: str) -> str | None:
    for line in output.splitlines():
        cols = line.split()
        if "via" in cols:
            index = cols.index("via")
            if index + 1 < len(cols):
                return cols[index + 1]
    return None


def parse_lspci_gpus(output: str) -> list[GpuInfo]:
    gpus = []
    for line in output.splitlines():
        if "VGA" not in line and "3D controller" not in line:
            continue
        name = line.rsplit(":", 1)[-1].strip()
        if name:
            gpus.append(GpuInfo(name=name))
    return gpus


def parse_proc_uptime(text: str) -> int | None:
    try:
        value = float(text.split()[0])
    except (ValueError, IndexError):
        return None
    return int(value) if value >= 0 else None


def parse_cpu_model(cpuinfo: str) -> str | None:
    for line in cpuinfo.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() in ("model name", "Model", "Hardware"):
            return value.strip() or None
    return None


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class LinuxObserver(EnrichingObserver):
    """Baseline observer enriched with Hyprland and xprintidle data."""

    platform = "linux"

    def observation_steps(self) -> list[OverrideStep[Observation]]:
        steps: list[OverrideStep[Observation]] = [self._with_idle]
        socket_path = hyprland_socket_path()
        if socket_path is None:
            return steps
        client = HyprlandClient(socket_path)

        def with_displays(obs: Observation) -> Observation:
            displays = parse_hypr_monitors(client.query("j/monitors"))
            return obs.model_copy(update={"displays": prefer(displays, obs.displays)})

        def with_windows(obs: Observation) -> Observation:
            windows = parse_hypr_clients(client.query("j/clients"))
            return obs.model_copy(update={"windows": prefer(windows, obs.windows)})

        def with_focus(obs: Observation) -> Observation:
            reply = client.query("j/activewindow")
            focus = parse_hypr_window(reply) if isinstance(reply, dict) else None
            if focus is None:
                return obs
            update: dict[str, Any] = {"focus": focus}
            if focus.pid is not None and is_terminal_app(focus.app):
                cwd = process_cwd(focus.pid)
                if cwd:
                    shell = obs.terminal_ctx.shell if obs.terminal_ctx else None
                    update["terminal_ctx"] = TerminalCtx(cwd=cwd, shell=shell)
            return obs.model_copy(update=update)

        def with_cursor(obs: Observation) -> Observation:
            cursor = parse_hypr_cursor(client.query("j/cursorpos"))
            return obs.model_copy(update={"cursor": prefer(cursor, obs.cursor)})

        return steps + [with_displays, with_windows, with_focus, with_cursor]

    @staticmethod
    def _with_idle(obs: Observation) -> Observation:
        return obs.model_copy(update={"idle_ms": prefer(xprintidle_ms(), obs.idle_ms)})


class LinuxWaker(EnrichingWaker):
    """Baseline waker enriched with distribution and firmware details."""

    platform = "linux"

    def wake_steps(self) -> list[OverrideStep[WakeObservation]]:
        return [
            self._with_machine,
            self._with_virtualization,
            self._with_groups,
            self._with_gateway,
            self._with_resources,
            self._with_uptime,
        ]

    @staticmethod
    def _with_machine(wake: WakeObservation) -> WakeObservation:
        release = parse_os_release(read_text("/etc/os-release") or "")
        cgroup = read_text("/proc/1/cgroup") or ""
        machine = wake.machine
        machine = machine.model_copy(
            update={
                "os": "Linux",
                "os_version": prefer(
                    release.get("VERSION_ID") or release.get("PRETTY_NAME"), machine.os_version
                ),
                "kernel": prefer(command_stdout("uname", ["-r"]), machine.kernel),
                "is_container": bool(machine.is_container) or container_from_cgroup(cgroup),
                "chassis": prefer(
                    chassis_from_code(read_text(DMI_DIR / "chassis_type") or ""), machine.chassis
                ),
            }
        )
        return wake.model_copy(update={"machine": machine})

    @staticmethod
    def _with_virtualization(wake: WakeObservation) -> WakeObservation:
        cpuinfo = read_text("/proc/cpuinfo") or ""
        hypervisor = hypervisor_from_vendor(read_text(DMI_DIR / "sys_vendor") or "")
        flagged = any(
            line.startswith("flags") and " hypervisor" in line for line in cpuinfo.splitlines()
        )
        if hypervisor is None and not cpuinfo:
            return wake
        machine = wake.machine.model_copy(
            update={
                "is_vm": hypervisor is not None or flagged,
                "hypervisor": prefer(hypervisor, wake.machine.hypervisor),
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
    def _with_gateway(wake: WakeObservation) -> WakeObservation:
        output = command_stdout("ip", ["route", "show", "default"])
        gateway = parse_default_gateway(output) if output else None
        identity = wake.network_identity
        identity = identity.model_copy(
            update={"default_gateway": prefer(gateway, identity.default_gateway)}
        )
        return wake.model_copy(update={"network_identity": identity})

    @staticmethod
    def _with_resources(wake: WakeObservation) -> WakeObservation:
        output = command_stdout("lspci")
        gpus = parse_lspci_gpus(output) if output else []
        cpu_model = parse_cpu_model(read_text("/proc/cpuinfo") or "")
        resources = wake.resources.model_copy(
            update={
                "gpus": prefer(gpus, wake.resources.gpus),
                "cpu_model": prefer(cpu_model, wake.resources.cpu_model),
            }
        )
        return wake.model_copy(update={"resources": resources})

    @staticmethod
    def _with_uptime(wake: WakeObservation) -> WakeObservation:
        uptime = parse_proc_uptime(read_text("/proc/uptime") or "")
        if uptime is None or uptime > MAX_PLAUSIBLE_UPTIME_S:
            return wake
        login_ts = wake.ts - uptime
        if wake.datetime.login_ts is not None:
            login_ts = min(login_ts, wake.datetime.login_ts)
        date_info = wake.datetime.model_copy(
            update={"uptime_seconds": uptime, "login_ts": login_ts}
        )
        return wake.model_copy(update={"datetime": date_info})
