"""Portable baseline observer and waker.

Implements every probe with facilities available on any OS: psutil for
process, socket, disk and memory tables, watchdog for filesystem
events, and the standard library for identity and time. Platform
backends start from these results and enrich them.
"""

from __future__ import annotations

import asyncio
import getpass
import ipaddress
import logging
import os
import platform
import shutil
import socket
import sys
import time
from datetime import datetime
from pathlib import Path

import httpx
import psutil

from deskscope.config.settings import ObserverConfig, WakeConfig
from deskscope.domain.models import (
    DateTimeInfo,
    FilesystemInfo,
    FSEvent,
    InstalledApp,
    MachineInfo,
    MountInfo,
    NetworkIdentity,
    Observation,
    RecentActivity,
    ResourceInfo,
    RunningProcessInfo,
    SessionInfo,
    TerminalCtx,
    UserInfo,
    WakeObservation,
)
from deskscope.observer.base import Observer, ObserverError, Waker, run_probe
from deskscope.observer.fswatch import FSEventCursor
from deskscope.utils.commands import command_stdout, read_text
from deskscope.utils.fs import build_home_tree, recent_files
from deskscope.utils.net import collect_active_connections, collect_listening_ports

logger = logging.getLogger(__name__)

MAX_PLAUSIBLE_UPTIME_S = 5 * 365 * 24 * 60 * 60
BOOT_GRACE_S = 120
SHELL_HISTORY_LIMIT = 20
RUNNING_SINCE_BOOT_LIMIT = 20
VPN_INTERFACE_PREFIXES = ("tun", "wg", "utun", "ppp", "tap")

# (display name, binary / bundle id, kind)
APP_CATALOG: tuple[tuple[str, str, str], ...] = (
    ("Visual Studio Code", "code", "ide"),
    ("Firefox", "firefox", "browser"),
    ("Google Chrome", "google-chrome", "browser"),
    ("Alacritty", "alacritty", "terminal"),
    ("WezTerm", "wezterm", "terminal"),
    ("kitty", "kitty", "terminal"),
    ("Docker", "docker", "infra"),
    ("Python", "python3", "runtime"),
    ("Node", "node", "runtime"),
    ("Git", "git", "other"),
)


def current_ts() -> float:
    return time.time()


def bytes_to_gb(value: int | float) -> float:
    return round(value / 1024 / 1024 / 1024, 2)


# ---------------------------------------------------------------------------
# Live probes
# ---------------------------------------------------------------------------


def current_terminal_context() -> TerminalCtx | None:
    """The working directory and login shell of this process's terminal."""
    try:
        cwd = os.getcwd()
    except OSError:
        return None
    return TerminalCtx(cwd=cwd, shell=os.environ.get("SHELL") or None)


# ---------------------------------------------------------------------------
# Wake probes
# ---------------------------------------------------------------------------


def detect_container() -> bool:
    return Path("/.dockerenv").exists() or Path("/run/.containerenv").exists()


def machine_info() -> MachineInfo:
    os_version = platform.mac_ver()[0] or platform.win32_ver()[1] or None
    return MachineInfo(
        hostname=platform.node() or None,
        os=platform.system() or None,
        os_version=os_version,
        kernel=platform.release() or None,
        arch=platform.machine() or None,
        is_container=detect_container(),
    )


def user_info(home: Path) -> UserInfo:
    full_name = None
    uid = None
    if sys.platform != "win32":
        import pwd

        uid = os.geteuid()
        try:
            gecos = pwd.getpwuid(uid).pw_gecos
        except KeyError:
            gecos = ""
        full_name = gecos.split(",")[0].strip() or None
    return UserInfo(
        username=getpass.getuser(),
        full_name=full_name,
        home_dir=str(home),
        shell=os.environ.get("SHELL") or os.environ.get("COMSPEC") or None,
        uid=uid,
    )


def system_uptime_seconds(now_ts: float, boot_ts: float | None = None) -> int | None:
    """Seconds since boot, or None if the boot time is implausible.

    Rejects boot times in the future and uptimes longer than five years,
    which some hosts report after clock adjustments.
    """
    boot = psutil.boot_time() if boot_ts is None else boot_ts
    if boot <= 0 or boot > now_ts:
        return None
    uptime = now_ts - boot
    if uptime > MAX_PLAUSIBLE_UPTIME_S:
        return None
    return int(uptime)


def datetime_info(ts: float) -> DateTimeInfo:
    now = datetime.fromtimestamp(ts).astimezone()
    offset = now.utcoffset()
    uptime = run_probe("uptime", system_uptime_seconds, None, ts)
    return DateTimeInfo(
        ts=ts,
        iso=now.isoformat(),
        timezone=now.tzname(),
        utc_offset_seconds=int(offset.total_seconds()) if offset is not None else None,
        uptime_seconds=uptime,
        login_ts=ts - uptime if uptime is not None else None,
    )


def mounts() -> list[MountInfo]:
    result = []
    for partition in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except (OSError, psutil.Error):
            result.append(MountInfo(path=partition.mountpoint, fs_type=partition.fstype or None))
            continue
        result.append(
            MountInfo(
                path=partition.mountpoint,
                fs_type=partition.fstype or None,
                total_gb=bytes_to_gb(usage.total),
                free_gb=bytes_to_gb(usage.free),
            )
        )
    return result


def filesystem_info(home: Path) -> FilesystemInfo:
    return FilesystemInfo(
        home_tree=run_probe("home_tree", build_home_tree, [], home),
        recent_files=run_probe("recent_files", recent_files, [], home),
        mounts=run_probe("mounts", mounts, []),
    )


def app_bundle_exists(name: str) -> bool:
    return Path("/Applications").joinpath(f"{name}.app").exists()


def installed_apps() -> list[InstalledApp]:
    apps = []
    for name, app_id, kind in APP_CATALOG:
        if shutil.which(app_id) is None and not app_bundle_exists(name):
            continue
        version = None
        if app_id == "python3":
            version = command_stdout("python3", ["--version"])
        apps.append(InstalledApp(name=name, id=app_id, kind=kind, version=version))
    return apps


def local_ips() -> list[str]:
    ips = set()
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                ip = ipaddress.ip_address(addr.address.split("%")[0])
            except ValueError:
                continue
            if not ip.is_loopback:
                ips.add(str(ip))
    return sorted(ips)


def detect_vpn_interface() -> tuple[bool, str | None]:
    for name, stats in sorted(psutil.net_if_stats().items()):
        if stats.isup and name.startswith(VPN_INTERFACE_PREFIXES):
            return True, name
    return False, None


def dns_servers(resolv_conf: str = "/etc/resolv.conf") -> list[str]:
    text = read_text(resolv_conf) or ""
    servers = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "nameserver":
            servers.append(parts[1])
    return servers


def network_identity() -> NetworkIdentity:
    vpn_active, vpn_interface = run_probe("vpn", detect_vpn_interface, (None, None))
    return NetworkIdentity(
        local_ips=run_probe("local_ips", local_ips, []),
        vpn_active=vpn_active,
        vpn_interface=vpn_interface,
        dns_servers=run_probe("dns_servers", dns_servers, []),
        hostname_fqdn=platform.node() or None,
    )


def resource_info() -> ResourceInfo:
    memory = psutil.virtual_memory()
    return ResourceInfo(
        cpu_cores=psutil.cpu_count(logical=True),
        cpu_model=platform.processor() or None,
        ram_total_gb=bytes_to_gb(memory.total),
        ram_free_gb=bytes_to_gb(memory.available),
    )


def parse_history_line(line: str) -> str:
    """Strip the zsh extended-history prefix (``: <ts>:<elapsed>;``)."""
    line = line.strip()
    if line.startswith(": ") and ";" in line:
        return line.split(";", 1)[1].strip()
    return line


def shell_history(home: Path, limit: int = SHELL_HISTORY_LIMIT) -> list[str]:
    for name in (".zsh_history", ".bash_history"):
        content = read_text(home / name)
        if content is None:
            continue
        lines = [parse_history_line(line) for line in content.splitlines()]
        lines = [line for line in lines if line]
        return lines[-limit:]
    return []


def running_since_boot(now_ts: float, limit: int = RUNNING_SINCE_BOOT_LIMIT) -> list[RunningProcessInfo]:
    """Processes started within two minutes of boot, longest-running first."""
    boot = psutil.boot_time()
    if boot <= 0:
        return []
    processes = []
    for proc in psutil.process_iter(["pid", "name", "create_time"]):
        created = proc.info.get("create_time")
        if created is None or created > boot + BOOT_GRACE_S:
            continue
        processes.append(
            RunningProcessInfo(
                pid=proc.info["pid"],
                app=proc.info.get("name") or "",
                started_ago_s=max(0, int(now_ts - created)),
            )
        )
    processes.sort(key=lambda p: (-p.started_ago_s, p.pid))
    return processes[:limit]


def recent_activity(home: Path, now_ts: float) -> RecentActivity:
    return RecentActivity(
        shell_history=run_probe("shell_history", shell_history, [], home),
        running_since_boot=run_probe("running_since_boot", running_since_boot, [], now_ts),
    )


def other_sessions() -> list[SessionInfo]:
    return [
        SessionInfo(
            username=user.name,
            tty=user.terminal or None,
            from_=user.host or "local",
            login_ts=user.started,
        )
        for user in psutil.users()
    ]


async def _get_text(url: str, timeout: float) -> str:
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text


async def fetch_public_ip(url: str, timeout: float) -> str | None:
    """Ask an external echo service for this machine's public IP.

    ``timeout`` bounds the whole request, not each read. Returns None
    when the service is unreachable, slow, misconfigured, or answers
    with something that is not an IP address.
    """
    try:
        text = await asyncio.wait_for(_get_text(url, timeout), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug("Public IP lookup exceeded %.1fs", timeout)
        return None
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        logger.debug("Public IP lookup failed: %s", e)
        return None
    try:
        return str(ipaddress.ip_address(text.strip()))
    except ValueError:
        logger.debug("Public IP lookup returned a non-address body")
        return None


# ---------------------------------------------------------------------------
# Baseline implementations
# ---------------------------------------------------------------------------


class BaselineObserver(Observer):
    """Portable observer: terminal context, connections and fs events.

    Window, display, cursor and idle data are left unknown; platform
    backends fill them in.
    """

    def __init__(self, config: ObserverConfig | None = None) -> None:
        super().__init__()
        self._config = config or ObserverConfig()
        self._started = time.monotonic()
        self._cursor: FSEventCursor | None = None
        self._seen_first_snapshot = False

    @property
    def config(self) -> ObserverConfig:
        return self._config

    @property
    def cursor(self) -> FSEventCursor | None:
        """The filesystem-event cursor, or None if no watch is active."""
        return self._cursor

    async def open(self) -> None:
        """Start the filesystem watch.

        An explicitly configured ``watch_path`` must be watchable. The
        default home-directory watch is best-effort.

        Raises:
            ObserverError: If the configured watch path cannot be watched.
        """
        if self._is_open:
            return
        explicit = self._config.watch_path is not None
        target = (self._config.watch_path or Path.home()).expanduser()
        cursor = FSEventCursor(target)
        try:
            await asyncio.to_thread(cursor.start)
        except OSError as e:
            if explicit:
                raise ObserverError(f"Cannot watch {target}: {e}", backend="baseline") from e
            logger.warning("Filesystem events disabled, cannot watch %s: %s", target, e)
        else:
            self._cursor = cursor
        self._is_open = True

    async def close(self) -> None:
        if self._cursor is not None:
            await asyncio.to_thread(self._cursor.stop)
            self._cursor = None
        self._is_open = False

    async def snapshot(self) -> Observation:
        if not self._is_open:
            raise RuntimeError("Observer is not open. Call open() first.")
        return await asyncio.to_thread(self._snapshot_sync)

    def monotonic_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def _collect_fs_events(self) -> list[FSEvent]:
        cursor = self._cursor
        events = cursor.drain() if cursor is not None else []
        if cursor is not None and not cursor.is_running:
            self._drop_stopped_watch(cursor)
        if not self._seen_first_snapshot:
            # Nothing to diff against yet; the first poll only sets the baseline.
            self._seen_first_snapshot = True
            return []
        return events

    def _drop_stopped_watch(self, cursor: FSEventCursor) -> None:
        """Handle a watch whose thread has died, e.g. because its directory was removed.

        Raises:
            ObserverError: If the stopped watch was explicitly configured.
        """
        cursor.stop()
        self._cursor = None
        if self._config.watch_path is not None:
            raise ObserverError(f"Filesystem watch on {cursor.path} stopped", backend="baseline")
        logger.warning("Filesystem watch on %s stopped; fs_events disabled", cursor.path)

    def _snapshot_sync(self) -> Observation:
        ts = current_ts()
        return Observation(
            ts=ts,
            monotonic_ms=self.monotonic_ms(),
            terminal_ctx=run_probe("terminal_ctx", current_terminal_context, None),
            net_connections=run_probe(
                "net_connections", collect_active_connections, [], self._config.all_connections
            ),
            fs_events=self._collect_fs_events(),
        )


class BaselineWaker(Waker):
    """Portable waker built from psutil, platform and the home directory."""

    def __init__(self, config: WakeConfig | None = None) -> None:
        self._config = config or WakeConfig()

    @property
    def config(self) -> WakeConfig:
        return self._config

    async def wake(self) -> WakeObservation:
        ts = current_ts()
        if self._config.no_public_ip:
            return await asyncio.to_thread(self._collect_local, ts)

        wake, public_ip = await asyncio.gather(
            asyncio.to_thread(self._collect_local, ts),
            fetch_public_ip(self._config.public_ip_url, self._config.public_ip_timeout),
        )
        if public_ip is None:
            return wake
        identity = wake.network_identity.model_copy(update={"public_ip": public_ip})
        return wake.model_copy(update={"network_identity": identity})

    def _collect_local(self, ts: float) -> WakeObservation:
        home = Path.home()
        sessions = run_probe("other_sessions", other_sessions, [])
        date_info = datetime_info(ts)
        login_times = [s.login_ts for s in sessions if s.login_ts is not None]
        if login_times:
            earliest = min(login_times)
            if date_info.login_ts is None or earliest < date_info.login_ts:
                date_info = date_info.model_copy(update={"login_ts": earliest})

        return WakeObservation(
            ts=ts,
            machine=run_probe("machine", machine_info, MachineInfo()),
            user=run_probe("user", user_info, UserInfo(home_dir=str(home)), home),
            datetime=date_info,
            filesystem=filesystem_info(home),
            installed_apps=run_probe("installed_apps", installed_apps, []),
            network_identity=run_probe("network_identity", network_identity, NetworkIdentity()),
            listening_ports=run_probe("listening_ports", collect_listening_ports, []),
            resources=run_probe("resources", resource_info, ResourceInfo()),
            recent_activity=recent_activity(home, ts),
            other_sessions=sessions,
        )
