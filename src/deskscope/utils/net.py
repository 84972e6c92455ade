"""Network connection and listening-socket tables.

The portable path reads the kernel tables through psutil. The ``lsof``
parsers serve platforms where psutil needs elevated privileges to list
other processes' sockets.
"""

from __future__ import annotations

import logging

import psutil

from deskscope.domain.models import ConnInfo, ListeningPort
from deskscope.utils.commands import command_stdout

logger = logging.getLogger(__name__)

ESTABLISHED = "ESTABLISHED"
LISTEN = "LISTEN"


def is_loopback_addr(addr: str) -> bool:
    """Whether an address refers to this machine only."""
    addr = addr.lower()
    return (
        addr in {"localhost", "::1", "*"}
        or addr.startswith("127.")
        or addr.startswith("::ffff:127.")
        or addr.startswith("fe80::1%")
    )


def parse_host_port(endpoint: str) -> tuple[str, int] | None:
    """Split ``host:port`` (IPv6 hosts may be bracketed) into its parts."""
    host, sep, port = endpoint.strip().rpartition(":")
    if not sep or not host:
        return None
    try:
        port_number = int(port)
    except ValueError:
        return None
    if not 0 <= port_number <= 65535:
        return None
    return host.strip("[]"), port_number


def _keep_connection(conn: ConnInfo, all_connections: bool) -> bool:
    if all_connections:
        return True
    if conn.state != ESTABLISHED:
        return False
    return not (is_loopback_addr(conn.remote_addr) or conn.remote_addr == "")


def _connection_key(conn: ConnInfo) -> tuple:
    return (
        conn.app or "",
        conn.pid or 0,
        conn.local_port,
        conn.remote_addr,
        conn.remote_port,
        conn.state,
    )


def _dedupe_connections(conns: list[ConnInfo]) -> list[ConnInfo]:
    unique = {_connection_key(conn): conn for conn in conns}
    return [unique[key] for key in sorted(unique)]


def _dedupe_ports(ports: list[ListeningPort]) -> list[ListeningPort]:
    unique = {(port.port, port.addr, port.app or "", port.pid or 0): port for port in ports}
    return [unique[key] for key in sorted(unique)]


class _ProcessNames:
    """Caches pid -> process name lookups for one table read."""

    def __init__(self) -> None:
        self._names: dict[int, str | None] = {}

    def get(self, pid: int | None) -> str | None:
        if pid is None:
            return None
        if pid not in self._names:
            try:
                self._names[pid] = psutil.Process(pid).name()
            except psutil.Error:
                self._names[pid] = None
        return self._names[pid]


def collect_active_connections(all_connections: bool = False) -> list[ConnInfo]:
    """List TCP connections that have a remote peer.

    By default only ESTABLISHED connections to non-loopback peers are
    returned. With ``all_connections`` every state and every peer is
    kept, so the result is always a superset of the default one.

    Raises:
        psutil.AccessDenied: If the platform requires privileges to
            read the socket table.
    """
    names = _ProcessNames()
    conns: list[ConnInfo] = []
    for sconn in psutil.net_connections(kind="tcp"):
        if not sconn.laddr or not sconn.raddr:
            continue
        conn = ConnInfo(
            proto="tcp",
            local_port=sconn.laddr.port,
            remote_addr=sconn.raddr.ip,
            remote_port=sconn.raddr.port,
            pid=sconn.pid,
            app=names.get(sconn.pid),
            state=sconn.status,
        )
        if _keep_connection(conn, all_connections):
            conns.append(conn)
    return _dedupe_connections(conns)


def collect_listening_ports() -> list[ListeningPort]:
    """List TCP sockets in the LISTEN state, sorted by port."""
    names = _ProcessNames()
    ports = [
        ListeningPort(
            port=sconn.laddr.port,
            proto="tcp",
            pid=sconn.pid,
            app=names.get(sconn.pid),
            addr=sconn.laddr.ip,
        )
        for sconn in psutil.net_connections(kind="tcp")
        if sconn.status == LISTEN and sconn.laddr
    ]
    return _dedupe_ports(ports)


# ---------------------------------------------------------------------------
# lsof
# ---------------------------------------------------------------------------


def _lsof_state(cols: list[str]) -> str | None:
    last = cols[-1]
    if last.startswith("(") and last.endswith(")"):
        return last[1:-1]
    return None


def _lsof_pid(cols: list[str]) -> int | None:
    try:
        return int(cols[1])
    except ValueError:
        return None


def parse_lsof_connection(line: str) -> ConnInfo | None:
    """Parse one ``lsof -nP -iTCP`` row describing a connected socket."""
    cols = line.split()
    if len(cols) < 9:
        return None
    endpoint = next((col for col in cols if "->" in col), None)
    if endpoint is None:
        return None
    local, _, remote = endpoint.partition("->")
    local_parts = parse_host_port(local)
    remote_parts = parse_host_port(remote)
    if local_parts is None or remote_parts is None:
        return None
    return ConnInfo(
        proto="tcp",
        local_port=local_parts[1],
        remote_addr=remote_parts[0],
        remote_port=remote_parts[1],
        pid=_lsof_pid(cols),
        app=cols[0].replace("\\x20", " "),
        state=_lsof_state(cols) or "UNKNOWN",
    )


def parse_lsof_listen(line: str) -> ListeningPort | None:
    """Parse one ``lsof -nP -iTCP -sTCP:LISTEN`` row."""
    cols = line.split()
    if len(cols) < 9 or _lsof_state(cols) != LISTEN:
        return None
    parts = parse_host_port(cols[8])
    if parts is None:
        return None
    return ListeningPort(
        port=parts[1],
        proto="tcp",
        pid=_lsof_pid(cols),
        app=cols[0].replace("\\x20", " "),
        addr=parts[0],
    )


def connections_from_lsof(all_connections: bool = False) -> list[ConnInfo]:
    """Read connections through ``lsof``, filtered like the psutil path."""
    args = ["-nP", "-iTCP"] if all_connections else ["-nP", "-iTCP", "-sTCP:ESTABLISHED"]
    output = command_stdout("lsof", args)
    if output is None:
        return []
    conns = [
        conn
        for conn in map(parse_lsof_connection, output.splitlines()[1:])
        if conn is not None and _keep_connection(conn, all_connections)
    ]
    return _dedupe_connections(conns)


def listening_from_lsof() -> list[ListeningPort]:
    output = command_stdout("lsof", ["-nP", "-iTCP", "-sTCP:LISTEN"])
    if output is None:
        return []
    ports = [port for port in map(parse_lsof_listen, output.splitlines()[1:]) if port]
    return _dedupe_ports(ports)
