"""Tests for connection and listening-socket tables."""

from __future__ import annotations

from collections import namedtuple
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from deskscope.utils.net import (
    collect_active_connections,
    collect_listening_ports,
    connections_from_lsof,
    is_loopback_addr,
    listening_from_lsof,
    parse_host_port,
    parse_lsof_connection,
    parse_lsof_listen,
)

Addr = namedtuple("Addr", ["ip", "port"])


def _sconn(laddr, raddr, status, pid=None):
    return SimpleNamespace(laddr=Addr(*laddr), raddr=Addr(*raddr) if raddr else (), status=status, pid=pid)


SOCKET_TABLE = [
    _sconn(("192.168.1.5", 50000), ("140.82.112.3", 443), "ESTABLISHED"),
    _sconn(("192.168.1.5", 50001), ("140.82.112.3", 443), "ESTABLISHED"),
    _sconn(("127.0.0.1", 50002), ("127.0.0.1", 5432), "ESTABLISHED"),
    _sconn(("192.168.1.5", 50003), ("151.101.1.69", 443), "TIME_WAIT"),
    _sconn(("0.0.0.0", 8000), None, "LISTEN"),
    _sconn(("::", 8000), None, "LISTEN"),
    _sconn(("127.0.0.1", 5432), None, "LISTEN"),
]

LSOF_CONNECTIONS = """COMMAND   PID USER   FD   TYPE DEVICE SIZE/OFF NODE NAME
firefox  1234 u   45u  IPv4 0xabc      0t0  TCP 192.168.1.5:50000->140.82.112.3:443 (ESTABLISHED)
postgres  555 u   10u  IPv6 0xdef      0t0  TCP [::1]:50010->[::1]:5432 (ESTABLISHED)
python3    99 u    3u  IPv4 0x111      0t0  TCP *:8000 (LISTEN)
"""


class TestAddressHelpers:
    @pytest.mark.parametrize("addr", ["127.0.0.1", "::1", "localhost", "*", "::ffff:127.0.0.1"])
    def test_loopback(self, addr: str) -> None:
        assert is_loopback_addr(addr)

    @pytest.mark.parametrize("addr", ["10.0.0.1", "140.82.112.3", "2001:db8::1"])
    def test_not_loopback(self, addr: str) -> None:
        assert not is_loopback_addr(addr)

    def test_parse_host_port(self) -> None:
        assert parse_host_port("10.0.0.1:443") == ("10.0.0.1", 443)
        assert parse_host_port("[2001:db8::1]:8080") == ("2001:db8::1", 8080)
        assert parse_host_port("*:22") == ("*", 22)

    @pytest.mark.parametrize("endpoint", ["", "noport", ":80", "host:http", "host:70000"])
    def test_parse_host_port_rejects(self, endpoint: str) -> None:
        assert parse_host_port(endpoint) is None


class TestPsutilTables:
    """Test the portable psutil-backed collectors."""

    def test_default_keeps_established_remote_only(self) -> None:
        with patch("psutil.net_connections", return_value=SOCKET_TABLE):
            conns = collect_active_connections()
        assert [c.local_port for c in conns] == [50000, 50001]
        assert all(c.state == "ESTABLISHED" for c in conns)

    def test_all_connections_is_superset(self) -> None:
        with patch("psutil.net_connections", return_value=SOCKET_TABLE):
            default = collect_active_connections()
            everything = collect_active_connections(all_connections=True)
        assert len(everything) >= len(default)
        assert set(default) <= set(everything)
        assert {c.local_port for c in everything} == {50000, 50001, 50002, 50003}

    def test_duplicates_removed(self) -> None:
        table = SOCKET_TABLE[:1] * 3
        with patch("psutil.net_connections", return_value=table):
            assert len(collect_active_connections()) == 1

    def test_listening_ports(self) -> None:
        with patch("psutil.net_connections", return_value=SOCKET_TABLE):
            ports = collect_listening_ports()
        assert [(p.port, p.addr) for p in ports] == [(5432, "127.0.0.1"), (8000, "0.0.0.0"), (8000, "::")]


class TestLsof:
    def test_parse_connection(self) -> None:
        conn = parse_lsof_connection(LSOF_CONNECTIONS.splitlines()[1])
        assert conn is not None
        assert conn.app == "firefox"
        assert conn.pid == 1234
        assert conn.local_port == 50000
        assert conn.remote_addr == "140.82.112.3"
        assert conn.remote_port == 443
        assert conn.state == "ESTABLISHED"

    def test_parse_connection_ignores_listen_rows(self) -> None:
        assert parse_lsof_connection(LSOF_CONNECTIONS.splitlines()[3]) is None

    def test_parse_listen(self) -> None:
        port = parse_lsof_listen(LSOF_CONNECTIONS.splitlines()[3])
        assert port is not None
        assert (port.port, port.addr, port.app, port.pid) == (8000, "*", "python3", 99)

    @pytest.mark.parametrize("line", ["", "garbage", "a b c d e f g h i"])
    def test_malformed_rows(self, line: str) -> None:
        assert parse_lsof_connection(line) is None
        assert parse_lsof_listen(line) is None

    def test_connections_from_lsof_filters_loopback(self) -> None:
        with patch("deskscope.utils.net.command_stdout", return_value=LSOF_CONNECTIONS):
            default = connections_from_lsof()
            everything = connections_from_lsof(all_connections=True)
        assert [c.app for c in default] == ["firefox"]
        assert {c.app for c in everything} == {"firefox", "postgres"}

    def test_lsof_unavailable(self) -> None:
        with patch("deskscope.utils.net.command_stdout", return_value=None):
            assert connections_from_lsof() == []
            assert listening_from_lsof() == []
