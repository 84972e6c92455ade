"""Shared test fixtures for the deskscope test suite.

Provides sample observations, sample wake payloads and a scripted
in-memory observer that stands in for the OS-backed ones.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from deskscope.domain.models import (
    Bounds,
    ConnInfo,
    DateTimeInfo,
    DisplayInfo,
    FilesystemInfo,
    FSEvent,
    FSEventKind,
    HomeTreeEntry,
    ListeningPort,
    MachineInfo,
    Observation,
    Point,
    RecentActivity,
    RecentFileInfo,
    RunningProcessInfo,
    SessionInfo,
    TerminalCtx,
    UserInfo,
    WakeObservation,
    WindowInfo,
)
from deskscope.observer.base import Observer


# ---------------------------------------------------------------------------
# Observation Fixtures
# ---------------------------------------------------------------------------


def make_observation(seq: int = 0, **overrides) -> Observation:
    """Build a populated Observation whose contents vary with ``seq``."""
    editor = WindowInfo(
        id="0x1",
        title=f"notes-{seq}.md - Editor",
        app="code",
        pid=4100,
        bounds=Bounds(x=0, y=0, w=1280, h=800),
        workspace=1,
        is_minimized=False,
        is_fullscreen=False,
    )
    terminal = WindowInfo(id="0x2", title="zsh", app="kitty", pid=4200, workspace=1)
    values = dict(
        ts=1_700_000_000.0 + seq,
        monotonic_ms=seq * 1000,
        idle_ms=seq * 10,
        focus=editor,
        windows=[editor, terminal],
        cursor=Point(x=100 + seq, y=200),
        displays=[DisplayInfo(id=0, bounds=Bounds(x=0, y=0, w=2560, h=1440), is_primary=True)],
        terminal_ctx=TerminalCtx(cwd="/home/u/project", shell="/bin/zsh"),
        net_connections=[
            ConnInfo(local_port=51000, remote_addr="140.82.112.3", remote_port=443, pid=4100, app="code")
        ],
        fs_events=[],
    )
    values.update(overrides)
    return Observation(**values)


@pytest.fixture
def sample_observation() -> Observation:
    """A populated first-poll Observation."""
    return make_observation(0)


@pytest.fixture
def observation_factory() -> Callable[..., Observation]:
    return make_observation


# ---------------------------------------------------------------------------
# Wake Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_wake() -> WakeObservation:
    """A verbose wake observation with more data than the compact profile keeps."""
    return WakeObservation(
        ts=1_700_000_000.0,
        machine=MachineInfo(hostname="devbox", os="Linux", os_version="24.04", arch="x86_64"),
        user=UserInfo(
            username="u",
            home_dir="/home/u",
            shell="/bin/zsh",
            uid=1000,
            groups=["u", "wheel", "docker", "video"],
        ),
        datetime=DateTimeInfo(ts=1_700_000_000.0, iso="2023-11-14T22:13:20+00:00", timezone="UTC"),
        filesystem=FilesystemInfo(
            home_tree=[HomeTreeEntry(path="~/src", children=["a", "b"])],
            recent_files=[
                RecentFileInfo(path=f"/home/u/file{i}.txt", modified_ago_s=i * 60) for i in range(8)
            ],
        ),
        listening_ports=[
            ListeningPort(port=8080, addr="0.0.0.0", pid=10, app="python"),
            ListeningPort(port=8080, addr="::", pid=10, app="python"),
            ListeningPort(port=22, addr="0.0.0.0", pid=1, app="sshd"),
        ]
        + [ListeningPort(port=9000 + i, addr="127.0.0.1") for i in range(12)],
        recent_activity=RecentActivity(
            shell_history=[
                "ls",
                "git status",
                "git status",
                "cd src",
                "pytest -q",
                "vim main.py",
                "pwd",
                "make build",
                "docker ps",
                "clear",
                "git push",
            ],
            running_since_boot=[
                RunningProcessInfo(pid=i, app=f"proc{i}", started_ago_s=10_000 - i) for i in range(1, 16)
            ],
        ),
        other_sessions=[SessionInfo(username="u", tty=f"pts/{i}", from_="local") for i in range(7)],
    )


# ---------------------------------------------------------------------------
# Scripted Observer
# ---------------------------------------------------------------------------


class ScriptedObserver(Observer):
    """An Observer that replays prepared observations.

    Each item of ``script`` is either an Observation to return or an
    exception to raise. After the script runs out the last observation
    is repeated.
    """

    def __init__(self, script: list[Observation | Exception], delay: float = 0.0) -> None:
        super().__init__()
        self.script = list(script)
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.open_count = 0
        self.close_count = 0
        self._last: Observation | None = None

    async def open(self) -> None:
        self.open_count += 1
        self._is_open = True

    async def close(self) -> None:
        self.close_count += 1
        self._is_open = False

    async def snapshot(self) -> Observation:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if self.script else self._last
            if isinstance(item, Exception):
                raise item
            if item is None:
                raise RuntimeError("script exhausted")
            self._last = item
            return item
        finally:
            self.active -= 1


@pytest.fixture
def scripted_observer() -> Callable[..., ScriptedObserver]:
    """Factory for ScriptedObserver instances."""
    return ScriptedObserver


@pytest.fixture
def fs_event() -> FSEvent:
    return FSEvent(path="/home/u/a.txt", kind=FSEventKind.CREATE, ts=1_700_000_000.5)
