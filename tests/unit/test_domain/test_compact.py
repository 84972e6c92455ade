"""Tests for the compact wake profile."""

from __future__ import annotations

import json

import pytest

from deskscope.domain.compact import (
    MAX_LISTENING_PORTS,
    compact_wake,
    is_shell_noise,
)
from deskscope.domain.models import WakeObservation, to_wire


class TestCompactWake:
    """Test compact_wake truncation rules."""

    def test_groups_truncated(self, sample_wake: WakeObservation) -> None:
        assert compact_wake(sample_wake).user.groups == ["u", "wheel"]

    def test_shell_history_cleaned(self, sample_wake: WakeObservation) -> None:
        history = compact_wake(sample_wake).recent_activity.shell_history
        assert history == ["pytest -q", "vim main.py", "make build", "docker ps", "git push"]

    def test_home_tree_dropped_from_wire(self, sample_wake: WakeObservation) -> None:
        compact = compact_wake(sample_wake)
        assert compact.filesystem.home_tree is None
        assert "home_tree" not in to_wire(compact)["filesystem"]

    def test_lists_capped(self, sample_wake: WakeObservation) -> None:
        compact = compact_wake(sample_wake)
        assert len(compact.filesystem.recent_files) == 5
        assert compact.filesystem.recent_files[0].path == "/home/u/file0.txt"
        assert len(compact.recent_activity.running_since_boot) == 10
        assert len(compact.other_sessions) == 5

    def test_listening_ports_deduplicated_and_sorted(self, sample_wake: WakeObservation) -> None:
        ports = compact_wake(sample_wake).listening_ports
        assert len(ports) == MAX_LISTENING_PORTS
        assert [p.port for p in ports[:3]] == [22, 8080, 9000]
        assert len({(p.proto, p.port) for p in ports}) == len(ports)

    def test_idempotent(self, sample_wake: WakeObservation) -> None:
        once = compact_wake(sample_wake)
        assert compact_wake(once) == once

    def test_input_not_modified(self, sample_wake: WakeObservation) -> None:
        before = to_wire(sample_wake)
        compact_wake(sample_wake)
        assert to_wire(sample_wake) == before

    def test_shape_preserved(self, sample_wake: WakeObservation) -> None:
        assert set(to_wire(compact_wake(sample_wake))) == set(to_wire(sample_wake))

    def test_compact_payload_is_smaller(self, sample_wake: WakeObservation) -> None:
        verbose = json.dumps(to_wire(sample_wake))
        compact = json.dumps(to_wire(compact_wake(sample_wake)))
        assert len(compact) < len(verbose)


class TestShellNoise:
    @pytest.mark.parametrize("command", ["", "   ", "ls", "pwd", "clear", "cd", "cd ~/src", "exit"])
    def test_noise(self, command: str) -> None:
        assert is_shell_noise(command)

    @pytest.mark.parametrize("command", ["ls -la /var/log", "git status", "history | grep ssh"])
    def test_meaningful(self, command: str) -> None:
        assert not is_shell_noise(command)
