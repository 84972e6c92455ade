"""Tests for bounded command and file reads."""

from __future__ import annotations

import sys
from pathlib import Path

from deskscope.utils.commands import command_stdout, read_text


class TestCommandStdout:
    def test_returns_trimmed_output(self) -> None:
        assert command_stdout(sys.executable, ["-c", "print('  hello  ')"]) == "hello"

    def test_missing_binary(self) -> None:
        assert command_stdout("deskscope-no-such-binary") is None

    def test_nonzero_exit(self) -> None:
        assert command_stdout(sys.executable, ["-c", "import sys; print('x'); sys.exit(3)"]) is None

    def test_empty_output(self) -> None:
        assert command_stdout(sys.executable, ["-c", "pass"]) is None

    def test_timeout(self) -> None:
        assert command_stdout(sys.executable, ["-c", "import time; time.sleep(5)"], timeout=0.2) is None


class TestReadText:
    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("content")
        assert read_text(path) == "content"

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_text(tmp_path / "missing") is None
