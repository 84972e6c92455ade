"""Bounded reads from external commands and system files.

Platform probes treat everything read here as untrusted text: any
failure yields ``None`` so the caller can degrade a single field.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 2.0


def command_stdout(
    binary: str,
    args: list[str] | tuple[str, ...] = (),
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> str | None:
    """Run a command and return its trimmed stdout.

    Returns None if the binary is missing, exits non-zero, exceeds the
    timeout, or prints nothing.
    """
    try:
        result = subprocess.run(
            [binary, *args],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError, ValueError) as e:
        logger.debug("Command %s failed: %s", binary, e)
        return None

    if result.returncode != 0:
        logger.debug("Command %s exited with %d", binary, result.returncode)
        return None

    value = result.stdout.strip()
    return value or None


def read_text(path: str | Path) -> str | None:
    """Read a small text file, returning None if it cannot be read."""
    try:
        return Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
