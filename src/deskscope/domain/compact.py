"""Compact profile for wake observations.

The compact profile keeps the payload small enough to hand to an agent
on every cold start. It only truncates or drops optional data; field
names and types are unchanged, and compacting twice gives the same
result as compacting once.
"""

from __future__ import annotations

from deskscope.domain.models import ListeningPort, WakeObservation

MAX_GROUPS = 2
MAX_SHELL_HISTORY = 5
MAX_RECENT_FILES = 5
MAX_RUNNING_SINCE_BOOT = 10
MAX_LISTENING_PORTS = 10
MAX_OTHER_SESSIONS = 5

# Commands that only move around or tidy the terminal.
SHELL_NOISE = frozenset({"ls", "cd", "pwd", "clear", "exit", "history"})


def is_shell_noise(command: str) -> bool:
    """Whether a history entry carries no information about the user's work."""
    words = command.split()
    return not words or (len(words) == 1 and words[0] in SHELL_NOISE) or words[0] == "cd"


def _clean_history(history: list[str]) -> list[str]:
    cleaned: list[str] = []
    for command in history:
        command = command.strip()
        if is_shell_noise(command):
            continue
        if cleaned and cleaned[-1] == command:
            continue
        cleaned.append(command)
    return cleaned[-MAX_SHELL_HISTORY:]


def _compact_ports(ports: list[ListeningPort]) -> list[ListeningPort]:
    seen: set[tuple[str, int]] = set()
    unique: list[ListeningPort] = []
    for port in sorted(ports, key=lambda p: (p.port, p.proto, p.addr)):
        key = (port.proto, port.port)
        if key in seen:
            continue
        seen.add(key)
        unique.append(port)
    return unique[:MAX_LISTENING_PORTS]


def compact_wake(wake: WakeObservation) -> WakeObservation:
    """Return the compact profile of a wake observation.

    Truncates groups, shell history, recent files, boot-time processes,
    listening ports and other sessions, and drops the home-directory
    tree. The input is not modified.
    """
    user = wake.user.model_copy(update={"groups": wake.user.groups[:MAX_GROUPS]})
    filesystem = wake.filesystem.model_copy(
        update={
            "home_tree": None,
            "recent_files": wake.filesystem.recent_files[:MAX_RECENT_FILES],
        }
    )
    recent_activity = wake.recent_activity.model_copy(
        update={
            "shell_history": _clean_history(wake.recent_activity.shell_history),
            "running_since_boot": wake.recent_activity.running_since_boot[
                :MAX_RUNNING_SINCE_BOOT
            ],
        }
    )
    return wake.model_copy(
        update={
            "user": user,
            "filesystem": filesystem,
            "recent_activity": recent_activity,
            "listening_ports": _compact_ports(wake.listening_ports),
            "other_sessions": wake.other_sessions[:MAX_OTHER_SESSIONS],
        }
    )
