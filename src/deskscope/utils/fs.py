"""Bounded home-directory traversal.

Both helpers cap how much of the tree they visit so that wake latency
does not grow with the size of the home directory.
"""

from __future__ import annotations

import logging
import os
import time
from collections import deque
from pathlib import Path

from deskscope.domain.models import HomeTreeEntry, RecentFileInfo

logger = logging.getLogger(__name__)

HOME_TREE_MAX_DIRS = 20
HOME_TREE_MAX_CHILDREN = 20

RECENT_FILES_LIMIT = 10
RECENT_FILES_MAX_DEPTH = 5
RECENT_FILES_MAX_DIRS = 2000
RECENT_FILES_MAX_FILES = 5000


def tilde_path(home: Path, path: Path) -> str:
    """Render ``path`` relative to ``home`` as ``~/...`` when possible."""
    try:
        suffix = path.relative_to(home)
    except ValueError:
        return str(path)
    return "~" if str(suffix) == "." else f"~/{suffix.as_posix()}"


def build_home_tree(home: Path) -> list[HomeTreeEntry]:
    """Summarize the two top levels of the home directory.

    Lists up to 20 directories directly under ``home`` in name order.
    Each lists its children when it has at most 20, otherwise only the
    number of entries.
    """
    try:
        with os.scandir(home) as it:
            top = sorted(
                (entry for entry in it if entry.is_dir(follow_symlinks=False)),
                key=lambda entry: entry.name,
            )
    except OSError as e:
        logger.debug("Cannot list home directory %s: %s", home, e)
        return []

    entries: list[HomeTreeEntry] = []
    for entry in top[:HOME_TREE_MAX_DIRS]:
        try:
            with os.scandir(entry.path) as it:
                names = sorted(child.name for child in it)
        except OSError:
            continue
        if len(names) <= HOME_TREE_MAX_CHILDREN:
            tree_entry = HomeTreeEntry(path=tilde_path(home, Path(entry.path)), children=names)
        else:
            tree_entry = HomeTreeEntry(
                path=tilde_path(home, Path(entry.path)), entry_count=len(names)
            )
        entries.append(tree_entry)
    return entries


def recent_files(
    root: Path,
    limit: int = RECENT_FILES_LIMIT,
    max_depth: int = RECENT_FILES_MAX_DEPTH,
    max_dirs: int = RECENT_FILES_MAX_DIRS,
    max_files: int = RECENT_FILES_MAX_FILES,
    now: float | None = None,
) -> list[RecentFileInfo]:
    """Find the most recently modified files under ``root``.

    Traversal is breadth-first, skips hidden directories and symlinks,
    and stops after ``max_dirs`` directories or ``max_files`` files.
    Results are ordered by modification time, newest first, with ties
    broken by path.
    """
    now = time.time() if now is None else now
    found: list[tuple[float, str]] = []
    pending: deque[tuple[str, int]] = deque([(str(root), 0)])
    dirs_visited = 0
    files_visited = 0

    while pending and dirs_visited < max_dirs and files_visited < max_files:
        directory, depth = pending.popleft()
        dirs_visited += 1
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda entry: entry.name)
        except OSError:
            continue

        for entry in children:
            try:
                if entry.is_symlink():
                    continue
                if entry.is_dir():
                    if depth + 1 < max_depth and not entry.name.startswith("."):
                        pending.append((entry.path, depth + 1))
                    continue
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue

            files_visited += 1
            found.append((mtime, entry.path))
            if files_visited >= max_files:
                break

    found.sort(key=lambda item: (-item[0], item[1]))
    return [
        RecentFileInfo(path=path, modified_ago_s=max(0, int(now - mtime)))
        for mtime, path in found[:limit]
    ]
