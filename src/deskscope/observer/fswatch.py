"""Filesystem-event cursor backed by watchdog.

The watch runs in watchdog's background thread and records every change
with a sequence number. The owning observer reads the events recorded
after its cursor and then advances the cursor past them, so each event
is reported exactly once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer as WatchdogObserver

from deskscope.domain.models import FSEvent, FSEventKind

logger = logging.getLogger(__name__)

# watchdog event_type -> reported kind. Open/close notifications are ignored.
_KIND_MAP: dict[str, FSEventKind] = {
    "created": FSEventKind.CREATE,
    "modified": FSEventKind.MODIFY,
    "deleted": FSEventKind.DELETE,
    "moved": FSEventKind.RENAME,
}


def map_watchdog_event(event: FileSystemEvent, ts: float) -> list[FSEvent]:
    """Translate one watchdog event into zero or more FSEvents.

    Directory modifications are dropped: they only echo a change to one
    of the directory's children, which is reported on its own. A move
    yields a Rename for both the old and the new path.
    """
    kind = _KIND_MAP.get(event.event_type)
    if kind is None:
        return []
    if event.is_directory and kind is FSEventKind.MODIFY:
        return []

    paths = [event.src_path]
    if kind is FSEventKind.RENAME and getattr(event, "dest_path", None):
        paths.append(event.dest_path)
    return [FSEvent(path=_as_str(path), kind=kind, ts=ts) for path in paths]


def coalesce_events(events: list[FSEvent]) -> list[FSEvent]:
    """Collapse redundant events within one batch.

    A Modify is dropped when the same path was already created or
    modified earlier in the batch; everything else is kept in order.
    """
    touched: set[str] = set()
    result: list[FSEvent] = []
    for event in events:
        if event.kind is FSEventKind.MODIFY and event.path in touched:
            continue
        if event.kind in (FSEventKind.CREATE, FSEventKind.MODIFY):
            touched.add(event.path)
        else:
            touched.discard(event.path)
        result.append(event)
    return result


def _as_str(path: str | bytes) -> str:
    return path.decode(errors="replace") if isinstance(path, bytes) else path


class _Recorder(FileSystemEventHandler):
    """Pushes translated events into the cursor from watchdog's thread."""

    def __init__(self, cursor: FSEventCursor) -> None:
        super().__init__()
        self._cursor = cursor

    def on_any_event(self, event: FileSystemEvent) -> None:
        for fs_event in map_watchdog_event(event, time.time()):
            self._cursor.record(fs_event)


class FSEventCursor:
    """Records filesystem events under a path and tracks what was reported.

    Owned by exactly one observer. ``read_since()`` never consumes; only
    ``advance()`` moves the cursor.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._events: deque[tuple[int, FSEvent]] = deque()
        self._next_seq = 1
        self._position = 0
        self._watch: WatchdogObserver | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def position(self) -> int:
        """Sequence number of the last event marked as reported."""
        return self._position

    @property
    def is_running(self) -> bool:
        return self._watch is not None and self._watch.is_alive()

    def start(self) -> None:
        """Start watching ``path`` recursively.

        Raises:
            OSError: If the path cannot be watched.
        """
        if self._watch is not None:
            return
        if not self._path.is_dir():
            raise FileNotFoundError(f"Not a directory: {self._path}")
        watch = WatchdogObserver()
        watch.schedule(_Recorder(self), str(self._path), recursive=True)
        watch.start()
        self._watch = watch
        logger.debug("Watching %s for filesystem events", self._path)

    def stop(self) -> None:
        if self._watch is None:
            return
        self._watch.stop()
        self._watch.join(timeout=5.0)
        self._watch = None
        logger.debug("Stopped watching %s", self._path)

    def record(self, event: FSEvent) -> None:
        with self._lock:
            self._events.append((self._next_seq, event))
            self._next_seq += 1

    def read_since(self) -> tuple[list[FSEvent], int]:
        """Return the coalesced events after the cursor and the position they end at."""
        with self._lock:
            pending = [(seq, event) for seq, event in self._events if seq > self._position]
        if not pending:
            return [], self._position
        return coalesce_events([event for _, event in pending]), pending[-1][0]

    def advance(self, position: int) -> None:
        """Mark every event up to ``position`` as reported."""
        with self._lock:
            if position <= self._position:
                return
            self._position = position
            while self._events and self._events[0][0] <= position:
                self._events.popleft()

    def drain(self) -> list[FSEvent]:
        """Read everything since the cursor and advance past it."""
        events, position = self.read_since()
        self.advance(position)
        return events
