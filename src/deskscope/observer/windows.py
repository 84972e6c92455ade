"""Windows enrichment backend.

Reads the window list, foreground window, cursor, idle time and the
primary display through user32 via ctypes. The DLL is loaded on first
use so this module imports on every platform.
"""

from __future__ import annotations

import ctypes
import logging

import psutil

from deskscope.domain.models import (
    Bounds,
    DisplayInfo,
    Observation,
    Point,
    WakeObservation,
    WindowInfo,
)
from deskscope.observer.base import EnrichingObserver, EnrichingWaker, OverrideStep, prefer

logger = logging.getLogger(__name__)

SM_CXSCREEN = 0
SM_CYSCREEN = 1
MAX_WINDOWS = 50


class RECT(ctypes.Structure):
    _fields_ = [
        ("left", ctypes.c_long),
        ("top", ctypes.c_long),
        ("right", ctypes.c_long),
        ("bottom", ctypes.c_long),
    ]


class POINT(ctypes.Structure):
    _fields_ = [("x", ctypes.c_long), ("y", ctypes.c_long)]


class LASTINPUTINFO(ctypes.Structure):
    _fields_ = [("cbSize", ctypes.c_uint), ("dwTime", ctypes.c_uint)]


def _user32():
    return ctypes.WinDLL("user32", use_last_error=True)


def _kernel32():
    return ctypes.WinDLL("kernel32", use_last_error=True)


def bounds_from_rect(left: int, top: int, right: int, bottom: int) -> Bounds | None:
    if right <= left or bottom <= top:
        return None
    return Bounds(x=left, y=top, w=right - left, h=bottom - top)


def process_name(pid: int) -> str:
    try:
        return psutil.Process(pid).name()
    except psutil.Error:
        return ""


def window_info(hwnd: int) -> WindowInfo | None:
    user32 = _user32()
    length = user32.GetWindowTextLengthW(hwnd)
    title = ""
    if length > 0:
        buf = ctypes.create_unicode_buffer(length + 1)
        user32.GetWindowTextW(hwnd, buf, length + 1)
        title = buf.value or ""

    rect = RECT()
    bounds = None
    if user32.GetWindowRect(hwnd, ctypes.byref(rect)):
        bounds = bounds_from_rect(rect.left, rect.top, rect.right, rect.bottom)

    pid = ctypes.c_ulong()
    user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
    app = process_name(pid.value) if pid.value else ""
    if not title and not app:
        return None
    return WindowInfo(
        id=hex(hwnd),
        title=title,
        app=app,
        pid=pid.value or None,
        bounds=bounds,
        is_minimized=bool(user32.IsIconic(hwnd)),
    )


def visible_windows(limit: int = MAX_WINDOWS) -> list[WindowInfo]:
    """Visible top-level windows; EnumWindows walks them in z-order, top first."""
    user32 = _user32()
    windows: list[WindowInfo] = []
    enum_proc = ctypes.WINFUNCTYPE(ctypes.c_bool, ctypes.c_void_p, ctypes.c_void_p)

    def callback(hwnd, _lparam):
        if not user32.IsWindowVisible(hwnd):
            return True
        info = window_info(hwnd)
        if info is not None:
            windows.append(info)
        return len(windows) < limit

    user32.EnumWindows(enum_proc(callback), 0)
    return windows


def foreground_window() -> WindowInfo | None:
    hwnd = _user32().GetForegroundWindow()
    return window_info(hwnd) if hwnd else None


def cursor_position() -> Point | None:
    point = POINT()
    if not _user32().GetCursorPos(ctypes.byref(point)):
        return None
    return Point(x=point.x, y=point.y)


def idle_milliseconds() -> int | None:
    info = LASTINPUTINFO()
    info.cbSize = ctypes.sizeof(LASTINPUTINFO)
    if not _user32().GetLastInputInfo(ctypes.byref(info)):
        return None
    # Both counters wrap after ~49.7 days.
    return (_kernel32().GetTickCount() - info.dwTime) & 0xFFFFFFFF


def primary_display() -> DisplayInfo | None:
    user32 = _user32()
    w = user32.GetSystemMetrics(SM_CXSCREEN)
    h = user32.GetSystemMetrics(SM_CYSCREEN)
    if w <= 0 or h <= 0:
        return None
    return DisplayInfo(id=0, bounds=Bounds(x=0, y=0, w=w, h=h), is_primary=True)


def mark_fullscreen(window: WindowInfo, display: DisplayInfo | None) -> WindowInfo:
    if display is None or window.bounds is None:
        return window
    b, d = window.bounds, display.bounds
    covers = b.x <= d.x and b.y <= d.y and b.x + b.w >= d.x + d.w and b.y + b.h >= d.y + d.h
    return window.model_copy(update={"is_fullscreen": covers})


class WindowsObserver(EnrichingObserver):
    """Baseline observer enriched with user32 window and input state."""

    platform = "windows"

    def observation_steps(self) -> list[OverrideStep[Observation]]:
        return [self._with_displays, self._with_windows, self._with_focus, self._with_input]

    @staticmethod
    def _with_displays(obs: Observation) -> Observation:
        display = primary_display()
        return obs.model_copy(
            update={"displays": prefer([display] if display else [], obs.displays)}
        )

    @staticmethod
    def _with_windows(obs: Observation) -> Observation:
        display = obs.displays[0] if obs.displays else None
        windows = [mark_fullscreen(w, display) for w in visible_windows()]
        return obs.model_copy(update={"windows": prefer(windows, obs.windows)})

    @staticmethod
    def _with_focus(obs: Observation) -> Observation:
        focus = foreground_window()
        if focus is None:
            return obs
        display = obs.displays[0] if obs.displays else None
        return obs.model_copy(update={"focus": mark_fullscreen(focus, display)})

    @staticmethod
    def _with_input(obs: Observation) -> Observation:
        return obs.model_copy(
            update={
                "cursor": prefer(cursor_position(), obs.cursor),
                "idle_ms": prefer(idle_milliseconds(), obs.idle_ms),
            }
        )


class WindowsWaker(EnrichingWaker):
    """The portable waker already covers Windows; only the OS name is normalized."""

    platform = "windows"

    def wake_steps(self) -> list[OverrideStep[WakeObservation]]:
        return [self._with_os_name]

    @staticmethod
    def _with_os_name(wake: WakeObservation) -> WakeObservation:
        machine = wake.machine.model_copy(update={"os": "Windows"})
        return wake.model_copy(update={"machine": machine})
