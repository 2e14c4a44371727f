"""Focused-window sensors for the supported desktop platforms."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import psutil

from .models import WindowSample
from .normalization import normalize_app_name, normalize_window_title

logger = logging.getLogger(__name__)

_PLATFORM_NAMES = {"darwin": "macOS", "win32": "Windows", "linux": "Linux"}


class Sensor(Protocol):
    def is_supported(self) -> bool: ...

    def poll(self) -> Optional[WindowSample]: ...

    def idle_seconds(self) -> float: ...


@dataclass(frozen=True, slots=True)
class PlatformInfo:
    platform: str
    is_supported: bool
    message: str


def is_wayland(environ: Mapping[str, str]) -> bool:
    return bool(environ.get("WAYLAND_DISPLAY")) or environ.get("XDG_SESSION_TYPE") == "wayland"


def platform_info(
    platform: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> PlatformInfo:
    """Describe whether focus tracking can run here.

    Wayland compositors do not expose the focused window to other clients, so
    Linux sessions running under Wayland are reported as unsupported.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ
    name = _PLATFORM_NAMES.get(platform, platform)
    if platform.startswith("linux"):
        if is_wayland(environ):
            return PlatformInfo(
                platform, False, "Wayland detected. Please switch to X11 for window tracking."
            )
        return PlatformInfo(platform, True, f"Window tracking supported on {name}")
    if platform in ("win32", "darwin"):
        return PlatformInfo(platform, True, f"Window tracking supported on {name}")
    return PlatformInfo(platform, False, f"Window tracking not supported on {name}")


def _process_name(pid: Optional[int]) -> Optional[str]:
    if not pid:
        return None
    try:
        return normalize_app_name(psutil.Process(pid).name()) or None
    except (psutil.Error, ProcessLookupError):
        return None


class WindowsSensor:
    """Reads the foreground window through Win32 APIs."""

    def __init__(self) -> None:
        import ctypes
        from ctypes import wintypes

        class LASTINPUTINFO(ctypes.Structure):
            _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

        self._ctypes = ctypes
        self._wintypes = wintypes
        self._lastinputinfo = LASTINPUTINFO
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]

    def is_supported(self) -> bool:
        return True

    def idle_seconds(self) -> float:
        ctypes = self._ctypes
        last_input = self._lastinputinfo()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise ctypes.WinError()
        # dwTime is a 32-bit tick count.
        elapsed = (self._kernel32.GetTickCount64() & 0xFFFFFFFF) - last_input.dwTime
        return max(elapsed, 0) / 1000.0

    def poll(self) -> Optional[WindowSample]:
        ctypes = self._ctypes
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)

        pid = self._wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        app_name = _process_name(pid.value)
        if not app_name:
            return None
        title = normalize_window_title(app_name, buffer.value) or ""
        return WindowSample(app_name=app_name, title=title, pid=pid.value or None)


class X11Sensor:
    """Uses ``xprop`` for the active window and ``xprintidle`` for idle time."""

    requirement = "xprop was not found; install it (x11-utils) to enable window tracking."
    _WINDOW_ID = re.compile(r"window id # (0x[0-9a-fA-F]+)")
    _PID = re.compile(r"_NET_WM_PID\(CARDINAL\) = (\d+)")
    _NAME = re.compile(r'_NET_WM_NAME\(UTF8_STRING\) = "(.*)"')
    _CLASS = re.compile(r'WM_CLASS\(STRING\) = "[^"]*", "([^"]*)"')

    def __init__(self, timeout: float = 2.0) -> None:
        self._timeout = timeout

    def is_supported(self) -> bool:
        return shutil.which("xprop") is not None and not is_wayland(os.environ)

    def idle_seconds(self) -> float:
        if shutil.which("xprintidle") is None:
            return 0.0
        output = self._run("xprintidle")
        return int(output.strip()) / 1000.0 if output.strip().isdigit() else 0.0

    def poll(self) -> Optional[WindowSample]:
        root = self._run("xprop", "-root", "_NET_ACTIVE_WINDOW")
        match = self._WINDOW_ID.search(root)
        if not match or int(match.group(1), 16) == 0:
            return None
        props = self._run("xprop", "-id", match.group(1), "_NET_WM_PID", "_NET_WM_NAME", "WM_CLASS")

        pid_match = self._PID.search(props)
        pid = int(pid_match.group(1)) if pid_match else None
        class_match = self._CLASS.search(props)
        app_name = _process_name(pid) or (class_match.group(1) if class_match else None)
        if not app_name:
            return None
        name_match = self._NAME.search(props)
        title = normalize_window_title(app_name, name_match.group(1) if name_match else "") or ""
        return WindowSample(app_name=app_name, title=title, pid=pid)

    def _run(self, *args: str) -> str:
        completed = subprocess.run(
            args, capture_output=True, text=True, timeout=self._timeout, check=True
        )
        return completed.stdout


class MacSensor:
    """Uses AppleScript for the frontmost window and ``ioreg`` for idle time."""

    requirement = "osascript was not found; window tracking needs it on macOS."
    _SCRIPT = (
        'tell application "System Events"\n'
        "  set frontProc to first application process whose frontmost is true\n"
        "  set appName to name of frontProc\n"
        "  set procId to unix id of frontProc\n"
        '  set winTitle to ""\n'
        "  try\n"
        "    set winTitle to name of front window of frontProc\n"
        "  end try\n"
        "end tell\n"
        'return appName & "\\n" & procId & "\\n" & winTitle'
    )
    _URL_SCRIPTS = {
        "google chrome": 'tell application "Google Chrome" to return URL of active tab of front window',
        "brave browser": 'tell application "Brave Browser" to return URL of active tab of front window',
        "safari": 'tell application "Safari" to return URL of front document',
        "arc": 'tell application "Arc" to return URL of active tab of front window',
    }
    _IDLE = re.compile(r'"HIDIdleTime" = (\d+)')

    def __init__(self, timeout: float = 2.0) -> None:
        self._timeout = timeout

    def is_supported(self) -> bool:
        return shutil.which("osascript") is not None

    def idle_seconds(self) -> float:
        output = self._run("ioreg", "-c", "IOHIDSystem")
        match = self._IDLE.search(output)
        return int(match.group(1)) / 1e9 if match else 0.0

    def poll(self) -> Optional[WindowSample]:
        lines = self._run("osascript", "-e", self._SCRIPT).rstrip("\n").split("\n", 2)
        if not lines or not lines[0]:
            return None
        app_name = lines[0]
        pid = int(lines[1]) if len(lines) > 1 and lines[1].isdigit() else None
        title = lines[2] if len(lines) > 2 else ""
        url: Optional[str] = None
        script = self._URL_SCRIPTS.get(app_name.lower())
        if script:
            try:
                url = self._run("osascript", "-e", script).strip() or None
            except (subprocess.SubprocessError, OSError):
                logger.debug("Could not read the active tab URL from %s.", app_name)
        return WindowSample(
            app_name=app_name,
            title=normalize_window_title(app_name, title) or "",
            url=url,
            pid=pid,
        )

    def _run(self, *args: str) -> str:
        completed = subprocess.run(
            args, capture_output=True, text=True, timeout=self._timeout, check=True
        )
        return completed.stdout


class GuardedSensor:
    """Wraps a platform sensor so failures become "no observation"."""

    def __init__(self, inner: Optional[Sensor], info: PlatformInfo) -> None:
        self._inner = inner
        self.info = info

    def is_supported(self) -> bool:
        return self.info.is_supported and self._inner is not None and self._inner.is_supported()

    @property
    def message(self) -> str:
        """Why tracking is or is not available, including missing helper tools."""
        if self.info.is_supported and self._inner is not None and not self._inner.is_supported():
            return getattr(self._inner, "requirement", "Window tracking is unavailable.")
        return self.info.message

    def poll(self) -> Optional[WindowSample]:
        if self._inner is None:
            return None
        try:
            return self._inner.poll()
        except Exception:
            logger.warning("Failed to read the focused window.", exc_info=True)
            return None

    def idle_seconds(self) -> float:
        if self._inner is None:
            return 0.0
        try:
            return self._inner.idle_seconds()
        except Exception:
            logger.warning("Failed to query idle time; assuming active.", exc_info=True)
            return 0.0


def create_sensor() -> GuardedSensor:
    """Build the sensor for the running platform."""
    info = platform_info()
    inner: Optional[Sensor] = None
    if info.is_supported:
        if info.platform == "win32":
            inner = WindowsSensor()
        elif info.platform == "darwin":
            inner = MacSensor()
        else:
            inner = X11Sensor()
    return GuardedSensor(inner, info)
