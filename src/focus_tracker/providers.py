"""Platform snapshot providers: idle time, power assertions and window lists."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from typing import Callable, Optional, Protocol

import psutil

from .errors import ProviderError
from .models import Snapshot, WindowInfo

logger = logging.getLogger(__name__)

_COMMAND_TIMEOUT = 5.0


class SnapshotProvider(Protocol):
    def get_snapshot(self) -> Snapshot:
        ...


def get_default_provider() -> SnapshotProvider:
    """Return the provider for the running platform."""
    if sys.platform == "win32":
        return WindowsSnapshotProvider()
    if sys.platform == "darwin":
        return MacSnapshotProvider()
    raise ProviderError(f"No snapshot provider for platform {sys.platform!r}")


def _run(args: list[str]) -> str:
    try:
        completed = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=True,
            timeout=_COMMAND_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise ProviderError(f"{args[0]} failed: {exc}") from exc
    return completed.stdout


class _PowerProbe:
    """Runs a power-request command; a failed run counts as "no assertion".

    Only the first of consecutive failures is logged as a warning.
    """

    def __init__(self, args: list[str], parse: Callable[[str], bool]) -> None:
        self._args = args
        self._parse = parse
        self._failing = False

    def __call__(self) -> bool:
        try:
            output = _run(self._args)
        except ProviderError as exc:
            log = logger.debug if self._failing else logger.warning
            log("Failed to check power requests: %s", exc)
            self._failing = True
            return False
        if self._failing:
            logger.info("Power request check succeeded again")
            self._failing = False
        return self._parse(output)


class WindowsSnapshotProvider:
    """Reads idle time and top-level windows through the Win32 API."""

    def __init__(self) -> None:
        import ctypes
        from ctypes import wintypes

        class LASTINPUTINFO(ctypes.Structure):
            _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

        self._ctypes = ctypes
        self._wintypes = wintypes
        self._last_input_info = LASTINPUTINFO
        self._enum_proc = ctypes.WINFUNCTYPE(wintypes.BOOL, wintypes.HWND, wintypes.LPARAM)
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        self._display_requests = _PowerProbe(["powercfg", "/requests"], _windows_display_requested)

    def get_snapshot(self) -> Snapshot:
        return Snapshot(
            idle_seconds=self.idle_seconds(),
            power_assertion_active=self.display_required(),
            windows=self.windows(),
        )

    def idle_seconds(self) -> float:
        ctypes = self._ctypes
        last_input = self._last_input_info()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise ProviderError(f"GetLastInputInfo failed: {ctypes.WinError()}")
        # dwTime is a 32-bit tick count.
        elapsed = (self._kernel32.GetTickCount() - last_input.dwTime) & 0xFFFFFFFF
        return elapsed / 1000.0

    def display_required(self) -> bool:
        """Whether any process holds a DISPLAY power request."""
        return self._display_requests()

    def windows(self) -> list[WindowInfo]:
        user32 = self._user32
        foreground = user32.GetForegroundWindow()
        handles: list[int] = []

        def collect(hwnd, _lparam):
            if user32.IsWindowVisible(hwnd) and user32.GetWindowTextLengthW(hwnd) > 0:
                handles.append(hwnd)
            return True

        if not user32.EnumWindows(self._enum_proc(collect), 0):
            raise ProviderError(f"EnumWindows failed: {self._ctypes.WinError()}")

        result: list[WindowInfo] = []
        for hwnd in handles:
            result.append(
                WindowInfo(
                    app_name=self._process_name(hwnd) or "",
                    window_title=self._window_title(hwnd),
                    is_focused=bool(foreground) and hwnd == foreground,
                )
            )
        return result

    def _window_title(self, hwnd: int) -> str:
        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = self._ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        return buffer.value.strip()

    def _process_name(self, hwnd: int) -> Optional[str]:
        pid = self._wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, self._ctypes.byref(pid))
        if not pid.value:
            return None
        try:
            return psutil.Process(pid.value).name()
        except (psutil.Error, ProcessLookupError):
            return None


def _windows_display_requested(output: str) -> bool:
    """Parse ``powercfg /requests`` output for an entry under ``DISPLAY:``."""
    section: Optional[str] = None
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        if re.fullmatch(r"[A-Z]+:", line):
            section = line[:-1]
            continue
        if section == "DISPLAY" and line != "None.":
            return True
    return False


_HID_IDLE_PATTERN = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')
_DISPLAY_ASSERTION_PATTERN = re.compile(r"^\s*PreventUserIdleDisplaySleep\s+(\d+)", re.MULTILINE)

def _mac_display_sleep_blocked(output: str) -> bool:
    match = _DISPLAY_ASSERTION_PATTERN.search(output)
    return bool(match and int(match.group(1)) > 0)


_FRONT_WINDOW_SCRIPT = """
tell application "System Events"
    set frontApp to first application process whose frontmost is true
    set appName to name of frontApp
    set windowTitle to ""
    try
        set windowTitle to name of front window of frontApp
    end try
end tell
return appName & linefeed & windowTitle
"""


class MacSnapshotProvider:
    """Reads idle time, assertions and the frontmost window on macOS."""

    def __init__(self) -> None:
        self._display_assertions = _PowerProbe(["pmset", "-g", "assertions"], _mac_display_sleep_blocked)

    def get_snapshot(self) -> Snapshot:
        return Snapshot(
            idle_seconds=self.idle_seconds(),
            power_assertion_active=self.display_sleep_blocked(),
            windows=self.windows(),
        )

    def idle_seconds(self) -> float:
        output = _run(["ioreg", "-c", "IOHIDSystem"])
        match = _HID_IDLE_PATTERN.search(output)
        if not match:
            raise ProviderError("HIDIdleTime not found in ioreg output")
        return int(match.group(1)) / 1_000_000_000

    def display_sleep_blocked(self) -> bool:
        return self._display_assertions()

    def windows(self) -> list[WindowInfo]:
        output = _run(["osascript", "-e", _FRONT_WINDOW_SCRIPT])
        app_name, _, window_title = output.rstrip("\n").partition("\n")
        if not app_name:
            return []
        return [WindowInfo(app_name=app_name.strip(), window_title=window_title.strip(), is_focused=True)]
