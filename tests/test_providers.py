"""Tests for the platform snapshot providers' parsing logic."""

from __future__ import annotations

import logging

import pytest

from focus_tracker import providers
from focus_tracker.errors import ProviderError
from focus_tracker.providers import MacSnapshotProvider, _windows_display_requested, get_default_provider

POWERCFG_IDLE = """DISPLAY:
None.

SYSTEM:
None.

AWAYMODE:
None.
"""

POWERCFG_VIDEO = """DISPLAY:
[PROCESS] \\Device\\HarddiskVolume3\\Program Files\\VideoLAN\\VLC\\vlc.exe
Video Wake Lock

SYSTEM:
None.
"""

PMSET_OUTPUT = """2024-05-03 10:00:00 +0200
Assertion status system-wide:
   BackgroundTask                 0
   PreventUserIdleDisplaySleep    {count}
   PreventUserIdleSystemSleep     1
"""


@pytest.mark.parametrize(
    "output,expected",
    [(POWERCFG_IDLE, False), (POWERCFG_VIDEO, True), ("", False)],
)
def test_windows_display_request_parsing(output, expected):
    assert _windows_display_requested(output) is expected


class TestMacProvider:
    def fake_run(self, outputs):
        def run(args):
            result = outputs[args[0]]
            if isinstance(result, Exception):
                raise result
            return result

        return run

    def test_snapshot(self, monkeypatch):
        monkeypatch.setattr(
            providers,
            "_run",
            self.fake_run(
                {
                    "ioreg": '    |   "HIDIdleTime" = 2500000000\n',
                    "pmset": PMSET_OUTPUT.format(count=1),
                    "osascript": "Safari\nApple - Start Page\n",
                }
            ),
        )
        snapshot = MacSnapshotProvider().get_snapshot()
        assert snapshot.idle_seconds == 2.5
        assert snapshot.power_assertion_active is True
        focused = snapshot.focused_window()
        assert (focused.app_name, focused.window_title) == ("Safari", "Apple - Start Page")

    def test_no_display_assertion(self, monkeypatch):
        monkeypatch.setattr(providers, "_run", self.fake_run({"pmset": PMSET_OUTPUT.format(count=0)}))
        assert MacSnapshotProvider().display_sleep_blocked() is False

    def test_failed_assertion_probe_counts_as_none(self, monkeypatch):
        monkeypatch.setattr(providers, "_run", self.fake_run({"pmset": ProviderError("pmset failed")}))
        assert MacSnapshotProvider().display_sleep_blocked() is False

    def test_repeated_probe_failures_warn_once(self, monkeypatch, caplog):
        outputs = {"pmset": ProviderError("pmset failed")}
        monkeypatch.setattr(providers, "_run", self.fake_run(outputs))
        provider = MacSnapshotProvider()

        with caplog.at_level(logging.DEBUG, logger="focus_tracker.providers"):
            for _ in range(3):
                assert provider.display_sleep_blocked() is False
            outputs["pmset"] = PMSET_OUTPUT.format(count=1)
            assert provider.display_sleep_blocked() is True
            outputs["pmset"] = ProviderError("pmset failed")
            assert provider.display_sleep_blocked() is False

        levels = [r.levelno for r in caplog.records if "power requests" in r.getMessage()]
        assert levels == [logging.WARNING, logging.DEBUG, logging.DEBUG, logging.WARNING]

    def test_missing_idle_time_is_an_error(self, monkeypatch):
        monkeypatch.setattr(providers, "_run", self.fake_run({"ioreg": "nothing here"}))
        with pytest.raises(ProviderError):
            MacSnapshotProvider().idle_seconds()

    def test_window_without_title(self, monkeypatch):
        monkeypatch.setattr(providers, "_run", self.fake_run({"osascript": "Finder\n\n"}))
        (window,) = MacSnapshotProvider().windows()
        assert (window.app_name, window.window_title, window.is_focused) == ("Finder", "", True)


def test_unsupported_platform(monkeypatch):
    monkeypatch.setattr(providers.sys, "platform", "sunos5")
    with pytest.raises(ProviderError):
        get_default_provider()


def test_powercfg_failure_counts_as_no_request(monkeypatch):
    def denied(args):
        raise ProviderError("powercfg failed: access denied")

    monkeypatch.setattr(providers, "_run", denied)
    probe = providers._PowerProbe(["powercfg", "/requests"], _windows_display_requested)
    assert probe() is False
    assert probe() is False


def test_missing_command_is_provider_error():
    with pytest.raises(ProviderError):
        providers._run(["definitely-not-a-real-command-xyz"])
