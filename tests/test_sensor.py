from __future__ import annotations

from devflow import sensor as sensor_module
from devflow.sensor import GuardedSensor, X11Sensor, platform_info
from devflow.tracker import TimeTracker


class TestPlatformInfo:
    def test_wayland_is_unsupported(self):
        info = platform_info("linux", {"XDG_SESSION_TYPE": "wayland"})

        assert not info.is_supported
        assert "Wayland" in info.message

    def test_x11_is_supported(self):
        assert platform_info("linux", {}).is_supported

    def test_unknown_platform(self):
        assert not platform_info("sunos5", {}).is_supported


class TestGuardedSensor:
    def test_missing_xprop_is_reported(self, monkeypatch):
        monkeypatch.setattr(sensor_module.shutil, "which", lambda name: None)
        guarded = GuardedSensor(X11Sensor(), platform_info("linux", {}))

        assert not guarded.is_supported()
        assert "xprop" in guarded.message

    def test_supported_sensor_uses_platform_message(self, monkeypatch):
        monkeypatch.setattr(sensor_module.shutil, "which", lambda name: "/usr/bin/" + name)
        monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
        monkeypatch.setenv("XDG_SESSION_TYPE", "x11")
        guarded = GuardedSensor(X11Sensor(), platform_info("linux", {}))

        assert guarded.is_supported()
        assert guarded.message == "Window tracking supported on Linux"

    def test_tracker_status_reports_missing_tool(self, monkeypatch, categorizer, activity_store):
        monkeypatch.setattr(sensor_module.shutil, "which", lambda name: None)
        tracker = TimeTracker(
            GuardedSensor(X11Sensor(), platform_info("linux", {})), categorizer, activity_store
        )

        assert tracker.start(schedule=False) is False
        assert "xprop" in tracker.status().platform_message

    def test_failures_become_no_observation(self):
        class Broken:
            def is_supported(self):
                return True

            def poll(self):
                raise OSError("display gone")

            def idle_seconds(self):
                raise OSError("display gone")

        guarded = GuardedSensor(Broken(), platform_info("linux", {}))

        assert guarded.poll() is None
        assert guarded.idle_seconds() == 0.0
