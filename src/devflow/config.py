"""Configuration models and helpers for the tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable

from .normalization import app_key


def sensor_timeout_for(poll_seconds: float) -> float:
    """A sensor call may use at most part of one polling interval."""
    return min(max(poll_seconds * 0.6, 0.5), 10.0)


@dataclass(frozen=True, slots=True)
class TrackerSettings:
    """Runtime configuration for the tracking state machine."""

    poll_interval: timedelta = timedelta(seconds=5)
    idle_threshold: timedelta = timedelta(seconds=120)
    min_activity: timedelta = timedelta(seconds=1)
    short_activity: timedelta = timedelta(seconds=30)
    sensor_timeout: timedelta = timedelta(seconds=3)
    excluded_apps: frozenset[str] = frozenset()
    own_app_names: frozenset[str] = field(default_factory=lambda: frozenset({"devflow"}))

    @classmethod
    def from_intervals(
        cls,
        poll_seconds: float,
        idle_seconds: float,
        sensor_timeout_seconds: float | None = None,
        excluded_apps: Iterable[str] = (),
    ) -> "TrackerSettings":
        timeout = (
            sensor_timeout_seconds
            if sensor_timeout_seconds is not None
            else sensor_timeout_for(poll_seconds)
        )
        return cls(
            poll_interval=timedelta(seconds=poll_seconds),
            idle_threshold=timedelta(seconds=idle_seconds),
            sensor_timeout=timedelta(seconds=timeout),
            excluded_apps=frozenset(app_key(name) for name in excluded_apps if name),
        )

    def is_excluded(self, app_name: str) -> bool:
        return app_key(app_name) in self.excluded_apps

    def is_own_app(self, app_name: str) -> bool:
        return app_key(app_name) in self.own_app_names
