from __future__ import annotations

import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from devflow.categorizer import ActivityCategorizer
from devflow.config import TrackerSettings
from devflow.db import SqliteActivityStore, SqliteRuleStore, SqliteSettingsStore, Storage
from devflow.models import WindowSample
from devflow.tracker import TimeTracker


class FakeSensor:
    """Scripted sensor: tests set ``window`` and ``idle`` between ticks."""

    def __init__(self) -> None:
        self.window: Optional[WindowSample] = None
        self.idle = 0.0
        self.supported = True
        self.delay = 0.0
        self.fail = False
        self.polls = 0

    def show(self, app_name: str, title: str = "", url: Optional[str] = None) -> None:
        self.window = WindowSample(app_name=app_name, title=title, url=url, pid=4242)

    def is_supported(self) -> bool:
        return self.supported

    def poll(self) -> Optional[WindowSample]:
        self.polls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("sensor exploded")
        return self.window

    def idle_seconds(self) -> float:
        return self.idle


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "activity.sqlite3"


@pytest.fixture()
def storage(db_path: Path):
    store = Storage(db_path)
    yield store
    store.close()


@pytest.fixture()
def empty_storage(tmp_path: Path):
    store = Storage(tmp_path / "empty.sqlite3", seed=False)
    yield store
    store.close()


@pytest.fixture()
def categorizer(storage: Storage) -> ActivityCategorizer:
    return ActivityCategorizer(SqliteRuleStore(storage))


@pytest.fixture()
def empty_categorizer(empty_storage: Storage) -> ActivityCategorizer:
    return ActivityCategorizer(SqliteRuleStore(empty_storage))


@pytest.fixture()
def sensor() -> FakeSensor:
    return FakeSensor()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 14, 10, 0, 0))


@pytest.fixture()
def activity_store(storage: Storage) -> SqliteActivityStore:
    return SqliteActivityStore(storage)


@pytest.fixture()
def settings() -> TrackerSettings:
    return TrackerSettings(sensor_timeout=timedelta(seconds=1))


@pytest.fixture()
def tracker(
    sensor: FakeSensor,
    categorizer: ActivityCategorizer,
    activity_store: SqliteActivityStore,
    storage: Storage,
    settings: TrackerSettings,
    clock: FakeClock,
):
    instance = TimeTracker(
        sensor,
        categorizer,
        activity_store,
        settings,
        settings_provider=SqliteSettingsStore(storage),
        clock=clock,
        own_pid=1,
    )
    yield instance
    instance.stop()


def fetch_activities(storage: Storage) -> list[dict]:
    with storage.connection() as conn:
        rows = conn.execute("SELECT * FROM activities ORDER BY start_time, id").fetchall()
    return [dict(row) for row in rows]


def fetch_sessions(storage: Storage) -> list[dict]:
    with storage.connection() as conn:
        rows = conn.execute("SELECT * FROM sessions ORDER BY id").fetchall()
    return [dict(row) for row in rows]


def category_id(categorizer: ActivityCategorizer, name: str) -> int:
    for category in categorizer.categories():
        if category.name == name:
            return category.id
    raise LookupError(name)
