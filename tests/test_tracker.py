from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from conftest import category_id, fetch_activities, fetch_sessions
from devflow.config import TrackerSettings
from devflow.db import SqliteActivityStore, SqliteSettingsStore
from devflow.tracker import TimeTracker, split_at_local_midnight


class TestSplitAtMidnight:
    def test_same_day_span_is_untouched(self):
        start = datetime(2024, 3, 14, 9, 0)
        end = datetime(2024, 3, 14, 9, 30)

        assert split_at_local_midnight(start, end) == [(start, end)]

    def test_span_across_midnight_is_cut(self):
        start = datetime(2024, 3, 14, 23, 58)
        end = datetime(2024, 3, 15, 0, 3)

        segments = split_at_local_midnight(start, end)

        assert segments == [
            (start, datetime(2024, 3, 15, 0, 0)),
            (datetime(2024, 3, 15, 0, 0), end),
        ]

    def test_multi_day_span(self):
        segments = split_at_local_midnight(datetime(2024, 3, 14, 22), datetime(2024, 3, 16, 1))

        assert len(segments) == 3
        assert all(seg_end - seg_start <= timedelta(days=1) for seg_start, seg_end in segments)


class TestLifecycle:
    def test_unsupported_platform_refuses_to_start(self, tracker, sensor):
        sensor.supported = False

        assert tracker.start(schedule=False) is False
        assert not tracker.is_running
        assert sensor.polls == 0

    def test_start_runs_an_immediate_tick(self, tracker, sensor):
        sensor.show("Code", "main.py - proj - Code")

        assert tracker.start(schedule=False)

        assert tracker.is_running
        assert tracker.current_activity is not None
        assert tracker.current_activity.app_name == "Code"
        assert tracker.current_activity.context.language == "Python"

    def test_stop_flushes_in_progress_activity(self, tracker, sensor, clock, storage):
        sensor.show("Code", "main.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(90)

        tracker.stop()

        rows = fetch_activities(storage)
        assert len(rows) == 1
        assert rows[0]["duration"] == pytest.approx(90)
        assert not tracker.is_running
        assert tracker.current_activity is None

    def test_scheduled_loop_stops_cleanly(self, tracker, sensor):
        sensor.show("Code", "a - b - Code")

        assert tracker.start()

        tracker.stop()
        assert not tracker.is_running

    def test_pause_and_resume(self, tracker, sensor, clock, storage):
        sensor.show("Code", "main.py - proj - Code")
        seen = []
        tracker.add_listener(seen.append)
        tracker.start(schedule=False)
        clock.advance(60)

        tracker.pause()

        assert tracker.is_paused
        assert tracker.current_activity is None
        assert seen[-1] is None
        assert len(fetch_activities(storage)) == 1

        clock.advance(60)
        tracker.tick()
        assert tracker.current_activity is None

        tracker.resume()
        tracker.tick()
        assert not tracker.is_paused
        assert tracker.current_activity is not None
        assert tracker.current_activity.start_time == clock.now

    def test_flush_persists_and_keeps_tracking(self, tracker, sensor, clock, storage):
        sensor.show("Code", "main.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(45)

        tracker.flush()

        assert len(fetch_activities(storage)) == 1
        assert tracker.current_activity is not None
        assert tracker.current_activity.start_time == clock.now

    def test_status_reports_state(self, tracker, sensor):
        sensor.show("Slack", "general")
        tracker.start(schedule=False)

        status = tracker.status().to_dict()

        assert status["is_running"] is True
        assert status["current_activity"]["category_name"] == "communication"


class TestEndToEnd:
    def test_scenario_editor_then_browser(self, tracker, sensor, clock, storage, categorizer):
        development = category_id(categorizer, "development")
        start = clock.now

        sensor.show("Code", "main.ts — proj — Code")
        tracker.start(schedule=False)
        clock.advance(5)
        tracker.tick()
        clock.advance(35)
        sensor.show("Chrome", "GitHub", "https://github.com/a/b")
        tracker.tick()

        rows = fetch_activities(storage)
        assert len(rows) == 1
        assert rows[0]["app_name"] == "Code"
        assert rows[0]["category_id"] == development
        assert rows[0]["duration"] == pytest.approx(40)
        assert rows[0]["language"] == "TypeScript"
        assert rows[0]["project_name"] == "proj"
        assert tracker.current_activity.category_id == development
        assert tracker.current_activity.start_time == start + timedelta(seconds=40)

        clock.advance(60)
        tracker.stop()

        sessions = fetch_sessions(storage)
        assert [s["app_name"] for s in sessions] == ["Code", "Chrome"]
        assert {s["category_id"] for s in sessions} == {development}
        assert sessions[0]["total_duration"] == pytest.approx(40)
        assert fetch_activities(storage)[1]["domain"] == "github.com"

    def test_unmatched_app_lands_in_uncategorized_after_rename_attempt(
        self, tracker, sensor, clock, storage, categorizer
    ):
        sentinel = categorizer.uncategorized_id
        with pytest.raises(ValueError):
            categorizer.update_category(sentinel, name="misc")

        sensor.show("Krita", "sketch.kra")
        tracker.start(schedule=False)
        clock.advance(60)
        tracker.stop()

        rows = fetch_activities(storage)
        assert len(rows) == 1
        assert rows[0]["category_id"] == sentinel


class TestSessions:
    def test_title_change_keeps_session(self, tracker, sensor, clock, storage):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(60)
        sensor.show("Code", "b.py - proj - Code")
        tracker.tick()
        clock.advance(60)
        tracker.stop()

        rows = fetch_activities(storage)
        sessions = fetch_sessions(storage)
        assert len(rows) == 2
        assert rows[0]["session_id"] == rows[1]["session_id"]
        assert len(sessions) == 1
        assert sessions[0]["activity_count"] == 2
        assert sessions[0]["total_duration"] == pytest.approx(120)

    def test_app_change_closes_session(self, tracker, sensor, clock, storage):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(60)
        sensor.show("Chrome", "Docs", "https://docs.python.org/3/")
        tracker.tick()
        clock.advance(60)
        tracker.stop()

        rows = fetch_activities(storage)
        assert len(rows) == 2
        assert rows[0]["session_id"] != rows[1]["session_id"]

    def test_returning_to_an_app_opens_a_new_session(self, tracker, sensor, clock, storage):
        sensor.show("Code", "window")
        tracker.start(schedule=False)
        for app in ("Slack", "Code"):
            clock.advance(60)
            sensor.show(app, "window")
            tracker.tick()
        clock.advance(60)
        tracker.stop()

        assert [s["app_name"] for s in fetch_sessions(storage)] == ["Code", "Slack", "Code"]


class TestPersistPolicy:
    def test_midnight_span_is_split(self, tracker, sensor, clock, storage):
        clock.set(datetime(2024, 3, 14, 23, 58))
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.set(datetime(2024, 3, 15, 0, 3))
        sensor.show("Slack", "general")
        tracker.tick()

        rows = fetch_activities(storage)
        assert len(rows) == 2
        assert [row["duration"] for row in rows] == [pytest.approx(120), pytest.approx(180)]
        assert rows[0]["start_time"].startswith("2024-03-14")
        assert rows[1]["start_time"].startswith("2024-03-15 00:00:00")

    def test_sub_second_activity_is_discarded(self, tracker, sensor, clock, storage):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(0.5)
        sensor.show("Slack", "general")
        tracker.tick()

        assert fetch_activities(storage) == []

    def test_short_activity_is_absorbed_by_predecessor(self, tracker, sensor, clock, storage):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(60)
        sensor.show("Code", "b.py - proj - Code")
        tracker.tick()
        clock.advance(10)
        sensor.show("Code", "c.py - proj - Code")
        tracker.tick()

        rows = fetch_activities(storage)
        assert len(rows) == 1
        assert rows[0]["file_name"] == "a.py"
        assert rows[0]["duration"] == pytest.approx(70)
        session = fetch_sessions(storage)[0]
        assert session["total_duration"] == pytest.approx(70)
        assert session["activity_count"] == 1

    def test_short_activity_without_predecessor_is_inserted(
        self, tracker, sensor, clock, storage
    ):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(10)
        sensor.show("Slack", "general")
        tracker.tick()

        rows = fetch_activities(storage)
        assert len(rows) == 1
        assert rows[0]["duration"] == pytest.approx(10)

    def test_storage_failure_does_not_stop_tracking(self, tracker, sensor, clock, monkeypatch):
        def explode(record):
            raise RuntimeError("disk full")

        monkeypatch.setattr(tracker._store, "insert_activity", explode)
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(60)
        sensor.show("Slack", "general")
        tracker.tick()

        assert tracker.current_activity.app_name == "Slack"


class TestIdle:
    def test_non_passive_category_goes_idle(self, tracker, sensor, clock, storage):
        seen = []
        tracker.add_listener(seen.append)
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(200)
        sensor.idle = 180
        tracker.tick()

        assert tracker.is_idle
        assert tracker.current_activity is None
        assert seen[-1] is None
        assert len(fetch_activities(storage)) == 1

        clock.advance(5)
        tracker.tick()
        assert len(seen) == 2

    def test_passive_category_never_goes_idle(self, tracker, sensor, clock):
        sensor.show("Zoom", "Weekly sync")
        tracker.start(schedule=False)
        clock.advance(600)
        sensor.idle = 600
        tracker.tick()

        assert not tracker.is_idle
        assert tracker.current_activity is not None
        assert tracker.current_activity.category_name == "meetings"

    def test_idle_threshold_is_exclusive(self, tracker, sensor):
        sensor.show("Code", "a.py - proj - Code")
        sensor.idle = tracker.settings.idle_threshold.total_seconds()
        tracker.start(schedule=False)

        assert not tracker.is_idle

    def test_input_after_idle_starts_fresh_activity(self, tracker, sensor, clock):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        sensor.idle = 500
        clock.advance(30)
        tracker.tick()
        sensor.idle = 0
        clock.advance(400)
        tracker.tick()

        assert not tracker.is_idle
        assert tracker.current_activity.start_time == clock.now


class TestUntracked:
    def test_excluded_app_is_not_tracked(self, storage, sensor, clock, categorizer):
        settings = TrackerSettings.from_intervals(5, 120, excluded_apps=["1Password"])
        tracker = TimeTracker(
            sensor, categorizer, SqliteActivityStore(storage), settings, clock=clock, own_pid=1
        )
        seen = []
        tracker.add_listener(seen.append)
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(60)
        sensor.show("1Password", "Vault")
        tracker.tick()

        assert tracker.current_activity is None
        assert not tracker.is_idle
        assert seen[-1] is None
        assert [row["app_name"] for row in fetch_activities(storage)] == ["Code"]
        tracker.stop()

    def test_own_process_is_ignored(self, tracker, sensor):
        sensor.show("DevFlow", "Dashboard")
        tracker.start(schedule=False)

        assert tracker.current_activity is None

    def test_excluded_apps_reload_from_settings_store(self, tracker, sensor, storage, clock):
        sensor.show("Spotify", "Liked songs")
        tracker.start(schedule=False)
        assert tracker.current_activity is not None

        SqliteSettingsStore(storage).add_excluded_app("spotify")
        tracker.reload_excluded_apps()
        clock.advance(40)
        tracker.tick()

        assert tracker.current_activity is None

    def test_settings_reload(self, tracker, storage):
        settings_store = SqliteSettingsStore(storage)
        settings_store.update_intervals(idle_seconds=300, poll_seconds=10)

        tracker.reload_settings()

        assert tracker.settings.idle_threshold == timedelta(seconds=300)
        assert tracker.settings.poll_interval == timedelta(seconds=10)


class TestSensorFailures:
    def test_missing_window_is_skipped(self, tracker, sensor):
        sensor.window = None

        assert tracker.start(schedule=False)
        assert tracker.current_activity is None

    def test_sensor_exception_is_skipped(self, tracker, sensor):
        sensor.show("Code", "a.py - proj - Code")
        sensor.fail = True

        assert tracker.start(schedule=False)
        assert tracker.current_activity is None

    def test_slow_sensor_times_out(self, storage, sensor, clock, categorizer):
        settings = TrackerSettings(sensor_timeout=timedelta(milliseconds=200))
        tracker = TimeTracker(
            sensor, categorizer, SqliteActivityStore(storage), settings, clock=clock, own_pid=1
        )
        sensor.show("Code", "a.py - proj - Code")
        sensor.delay = 1.0

        tracker.start(schedule=False)
        assert tracker.current_activity is None

        sensor.delay = 0.0
        tracker.tick()
        assert tracker.current_activity is not None
        tracker.stop()

    def test_overlapping_tick_is_skipped(self, tracker, sensor):
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        polls = sensor.polls

        with tracker._tick_guard:
            tracker.tick()

        assert sensor.polls == polls


class TestListeners:
    def test_listeners_see_every_change(self, tracker, sensor, clock):
        seen = []
        tracker.add_listener(lambda activity: seen.append(activity and activity.app_name))
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)
        clock.advance(5)
        tracker.tick()
        sensor.show("Slack", "general")
        clock.advance(5)
        tracker.tick()

        assert seen == ["Code", "Slack"]

    def test_failing_listener_does_not_break_tracking(self, tracker, sensor):
        def broken(activity):
            raise RuntimeError("listener bug")

        tracker.add_listener(broken)
        sensor.show("Code", "a.py - proj - Code")
        tracker.start(schedule=False)

        assert tracker.current_activity is not None

