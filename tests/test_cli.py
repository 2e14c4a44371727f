from __future__ import annotations

import re
from datetime import datetime, timedelta

from typer.testing import CliRunner

from devflow import cli
from devflow.cli import app
from devflow.config import TrackerSettings
from devflow.db import SqliteActivityStore, SqliteSettingsStore, Storage
from devflow.models import ActivityRecord

runner = CliRunner()


def _invoke(*args: str):
    return runner.invoke(app, list(args))


class TestCategorize:
    def test_explains_app_match(self, db_path):
        result = _invoke("categorize", "Code", "--title", "main.py - proj - Code", "--db", str(db_path))

        assert result.exit_code == 0, result.output
        assert "development" in result.output
        assert "Stage:      app" in result.output

    def test_unmatched_activity(self, db_path):
        result = _invoke("categorize", "Mystery", "--db", str(db_path))

        assert result.exit_code == 0
        assert "uncategorized" in result.output
        assert "fallback" in result.output


class TestRules:
    def test_categories_lists_rule_counts(self, db_path):
        result = _invoke("categories", "--db", str(db_path))

        assert result.exit_code == 0
        assert "meetings" in result.output
        assert "passive" in result.output

    def test_add_and_remove_rule(self, db_path):
        added = _invoke("add-rule", "design", "app", "Krita", "--mode", "exact", "--db", str(db_path))
        assert added.exit_code == 0, added.output
        rule_id = re.search(r"Added rule (\d+)", added.output).group(1)

        categorized = _invoke("categorize", "Krita", "--db", str(db_path))
        assert "design" in categorized.output

        removed = _invoke("remove-rule", rule_id, "--db", str(db_path))
        assert removed.exit_code == 0
        assert _invoke("remove-rule", rule_id, "--db", str(db_path)).exit_code == 1

    def test_unknown_category(self, db_path):
        result = _invoke("add-rule", "nope", "app", "x", "--db", str(db_path))

        assert result.exit_code == 1

    def test_invalid_compound_rule(self, db_path):
        result = _invoke("add-rule", "research", "domain_keyword", "youtube.com", "--db", str(db_path))

        assert result.exit_code == 1


class TestExclusions:
    def test_exclude_and_include(self, db_path):
        assert _invoke("exclude", "Spotify", "--db", str(db_path)).exit_code == 0

        storage = Storage(db_path)
        assert SqliteSettingsStore(storage).excluded_apps() == ["spotify"]
        storage.close()

        assert _invoke("include", "spotify", "--db", str(db_path)).exit_code == 0
        assert _invoke("include", "spotify", "--db", str(db_path)).exit_code == 1


class TestSummary:
    def test_summary_for_recorded_day(self, db_path):
        storage = Storage(db_path)
        store = SqliteActivityStore(storage)
        start = datetime(2024, 3, 14, 9)
        session_id = store.get_or_create_session("Code", 1, start)
        store.insert_activity(
            ActivityRecord(
                app_name="Code",
                window_title="main.py - proj - Code",
                url=None,
                category_id=1,
                start_time=start,
                end_time=start + timedelta(minutes=90),
                session_id=session_id,
            )
        )
        storage.close()

        result = _invoke("summary", "--date", "2024-03-14", "--db", str(db_path))

        assert result.exit_code == 0
        assert "01:30:00" in result.output
        assert "development" in result.output
        assert "Code" in result.output

    def test_summary_for_empty_day(self, db_path):
        result = _invoke("summary", "--date", "2024-03-14", "--db", str(db_path))

        assert result.exit_code == 0
        assert "No activity recorded" in result.output

    def test_summary_lists_projects(self, db_path):
        storage = Storage(db_path)
        store = SqliteActivityStore(storage)
        start = datetime(2024, 3, 14, 9)
        session_id = store.get_or_create_session("Chrome", 1, start)
        store.insert_activity(
            ActivityRecord(
                app_name="Chrome",
                window_title="psf/requests",
                url="https://github.com/psf/requests",
                category_id=1,
                start_time=start,
                end_time=start + timedelta(minutes=10),
                project_name="psf/requests",
                domain="github.com",
                session_id=session_id,
            )
        )
        storage.close()

        result = _invoke("summary", "--date", "2024-03-14", "--db", str(db_path))

        assert "Top projects:" in result.output
        assert "psf/requests" in result.output
        assert "Top domains:" in result.output
        assert "github.com" in result.output

    def test_invalid_date_is_a_usage_error(self, db_path):
        result = _invoke("summary", "--date", "14/03/2024", "--db", str(db_path))

        assert result.exit_code == 2
        assert not isinstance(result.exception, ValueError)


class TestIntervalFlags:
    def test_explicit_flags_replace_stored_settings(self, db_path, monkeypatch):
        launched = {}
        monkeypatch.setattr(cli, "run_dashboard", lambda **kwargs: launched.update(kwargs))
        monkeypatch.setattr(cli, "_ensure_file_logging", lambda: None)
        storage = Storage(db_path)
        SqliteSettingsStore(storage).update_intervals(idle_seconds=600, poll_seconds=30)
        storage.close()

        result = _invoke("web", "--interval", "2", "--db", str(db_path))

        assert result.exit_code == 0, result.output
        assert launched["db_path"] == db_path
        storage = Storage(db_path)
        settings = SqliteSettingsStore(storage).load_settings(TrackerSettings())
        storage.close()
        assert settings.poll_interval == timedelta(seconds=2)
        assert settings.idle_threshold == timedelta(seconds=600)

    def test_omitted_flags_keep_stored_settings(self, db_path, monkeypatch):
        monkeypatch.setattr(cli, "run_dashboard", lambda **kwargs: None)
        monkeypatch.setattr(cli, "_ensure_file_logging", lambda: None)
        storage = Storage(db_path)
        SqliteSettingsStore(storage).update_intervals(poll_seconds=30)
        storage.close()

        assert _invoke("web", "--db", str(db_path)).exit_code == 0

        storage = Storage(db_path)
        settings = SqliteSettingsStore(storage).load_settings(TrackerSettings())
        storage.close()
        assert settings.poll_interval == timedelta(seconds=30)
