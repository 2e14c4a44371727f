from __future__ import annotations

import pytest

from devflow.normalization import app_key, normalize_app_name, normalize_window_title


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("Code.exe", "Code"), ("chrome.EXE", "chrome"), ("  Slack ", "Slack"), (None, "")],
)
def test_normalize_app_name(raw, expected):
    assert normalize_app_name(raw) == expected


def test_app_key_ignores_case_and_suffix():
    assert app_key("Code.exe") == app_key("CODE") == "code"


class TestWindowTitles:
    def test_strips_browser_suffix(self):
        assert normalize_window_title("chrome", "Inbox - Google Chrome") == "Inbox"

    def test_strips_em_dash_suffix(self):
        assert normalize_window_title("Firefox", "MDN — Mozilla Firefox") == "MDN"

    def test_strips_extra_tab_count(self):
        title = "Docs and 3 more pages - Microsoft Edge"

        assert normalize_window_title("msedge.exe", title) == "Docs"

    def test_leaves_other_apps_alone(self):
        assert normalize_window_title("Code", "a.py - proj - Code") == "a.py - proj - Code"

    def test_empty_titles(self):
        assert normalize_window_title("chrome", "") is None
        assert normalize_window_title("chrome", "   ") is None
