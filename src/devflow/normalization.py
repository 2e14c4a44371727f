"""Utilities to normalize application names and window titles."""

from __future__ import annotations

import re
from typing import Optional

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge": (" - Microsoft Edge", " — Microsoft Edge"),
    "microsoft edge": (" - Microsoft Edge", " — Microsoft Edge"),
    "chrome": (" - Google Chrome", " — Google Chrome"),
    "google chrome": (" - Google Chrome", " — Google Chrome"),
    "firefox": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "brave": (" - Brave",),
    "brave browser": (" - Brave",),
    "opera": (" - Opera",),
    "vivaldi": (" - Vivaldi",),
}

_EXE_SUFFIX = re.compile(r"\.exe$", re.IGNORECASE)


def normalize_app_name(app_name: Optional[str]) -> str:
    """Strip executable suffixes so ``Code.exe`` and ``Code`` compare equal."""
    if not app_name:
        return ""
    return _EXE_SUFFIX.sub("", app_name.strip())


def app_key(app_name: Optional[str]) -> str:
    """Case-insensitive lookup key for an application name."""
    return normalize_app_name(app_name).casefold()


def normalize_window_title(app_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not app_name:
        return normalized or None

    suffixes = _BROWSER_SUFFIXES.get(app_key(app_name))
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break
        normalized = _strip_tab_count(normalized)

    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")
