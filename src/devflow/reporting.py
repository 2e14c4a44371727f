"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

from .db import (
    database_connection,
    fetch_app_usage,
    fetch_category_breakdown,
    fetch_domain_usage,
    fetch_project_time,
)


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime) -> None:
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        with database_connection(self.db_path) as conn:
            categories = fetch_category_breakdown(conn, start, end)
            apps = fetch_app_usage(conn, start, end)
            projects = fetch_project_time(conn, start, end)
            domains = fetch_domain_usage(conn, start, end)
        if not categories:
            print("No activity recorded for the selected day.")
            return

        totals = productivity_totals(categories)
        print(f"Summary for {day.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Tracked time: {format_duration(sum(totals.values()))}")
        for label in ("productive", "neutral", "distraction"):
            print(f"  {label:<12} {format_duration(totals.get(label, 0.0))}")
        print()

        print("By category:")
        for row in categories:
            print(f"  {row['category_name']:<20} {format_duration(row['seconds'])}")

        _print_top("Top applications:", "app_name", apps)
        _print_top("Top projects:", "project_name", projects)
        _print_top("Top domains:", "domain", domains)


def _print_top(heading: str, key: str, rows: list[Any], limit: int = 5) -> None:
    if not rows:
        return
    print()
    print(heading)
    for row in rows[:limit]:
        print(f"  {row[key][:30]:<30} {format_duration(row['seconds'])}")


def productivity_totals(rows: Iterable[Any]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for row in rows:
        label = row["productivity_type"] or "neutral"
        totals[label] = totals.get(label, 0.0) + (row["seconds"] or 0.0)
    return totals


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds or 0))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
