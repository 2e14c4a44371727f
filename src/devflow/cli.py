"""Command-line interface for the activity tracker."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import typer

from .categorizer import ActivityCategorizer
from .config import TrackerSettings
from .db import SqliteRuleStore, SqliteSettingsStore, Storage
from .models import ActivityInput, MatchMode, RuleType
from .paths import get_db_path, get_log_path
from .server_runner import run_dashboard

app = typer.Typer(help="Local-first activity tracker with automatic categorization.")

DB_OPTION_HELP = "Location of the activity SQLite database."
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger(__name__)


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", path_type=Path, help="Also write logs to this file."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def _ensure_file_logging() -> None:
    """Long-running commands always keep a log in the data directory."""
    root = logging.getLogger()
    if any(isinstance(handler, logging.FileHandler) for handler in root.handlers):
        return
    handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


@contextmanager
def _open_storage(db_path: Optional[Path]) -> Iterator[Storage]:
    storage = Storage(db_path or get_db_path())
    try:
        yield storage
    finally:
        storage.close()


@app.command()
def collect(
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
    poll_seconds: Optional[float] = typer.Option(
        None,
        "--interval",
        min=1.0,
        help="Polling interval in seconds. Saved as the new default when given.",
    ),
    idle_seconds: Optional[float] = typer.Option(
        None,
        "--idle-threshold",
        min=1.0,
        help="Seconds without input before the user counts as idle. Saved when given.",
    ),
) -> None:
    """Track the focused window until interrupted."""
    from .tracker import build_tracker

    _ensure_file_logging()
    with _open_storage(db_path) as storage:
        _save_interval_flags(storage, poll_seconds, idle_seconds)
        tracker = build_tracker(storage, TrackerSettings())
        if not tracker.run_forever():
            typer.echo(tracker.status().platform_message, err=True)
            raise typer.Exit(code=1)


@app.command()
def categorize(
    app_name: str = typer.Argument(..., help="Application name, e.g. 'Code'."),
    title: str = typer.Option("", "--title", help="Window title."),
    url: Optional[str] = typer.Option(None, "--url", help="Browser URL."),
    file_path: Optional[str] = typer.Option(None, "--file", help="Open file path."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Show which category an activity would land in, and why."""
    with _open_storage(db_path) as storage:
        categorizer = ActivityCategorizer(SqliteRuleStore(storage))
        result = categorizer.categorize(
            ActivityInput(app_name=app_name, title=title, url=url, file_path=file_path)
        )
        category = categorizer.get_category(result.category_id)

    typer.echo(f"Category:   {category.name}")
    typer.echo(f"Confidence: {result.confidence:.2f}")
    typer.echo(f"Stage:      {result.stage.value}")
    for rule in result.matched_rules:
        typer.echo(
            f"  rule {rule.rule_id}: {rule.type.value} {rule.match_mode.value} '{rule.pattern}'"
            f" -> {categorizer.get_category_name(rule.category_id)}"
        )


@app.command()
def categories(
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """List categories in evaluation order."""
    with _open_storage(db_path) as storage:
        categorizer = ActivityCategorizer(SqliteRuleStore(storage))
        for category in categorizer.categories():
            rule_count = len(categorizer.get_category_rules(category.id))
            passive = " passive" if category.is_passive else ""
            typer.echo(
                f"{category.id:>3}  {category.name:<20} priority={category.priority:<3}"
                f" rules={rule_count:<3} {category.productivity_type.value}{passive}"
            )


@app.command("add-rule")
def add_rule(
    category: str = typer.Argument(..., help="Category name or id."),
    rule_type: RuleType = typer.Argument(..., help="Rule type."),
    pattern: str = typer.Argument(..., help="Pattern; domain_keyword uses 'domain|keyword'."),
    match_mode: MatchMode = typer.Option(MatchMode.CONTAINS, "--mode", help="Match mode."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Attach a new rule to a category."""
    with _open_storage(db_path) as storage:
        categorizer = ActivityCategorizer(SqliteRuleStore(storage))
        category_id = _resolve_category(categorizer, category)
        try:
            rule_id = categorizer.add_rule(category_id, rule_type, pattern, match_mode)
        except ValueError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"Added rule {rule_id} to {category}.")


@app.command("remove-rule")
def remove_rule(
    rule_id: int = typer.Argument(..., help="Id of the rule to delete."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Delete a rule."""
    with _open_storage(db_path) as storage:
        categorizer = ActivityCategorizer(SqliteRuleStore(storage))
        try:
            categorizer.remove_rule(rule_id)
        except ValueError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"Removed rule {rule_id}.")


@app.command()
def exclude(
    app_name: str = typer.Argument(..., help="Application to stop tracking."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Stop tracking an application."""
    with _open_storage(db_path) as storage:
        try:
            SqliteSettingsStore(storage).add_excluded_app(app_name)
        except ValueError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"Excluded {app_name}.")


@app.command()
def include(
    app_name: str = typer.Argument(..., help="Application to track again."),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Track a previously excluded application again."""
    with _open_storage(db_path) as storage:
        removed = SqliteSettingsStore(storage).remove_excluded_app(app_name)
    if not removed:
        typer.echo(f"{app_name} was not excluded.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Tracking {app_name} again.")


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
) -> None:
    """Print a high-level summary for a specific day."""
    from .reporting import SummaryPrinter

    try:
        target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    except ValueError as exc:
        raise typer.BadParameter("Use the YYYY-MM-DD format.", param_hint="--date") from exc
    summary_printer = SummaryPrinter(db_path=db_path or get_db_path())
    summary_printer.print_daily_summary(target)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", path_type=Path, help=DB_OPTION_HELP),
    poll_seconds: Optional[float] = typer.Option(
        None,
        "--interval",
        min=1.0,
        help="Polling interval in seconds. Saved as the new default when given.",
    ),
    idle_seconds: Optional[float] = typer.Option(
        None,
        "--idle-threshold",
        min=1.0,
        help="Seconds without input before the user counts as idle. Saved when given.",
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the API docs in your default browser.",
    ),
) -> None:
    """Start the local control API with the tracker in the background."""
    _ensure_file_logging()
    db_path = db_path or get_db_path()
    with _open_storage(db_path) as storage:
        _save_interval_flags(storage, poll_seconds, idle_seconds)
    run_dashboard(
        host=host,
        port=port,
        db_path=db_path,
        settings=TrackerSettings(),
        open_browser=open_browser,
    )


def _save_interval_flags(
    storage: Storage, poll_seconds: Optional[float], idle_seconds: Optional[float]
) -> None:
    """Explicit interval flags replace the stored settings before tracking starts."""
    if poll_seconds is None and idle_seconds is None:
        return
    SqliteSettingsStore(storage).update_intervals(
        idle_seconds=idle_seconds, poll_seconds=poll_seconds
    )
    logger.info(
        "Saved interval settings from the command line (poll=%s, idle=%s).",
        poll_seconds,
        idle_seconds,
    )


def _resolve_category(categorizer: ActivityCategorizer, value: str) -> int:
    for category in categorizer.categories():
        if str(category.id) == value or category.name.casefold() == value.casefold():
            return category.id
    typer.echo(f"Error: unknown category '{value}'", err=True)
    raise typer.Exit(code=1)
