"""SQLite database layer for categories, rules, sessions and activities."""

from __future__ import annotations

import dataclasses
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional, Protocol

from .config import TrackerSettings, sensor_timeout_for
from .defaults import DEFAULT_CATEGORIES, iter_default_rules
from .models import (
    UNCATEGORIZED,
    ActivityRecord,
    Category,
    CategoryRule,
    MatchMode,
    ProductivityType,
    RuleType,
    Session,
)
from .normalization import app_key

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

IDLE_TIMEOUT_KEY = "idle_timeout_seconds"
POLL_INTERVAL_KEY = "poll_interval_seconds"


class RuleStore(Protocol):
    def load_all(self) -> tuple[list[Category], list[CategoryRule]]: ...

    def get_rules(self, category_id: int) -> list[CategoryRule]: ...

    def create_category(
        self,
        name: str,
        color: str,
        *,
        priority: int = 0,
        is_passive: bool = False,
        productivity_type: ProductivityType = ProductivityType.NEUTRAL,
    ) -> int: ...

    def update_category(self, category_id: int, **updates: object) -> None: ...

    def delete_category(self, category_id: int, *, reassign_to: int) -> None: ...

    def add_rule(
        self, category_id: int, rule_type: RuleType, pattern: str, match_mode: MatchMode
    ) -> int: ...

    def remove_rule(self, rule_id: int) -> None: ...


class ActivityStore(Protocol):
    def insert_activity(self, record: ActivityRecord) -> int: ...

    def extend_last_activity(self, end_time: datetime, extra_duration: float) -> bool: ...

    def get_or_create_session(
        self, app_name: str, category_id: int, start_time: datetime
    ) -> int: ...

    def close_current_session(self) -> None: ...


class SettingsProvider(Protocol):
    def load_settings(self, base: TrackerSettings) -> TrackerSettings: ...


def open_database(
    path: Path, *, check_same_thread: bool = True, seed: bool = True
) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    if seed:
        seed_default_categories(conn)
    ensure_uncategorized(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            color TEXT NOT NULL,
            priority INTEGER NOT NULL DEFAULT 0,
            is_passive INTEGER NOT NULL DEFAULT 0,
            productivity_type TEXT NOT NULL DEFAULT 'neutral',
            is_default INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS category_rules (
            id INTEGER PRIMARY KEY,
            category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
            type TEXT NOT NULL,
            pattern TEXT NOT NULL,
            match_mode TEXT NOT NULL DEFAULT 'contains'
        );

        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY,
            app_name TEXT NOT NULL,
            category_id INTEGER REFERENCES categories(id),
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            total_duration REAL NOT NULL DEFAULT 0,
            activity_count INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS activities (
            id INTEGER PRIMARY KEY,
            session_id INTEGER REFERENCES sessions(id),
            app_name TEXT NOT NULL,
            window_title TEXT,
            url TEXT,
            category_id INTEGER REFERENCES categories(id),
            project_name TEXT,
            file_name TEXT,
            file_type TEXT,
            language TEXT,
            domain TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration REAL NOT NULL,
            context_json TEXT
        );

        CREATE TABLE IF NOT EXISTS excluded_apps (
            id INTEGER PRIMARY KEY,
            app_name TEXT NOT NULL UNIQUE
        );

        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_rules_category ON category_rules(category_id);
        CREATE INDEX IF NOT EXISTS idx_activities_start_time ON activities(start_time);
        CREATE INDEX IF NOT EXISTS idx_activities_category ON activities(category_id);
        CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions(start_time);
        """
    )


def seed_default_categories(conn: sqlite3.Connection) -> None:
    """Install the default categories when the table is empty."""
    (count,) = conn.execute("SELECT COUNT(*) FROM categories").fetchone()
    if count:
        return
    with transaction(conn):
        for entry in DEFAULT_CATEGORIES:
            cur = conn.execute(
                """
                INSERT INTO categories (
                    name, color, priority, is_passive, productivity_type, is_default
                ) VALUES (?, ?, ?, ?, ?, 1)
                """,
                (
                    entry["name"],
                    entry["color"],
                    entry["priority"],
                    1 if entry.get("is_passive") else 0,
                    ProductivityType(entry["productivity_type"]).value,
                ),
            )
            conn.executemany(
                "INSERT INTO category_rules (category_id, type, pattern, match_mode) VALUES (?, ?, ?, ?)",
                [
                    (cur.lastrowid, rule_type.value, pattern, mode.value)
                    for rule_type, pattern, mode in iter_default_rules(entry)
                ],
            )
    logger.info("Seeded %d default categories.", len(DEFAULT_CATEGORIES))


def ensure_uncategorized(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        INSERT OR IGNORE INTO categories (name, color, priority, is_default)
        VALUES (?, '#64748B', 0, 1)
        """,
        (UNCATEGORIZED,),
    )


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, DATETIME_FMT)


# Categories and rules


def row_to_category(row: sqlite3.Row) -> Category:
    try:
        productivity = ProductivityType(row["productivity_type"])
    except ValueError:
        productivity = ProductivityType.NEUTRAL
    return Category(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        priority=row["priority"],
        is_passive=bool(row["is_passive"]),
        productivity_type=productivity,
        is_default=bool(row["is_default"]),
    )


def row_to_rule(row: sqlite3.Row) -> Optional[CategoryRule]:
    """Convert a rule row; unknown rule types are dropped."""
    try:
        rule_type = RuleType(row["type"])
    except ValueError:
        logger.warning("Skipping rule %s with unknown type %r.", row["id"], row["type"])
        return None
    try:
        match_mode = MatchMode(row["match_mode"])
    except ValueError:
        match_mode = MatchMode.CONTAINS
    return CategoryRule(
        id=row["id"],
        category_id=row["category_id"],
        type=rule_type,
        pattern=row["pattern"],
        match_mode=match_mode,
    )


def fetch_categories(conn: sqlite3.Connection) -> list[Category]:
    rows = conn.execute(
        """
        SELECT id, name, color, priority, is_passive, productivity_type, is_default
        FROM categories
        ORDER BY priority DESC, id
        """
    )
    return [row_to_category(row) for row in rows]


def fetch_rules(
    conn: sqlite3.Connection, category_id: Optional[int] = None
) -> list[CategoryRule]:
    if category_id is None:
        rows = conn.execute(
            "SELECT id, category_id, type, pattern, match_mode FROM category_rules ORDER BY id"
        )
    else:
        rows = conn.execute(
            """
            SELECT id, category_id, type, pattern, match_mode
            FROM category_rules
            WHERE category_id = ?
            ORDER BY id
            """,
            (category_id,),
        )
    return [rule for rule in (row_to_rule(row) for row in rows) if rule is not None]


def insert_category(
    conn: sqlite3.Connection,
    name: str,
    color: str,
    *,
    priority: int = 0,
    is_passive: bool = False,
    productivity_type: ProductivityType = ProductivityType.NEUTRAL,
) -> int:
    name = name.strip()
    if not name:
        raise ValueError("Category name is required")
    try:
        cur = conn.execute(
            """
            INSERT INTO categories (
                name, color, priority, is_passive, productivity_type, is_default
            ) VALUES (?, ?, ?, ?, ?, 0)
            """,
            (name, color, priority, 1 if is_passive else 0, productivity_type.value),
        )
    except sqlite3.IntegrityError as exc:
        raise ValueError(f"Category {name!r} already exists") from exc
    return int(cur.lastrowid)


def update_category(
    conn: sqlite3.Connection,
    category_id: int,
    *,
    name: Optional[str] = None,
    color: Optional[str] = None,
    priority: Optional[int] = None,
    is_passive: Optional[bool] = None,
    productivity_type: Optional[ProductivityType] = None,
) -> None:
    """Update a single category record."""
    fields: list[str] = []
    params: list[object] = []

    if name is not None:
        current = conn.execute(
            "SELECT name FROM categories WHERE id = ?", (category_id,)
        ).fetchone()
        if current is not None and current["name"] == UNCATEGORIZED and name.strip() != UNCATEGORIZED:
            raise ValueError(f"The {UNCATEGORIZED!r} category cannot be renamed")
        fields.append("name = ?")
        params.append(name.strip())
    if color is not None:
        fields.append("color = ?")
        params.append(color)
    if priority is not None:
        fields.append("priority = ?")
        params.append(priority)
    if is_passive is not None:
        fields.append("is_passive = ?")
        params.append(1 if is_passive else 0)
    if productivity_type is not None:
        fields.append("productivity_type = ?")
        params.append(ProductivityType(productivity_type).value)

    if not fields:
        return

    params.append(category_id)
    try:
        cur = conn.execute(
            f"UPDATE categories SET {', '.join(fields)} WHERE id = ?",
            params,
        )
    except sqlite3.IntegrityError as exc:
        raise ValueError(f"Category {name!r} already exists") from exc
    if cur.rowcount == 0:
        raise ValueError(f"No category found for id={category_id}")


def delete_category(conn: sqlite3.Connection, category_id: int, *, reassign_to: int) -> None:
    """Delete a category, moving its activities and sessions to ``reassign_to``."""
    if category_id == reassign_to:
        raise ValueError("Cannot reassign a category to itself")
    with transaction(conn):
        conn.execute(
            "UPDATE activities SET category_id = ? WHERE category_id = ?",
            (reassign_to, category_id),
        )
        conn.execute(
            "UPDATE sessions SET category_id = ? WHERE category_id = ?",
            (reassign_to, category_id),
        )
        cur = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        if cur.rowcount == 0:
            raise ValueError(f"No category found for id={category_id}")


def insert_rule(
    conn: sqlite3.Connection,
    category_id: int,
    rule_type: RuleType,
    pattern: str,
    match_mode: MatchMode = MatchMode.CONTAINS,
) -> int:
    rule_type = RuleType(rule_type)
    match_mode = MatchMode(match_mode)
    pattern = pattern.strip()
    if not pattern:
        raise ValueError("Rule pattern is required")
    if rule_type is RuleType.DOMAIN_KEYWORD and "|" not in pattern:
        raise ValueError("domain_keyword patterns must look like 'domain|keyword'")
    try:
        cur = conn.execute(
            "INSERT INTO category_rules (category_id, type, pattern, match_mode) VALUES (?, ?, ?, ?)",
            (category_id, rule_type.value, pattern, match_mode.value),
        )
    except sqlite3.IntegrityError as exc:
        raise ValueError(f"No category found for id={category_id}") from exc
    return int(cur.lastrowid)


def delete_rule(conn: sqlite3.Connection, rule_id: int) -> None:
    cur = conn.execute("DELETE FROM category_rules WHERE id = ?", (rule_id,))
    if cur.rowcount == 0:
        raise ValueError(f"No rule found for id={rule_id}")


# Activities and sessions


def insert_session(
    conn: sqlite3.Connection, app_name: str, category_id: int, start_time: datetime
) -> int:
    stamp = format_timestamp(start_time)
    cur = conn.execute(
        """
        INSERT INTO sessions (app_name, category_id, start_time, end_time)
        VALUES (?, ?, ?, ?)
        """,
        (app_name, category_id, stamp, stamp),
    )
    return int(cur.lastrowid)


def extend_session(
    conn: sqlite3.Connection,
    session_id: int,
    end_time: datetime,
    extra_duration: float,
    *,
    extra_activities: int = 0,
) -> None:
    conn.execute(
        """
        UPDATE sessions
        SET end_time = MAX(end_time, ?),
            total_duration = total_duration + ?,
            activity_count = activity_count + ?
        WHERE id = ?
        """,
        (format_timestamp(end_time), extra_duration, extra_activities, session_id),
    )


def insert_activity_row(conn: sqlite3.Connection, record: ActivityRecord) -> int:
    cur = conn.execute(
        """
        INSERT INTO activities (
            session_id,
            app_name,
            window_title,
            url,
            category_id,
            project_name,
            file_name,
            file_type,
            language,
            domain,
            start_time,
            end_time,
            duration,
            context_json
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.session_id,
            record.app_name,
            record.window_title,
            record.url,
            record.category_id,
            record.project_name,
            record.file_name,
            record.file_type,
            record.language,
            record.domain,
            format_timestamp(record.start_time),
            format_timestamp(record.end_time),
            record.duration_seconds,
            record.context_json,
        ),
    )
    return int(cur.lastrowid)


def recategorize_session(conn: sqlite3.Connection, session_id: int, category_id: int) -> None:
    with transaction(conn):
        cur = conn.execute(
            "UPDATE sessions SET category_id = ? WHERE id = ?", (category_id, session_id)
        )
        if cur.rowcount == 0:
            raise ValueError(f"No session found for id={session_id}")
        conn.execute(
            "UPDATE activities SET category_id = ? WHERE session_id = ?",
            (category_id, session_id),
        )


def fetch_activities_for_day(
    conn: sqlite3.Connection, day: datetime
) -> list[sqlite3.Row]:
    """Fetch individual activities that start on the provided day."""
    start, end = _day_bounds(day)
    return list(
        conn.execute(
            """
            SELECT
                a.id,
                a.session_id,
                a.app_name,
                a.window_title,
                a.url,
                a.category_id,
                c.name AS category_name,
                c.color AS category_color,
                a.project_name,
                a.file_name,
                a.language,
                a.domain,
                a.start_time,
                a.end_time,
                a.duration
            FROM activities a
            LEFT JOIN categories c ON c.id = a.category_id
            WHERE a.start_time >= ? AND a.start_time < ?
            ORDER BY a.start_time;
            """,
            (start, end),
        )
    )


def fetch_sessions_for_day(conn: sqlite3.Connection, day: datetime) -> list[sqlite3.Row]:
    start, end = _day_bounds(day)
    return list(
        conn.execute(
            """
            SELECT
                s.id,
                s.app_name,
                s.category_id,
                c.name AS category_name,
                s.start_time,
                s.end_time,
                s.total_duration,
                s.activity_count
            FROM sessions s
            LEFT JOIN categories c ON c.id = s.category_id
            WHERE s.start_time >= ? AND s.start_time < ? AND s.activity_count > 0
            ORDER BY s.start_time;
            """,
            (start, end),
        )
    )


def fetch_category_breakdown(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[sqlite3.Row]:
    """Total seconds per category for activities starting in ``[start, end)``."""
    return list(
        conn.execute(
            """
            SELECT
                a.category_id,
                COALESCE(c.name, ?) AS category_name,
                c.color AS category_color,
                c.productivity_type,
                SUM(a.duration) AS seconds,
                COUNT(*) AS activity_count
            FROM activities a
            LEFT JOIN categories c ON c.id = a.category_id
            WHERE a.start_time >= ? AND a.start_time < ?
            GROUP BY a.category_id
            ORDER BY seconds DESC;
            """,
            (UNCATEGORIZED, format_timestamp(start), format_timestamp(end)),
        )
    )


def fetch_app_usage(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[sqlite3.Row]:
    return list(
        conn.execute(
            """
            SELECT
                app_name,
                SUM(duration) AS seconds,
                COUNT(*) AS activity_count
            FROM activities
            WHERE start_time >= ? AND start_time < ?
            GROUP BY app_name
            ORDER BY seconds DESC;
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
    )


def fetch_project_time(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[sqlite3.Row]:
    return list(
        conn.execute(
            """
            SELECT
                project_name,
                SUM(duration) AS seconds,
                COUNT(*) AS activity_count
            FROM activities
            WHERE start_time >= ? AND start_time < ? AND project_name IS NOT NULL AND project_name != ''
            GROUP BY project_name
            ORDER BY seconds DESC;
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
    )


def fetch_domain_usage(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[sqlite3.Row]:
    return list(
        conn.execute(
            """
            SELECT
                domain,
                SUM(duration) AS seconds,
                COUNT(*) AS activity_count
            FROM activities
            WHERE start_time >= ? AND start_time < ? AND domain IS NOT NULL AND domain != ''
            GROUP BY domain
            ORDER BY seconds DESC;
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
    )


def fetch_hourly_pattern(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[sqlite3.Row]:
    """Seconds per local hour of day and category."""
    # Timestamps are stored as local "YYYY-MM-DD HH:MM:SS.ffffff" text.
    return list(
        conn.execute(
            """
            SELECT
                CAST(substr(start_time, 12, 2) AS INTEGER) AS hour,
                category_id,
                SUM(duration) AS seconds
            FROM activities
            WHERE start_time >= ? AND start_time < ?
            GROUP BY hour, category_id
            ORDER BY hour, seconds DESC;
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
    )


def fetch_daily_totals(
    conn: sqlite3.Connection, end_day: datetime, days: int
) -> list[sqlite3.Row]:
    """Tracked seconds per day for the ``days`` days ending with ``end_day``."""
    if days < 1:
        raise ValueError("days must be at least 1")
    end = end_day.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    start = end - timedelta(days=days)
    return list(
        conn.execute(
            """
            SELECT
                substr(start_time, 1, 10) AS day,
                SUM(duration) AS seconds,
                COUNT(*) AS activity_count
            FROM activities
            WHERE start_time >= ? AND start_time < ?
            GROUP BY day
            ORDER BY day DESC;
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
    )


def _day_bounds(day: datetime) -> tuple[str, str]:
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return format_timestamp(start), format_timestamp(end)


# Settings


def get_setting(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )


def fetch_excluded_apps(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT app_name FROM excluded_apps ORDER BY app_name")
    return [row["app_name"] for row in rows]


def add_excluded_app(conn: sqlite3.Connection, app_name: str) -> None:
    key = app_key(app_name)
    if not key:
        raise ValueError("app_name is required")
    conn.execute("INSERT OR IGNORE INTO excluded_apps (app_name) VALUES (?)", (key,))


def remove_excluded_app(conn: sqlite3.Connection, app_name: str) -> bool:
    cur = conn.execute("DELETE FROM excluded_apps WHERE app_name = ?", (app_key(app_name),))
    return cur.rowcount > 0


class Storage:
    """One shared connection, serialized by a lock, for all stores."""

    def __init__(self, path: Path, *, seed: bool = True) -> None:
        self.path = Path(path)
        self._conn = open_database(self.path, check_same_thread=False, seed=seed)
        self._lock = threading.RLock()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SqliteRuleStore:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def load_all(self) -> tuple[list[Category], list[CategoryRule]]:
        with self._storage.connection() as conn:
            return fetch_categories(conn), fetch_rules(conn)

    def get_rules(self, category_id: int) -> list[CategoryRule]:
        with self._storage.connection() as conn:
            return fetch_rules(conn, category_id)

    def create_category(
        self,
        name: str,
        color: str,
        *,
        priority: int = 0,
        is_passive: bool = False,
        productivity_type: ProductivityType = ProductivityType.NEUTRAL,
    ) -> int:
        with self._storage.connection() as conn:
            return insert_category(
                conn,
                name,
                color,
                priority=priority,
                is_passive=is_passive,
                productivity_type=productivity_type,
            )

    def update_category(self, category_id: int, **updates: object) -> None:
        with self._storage.connection() as conn:
            update_category(conn, category_id, **updates)  # type: ignore[arg-type]

    def delete_category(self, category_id: int, *, reassign_to: int) -> None:
        with self._storage.connection() as conn:
            delete_category(conn, category_id, reassign_to=reassign_to)

    def add_rule(
        self, category_id: int, rule_type: RuleType, pattern: str, match_mode: MatchMode
    ) -> int:
        with self._storage.connection() as conn:
            return insert_rule(conn, category_id, rule_type, pattern, match_mode)

    def remove_rule(self, rule_id: int) -> None:
        with self._storage.connection() as conn:
            delete_rule(conn, rule_id)


class SqliteActivityStore:
    """Persists finished activities and tracks the currently open session."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._session: Optional[Session] = None
        self._last_activity_id: Optional[int] = None

    @property
    def current_session_id(self) -> Optional[int]:
        return self._session.id if self._session else None

    def get_or_create_session(
        self, app_name: str, category_id: int, start_time: datetime
    ) -> int:
        if self._session and app_key(self._session.app_name) == app_key(app_name):
            return self._session.id
        with self._storage.connection() as conn:
            session_id = insert_session(conn, app_name, category_id, start_time)
        self._session = Session(
            id=session_id,
            app_name=app_name,
            category_id=category_id,
            start_time=start_time,
            end_time=start_time,
        )
        self._last_activity_id = None
        logger.debug("Opened session %d for %s.", session_id, app_name)
        return session_id

    def insert_activity(self, record: ActivityRecord) -> int:
        duration = record.duration_seconds
        with self._storage.connection() as conn, transaction(conn):
            activity_id = insert_activity_row(conn, record)
            if record.session_id is not None:
                extend_session(
                    conn, record.session_id, record.end_time, duration, extra_activities=1
                )
        if self._session and record.session_id == self._session.id:
            self._last_activity_id = activity_id
            self._session.end_time = max(self._session.end_time, record.end_time)
            self._session.total_duration += duration
            self._session.activity_count += 1
        return activity_id

    def extend_last_activity(self, end_time: datetime, extra_duration: float) -> bool:
        """Stretch the last activity of the open session up to ``end_time``.

        Returns ``False`` when there is no such activity, or when extending it
        would make it cross into another calendar day.
        """
        if self._session is None or self._last_activity_id is None:
            return False
        with self._storage.connection() as conn:
            row = conn.execute(
                "SELECT start_time, end_time FROM activities WHERE id = ?",
                (self._last_activity_id,),
            ).fetchone()
            if row is None:
                return False
            start = parse_timestamp(row["start_time"])
            if end_time <= parse_timestamp(row["end_time"]) or start.date() != end_time.date():
                return False
            with transaction(conn):
                conn.execute(
                    "UPDATE activities SET end_time = ?, duration = ? WHERE id = ?",
                    (
                        format_timestamp(end_time),
                        (end_time - start).total_seconds(),
                        self._last_activity_id,
                    ),
                )
                extend_session(conn, self._session.id, end_time, extra_duration)
        self._session.end_time = max(self._session.end_time, end_time)
        self._session.total_duration += extra_duration
        return True

    def close_current_session(self) -> None:
        if self._session is not None:
            logger.debug("Closed session %d.", self._session.id)
        self._session = None
        self._last_activity_id = None

    def recategorize_session(self, session_id: int, category_id: int) -> None:
        with self._storage.connection() as conn:
            recategorize_session(conn, session_id, category_id)


class SqliteSettingsStore:
    """Persisted user settings layered over a base :class:`TrackerSettings`."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def load_settings(self, base: TrackerSettings) -> TrackerSettings:
        with self._storage.connection() as conn:
            idle = get_setting(conn, IDLE_TIMEOUT_KEY)
            poll = get_setting(conn, POLL_INTERVAL_KEY)
            excluded = fetch_excluded_apps(conn)
        settings = dataclasses.replace(base, excluded_apps=base.excluded_apps | frozenset(excluded))
        if idle is not None:
            settings = dataclasses.replace(settings, idle_threshold=timedelta(seconds=float(idle)))
        if poll is not None:
            settings = dataclasses.replace(
                settings,
                poll_interval=timedelta(seconds=float(poll)),
                sensor_timeout=timedelta(seconds=sensor_timeout_for(float(poll))),
            )
        return settings

    def update_intervals(
        self, *, idle_seconds: Optional[float] = None, poll_seconds: Optional[float] = None
    ) -> None:
        """Validate every given value, then store them together."""
        if idle_seconds is not None and idle_seconds <= 0:
            raise ValueError("Idle timeout must be positive")
        if poll_seconds is not None and poll_seconds < 1:
            raise ValueError("Polling interval must be at least one second")
        with self._storage.connection() as conn, transaction(conn):
            if idle_seconds is not None:
                set_setting(conn, IDLE_TIMEOUT_KEY, str(float(idle_seconds)))
            if poll_seconds is not None:
                set_setting(conn, POLL_INTERVAL_KEY, str(float(poll_seconds)))

    def excluded_apps(self) -> list[str]:
        with self._storage.connection() as conn:
            return fetch_excluded_apps(conn)

    def add_excluded_app(self, app_name: str) -> None:
        with self._storage.connection() as conn:
            add_excluded_app(conn, app_name)

    def remove_excluded_app(self, app_name: str) -> bool:
        with self._storage.connection() as conn:
            return remove_excluded_app(conn, app_name)
