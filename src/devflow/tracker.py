"""Tracking state machine that turns focus samples into sessions and activities."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Callable, Deque, Optional

from .categorizer import ActivityCategorizer
from .config import TrackerSettings
from .context import ExtractedContext, extract
from .db import (
    ActivityStore,
    SettingsProvider,
    SqliteActivityStore,
    SqliteRuleStore,
    SqliteSettingsStore,
    Storage,
)
from .models import ActivityInput, ActivityRecord, CurrentActivity, WindowSample
from .normalization import app_key
from .sensor import Sensor, create_sensor

logger = logging.getLogger(__name__)

RECENT_CATEGORY_LIMIT = 5

ActivityListener = Callable[[Optional[CurrentActivity]], None]


def split_at_local_midnight(start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
    """Cut ``[start, end)`` at every local midnight in between."""
    segments: list[tuple[datetime, datetime]] = []
    cursor = start
    while cursor.date() < end.date():
        midnight = datetime.combine(cursor.date() + timedelta(days=1), time.min, tzinfo=cursor.tzinfo)
        segments.append((cursor, midnight))
        cursor = midnight
    segments.append((cursor, end))
    return [(seg_start, seg_end) for seg_start, seg_end in segments if seg_end > seg_start]


@dataclass(slots=True)
class TrackerStatus:
    is_running: bool
    is_paused: bool
    is_idle: bool
    is_supported: bool
    platform_message: str
    current_activity: Optional[CurrentActivity]
    tracking_since: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "is_idle": self.is_idle,
            "is_supported": self.is_supported,
            "platform_message": self.platform_message,
            "current_activity": (
                self.current_activity.to_dict() if self.current_activity else None
            ),
            "tracking_since": self.tracking_since.isoformat() if self.tracking_since else None,
        }


class TimeTracker:
    """Polls the sensor and decides, every tick, what the user is doing.

    States are stopped, running and paused, with an idle flag while running.
    Finished spans are handed to the activity store; listeners are told about
    every change of the current activity (``None`` while idle, paused or on an
    excluded application).
    """

    def __init__(
        self,
        sensor: Sensor,
        categorizer: ActivityCategorizer,
        store: ActivityStore,
        settings: Optional[TrackerSettings] = None,
        *,
        settings_provider: Optional[SettingsProvider] = None,
        clock: Callable[[], datetime] = datetime.now,
        own_pid: Optional[int] = None,
    ) -> None:
        self._sensor = sensor
        self._categorizer = categorizer
        self._store = store
        self._settings_provider = settings_provider
        self._base_settings = settings or TrackerSettings()
        self.settings = (
            settings_provider.load_settings(self._base_settings)
            if settings_provider
            else self._base_settings
        )
        self._clock = clock
        self._own_pid = os.getpid() if own_pid is None else own_pid

        self._current: Optional[CurrentActivity] = None
        self._recent: Deque[int] = deque(maxlen=RECENT_CATEGORY_LIMIT)
        self._running = False
        self._paused = False
        self._idle = False
        self._listeners: list[ActivityListener] = []

        self._state_lock = threading.RLock()
        self._tick_guard = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # Public state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_idle(self) -> bool:
        return self._idle

    @property
    def current_activity(self) -> Optional[CurrentActivity]:
        return self._current

    @property
    def categorizer(self) -> ActivityCategorizer:
        return self._categorizer

    def add_listener(self, listener: ActivityListener) -> None:
        self._listeners.append(listener)

    def status(self) -> TrackerStatus:
        supported = self._sensor.is_supported()
        message = getattr(self._sensor, "message", None) or (
            "Window tracking supported" if supported else "Window tracking not supported"
        )
        current = self._current
        return TrackerStatus(
            is_running=self._running,
            is_paused=self._paused,
            is_idle=self._idle,
            is_supported=supported,
            platform_message=message,
            current_activity=current,
            tracking_since=current.start_time if current else None,
        )

    # Lifecycle

    def start(self, *, schedule: bool = True) -> bool:
        """Begin tracking; returns ``False`` when the platform is unsupported."""
        with self._state_lock:
            if self._running:
                return True
            if not self._sensor.is_supported():
                logger.warning(
                    "Automatic tracking is not available: %s",
                    self.status().platform_message,
                )
                return False
            self._running = True
            self._paused = False
            self._idle = False
        logger.info(
            "Tracker started; polling every %.1fs.", self.settings.poll_interval.total_seconds()
        )

        self.tick()
        if schedule:
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_loop, args=(stop_event,), name="devflow-tracker", daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        return True

    def stop(self) -> None:
        """Cancel polling and persist whatever is in progress."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None
        if stop_event:
            stop_event.set()
        if thread and thread is not threading.current_thread():
            thread.join(timeout=10)

        with self._state_lock:
            self._end_current(self._clock(), notify=False)
            self._paused = False
            self._idle = False
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("Tracker stopped.")

    shutdown = stop

    def run_forever(self) -> bool:
        """Track in the foreground until interrupted."""
        if not self.start(schedule=False):
            return False
        stop_event = threading.Event()
        try:
            self._run_loop(stop_event)
        except KeyboardInterrupt:
            logger.info("Tracker interrupted; flushing current activity.")
        finally:
            self.stop()
        return True

    def pause(self) -> None:
        with self._state_lock:
            if not self._running or self._paused:
                return
            self._paused = True
            self._idle = False
            self._end_current(self._clock())
        logger.info("Tracking paused.")

    def resume(self) -> None:
        with self._state_lock:
            if not self._running or not self._paused:
                return
            self._paused = False
        logger.info("Tracking resumed.")

    def flush(self) -> None:
        """Persist the in-progress span up to now and keep tracking it."""
        with self._state_lock:
            current = self._current
            if current is None:
                return
            now = self._clock()
            self._persist(current, now)
            current.start_time = now

    def reload_settings(self) -> None:
        """Re-read idle threshold and polling interval."""
        if self._settings_provider is None:
            return
        fresh = self._settings_provider.load_settings(self._base_settings)
        self.settings = dataclasses.replace(
            self.settings,
            idle_threshold=fresh.idle_threshold,
            poll_interval=fresh.poll_interval,
            sensor_timeout=fresh.sensor_timeout,
        )
        logger.info(
            "Settings reloaded: idle after %.0fs, polling every %.1fs.",
            self.settings.idle_threshold.total_seconds(),
            self.settings.poll_interval.total_seconds(),
        )

    def reload_excluded_apps(self) -> None:
        if self._settings_provider is None:
            return
        fresh = self._settings_provider.load_settings(self._base_settings)
        self.settings = dataclasses.replace(self.settings, excluded_apps=fresh.excluded_apps)
        logger.info("Excluded applications reloaded (%d).", len(self.settings.excluded_apps))

    # Polling

    def tick(self) -> None:
        """Run one poll; skipped when the previous one is still in flight."""
        if not self._tick_guard.acquire(blocking=False):
            logger.debug("Previous tick still running; skipping.")
            return
        try:
            if not self._running or self._paused:
                return
            observation = self._observe()
            if observation is None:
                return
            window, idle_seconds = observation
            with self._state_lock:
                if not self._running or self._paused:
                    return
                self._process(window, idle_seconds)
        except Exception:
            logger.exception("Tracking tick failed.")
        finally:
            self._tick_guard.release()

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.settings.poll_interval.total_seconds()):
            self.tick()

    def _observe(self) -> Optional[tuple[WindowSample, float]]:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="devflow-sensor")
        future = self._executor.submit(self._read_sensor)
        timeout = self.settings.sensor_timeout.total_seconds()
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            logger.warning("Sensor did not answer within %.1fs; skipping tick.", timeout)
            self._executor.shutdown(wait=False)
            self._executor = None
            return None
        except Exception:
            logger.warning("Sensor failed; skipping tick.", exc_info=True)
            return None

    def _read_sensor(self) -> Optional[tuple[WindowSample, float]]:
        window = self._sensor.poll()
        if window is None:
            return None
        return window, self._sensor.idle_seconds()

    def _process(self, window: WindowSample, idle_seconds: float) -> None:
        now = self._clock()

        if self._is_untracked(window):
            if self._current is not None:
                logger.debug("%s is not tracked; ending current activity.", window.app_name)
                self._end_current(now)
            return

        context = extract(window.app_name, window.title, window.url)
        result = self._categorizer.categorize(
            ActivityInput(
                app_name=window.app_name,
                title=window.title,
                url=window.url,
                file_path=context.file_path,
                recent_category_ids=tuple(self._recent),
            )
        )
        category = self._categorizer.get_category(result.category_id)

        idle = (
            idle_seconds > self.settings.idle_threshold.total_seconds()
            and not category.is_passive
        )
        if idle:
            if not self._idle:
                logger.info("Idle for %.0fs; ending current activity.", idle_seconds)
                self._idle = True
                self._end_current(now)
            return
        if self._idle:
            logger.info("Activity resumed after idle.")
            self._idle = False

        if not self._has_changed(window):
            return

        previous = self._current
        if previous is not None:
            self._persist(previous, now)
        if previous is None or app_key(previous.app_name) != app_key(window.app_name):
            self._close_session()

        self._current = CurrentActivity(
            app_name=window.app_name,
            title=window.title,
            url=window.url,
            category_id=category.id,
            category_name=category.name,
            category_color=category.color,
            context=context,
            start_time=now,
        )
        self._recent.append(category.id)
        logger.debug(
            "Activity changed: %s | %s -> %s (%s, %.2f)",
            window.app_name,
            window.title,
            category.name,
            result.stage.value,
            result.confidence,
        )
        self._notify(self._current)

    def _is_untracked(self, window: WindowSample) -> bool:
        if window.pid is not None and window.pid == self._own_pid:
            return True
        return self.settings.is_own_app(window.app_name) or self.settings.is_excluded(
            window.app_name
        )

    def _has_changed(self, window: WindowSample) -> bool:
        current = self._current
        if current is None:
            return True
        return (
            current.app_name != window.app_name
            or current.title != window.title
            or current.url != window.url
        )

    def _end_current(self, now: datetime, *, notify: bool = True) -> None:
        """Persist and drop the current activity, closing its session."""
        current = self._current
        if current is not None:
            self._persist(current, now)
        self._close_session()
        self._current = None
        if notify and current is not None:
            self._notify(None)

    def _close_session(self) -> None:
        try:
            self._store.close_current_session()
        except Exception:
            logger.exception("Failed to close the current session.")

    # Persistence

    def _persist(self, activity: CurrentActivity, end: datetime) -> None:
        min_seconds = self.settings.min_activity.total_seconds()
        for seg_start, seg_end in split_at_local_midnight(activity.start_time, end):
            duration = (seg_end - seg_start).total_seconds()
            if duration < min_seconds:
                logger.debug("Discarding %.2fs span of %s.", duration, activity.app_name)
                continue
            try:
                self._persist_segment(activity, seg_start, seg_end, duration)
            except Exception:
                logger.exception(
                    "Failed to persist %.0fs of %s; dropping it.", duration, activity.app_name
                )

    def _persist_segment(
        self, activity: CurrentActivity, start: datetime, end: datetime, duration: float
    ) -> None:
        session_id = self._store.get_or_create_session(
            activity.app_name, activity.category_id, start
        )
        if duration < self.settings.short_activity.total_seconds():
            if self._store.extend_last_activity(end, duration):
                logger.debug(
                    "Absorbed %.1fs of %s into the previous activity.", duration, activity.app_name
                )
                return
        self._store.insert_activity(_to_record(activity, start, end, session_id))

    def _notify(self, activity: Optional[CurrentActivity]) -> None:
        for listener in list(self._listeners):
            try:
                listener(activity)
            except Exception:
                logger.exception("Activity listener failed.")


def _to_record(
    activity: CurrentActivity, start: datetime, end: datetime, session_id: int
) -> ActivityRecord:
    context: ExtractedContext = activity.context or ExtractedContext()
    return ActivityRecord(
        app_name=activity.app_name,
        window_title=activity.title or None,
        url=activity.url,
        category_id=activity.category_id,
        start_time=start,
        end_time=end,
        project_name=context.project,
        file_name=context.filename,
        file_type=context.file_type,
        language=context.language,
        domain=context.domain,
        context_json=json.dumps(context.to_dict()),
        session_id=session_id,
    )


def build_tracker(
    storage: Storage,
    settings: Optional[TrackerSettings] = None,
    sensor: Optional[Sensor] = None,
) -> TimeTracker:
    """Wire a tracker to SQLite-backed stores and the platform sensor."""
    return TimeTracker(
        sensor or create_sensor(),
        ActivityCategorizer(SqliteRuleStore(storage)),
        SqliteActivityStore(storage),
        settings,
        settings_provider=SqliteSettingsStore(storage),
    )
