"""FastAPI application that exposes a local control API for the tracker."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from .config import TrackerSettings
from .db import (
    SqliteActivityStore,
    SqliteSettingsStore,
    Storage,
    fetch_activities_for_day,
    fetch_app_usage,
    fetch_category_breakdown,
    fetch_daily_totals,
    fetch_domain_usage,
    fetch_hourly_pattern,
    fetch_project_time,
    fetch_sessions_for_day,
)
from .models import ActivityInput, Category, CategoryRule, MatchMode, ProductivityType, RuleType
from .paths import get_db_path
from .sensor import Sensor
from .tracker import TimeTracker, build_tracker

logger = logging.getLogger(__name__)


class CategoryPayload(BaseModel):
    name: str
    color: str = "#64748B"
    priority: int = 0
    is_passive: bool = False
    productivity_type: ProductivityType = ProductivityType.NEUTRAL

    model_config = ConfigDict(extra="forbid")


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    priority: Optional[int] = None
    is_passive: Optional[bool] = None
    productivity_type: Optional[ProductivityType] = None

    model_config = ConfigDict(extra="forbid")


class RulePayload(BaseModel):
    type: RuleType
    pattern: str
    match_mode: MatchMode = MatchMode.CONTAINS

    model_config = ConfigDict(extra="forbid")


class CategorizePayload(BaseModel):
    app_name: str
    title: str = ""
    url: Optional[str] = None
    file_path: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ExcludedAppPayload(BaseModel):
    app_name: str

    model_config = ConfigDict(extra="forbid")


class SettingsUpdate(BaseModel):
    idle_timeout_seconds: Optional[float] = None
    poll_interval_seconds: Optional[float] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    sensor: Optional[Sensor] = None,
    start_tracker: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    storage = Storage(Path(db_path or get_db_path()))
    tracker = build_tracker(storage, settings, sensor)
    categorizer = tracker.categorizer
    settings_store = SqliteSettingsStore(storage)
    activity_store = SqliteActivityStore(storage)

    app = FastAPI(title="DevFlow", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.storage = storage
    app.state.tracker = tracker

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        if start_tracker and not tracker.start():
            logger.warning("Tracker not started; the API is available read-only.")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        tracker.stop()
        storage.close()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        current: TimeTracker = request.app.state.tracker
        payload = current.status().to_dict()
        payload.update(
            {
                "database_path": str(storage.path),
                "poll_seconds": current.settings.poll_interval.total_seconds(),
                "idle_seconds": current.settings.idle_threshold.total_seconds(),
            }
        )
        return payload

    @app.post("/api/pause")
    def pause() -> Dict[str, Any]:
        tracker.pause()
        return tracker.status().to_dict()

    @app.post("/api/resume")
    def resume() -> Dict[str, Any]:
        tracker.resume()
        return tracker.status().to_dict()

    @app.post("/api/flush")
    def flush() -> Dict[str, Any]:
        tracker.flush()
        return tracker.status().to_dict()

    @app.get("/api/categories")
    def list_categories() -> Dict[str, Any]:
        return {"categories": [_category_payload(cat) for cat in categorizer.categories()]}

    @app.post("/api/categories")
    def create_category(payload: CategoryPayload) -> Dict[str, Any]:
        try:
            category_id = categorizer.create_category(
                payload.name,
                payload.color,
                priority=payload.priority,
                is_passive=payload.is_passive,
                productivity_type=payload.productivity_type,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _category_payload(categorizer.get_category(category_id))

    @app.patch("/api/categories/{category_id}")
    def update_category(category_id: int, payload: CategoryUpdate) -> Dict[str, Any]:
        _require_category(category_id)
        updates = payload.model_dump(exclude_unset=True)
        try:
            categorizer.update_category(category_id, **updates)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _category_payload(categorizer.get_category(category_id))

    @app.delete("/api/categories/{category_id}")
    def delete_category(category_id: int) -> Dict[str, Any]:
        _require_category(category_id)
        try:
            categorizer.delete_category(category_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"deleted": category_id}

    @app.get("/api/categories/{category_id}/rules")
    def list_rules(category_id: int) -> Dict[str, Any]:
        _require_category(category_id)
        return {"rules": [_rule_payload(rule) for rule in categorizer.get_category_rules(category_id)]}

    @app.post("/api/categories/{category_id}/rules")
    def add_rule(category_id: int, payload: RulePayload) -> Dict[str, Any]:
        _require_category(category_id)
        try:
            rule_id = categorizer.add_rule(
                category_id, payload.type, payload.pattern, payload.match_mode
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"id": rule_id, "category_id": category_id}

    @app.delete("/api/rules/{rule_id}")
    def remove_rule(rule_id: int) -> Dict[str, Any]:
        try:
            categorizer.remove_rule(rule_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail="Rule not found") from exc
        return {"deleted": rule_id}

    @app.post("/api/categorize")
    def categorize(payload: CategorizePayload) -> Dict[str, Any]:
        result = categorizer.categorize(
            ActivityInput(
                app_name=payload.app_name,
                title=payload.title,
                url=payload.url,
                file_path=payload.file_path,
            )
        )
        category = categorizer.get_category(result.category_id)
        return {
            "category": _category_payload(category),
            "confidence": result.confidence,
            "stage": result.stage.value,
            "matched_rules": [rule.to_dict() for rule in result.matched_rules],
        }

    @app.post("/api/sessions/{session_id}/category")
    def recategorize_session(session_id: int, category_id: int = Query(...)) -> Dict[str, Any]:
        _require_category(category_id)
        try:
            activity_store.recategorize_session(session_id, category_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        return {"session_id": session_id, "category_id": category_id}

    @app.get("/api/activities")
    def activities(
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        with storage.connection() as conn:
            rows = fetch_activities_for_day(conn, target_day)
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "activities": [dict(row) for row in rows],
        }

    @app.get("/api/sessions")
    def sessions(
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        with storage.connection() as conn:
            rows = fetch_sessions_for_day(conn, target_day)
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "sessions": [dict(row) for row in rows],
        }

    @app.get("/api/summary")
    def summary(
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        target_day = _parse_date(date)
        end = target_day + timedelta(days=1)
        with storage.connection() as conn:
            categories = fetch_category_breakdown(conn, target_day, end)
            apps = fetch_app_usage(conn, target_day, end)
            projects = fetch_project_time(conn, target_day, end)
            domains = fetch_domain_usage(conn, target_day, end)
            hours = fetch_hourly_pattern(conn, target_day, end)
        return {
            "date": target_day.strftime("%Y-%m-%d"),
            "total_seconds": sum(row["seconds"] or 0 for row in categories),
            "categories": [dict(row) for row in categories],
            "apps": [dict(row) for row in apps],
            "projects": [dict(row) for row in projects],
            "domains": [dict(row) for row in domains],
            "hours": [dict(row) for row in hours],
        }

    @app.get("/api/daily-totals")
    def daily_totals(
        days: int = Query(default=7, ge=1, le=366),
        date: Optional[str] = Query(
            default=None,
            description="Last day of the range in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        end_day = _parse_date(date)
        with storage.connection() as conn:
            rows = fetch_daily_totals(conn, end_day, days)
        return {
            "end_date": end_day.strftime("%Y-%m-%d"),
            "days": [dict(row) for row in rows],
        }

    @app.get("/api/excluded-apps")
    def list_excluded_apps() -> Dict[str, Any]:
        return {"excluded_apps": settings_store.excluded_apps()}

    @app.post("/api/excluded-apps")
    def add_excluded_app(payload: ExcludedAppPayload) -> Dict[str, Any]:
        try:
            settings_store.add_excluded_app(payload.app_name)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        tracker.reload_excluded_apps()
        return {"excluded_apps": settings_store.excluded_apps()}

    @app.delete("/api/excluded-apps/{app_name}")
    def remove_excluded_app(app_name: str) -> Dict[str, Any]:
        if not settings_store.remove_excluded_app(app_name):
            raise HTTPException(status_code=404, detail="Application not excluded")
        tracker.reload_excluded_apps()
        return {"excluded_apps": settings_store.excluded_apps()}

    @app.get("/api/settings")
    def get_settings() -> Dict[str, Any]:
        return _settings_payload(tracker)

    @app.patch("/api/settings")
    def update_settings(payload: SettingsUpdate) -> Dict[str, Any]:
        try:
            settings_store.update_intervals(
                idle_seconds=payload.idle_timeout_seconds,
                poll_seconds=payload.poll_interval_seconds,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        tracker.reload_settings()
        return _settings_payload(tracker)

    def _require_category(category_id: int) -> Category:
        category = categorizer.snapshot.categories.get(category_id)
        if category is None:
            raise HTTPException(status_code=404, detail="Category not found")
        return category

    return app


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _category_payload(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "priority": category.priority,
        "is_passive": category.is_passive,
        "productivity_type": category.productivity_type.value,
        "is_default": category.is_default,
    }


def _rule_payload(rule: CategoryRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "category_id": rule.category_id,
        "type": rule.type.value,
        "pattern": rule.pattern,
        "match_mode": rule.match_mode.value,
    }


def _settings_payload(tracker: TimeTracker) -> Dict[str, Any]:
    return {
        "idle_timeout_seconds": tracker.settings.idle_threshold.total_seconds(),
        "poll_interval_seconds": tracker.settings.poll_interval.total_seconds(),
        "excluded_apps": sorted(tracker.settings.excluded_apps),
    }
