"""Domain models for categories, rules and recorded activity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


UNCATEGORIZED = "uncategorized"


class RuleType(str, Enum):
    APP = "app"
    DOMAIN = "domain"
    KEYWORD = "keyword"
    DOMAIN_KEYWORD = "domain_keyword"
    FILE_PATH = "file_path"


class MatchMode(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"
    REGEX = "regex"


class ProductivityType(str, Enum):
    PRODUCTIVE = "productive"
    NEUTRAL = "neutral"
    DISTRACTION = "distraction"


class MatchStage(str, Enum):
    """Cascade stages, in evaluation order."""

    APP = "app"
    DOMAIN_KEYWORD = "domain_keyword"
    DOMAIN = "domain"
    FILE_PATH = "file_path"
    KEYWORD = "keyword"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class Category:
    id: int
    name: str
    color: str
    priority: int = 0
    is_passive: bool = False
    productivity_type: ProductivityType = ProductivityType.NEUTRAL
    is_default: bool = False

    @property
    def is_sentinel(self) -> bool:
        return self.name == UNCATEGORIZED


@dataclass(frozen=True, slots=True)
class CategoryRule:
    id: int
    category_id: int
    type: RuleType
    pattern: str
    match_mode: MatchMode = MatchMode.CONTAINS


@dataclass(frozen=True, slots=True)
class ActivityInput:
    """A single observation handed to the categorizer."""

    app_name: str
    title: str = ""
    url: Optional[str] = None
    file_path: Optional[str] = None
    recent_category_ids: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class MatchedRule:
    rule_id: int
    category_id: int
    type: RuleType
    pattern: str
    match_mode: MatchMode

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "category_id": self.category_id,
            "type": self.type.value,
            "pattern": self.pattern,
            "match_mode": self.match_mode.value,
        }


@dataclass(frozen=True, slots=True)
class CategorizationResult:
    """Winning category plus the trace used to explain the decision."""

    category_id: int
    confidence: float
    stage: MatchStage
    matched_rules: tuple[MatchedRule, ...] = ()


@dataclass(frozen=True, slots=True)
class WindowSample:
    """What the sensor reports for the focused window."""

    app_name: str
    title: str = ""
    url: Optional[str] = None
    pid: Optional[int] = None


@dataclass(slots=True)
class CurrentActivity:
    """The in-progress activity owned by the tracker."""

    app_name: str
    title: str
    url: Optional[str]
    category_id: int
    category_name: str
    category_color: str
    context: Any
    start_time: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "app_name": self.app_name,
            "title": self.title,
            "url": self.url,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "context": self.context.to_dict() if self.context is not None else {},
            "start_time": self.start_time.isoformat(),
        }


@dataclass(slots=True)
class ActivityRecord:
    """Represents a finished, time-bounded block spent in a single activity."""

    app_name: str
    window_title: Optional[str]
    url: Optional[str]
    category_id: int
    start_time: datetime
    end_time: datetime
    project_name: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    language: Optional[str] = None
    domain: Optional[str] = None
    context_json: Optional[str] = None
    session_id: Optional[int] = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


@dataclass(slots=True)
class Session:
    id: int
    app_name: str
    category_id: Optional[int]
    start_time: datetime
    end_time: datetime
    total_duration: float = 0.0
    activity_count: int = 0
