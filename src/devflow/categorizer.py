"""Rule-based categorization of observed activity.

Rules are evaluated as a cascade of stages. Each stage is checked across every
category (highest priority first) before the next stage is considered, so a
low-priority category's app rule always beats a high-priority category's
domain rule:

1. application name
2. compound ``domain|keyword``
3. plain domain
4. file path
5. keyword in title/URL

Anything that matches nothing falls back to the ``uncategorized`` sentinel.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, NamedTuple, Optional, Union
from urllib.parse import urlsplit

from .db import RuleStore
from .models import (
    UNCATEGORIZED,
    ActivityInput,
    CategorizationResult,
    Category,
    CategoryRule,
    MatchedRule,
    MatchMode,
    MatchStage,
    ProductivityType,
    RuleType,
)
from .normalization import app_key

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#64748B"

_STAGE_CONFIDENCE: dict[MatchStage, float] = {
    MatchStage.APP: 0.95,
    MatchStage.DOMAIN_KEYWORD: 0.85,
    MatchStage.DOMAIN: 0.8,
    MatchStage.FILE_PATH: 0.7,
    MatchStage.KEYWORD: 0.5,
}


@dataclass(frozen=True, slots=True)
class CompiledRule:
    rule: CategoryRule
    match_mode: MatchMode
    pattern: str
    compiled: Optional[re.Pattern[str]] = None
    domain: str = ""
    keyword: str = ""

    def describe(self) -> MatchedRule:
        return MatchedRule(
            rule_id=self.rule.id,
            category_id=self.rule.category_id,
            type=self.rule.type,
            pattern=self.rule.pattern,
            match_mode=self.match_mode,
        )


@dataclass(frozen=True, slots=True)
class CategoryEntry:
    category: Category
    apps: tuple[CompiledRule, ...] = ()
    domain_keywords: tuple[CompiledRule, ...] = ()
    domains: tuple[CompiledRule, ...] = ()
    file_paths: tuple[CompiledRule, ...] = ()
    keywords: tuple[CompiledRule, ...] = ()

    def rules_for(self, stage: MatchStage) -> tuple[CompiledRule, ...]:
        return {
            MatchStage.APP: self.apps,
            MatchStage.DOMAIN_KEYWORD: self.domain_keywords,
            MatchStage.DOMAIN: self.domains,
            MatchStage.FILE_PATH: self.file_paths,
            MatchStage.KEYWORD: self.keywords,
        }.get(stage, ())


@dataclass(frozen=True, slots=True)
class RuleSnapshot:
    """Immutable, priority-sorted view of the rule set."""

    entries: tuple[CategoryEntry, ...]
    categories: Mapping[int, Category]
    uncategorized: Category


class _Observation(NamedTuple):
    app: str
    hostname: str
    text: str
    file_path: str


def compile_rule(rule: CategoryRule) -> Optional[CompiledRule]:
    """Prepare a rule for matching; invalid regexes degrade to ``contains``."""
    pattern = rule.pattern.strip().lower()
    if not pattern:
        return None

    if rule.type is RuleType.DOMAIN_KEYWORD:
        domain, sep, keyword = pattern.partition("|")
        if not sep or not domain.strip() or not keyword.strip():
            logger.warning("Ignoring malformed domain_keyword rule %s: %r", rule.id, rule.pattern)
            return None
        return CompiledRule(
            rule=rule,
            match_mode=rule.match_mode,
            pattern=pattern,
            domain=domain.strip(),
            keyword=keyword.strip(),
        )

    if rule.match_mode is MatchMode.REGEX:
        try:
            compiled = re.compile(rule.pattern, re.IGNORECASE)
        except re.error as exc:
            logger.warning(
                "Rule %s has an invalid regex %r (%s); matching as contains.",
                rule.id,
                rule.pattern,
                exc,
            )
            return CompiledRule(rule=rule, match_mode=MatchMode.CONTAINS, pattern=pattern)
        return CompiledRule(rule=rule, match_mode=MatchMode.REGEX, pattern=pattern, compiled=compiled)

    return CompiledRule(rule=rule, match_mode=rule.match_mode, pattern=pattern)


def build_snapshot(categories: Iterable[Category], rules: Iterable[CategoryRule]) -> RuleSnapshot:
    by_category: dict[int, dict[RuleType, list[CompiledRule]]] = {}
    for rule in rules:
        compiled = compile_rule(rule)
        if compiled is None:
            continue
        by_category.setdefault(rule.category_id, {}).setdefault(rule.type, []).append(compiled)

    category_map: dict[int, Category] = {}
    entries: list[CategoryEntry] = []
    uncategorized: Optional[Category] = None
    for category in categories:
        category_map[category.id] = category
        if category.is_sentinel:
            uncategorized = category
            continue
        buckets = by_category.get(category.id, {})
        entries.append(
            CategoryEntry(
                category=category,
                apps=tuple(buckets.get(RuleType.APP, ())),
                domain_keywords=tuple(buckets.get(RuleType.DOMAIN_KEYWORD, ())),
                domains=tuple(buckets.get(RuleType.DOMAIN, ())),
                file_paths=tuple(buckets.get(RuleType.FILE_PATH, ())),
                keywords=tuple(buckets.get(RuleType.KEYWORD, ())),
            )
        )
    entries.sort(key=lambda entry: (-entry.category.priority, entry.category.id))

    if uncategorized is None:
        logger.warning("No %r category found; using a placeholder.", UNCATEGORIZED)
        uncategorized = _placeholder_uncategorized()

    return RuleSnapshot(entries=tuple(entries), categories=category_map, uncategorized=uncategorized)


def _placeholder_uncategorized() -> Category:
    return Category(id=0, name=UNCATEGORIZED, color=DEFAULT_COLOR)


def empty_snapshot() -> RuleSnapshot:
    """Snapshot with no rules, used until the first load."""
    return RuleSnapshot(entries=(), categories={}, uncategorized=_placeholder_uncategorized())


def parse_hostname(url: Optional[str]) -> str:
    """Lower-cased hostname of ``url`` or ``""`` when there is none."""
    if not url:
        return ""
    try:
        return urlsplit(url.strip()).hostname or ""
    except ValueError:
        return ""


def matches_text(text: str, rule: CompiledRule) -> bool:
    if rule.match_mode is MatchMode.EXACT:
        return text == rule.pattern
    if rule.match_mode is MatchMode.REGEX and rule.compiled is not None:
        return rule.compiled.search(text) is not None
    return rule.pattern in text


def matches_domain(hostname: str, domain: str) -> bool:
    """True when ``hostname`` is ``domain`` or one of its subdomains."""
    return hostname == domain or hostname.endswith("." + domain)


def _app_rule(rule: CompiledRule, obs: _Observation) -> bool:
    return bool(obs.app) and matches_text(obs.app, rule)


def _domain_keyword_rule(rule: CompiledRule, obs: _Observation) -> bool:
    if not obs.hostname or not matches_domain(obs.hostname, rule.domain):
        return False
    return rule.keyword in obs.text


def _domain_rule(rule: CompiledRule, obs: _Observation) -> bool:
    if not obs.hostname:
        return False
    if rule.match_mode is MatchMode.REGEX and rule.compiled is not None:
        return rule.compiled.search(obs.hostname) is not None
    return matches_domain(obs.hostname, rule.pattern)


def _file_path_rule(rule: CompiledRule, obs: _Observation) -> bool:
    return bool(obs.file_path) and matches_text(obs.file_path, rule)


def _keyword_rule(rule: CompiledRule, obs: _Observation) -> bool:
    return matches_text(obs.text, rule)


_STAGES: tuple[tuple[MatchStage, Callable[[CompiledRule, _Observation], bool]], ...] = (
    (MatchStage.APP, _app_rule),
    (MatchStage.DOMAIN_KEYWORD, _domain_keyword_rule),
    (MatchStage.DOMAIN, _domain_rule),
    (MatchStage.FILE_PATH, _file_path_rule),
    (MatchStage.KEYWORD, _keyword_rule),
)


class ActivityCategorizer:
    """Maps observations to categories using rules loaded from a rule store."""

    def __init__(self, store: RuleStore) -> None:
        self._store = store
        self._snapshot = empty_snapshot()
        self.reload()

    def reload(self) -> None:
        """Rebuild the snapshot from the store and swap it in."""
        categories, rules = self._store.load_all()
        snapshot = build_snapshot(categories, rules)
        self._snapshot = snapshot
        logger.debug(
            "Loaded %d categories and %d rules.", len(snapshot.categories), len(rules)
        )

    @property
    def snapshot(self) -> RuleSnapshot:
        return self._snapshot

    @property
    def uncategorized_id(self) -> int:
        return self._snapshot.uncategorized.id

    def categorize(self, activity: ActivityInput) -> CategorizationResult:
        snapshot = self._snapshot
        title = (activity.title or "").lower()
        url = (activity.url or "").lower()
        obs = _Observation(
            app=app_key(activity.app_name),
            hostname=parse_hostname(url),
            text=f"{title} {url}",
            file_path=(activity.file_path or "").lower(),
        )

        for stage, test in _STAGES:
            matches = [
                (entry.category, rule)
                for entry in snapshot.entries
                for rule in entry.rules_for(stage)
                if test(rule, obs)
            ]
            if matches:
                winner = matches[0][0]
                return CategorizationResult(
                    category_id=winner.id,
                    confidence=_confidence(stage, winner, matches, activity.recent_category_ids),
                    stage=stage,
                    matched_rules=tuple(rule.describe() for _, rule in matches),
                )

        return CategorizationResult(
            category_id=snapshot.uncategorized.id,
            confidence=0.0,
            stage=MatchStage.FALLBACK,
        )

    # Lookups

    def get_category(self, category_id: int) -> Category:
        snapshot = self._snapshot
        return snapshot.categories.get(category_id, snapshot.uncategorized)

    def get_category_name(self, category_id: int) -> str:
        return self.get_category(category_id).name

    def get_category_color(self, category_id: int) -> str:
        return self.get_category(category_id).color

    def is_passive(self, category_id: int) -> bool:
        return self.get_category(category_id).is_passive

    def categories(self) -> list[Category]:
        return sorted(
            self._snapshot.categories.values(), key=lambda cat: (-cat.priority, cat.id)
        )

    def get_category_rules(self, category_id: int) -> list[CategoryRule]:
        return self._store.get_rules(category_id)

    # Mutations; each one reloads the snapshot afterwards.

    def create_category(
        self,
        name: str,
        color: str,
        priority: int = 0,
        is_passive: bool = False,
        productivity_type: Union[ProductivityType, str] = ProductivityType.NEUTRAL,
    ) -> int:
        category_id = self._store.create_category(
            name,
            color,
            priority=priority,
            is_passive=is_passive,
            productivity_type=ProductivityType(productivity_type),
        )
        self.reload()
        return category_id

    def update_category(self, category_id: int, **updates: object) -> None:
        name = updates.get("name")
        if category_id == self.uncategorized_id and name is not None and str(name).strip() != UNCATEGORIZED:
            raise ValueError("The uncategorized category cannot be renamed")
        if "productivity_type" in updates and updates["productivity_type"] is not None:
            updates["productivity_type"] = ProductivityType(updates["productivity_type"])
        self._store.update_category(category_id, **updates)
        self.reload()

    def delete_category(self, category_id: int) -> None:
        if category_id == self.uncategorized_id:
            raise ValueError("The uncategorized category cannot be deleted")
        self._store.delete_category(category_id, reassign_to=self.uncategorized_id)
        self.reload()

    def add_rule(
        self,
        category_id: int,
        rule_type: Union[RuleType, str],
        pattern: str,
        match_mode: Union[MatchMode, str] = MatchMode.CONTAINS,
    ) -> int:
        rule_id = self._store.add_rule(
            category_id, RuleType(rule_type), pattern, MatchMode(match_mode)
        )
        self.reload()
        return rule_id

    def remove_rule(self, rule_id: int) -> None:
        self._store.remove_rule(rule_id)
        self.reload()


def _confidence(
    stage: MatchStage,
    winner: Category,
    matches: list[tuple[Category, CompiledRule]],
    recent_category_ids: tuple[int, ...],
) -> float:
    confidence = _STAGE_CONFIDENCE[stage]
    winner_hits = sum(1 for category, _ in matches if category.id == winner.id)
    rivals = {category.id for category, _ in matches if category.id != winner.id}
    confidence += 0.02 * min(winner_hits - 1, 2)
    confidence -= 0.1 * min(len(rivals), 3)
    if winner.id in recent_category_ids:
        confidence += 0.05
    return round(max(0.0, min(1.0, confidence)), 3)
