# tasks/ai_engine/config.py
"""
Engine Configuration
====================

An EngineConfig is an immutable snapshot of every tunable the pipeline reads.
It is built once (usually from Django settings) and passed explicitly into each
call, so two concurrent requests with different settings never interfere.

Settings:
---------
    TASK_CHAT_ENGINE = {
        "coefficients": {"relevance": 20, "due_date": 4, "priority": 1, "status": 1},
        "quality_floor": 0.0,
        "min_relevance": 0.0,
        "max_recommendations": 20,
        "sort_spec": ["relevance"],
        ...
    }
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .types import SORT_KEYS, SORT_RELEVANCE


# Due-date buckets used for scoring
BUCKET_OVERDUE = "overdue"
BUCKET_WEEK = "week"
BUCKET_MONTH = "month"
BUCKET_LATER = "later"
BUCKET_NONE = "none"

DUE_DATE_BUCKETS = (BUCKET_OVERDUE, BUCKET_WEEK, BUCKET_MONTH, BUCKET_LATER, BUCKET_NONE)

# Key used for "no priority" in the priority score table
NO_PRIORITY = "none"

# Status category used when a task status matches no configured category
OTHER_STATUS = "other"
UNKNOWN_STATUS_ORDER = 999


@dataclass(frozen=True)
class StatusCategory:
    """A user-definable status bucket with its score and sort order."""

    display_name: str
    score: float
    order: int
    symbols: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()


DEFAULT_STATUS_CATEGORIES: Dict[str, StatusCategory] = {
    "open": StatusCategory(
        display_name="Open",
        score=1.0,
        order=1,
        symbols=(" ", ""),
        aliases=("todo", "new", "unstarted", "incomplete", "not started", "to do", "待办", "未完成"),
    ),
    "inProgress": StatusCategory(
        display_name="In progress",
        score=0.75,
        order=2,
        symbols=("/", "~"),
        aliases=("in-progress", "wip", "working", "ongoing", "current", "进行中", "正在做"),
    ),
    "completed": StatusCategory(
        display_name="Completed",
        score=0.2,
        order=6,
        symbols=("x", "X"),
        aliases=("done", "finished", "closed", "resolved", "complete", "完成", "已完成"),
    ),
    "cancelled": StatusCategory(
        display_name="Cancelled",
        score=0.1,
        order=7,
        symbols=("-",),
        aliases=("canceled", "abandoned", "dropped", "discarded", "rejected", "取消", "已取消"),
    ),
}

DEFAULT_COEFFICIENTS: Dict[str, float] = {
    "relevance": 20.0,
    "due_date": 4.0,
    "priority": 1.0,
    "status": 1.0,
}

DEFAULT_DUE_DATE_SCORES: Dict[str, float] = {
    BUCKET_OVERDUE: 1.5,
    BUCKET_WEEK: 1.0,
    BUCKET_MONTH: 0.5,
    BUCKET_LATER: 0.2,
    BUCKET_NONE: 0.1,
}

DEFAULT_PRIORITY_SCORES: Dict[Any, float] = {
    1: 1.0,
    2: 0.75,
    3: 0.5,
    4: 0.2,
    NO_PRIORITY: 0.1,
}


def normalize_status_key(value: str) -> str:
    """Lowercase and drop separators so 'In-Progress' matches 'inprogress'."""
    return "".join(ch for ch in value.lower() if ch not in " -_")


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration snapshot for one request."""

    coefficients: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_COEFFICIENTS))
    relevance_core_weight: float = 0.2
    position_decay: float = 0.5
    due_date_scores: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_DUE_DATE_SCORES)
    )
    priority_scores: Mapping[Any, float] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_SCORES)
    )
    status_categories: Mapping[str, StatusCategory] = field(
        default_factory=lambda: dict(DEFAULT_STATUS_CATEGORIES)
    )
    quality_floor: float = 0.0
    min_relevance: float = 0.0
    max_recommendations: int = 20
    max_context_tasks: int = 100
    sort_spec: Tuple[str, ...] = (SORT_RELEVANCE,)
    stopwords: Tuple[str, ...] = ()
    script_dedup: bool = True
    max_chat_history: int = 20
    activate_sorted_dimensions: bool = False

    def __post_init__(self) -> None:
        self._validate()

    # -----------------------------------------------------------------------
    # Construction
    # -----------------------------------------------------------------------

    @classmethod
    def from_settings(cls, overrides: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        """
        Build a snapshot from the TASK_CHAT_ENGINE Django setting.

        Args:
            overrides: Per-call values applied on top of the settings.

        Raises:
            ImproperlyConfigured: If a value is out of range or unknown.
        """
        values: Dict[str, Any] = dict(getattr(settings, "TASK_CHAT_ENGINE", None) or {})
        if overrides:
            values.update(overrides)
        return cls._from_mapping(values)

    @classmethod
    def _from_mapping(cls, values: Dict[str, Any]) -> "EngineConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ImproperlyConfigured(f"Unknown TASK_CHAT_ENGINE keys: {', '.join(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, value in values.items():
            if name == "coefficients":
                merged = dict(DEFAULT_COEFFICIENTS)
                merged.update(value)
                value = merged
            elif name == "due_date_scores":
                merged = dict(DEFAULT_DUE_DATE_SCORES)
                merged.update(value)
                value = merged
            elif name == "priority_scores":
                merged = dict(DEFAULT_PRIORITY_SCORES)
                for key, score in value.items():
                    merged[_priority_key(key)] = score
                value = merged
            elif name == "status_categories":
                value = {
                    key: cat if isinstance(cat, StatusCategory) else _status_category(key, cat)
                    for key, cat in value.items()
                }
            elif name in ("sort_spec", "stopwords"):
                value = tuple(value)
            kwargs[name] = value
        return cls(**kwargs)

    def with_overrides(self, **changes: Any) -> "EngineConfig":
        """Return a copy with the given fields replaced (and re-validated)."""
        return dataclasses.replace(self, **changes)

    # -----------------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------------

    def coefficient(self, name: str) -> float:
        return float(self.coefficients.get(name, 0.0))

    def resolve_status(self, value: str) -> Optional[str]:
        """
        Map a status symbol, key, alias or display name to a category key.

        Exact symbol matches are tried first because symbols are case sensitive
        ("x" and "X" may differ); everything else compares normalized.
        """
        for key, category in self.status_categories.items():
            if value in category.symbols:
                return key

        wanted = normalize_status_key(value)
        if not wanted:
            return None
        for key, category in self.status_categories.items():
            names = (key, category.display_name) + tuple(category.aliases)
            if any(normalize_status_key(name) == wanted for name in names):
                return key
        return None

    def status_order(self, category: Optional[str]) -> int:
        if category is None:
            return UNKNOWN_STATUS_ORDER
        found = self.status_categories.get(category)
        return found.order if found is not None else UNKNOWN_STATUS_ORDER

    def signature(self) -> Tuple[Any, ...]:
        """Hashable fingerprint of the values that influence scoring."""
        return (
            tuple(sorted((k, float(v)) for k, v in self.coefficients.items())),
            self.relevance_core_weight,
            self.position_decay,
            tuple(sorted((k, float(v)) for k, v in self.due_date_scores.items())),
            tuple(sorted((str(k), float(v)) for k, v in self.priority_scores.items())),
            tuple(sorted((k, c.score) for k, c in self.status_categories.items())),
        )

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------

    def _validate(self) -> None:
        for name in DEFAULT_COEFFICIENTS:
            if name not in self.coefficients:
                raise ImproperlyConfigured(f"Missing coefficient '{name}'")
        for name, value in self.coefficients.items():
            if name not in DEFAULT_COEFFICIENTS:
                raise ImproperlyConfigured(f"Unknown coefficient '{name}'")
            if float(value) < 0:
                raise ImproperlyConfigured(f"Coefficient '{name}' must be non-negative")

        missing_buckets = [b for b in DUE_DATE_BUCKETS if b not in self.due_date_scores]
        if missing_buckets:
            raise ImproperlyConfigured(
                f"due_date_scores is missing buckets: {', '.join(missing_buckets)}"
            )
        buckets = [float(self.due_date_scores[b]) for b in DUE_DATE_BUCKETS]
        if any(buckets[i] <= buckets[i + 1] for i in range(len(buckets) - 1)):
            raise ImproperlyConfigured(
                "due_date_scores must strictly decrease: overdue > week > month > later > none"
            )

        levels = [self.priority_scores.get(level) for level in (1, 2, 3, 4)]
        if any(score is None for score in levels) or NO_PRIORITY not in self.priority_scores:
            raise ImproperlyConfigured("priority_scores must define levels 1-4 and 'none'")
        if any(levels[i] <= levels[i + 1] for i in range(3)):
            raise ImproperlyConfigured("priority_scores must strictly decrease from 1 to 4")
        if self.priority_scores[NO_PRIORITY] == levels[3]:
            raise ImproperlyConfigured("'none' priority must score differently from priority 4")

        if not 0.0 <= self.quality_floor <= 1.0:
            raise ImproperlyConfigured("quality_floor must be between 0 and 1")
        if self.min_relevance < 0:
            raise ImproperlyConfigured("min_relevance must be non-negative")
        if not 0.0 <= self.position_decay < 1.0:
            raise ImproperlyConfigured("position_decay must be in [0, 1)")
        if self.max_recommendations < 1:
            raise ImproperlyConfigured("max_recommendations must be at least 1")
        if self.max_context_tasks < 1:
            raise ImproperlyConfigured("max_context_tasks must be at least 1")

        bad_keys = [key for key in self.sort_spec if key not in SORT_KEYS]
        if bad_keys:
            raise ImproperlyConfigured(f"Unknown sort keys: {', '.join(bad_keys)}")


def _priority_key(key: Any) -> Any:
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return key


def _status_category(key: str, raw: Mapping[str, Any]) -> StatusCategory:
    try:
        return StatusCategory(
            display_name=raw.get("display_name", key),
            score=float(raw["score"]),
            order=int(raw.get("order", UNKNOWN_STATUS_ORDER)),
            symbols=tuple(raw.get("symbols", ())),
            aliases=tuple(raw.get("aliases", ())),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ImproperlyConfigured(f"Invalid status category '{key}': {e}") from e
