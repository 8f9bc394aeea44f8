# tasks/ai_engine/types.py
"""
Engine Data Types
=================

Plain value objects passed between the pipeline stages.

Tasks are borrowed from the task source and are never mutated by the engine.
Per-request scores live in a ScoreBoard (see scoring.py), not on the Task.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Provenance of the keyword set inside a QueryIntent
PROVENANCE_NONE = "none"
PROVENANCE_SEMANTIC = "semantic"
PROVENANCE_FALLBACK = "deterministic-fallback"
PROVENANCE_LITERAL = "literal"

# Sort keys understood by the sorter
SORT_RELEVANCE = "relevance"
SORT_DUE_DATE = "dueDate"
SORT_PRIORITY = "priority"
SORT_STATUS = "status"
SORT_CREATED = "created"
SORT_ALPHABETICAL = "alphabetical"

SORT_KEYS = (
    SORT_RELEVANCE,
    SORT_DUE_DATE,
    SORT_PRIORITY,
    SORT_STATUS,
    SORT_CREATED,
    SORT_ALPHABETICAL,
)

# Special values for the priority filter
PRIORITY_ANY = "any"
PRIORITY_NONE = "none"


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Task:
    """A single task as delivered by the task source."""

    id: str
    text: str
    status: Optional[str] = None
    status_category: Optional[str] = None
    priority: Optional[int] = None
    due_date: Optional[datetime.date] = None
    created_date: Optional[datetime.date] = None
    completed_date: Optional[datetime.date] = None
    folder: str = ""
    tags: Tuple[str, ...] = ()
    source_path: str = ""
    line_number: Optional[int] = None


# ---------------------------------------------------------------------------
# Query intent
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DueDateRange:
    """Inclusive date range; either end may be open."""

    start: Optional[datetime.date] = None
    end: Optional[datetime.date] = None

    def contains(self, value: datetime.date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


PriorityFilter = Union[Tuple[int, ...], str]
DueDateValue = Union[str, DueDateRange]
# A single bucket/range, or a tuple of them matched as a union (d:today,tomorrow)
DueDateFilter = Union[DueDateValue, Tuple[DueDateValue, ...]]


@dataclass(frozen=True)
class PropertyFilters:
    """
    Structured constraints extracted from a query.

    A field set to None leaves that dimension unconstrained.
    """

    priority: Optional[PriorityFilter] = None
    due_date: Optional[DueDateFilter] = None
    status: Optional[Tuple[str, ...]] = None
    folder: Optional[str] = None
    tags: Optional[FrozenSet[str]] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.priority, self.due_date, self.status, self.folder, self.tags)
        )

    def merged_over(self, other: "PropertyFilters") -> "PropertyFilters":
        """Return a copy where fields unset here are taken from `other`."""
        return PropertyFilters(
            priority=self.priority if self.priority is not None else other.priority,
            due_date=self.due_date if self.due_date is not None else other.due_date,
            status=self.status if self.status is not None else other.status,
            folder=self.folder if self.folder is not None else other.folder,
            tags=self.tags if self.tags is not None else other.tags,
        )


@dataclass(frozen=True)
class KeywordSet:
    """Core intent terms plus the broader set actually matched against text."""

    core: Tuple[str, ...] = ()
    expanded: Tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "KeywordSet":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.expanded


@dataclass(frozen=True)
class QueryIntent:
    filters: PropertyFilters = field(default_factory=PropertyFilters)
    keywords: KeywordSet = field(default_factory=KeywordSet)
    provenance: str = PROVENANCE_NONE
    query: str = ""
    diagnostics: Tuple[str, ...] = ()

    def with_filters(self, filters: PropertyFilters) -> "QueryIntent":
        return replace(self, filters=filters)


# ---------------------------------------------------------------------------
# Scores and references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreVector:
    relevance: float = 0.0
    due_date: float = 0.0
    priority: float = 0.0
    status: float = 0.0
    final: float = 0.0


@dataclass(frozen=True)
class ReferenceMap:
    """Ordered (original id -> display position) pairs produced by reconciliation."""

    pairs: Tuple[Tuple[int, int], ...] = ()
    degraded: bool = False

    def position_of(self, original_id: int) -> Optional[int]:
        for ref_id, position in self.pairs:
            if ref_id == original_id:
                return position
        return None

    def __len__(self) -> int:
        return len(self.pairs)


# ---------------------------------------------------------------------------
# Model I/O
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class UsageReport:
    """Token and cost report. Advisory only; nothing downstream depends on it."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    is_estimated: bool = False


@dataclass(frozen=True)
class ReplyChunk:
    text: str = ""
    done: bool = False
    usage: Optional[UsageReport] = None
