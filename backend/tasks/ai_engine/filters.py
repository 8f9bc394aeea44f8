# tasks/ai_engine/filters.py
"""
Compound Filter Engine
======================

Two passes, cheapest first:

- Tier A (structured): priority, due date, status, folder and tag filters,
  evaluated on a TaskProjection (a handful of scalar fields). Raw records
  are only materialized into Tasks once they survive this tier.
- Tier B (keyword + quality): keyword matching, the minimum relevance floor
  and the quality floor, on Tier A survivors only.

Both passes preserve input order and look at one task at a time.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, List, NamedTuple, Optional, Sequence, Tuple

from .config import EngineConfig
from .dates import matches_due_filter
from .scoring import ScoreBoard, task_status_category
from .types import PRIORITY_ANY, PRIORITY_NONE, PropertyFilters, QueryIntent, Task

logger = logging.getLogger(__name__)


class TaskProjection(NamedTuple):
    """The structured fields Tier A needs, and nothing else."""

    index: int
    priority: Optional[int]
    due_date: Optional[datetime.date]
    status_category: Optional[str]
    folder: str
    tags: FrozenSet[str]

    @classmethod
    def from_task(cls, index: int, task: Task, config: EngineConfig) -> "TaskProjection":
        return cls(
            index=index,
            priority=task.priority,
            due_date=task.due_date,
            status_category=task_status_category(task, config),
            folder=task.folder or "",
            tags=frozenset(tag.lstrip("#").lower() for tag in task.tags),
        )


@dataclass(frozen=True)
class FilterOutcome:
    tasks: Tuple[Task, ...]
    total: int = 0
    tier_a_count: int = 0
    rejected_by_keyword: int = 0
    rejected_by_relevance: int = 0
    rejected_by_quality: int = 0


def _folder_matches(folder: str, prefix: str) -> bool:
    folder = folder.strip("/").lower()
    prefix = prefix.strip("/").lower()
    if not prefix:
        return True
    return folder == prefix or folder.startswith(prefix + "/")


def matches_properties(
    projection: TaskProjection, filters: PropertyFilters, today: datetime.date
) -> bool:
    """True iff the projection satisfies every non-null field of ``filters``."""
    priority = filters.priority
    if priority is not None:
        if priority == PRIORITY_ANY:
            if projection.priority is None:
                return False
        elif priority == PRIORITY_NONE:
            if projection.priority is not None:
                return False
        elif projection.priority not in priority:
            return False

    if filters.due_date is not None:
        if not matches_due_filter(projection.due_date, filters.due_date, today):
            return False

    if filters.status is not None and projection.status_category not in filters.status:
        return False

    if filters.folder is not None and not _folder_matches(projection.folder, filters.folder):
        return False

    if filters.tags is not None:
        wanted = {tag.lstrip("#").lower() for tag in filters.tags}
        if not wanted & projection.tags:
            return False

    return True


def matches_keywords(text: str, keywords: Sequence[str]) -> bool:
    lowered = (text or "").lower()
    return any(term.lower() in lowered for term in keywords)


class CompoundFilterEngine:
    """Applies a QueryIntent's filters to a corpus."""

    def apply(
        self,
        records: Sequence[Any],
        intent: QueryIntent,
        config: EngineConfig,
        board: ScoreBoard,
        today: datetime.date,
        project: Optional[Callable[[int, Any, EngineConfig], TaskProjection]] = None,
        materialize: Optional[Callable[[Any], Task]] = None,
    ) -> FilterOutcome:
        """
        Filter ``records`` down to the tasks matching ``intent``.

        Args:
            records: Tasks, or raw source records when ``materialize`` is given.
            intent: Resolved query intent.
            config: Snapshot with the relevance and quality floors.
            board: The request's ScoreBoard; Tier B scores land in it.
            today: Reference date for due-date filters.
            project: Builds a TaskProjection from a record (default: from a Task).
            materialize: Turns a surviving record into a Task (default: identity).

        Returns:
            FilterOutcome with the surviving tasks in input order.
        """
        project = project or TaskProjection.from_task
        filters = intent.filters

        # Tier A
        if filters.is_empty():
            tier_a: List[int] = list(range(len(records)))
        else:
            tier_a = [
                index
                for index, record in enumerate(records)
                if matches_properties(project(index, record, config), filters, today)
            ]

        # Tier B
        keywords = intent.keywords.expanded
        check_relevance = bool(keywords) and config.min_relevance > 0
        check_quality = config.quality_floor > 0

        survivors: List[Task] = []
        by_keyword = by_relevance = by_quality = 0
        for index in tier_a:
            record = records[index]
            task = materialize(record) if materialize is not None else record

            if keywords and not matches_keywords(task.text, keywords):
                by_keyword += 1
                continue

            vector = board.score(task)
            if check_relevance and vector.relevance < config.min_relevance:
                by_relevance += 1
                continue
            if check_quality and board.quality_ratio(task) < config.quality_floor:
                by_quality += 1
                continue
            survivors.append(task)

        logger.info(
            f"Filter: {len(records)} tasks -> {len(tier_a)} after properties -> "
            f"{len(survivors)} after keywords/floors"
        )

        return FilterOutcome(
            tasks=tuple(survivors),
            total=len(records),
            tier_a_count=len(tier_a),
            rejected_by_keyword=by_keyword,
            rejected_by_relevance=by_relevance,
            rejected_by_quality=by_quality,
        )
