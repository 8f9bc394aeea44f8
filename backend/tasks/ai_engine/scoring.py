# tasks/ai_engine/scoring.py
"""
Scoring Engine
==============

Four bounded dimension scores per task, combined as

    final = relevance * c_r * a_r + due * c_d * a_d + priority * c_p * a_p
            + status * c_s * a_s

where c_* are the configured coefficients and a_* are 0/1 activation flags:
a dimension only counts when the query constrained it. A "priority 1" query
therefore cannot be reordered by due dates.

Scores are memoized in a ScoreBoard, a scratch map owned by one request.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from .config import NO_PRIORITY, OTHER_STATUS, EngineConfig
from .dates import due_bucket
from .types import QueryIntent, ScoreVector, Task, SORT_DUE_DATE, SORT_PRIORITY, SORT_RELEVANCE, SORT_STATUS

# Used when the status table has no "open"/"other" entry to fall back on
DEFAULT_OPEN_SCORE = 1.0
DEFAULT_OTHER_SCORE = 0.5


# ---------------------------------------------------------------------------
# Dimension scores
# ---------------------------------------------------------------------------


def relevance_score(
    text: str,
    core: Sequence[str],
    expanded: Sequence[str],
    core_weight: float = 0.2,
    position_decay: float = 0.5,
) -> float:
    """
    Keyword relevance of ``text``.

    Each matched term contributes w(pos) = 1 - position_decay * pos / len(text)
    for its first occurrence, so earlier matches weigh more. Core terms count
    once in the core sum (scaled by ``core_weight``) and again in the expanded
    sum; synonyms only count in the expanded sum. Both sums are normalized by
    the number of core terms.

    Returns 0.0 when ``expanded`` is empty.
    """
    if not expanded:
        return 0.0

    lowered = (text or "").lower()
    length = max(len(lowered), 1)

    def weight(term: str) -> float:
        position = lowered.find(term.lower())
        if position < 0:
            return 0.0
        return 1.0 - position_decay * (position / length)

    total_core = max(len(core), 1)
    core_part = sum(weight(term) for term in core) / total_core
    expanded_part = sum(weight(term) for term in expanded) / total_core
    return round(core_part * core_weight + expanded_part, 6)


def due_date_score(
    due: Optional[datetime.date], today: datetime.date, config: EngineConfig
) -> float:
    return float(config.due_date_scores[due_bucket(due, today)])


def priority_score(priority: Optional[int], config: EngineConfig) -> float:
    if priority in config.priority_scores and priority != NO_PRIORITY:
        return float(config.priority_scores[priority])
    return float(config.priority_scores[NO_PRIORITY])


def task_status_category(task: Task, config: EngineConfig) -> Optional[str]:
    """The task's category key, resolving its raw status symbol if needed."""
    if task.status_category:
        return task.status_category
    if task.status is not None:
        return config.resolve_status(task.status)
    return None


def status_score(category: Optional[str], config: EngineConfig, has_status: bool = True) -> float:
    """
    Score a status category from the configured table.

    Unknown categories score like "other"; a task with no status at all is
    treated as open.
    """
    categories = config.status_categories
    if category is not None:
        if category in categories:
            return float(categories[category].score)
        # tolerate "in-progress" vs "inProgress"
        resolved = config.resolve_status(category)
        if resolved is not None:
            return float(categories[resolved].score)
    if not has_status:
        open_category = categories.get("open")
        return float(open_category.score) if open_category else DEFAULT_OPEN_SCORE
    other = categories.get(OTHER_STATUS)
    return float(other.score) if other else DEFAULT_OTHER_SCORE


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Activation:
    relevance: bool = False
    due_date: bool = False
    priority: bool = False
    status: bool = False

    @classmethod
    def from_intent(cls, intent: QueryIntent, config: EngineConfig) -> "Activation":
        filters = intent.filters
        has_keywords = not intent.keywords.is_empty
        activation = cls(
            relevance=has_keywords,
            due_date=filters.due_date is not None,
            priority=filters.priority is not None,
            status=filters.status is not None,
        )
        if config.activate_sorted_dimensions:
            spec = config.sort_spec
            activation = cls(
                relevance=activation.relevance or (SORT_RELEVANCE in spec and has_keywords),
                due_date=activation.due_date or SORT_DUE_DATE in spec,
                priority=activation.priority or SORT_PRIORITY in spec,
                status=activation.status or SORT_STATUS in spec,
            )
        return activation


# ---------------------------------------------------------------------------
# Per-request score memo
# ---------------------------------------------------------------------------


def _task_fingerprint(task: Task) -> Tuple[Any, ...]:
    return (task.text, task.priority, task.due_date, task.status, task.status_category)


class ScoreBoard:
    """
    Request-scoped scratch map of task id -> ScoreVector.

    Every entry remembers the task fields and the scoring signature it was
    computed from; a changed task or a reconfigured board recomputes on the
    next lookup. Never share a board between requests.
    """

    def __init__(
        self,
        config: EngineConfig,
        intent: QueryIntent,
        today: datetime.date,
        activation: Optional[Activation] = None,
    ) -> None:
        self.intent = intent
        self.today = today
        self._entries: Dict[str, Tuple[Tuple[Any, ...], Tuple[Any, ...], ScoreVector]] = {}
        self.reconfigure(config, activation)

    def reconfigure(self, config: EngineConfig, activation: Optional[Activation] = None) -> None:
        self.config = config
        self.activation = activation or Activation.from_intent(self.intent, config)
        self._signature = (config.signature(), self.activation, self.today)

    def score(self, task: Task) -> ScoreVector:
        fingerprint = _task_fingerprint(task)
        entry = self._entries.get(task.id)
        if entry is not None and entry[0] == fingerprint and entry[1] == self._signature:
            return entry[2]
        vector = self._compute(task)
        self._entries[task.id] = (fingerprint, self._signature, vector)
        return vector

    def get(self, task_id: str) -> Optional[ScoreVector]:
        entry = self._entries.get(task_id)
        return entry[2] if entry is not None else None

    def as_dict(self) -> Dict[str, ScoreVector]:
        return {task_id: entry[2] for task_id, entry in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def quality_ratio(self, task: Task) -> float:
        """
        Ungated due/priority/status composite as a share of the best possible.

        Relevance is excluded. Returns 1.0 when all three coefficients are zero.
        """
        config = self.config
        vector = self.score(task)
        c_due = config.coefficient("due_date")
        c_priority = config.coefficient("priority")
        c_status = config.coefficient("status")
        best = (
            max(config.due_date_scores.values()) * c_due
            + max(config.priority_scores.values()) * c_priority
            + max([c.score for c in config.status_categories.values()] + [DEFAULT_OTHER_SCORE]) * c_status
        )
        if best <= 0:
            return 1.0
        actual = vector.due_date * c_due + vector.priority * c_priority + vector.status * c_status
        return actual / best

    def _compute(self, task: Task) -> ScoreVector:
        config = self.config
        keywords = self.intent.keywords
        active = self.activation

        relevance = relevance_score(
            task.text,
            keywords.core,
            keywords.expanded,
            core_weight=config.relevance_core_weight,
            position_decay=config.position_decay,
        )
        due = due_date_score(task.due_date, self.today, config)
        priority = priority_score(task.priority, config)
        status = status_score(
            task_status_category(task, config),
            config,
            has_status=task.status is not None or task.status_category is not None,
        )

        final = 0.0
        if active.relevance:
            final += relevance * config.coefficient("relevance")
        if active.due_date:
            final += due * config.coefficient("due_date")
        if active.priority:
            final += priority * config.coefficient("priority")
        if active.status:
            final += status * config.coefficient("status")

        return ScoreVector(
            relevance=relevance,
            due_date=due,
            priority=priority,
            status=status,
            final=round(final, 6),
        )
