# tasks/ai_engine/sorting.py
"""
Multi-criteria sorting.

Each task maps to a key tuple: one component per SortSpec entry, then
-finalScore, then the task's position in the input. Comparing tuples is a
strict weak ordering, so the sort is transitive and repeatable by construction.
"""

from typing import Any, List, Sequence, Tuple

from .config import EngineConfig
from .scoring import ScoreBoard, task_status_category
from .types import (
    SORT_ALPHABETICAL,
    SORT_CREATED,
    SORT_DUE_DATE,
    SORT_PRIORITY,
    SORT_RELEVANCE,
    SORT_STATUS,
    Task,
)

# Tasks without a priority sort after priority 4
NO_PRIORITY_RANK = 5


def _component(key: str, task: Task, board: ScoreBoard, config: EngineConfig) -> Any:
    if key == SORT_RELEVANCE:
        return -board.score(task).relevance
    if key == SORT_DUE_DATE:
        # ascending, missing last
        return (1, 0) if task.due_date is None else (0, task.due_date.toordinal())
    if key == SORT_PRIORITY:
        return task.priority if task.priority in (1, 2, 3, 4) else NO_PRIORITY_RANK
    if key == SORT_STATUS:
        return config.status_order(task_status_category(task, config))
    if key == SORT_CREATED:
        # newest first, missing last
        return (1, 0) if task.created_date is None else (0, -task.created_date.toordinal())
    if key == SORT_ALPHABETICAL:
        return (task.text or "").casefold()
    raise ValueError(f"Unknown sort key: {key}")


def sort_key(
    task: Task,
    position: int,
    sort_spec: Sequence[str],
    board: ScoreBoard,
    config: EngineConfig,
) -> Tuple[Any, ...]:
    components = [_component(key, task, board, config) for key in sort_spec]
    components.append(-board.score(task).final)
    components.append(position)
    return tuple(components)


def compare_tasks(
    a: Tuple[int, Task],
    b: Tuple[int, Task],
    sort_spec: Sequence[str],
    board: ScoreBoard,
    config: EngineConfig,
) -> int:
    """Three-way comparison of two (position, task) pairs."""
    key_a = sort_key(a[1], a[0], sort_spec, board, config)
    key_b = sort_key(b[1], b[0], sort_spec, board, config)
    return (key_a > key_b) - (key_a < key_b)


def sort_tasks(
    tasks: Sequence[Task],
    sort_spec: Sequence[str],
    board: ScoreBoard,
    config: EngineConfig,
) -> List[Task]:
    """Return ``tasks`` ordered by ``sort_spec``, then score, then input order."""
    keyed = [
        (sort_key(task, position, sort_spec, board, config), task)
        for position, task in enumerate(tasks)
    ]
    keyed.sort(key=lambda item: item[0])
    return [task for _, task in keyed]
