# tasks/ai_engine/reconciler.py
"""
Response Reconciler
===================

Maps a language model's free-text reply back onto the ranked candidate list
that was given to it as context.

The model is told to cite tasks as ``[TASK_<n>]`` where n is the 1-based
position of the task in that context list. Anything else in the reply is
treated as prose. The reconciler never raises on model output: unknown or
out-of-range references are dropped and logged.

States:
-------
- references found and valid   -> mention order becomes display order
- no references at all         -> engine top-N, degraded=False
- references found, all invalid -> engine top-N, degraded=True (warning)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from .types import ReferenceMap, ScoreVector, Task

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"\[TASK_(\d{1,6})\]")
REASONING_PATTERN = re.compile(
    r"<(think|thinking|reasoning|thought)>.*?</\1>\s*", re.IGNORECASE | re.DOTALL
)

DEGRADED_WARNING_PREFIX = "Warning: "
DEGRADED_WARNING = (
    "The assistant's task references could not be matched to the task list, "
    "so the recommendations below use the engine's own ranking."
)


def strip_reasoning(text: str) -> str:
    """Remove <think>/<reasoning>/<thought> blocks some models emit."""
    return REASONING_PATTERN.sub("", text or "").strip()


def format_display_reference(position: int) -> str:
    return f"**Task {position}**"


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of mapping one reply onto the candidate list."""

    tasks: Tuple[Task, ...]
    reference_map: ReferenceMap
    reply_text: str
    attempted: int = 0
    discarded: Tuple[int, ...] = ()

    @property
    def degraded(self) -> bool:
        return self.reference_map.degraded

    @property
    def warning(self) -> Optional[str]:
        return DEGRADED_WARNING if self.degraded else None


class ResponseReconciler:
    """Stateless; one instance can serve any number of requests."""

    def reconcile(
        self,
        reply: str,
        candidates: Sequence[Task],
        scores: Optional[Mapping[str, ScoreVector]] = None,
        max_recommendations: int = 20,
    ) -> Reconciliation:
        """
        Reconcile ``reply`` against ``candidates``.

        Args:
            reply: Complete model reply (never a partial chunk).
            candidates: The exact list, in the exact order, sent as context.
            scores: Per-task score vectors, used for the fallback ranking.
            max_recommendations: Upper bound on the returned task list.

        Returns:
            A Reconciliation with the recommended tasks, the reference map and
            the reply rewritten to display positions.
        """
        text = strip_reasoning(reply)
        limit = max(1, int(max_recommendations))

        referenced_ids = [int(m.group(1)) for m in REFERENCE_PATTERN.finditer(text)]
        attempted = len(referenced_ids)

        positions: List[int] = []
        kept_ids: List[int] = []
        discarded: List[int] = []
        for ref_id in referenced_ids:
            index = ref_id - 1
            if not 0 <= index < len(candidates):
                discarded.append(ref_id)
                continue
            if index in positions:
                continue
            positions.append(index)
            kept_ids.append(ref_id)

        if discarded:
            logger.warning(
                f"Reconciler: dropped {len(discarded)} out-of-range reference(s) "
                f"{discarded} against {len(candidates)} candidates"
            )

        if positions:
            positions = positions[:limit]
            kept_ids = kept_ids[:limit]
            reference_map = ReferenceMap(
                pairs=tuple((ref_id, n) for n, ref_id in enumerate(kept_ids, start=1)),
                degraded=False,
            )
            chosen = tuple(candidates[i] for i in positions)
        else:
            degraded = attempted > 0
            if degraded:
                logger.warning(
                    f"Reconciler: all {attempted} reference(s) invalid; "
                    "falling back to engine ranking"
                )
            else:
                logger.info("Reconciler: reply cited no tasks; using engine ranking")
            order = self._fallback_order(candidates, scores)[:limit]
            reference_map = ReferenceMap(
                pairs=tuple((index + 1, n) for n, index in enumerate(order, start=1)),
                degraded=degraded,
            )
            chosen = tuple(candidates[i] for i in order)

        reply_text = self.rewrite_references(text, reference_map)
        if reference_map.degraded:
            reply_text = f"{DEGRADED_WARNING_PREFIX}{DEGRADED_WARNING}\n\n{reply_text}"

        return Reconciliation(
            tasks=chosen,
            reference_map=reference_map,
            reply_text=reply_text,
            attempted=attempted,
            discarded=tuple(discarded),
        )

    def rewrite_references(self, text: str, reference_map: ReferenceMap) -> str:
        """Replace each resolvable [TASK_n] with its display position."""
        def _replace(match: re.Match) -> str:
            position = reference_map.position_of(int(match.group(1)))
            if position is None:
                return match.group(0)
            return format_display_reference(position)

        return REFERENCE_PATTERN.sub(_replace, text)

    @staticmethod
    def _fallback_order(
        candidates: Sequence[Task], scores: Optional[Mapping[str, ScoreVector]]
    ) -> List[int]:
        """Candidate indexes by finalScore descending, ties in list order."""
        scores = scores or {}

        def final(index: int) -> float:
            vector = scores.get(candidates[index].id)
            return vector.final if vector is not None else 0.0

        return sorted(range(len(candidates)), key=lambda i: (-final(i), i))
