# tasks/ai_engine/syntax.py
"""
Structured Query Syntax
=======================

Deterministic extraction of explicit filter syntax from a raw query. This runs
before (and always overrides) the semantic expander.

Recognized syntax:
------------------
- Priority:  p1..p4, p:1,2, priority:any, p:none, "priority 1",
             "high priority", "no priority"
- Due date:  d:today, due:next-week, d:2024-03-01, d:+3d, d:today,tomorrow,
             "due before:2024-03-01", "due after:2024-02-01", overdue, "no date"
- Status:    s:open, status:done,wip
- Folder:    folder:Projects/Work, folder:"Team Notes"
- Tags:      #urgent

Repeated or comma-separated values are unioned (d:today d:tomorrow).

Natural-language terms (property_terms.py) come last: "urgent", "紧急",
"today", "今天", "in 5 days", "from 2024-03-01 to 2024-03-15". They are
always removed from the free text but only set a dimension that no explicit
token has set.

A recognized key with a value that names nothing (p:7, d:someday,
s:unknownstate) raises MalformedStructuredSyntax.
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .config import EngineConfig
from .dates import DUE_ANY, DUE_NONE, normalize_due_value, parse_iso_date
from .errors import MalformedStructuredSyntax
from .property_terms import (
    BETWEEN_PATTERN,
    DUE_TERM_PATTERN,
    DUE_TERM_VALUES,
    PRIORITY_TERM_PATTERN,
    PRIORITY_TERM_VALUES,
    RELATIVE_PHRASE_PATTERN,
    normalize_term,
)
from .types import (
    PRIORITY_ANY,
    PRIORITY_NONE,
    DueDateRange,
    DueDateValue,
    PriorityFilter,
    DueDateFilter,
    PropertyFilters,
)

logger = logging.getLogger(__name__)

# Order matters: quoted folder names and the two-word "due before:" forms must
# be consumed before the generic key:value patterns see them.
FOLDER_PATTERN = re.compile(r'(?<![\w])folder:(?:"([^"]*)"|(\S*))', re.IGNORECASE)
DUE_BEFORE_PATTERN = re.compile(r"\bdue\s+before:\s*(\S*)", re.IGNORECASE)
DUE_AFTER_PATTERN = re.compile(r"\bdue\s+after:\s*(\S*)", re.IGNORECASE)
PRIORITY_UNIFIED_PATTERN = re.compile(r"(?<![\w])(?:p|priority):([^\s&|]*)", re.IGNORECASE)
STATUS_PATTERN = re.compile(r"(?<![\w])(?:s|status):([^\s&|]*)", re.IGNORECASE)
DUE_UNIFIED_PATTERN = re.compile(r"(?<![\w])(?:d|due):([^\s&|]*)", re.IGNORECASE)
PRIORITY_LEGACY_PATTERN = re.compile(r"(?<![\w:])p([1-4])\b", re.IGNORECASE)
PRIORITY_PHRASE_PATTERN = re.compile(r"\bpriority\s+([1-4])\b", re.IGNORECASE)
PRIORITY_LEVEL_PATTERN = re.compile(r"\b(high|medium|low)[\s-]+priority\b", re.IGNORECASE)
NO_PRIORITY_PATTERN = re.compile(r"\bno\s+priority\b", re.IGNORECASE)
NO_DATE_PATTERN = re.compile(r"\bno\s+(?:due\s+)?date\b", re.IGNORECASE)
OVERDUE_PATTERN = re.compile(r"\b(?:overdue|over\s+due|od)\b", re.IGNORECASE)
TAG_PATTERN = re.compile(r"(?<![\w&])#([\w-]+)", re.UNICODE)
OPERATOR_PATTERN = re.compile(r"(?<!\S)[&|!]+(?!\S)")

PRIORITY_LEVEL_WORDS = {"high": 1, "medium": 2, "low": 3}


@dataclass(frozen=True)
class ExtractionResult:
    filters: PropertyFilters
    free_text: str
    matched_tokens: Tuple[str, ...] = ()


class _Collector:
    """Mutable accumulator used while scanning one query."""

    def __init__(self) -> None:
        self.priorities: List[int] = []
        self.priority_special: Optional[str] = None
        self.natural_priorities: List[int] = []
        self.natural_priority_any = False
        self.dues: List[DueDateValue] = []
        self.natural_dues: List[DueDateValue] = []
        self.due_mentioned = False
        self.due_after: Optional[DueDateRange] = None
        self.due_before: Optional[DueDateRange] = None
        self.statuses: List[str] = []
        self.folder: Optional[str] = None
        self.tags: List[str] = []
        self.tokens: List[str] = []

    def add_priority(self, level: int) -> None:
        if level not in self.priorities:
            self.priorities.append(level)

    def add_due(self, value: DueDateValue, natural: bool = False) -> None:
        target = self.natural_dues if natural else self.dues
        if value not in target:
            target.append(value)

    def build(self) -> PropertyFilters:
        priority: Optional[PriorityFilter] = None
        if self.priorities:
            priority = tuple(self.priorities)
        elif self.priority_special is not None:
            priority = self.priority_special
        elif self.natural_priorities:
            priority = tuple(sorted(self.natural_priorities))
        elif self.natural_priority_any:
            priority = PRIORITY_ANY

        dues = self.dues or self.natural_dues
        due: Optional[DueDateFilter] = None
        if len(dues) == 1:
            due = dues[0]
        elif dues:
            due = tuple(dues)
        elif self.due_mentioned:
            due = DUE_ANY

        if self.due_after is not None or self.due_before is not None:
            due = DueDateRange(
                start=self.due_after.start if self.due_after else None,
                end=self.due_before.end if self.due_before else None,
            )

        return PropertyFilters(
            priority=priority,
            due_date=due,
            status=tuple(self.statuses) if self.statuses else None,
            folder=self.folder,
            tags=frozenset(self.tags) if self.tags else None,
        )


def extract_structured(query: str, config: EngineConfig) -> ExtractionResult:
    """
    Pull every recognized filter out of ``query``.

    Args:
        query: Raw user query.
        config: Snapshot used to resolve status names.

    Returns:
        ExtractionResult with the filters and the remaining free text.

    Raises:
        MalformedStructuredSyntax: If a recognized key has an invalid value.
    """
    found = _Collector()
    text = query

    text = FOLDER_PATTERN.sub(lambda m: _take_folder(m, found), text)
    text = DUE_BEFORE_PATTERN.sub(lambda m: _take_due_bound(m, found, before=True), text)
    text = DUE_AFTER_PATTERN.sub(lambda m: _take_due_bound(m, found, before=False), text)
    text = PRIORITY_UNIFIED_PATTERN.sub(lambda m: _take_priority(m, found), text)
    text = STATUS_PATTERN.sub(lambda m: _take_status(m, found, config), text)
    text = DUE_UNIFIED_PATTERN.sub(lambda m: _take_due(m, found), text)
    text = PRIORITY_LEGACY_PATTERN.sub(lambda m: _take_level(m, found, int(m.group(1))), text)
    text = PRIORITY_PHRASE_PATTERN.sub(lambda m: _take_level(m, found, int(m.group(1))), text)
    text = PRIORITY_LEVEL_PATTERN.sub(
        lambda m: _take_level(m, found, PRIORITY_LEVEL_WORDS[m.group(1).lower()]), text
    )
    text = NO_PRIORITY_PATTERN.sub(lambda m: _take_special_priority(m, found), text)
    text = NO_DATE_PATTERN.sub(lambda m: _take_special_due(m, found, DUE_NONE), text)
    text = OVERDUE_PATTERN.sub(lambda m: _take_special_due(m, found, "overdue"), text)
    text = TAG_PATTERN.sub(lambda m: _take_tag(m, found), text)
    text = BETWEEN_PATTERN.sub(lambda m: _take_between(m, found), text)
    text = RELATIVE_PHRASE_PATTERN.sub(lambda m: _take_relative_phrase(m, found), text)
    text = PRIORITY_TERM_PATTERN.sub(lambda m: _take_priority_term(m, found), text)
    text = DUE_TERM_PATTERN.sub(lambda m: _take_due_term(m, found), text)
    text = OPERATOR_PATTERN.sub(" ", text)

    free_text = " ".join(text.split())
    filters = found.build()

    if found.tokens:
        logger.debug(f"Structured syntax {found.tokens} -> {filters}; free text '{free_text}'")

    return ExtractionResult(filters=filters, free_text=free_text, matched_tokens=tuple(found.tokens))


# ---------------------------------------------------------------------------
# Token handlers (each returns the replacement text)
# ---------------------------------------------------------------------------


def _malformed(token: str, key: str, detail: str) -> MalformedStructuredSyntax:
    return MalformedStructuredSyntax(f"Invalid {key} filter '{token}': {detail}", token=token, key=key)


def _take_folder(match: re.Match, found: _Collector) -> str:
    value = match.group(1) if match.group(1) is not None else match.group(2)
    value = (value or "").strip().strip("/")
    if not value:
        raise _malformed(match.group(0), "folder", "folder name is empty")
    found.folder = value
    found.tokens.append(match.group(0))
    return " "


def _take_due_bound(match: re.Match, found: _Collector, before: bool) -> str:
    day = parse_iso_date(match.group(1))
    if day is None:
        raise _malformed(match.group(0), "due", "expected a YYYY-MM-DD date")
    # before/after are exclusive bounds
    if before:
        found.due_before = DueDateRange(end=day - datetime.timedelta(days=1))
    else:
        found.due_after = DueDateRange(start=day + datetime.timedelta(days=1))
    found.tokens.append(match.group(0))
    return " "


def _take_priority(match: re.Match, found: _Collector) -> str:
    raw = match.group(1).strip().lower()
    if not raw:
        raise _malformed(match.group(0), "priority", "value is empty")
    for part in filter(None, raw.split(",")):
        if part in ("any", "all"):
            found.priority_special = PRIORITY_ANY
        elif part == "none":
            found.priority_special = PRIORITY_NONE
        elif part.isdigit() and 1 <= int(part) <= 4:
            found.add_priority(int(part))
        else:
            raise _malformed(match.group(0), "priority", f"unknown priority '{part}'")
    found.tokens.append(match.group(0))
    return " "


def _take_level(match: re.Match, found: _Collector, level: int) -> str:
    found.add_priority(level)
    found.tokens.append(match.group(0))
    return " "


def _take_special_priority(match: re.Match, found: _Collector) -> str:
    found.priority_special = PRIORITY_NONE
    found.tokens.append(match.group(0))
    return " "


def _take_status(match: re.Match, found: _Collector, config: EngineConfig) -> str:
    raw = match.group(1).strip()
    if not raw:
        raise _malformed(match.group(0), "status", "value is empty")
    for part in filter(None, raw.split(",")):
        if part.lower() in ("any", "all"):
            continue
        category = config.resolve_status(part)
        if category is None:
            raise _malformed(match.group(0), "status", f"unknown status '{part}'")
        if category not in found.statuses:
            found.statuses.append(category)
    found.tokens.append(match.group(0))
    return " "


def _take_due(match: re.Match, found: _Collector) -> str:
    raw = match.group(1).strip()
    if not raw:
        raise _malformed(match.group(0), "due", "value is empty")
    for part in filter(None, raw.split(",")):
        value = normalize_due_value(part)
        if value is None:
            raise _malformed(match.group(0), "due", f"unknown due date '{part}'")
        found.add_due(value)
    found.tokens.append(match.group(0))
    return " "


def _take_special_due(match: re.Match, found: _Collector, value: str) -> str:
    found.add_due(value, natural=True)
    found.tokens.append(match.group(0))
    return " "


def _take_between(match: re.Match, found: _Collector) -> str:
    start = parse_iso_date(match.group(1))
    end = parse_iso_date(match.group(2))
    if start is None or end is None or start > end:
        # Not a usable range; leave the words in the free text
        return match.group(0)
    found.add_due(DueDateRange(start=start, end=end), natural=True)
    found.tokens.append(match.group(0))
    return " "


def _take_relative_phrase(match: re.Match, found: _Collector) -> str:
    found.add_due(f"+{int(match.group(1))}{match.group(2)[0].lower()}", natural=True)
    found.tokens.append(match.group(0))
    return " "


def _take_priority_term(match: re.Match, found: _Collector) -> str:
    value = PRIORITY_TERM_VALUES[normalize_term(match.group(0))]
    if value == PRIORITY_ANY:
        found.natural_priority_any = True
    elif value not in found.natural_priorities:
        found.natural_priorities.append(value)
    found.tokens.append(match.group(0))
    return " "


def _take_due_term(match: re.Match, found: _Collector) -> str:
    value = DUE_TERM_VALUES[normalize_term(match.group(0))]
    if value == DUE_ANY:
        found.due_mentioned = True
    else:
        found.add_due(value, natural=True)
    found.tokens.append(match.group(0))
    return " "


def _take_tag(match: re.Match, found: _Collector) -> str:
    tag = match.group(1).lower()
    if tag not in found.tags:
        found.tags.append(tag)
    found.tokens.append(match.group(0))
    return " "
