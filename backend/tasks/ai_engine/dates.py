# tasks/ai_engine/dates.py
"""
Due-date helpers shared by the syntax extractor, filter engine and scorer.

Weeks run Monday to Sunday. All functions take an explicit ``today`` so results
never depend on the wall clock at call time.
"""

from __future__ import annotations

import calendar
import datetime
import re
from typing import Optional, Tuple, Union

from .config import BUCKET_LATER, BUCKET_MONTH, BUCKET_NONE, BUCKET_OVERDUE, BUCKET_WEEK
from .types import DueDateRange

# Horizons for the scoring buckets, in days from today
NEAR_TERM_DAYS = 7
MONTH_DAYS = 30

DUE_ANY = "any"
DUE_NONE = "none"

# Named due-date filters accepted by d:/due: syntax
DUE_KEYWORDS = {
    "today": "today",
    "tomorrow": "tomorrow",
    "yesterday": "yesterday",
    "overdue": "overdue",
    "od": "overdue",
    "future": "future",
    "week": "week",
    "thisweek": "week",
    "this-week": "week",
    "nextweek": "next-week",
    "next-week": "next-week",
    "lastweek": "last-week",
    "last-week": "last-week",
    "month": "month",
    "thismonth": "month",
    "this-month": "month",
    "nextmonth": "next-month",
    "next-month": "next-month",
    "lastmonth": "last-month",
    "last-month": "last-month",
    "year": "year",
    "thisyear": "year",
    "this-year": "year",
    "any": DUE_ANY,
    "all": DUE_ANY,
    "none": DUE_NONE,
}

RELATIVE_PATTERN = re.compile(r"^\+(\d{1,4})([dwm])$")
ISO_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def parse_iso_date(value: Union[str, datetime.date, None]) -> Optional[datetime.date]:
    """Parse 'YYYY-MM-DD' (or pass a date through). Invalid input returns None."""
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    match = ISO_PATTERN.match(value.strip())
    if not match:
        return None
    try:
        return datetime.date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def add_months(day: datetime.date, months: int) -> datetime.date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last_day))


def resolve_relative(amount: int, unit: str, today: datetime.date) -> datetime.date:
    """Resolve an offset such as (3, 'd') or (2, 'week') relative to today."""
    unit = unit[0].lower()
    if unit == "d":
        return today + datetime.timedelta(days=amount)
    if unit == "w":
        return today + datetime.timedelta(weeks=amount)
    if unit == "m":
        return add_months(today, amount)
    raise ValueError(f"Unknown relative date unit: {unit}")


def normalize_due_value(value: str) -> Optional[Union[str, DueDateRange]]:
    """
    Turn the value of a d:/due: token into a due-date filter.

    Returns a keyword bucket, a DueDateRange, or None when the value is not
    understood. Relative offsets (+3d) become the range [today, today+3d] at
    match time, so they are kept as strings here.
    """
    lowered = value.strip().lower()
    if lowered in DUE_KEYWORDS:
        return DUE_KEYWORDS[lowered]
    if RELATIVE_PATTERN.match(lowered):
        return lowered
    exact = parse_iso_date(lowered)
    if exact is not None:
        return DueDateRange(start=exact, end=exact)
    return None


def _week_bounds(today: datetime.date, offset_weeks: int = 0):
    start = today - datetime.timedelta(days=today.weekday()) + datetime.timedelta(weeks=offset_weeks)
    return start, start + datetime.timedelta(days=6)


def _month_bounds(today: datetime.date, offset_months: int = 0):
    first = add_months(today.replace(day=1), offset_months)
    last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
    return first, last


def matches_due_filter(
    due: Optional[datetime.date],
    due_filter: Union[str, DueDateRange, Tuple[Union[str, DueDateRange], ...]],
    today: datetime.date,
) -> bool:
    """True if a task's due date satisfies the filter (any member of a tuple)."""
    if isinstance(due_filter, tuple):
        return any(matches_due_filter(due, value, today) for value in due_filter)

    if isinstance(due_filter, DueDateRange):
        return due is not None and due_filter.contains(due)

    if due_filter == DUE_NONE:
        return due is None
    if due is None:
        return False
    if due_filter == DUE_ANY:
        return True
    if due_filter == "overdue":
        return due < today
    if due_filter == "future":
        return due > today
    if due_filter == "today":
        return due == today
    if due_filter == "tomorrow":
        return due == today + datetime.timedelta(days=1)
    if due_filter == "yesterday":
        return due == today - datetime.timedelta(days=1)

    offsets = {"week": 0, "next-week": 1, "last-week": -1}
    if due_filter in offsets:
        start, end = _week_bounds(today, offsets[due_filter])
        return start <= due <= end

    month_offsets = {"month": 0, "next-month": 1, "last-month": -1}
    if due_filter in month_offsets:
        start, end = _month_bounds(today, month_offsets[due_filter])
        return start <= due <= end

    if due_filter == "year":
        return due.year == today.year

    relative = RELATIVE_PATTERN.match(due_filter)
    if relative:
        limit = resolve_relative(int(relative.group(1)), relative.group(2), today)
        return today <= due <= limit

    return False


def due_bucket(due: Optional[datetime.date], today: datetime.date) -> str:
    """Classify a due date into the buckets scored by the due-date table."""
    if due is None:
        return BUCKET_NONE
    days = (due - today).days
    if days < 0:
        return BUCKET_OVERDUE
    if days <= NEAR_TERM_DAYS:
        return BUCKET_WEEK
    if days <= MONTH_DAYS:
        return BUCKET_MONTH
    return BUCKET_LATER
