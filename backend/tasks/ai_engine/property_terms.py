# tasks/ai_engine/property_terms.py

import re
from typing import Dict, Iterable, Pattern, Tuple, Union

from .stopwords import is_ideographic
from .types import PRIORITY_ANY

# Natural-language property words recognized without the model (English,
# Chinese, Swedish). Explicit syntax always wins over these.
BUILTIN_PRIORITY_TERMS: Dict[Union[int, str], Tuple[str, ...]] = {
    1: (
        "urgent", "critical", "important", "highest", "asap",
        "紧急", "重要", "关键", "首要", "最高优先级", "高优先级", "优先级高",
        "brådskande", "kritisk", "viktig", "högst",
    ),
    2: ("中优先级", "中等优先级", "普通优先级", "优先级中", "medel prioritet"),
    3: ("minor", "次要", "不重要", "低优先级", "优先级低", "mindre viktig", "låg prioritet"),
    PRIORITY_ANY: ("prioritized", "优先级", "优先", "prioritet"),
}

BUILTIN_DUE_DATE_TERMS: Dict[str, Tuple[str, ...]] = {
    "overdue": ("past due", "过期", "已过期", "逾期", "延期", "försenad"),
    "today": ("today", "今天", "今日", "idag"),
    "tomorrow": ("tomorrow", "明天", "明日", "imorgon"),
    "week": ("this week", "本周", "这周", "这星期", "denna vecka"),
    "next-week": ("next week", "下周", "下星期", "nästa vecka"),
    "future": ("upcoming", "未来", "将来", "以后", "kommande"),
    "any": ("due", "deadline", "deadlines", "截止日期", "截止", "到期", "期限", "förfallodatum"),
}

# "in 5 days", "within 2 weeks"
RELATIVE_PHRASE_PATTERN = re.compile(
    r"\b(?:in|within)\s+(\d{1,4})\s+(days?|weeks?|months?)\b", re.IGNORECASE
)
# "from 2024-03-01 to 2024-03-15"
BETWEEN_PATTERN = re.compile(
    r"\bfrom\s+(\d{4}-\d{2}-\d{2})\s+to\s+(\d{4}-\d{2}-\d{2})\b", re.IGNORECASE
)


def _term_regex(term: str) -> str:
    escaped = r"\s+".join(re.escape(part) for part in term.split())
    if is_ideographic(term):
        return escaped
    return r"(?<![\w#])" + escaped + r"(?!\w)"


def build_term_pattern(table: Dict[object, Iterable[str]]) -> Tuple[Pattern, Dict[str, object]]:
    """
    Compile one alternation over every term in ``table``.

    Longest terms are tried first so "不重要" is read before "重要". Returns
    the pattern and a lookup from the normalized matched text to its value.
    """
    lookup: Dict[str, object] = {}
    for value, terms in table.items():
        for term in terms:
            lookup[normalize_term(term)] = value
    ordered = sorted(lookup, key=len, reverse=True)
    pattern = re.compile("|".join(_term_regex(term) for term in ordered), re.IGNORECASE)
    return pattern, lookup


def normalize_term(text: str) -> str:
    return " ".join(text.lower().split())


PRIORITY_TERM_PATTERN, PRIORITY_TERM_VALUES = build_term_pattern(BUILTIN_PRIORITY_TERMS)
DUE_TERM_PATTERN, DUE_TERM_VALUES = build_term_pattern(BUILTIN_DUE_DATE_TERMS)
