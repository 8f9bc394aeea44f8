# tasks/ai_engine/stopwords.py

import re
from typing import FrozenSet, Iterable, List

# Scripts written without spaces between words: CJK ideographs (incl. Ext A/B
# and compatibility block) plus Japanese kana.
IDEOGRAPHIC_PATTERN = re.compile(
    "[\u4e00-\u9fff\u3400-\u4dbf\U00020000-\U0002a6df\u3040-\u309f\u30a0-\u30ff\uf900-\ufaff]"
)

BUILTIN_STOPWORDS: FrozenSet[str] = frozenset({
    # English articles and prepositions
    "the", "a", "an", "and", "or", "but", "for", "of", "with", "by", "from",
    "as", "to", "in", "on", "at", "is", "was", "are", "were",
    # English query words
    "me", "my", "all", "how", "what", "when", "where", "why", "which", "who",
    "whom", "whose", "do", "does", "did", "can", "could", "should", "would",
    "will", "have", "has", "had",
    # Chinese particles and question words
    "我", "的", "了", "吗", "呢", "啊", "如何", "怎么", "怎样", "什么", "哪些",
    "哪个", "哪里", "为什么",
})


def is_ideographic(term: str) -> bool:
    """True if the term contains characters from a space-less script."""
    return IDEOGRAPHIC_PATTERN.search(term) is not None


def is_stopword(word: str, extra: Iterable[str] = ()) -> bool:
    lowered = word.lower()
    return lowered in BUILTIN_STOPWORDS or lowered in {w.lower() for w in extra}


def filter_stopwords(words: Iterable[str], extra: Iterable[str] = ()) -> List[str]:
    """
    Drop stopwords and single non-ideographic characters.

    A single ideograph is often a meaningful word, a single Latin letter is not.
    """
    extra_set = {w.lower() for w in extra}
    kept = []
    for word in words:
        lowered = word.lower()
        if not lowered:
            continue
        if lowered in BUILTIN_STOPWORDS or lowered in extra_set:
            continue
        if len(word) == 1 and not is_ideographic(word):
            continue
        kept.append(word)
    return kept
