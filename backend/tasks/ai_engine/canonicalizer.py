# tasks/ai_engine/canonicalizer.py
"""
Keyword canonicalization.

Expanded keyword sets carry a lot of overlap: "開會" next to "會", or the
same word proposed in two casings. canonicalize_keywords() reduces such a list
to a minimal covering list while keeping the caller's order.
"""

import re
from typing import Iterable, List, Sequence

from .stopwords import IDEOGRAPHIC_PATTERN, is_ideographic

# Word separators: whitespace and ASCII/CJK punctuation, except '#' and '-'
_SEPARATORS = re.compile(r"[\s,.;:!?()\[\]{}\"'`<>/\\|，。；：！？、（）【】「」『』《》]+")
_IDEOGRAPHIC_RUN = re.compile(IDEOGRAPHIC_PATTERN.pattern + "+")


def canonicalize_keywords(terms: Iterable[str], script_dedup: bool = True) -> List[str]:
    """
    Collapse a term list to a minimal covering list.

    Terms are scanned longest-first. A term is dropped if it equals (case
    insensitively) a term already kept, or, with ``script_dedup`` on, if it is
    a strict substring of a kept term and both are ideographic. Substrings in
    space-delimited scripts always survive ("chat" is not merged into
    "chatter"). Survivors come back in their original relative order.

    Terms are stripped of surrounding whitespace and blank terms are dropped,
    so the output is a sub-multiset of the stripped input, not of the raw
    strings. The function is idempotent: canonicalize(canonicalize(x)) ==
    canonicalize(x).
    """
    indexed = [(i, term.strip()) for i, term in enumerate(terms)]
    indexed = [(i, term) for i, term in indexed if term]

    # Longest first, ties broken by original position
    scan_order = sorted(indexed, key=lambda item: (-len(item[1]), item[0]))

    kept_folded: List[str] = []
    kept_ideographic: List[str] = []
    survivors = []
    for index, term in scan_order:
        folded = term.casefold()
        if folded in kept_folded:
            continue
        if script_dedup and is_ideographic(folded):
            if any(folded in other for other in kept_ideographic):
                continue
            kept_ideographic.append(folded)
        kept_folded.append(folded)
        survivors.append((index, term))

    survivors.sort(key=lambda item: item[0])
    return [term for _, term in survivors]


def split_terms(text: str) -> List[str]:
    """
    Tokenize free text into candidate keywords.

    Splits on whitespace and punctuation and keeps ``#tags`` whole. Ideographic
    runs longer than two characters have no word boundaries, so they are
    emitted whole, then as overlapping bigrams, then as single characters; the
    canonicalizer later removes the fragments it does not need.
    """
    words: List[str] = []
    for chunk in _SEPARATORS.split(text):
        if not chunk:
            continue
        if chunk.startswith("#"):
            words.append(chunk)
            continue
        words.extend(_split_mixed(chunk))
    return words


def _split_mixed(chunk: str) -> List[str]:
    parts: List[str] = []
    position = 0
    for match in _IDEOGRAPHIC_RUN.finditer(chunk):
        if match.start() > position:
            parts.append(chunk[position:match.start()])
        parts.extend(_ideographic_fragments(match.group()))
        position = match.end()
    if position < len(chunk):
        parts.append(chunk[position:])
    return [part.strip("-") for part in parts if part.strip("-")]


def _ideographic_fragments(run: str) -> Sequence[str]:
    if len(run) <= 2:
        return [run]
    fragments = [run]
    fragments.extend(run[i:i + 2] for i in range(len(run) - 1))
    fragments.extend(run)
    return fragments
