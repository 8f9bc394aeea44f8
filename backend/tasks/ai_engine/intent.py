# tasks/ai_engine/intent.py
"""
Query Intent Resolution
=======================

Turns a raw query into an immutable QueryIntent in three layers:

1. Structured syntax (syntax.py) - deterministic, always runs, always wins.
2. Semantic expansion (expander.py, cache-wrapped) - only when free text is
   left over after the syntax is removed.
3. Fallbacks:
   - expander failed or missing -> leftover words minus stopwords,
     provenance "deterministic-fallback"
   - expander returned nothing  -> the free text as one literal keyword,
     provenance "literal"
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .cache import ExpansionCache
from .canonicalizer import canonicalize_keywords, split_terms
from .config import EngineConfig
from .dates import normalize_due_value, parse_iso_date
from .errors import SemanticExpansionFailure
from .stopwords import filter_stopwords
from .syntax import extract_structured
from .types import (
    PRIORITY_ANY,
    PRIORITY_NONE,
    PROVENANCE_FALLBACK,
    PROVENANCE_LITERAL,
    PROVENANCE_NONE,
    PROVENANCE_SEMANTIC,
    DueDateRange,
    KeywordSet,
    PropertyFilters,
    QueryIntent,
)

logger = logging.getLogger(__name__)


class QueryIntentResolver:
    """
    Resolves queries into QueryIntents.

    Attributes:
        expander: Object with ``expand(free_text, config) -> dict`` (see
            OpenAIKeywordExpander), or None to always use the fallback.
        cache: Optional ExpansionCache wrapped around the expander.
    """

    def __init__(self, expander: Any = None, cache: Optional[ExpansionCache] = None) -> None:
        self.expander = expander
        self.cache = cache

    def resolve(self, query: str, config: EngineConfig) -> QueryIntent:
        """
        Resolve ``query`` under ``config``.

        Raises:
            MalformedStructuredSyntax: For invalid explicit filter syntax.
        """
        query = query or ""
        extraction = extract_structured(query, config)
        free_text = extraction.free_text

        if not free_text:
            logger.debug(f"Intent: '{query}' is fully structured; expander skipped")
            return QueryIntent(
                filters=extraction.filters,
                keywords=KeywordSet.empty(),
                provenance=PROVENANCE_NONE,
                query=query,
            )

        try:
            expansion = self._expand(free_text, config)
        except SemanticExpansionFailure as e:
            logger.warning(
                f"Intent: expansion failed ({e.error_code}); using deterministic keywords"
            )
            words = self.fallback_keywords(free_text, config)
            return QueryIntent(
                filters=extraction.filters,
                keywords=KeywordSet(core=tuple(words), expanded=tuple(words)),
                provenance=PROVENANCE_FALLBACK,
                query=query,
                diagnostics=(e.error_code,),
            )

        model_filters, notes = self._filters_from_properties(expansion.get("properties") or {}, config)
        core = self._clean(expansion.get("core_keywords") or [], config)
        extra = self._clean(expansion.get("keywords") or [], config)

        if not core and not extra and model_filters.is_empty():
            logger.info(f"Intent: expander returned nothing for '{free_text}'; literal match")
            return QueryIntent(
                filters=extraction.filters,
                keywords=KeywordSet(core=(free_text,), expanded=(free_text,)),
                provenance=PROVENANCE_LITERAL,
                query=query,
                diagnostics=tuple(notes),
            )

        expanded = self._expanded_with_core(core, extra, config)
        return QueryIntent(
            filters=extraction.filters.merged_over(model_filters),
            keywords=KeywordSet(core=tuple(core), expanded=tuple(expanded)),
            provenance=PROVENANCE_SEMANTIC,
            query=query,
            diagnostics=tuple(notes),
        )

    # -----------------------------------------------------------------------
    # Expansion
    # -----------------------------------------------------------------------

    def _expand(self, free_text: str, config: EngineConfig) -> Dict[str, Any]:
        if self.expander is None:
            raise SemanticExpansionFailure("EXPANDER_NOT_CONFIGURED", "No expander configured")

        def call() -> Dict[str, Any]:
            return self.expander.expand(free_text, config)

        try:
            if self.cache is not None:
                result = self.cache.get_or_set_expansion(
                    free_text, getattr(self.expander, "model", ""), call
                )
            else:
                result = call()
        except Exception as e:
            logger.exception(f"Intent: expander raised for '{free_text}': {e}")
            raise SemanticExpansionFailure("UNEXPECTED_ERROR", str(e)) from e

        if not isinstance(result, dict):
            raise SemanticExpansionFailure("VALIDATION_ERROR", "Expander returned no contract")
        if result.get("error_code"):
            raise SemanticExpansionFailure(result["error_code"], result.get("error_message") or "")
        return result

    @staticmethod
    def fallback_keywords(free_text: str, config: EngineConfig) -> List[str]:
        """Leftover words minus stopwords, with no expansion."""
        words = filter_stopwords(split_terms(free_text), config.stopwords)
        return canonicalize_keywords(words, script_dedup=config.script_dedup)

    @staticmethod
    def _clean(terms: List[str], config: EngineConfig) -> List[str]:
        words = filter_stopwords([str(t) for t in terms], config.stopwords)
        return canonicalize_keywords(words, script_dedup=config.script_dedup)

    @staticmethod
    def _expanded_with_core(core: List[str], extra: List[str], config: EngineConfig) -> List[str]:
        """
        Core terms first, then the canonical extras.

        Canonicalizing core and extras together may fold a short ideographic
        core term into a longer synonym ("会" into "开会"); core terms are
        always kept so ``expanded`` stays a superset of ``core``.
        """
        expanded = list(core)
        seen = {term.casefold() for term in core}
        for term in canonicalize_keywords(core + extra, script_dedup=config.script_dedup):
            if term.casefold() not in seen:
                seen.add(term.casefold())
                expanded.append(term)
        return expanded

    # -----------------------------------------------------------------------
    # Model-proposed properties
    # -----------------------------------------------------------------------

    def _filters_from_properties(
        self, properties: Dict[str, Any], config: EngineConfig
    ) -> Tuple[PropertyFilters, List[str]]:
        """
        Validate properties proposed by the expander.

        Anything that does not resolve under ``config`` is dropped and noted;
        model output never raises MalformedStructuredSyntax.
        """
        notes: List[str] = []

        priority = properties.get("priority")
        if priority in ("any", "all"):
            priority = PRIORITY_ANY
        elif priority == "none":
            priority = PRIORITY_NONE
        elif isinstance(priority, list) and priority:
            priority = tuple(priority)
        else:
            priority = None

        due = None
        if "dueDate" in properties:
            due = normalize_due_value(properties["dueDate"])
            if due is None:
                notes.append(f"ignored dueDate {properties['dueDate']!r}")
        if due is None and "dueDateRange" in properties:
            bounds = properties["dueDateRange"]
            start = parse_iso_date(bounds.get("start"))
            end = parse_iso_date(bounds.get("end"))
            if start is not None or end is not None:
                due = DueDateRange(start=start, end=end)
            else:
                notes.append(f"ignored dueDateRange {bounds!r}")

        status = None
        if properties.get("status"):
            resolved = []
            for value in properties["status"]:
                category = config.resolve_status(value)
                if category is None:
                    notes.append(f"ignored status {value!r}")
                elif category not in resolved:
                    resolved.append(category)
            status = tuple(resolved) or None

        tags = properties.get("tags")
        filters = PropertyFilters(
            priority=priority,
            due_date=due,
            status=status,
            folder=properties.get("folder") or None,
            tags=frozenset(tags) if tags else None,
        )

        for note in notes:
            logger.warning(f"Intent: expander property {note}")
        return filters, notes
