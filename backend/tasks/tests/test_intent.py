# tasks/tests/test_intent.py
"""
Query Intent Tests
==================

Tests for structured syntax extraction and the QueryIntentResolver.

The keyword expander is always a mock here; the OpenAI-backed expander has
its own tests in test_orchestration.
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

from django.core.cache import cache
from django.test import SimpleTestCase

from tasks.ai_engine.cache import ExpansionCache
from tasks.ai_engine.config import EngineConfig
from tasks.ai_engine.errors import MalformedStructuredSyntax
from tasks.ai_engine.intent import QueryIntentResolver
from tasks.ai_engine.syntax import extract_structured
from tasks.ai_engine.types import (
    PRIORITY_ANY,
    PRIORITY_NONE,
    PROVENANCE_FALLBACK,
    PROVENANCE_LITERAL,
    PROVENANCE_NONE,
    PROVENANCE_SEMANTIC,
    DueDateRange,
)


def expansion(
    core: Optional[List[str]] = None,
    keywords: Optional[List[str]] = None,
    properties: Optional[Dict[str, Any]] = None,
    error_code: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an expander contract."""
    return {
        "core_keywords": core or [],
        "keywords": keywords or [],
        "properties": properties or {},
        "error_code": error_code,
        "error_message": "failed" if error_code else None,
    }


def mock_expander(result: Any = None, side_effect: Any = None) -> MagicMock:
    expander = MagicMock()
    expander.model = "test-model"
    if side_effect is not None:
        expander.expand.side_effect = side_effect
    else:
        expander.expand.return_value = result
    return expander


# ===========================================================================
# STRUCTURED SYNTAX TESTS
# ===========================================================================


class TestExtractStructured(SimpleTestCase):
    """Tests for extract_structured."""

    def setUp(self) -> None:
        self.config = EngineConfig()

    def extract(self, query: str):
        return extract_structured(query, self.config)

    def test_unified_syntax(self) -> None:
        result = self.extract('p:1,2 s:open,wip d:today folder:"Team Notes" #Urgent report')

        self.assertEqual(result.filters.priority, (1, 2))
        self.assertEqual(result.filters.status, ("open", "inProgress"))
        self.assertEqual(result.filters.due_date, "today")
        self.assertEqual(result.filters.folder, "Team Notes")
        self.assertEqual(result.filters.tags, frozenset({"urgent"}))
        self.assertEqual(result.free_text, "report")

    def test_legacy_priority_tokens_are_unioned(self) -> None:
        result = self.extract("p1 p3 invoices")

        self.assertEqual(result.filters.priority, (1, 3))
        self.assertEqual(result.free_text, "invoices")

    def test_priority_phrases(self) -> None:
        self.assertEqual(self.extract("priority 1").filters.priority, (1,))
        self.assertEqual(self.extract("high priority meeting").filters.priority, (1,))
        self.assertEqual(self.extract("low priority").filters.priority, (3,))
        self.assertEqual(self.extract("no priority").filters.priority, PRIORITY_NONE)
        self.assertEqual(self.extract("priority:any").filters.priority, PRIORITY_ANY)

    def test_numbers_win_over_special_priority(self) -> None:
        self.assertEqual(self.extract("p:none p2").filters.priority, (2,))

    def test_due_values(self) -> None:
        self.assertEqual(self.extract("due:next-week").filters.due_date, "next-week")
        self.assertEqual(self.extract("d:+3d").filters.due_date, "+3d")
        self.assertEqual(
            self.extract("d:2024-03-01").filters.due_date,
            DueDateRange(start=datetime.date(2024, 3, 1), end=datetime.date(2024, 3, 1)),
        )

    def test_due_before_and_after_are_exclusive(self) -> None:
        result = self.extract("due after:2024-02-01 due before:2024-03-01 reports")

        self.assertEqual(
            result.filters.due_date,
            DueDateRange(start=datetime.date(2024, 2, 2), end=datetime.date(2024, 2, 29)),
        )
        self.assertEqual(result.free_text, "reports")

    def test_bare_overdue_and_no_date(self) -> None:
        self.assertEqual(self.extract("overdue tasks").filters.due_date, "overdue")
        self.assertEqual(self.extract("overdue tasks").free_text, "tasks")
        self.assertEqual(self.extract("no date").filters.due_date, "none")

    def test_explicit_due_wins_over_bare_keyword(self) -> None:
        self.assertEqual(self.extract("d:today overdue").filters.due_date, "today")

    def test_due_comma_list_is_a_union(self) -> None:
        result = self.extract("d:today,tomorrow")

        self.assertEqual(result.filters.due_date, ("today", "tomorrow"))
        self.assertEqual(result.free_text, "")

    def test_repeated_due_tokens_are_a_union(self) -> None:
        result = self.extract("d:today d:tomorrow report")

        self.assertEqual(result.filters.due_date, ("today", "tomorrow"))
        self.assertEqual(result.free_text, "report")

    def test_invalid_member_of_due_list_raises(self) -> None:
        with self.assertRaises(MalformedStructuredSyntax):
            self.extract("d:today,someday")

    def test_natural_due_terms(self) -> None:
        result = self.extract("tasks due today")

        self.assertEqual(result.filters.due_date, "today")
        self.assertIsNone(result.filters.priority)
        self.assertEqual(result.free_text, "tasks")

    def test_natural_terms_in_chinese(self) -> None:
        result = self.extract("今天 紧急 任务")

        self.assertEqual(result.filters.due_date, "today")
        self.assertEqual(result.filters.priority, (1,))
        self.assertEqual(result.free_text, "任务")

    def test_negated_term_is_read_before_its_suffix(self) -> None:
        self.assertEqual(self.extract("不重要 任务").filters.priority, (3,))

    def test_bare_due_word_means_any_due_date(self) -> None:
        result = self.extract("deadline report")

        self.assertEqual(result.filters.due_date, "any")
        self.assertEqual(result.free_text, "report")

    def test_relative_phrases(self) -> None:
        self.assertEqual(self.extract("in 5 days").filters.due_date, "+5d")
        self.assertEqual(self.extract("within 2 weeks").filters.due_date, "+2w")

    def test_from_to_range(self) -> None:
        result = self.extract("from 2024-03-01 to 2024-03-15 invoices")

        self.assertEqual(
            result.filters.due_date,
            DueDateRange(start=datetime.date(2024, 3, 1), end=datetime.date(2024, 3, 15)),
        )
        self.assertEqual(result.free_text, "invoices")

    def test_explicit_syntax_wins_over_natural_terms(self) -> None:
        result = self.extract("p3 d:tomorrow urgent today report")

        self.assertEqual(result.filters.priority, (3,))
        self.assertEqual(result.filters.due_date, "tomorrow")
        self.assertEqual(result.free_text, "report")

    def test_tag_is_not_read_as_a_priority_word(self) -> None:
        result = self.extract("#urgent report")

        self.assertIsNone(result.filters.priority)
        self.assertEqual(result.filters.tags, frozenset({"urgent"}))

    def test_operators_are_removed(self) -> None:
        result = self.extract("p1 & #work")

        self.assertEqual(result.free_text, "")
        self.assertEqual(result.filters.tags, frozenset({"work"}))

    def test_plain_text_has_no_filters(self) -> None:
        result = self.extract("write the quarterly report")

        self.assertTrue(result.filters.is_empty())
        self.assertEqual(result.free_text, "write the quarterly report")
        self.assertEqual(result.matched_tokens, ())

    def test_malformed_values_raise(self) -> None:
        for query in ("p:7", "p:", "d:someday", "s:bogus", "folder:", "due before:tomorrow"):
            with self.subTest(query=query):
                with self.assertRaises(MalformedStructuredSyntax):
                    self.extract(query)

    def test_malformed_error_names_the_token(self) -> None:
        with self.assertRaises(MalformedStructuredSyntax) as ctx:
            self.extract("report p:7")

        self.assertEqual(ctx.exception.key, "priority")
        self.assertEqual(ctx.exception.token, "p:7")


# ===========================================================================
# RESOLVER TESTS
# ===========================================================================


class TestQueryIntentResolver(SimpleTestCase):
    """Tests for QueryIntentResolver.resolve."""

    def setUp(self) -> None:
        self.config = EngineConfig()
        cache.clear()

    def test_fully_structured_query_skips_expander(self) -> None:
        expander = mock_expander(expansion(core=["x"]))
        resolver = QueryIntentResolver(expander=expander)

        intent = resolver.resolve("p1 #work", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_NONE)
        self.assertTrue(intent.keywords.is_empty)
        self.assertEqual(intent.filters.priority, (1,))
        expander.expand.assert_not_called()

    def test_malformed_syntax_raises_before_expansion(self) -> None:
        expander = mock_expander(expansion(core=["report"]))
        resolver = QueryIntentResolver(expander=expander)

        with self.assertRaises(MalformedStructuredSyntax):
            resolver.resolve("p:7 report", self.config)
        expander.expand.assert_not_called()

    def test_semantic_expansion(self) -> None:
        expander = mock_expander(
            expansion(core=["report"], keywords=["report", "summary", "报告"])
        )
        resolver = QueryIntentResolver(expander=expander)

        intent = resolver.resolve("p2 report", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_SEMANTIC)
        self.assertEqual(intent.keywords.core, ("report",))
        self.assertEqual(intent.keywords.expanded, ("report", "summary", "报告"))
        self.assertEqual(intent.filters.priority, (2,))
        expander.expand.assert_called_once_with("report", self.config)

    def test_expanded_keeps_short_ideographic_core_terms(self) -> None:
        expander = mock_expander(expansion(core=["会"], keywords=["开会", "会议"]))
        resolver = QueryIntentResolver(expander=expander)

        intent = resolver.resolve("会", self.config)

        self.assertEqual(intent.keywords.core, ("会",))
        self.assertEqual(intent.keywords.expanded, ("会", "开会", "会议"))
        self.assertTrue(set(intent.keywords.core) <= set(intent.keywords.expanded))

    def test_explicit_syntax_overrides_model_properties(self) -> None:
        expander = mock_expander(
            expansion(core=["report"], properties={"priority": [1], "dueDate": "today"})
        )
        resolver = QueryIntentResolver(expander=expander)

        intent = resolver.resolve("p2 urgent report", self.config)

        self.assertEqual(intent.filters.priority, (2,))
        self.assertEqual(intent.filters.due_date, "today")

    def test_invalid_model_properties_are_dropped(self) -> None:
        expander = mock_expander(
            expansion(core=["report"], properties={"status": ["bogus", "done"], "dueDate": "someday"})
        )
        resolver = QueryIntentResolver(expander=expander)

        intent = resolver.resolve("finished report", self.config)

        self.assertEqual(intent.filters.status, ("completed",))
        self.assertIsNone(intent.filters.due_date)
        self.assertEqual(len(intent.diagnostics), 2)

    def test_expander_error_falls_back_to_words(self) -> None:
        expander = mock_expander(expansion(error_code="RATE_LIMIT"))
        resolver = QueryIntentResolver(expander=expander)

        intent = resolver.resolve("write the quarterly report", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_FALLBACK)
        self.assertEqual(intent.keywords.expanded, ("write", "quarterly", "report"))
        self.assertEqual(intent.diagnostics, ("RATE_LIMIT",))

    def test_missing_expander_falls_back(self) -> None:
        resolver = QueryIntentResolver(expander=None)

        intent = resolver.resolve("#home buy milk", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_FALLBACK)
        self.assertEqual(intent.keywords.expanded, ("buy", "milk"))
        self.assertEqual(intent.filters.tags, frozenset({"home"}))
        self.assertEqual(intent.diagnostics, ("EXPANDER_NOT_CONFIGURED",))

    def test_fallback_keeps_natural_language_filters(self) -> None:
        resolver = QueryIntentResolver(expander=mock_expander(expansion(error_code="TIMEOUT")))

        intent = resolver.resolve("今天 紧急 任务", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_FALLBACK)
        self.assertEqual(intent.filters.priority, (1,))
        self.assertEqual(intent.filters.due_date, "today")
        self.assertEqual(intent.keywords.expanded, ("任务",))

    def test_raising_expander_falls_back(self) -> None:
        resolver = QueryIntentResolver(expander=mock_expander(side_effect=RuntimeError("boom")))

        intent = resolver.resolve("report", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_FALLBACK)
        self.assertEqual(intent.diagnostics, ("UNEXPECTED_ERROR",))

    def test_non_dict_result_falls_back(self) -> None:
        resolver = QueryIntentResolver(expander=mock_expander(["report"]))

        intent = resolver.resolve("report", self.config)

        self.assertEqual(intent.diagnostics, ("VALIDATION_ERROR",))

    def test_empty_expansion_uses_literal_text(self) -> None:
        resolver = QueryIntentResolver(expander=mock_expander(expansion()))

        intent = resolver.resolve("p1 zqx-42 thing", self.config)

        self.assertEqual(intent.provenance, PROVENANCE_LITERAL)
        self.assertEqual(intent.keywords.expanded, ("zqx-42 thing",))
        self.assertEqual(intent.filters.priority, (1,))

    def test_extra_stopwords_apply_to_fallback(self) -> None:
        config = EngineConfig(stopwords=("please",))

        keywords = QueryIntentResolver.fallback_keywords("please fix login", config)

        self.assertEqual(keywords, ["fix", "login"])

    def test_successful_expansion_is_cached(self) -> None:
        expander = mock_expander(expansion(core=["report"], keywords=["summary"]))
        resolver = QueryIntentResolver(expander=expander, cache=ExpansionCache())

        first = resolver.resolve("Report", self.config)
        second = resolver.resolve("report", self.config)

        self.assertEqual(first.keywords, second.keywords)
        self.assertEqual(expander.expand.call_count, 1)

    def test_invalidate_forces_a_new_expansion(self) -> None:
        expander = mock_expander(expansion(core=["report"]))
        expansion_cache = ExpansionCache()
        resolver = QueryIntentResolver(expander=expander, cache=expansion_cache)

        resolver.resolve("report", self.config)
        expansion_cache.invalidate("report", "test-model")
        resolver.resolve("report", self.config)

        self.assertEqual(expander.expand.call_count, 2)

    def test_failed_expansion_is_not_cached(self) -> None:
        expander = mock_expander(expansion(error_code="TIMEOUT"))
        resolver = QueryIntentResolver(expander=expander, cache=ExpansionCache())

        resolver.resolve("report", self.config)
        resolver.resolve("report", self.config)

        self.assertEqual(expander.expand.call_count, 2)
