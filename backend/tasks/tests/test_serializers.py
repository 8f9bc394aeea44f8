# tasks/tests/test_serializers.py
"""
Serializer and Management Command Tests
=======================================

Covers task record validation, result serialization and the rank_tasks
command (offline mode only; no OpenAI calls).
"""

from __future__ import annotations

import datetime
import json
import os
import tempfile
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase

from tasks.ai_engine.config import EngineConfig
from tasks.ai_engine.orchestrator import ChatResult, TaskQueryEngine
from tasks.ai_engine.types import QueryIntent, ScoreVector, Task, UsageReport
from tasks.serializers import (
    ChatResultSerializer,
    RankedResultSerializer,
    TaskRecordSerializer,
    load_tasks,
)


TODAY = datetime.date(2024, 1, 15)

RECORDS = [
    {"id": "1", "text": "Write the report", "priority": 1, "tags": ["#Work"]},
    {"id": "2", "text": "Buy milk", "due_date": "2024-01-16", "status": " "},
    {"id": "3", "text": "Call the bank", "priority": 2, "status": "x"},
]


# ===========================================================================
# RECORD VALIDATION TESTS
# ===========================================================================


class TestTaskRecordSerializer(SimpleTestCase):
    """Tests for TaskRecordSerializer and load_tasks."""

    def test_builds_task(self) -> None:
        serializer = TaskRecordSerializer(data=RECORDS[1])

        self.assertTrue(serializer.is_valid(), serializer.errors)
        task = serializer.save()

        self.assertIsInstance(task, Task)
        self.assertEqual(task.due_date, datetime.date(2024, 1, 16))
        self.assertEqual(task.status, " ")
        self.assertEqual(task.tags, ())

    def test_tags_are_cleaned(self) -> None:
        serializer = TaskRecordSerializer(data={"id": "t", "text": "x", "tags": ["#Work", "Work"]})

        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.save().tags, ("Work",))

    def test_priority_out_of_range(self) -> None:
        serializer = TaskRecordSerializer(data={"id": "t", "text": "x", "priority": 9})

        self.assertFalse(serializer.is_valid())
        self.assertIn("priority", serializer.errors)

    def test_load_tasks_skips_invalid_records(self) -> None:
        records = RECORDS + [{"id": "4", "text": "bad", "due_date": "tomorrow"}, {"text": "no id"}]

        tasks = load_tasks(records)

        self.assertEqual([t.id for t in tasks], ["1", "2", "3"])


# ===========================================================================
# RESULT SERIALIZATION TESTS
# ===========================================================================


class TestResultSerializers(SimpleTestCase):
    """Tests for RankedResultSerializer and ChatResultSerializer."""

    def setUp(self) -> None:
        self.engine = TaskQueryEngine(config=EngineConfig(), skip_ai_init=True)
        self.tasks = load_tasks(RECORDS)

    def test_ranked_result(self) -> None:
        result = self.engine.rank(self.tasks, "p1 p2", today=TODAY)

        data = RankedResultSerializer(result).data

        self.assertEqual([item["id"] for item in data["tasks"]], ["1", "3"])
        self.assertEqual(data["tasks"][0]["score"]["final"], 1.0)
        self.assertEqual(data["tasks"][0]["tags"], ["Work"])
        self.assertEqual(data["provenance"], "none")
        self.assertEqual(data["keywords"], [])
        self.assertIsNone(data["message"])

    def test_chat_result_has_display_positions(self) -> None:
        tasks = tuple(self.tasks[:2])
        result = ChatResult(
            reply="Do **Task 1**.",
            tasks=tasks,
            intent=QueryIntent(query="what first?"),
            scores={"1": ScoreVector(final=2.0)},
            usage=UsageReport(prompt_tokens=10, completion_tokens=5, total_tokens=15, model="gpt-4o-mini"),
        )

        data = ChatResultSerializer(result).data

        self.assertEqual([item["display_position"] for item in data["tasks"]], [1, 2])
        self.assertEqual(data["tasks"][0]["score"]["final"], 2.0)
        self.assertIsNone(data["tasks"][1]["score"])
        self.assertEqual(data["usage"]["total_tokens"], 15)
        self.assertFalse(data["degraded"])

    def test_chat_result_without_usage(self) -> None:
        result = ChatResult(reply="", tasks=(), intent=QueryIntent(), error_code="RATE_LIMIT")

        data = ChatResultSerializer(result).data

        self.assertIsNone(data["usage"])
        self.assertEqual(data["error_code"], "RATE_LIMIT")


# ===========================================================================
# MANAGEMENT COMMAND TESTS
# ===========================================================================


class TestRankTasksCommand(SimpleTestCase):
    """Tests for the rank_tasks management command."""

    def setUp(self) -> None:
        handle, self.path = tempfile.mkstemp(suffix=".json")
        with os.fdopen(handle, "w", encoding="utf-8") as fh:
            json.dump(RECORDS, fh)

    def tearDown(self) -> None:
        os.remove(self.path)

    def run_command(self, query: str, **options) -> dict:
        out = StringIO()
        call_command(
            "rank_tasks", self.path, query, offline=True, today="2024-01-15", stdout=out, **options
        )
        return json.loads(out.getvalue())

    def test_ranks_tasks(self) -> None:
        payload = self.run_command("p1 p2")

        self.assertEqual([item["id"] for item in payload["tasks"]], ["1", "3"])

    def test_limit(self) -> None:
        payload = self.run_command("p1 p2", limit=1)

        self.assertEqual([item["id"] for item in payload["tasks"]], ["1"])

    def test_keyword_query_offline(self) -> None:
        payload = self.run_command("milk")

        self.assertEqual(payload["provenance"], "deterministic-fallback")
        self.assertEqual([item["id"] for item in payload["tasks"]], ["2"])

    def test_malformed_query(self) -> None:
        with self.assertRaises(CommandError):
            self.run_command("p:9")

    def test_missing_file(self) -> None:
        with self.assertRaises(CommandError):
            call_command("rank_tasks", self.path + ".missing", "p1", offline=True, stdout=StringIO())
