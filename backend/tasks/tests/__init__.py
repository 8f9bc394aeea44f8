# tasks/tests/__init__.py
"""
Task App Test Suite
===================

This package contains unit and integration tests for the tasks application.

Modules:
--------
- test_engine: Canonicalizer, config, dates, scoring, filters and sorter
- test_intent: Structured syntax extraction and intent resolution
- test_reconciler: Reply reconciliation and prompt rendering
- test_orchestration: The TaskQueryEngine pipeline and OpenAI clients (mocked)
- test_serializers: Record validation, result serializers, rank_tasks command

Running Tests:
--------------
    # Run all task tests
    python manage.py test tasks

    # Run specific test module
    python manage.py test tasks.tests.test_engine

    # Or with pytest from the repository root
    pytest
"""
