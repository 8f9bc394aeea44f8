# tasks/ai_engine/__init__.py
"""
AI Engine Package
=================

Query resolution, filtering, scoring, ranking and reply reconciliation for
the task chat assistant.

Modules:
--------
- orchestrator: TaskQueryEngine, the pipeline entry point
- intent: Query intent resolution (syntax + expansion + fallbacks)
- syntax: Deterministic extraction of explicit filter syntax
- property_terms: Built-in natural-language priority and due-date terms
- canonicalizer: Script-aware keyword deduplication and text splitting
- filters: Two-tier compound filter engine
- scoring: Activation-gated scoring and the per-request ScoreBoard
- sorting: Multi-criteria sorter
- reconciler: Maps model replies back onto the ranked list
- expander: OpenAI keyword expansion service
- llm_client: OpenAI streaming chat client
- cache: Django-cache layer for keyword expansions
- config: Immutable EngineConfig snapshots

Architecture:
-------------
Every request resolves a QueryIntent, builds its own ScoreBoard and runs the
synchronous stages with an explicit EngineConfig:

    query -> QueryIntent -> Tier A -> Tier B -> scores -> sorted tasks

Chat requests then stream the model reply and reconcile it once:

    {
        "reply": str,            # [TASK_n] rewritten to **Task m**
        "tasks": [...],          # recommended tasks, display order
        "degraded": bool,        # model references were all invalid
        "warning": str | None,
        "usage": {...} | None,   # advisory only
        "error_code": str | None # set when the model call failed
    }

Keyword Provenance:
-------------------
- "none": query was fully structured, expander not called
- "semantic": expander succeeded
- "deterministic-fallback": expander failed or unavailable
- "literal": expander returned nothing; free text used verbatim

Usage:
------
    from tasks.ai_engine import EngineConfig, TaskQueryEngine

    engine = TaskQueryEngine(config=EngineConfig.from_settings())
    result = engine.rank(tasks, "p1 #work report")
    reply = await engine.chat(tasks, "what should I do first?")
"""

from .cache import ExpansionCache
from .canonicalizer import canonicalize_keywords, split_terms
from .config import EngineConfig, StatusCategory
from .errors import (
    MalformedStructuredSyntax,
    RequestCancelled,
    SemanticExpansionFailure,
    TaskEngineError,
    UpstreamModelFailure,
)
from .expander import OpenAIKeywordExpander
from .filters import CompoundFilterEngine
from .intent import QueryIntentResolver
from .llm_client import OpenAIChatClient
from .orchestrator import ChatResult, RankedResult, TaskQueryEngine
from .reconciler import ResponseReconciler
from .scoring import ScoreBoard
from .sorting import sort_tasks
from .types import (
    PROVENANCE_FALLBACK,
    PROVENANCE_LITERAL,
    PROVENANCE_NONE,
    PROVENANCE_SEMANTIC,
    ChatMessage,
    KeywordSet,
    PropertyFilters,
    QueryIntent,
    ReferenceMap,
    ScoreVector,
    Task,
)

__all__ = [
    # Core classes
    "TaskQueryEngine",
    "QueryIntentResolver",
    "CompoundFilterEngine",
    "ScoreBoard",
    "ResponseReconciler",
    "OpenAIKeywordExpander",
    "OpenAIChatClient",
    "ExpansionCache",
    "EngineConfig",
    "StatusCategory",
    # Data types
    "Task",
    "PropertyFilters",
    "KeywordSet",
    "QueryIntent",
    "ScoreVector",
    "ReferenceMap",
    "ChatMessage",
    "RankedResult",
    "ChatResult",
    # Functions
    "canonicalize_keywords",
    "split_terms",
    "sort_tasks",
    # Exceptions
    "TaskEngineError",
    "MalformedStructuredSyntax",
    "SemanticExpansionFailure",
    "UpstreamModelFailure",
    "RequestCancelled",
    # Constants
    "PROVENANCE_NONE",
    "PROVENANCE_SEMANTIC",
    "PROVENANCE_FALLBACK",
    "PROVENANCE_LITERAL",
]
