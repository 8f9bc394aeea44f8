# tasks/ai_engine/orchestrator.py

import asyncio
import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from django.utils import timezone

from .cache import ExpansionCache
from .config import EngineConfig
from .errors import RequestCancelled, UpstreamModelFailure
from .expander import OpenAIKeywordExpander
from .filters import CompoundFilterEngine, FilterOutcome
from .intent import QueryIntentResolver
from .llm_client import OpenAIChatClient
from .pricing import build_usage_report
from .prompts import build_chat_messages
from .reconciler import ResponseReconciler
from .scoring import ScoreBoard
from .sorting import sort_tasks
from .types import ChatMessage, QueryIntent, ReferenceMap, ScoreVector, Task, UsageReport

# Configure logging for pipeline auditing
logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = "No tasks match this query."


@dataclass(frozen=True)
class RankedResult:
    """Direct-mode result: the ranked tasks and how they were scored."""

    tasks: Tuple[Task, ...]
    scores: Dict[str, ScoreVector]
    intent: QueryIntent
    message: Optional[str] = None
    filter_outcome: Optional[FilterOutcome] = None

    @property
    def is_empty(self) -> bool:
        return not self.tasks


@dataclass(frozen=True)
class ChatResult:
    """Chat-mode result. ``tasks`` is always populated when anything matched."""

    reply: str
    tasks: Tuple[Task, ...]
    intent: QueryIntent
    scores: Dict[str, ScoreVector] = field(default_factory=dict)
    reference_map: ReferenceMap = field(default_factory=ReferenceMap)
    degraded: bool = False
    warning: Optional[str] = None
    usage: Optional[UsageReport] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class TaskQueryEngine:
    """
    The central coordination layer for query resolution and ranking.

    Pipeline:
      1-2. resolve: structured syntax + keyword expansion -> QueryIntent
      3.   filter:  Tier A properties, Tier B keywords and floors
      4.   score:   activation-gated weighted score (per-request ScoreBoard)
      5.   sort:    SortSpec chain, finalScore, input order
      6.   chat:    stream the model reply, then reconcile it once

    Stages 1-5 are synchronous and deterministic. The model call is the only
    await point and can be cancelled.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        resolver: Optional[QueryIntentResolver] = None,
        chat_client: Any = None,
        skip_ai_init: bool = False,
    ) -> None:
        """
        Args:
            config: Default snapshot; each call may pass its own.
            resolver: Intent resolver; built with the OpenAI expander if omitted.
            chat_client: Object with ``async stream(messages)``; OpenAI if omitted.
            skip_ai_init: Do not build OpenAI collaborators (deterministic only).
        """
        self.config = config or EngineConfig.from_settings()
        if resolver is None:
            expander = None if skip_ai_init else OpenAIKeywordExpander()
            resolver = QueryIntentResolver(expander=expander, cache=ExpansionCache())
        self.resolver = resolver
        if chat_client is None and not skip_ai_init:
            chat_client = OpenAIChatClient()
        self.chat_client = chat_client
        self.filter_engine = CompoundFilterEngine()
        self.reconciler = ResponseReconciler()

    # -----------------------------------------------------------------------
    # Stages 1-5
    # -----------------------------------------------------------------------

    def resolve(self, query: str, config: Optional[EngineConfig] = None) -> QueryIntent:
        return self.resolver.resolve(query, config or self.config)

    def rank(
        self,
        tasks: Sequence[Any],
        query: Union[str, QueryIntent],
        config: Optional[EngineConfig] = None,
        today: Optional[datetime.date] = None,
        project: Optional[Callable] = None,
        materialize: Optional[Callable[[Any], Task]] = None,
    ) -> RankedResult:
        """
        Rank ``tasks`` for ``query``.

        Args:
            tasks: The corpus, in source order.
            query: Raw query, or a pre-resolved QueryIntent (skips resolution).
            config: Per-call snapshot; defaults to the engine's.
            today: Reference date; defaults to the local date.
            project / materialize: See CompoundFilterEngine.apply.

        Raises:
            MalformedStructuredSyntax: For invalid explicit filter syntax.
        """
        config = config or self.config
        today = today or timezone.localdate()
        intent = query if isinstance(query, QueryIntent) else self.resolve(query, config)

        board = ScoreBoard(config, intent, today)
        outcome = self.filter_engine.apply(
            tasks, intent, config, board, today, project=project, materialize=materialize
        )
        ranked = sort_tasks(outcome.tasks, config.sort_spec, board, config)
        scores = {task.id: board.score(task) for task in ranked}

        message = None
        if not ranked:
            message = self._empty_message(intent, outcome)
            logger.info(f"Engine: empty result for '{intent.query}' ({outcome.total} tasks)")
        else:
            logger.info(
                f"Engine: ranked {len(ranked)}/{outcome.total} tasks "
                f"(provenance={intent.provenance})"
            )

        return RankedResult(
            tasks=tuple(ranked),
            scores=scores,
            intent=intent,
            message=message,
            filter_outcome=outcome,
        )

    def _empty_message(self, intent: QueryIntent, outcome: FilterOutcome) -> str:
        if outcome.total == 0:
            return "There are no tasks to search."
        if outcome.tier_a_count == 0:
            return f"{EMPTY_RESULT_MESSAGE} No task has the requested properties."
        if outcome.rejected_by_keyword == outcome.tier_a_count:
            terms = ", ".join(intent.keywords.expanded[:5])
            return f"{EMPTY_RESULT_MESSAGE} No task mentions: {terms}."
        return f"{EMPTY_RESULT_MESSAGE} Matching tasks were below the relevance or quality floor."

    # -----------------------------------------------------------------------
    # Stage 6
    # -----------------------------------------------------------------------

    async def chat(
        self,
        tasks: Sequence[Any],
        query: Union[str, QueryIntent],
        history: Sequence[ChatMessage] = (),
        config: Optional[EngineConfig] = None,
        today: Optional[datetime.date] = None,
        abort: Optional[asyncio.Event] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> ChatResult:
        """
        Rank ``tasks``, ask the chat model about them and reconcile its reply.

        Args:
            history: Earlier turns, oldest first.
            abort: Set it to stop the request, even while the model is silent.
            on_chunk: Called with each text delta as it arrives (display only).

        Returns:
            ChatResult. On model failure the ranked tasks are still returned,
            with ``error_code`` set.

        Raises:
            MalformedStructuredSyntax: For invalid explicit filter syntax.
            RequestCancelled: If ``abort`` was set.
        """
        config = config or self.config
        today = today or timezone.localdate()
        ranked = self.rank(tasks, query, config=config, today=today)
        intent = ranked.intent

        if ranked.is_empty:
            return ChatResult(reply=ranked.message or EMPTY_RESULT_MESSAGE, tasks=(), intent=intent)

        candidates = ranked.tasks[:config.max_context_tasks]
        fallback = candidates[:config.max_recommendations]
        messages = build_chat_messages(intent.query, candidates, config, history, today)

        try:
            if self.chat_client is None:
                raise UpstreamModelFailure("MODEL_NOT_CONFIGURED", "No chat model configured")
            reply, usage = await self._collect_reply(messages, abort, on_chunk)
        except UpstreamModelFailure as e:
            logger.error(f"Engine: chat model failed ({e.error_code}); returning ranked tasks")
            return ChatResult(
                reply="",
                tasks=fallback,
                intent=intent,
                scores=ranked.scores,
                reference_map=ReferenceMap(
                    pairs=tuple((n, n) for n in range(1, len(fallback) + 1))
                ),
                error_code=e.error_code,
                error_message=str(e),
            )

        outcome = self.reconciler.reconcile(
            reply, candidates, ranked.scores, config.max_recommendations
        )
        if usage is None:
            usage = build_usage_report(
                getattr(self.chat_client, "model", ""),
                prompt_text="\n".join(m["content"] for m in messages),
                completion_text=reply,
            )

        return ChatResult(
            reply=outcome.reply_text,
            tasks=outcome.tasks,
            intent=intent,
            scores=ranked.scores,
            reference_map=outcome.reference_map,
            degraded=outcome.degraded,
            warning=outcome.warning,
            usage=usage,
        )

    async def _collect_reply(
        self,
        messages,
        abort: Optional[asyncio.Event],
        on_chunk: Optional[Callable[[str], None]],
    ) -> Tuple[str, Optional[UsageReport]]:
        """
        Buffer the streamed reply until the end signal.

        Each read from the stream races ``abort``, so a stalled model is
        abandoned as soon as the event is set rather than at the next chunk.
        """
        if abort is not None and abort.is_set():
            raise RequestCancelled("Chat request aborted before the model call")

        buffer = []
        usage = None
        finished = False
        stream = self.chat_client.stream(messages)
        abort_waiter = asyncio.ensure_future(abort.wait()) if abort is not None else None
        pending = None
        try:
            while True:
                if abort is not None and abort.is_set():
                    logger.info("Engine: chat request aborted mid-stream")
                    raise RequestCancelled("Chat request aborted")

                pending = asyncio.ensure_future(_next_chunk(stream))
                waiters = {pending} if abort_waiter is None else {pending, abort_waiter}
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if abort is not None and abort.is_set():
                    logger.info("Engine: chat request aborted while waiting for the model")
                    raise RequestCancelled("Chat request aborted")

                chunk = pending.result()
                pending = None
                if chunk is None:
                    break
                if chunk.text:
                    buffer.append(chunk.text)
                    if on_chunk is not None:
                        on_chunk(chunk.text)
                if chunk.done:
                    usage = chunk.usage
                    finished = True
                    break
        except asyncio.CancelledError:
            logger.info("Engine: chat request cancelled")
            raise
        finally:
            if abort_waiter is not None:
                abort_waiter.cancel()
                await asyncio.wait({abort_waiter})
            if pending is not None:
                await _settle(pending)
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not finished:
            raise UpstreamModelFailure("STREAM_INCOMPLETE", "Model stream ended without a final chunk")
        return "".join(buffer), usage

    def health_check(self) -> Dict[str, Any]:
        expander = getattr(self.resolver, "expander", None)
        return {
            "expander": expander.health_check() if hasattr(expander, "health_check") else None,
            "chat_model": (
                self.chat_client.health_check()
                if hasattr(self.chat_client, "health_check")
                else None
            ),
            "sort_spec": list(self.config.sort_spec),
            "max_recommendations": self.config.max_recommendations,
        }


async def _next_chunk(stream) -> Optional[Any]:
    """Next item from ``stream``, or None once it is exhausted."""
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


async def _settle(future: "asyncio.Future") -> None:
    """Cancel an in-flight stream read and wait until the stream is idle again."""
    future.cancel()
    await asyncio.wait({future})
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"Engine: abandoned stream read failed: {future.exception()!r}")
