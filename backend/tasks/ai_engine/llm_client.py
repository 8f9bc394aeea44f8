# tasks/ai_engine/llm_client.py
"""
Chat Model Client
=================

Async streaming client for the chat model that writes the assistant reply.

The engine treats the model as an untrusted text generator. This client only
moves text: it yields ReplyChunk objects and finishes with exactly one chunk
where ``done`` is True (carrying the advisory usage report). Any provider
failure is raised as UpstreamModelFailure with one of the error codes below;
asyncio.CancelledError is never caught.

Error Codes:
------------
- MODEL_NOT_CONFIGURED, AUTH_ERROR, RATE_LIMIT, TIMEOUT, CONNECTION_ERROR,
  BAD_REQUEST, API_ERROR_<status>, UNEXPECTED_ERROR
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from django.conf import settings
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
)

from .errors import UpstreamModelFailure
from .pricing import build_usage_report
from .types import ReplyChunk

logger = logging.getLogger(__name__)


class OpenAIChatClient:
    """
    Streams chat completions from OpenAI.

    Deferred initialization: a missing key leaves ``is_configured`` False and
    stream() raises UpstreamModelFailure("MODEL_NOT_CONFIGURED").
    """

    DEFAULT_MODEL: str = "gpt-4o-mini"

    DEFAULT_TEMPERATURE: float = 0.1
    DEFAULT_MAX_TOKENS: int = 2000
    DEFAULT_TIMEOUT: float = 60.0  # Seconds

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        **client_kwargs: Any,
    ) -> None:
        self.model: str = model or getattr(settings, "TASK_CHAT_MODEL", None) or self.DEFAULT_MODEL
        self.timeout: float = timeout or self.DEFAULT_TIMEOUT
        self._client_kwargs: Dict[str, Any] = client_kwargs

        self.client: Optional[AsyncOpenAI] = None
        self.is_configured: bool = False
        self.configuration_error: Optional[str] = None

        self._configure(api_key)

    def _configure(self, api_key: Optional[str] = None) -> None:
        resolved_key = api_key or getattr(settings, "OPENAI_API_KEY", None) or ""
        if not resolved_key:
            self.configuration_error = (
                "OPENAI_API_KEY is not configured. "
                "Set the OPENAI_API_KEY environment variable or Django setting."
            )
            logger.warning(f"OpenAIChatClient: {self.configuration_error}")
            return

        try:
            self.client = AsyncOpenAI(api_key=resolved_key, **self._client_kwargs)
            self.is_configured = True
            self.configuration_error = None
            logger.info(f"OpenAIChatClient initialized with model={self.model}")
        except Exception as e:
            self.configuration_error = f"Failed to initialize OpenAI client: {str(e)}"
            logger.error(f"OpenAIChatClient: {self.configuration_error}")
            self.client = None
            self.is_configured = False

    async def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[ReplyChunk]:
        """
        Stream the reply to ``messages``.

        Yields:
            ReplyChunk with text deltas, then one final ReplyChunk(done=True).

        Raises:
            UpstreamModelFailure: If the provider call fails.
        """
        if not self.is_configured or self.client is None:
            raise UpstreamModelFailure(
                "MODEL_NOT_CONFIGURED", self.configuration_error or "Chat model not available"
            )

        received: List[str] = []
        usage = None
        response = None
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.DEFAULT_TEMPERATURE,
                max_tokens=self.DEFAULT_MAX_TOKENS,
                stream=True,
                stream_options={"include_usage": True},
                timeout=self.timeout,
            )
            async for chunk in response:
                if getattr(chunk, "usage", None) is not None:
                    usage = chunk.usage
                if chunk.choices:
                    delta = chunk.choices[0].delta.content
                    if delta:
                        received.append(delta)
                        yield ReplyChunk(text=delta)

        except AuthenticationError as e:
            logger.error(f"OpenAI authentication failed: {e}")
            raise UpstreamModelFailure(
                "AUTH_ERROR", "Invalid API key or authentication failed"
            ) from e

        except RateLimitError as e:
            logger.warning(f"OpenAI rate limit exceeded: {e}")
            raise UpstreamModelFailure(
                "RATE_LIMIT", "API rate limit exceeded, please retry later"
            ) from e

        except APITimeoutError as e:
            logger.warning(f"OpenAI API timeout: {e}")
            raise UpstreamModelFailure("TIMEOUT", "API request timed out") from e

        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise UpstreamModelFailure("CONNECTION_ERROR", "Could not connect to OpenAI API") from e

        except BadRequestError as e:
            logger.error(f"OpenAI bad request: {e}")
            raise UpstreamModelFailure("BAD_REQUEST", "Invalid request to OpenAI API") from e

        except APIStatusError as e:
            logger.error(f"OpenAI API status error: {e.status_code} - {e}")
            raise UpstreamModelFailure(
                f"API_ERROR_{e.status_code}",
                f"OpenAI API error (status {e.status_code})",
                status_code=e.status_code,
            ) from e

        except Exception as e:
            logger.exception(f"Unexpected error in OpenAIChatClient: {e}")
            raise UpstreamModelFailure(
                "UNEXPECTED_ERROR", f"Unexpected error: {type(e).__name__}"
            ) from e

        finally:
            # Runs on abort and cancellation too (aclose() lands here)
            if response is not None:
                await self._close_response(response)

        report = build_usage_report(
            self.model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            prompt_text="\n".join(m.get("content", "") for m in messages),
            completion_text="".join(received),
        )
        yield ReplyChunk(done=True, usage=report)

    @staticmethod
    async def _close_response(response: Any) -> None:
        """Release the HTTP response behind an AsyncStream."""
        try:
            await response.close()
        except Exception as e:
            logger.warning(f"OpenAIChatClient: failed to close stream: {e}")

    def health_check(self) -> Dict[str, Any]:
        return {
            "is_configured": self.is_configured,
            "model": self.model,
            "timeout": self.timeout,
            "configuration_error": self.configuration_error,
        }
