# tasks/ai_engine/expander.py
"""
Keyword Expander
================

Service layer that asks an OpenAI model to expand the free-text part of a
query into multilingual keywords and, optionally, natural-language properties
("urgent things due this week").

This module has no Django ORM dependencies and never raises from expand():
every failure comes back as a contract with an error code, and the resolver
falls back to deterministic keywords.

Contract:
---------
    {
        "core_keywords": [str, ...],
        "keywords": [str, ...],
        "properties": {"priority": ..., "dueDate": ..., "dueDateRange": ...,
                       "status": ..., "folder": ..., "tags": [...]},
        "error_code": str | None,
        "error_message": str | None,
    }

Error Codes:
------------
- EXPANDER_NOT_CONFIGURED, AUTH_ERROR, RATE_LIMIT, TIMEOUT, CONNECTION_ERROR,
  BAD_REQUEST, API_ERROR_<status>, JSON_PARSE_ERROR, VALIDATION_ERROR,
  UNEXPECTED_ERROR
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from django.conf import settings
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    OpenAI,
    RateLimitError,
)

from .config import EngineConfig
from .prompts import build_expansion_messages
from .reconciler import strip_reasoning

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
EXPECTED_KEYS = ("coreKeywords", "keywords")
PRIORITY_WORDS = ("any", "all", "none")


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def parse_expansion_payload(raw: str) -> Dict[str, Any]:
    """
    Find the JSON object inside a model reply.

    Models in JSON mode usually return a bare object, but reasoning tags,
    markdown fences or a sentence of prose around it are all tolerated.

    Raises:
        json.JSONDecodeError: If no JSON object can be found.
    """
    text = strip_reasoning(raw)
    if not text:
        raise json.JSONDecodeError("Empty response", raw or "", 0)

    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    fenced = CODE_FENCE_PATTERN.search(text)
    if fenced:
        try:
            data = json.loads(fenced.group(1).strip())
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass

    decoder = json.JSONDecoder()
    fallback: Optional[Dict[str, Any]] = None
    for start in (i for i, ch in enumerate(text) if ch == "{"):
        try:
            data, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        if any(key in data for key in EXPECTED_KEYS):
            return data
        if fallback is None:
            fallback = data

    if fallback is not None:
        return fallback
    raise json.JSONDecodeError("No JSON object found in response", text, 0)


def _clean_terms(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    terms = []
    for item in value:
        if isinstance(item, (str, int, float)) and not isinstance(item, bool):
            term = str(item).strip()
            if term:
                terms.append(term)
    return terms


# ---------------------------------------------------------------------------
# Main Service Class
# ---------------------------------------------------------------------------


class OpenAIKeywordExpander:
    """
    Expands free-text query fragments via the OpenAI Chat Completions API.

    Uses DEFERRED INITIALIZATION like every external service here: a missing
    API key does not raise, it leaves ``is_configured`` False and expand()
    answers with an EXPANDER_NOT_CONFIGURED contract.

    Attributes:
        model (str): The OpenAI model to use.
        client (OpenAI | None): Initialized client, or None if unavailable.
        is_configured (bool): Whether the expander is ready.
        configuration_error (str | None): Description of configuration issue.
    """

    DEFAULT_MODEL: str = "gpt-4o-mini"

    DEFAULT_TEMPERATURE: float = 0.1
    DEFAULT_MAX_TOKENS: int = 400
    DEFAULT_TIMEOUT: float = 10.0  # Seconds
    DEFAULT_EXPANSIONS_PER_KEYWORD: int = 5

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        **client_kwargs: Any,
    ) -> None:
        self.model: str = (
            model or getattr(settings, "TASK_CHAT_EXPANSION_MODEL", None) or self.DEFAULT_MODEL
        )
        self.timeout: float = timeout or self.DEFAULT_TIMEOUT
        self._client_kwargs: Dict[str, Any] = client_kwargs

        self.api_key: Optional[str] = None
        self.client: Optional[OpenAI] = None
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
            logger.warning(f"OpenAIKeywordExpander: {self.configuration_error}")
            return

        try:
            self.api_key = resolved_key
            self.client = OpenAI(api_key=self.api_key, **self._client_kwargs)
            self.is_configured = True
            self.configuration_error = None
            logger.info(f"OpenAIKeywordExpander initialized with model={self.model}")
        except Exception as e:
            self.configuration_error = f"Failed to initialize OpenAI client: {str(e)}"
            logger.error(f"OpenAIKeywordExpander: {self.configuration_error}")
            self.client = None
            self.is_configured = False

    def expand(self, free_text: str, config: EngineConfig) -> Dict[str, Any]:
        """
        Expand ``free_text`` into keywords and optional properties.

        Args:
            free_text: Query text left after structured syntax was removed.
            config: Snapshot supplying the status vocabulary for the prompt.

        Returns:
            The expansion contract described in the module docstring.
        """
        if not self.is_configured or self.client is None:
            return self._get_error_response(
                error_code="EXPANDER_NOT_CONFIGURED",
                error_message=self.configuration_error or "Expander not available",
            )

        messages = build_expansion_messages(
            free_text, config, per_keyword=self.DEFAULT_EXPANSIONS_PER_KEYWORD
        )

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.DEFAULT_TEMPERATURE,
                max_tokens=self.DEFAULT_MAX_TOKENS,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
            raw_content: str = response.choices[0].message.content or ""
            logger.debug(f"OpenAIKeywordExpander: Raw response: {raw_content[:200]}")

            result = self._validate_and_parse_response(raw_content)
            logger.info(
                f"OpenAIKeywordExpander: '{free_text}' -> "
                f"{len(result['core_keywords'])} core / {len(result['keywords'])} keywords"
            )
            return result

        except AuthenticationError as e:
            logger.error(f"OpenAI authentication failed: {e}")
            return self._get_error_response(
                error_code="AUTH_ERROR",
                error_message="Invalid API key or authentication failed",
            )

        except RateLimitError as e:
            logger.warning(f"OpenAI rate limit exceeded: {e}")
            return self._get_error_response(
                error_code="RATE_LIMIT",
                error_message="API rate limit exceeded, please retry later",
            )

        except APITimeoutError as e:
            logger.warning(f"OpenAI API timeout: {e}")
            return self._get_error_response(
                error_code="TIMEOUT",
                error_message="API request timed out",
            )

        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            return self._get_error_response(
                error_code="CONNECTION_ERROR",
                error_message="Could not connect to OpenAI API",
            )

        except BadRequestError as e:
            logger.error(f"OpenAI bad request: {e}")
            return self._get_error_response(
                error_code="BAD_REQUEST",
                error_message="Invalid request to OpenAI API",
            )

        except APIStatusError as e:
            logger.error(f"OpenAI API status error: {e.status_code} - {e}")
            return self._get_error_response(
                error_code=f"API_ERROR_{e.status_code}",
                error_message=f"OpenAI API error (status {e.status_code})",
            )

        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode expansion response as JSON: {e}")
            return self._get_error_response(
                error_code="JSON_PARSE_ERROR",
                error_message="AI returned invalid JSON response",
            )

        except ValueError as e:
            logger.error(f"Expansion validation failed: {e}")
            return self._get_error_response(
                error_code="VALIDATION_ERROR",
                error_message=str(e),
            )

        except Exception as e:
            logger.exception(f"Unexpected error in OpenAIKeywordExpander: {e}")
            return self._get_error_response(
                error_code="UNEXPECTED_ERROR",
                error_message=f"Unexpected error: {type(e).__name__}",
            )

    def _validate_and_parse_response(self, raw: str) -> Dict[str, Any]:
        """
        Parse the model reply and keep only well-typed fields.

        Property values are type-checked here; their meaning (is "wip" a known
        status?) is checked by the resolver against the request's config.

        Raises:
            json.JSONDecodeError: If no JSON object is present.
            ValueError: If neither keyword list is present.
        """
        data = parse_expansion_payload(raw)

        if not any(key in data for key in EXPECTED_KEYS):
            raise ValueError("Missing keyword lists in expansion response")

        core = _clean_terms(data.get("coreKeywords"))
        keywords = _clean_terms(data.get("keywords"))

        properties: Dict[str, Any] = {}

        priority = data.get("priority")
        if isinstance(priority, bool):
            priority = None
        if isinstance(priority, (int, str)) and str(priority).lower() in PRIORITY_WORDS:
            properties["priority"] = str(priority).lower()
        elif priority is not None:
            levels = priority if isinstance(priority, list) else [priority]
            parsed = []
            for level in levels:
                try:
                    value = int(level)
                except (TypeError, ValueError):
                    continue
                if 1 <= value <= 4 and value not in parsed:
                    parsed.append(value)
            if parsed:
                properties["priority"] = parsed
            else:
                logger.warning(f"Expander proposed invalid priority {priority!r}; ignored")

        due = data.get("dueDate")
        if isinstance(due, str) and due.strip():
            properties["dueDate"] = due.strip()

        due_range = data.get("dueDateRange")
        if isinstance(due_range, dict):
            bounds = {
                key: due_range[key].strip()
                for key in ("start", "end")
                if isinstance(due_range.get(key), str) and due_range[key].strip()
            }
            if bounds:
                properties["dueDateRange"] = bounds

        status = _clean_terms(data.get("status"))
        if status:
            properties["status"] = status

        folder = data.get("folder")
        if isinstance(folder, str) and folder.strip():
            properties["folder"] = folder.strip()

        tags = [tag.lstrip("#").lower() for tag in _clean_terms(data.get("tags"))]
        tags = [tag for tag in tags if tag]
        if tags:
            properties["tags"] = tags

        return {
            "core_keywords": core,
            "keywords": keywords,
            "properties": properties,
            "error_code": None,
            "error_message": None,
        }

    def _get_error_response(self, error_code: str, error_message: str) -> Dict[str, Any]:
        return {
            "core_keywords": [],
            "keywords": [],
            "properties": {},
            "error_code": error_code,
            "error_message": error_message,
        }

    def health_check(self) -> Dict[str, Any]:
        return {
            "is_configured": self.is_configured,
            "model": self.model,
            "timeout": self.timeout,
            "configuration_error": self.configuration_error,
        }
