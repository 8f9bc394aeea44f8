# tasks/ai_engine/errors.py
"""
Engine Exceptions
=================

Only MalformedStructuredSyntax, RequestCancelled and an UpstreamModelFailure
with nothing to fall back to ever reach the caller. Everything else is
recovered inside the pipeline and reported through flags and error codes.
"""

from __future__ import annotations

from typing import Optional


class TaskEngineError(Exception):
    """Base class for all engine errors."""

    pass


class MalformedStructuredSyntax(TaskEngineError, ValueError):
    """Raised when explicit filter syntax names an unknown value, e.g. ``p:7``."""

    def __init__(self, message: str, token: str = "", key: str = "") -> None:
        super().__init__(message)
        self.token = token
        self.key = key


class SemanticExpansionFailure(TaskEngineError):
    """Raised when the keyword expander cannot produce a usable result."""

    def __init__(self, error_code: str, message: str = "") -> None:
        super().__init__(message or error_code)
        self.error_code = error_code


class UpstreamModelFailure(TaskEngineError):
    """Raised when the language model call itself fails."""

    def __init__(
        self, error_code: str, message: str = "", status_code: Optional[int] = None
    ) -> None:
        super().__init__(message or error_code)
        self.error_code = error_code
        self.status_code = status_code


class RequestCancelled(TaskEngineError):
    """Raised when the caller aborts a chat request."""

    pass
