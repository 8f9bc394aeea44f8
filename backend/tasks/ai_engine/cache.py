# tasks/ai_engine/cache.py

import json
import hashlib
import logging
from typing import Dict, Any, Callable
from django.core.cache import caches
from django.conf import settings

# Configure logging for cache monitoring
logger = logging.getLogger(__name__)

class ExpansionCache:
    """
    Caching layer in front of the keyword expander.

    A user refining a search sends the same free-text fragment again and
    again with different filter syntax around it. Only the fragment and the
    model name go into the key, so every refinement after the first skips
    the model call.

    Features:
    - Any Django cache alias (locmem by default, Redis when REDIS_URL is set).
    - Keys are case and whitespace insensitive.
    - Backend errors are logged and the expander is called as if on a miss.
    - Only successful contracts (error_code is None) are stored.
    """

    KEY_PREFIX = "kw_expansion"

    def __init__(
        self,
        ttl: int = 86400,
        version: str = "v1",
        cache_alias: str = "default"
    ):
        """
        Args:
            ttl: Time-to-live in seconds (default: 24 hours); AI_CACHE_TTL wins.
            version: Bump to orphan entries written by an older prompt.
            cache_alias: The Django cache alias to utilize.
        """
        self.ttl = getattr(settings, 'AI_CACHE_TTL', ttl)
        self.version = version
        self.cache_alias = cache_alias

    @property
    def backend(self):
        return caches[self.cache_alias]

    def get_or_set_expansion(
        self,
        free_text: str,
        model: str,
        expand_func: Callable[[], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Return the cached expansion for ``free_text`` or compute and store it.

        Args:
            free_text: Query fragment being expanded.
            model: Model identifier, part of the key.
            expand_func: The expander call to wrap; returns the contract dict.

        Returns:
            The expansion contract, either from cache or live service.
        """
        cache_key = self._generate_key(free_text, model)

        try:
            cached_result = self.backend.get(cache_key)
            if cached_result is not None:
                logger.debug(f"Expansion Cache Hit: {cache_key}")
                return cached_result
        except Exception as e:
            logger.error(f"Cache retrieval failure: {str(e)}")

        logger.info(f"Expansion Cache Miss: {cache_key}. Invoking expander.")
        result = expand_func()

        if not isinstance(result, dict) or result.get("error_code") is not None:
            return result

        try:
            self.backend.set(cache_key, result, timeout=self.ttl)
        except Exception as e:
            logger.error(f"Cache persistence failure: {str(e)}")

        return result

    def invalidate(self, free_text: str, model: str) -> None:
        """Drop one stored expansion, e.g. after the user flags it as wrong."""
        try:
            self.backend.delete(self._generate_key(free_text, model))
        except Exception as e:
            logger.error(f"Cache invalidation failure: {str(e)}")

    def _generate_key(self, free_text: str, model: str) -> str:
        normalized = " ".join(free_text.casefold().split())
        serialized = json.dumps({"text": normalized, "model": model}, sort_keys=True)
        digest = hashlib.sha256(serialized.encode()).hexdigest()
        return f"{self.KEY_PREFIX}_{self.version}_{digest}"
