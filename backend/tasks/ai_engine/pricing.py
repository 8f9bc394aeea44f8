# tasks/ai_engine/pricing.py
"""
Advisory token pricing.

Prices are USD per million tokens (input, output). Unknown models cost 0.0;
nothing in the pipeline depends on these numbers.
"""

from typing import Dict, Optional, Tuple

from .types import UsageReport

MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1-nano": (0.10, 0.40),
    "gpt-4-turbo": (10.00, 30.00),
    "gpt-3.5-turbo": (0.50, 1.50),
    "gpt-3.5-turbo-0125": (0.50, 1.50),
}

CHARS_PER_TOKEN = 4


def _lookup(model: str) -> Optional[Tuple[float, float]]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # dated snapshots, e.g. gpt-4o-mini-2024-07-18; longest prefix wins
    for name in sorted(MODEL_PRICING, key=len, reverse=True):
        if model.startswith(name + "-"):
            return MODEL_PRICING[name]
    return None


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    prices = _lookup(model or "")
    if prices is None:
        return 0.0
    input_price, output_price = prices
    return round((prompt_tokens * input_price + completion_tokens * output_price) / 1_000_000, 8)


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def build_usage_report(
    model: str,
    prompt_tokens: Optional[int] = None,
    completion_tokens: Optional[int] = None,
    prompt_text: str = "",
    completion_text: str = "",
) -> UsageReport:
    """Usage from provider counts when given, else estimated from text length."""
    is_estimated = prompt_tokens is None or completion_tokens is None
    if prompt_tokens is None:
        prompt_tokens = estimate_tokens(prompt_text)
    if completion_tokens is None:
        completion_tokens = estimate_tokens(completion_text)
    return UsageReport(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        estimated_cost=estimate_cost(model, prompt_tokens, completion_tokens),
        model=model,
        is_estimated=is_estimated,
    )
