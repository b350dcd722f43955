"""Token and cost estimation for proxied calls"""
import math
from typing import Any, Optional

# USD per 1K tokens
COST_PER_1K_TOKENS = {
    'gpt-4': 0.06,
    'gpt-4-turbo': 0.03,
    'gpt-3.5-turbo': 0.002,
    'claude-3-opus': 0.075,
    'claude-3-sonnet': 0.015,
    'claude-3-haiku': 0.00125,
}
DEFAULT_COST_PER_1K_TOKENS = 0.01

CHARS_PER_TOKEN = 4


def estimate_tokens(text: Optional[str]) -> int:
    """Approximate tokens as one per four characters, rounded up"""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def rate_per_1k_tokens(model: Optional[str] = None) -> float:
    if not model:
        return DEFAULT_COST_PER_1K_TOKENS
    return COST_PER_1K_TOKENS.get(model, DEFAULT_COST_PER_1K_TOKENS)


def estimate_cost(tokens: int, model: Optional[str] = None) -> float:
    """Estimated USD cost of ``tokens`` for ``model`` (default rate when unknown)"""
    return (tokens / 1000) * rate_per_1k_tokens(model)


def extract_reported_tokens(payload: Any) -> Optional[int]:
    """Total tokens from a provider's ``usage`` block, if the response carries one.

    Understands OpenAI-style (total_tokens, prompt/completion) and
    Anthropic-style (input/output) usage objects. Returns None otherwise.
    """
    if not isinstance(payload, dict):
        return None
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None

    def _count(key):
        value = usage.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return None
        return value

    total = _count("total_tokens")
    if total is not None:
        return total

    for first, second in (("prompt_tokens", "completion_tokens"), ("input_tokens", "output_tokens")):
        a, b = _count(first), _count(second)
        if a is not None or b is not None:
            return (a or 0) + (b or 0)

    return None
