"""Rough token counting and cost estimation.

Providers report real usage when they can; these estimates fill in for
endpoints that return no usage block (many self-hosted servers).
"""

from __future__ import annotations

CHARS_PER_TOKEN = 4

# USD per 1M tokens: (prompt, completion).
MODEL_PRICES: dict[str, tuple[float, float]] = {
    "gpt-5-mini": (0.15, 0.60),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4-turbo": (10.00, 30.00),
    "gpt-4": (30.00, 60.00),
    "claude-sonnet-4": (3.00, 15.00),
    "claude-3-5-haiku": (0.80, 4.00),
}


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return max(1, (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN)


def estimate_messages(messages: list[dict]) -> int:
    # ~4 tokens of framing per chat message.
    return sum(estimate_tokens(m.get("content", "")) + 4 for m in messages)


def _price_for(model: str) -> tuple[float, float] | None:
    model = (model or "").lower()
    # Longest prefix wins so "gpt-4o-mini" is not priced as "gpt-4o" or "gpt-4".
    for name in sorted(MODEL_PRICES, key=len, reverse=True):
        if model.startswith(name):
            return MODEL_PRICES[name]
    return None


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Return the estimated USD cost, or 0.0 for unknown (e.g. self-hosted) models."""
    price = _price_for(model)
    if price is None:
        return 0.0
    prompt_price, completion_price = price
    return (prompt_tokens * prompt_price + completion_tokens * completion_price) / 1_000_000
