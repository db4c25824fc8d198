from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from graded_chat.memory.models import Message


@dataclass(frozen=True)
class ModelPricing:
    display_name: str
    input_per_million: float
    output_per_million: float


PRICING: dict[str, ModelPricing] = {
    "claude-haiku-4-5-20251001": ModelPricing("Haiku 4.5", 0.80, 4.00),
    "claude-sonnet-4-5-20250929": ModelPricing("Sonnet 4.5", 3.00, 15.00),
    "claude-opus-4-6": ModelPricing("Opus 4.6", 5.00, 25.00),
}


def cost_of(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = PRICING.get(model)
    if pricing is None:
        return 0.0
    return (
        input_tokens / 1_000_000 * pricing.input_per_million
        + output_tokens / 1_000_000 * pricing.output_per_million
    )


def calculate_cost(messages: Iterable[Message]) -> float:
    """Dollar cost of a conversation, priced per assistant message by the model that produced it.

    Messages from models missing from ``PRICING`` contribute nothing.
    """
    return sum(
        cost_of(m.model_used, m.input_tokens, m.output_tokens)
        for m in messages
        if m.is_assistant and m.model_used
    )


def format_cost(cost: float) -> str:
    return f"${cost:.4f}"
