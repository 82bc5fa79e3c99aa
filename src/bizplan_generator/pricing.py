"""Static model pricing table and cost estimation.

Prices are USD per 1M tokens.  ``estimate_cost`` returns ``None`` for
models missing from the table: an unknown cost is not a zero cost.
Local Ollama models are always free.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import ProviderId, TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    input_per_million: float
    output_per_million: float


MODEL_PRICING: dict[str, ModelPricing] = {
    # Claude
    "claude-sonnet-4-6": ModelPricing(3.00, 15.00),
    "claude-haiku-4-5-20251001": ModelPricing(1.00, 5.00),
    "claude-opus-4-6": ModelPricing(15.00, 75.00),
    # Gemini
    "gemini-2.5-pro": ModelPricing(1.25, 10.00),
    "gemini-2.5-flash": ModelPricing(0.30, 2.50),
    "gemini-2.5-flash-lite": ModelPricing(0.10, 0.40),
    # OpenAI
    "gpt-5": ModelPricing(1.25, 10.00),
    "gpt-4.1": ModelPricing(2.00, 8.00),
    "gpt-4.1-mini": ModelPricing(0.40, 1.60),
    "gpt-4.1-nano": ModelPricing(0.10, 0.40),
    "gpt-4o": ModelPricing(2.50, 10.00),
    "gpt-4o-mini": ModelPricing(0.15, 0.60),
    # Ollama
    "gemma2:9b": ModelPricing(0.0, 0.0),
}


def estimate_cost(
    provider_id: ProviderId,
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> float | None:
    """Estimated USD cost of one call, or ``None`` when the model is unpriced."""
    if provider_id == ProviderId.OLLAMA:
        return 0.0
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return None
    return (
        pricing.input_per_million * input_tokens
        + pricing.output_per_million * output_tokens
    ) / 1_000_000


def build_usage(
    provider_id: ProviderId,
    model: str,
    input_tokens: int | None,
    output_tokens: int | None,
) -> TokenUsage:
    """Build a ``TokenUsage`` record, treating missing counts as zero."""
    input_tokens = int(input_tokens or 0)
    output_tokens = int(output_tokens or 0)
    return TokenUsage(
        provider=provider_id,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=estimate_cost(provider_id, model, input_tokens, output_tokens),
    )


def summarize_usage(usage: list[TokenUsage]) -> dict[str, float]:
    """Totals across calls; unpriced calls count toward tokens but not cost."""
    return {
        "input_tokens": sum(u.input_tokens for u in usage),
        "output_tokens": sum(u.output_tokens for u in usage),
        "cost_usd": sum(u.cost_usd or 0.0 for u in usage),
        "unpriced_calls": sum(1 for u in usage if u.cost_usd is None),
    }
