"""Per-model token pricing.

Prices are USD per million tokens.  Google models are looked up in
``MODEL_PRICING`` by model-name substring (the longest matching key wins,
so ``gemini-2.5-flash-lite`` is not priced as ``gemini-2.5-flash``).
OpenAI and Anthropic models are priced by tier.
"""

from __future__ import annotations

from typing import NamedTuple

from ..models import ProviderKind


class Price(NamedTuple):
    input: float
    output: float


MODEL_PRICING: dict[str, Price] = {
    "gemini-2.5-flash": Price(0.075, 0.30),
    "gemini-flash-latest": Price(0.075, 0.30),
    "gemini-2.5-flash-lite": Price(0.05, 0.20),
    "gemini-3-pro": Price(3.50, 10.50),
    "gemini-3-pro-preview": Price(3.50, 10.50),
    "gemini-1.5-pro": Price(3.50, 10.50),
    "gemini-1.5-flash": Price(0.075, 0.30),
    "default": Price(0.10, 0.40),
}


def table_price(model: str) -> Price:
    """Price from ``MODEL_PRICING``; the longest key contained in *model* wins."""
    matches = [key for key in MODEL_PRICING if key != "default" and key in model]
    if not matches:
        return MODEL_PRICING["default"]
    return MODEL_PRICING[max(matches, key=len)]


def openai_price(model: str) -> Price:
    if "gpt-5" in model or "gpt-4.1" in model or "o1" in model:
        if "mini" in model:
            return Price(3.00, 12.00)
        return Price(15.00, 60.00)
    if "gpt-4" in model and "mini" not in model:
        return Price(5.00, 15.00)
    if "mini" in model:
        return Price(0.15, 0.60)
    return Price(0.50, 1.50)


def anthropic_price(model: str) -> Price:
    if "opus" in model:
        return Price(15.00, 75.00)
    if "haiku" in model:
        return Price(0.25, 1.25)
    return Price(3.00, 15.00)


def price_for(model: str, provider: ProviderKind | None = None) -> Price:
    """Resolve the price tier for *model*, using the provider's tiering when known."""
    if provider == ProviderKind.OPENAI:
        return openai_price(model)
    if provider == ProviderKind.ANTHROPIC:
        return anthropic_price(model)
    return table_price(model)


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    provider: ProviderKind | None = None,
) -> float:
    """Return the USD cost of one call."""
    price = price_for(model or "", provider)
    return (input_tokens / 1_000_000) * price.input + (output_tokens / 1_000_000) * price.output
