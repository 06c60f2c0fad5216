"""
Pricing calculations and the per-request cost meter.

Costs are in US dollars, computed with Decimal and always rounded up.
"""

from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from typing import Dict

from .token_counter import TokenUsage, estimate_tokens

COST_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


PRICING_TABLE = PricingTable({
    "gpt-4": ModelPricing(
        prompt_cost_per_1k=Decimal("0.03"),
        completion_cost_per_1k=Decimal("0.06")
    ),
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0025"),
        completion_cost_per_1k=Decimal("0.01")
    ),
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006")
    ),
    "gpt-3.5-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0005"),
        completion_cost_per_1k=Decimal("0.0015")
    ),
})


def calculate_cost(model: str, usage: TokenUsage) -> Decimal:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Total cost rounded UP to COST_QUANTUM

    Raises:
        ValueError: If model is not supported
    """
    pricing = PRICING_TABLE.get_pricing(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    return (prompt_cost + completion_cost).quantize(COST_QUANTUM, rounding=ROUND_UP)


class CostMeter:
    """Running cost estimate for one request.

    Grows with every prompt sent and every character emitted; it can
    never go down or below zero.
    """

    def __init__(self, model: str):
        PRICING_TABLE.get_pricing(model)
        self.model = model
        self._prompt_tokens = 0
        self._completion_chars = 0

    def add_prompt(self, text: str) -> None:
        """Charge one prompt sent to the provider."""
        self._prompt_tokens += estimate_tokens(len(text))

    def add_completion(self, delta: str) -> None:
        """Charge emitted text."""
        self._completion_chars += len(delta)

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self._prompt_tokens,
            completion_tokens=estimate_tokens(self._completion_chars)
        )

    @property
    def value(self) -> Decimal:
        return calculate_cost(self.model, self.usage)
