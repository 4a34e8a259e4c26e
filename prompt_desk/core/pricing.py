"""
Pricing calculations and rate management.

Handles cost estimates for the supported chat models.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_UP
from typing import Dict, Mapping

from .token_counter import TokenUsage

COST_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class ModelRates:
    """Per-token pricing for a specific model."""
    input_per_1k: Decimal  # Cost per 1K input tokens
    output_per_1k: Decimal  # Cost per 1K output tokens

    def __post_init__(self):
        """Validate rates are not negative."""
        if self.input_per_1k < 0:
            raise ValueError("input_per_1k cannot be negative")
        if self.output_per_1k < 0:
            raise ValueError("output_per_1k cannot be negative")


@dataclass(frozen=True)
class RateTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelRates] = field(default_factory=dict)

    def get_rates(self, model: str) -> ModelRates:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelRates for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]

    def merged(self, overrides: Mapping[str, ModelRates]) -> "RateTable":
        """Return a new table with ``overrides`` layered over these prices."""
        prices = dict(self.prices)
        prices.update(overrides)
        return RateTable(prices)

    def models(self):
        return sorted(self.prices)


# Static rate table - USD per 1K tokens, no dynamic fetching
DEFAULT_RATE_TABLE = RateTable({
    "gpt-4o-mini": ModelRates(
        input_per_1k=Decimal("0.00015"),
        output_per_1k=Decimal("0.0006")
    ),
    "gpt-4o": ModelRates(
        input_per_1k=Decimal("0.0025"),
        output_per_1k=Decimal("0.01")
    ),
    "gpt-4.1-mini": ModelRates(
        input_per_1k=Decimal("0.0004"),
        output_per_1k=Decimal("0.0016")
    ),
    "gpt-4.1": ModelRates(
        input_per_1k=Decimal("0.002"),
        output_per_1k=Decimal("0.008")
    ),
    "gpt-3.5-turbo": ModelRates(
        input_per_1k=Decimal("0.0005"),
        output_per_1k=Decimal("0.0015")
    )
})


def calculate_cost(model: str, usage: TokenUsage, table: RateTable = DEFAULT_RATE_TABLE) -> Decimal:
    """Estimate cost for model usage with conservative rounding.

    cost = input_tokens * input_rate + output_tokens * output_rate

    Args:
        model: Model identifier
        usage: Token usage data
        table: Rate table to price against

    Returns:
        Total cost rounded UP to 6 decimal places

    Raises:
        ValueError: If model is not supported
    """
    rates = table.get_rates(model)

    input_cost = (Decimal(usage.input_tokens) / Decimal("1000")) * rates.input_per_1k
    output_cost = (Decimal(usage.output_tokens) / Decimal("1000")) * rates.output_per_1k

    # Always round UP so estimates never understate spend
    total_cost = input_cost + output_cost
    return total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP)
