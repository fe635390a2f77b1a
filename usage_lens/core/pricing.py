"""
Cost conversion and estimation.

Converts logged USD cost into the display currency and estimates cost from
token counts when the logs carry no cost at all.
"""

from dataclasses import dataclass
from decimal import Decimal

from .token_counter import TokenUsage


@dataclass(frozen=True)
class EstimateRates:
    """Per-token pricing used when no logged cost is available."""
    input_cost_per_1k: Decimal  # USD per 1K input tokens
    output_cost_per_1k: Decimal  # USD per 1K output tokens

    def __post_init__(self):
        """Validate rates are not negative."""
        if self.input_cost_per_1k < 0:
            raise ValueError("input_cost_per_1k cannot be negative")
        if self.output_cost_per_1k < 0:
            raise ValueError("output_cost_per_1k cannot be negative")


# Fixed table, no dynamic fetching
DEFAULT_RATES = EstimateRates(
    input_cost_per_1k=Decimal("0.003"),
    output_cost_per_1k=Decimal("0.015"),
)


def estimate_cost(usage: TokenUsage, rates: EstimateRates = DEFAULT_RATES) -> float:
    """Estimate USD cost from token counts.

    Unlike logged cost this is an approximation, so callers must flag the
    result as estimated.

    Args:
        usage: Token usage to price
        rates: Per-1K-token rates

    Returns:
        Estimated cost in USD
    """
    input_cost = (Decimal(usage.input_tokens) / Decimal("1000")) * rates.input_cost_per_1k
    output_cost = (Decimal(usage.output_tokens) / Decimal("1000")) * rates.output_cost_per_1k
    return float(input_cost + output_cost)


def usd_to_local(amount: float, rate: float) -> float:
    """Convert a USD amount into the display currency.

    Args:
        amount: Cost in USD
        rate: Units of local currency per USD, must be > 0

    Returns:
        Cost in local currency

    Raises:
        ValueError: If rate is not positive
    """
    if rate <= 0:
        raise ValueError("exchange rate must be > 0")
    return amount * rate
