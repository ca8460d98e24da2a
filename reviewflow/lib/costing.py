"""
Token cost estimation for AI reviewer calls.

Prices are USD per 1K tokens (input, output). Unknown models use DEFAULT_PRICE.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


MODEL_PRICES: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.005, 0.015),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4": (0.03, 0.06),
    "gpt-3.5-turbo": (0.0015, 0.002),
    "claude-3-5-sonnet": (0.003, 0.015),
    "claude-3-opus": (0.015, 0.075),
    "claude-3-haiku": (0.00025, 0.00125),
    "gemini-pro": (0.0005, 0.0015),
    "local-llm": (0.0, 0.0),
    "ollama": (0.0, 0.0),
}

DEFAULT_PRICE = (0.001, 0.002)


def price_for(model: str | None) -> tuple[float, float]:
    """Look up (input, output) price per 1K tokens.

    Matches the longest known prefix so dated model names
    ("claude-3-5-sonnet-20241022") resolve to their family.
    """
    if not model:
        return DEFAULT_PRICE
    name = model.lower()
    for known in sorted(MODEL_PRICES, key=len, reverse=True):
        if name.startswith(known):
            return MODEL_PRICES[known]
    logger.debug(f"No price for model '{model}', using default")
    return DEFAULT_PRICE


def estimate_cost(model: str | None, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = price_for(model)
    return (input_tokens / 1000.0) * input_price + (output_tokens / 1000.0) * output_price


@dataclass
class TokenUsage:
    """Usage reported by one AI reviewer call."""
    reviewer_id: str
    model: str | None
    input_tokens: int = 0
    output_tokens: int = 0
    reported_cost_usd: float | None = None  # From the agent itself; wins over the estimate

    @property
    def cost_usd(self) -> float:
        if self.reported_cost_usd is not None:
            return self.reported_cost_usd
        return estimate_cost(self.model, self.input_tokens, self.output_tokens)


class UsageLedger:
    """Per-run accumulator that reviewers record token usage into."""

    def __init__(self):
        self.entries: list[TokenUsage] = []

    def record(self, usage: TokenUsage) -> None:
        self.entries.append(usage)

    @property
    def total_cost_usd(self) -> float | None:
        if not self.entries:
            return None
        return round(sum(e.cost_usd for e in self.entries), 6)

    @property
    def total_tokens(self) -> tuple[int, int]:
        return (
            sum(e.input_tokens for e in self.entries),
            sum(e.output_tokens for e in self.entries),
        )
