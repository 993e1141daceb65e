"""
Cost Tracker Module

Turns token usage into an estimated USD cost.
"""

from .models.page_models import TokenUsage

# Pricing per 1M tokens (update as needed)
PRICING = {
    "gpt-4o": {
        "input": 2.50,
        "output": 10.00,
    },
    "gpt-4o-mini": {
        "input": 0.15,
        "output": 0.60,
    },
    "gpt-4.1": {
        "input": 2.00,
        "output": 8.00,
    },
    "gpt-4.1-mini": {
        "input": 0.40,
        "output": 1.60,
    },
    "default": {
        "input": 2.50,
        "output": 10.00,
    },
}


def estimate_cost(model: str, usage: TokenUsage) -> float:
    """Estimated cost in USD for ``usage`` on ``model``."""
    pricing = PRICING.get(model, PRICING["default"])
    cost_input = (usage.input / 1_000_000) * pricing["input"]
    cost_output = (usage.output / 1_000_000) * pricing["output"]
    return round(cost_input + cost_output, 6)
