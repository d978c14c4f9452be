"""
Facility pricing.

The only implementation of the cost-modifier rule. Purchases charge with it
and the price-preview endpoint serves it to clients, so preview and charge
can never drift apart.
"""
import math
from typing import Any


MODIFIER_MIN = -100
MODIFIER_MAX = 300
PRICE_STEP = 50
MINOR_SLOT_UNLOCK_PRICE = 5000


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return float("nan")
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def round_to_step(value: float, step: int = PRICE_STEP) -> int:
    # Half-up, matching Math.round; Python's round() would be banker's rounding
    return int(math.floor(value / step + 0.5)) * step


def apply_cost_modifier(base_price: Any, modifier: Any) -> int:
    """Apply a percentage modifier (clamped to -100..300) and round to the nearest 50.

    >>> apply_cost_modifier(1000, -30)
    700
    >>> apply_cost_modifier(1234, 0)
    1250
    """
    price = _to_number(base_price)
    if math.isnan(price) or price < 0:
        return 0

    mod = _to_number(modifier)
    if math.isnan(mod):
        return round_to_step(price)

    clamped = max(MODIFIER_MIN, min(MODIFIER_MAX, mod))
    return round_to_step(price * (1 + clamped / 100))


def split_share(total: int, payer_count: int) -> int:
    """Per-payer share, rounded up so the split never under-collects."""
    if payer_count <= 0:
        raise ValueError("payer_count must be positive")
    return math.ceil(total / payer_count)
