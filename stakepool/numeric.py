"""
Fixed-point helpers.

Every amount in the engine is an ``int`` in the asset's smallest unit and
every rate is an ``int`` scaled by ``SCALE``. These helpers make rounding
direction explicit.
"""

from .constants import SCALE
from .exceptions import InvalidAmountError


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator)."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div by zero")
    return (a * b) // denominator


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator)."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div_up by zero")
    return -((-a * b) // denominator)


def apply_rate(amount: int, rate: int) -> int:
    """floor(amount * rate / SCALE)."""
    return mul_div(amount, rate, SCALE)


def to_bps(rate: int) -> int:
    """Scaled rate to whole basis points (floor)."""
    return rate * 10_000 // SCALE


def require_amount(value: int, name: str = "amount") -> int:
    """Reject non-int or negative amounts."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmountError(f"{name} must be non-negative")
    return value
