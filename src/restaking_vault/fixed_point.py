"""
Integer fixed-point helpers.

All reward and share arithmetic is done on Python ints; the only question is
which way each division rounds. Paying users rounds down unless the caller
explicitly asks otherwise.
"""

from __future__ import annotations

from .config import RoundingMode
from .exceptions import InvalidAmount

MAX_UINT256 = 2**256 - 1


def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
    """
    Calculate (a * b) / denominator with full precision and controlled rounding.

    Args:
        a: First multiplicand
        b: Second multiplicand
        denominator: Divisor
        round_up: If True, round up; otherwise round down

    Returns:
        Result of (a * b) / denominator

    Raises:
        ValueError: If denominator is zero
    """
    if denominator == 0:
        raise ValueError("Division by zero")

    result = a * b
    if round_up:
        return -((-result) // denominator)
    return result // denominator


def mul_div_mode(a: int, b: int, denominator: int, mode: RoundingMode) -> int:
    return mul_div(a, b, denominator, round_up=mode is RoundingMode.UP)


def require_positive(amount: int, field: str = "amount") -> None:
    """Reject anything that is not a positive integer within uint256 range."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{field} must be an integer", {"field": field})
    if amount <= 0:
        raise InvalidAmount(f"{field} must be positive", {"field": field, "value": amount})
    if amount > MAX_UINT256:
        raise InvalidAmount(f"{field} exceeds uint256", {"field": field})
