"""WAD fixed-point arithmetic with explicit rounding direction.

All amounts in the engine are integers. Scalars (multipliers, slash index,
exchange rates, loss percentages) are WAD-scaled: 1.0 == 10**18.

Every call site picks its rounding direction so that rounding always goes
against the user and aggregates can never be driven negative.
"""

from decimal import Decimal
from typing import Union

WAD = 10 ** 18


def mul_div_down(x: int, y: int, denominator: int) -> int:
    """Compute floor(x * y / denominator)."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div_down by zero")
    return (x * y) // denominator


def mul_div_up(x: int, y: int, denominator: int) -> int:
    """Compute ceil(x * y / denominator)."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div_up by zero")
    product = x * y
    if product == 0:
        return 0
    return (product - 1) // denominator + 1


def mul_wad_down(x: int, y: int) -> int:
    return mul_div_down(x, y, WAD)


def mul_wad_up(x: int, y: int) -> int:
    return mul_div_up(x, y, WAD)


def div_wad_down(x: int, y: int) -> int:
    return mul_div_down(x, WAD, y)


def div_wad_up(x: int, y: int) -> int:
    return mul_div_up(x, WAD, y)


def to_wad(value: Union[float, str, Decimal, int]) -> int:
    """
    Convert a human-readable decimal (e.g. 1.2) to a WAD integer.

    Goes through Decimal(str(value)) so that 1.2 becomes exactly 1.2e18
    instead of the nearest binary float.
    """
    return int(Decimal(str(value)) * WAD)


def from_wad(value: int) -> float:
    """Convert a WAD integer back to a float, for display only."""
    return value / WAD
