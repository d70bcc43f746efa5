"""
units.py - Conversions between display amounts and integer base units.

The ledger stores every amount as a whole number of base units
(10**18 base units per ETH). These helpers convert human-facing decimal
strings to that representation and back, exactly.
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Union

from .core import NATIVE_ASSET_DECIMALS


def parse_units(value: Union[str, int, Decimal], decimals: int) -> int:
    """
    Convert a display amount to base units.

    Args:
        value: Amount as a decimal string, int or Decimal (floats are refused)
        decimals: Number of decimals of the base unit

    Returns:
        Integer amount in base units

    Raises:
        ValueError: If value is not a number, is a float, or has more
                    fractional digits than decimals allows
    """
    if isinstance(value, (float, bool)):
        raise ValueError(f"use a string or Decimal, not {type(value).__name__}: {value!r}")
    try:
        amount = Decimal(value) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise ValueError(f"not a number: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"amount must be finite, got {value!r}")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value!r} has more than {decimals} decimal places")
    return int(scaled)


def format_units(amount: int, decimals: int) -> str:
    """Convert base units to a display string without trailing zeros."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an integer, got {amount!r}")
    value = Decimal(amount).scaleb(-decimals).normalize()
    return format(value, "f")


def parse_ether(value: Union[str, int, Decimal]) -> int:
    """parse_ether("1.5") == 1_500_000_000_000_000_000"""
    return parse_units(value, NATIVE_ASSET_DECIMALS)


def format_ether(amount: int) -> str:
    """format_ether(1_500_000_000_000_000_000) == "1.5" """
    return format_units(amount, NATIVE_ASSET_DECIMALS)
