"""
calculator.py - Financial Calculator for Collateralized Loans

PURE FUNCTIONS - all inputs explicit, integer arithmetic only.

Every percentage is applied with floor division on non-negative integers,
so results are bit-exact with on-chain arithmetic:

    loan_amount = collateral * ltv_ratio // 100
    interest    = principal * rate // 100
    rebate      = interest * rebate_percent // 100
    total_due   = principal + interest - rebate

A rebate is granted only when repayment happens strictly before
due_date - rebate_window.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta

from .config import LTV_RATIO, REBATE_PERCENT, REBATE_WINDOW


@dataclass(frozen=True, slots=True)
class RepaymentQuote:
    """Breakdown of what a borrower owes at a given time."""
    principal: int
    interest: int
    rebate: int
    rebate_applied: bool

    @property
    def total_due(self) -> int:
        return self.principal + self.interest - self.rebate


def _check_amount(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")


def loan_amount_for(collateral: int, ltv_ratio: int = LTV_RATIO) -> int:
    """Principal advanced against a collateral deposit."""
    _check_amount("collateral", collateral)
    _check_amount("ltv_ratio", ltv_ratio)
    return collateral * ltv_ratio // 100


def interest_for(principal: int, rate: int) -> int:
    """Flat interest owed on a principal at a percentage rate."""
    _check_amount("principal", principal)
    _check_amount("rate", rate)
    return principal * rate // 100


def rebate_for(interest: int, rebate_percent: int = REBATE_PERCENT) -> int:
    """Early-repayment discount on the interest."""
    _check_amount("interest", interest)
    _check_amount("rebate_percent", rebate_percent)
    return interest * rebate_percent // 100


def is_eligible_for_rebate(
    now: datetime,
    due_date: datetime,
    window: timedelta = REBATE_WINDOW,
) -> bool:
    """True when now is strictly earlier than due_date - window."""
    return now < due_date - window


def quote_repayment(
    loan_amount: int,
    interest_rate: int,
    now: datetime,
    due_date: datetime,
    rebate_percent: int = REBATE_PERCENT,
    rebate_window: timedelta = REBATE_WINDOW,
) -> RepaymentQuote:
    """
    Compute the full repayment breakdown for a funded loan.

    Args:
        loan_amount: Principal advanced to the borrower
        interest_rate: Percentage rate fixed at creation
        now: Time of repayment
        due_date: Loan due date
        rebate_percent: Discount on interest for early repayment
        rebate_window: How far before due_date repayment must happen

    Returns:
        RepaymentQuote with interest, rebate and total_due

    Example:
        >>> q = quote_repayment(5 * 10**18, 10, datetime(2025, 1, 2), datetime(2025, 1, 16))
        >>> q.total_due
        5450000000000000000
    """
    interest = interest_for(loan_amount, interest_rate)
    rebate_applied = is_eligible_for_rebate(now, due_date, rebate_window)
    rebate = rebate_for(interest, rebate_percent) if rebate_applied else 0
    return RepaymentQuote(
        principal=loan_amount,
        interest=interest,
        rebate=rebate,
        rebate_applied=rebate_applied,
    )
