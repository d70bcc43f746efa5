"""
events.py - Notifications emitted by the lifecycle engine.

Notifications are append-only records kept in Ledger.events. They are
observable by callers and tests but never drive control flow.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar


@dataclass(frozen=True, slots=True)
class LoanRequested:
    """Borrower deposited collateral and opened a loan request."""
    name: ClassVar[str] = "LoanRequested"

    loan_id: int
    borrower: str
    collateral_amount: int
    loan_amount: int
    interest_rate: int
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class LoanFunded:
    """Lender supplied the principal, which was forwarded to the borrower."""
    name: ClassVar[str] = "LoanFunded"

    loan_id: int
    lender: str
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class LoanRepaid:
    """Borrower repaid; amount is the total due after any rebate."""
    name: ClassVar[str] = "LoanRepaid"

    loan_id: int
    amount: int
    rebate_applied: bool
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class CollateralClaimed:
    """Lender took the collateral of an overdue, unrepaid loan."""
    name: ClassVar[str] = "CollateralClaimed"

    loan_id: int
    lender: str
    timestamp: datetime
