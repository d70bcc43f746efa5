"""
loan_book.py - Loan Ledger for Collateralized Loans

Append-only-by-id storage of loan records inside the Ledger.

ARCHITECTURE:
=============

1. FROZEN DATACLASS (explicit record):
   - Loan: immutable snapshot of one loan (terms + lifecycle flags)

2. ADAPTER FUNCTIONS:
   - load_loan(): read unit state from a LedgerView into a Loan
   - to_state_dict(): inverse, used when building state changes

3. LOAN BOOK:
   - Each loan is a unit of type COLLATERALIZED_LOAN (symbol "LOAN-<id>")
   - The id counter is the state of one LOAN_REGISTRY unit
   - create() registers the loan and bumps the counter in ONE transaction
   - update() commits flag changes as a state-change transaction

Because records and counter live in the Ledger, a failed call rolls them
back together with balances. There is no deletion.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from .core import (
    LedgerView, Unit, UnitStateChange, TransactionOrigin, OriginType,
    ExecuteResult, LedgerError, LoanNotFound, InvalidState,
    UNIT_TYPE_COLLATERALIZED_LOAN, UNIT_TYPE_LOAN_REGISTRY,
    build_transaction, _freeze_state,
)
from .ledger import Ledger
from .logging import get_logger

logger = get_logger(__name__)

LOAN_SYMBOL_PREFIX = "LOAN"
REGISTRY_SYMBOL = "LOANBOOK"

# Fields fixed at creation
IMMUTABLE_FIELDS = frozenset({
    'loan_id', 'borrower', 'collateral_amount', 'loan_amount',
    'interest_rate', 'due_date', 'created_at',
})

# Flags that may only move false -> true
ONE_WAY_FLAGS = ('is_funded', 'is_repaid', 'rebate_applied', 'is_claimed')


class LoanStatus(Enum):
    """Lifecycle position of a loan: REQUESTED -> FUNDED -> {REPAID | CLAIMED}."""
    REQUESTED = "requested"
    FUNDED = "funded"
    REPAID = "repaid"
    CLAIMED = "claimed"


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable snapshot of one loan record.

    Terms (borrower, amounts, rate, dates) never change after creation.
    Each flag moves false -> true at most once; lender is set once, at funding.
    """
    loan_id: int
    borrower: str
    collateral_amount: int
    loan_amount: int
    interest_rate: int
    due_date: datetime
    created_at: datetime
    lender: Optional[str] = None
    is_funded: bool = False
    is_repaid: bool = False
    rebate_applied: bool = False
    is_claimed: bool = False

    @property
    def status(self) -> LoanStatus:
        if self.is_repaid:
            return LoanStatus.REPAID
        if self.is_claimed:
            return LoanStatus.CLAIMED
        if self.is_funded:
            return LoanStatus.FUNDED
        return LoanStatus.REQUESTED

    @property
    def is_terminal(self) -> bool:
        return self.is_repaid or self.is_claimed

    @property
    def symbol(self) -> str:
        return loan_symbol(self.loan_id)


def loan_symbol(loan_id: int) -> str:
    """Unit symbol under which a loan record is stored."""
    return f"{LOAN_SYMBOL_PREFIX}-{loan_id}"


def to_state_dict(loan: Loan) -> Dict[str, Any]:
    """Convert a Loan to the unit state dict stored in the ledger."""
    return {
        'loan_id': loan.loan_id,
        'borrower': loan.borrower,
        'lender': loan.lender,
        'collateral_amount': loan.collateral_amount,
        'loan_amount': loan.loan_amount,
        'interest_rate': loan.interest_rate,
        'due_date': loan.due_date,
        'created_at': loan.created_at,
        'is_funded': loan.is_funded,
        'is_repaid': loan.is_repaid,
        'rebate_applied': loan.rebate_applied,
        'is_claimed': loan.is_claimed,
    }


def load_loan(view: LedgerView, loan_id: int) -> Optional[Loan]:
    """
    Read a loan record from ledger state.

    Returns:
        The Loan, or None if no record exists for loan_id
    """
    if isinstance(loan_id, bool) or not isinstance(loan_id, int) or loan_id < 0:
        return None
    symbol = loan_symbol(loan_id)
    if not view.has_unit(symbol):
        return None
    raw = view.get_unit_state(symbol)
    return Loan(
        loan_id=raw['loan_id'],
        borrower=raw['borrower'],
        lender=raw.get('lender'),
        collateral_amount=raw['collateral_amount'],
        loan_amount=raw['loan_amount'],
        interest_rate=raw['interest_rate'],
        due_date=raw['due_date'],
        created_at=raw['created_at'],
        is_funded=raw.get('is_funded', False),
        is_repaid=raw.get('is_repaid', False),
        rebate_applied=raw.get('rebate_applied', False),
        is_claimed=raw.get('is_claimed', False),
    )


def create_loan_unit(loan: Loan) -> Unit:
    """
    Create the ledger unit holding a loan record.

    The unit is never held by any wallet (max_balance 0); it exists only
    to carry state.
    """
    return Unit(
        symbol=loan.symbol,
        name=f"Collateralized Loan #{loan.loan_id}",
        unit_type=UNIT_TYPE_COLLATERALIZED_LOAN,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(loan)),
    )


class LoanBook:
    """
    Mapping from loan id to loan record, plus the next-id counter.

    Identifiers are dense and strictly increasing from zero; none is reused.

    Example:
        book = LoanBook(ledger)
        loan_id = book.create("alice", collateral, principal, 10, due_date)
        book.update(loan_id, lender="bob", is_funded=True)
        book.get(loan_id).status  # LoanStatus.FUNDED
    """

    def __init__(self, ledger: Ledger, owner: str = "loan_book"):
        """
        Attach a loan book to a ledger, registering the id registry if needed.

        Args:
            ledger: Ledger holding the records
            owner: Source id recorded on every transaction the book executes
        """
        self.ledger = ledger
        self.owner = owner
        if not ledger.has_unit(REGISTRY_SYMBOL):
            ledger.register_unit(Unit(
                symbol=REGISTRY_SYMBOL,
                name="Collateralized Loan Registry",
                unit_type=UNIT_TYPE_LOAN_REGISTRY,
                min_balance=Decimal("0"),
                max_balance=Decimal("0"),
                decimal_places=0,
                _frozen_state=_freeze_state({'next_loan_id': 0}),
            ))

    @property
    def next_loan_id(self) -> int:
        """Identifier the next create() will assign."""
        return self.ledger.get_unit_state(REGISTRY_SYMBOL)['next_loan_id']

    def __len__(self) -> int:
        return self.next_loan_id

    def __iter__(self) -> Iterator[Loan]:
        for loan_id in range(self.next_loan_id):
            yield self.get(loan_id)

    def __contains__(self, loan_id: object) -> bool:
        return isinstance(loan_id, int) and self.exists(loan_id)

    def exists(self, loan_id: int) -> bool:
        return load_loan(self.ledger, loan_id) is not None

    def get(self, loan_id: int) -> Optional[Loan]:
        """Return the loan record, or None if it does not exist."""
        return load_loan(self.ledger, loan_id)

    def create(
        self,
        borrower: str,
        collateral_amount: int,
        loan_amount: int,
        interest_rate: int,
        due_date: datetime,
    ) -> int:
        """
        Append a new loan record under the next identifier.

        Returns:
            The new loan id

        Raises:
            LedgerError: If the ledger rejects the creation
        """
        registry_state = self.ledger.get_unit_state(REGISTRY_SYMBOL)
        loan_id = registry_state['next_loan_id']
        loan = Loan(
            loan_id=loan_id,
            borrower=borrower,
            collateral_amount=collateral_amount,
            loan_amount=loan_amount,
            interest_rate=interest_rate,
            due_date=due_date,
            created_at=self.ledger.current_time,
        )
        counter_change = UnitStateChange(
            unit=REGISTRY_SYMBOL,
            old_state=registry_state,
            new_state={**registry_state, 'next_loan_id': loan_id + 1},
        )
        pending = build_transaction(
            self.ledger,
            [],
            [counter_change],
            origin=TransactionOrigin(OriginType.CONTRACT, self.owner, loan.symbol, "CREATE"),
            units_to_create=(create_loan_unit(loan),),
        )
        self._execute(pending, loan_id)
        logger.debug("Created loan %d for %s", loan_id, borrower)
        return loan_id

    def update(self, loan_id: int, **changes: Any) -> Loan:
        """
        Apply changes to an existing loan record.

        Terms are immutable, flags only move false -> true and the lender
        is set at most once.

        Returns:
            The updated Loan

        Raises:
            LoanNotFound: If no record exists for loan_id
            InvalidState: If a change breaks one of the rules above
        """
        loan = self.get(loan_id)
        if loan is None:
            raise LoanNotFound("Loan does not exist.", loan_id)

        for key, value in changes.items():
            if key in IMMUTABLE_FIELDS:
                raise InvalidState(f"Loan field '{key}' is immutable.", loan_id)
            if key in ONE_WAY_FLAGS:
                if not isinstance(value, bool):
                    raise InvalidState(f"Loan flag '{key}' must be a bool.", loan_id)
                if getattr(loan, key) and not value:
                    raise InvalidState(f"Loan flag '{key}' cannot be reset.", loan_id)
            elif key == 'lender':
                if loan.lender is not None and value != loan.lender:
                    raise InvalidState("Loan lender is already set.", loan_id)
            else:
                raise InvalidState(f"Unknown loan field '{key}'.", loan_id)

        updated = replace(loan, **changes)
        if updated == loan:
            return loan

        change = UnitStateChange(
            unit=loan.symbol,
            old_state=to_state_dict(loan),
            new_state=to_state_dict(updated),
        )
        pending = build_transaction(
            self.ledger,
            [],
            [change],
            origin=TransactionOrigin(OriginType.CONTRACT, self.owner, loan.symbol, "UPDATE"),
        )
        self._execute(pending, loan_id)
        return updated

    def _execute(self, pending, loan_id: int) -> None:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(
                f"Loan book write for loan {loan_id} not applied "
                f"({result.value}: {self.ledger.last_rejection})"
            )
