"""
lifecycle_engine.py - Lifecycle Engine for Collateralized Loans

Drives every loan through REQUESTED -> FUNDED -> {REPAID | CLAIMED}.

Each public operation is one call into the execution environment:
1. Open an all-or-nothing scope (Ledger.atomic)
2. Receive the attached value from the caller into the contract wallet
3. Check guards
4. Commit the loan book changes (effects)
5. Send outgoing transfers (interactions)
6. Emit the notification

Step 4 always precedes step 5. A transfer may run the recipient's receive
hook, which may re-enter this engine; the re-entrant call then sees the
committed flags and is rejected by its own guards. Any exception undoes the
whole call, attached value included.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, List, Optional, Union

from .calculator import RepaymentQuote, loan_amount_for, quote_repayment
from .config import LendingConfig
from .core import (
    TransactionOrigin, OriginType,
    InsufficientFunds, WalletNotRegistered,
    LoanError, LoanNotFound, Unauthorized, InvalidInput, InvalidState,
    ValueMismatch, NotDue,
    native_asset,
)
from .events import CollateralClaimed, LoanFunded, LoanRepaid, LoanRequested
from .ledger import Ledger
from .loan_book import Loan, LoanBook, loan_symbol
from .logging import get_logger

logger = get_logger(__name__)

Duration = Union[int, timedelta]


class LifecycleEngine:
    """
    Peer-to-peer collateralized lending contract.

    The borrower deposits collateral and receives ltv_ratio% of it as a loan
    once a lender supplies that exact principal. The borrower repays
    principal plus interest (10% of the interest is rebated when repaying
    more than a day early) and gets the collateral back; otherwise the
    lender claims the collateral after the due date.

    Example:
        engine = LifecycleEngine(ledger)
        loan_id = engine.request(10, 15 * 86400, caller="alice", value=parse_ether("10"))
        engine.fund(loan_id, caller="bob", value=parse_ether("5"))
        engine.repay(loan_id, caller="alice", value=engine.quote(loan_id).total_due)
    """

    def __init__(self, ledger: Ledger, config: Optional[LendingConfig] = None):
        """
        Attach the engine to a ledger.

        Registers the native asset and the contract wallet if they are
        not registered yet.

        Args:
            ledger: Execution environment holding balances and loan records
            config: Lending parameters (defaults to LendingConfig())
        """
        self.ledger = ledger
        self.config = config or LendingConfig()

        if not ledger.has_unit(self.config.asset_symbol):
            ledger.register_unit(native_asset(
                self.config.asset_symbol, decimals=self.config.asset_decimals
            ))
        if not ledger.is_registered(self.config.contract_wallet):
            ledger.register_wallet(self.config.contract_wallet)

        self.book = LoanBook(ledger, owner=self.config.contract_wallet)

    @property
    def contract_wallet(self) -> str:
        return self.config.contract_wallet

    @property
    def asset(self) -> str:
        return self.config.asset_symbol

    # ========================================================================
    # LIFECYCLE OPERATIONS
    # ========================================================================

    def request(
        self,
        interest_rate: int,
        duration: Duration,
        caller: str,
        value: int,
    ) -> int:
        """
        Deposit collateral and open a loan request.

        Args:
            interest_rate: Flat interest in percent, within the configured bounds
            duration: Seconds (or a timedelta) from now until the due date
            caller: Borrower wallet
            value: Attached collateral in base units

        Returns:
            The new loan id

        Raises:
            InvalidInput: zero collateral, rate out of range, non-positive or
                overlong duration
        """
        with self._call("REQUEST", caller, value, self.book.next_loan_id):
            if value <= 0:
                raise InvalidInput("Collateral must be greater than zero.")
            self._check_interest_rate(interest_rate)
            due_date = self._due_date(duration)

            now = self.ledger.current_time
            loan_amount = loan_amount_for(value, self.config.ltv_ratio)
            loan_id = self.book.create(
                borrower=caller,
                collateral_amount=value,
                loan_amount=loan_amount,
                interest_rate=interest_rate,
                due_date=due_date,
            )

            self.ledger.emit(LoanRequested(
                loan_id=loan_id,
                borrower=caller,
                collateral_amount=value,
                loan_amount=loan_amount,
                interest_rate=interest_rate,
                timestamp=now,
            ))
        logger.info("Loan %d requested by %s: collateral=%d principal=%d rate=%d%%",
                    loan_id, caller, value, loan_amount, interest_rate,
                    extra={"loan_id": loan_id})
        return loan_id

    def fund(self, loan_id: int, caller: str, value: int) -> Loan:
        """
        Supply the exact principal of a requested loan.

        The lender and is_funded are committed before the principal is
        forwarded to the borrower.

        Returns:
            The funded Loan

        Raises:
            LoanNotFound, InvalidState (already funded),
            ValueMismatch (value != loan_amount), TransferFailed
        """
        with self._call("FUND", caller, value, loan_id) as call_id:
            loan = self._require_loan(loan_id)
            if loan.is_funded:
                raise InvalidState("Loan is already funded.", loan_id)
            if value != loan.loan_amount:
                raise ValueMismatch("Incorrect loan amount sent.", loan_id)

            funded = self.book.update(loan_id, lender=caller, is_funded=True)
            self._pay(loan.borrower, loan.loan_amount, f"{call_id}:principal", loan_id, "FUND")

            self.ledger.emit(LoanFunded(
                loan_id=loan_id, lender=caller, timestamp=self.ledger.current_time,
            ))
        logger.info("Loan %d funded by %s", loan_id, caller, extra={"loan_id": loan_id})
        return funded

    def repay(self, loan_id: int, caller: str, value: int) -> RepaymentQuote:
        """
        Repay principal plus interest and recover the collateral.

        is_repaid and rebate_applied are committed first; then total_due goes
        to the lender, the collateral back to the borrower and any excess
        value is refunded to the borrower, in that order.

        Returns:
            The RepaymentQuote that was settled

        Raises:
            LoanNotFound, Unauthorized (not the borrower),
            InvalidState (not funded, already repaid, collateral claimed),
            ValueMismatch (value < total_due), TransferFailed
        """
        with self._call("REPAY", caller, value, loan_id) as call_id:
            loan = self._require_loan(loan_id)
            if caller != loan.borrower:
                raise Unauthorized("Only the borrower can repay this loan.", loan_id)
            if not loan.is_funded:
                raise InvalidState("Loan is not funded.", loan_id)
            if loan.is_repaid:
                raise InvalidState("Loan is already repaid.", loan_id)
            if loan.is_claimed:
                raise InvalidState("Collateral already claimed.", loan_id)

            quote = self._quote(loan)
            if value < quote.total_due:
                raise ValueMismatch("Insufficient repayment amount.", loan_id)

            self.book.update(loan_id, is_repaid=True, rebate_applied=quote.rebate_applied)

            self._pay(loan.lender, quote.total_due, f"{call_id}:repayment", loan_id, "REPAY")
            self._pay(loan.borrower, loan.collateral_amount, f"{call_id}:collateral", loan_id, "REPAY")
            self._pay(loan.borrower, value - quote.total_due, f"{call_id}:refund", loan_id, "REPAY")

            self.ledger.emit(LoanRepaid(
                loan_id=loan_id,
                amount=quote.total_due,
                rebate_applied=quote.rebate_applied,
                timestamp=self.ledger.current_time,
            ))
        logger.info("Loan %d repaid: total_due=%d rebate_applied=%s",
                    loan_id, quote.total_due, quote.rebate_applied,
                    extra={"loan_id": loan_id})
        return quote

    def claim(self, loan_id: int, caller: str, value: int = 0) -> Loan:
        """
        Take the collateral of a funded loan that was not repaid by its due date.

        is_claimed is committed before the collateral leaves the contract, so
        a loan can be claimed once.

        Returns:
            The claimed Loan

        Raises:
            LoanNotFound, Unauthorized (not the lender), InvalidInput (value sent),
            InvalidState (not funded, repaid, already claimed),
            NotDue (before due date), TransferFailed
        """
        with self._call("CLAIM", caller, value, loan_id) as call_id:
            if value != 0:
                raise InvalidInput("Claiming collateral does not accept value.", loan_id)
            loan = self._require_loan(loan_id)
            if loan.lender is None or caller != loan.lender:
                raise Unauthorized("Only the lender can claim collateral.", loan_id)
            if not loan.is_funded:
                raise InvalidState("Loan is not funded.", loan_id)
            if loan.is_repaid:
                raise InvalidState("Loan is already repaid.", loan_id)
            if loan.is_claimed:
                raise InvalidState("Collateral already claimed.", loan_id)
            if self.ledger.current_time < loan.due_date:
                raise NotDue("Loan is not past its due date yet.", loan_id)

            claimed = self.book.update(loan_id, is_claimed=True)
            self._pay(loan.lender, loan.collateral_amount, f"{call_id}:forfeit", loan_id, "CLAIM")

            self.ledger.emit(CollateralClaimed(
                loan_id=loan_id, lender=caller, timestamp=self.ledger.current_time,
            ))
        logger.info("Collateral of loan %d claimed by %s", loan_id, caller,
                    extra={"loan_id": loan_id})
        return claimed

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def get_loan(self, loan_id: int) -> Loan:
        """Return the full loan record; raises LoanNotFound if absent."""
        return self._require_loan(loan_id)

    def find_loan(self, loan_id: int) -> Optional[Loan]:
        """Return the loan record, or None if absent."""
        return self.book.get(loan_id)

    def loans(self) -> List[Loan]:
        """All loans ever created, in id order."""
        return list(self.book)

    @property
    def loan_count(self) -> int:
        return len(self.book)

    def quote(self, loan_id: int, at: Optional[datetime] = None) -> RepaymentQuote:
        """Repayment breakdown if the loan were repaid at `at` (default: now)."""
        return self._quote(self._require_loan(loan_id), at)

    def escrow_balance(self) -> int:
        """Value currently held by the contract wallet."""
        return int(self.ledger.get_balance(self.contract_wallet, self.asset))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @contextmanager
    def _call(self, operation: str, caller: str, value: int, ref: int) -> Iterator[str]:
        """
        Scope of one external call: validate the envelope, receive the
        attached value, and roll everything back if the body raises.

        Yields:
            A call id, unique within the ledger, for naming this call's moves
        """
        try:
            if not isinstance(caller, str) or not caller.strip():
                raise InvalidInput("Caller identity is required.")
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInput("Attached value must be an integer amount of base units.")
            if value < 0:
                raise InvalidInput("Attached value cannot be negative.")

            call_id = f"{operation.lower()}:{ref}:{len(self.ledger.transaction_log)}"
            with self.ledger.atomic():
                if value > 0:
                    self._receive(caller, value, f"{call_id}:value", operation)
                yield call_id
        except LoanError as exc:
            logger.info("%s rejected (loan %s, caller %s): %s", operation, ref, caller, exc.reason,
                        extra={"loan_id": ref})
            raise

    def _receive(self, caller: str, value: int, contract_id: str, operation: str) -> None:
        if not self.ledger.is_registered(caller):
            raise WalletNotRegistered(f"Wallet {caller} not registered")
        balance = self.ledger.get_balance(caller, self.asset)
        if balance < value:
            raise InsufficientFunds(f"{caller} holds {balance} {self.asset}, cannot attach {value}")
        self.ledger.transfer(
            caller, self.contract_wallet, self.asset, value, contract_id,
            origin=TransactionOrigin(OriginType.USER_ACTION, caller, event_type=operation),
        )

    def _pay(self, dest: str, amount: int, contract_id: str, loan_id: int, event: str) -> None:
        if amount <= 0:
            return
        self.ledger.transfer(
            self.contract_wallet, dest, self.asset, amount, contract_id,
            origin=TransactionOrigin(OriginType.CONTRACT, self.contract_wallet, loan_symbol(loan_id), event),
        )

    def _require_loan(self, loan_id: int) -> Loan:
        loan = self.book.get(loan_id)
        if loan is None:
            raise LoanNotFound("Loan does not exist.", loan_id)
        return loan

    def _quote(self, loan: Loan, at: Optional[datetime] = None) -> RepaymentQuote:
        return quote_repayment(
            loan.loan_amount,
            loan.interest_rate,
            at or self.ledger.current_time,
            loan.due_date,
            rebate_percent=self.config.rebate_percent,
            rebate_window=self.config.rebate_window,
        )

    def _check_interest_rate(self, interest_rate: int) -> None:
        low, high = self.config.min_interest_rate, self.config.max_interest_rate
        if (
            isinstance(interest_rate, bool)
            or not isinstance(interest_rate, int)
            or not low <= interest_rate <= high
        ):
            raise InvalidInput(f"Interest rate must be between {low} and {high}.")

    def _due_date(self, duration: Duration) -> datetime:
        if isinstance(duration, bool) or not isinstance(duration, (int, timedelta)):
            raise InvalidInput("Duration must be a number of seconds or a timedelta.")
        if duration <= (timedelta(0) if isinstance(duration, timedelta) else 0):
            raise InvalidInput("Duration must be greater than zero.")
        try:
            term = duration if isinstance(duration, timedelta) else timedelta(seconds=duration)
            return self.ledger.current_time + term
        except OverflowError:
            raise InvalidInput("Duration is too long.") from None
