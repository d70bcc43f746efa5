"""
test_loan_book.py - Unit tests for the loan ledger

Tests:
- Empty book and id assignment
- Record fields and status
- update() rules (immutable terms, one-way flags, lender set once)
- Rollback of records and counter inside Ledger.atomic()
- Adapter functions (load_loan, to_state_dict)
"""

import pytest
from datetime import timedelta

from collateral_ledger import (
    LoanBook, LoanStatus, Loan,
    load_loan, to_state_dict, loan_symbol,
    LoanNotFound, InvalidState,
    UNIT_TYPE_COLLATERALIZED_LOAN,
)

from tests.helpers import START, eth


def _create(book, borrower="alice", collateral="10"):
    return book.create(
        borrower=borrower,
        collateral_amount=eth(collateral),
        loan_amount=eth(collateral) // 2,
        interest_rate=10,
        due_date=START + timedelta(days=15),
    )


class TestEmptyBook:
    """A fresh book holds nothing."""

    def test_starts_empty(self, book):
        assert len(book) == 0
        assert book.next_loan_id == 0
        assert list(book) == []

    def test_get_missing_returns_none(self, book):
        assert book.get(0) is None
        assert not book.exists(0)
        assert 0 not in book

    def test_second_book_shares_registry(self, empty_ledger):
        first = LoanBook(empty_ledger)
        _create(first)
        second = LoanBook(empty_ledger)
        assert second.next_loan_id == 1


class TestCreate:
    """Tests for LoanBook.create."""

    def test_ids_are_dense(self, book):
        assert _create(book) == 0
        assert _create(book, borrower="bob") == 1
        assert book.next_loan_id == 2
        assert len(book) == 2

    def test_record_fields(self, book, empty_ledger):
        loan_id = _create(book)
        loan = book.get(loan_id)
        assert loan.borrower == "alice"
        assert loan.lender is None
        assert loan.collateral_amount == eth("10")
        assert loan.loan_amount == eth("5")
        assert loan.interest_rate == 10
        assert loan.due_date == START + timedelta(days=15)
        assert loan.created_at == empty_ledger.current_time
        assert loan.status == LoanStatus.REQUESTED
        assert not loan.is_terminal

    def test_record_stored_as_unit(self, book, empty_ledger):
        loan_id = _create(book)
        unit = empty_ledger.get_unit(loan_symbol(loan_id))
        assert unit.unit_type == UNIT_TYPE_COLLATERALIZED_LOAN
        assert unit.symbol == "LOAN-0"

    def test_iteration_in_id_order(self, book):
        _create(book, borrower="alice")
        _create(book, borrower="bob")
        assert [loan.borrower for loan in book] == ["alice", "bob"]


class TestUpdate:
    """Tests for LoanBook.update rules."""

    def test_fund(self, book):
        loan_id = _create(book)
        loan = book.update(loan_id, lender="bob", is_funded=True)
        assert loan.lender == "bob"
        assert loan.status == LoanStatus.FUNDED
        assert book.get(loan_id) == loan

    def test_repaid_is_terminal(self, book):
        loan_id = _create(book)
        book.update(loan_id, lender="bob", is_funded=True)
        loan = book.update(loan_id, is_repaid=True, rebate_applied=True)
        assert loan.status == LoanStatus.REPAID
        assert loan.is_terminal

    def test_claimed_status(self, book):
        loan_id = _create(book)
        book.update(loan_id, lender="bob", is_funded=True)
        assert book.update(loan_id, is_claimed=True).status == LoanStatus.CLAIMED

    def test_missing_loan(self, book):
        with pytest.raises(LoanNotFound) as exc_info:
            book.update(7, is_funded=True)
        assert exc_info.value.reason == "Loan does not exist."
        assert exc_info.value.loan_id == 7

    @pytest.mark.parametrize("field", ["borrower", "collateral_amount", "interest_rate", "due_date"])
    def test_terms_are_immutable(self, book, field):
        loan_id = _create(book)
        with pytest.raises(InvalidState):
            book.update(loan_id, **{field: None})

    def test_flags_cannot_be_reset(self, book):
        loan_id = _create(book)
        book.update(loan_id, lender="bob", is_funded=True)
        with pytest.raises(InvalidState):
            book.update(loan_id, is_funded=False)

    def test_flags_must_be_bool(self, book):
        loan_id = _create(book)
        with pytest.raises(InvalidState):
            book.update(loan_id, is_funded=1)

    def test_lender_set_once(self, book):
        loan_id = _create(book)
        book.update(loan_id, lender="bob", is_funded=True)
        with pytest.raises(InvalidState):
            book.update(loan_id, lender="carol")

    def test_unknown_field(self, book):
        loan_id = _create(book)
        with pytest.raises(InvalidState):
            book.update(loan_id, colour="red")

    def test_noop_update_writes_nothing(self, book, empty_ledger):
        loan_id = _create(book)
        log_length = len(empty_ledger.transaction_log)
        loan = book.update(loan_id, is_funded=False)
        assert loan == book.get(loan_id)
        assert len(empty_ledger.transaction_log) == log_length


class TestRollback:
    """Records and counter roll back with the enclosing call scope."""

    def test_create_rolled_back(self, book, empty_ledger):
        with pytest.raises(RuntimeError):
            with empty_ledger.atomic():
                _create(book)
                raise RuntimeError("abort")
        assert book.next_loan_id == 0
        assert not empty_ledger.has_unit("LOAN-0")

    def test_update_rolled_back(self, book, empty_ledger):
        loan_id = _create(book)
        with pytest.raises(RuntimeError):
            with empty_ledger.atomic():
                book.update(loan_id, lender="bob", is_funded=True)
                raise RuntimeError("abort")
        assert book.get(loan_id).status == LoanStatus.REQUESTED

    def test_id_reused_after_rollback(self, book, empty_ledger):
        """A rolled-back creation never happened, so its id is assigned again."""
        with pytest.raises(RuntimeError):
            with empty_ledger.atomic():
                _create(book)
                raise RuntimeError("abort")
        assert _create(book) == 0


class TestAdapters:
    """Tests for load_loan and to_state_dict."""

    def test_load_rejects_bad_ids(self, book):
        _create(book)
        assert load_loan(book.ledger, -1) is None
        assert load_loan(book.ledger, True) is None
        assert load_loan(book.ledger, "0") is None

    def test_state_dict_matches_stored_state(self, book, empty_ledger):
        loan_id = _create(book)
        loan = book.get(loan_id)
        assert to_state_dict(loan) == empty_ledger.get_unit_state(loan.symbol)

    def test_loan_is_frozen(self, book):
        loan = book.get(_create(book))
        assert isinstance(loan, Loan)
        with pytest.raises(AttributeError):
            loan.is_funded = True
