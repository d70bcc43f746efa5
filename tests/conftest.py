"""
conftest.py - Shared pytest fixtures for collateral_ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Ledgers (empty, ETH-only, with the lending engine attached)
- Funded borrower / lender / outsider wallets
- Loans at each lifecycle stage (requested, funded)
"""

import pytest

from collateral_ledger import Ledger, LoanBook, native_asset

from tests.helpers import START, TERM, build_engine, eth


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def eth_ledger():
    """Ledger with ETH and two wallets; alice holds 10 ETH."""
    ledger = Ledger("test", START, verbose=False, test_mode=True)
    ledger.register_unit(native_asset())
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.issue("alice", "ETH", eth("10"))
    return ledger


@pytest.fixture
def book(empty_ledger):
    """Loan book attached to an empty ledger."""
    return LoanBook(empty_ledger)


# =============================================================================
# LENDING FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Lending engine with borrower, lender and outsider each holding 100 ETH."""
    return build_engine()


@pytest.fixture
def ledger(engine):
    """The ledger the engine fixture runs on."""
    return engine.ledger


@pytest.fixture
def requested_loan(engine):
    """Loan 0: 10 ETH collateral, 10% interest, due in 15 days, not funded."""
    return engine.request(10, TERM, caller="borrower", value=eth("10"))


@pytest.fixture
def funded_loan(engine, requested_loan):
    """Loan 0 funded by 'lender' with 5 ETH."""
    engine.fund(requested_loan, caller="lender", value=eth("5"))
    return requested_loan


@pytest.fixture
def due_date(engine, requested_loan):
    """Due date of loan 0."""
    return engine.get_loan(requested_loan).due_date
