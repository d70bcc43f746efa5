"""
helpers.py - Plain helper functions shared by the test suite

Kept out of conftest.py so hypothesis tests (which cannot use
function-scoped fixtures) can build fresh state per example.
"""

from datetime import datetime, timedelta

from collateral_ledger import Ledger, LifecycleEngine, parse_ether


START = datetime(2025, 1, 1)
TERM = timedelta(days=15)
WALLETS = ("borrower", "lender", "outsider")
INITIAL_FUNDS = parse_ether("100")


def eth(amount: str) -> int:
    """Shorthand for parse_ether in assertions."""
    return parse_ether(amount)


def balance(ledger: Ledger, wallet: str, unit: str = "ETH") -> int:
    """Balance of a wallet as an int of base units."""
    return int(ledger.get_balance(wallet, unit))


def build_engine(initial_time: datetime = START) -> LifecycleEngine:
    """Fresh ledger + engine with every wallet in WALLETS holding INITIAL_FUNDS."""
    ledger = Ledger("test", initial_time, verbose=False, test_mode=True)
    engine = LifecycleEngine(ledger)
    for wallet in WALLETS:
        ledger.register_wallet(wallet)
        ledger.issue(wallet, "ETH", INITIAL_FUNDS)
    return engine


def snapshot(engine: LifecycleEngine) -> dict:
    """Observable state of an engine: balances, loan records, log and events."""
    ledger = engine.ledger
    return {
        'balances': {
            w: {u: q for u, q in ledger.get_wallet_balances(w).items() if q != 0}
            for w in sorted(ledger.list_wallets())
        },
        'loans': engine.loans(),
        'next_loan_id': engine.book.next_loan_id,
        'log_length': len(ledger.transaction_log),
        'events': list(ledger.events),
    }
