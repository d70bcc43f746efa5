#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Collateralized Loans Step by Step

A walkthrough of the peer-to-peer lending contract running on the ledger.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-2:  Setup        - The ledger, the native asset, the lending engine
  3-4:  Funding      - Requesting a loan, exact-amount funding
  5-6:  Repayment    - Early repayment rebate, repayment at the due date
  7:    Default      - Claiming collateral after the due date
  8:    Safety       - Rejections roll back, re-entrant calls are refused

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import os
import sys

from collateral_ledger import (
    Ledger, LifecycleEngine, LendingConfig,
    LoanError, TransferFailed,
    parse_ether, format_ether,
    setup_logging,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    initial_funds: str = "100"
    collateral: str = "10"
    interest_rate: int = 10
    term: timedelta = timedelta(days=15)


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv
PARTIES = ("alice", "bob", "carol")


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_balances(engine: LifecycleEngine):
    for wallet in PARTIES + (engine.contract_wallet,):
        amount = int(engine.ledger.get_balance(wallet, engine.asset))
        print(f"  {wallet:<22} {format_ether(amount):>10} {engine.asset}")


def show_loan(engine: LifecycleEngine, loan_id: int):
    loan = engine.get_loan(loan_id)
    print(f"  Loan #{loan.loan_id} [{loan.status.value}]")
    print(f"    borrower={loan.borrower} lender={loan.lender}")
    print(f"    collateral={format_ether(loan.collateral_amount)} "
          f"principal={format_ether(loan.loan_amount)} rate={loan.interest_rate}%")
    print(f"    due={loan.due_date} rebate_applied={loan.rebate_applied}")


def request_and_fund(engine: LifecycleEngine, borrower: str, lender: str) -> int:
    loan_id = engine.request(
        CONFIG.interest_rate, CONFIG.term, caller=borrower, value=parse_ether(CONFIG.collateral)
    )
    engine.fund(loan_id, caller=lender, value=engine.get_loan(loan_id).loan_amount)
    return loan_id


# ============================================================================
# PHASE 1: SETUP (Steps 1-2)
# ============================================================================

def step_01_ledger(config: LendingConfig):
    """Create the ledger and fund the participants."""
    step_header(1, "The Ledger",
        "The ledger is the execution environment: balances, time, transfers.")

    ledger = Ledger("lending", initial_time=CONFIG.start_time)

    print(">>> engine = LifecycleEngine(ledger)")
    engine = LifecycleEngine(ledger, config)
    for party in PARTIES:
        ledger.register_wallet(party)
        ledger.issue(party, engine.asset, parse_ether(CONFIG.initial_funds))

    section_header("Initial Balances")
    show_balances(engine)

    section_header("Key Insight")
    print("""
    Amounts are integers of base units (1 ETH = 10**18 wei).
    Every ETH entered through the system wallet, so the sum of all
    wallets (system included) is always zero.
    """)
    return ledger, engine


def step_02_engine(engine: LifecycleEngine):
    """Show the engine configuration."""
    step_header(2, "The Lending Engine",
        "The engine holds collateral in its own wallet and tracks every loan.")

    config = engine.config
    print(f"  Loan-to-value:     {config.ltv_ratio}%")
    print(f"  Interest rates:    {config.min_interest_rate}..{config.max_interest_rate}%")
    print(f"  Early rebate:      {config.rebate_percent}% of interest")
    print(f"  Rebate deadline:   {config.rebate_window} before the due date")
    print(f"  Escrow wallet:     {engine.contract_wallet}")


# ============================================================================
# PHASE 2: FUNDING (Steps 3-4)
# ============================================================================

def step_03_request(engine: LifecycleEngine) -> int:
    """Alice deposits collateral and requests a loan."""
    step_header(3, "Requesting a Loan",
        "The collateral moves into escrow; the principal is half of it.")

    print(f">>> engine.request({CONFIG.interest_rate}, {CONFIG.term}, "
          f"caller='alice', value=parse_ether('{CONFIG.collateral}'))")
    loan_id = engine.request(
        CONFIG.interest_rate, CONFIG.term, caller="alice", value=parse_ether(CONFIG.collateral)
    )
    show_loan(engine, loan_id)

    section_header("Balances")
    show_balances(engine)
    return loan_id


def step_04_fund(engine: LifecycleEngine, loan_id: int):
    """Bob funds the loan with the exact principal."""
    step_header(4, "Funding a Loan",
        "Only the exact principal is accepted; it goes straight to the borrower.")

    section_header("Wrong Amount")
    try:
        engine.fund(loan_id, caller="bob", value=parse_ether("4.999"))
    except LoanError as exc:
        print(f"  Rejected: {exc.reason}")

    section_header("Exact Amount")
    engine.fund(loan_id, caller="bob", value=parse_ether("5"))
    show_loan(engine, loan_id)
    show_balances(engine)


# ============================================================================
# PHASE 3: REPAYMENT (Steps 5-6)
# ============================================================================

def step_05_early_repayment(engine: LifecycleEngine, loan_id: int):
    """Alice repays two days early and earns the rebate."""
    step_header(5, "Early Repayment",
        "Repaying more than a day before the due date discounts the interest.")

    loan = engine.get_loan(loan_id)
    engine.ledger.advance_time(loan.due_date - timedelta(days=2))

    quote = engine.quote(loan_id)
    print(f"  principal={format_ether(quote.principal)} interest={format_ether(quote.interest)} "
          f"rebate={format_ether(quote.rebate)} total_due={format_ether(quote.total_due)}")

    engine.repay(loan_id, caller="alice", value=quote.total_due)
    show_loan(engine, loan_id)
    show_balances(engine)


def step_06_late_repayment(engine: LifecycleEngine):
    """Carol borrows from Bob and repays at the due date."""
    step_header(6, "Repayment at the Due Date",
        "No rebate once inside the final day: full interest is owed.")

    loan_id = request_and_fund(engine, "carol", "bob")
    engine.ledger.advance_time(engine.get_loan(loan_id).due_date)

    quote = engine.quote(loan_id)
    print(f"  total_due={format_ether(quote.total_due)} rebate_applied={quote.rebate_applied}")
    engine.repay(loan_id, caller="carol", value=quote.total_due)
    show_loan(engine, loan_id)


# ============================================================================
# PHASE 4: DEFAULT AND SAFETY (Steps 7-8)
# ============================================================================

def step_07_claim(engine: LifecycleEngine):
    """Alice borrows from Carol and never repays."""
    step_header(7, "Claiming Collateral",
        "After the due date the lender takes the collateral.")

    loan_id = request_and_fund(engine, "alice", "carol")
    loan = engine.get_loan(loan_id)

    section_header("Too Early")
    try:
        engine.claim(loan_id, caller="carol")
    except LoanError as exc:
        print(f"  Rejected: {exc.reason}")

    section_header("After the Due Date")
    engine.ledger.advance_time(loan.due_date + timedelta(days=1))
    engine.claim(loan_id, caller="carol")
    show_loan(engine, loan_id)
    show_balances(engine)


def step_08_safety(engine: LifecycleEngine):
    """Rollback and re-entrancy."""
    step_header(8, "Safety",
        "Failed calls leave no trace; re-entrant calls see committed state.")

    ledger = engine.ledger
    loan_id = request_and_fund(engine, "bob", "alice")

    section_header("Recipient Reverts")
    def refuse(ledger, move):
        raise RuntimeError("bob refuses payments")

    ledger.register_receive_hook("bob", refuse)
    before = int(ledger.get_balance("bob", engine.asset))
    try:
        engine.repay(loan_id, caller="bob", value=engine.quote(loan_id).total_due)
    except TransferFailed as exc:
        print(f"  Rejected: {exc.reason}")
    after = int(ledger.get_balance("bob", engine.asset))
    print(f"  Bob's balance unchanged: {before == after}; loan repaid: {engine.get_loan(loan_id).is_repaid}")

    section_header("Re-entrant Repayment")
    attempts = []

    def reenter(ledger, move):
        if attempts:
            return
        try:
            engine.repay(loan_id, caller="bob", value=engine.quote(loan_id).total_due)
            attempts.append("applied twice")
        except LoanError as exc:
            attempts.append(exc.reason)

    ledger.register_receive_hook("bob", reenter)
    engine.repay(loan_id, caller="bob", value=engine.quote(loan_id).total_due)
    ledger.remove_receive_hook("bob")
    print(f"  Nested call: {attempts[0]}")

    section_header("Notifications")
    for event in ledger.events:
        print(f"  {event.name:<18} loan #{event.loan_id}")


def main():
    """Run the complete tutorial."""
    os.environ.setdefault("LOG_LEVEL", "WARNING")
    config = LendingConfig.from_env()
    setup_logging(config.log_level)

    print("=" * 70)
    print("       COLLATERALIZED LENDING - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger, engine = step_01_ledger(config)
    wait_for_enter()

    step_02_engine(engine)
    wait_for_enter()

    loan_id = step_03_request(engine)
    wait_for_enter()

    step_04_fund(engine, loan_id)
    wait_for_enter()

    step_05_early_repayment(engine, loan_id)
    wait_for_enter()

    step_06_late_repayment(engine)
    wait_for_enter()

    step_07_claim(engine)
    wait_for_enter()

    step_08_safety(engine)

    print(f"\n{'='*70}")
    print(f"Done. {engine.loan_count} loans, {len(ledger.transaction_log)} transactions, "
          f"escrow holds {format_ether(engine.escrow_balance())} {engine.asset}.")
    print("Run tests: pytest tests/")


if __name__ == "__main__":
    main()
