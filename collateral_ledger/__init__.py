"""
collateral_ledger - Peer-to-Peer Collateralized Lending Ledger

Borrowers lock native value as collateral and request a loan for half of it;
a lender funds the exact principal; the borrower repays principal plus
interest (with a rebate for early repayment) or the lender claims the
collateral once the loan is overdue.

Usage:
    from collateral_ledger import Ledger, LifecycleEngine, parse_ether

    ledger = Ledger("main")
    engine = LifecycleEngine(ledger)
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.issue("alice", "ETH", parse_ether("100"))
    ledger.issue("bob", "ETH", parse_ether("100"))

    loan_id = engine.request(10, 15 * 86400, caller="alice", value=parse_ether("10"))
    engine.fund(loan_id, caller="bob", value=parse_ether("5"))
    engine.repay(loan_id, caller="alice", value=engine.quote(loan_id).total_due)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    native_asset,
    SYSTEM_WALLET,
    NATIVE_ASSET_SYMBOL,
    NATIVE_ASSET_DECIMALS,
    UNIT_TYPE_NATIVE,
    UNIT_TYPE_COLLATERALIZED_LOAN,
    UNIT_TYPE_LOAN_REGISTRY,
)

# Exceptions
from .core import (
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    ConfigurationError,
    LoanError,
    LoanNotFound,
    Unauthorized,
    InvalidInput,
    InvalidState,
    ValueMismatch,
    NotDue,
    TransferFailed,
)

# Execution environment
from .ledger import Ledger, ReceiveHook

# Configuration and logging
from .config import (
    LendingConfig,
    LTV_RATIO,
    REBATE_PERCENT,
    REBATE_WINDOW,
    MIN_INTEREST_RATE,
    MAX_INTEREST_RATE,
    CONTRACT_WALLET,
)
from .logging import setup_logging, get_logger, JsonFormatter

# Financial calculator
from .calculator import (
    RepaymentQuote,
    loan_amount_for,
    interest_for,
    rebate_for,
    is_eligible_for_rebate,
    quote_repayment,
)

# Loan ledger
from .loan_book import (
    Loan,
    LoanBook,
    LoanStatus,
    load_loan,
    to_state_dict,
    loan_symbol,
)

# Notifications
from .events import LoanRequested, LoanFunded, LoanRepaid, CollateralClaimed

# Lifecycle engine
from .lifecycle_engine import LifecycleEngine

# Amount conversions
from .units import parse_units, format_units, parse_ether, format_ether

__version__ = "1.0.0"

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'native_asset',
    'SYSTEM_WALLET', 'NATIVE_ASSET_SYMBOL', 'NATIVE_ASSET_DECIMALS',
    'UNIT_TYPE_NATIVE', 'UNIT_TYPE_COLLATERALIZED_LOAN', 'UNIT_TYPE_LOAN_REGISTRY',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'UnitNotRegistered', 'WalletNotRegistered', 'ConfigurationError',
    'LoanError', 'LoanNotFound', 'Unauthorized', 'InvalidInput',
    'InvalidState', 'ValueMismatch', 'NotDue', 'TransferFailed',
    # Ledger
    'Ledger', 'ReceiveHook',
    # Config / logging
    'LendingConfig', 'LTV_RATIO', 'REBATE_PERCENT', 'REBATE_WINDOW',
    'MIN_INTEREST_RATE', 'MAX_INTEREST_RATE', 'CONTRACT_WALLET',
    'setup_logging', 'get_logger', 'JsonFormatter',
    # Calculator
    'RepaymentQuote', 'loan_amount_for', 'interest_for', 'rebate_for',
    'is_eligible_for_rebate', 'quote_repayment',
    # Loan book
    'Loan', 'LoanBook', 'LoanStatus', 'load_loan', 'to_state_dict', 'loan_symbol',
    # Events
    'LoanRequested', 'LoanFunded', 'LoanRepaid', 'CollateralClaimed',
    # Engine
    'LifecycleEngine',
    # Units
    'parse_units', 'format_units', 'parse_ether', 'format_ether',
]
