"""
Core types for the collateralized lending ledger.

Everything here is immutable or pure:
1. LedgerView: the read-only face of a Ledger, handed to code that must not mutate
2. Records: Move, PendingTransaction (intent), Transaction (fact), Unit
3. Exceptions: environment errors and the loan lifecycle taxonomy
4. native_asset(): the value unit loans are denominated in

Amounts are whole numbers of base units (wei). They travel as Decimal so that
balances share one numeric type, but a fractional quantity is never valid.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# 78 significant digits hold any uint256 wei amount exactly.
#
getcontext().prec = 78


# ============================================================================
# CONSTANTS
# ============================================================================

# Source of all issued value. Exempt from balance checks, so its balance is
# minus the total issued.
SYSTEM_WALLET = "system"

UNIT_TYPE_NATIVE = "NATIVE"
UNIT_TYPE_COLLATERALIZED_LOAN = "COLLATERALIZED_LOAN"
UNIT_TYPE_LOAN_REGISTRY = "LOAN_REGISTRY"

NATIVE_ASSET_SYMBOL = "ETH"
NATIVE_ASSET_DECIMALS = 18


# ============================================================================
# TYPE ALIASES
# ============================================================================

# wallet -> quantity held, for one unit
Positions = Dict[str, Decimal]

# unit -> quantity held, for one wallet
BalanceMap = Dict[str, Decimal]

# Loan terms and flags, registry counters
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What a reader may ask of a ledger.

    Loan book adapters and transaction builders take a LedgerView, never a
    Ledger, so they cannot move value or change records by accident.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Copy of the unit's state; mutating it does not touch the ledger."""
        ...

    def has_unit(self, unit_symbol: str) -> bool:
        ...

    def list_wallets(self) -> Set[str]:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of Ledger.execute().

    APPLIED: validated and recorded.
    ALREADY_APPLIED: an identical intent was recorded before; nothing changed.
    REJECTED: validation failed; the reason is in Ledger.last_rejection.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Who caused a transaction."""
    USER_ACTION = "user_action"     # value attached to a call by its caller
    CONTRACT = "contract"           # payouts and record writes by the lending contract
    SYSTEM = "system"               # issuance


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""


class InsufficientFunds(LedgerError):
    """Caller cannot cover the value attached to a call."""


class BalanceConstraintViolation(LedgerError):
    """A balance would fall outside the unit's [min_balance, max_balance]."""


class UnitNotRegistered(LedgerError):
    """The unit symbol is not known to the ledger."""


class WalletNotRegistered(LedgerError):
    """The wallet id is not known to the ledger."""


class ConfigurationError(LedgerError):
    """Raised when lending configuration is invalid."""


class LoanError(LedgerError):
    """
    Base exception for loan lifecycle rejections.

    Every rejection carries a human-readable reason so callers can assert
    on the cause, not just on failure.

    Attributes:
        reason: Why the operation was rejected (same as str(exc))
        loan_id: Loan the operation referenced, if any
    """

    def __init__(self, reason: str, loan_id: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.loan_id = loan_id


class LoanNotFound(LoanError):
    """Operation referenced a loan id with no existing record."""


class Unauthorized(LoanError):
    """Caller identity does not match the required role."""


class InvalidInput(LoanError):
    """Creation parameters or attached values outside allowed ranges."""


class InvalidState(LoanError):
    """Loan is not in the state the operation requires."""


class ValueMismatch(LoanError):
    """Attached value does not satisfy the exact-match or minimum requirement."""


class NotDue(LoanError):
    """Collateral claim attempted before the due date."""


class TransferFailed(LoanError):
    """An outgoing value movement did not complete."""


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Audit tag of a transaction.

    Attributes:
        origin_type: USER_ACTION, CONTRACT or SYSTEM
        source_id: Caller wallet, contract wallet or "issuance"
        unit_symbol: Loan record the transaction concerns (e.g. "LOAN-3")
        event_type: Lifecycle step ("REQUEST", "FUND", "REPAY", "CLAIM", ...)
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        tag = f"{self.origin_type.value}:{self.source_id}"
        if self.event_type:
            tag += f"/{self.event_type}"
        if self.unit_symbol:
            tag += f"@{self.unit_symbol}"
        return f"Origin({tag})"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Replacement of a unit's state.

    old_state is the state the change was built against; the ledger rejects
    the change if the unit has moved on since (stale write).
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """{field: (before, after)} for every field whose value differs."""
        before = self.old_state or {}
        after = self.new_state or {}
        return {
            key: (before.get(key), after.get(key))
            for key in sorted(set(before) | set(after))
            if before.get(key) != after.get(key)
        }


@dataclass(frozen=True, slots=True)
class Move:
    """
    One transfer of value: quantity of unit_symbol from source to dest.

    contract_id names the step that produced the move (e.g. "fund:0:7:principal").
    It is part of the intent hash, so two steps moving the same amount between
    the same wallets stay distinct.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        for name in ("source", "dest", "unit_symbol", "contract_id"):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"Move {name} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity).__name__}")
        if not self.quantity.is_finite() or self.quantity != self.quantity.to_integral_value():
            raise ValueError(f"Move quantity must be a whole number of base units, got {self.quantity}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


# ============================================================================
# INTENT HASHING
# ============================================================================

def _canonical(value: Any) -> str:
    """Stable text form of a state value; dict order and Decimal exponent do not matter."""
    if value is None:
        return "~"
    if isinstance(value, bool):
        return "T" if value else "F"
    if isinstance(value, int):
        return f"i{value}"
    if isinstance(value, Decimal):
        return f"d{value.normalize():f}"
    if isinstance(value, datetime):
        return f"t{value.isoformat()}"
    if isinstance(value, str):
        return f"s{value!r}"
    if isinstance(value, dict):
        return "{" + ",".join(f"{k}={_canonical(value[k])}" for k in sorted(value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return f"r{value!r}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple[Unit, ...] = (),
) -> str:
    """
    Content hash of what a transaction intends to do.

    Identical intents hash identically regardless of the order moves and
    changes were listed in; the ledger applies each intent at most once.
    """
    parts = [f"origin {origin.origin_type.value} {origin.source_id} "
             f"{origin.unit_symbol or '-'} {origin.event_type or '-'}"]
    parts += sorted(f"create {u.symbol} {u.unit_type}" for u in units_to_create)
    parts += sorted(
        f"move {m.quantity.normalize():f} {m.unit_symbol} {m.source} {m.dest} {m.contract_id}"
        for m in moves
    )
    parts += sorted(
        f"state {sc.unit} {_canonical(sc.old_state)} {_canonical(sc.new_state)}"
        for sc in state_changes
    )
    return hashlib.sha256("\n".join(parts).encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction not yet executed: the INTENT.

    intent_id is derived from the content when not given.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple[Unit, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            ))

    def is_empty(self) -> bool:
        return not (self.moves or self.state_changes or self.units_to_create)

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, "
                f"{len(self.state_changes)} state changes, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple[Unit, ...]] = None,
) -> PendingTransaction:
    """
    Package moves, state changes and new units as one PendingTransaction
    stamped with the view's current time.

    State dicts are deep-copied, so callers may keep mutating their own.

    Example:
        def mark_funded(view, symbol, lender):
            old_state = view.get_unit_state(symbol)
            new_state = {**old_state, "lender": lender, "is_funded": True}
            change = UnitStateChange(symbol, old_state, new_state)
            return build_transaction(view, [], [change])
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.CONTRACT, "contract")

    changes = tuple(
        UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
        for sc in state_changes or ()
    )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=tuple(units_to_create or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed transaction: the FACT, as kept in Ledger.transaction_log.

    Attributes:
        sequence: Position in the ledger's log of applied transactions
        exec_id: "<ledger name>:<sequence>"
        intent_id: Content hash carried over from the PendingTransaction
        executed_at: Ledger time of execution
    """
    sequence: int
    exec_id: str
    intent_id: str
    origin: TransactionOrigin
    executed_at: datetime
    moves: Tuple[Move, ...] = ()
    state_changes: Tuple[UnitStateChange, ...] = ()
    units_to_create: Tuple[Unit, ...] = ()

    def __post_init__(self):
        if not (self.moves or self.state_changes or self.units_to_create):
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")

    @property
    def contract_ids(self) -> frozenset:
        return frozenset(m.contract_id for m in self.moves)

    def __repr__(self) -> str:
        lines = [f"#{self.sequence} {self.origin} at {self.executed_at}"]
        lines += [f"  + {u.symbol} ({u.name})" for u in self.units_to_create]
        lines += [f"  {m.quantity} {m.unit_symbol}: {m.source} → {m.dest}" for m in self.moves]
        for sc in self.state_changes:
            for name, (before, after) in sc.changed_fields().items():
                lines.append(f"  {sc.unit}.{name}: {before!r} → {after!r}")
        return "\n".join(lines)


# ============================================================================
# UNITS
# ============================================================================

def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Immutable, key-sorted form of a state dict, as stored on a Unit."""
    return tuple(sorted((state or {}).items()))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Something the ledger tracks: a transferable asset, or a record.

    The native asset is held in wallets. Loan records and the loan registry
    are units no wallet may hold (both balance bounds 0); they exist for
    their state, which is replaced, never edited, by a UnitStateChange.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        return dict(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Truncate to decimal_places (no-op when None)."""
        if self.decimal_places is None:
            return value
        return Decimal(value).quantize(Decimal(1).scaleb(-self.decimal_places), rounding=ROUND_DOWN)


def native_asset(
    symbol: str = NATIVE_ASSET_SYMBOL,
    name: str = "Ether",
    decimals: int = NATIVE_ASSET_DECIMALS,
) -> Unit:
    """
    The value unit of the execution environment.

    Balances are whole base units and never negative; `decimals` is only
    recorded in the unit state for display (10**decimals base units per coin).
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_NATIVE,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({'decimals': decimals}),
    )
