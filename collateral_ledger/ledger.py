"""
ledger.py - Execution Environment for Lending Contracts

The Ledger is the only object that mutates state. Contracts such as the
LifecycleEngine run against it the way a contract runs on a chain:

    - balances of the native asset per wallet (whole base units)
    - logical time, the "now" every call observes
    - transfer(): the value primitive, which notifies the recipient through
      its receive hook; the hook may call back into contracts
    - atomic(): all-or-nothing call scopes, nestable
    - units carrying state (loan records and the loan registry)
    - an append-only notification log

Every change goes through execute(), which validates a PendingTransaction
in full before applying any of it and refuses to apply the same intent twice.
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Type
import copy

from .core import (
    Move, Transaction, Unit,
    PendingTransaction, TransactionOrigin, OriginType,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    build_transaction,
    SYSTEM_WALLET,
    LedgerError, TransferFailed, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered,
    _freeze_state,
)
from .logging import get_logger

logger = get_logger(__name__)

# Called after a wallet has been credited: hook(ledger, move).
# May call back into contract code; raising makes the transfer fail.
ReceiveHook = Callable[["Ledger", Move], None]


def _zero_balances() -> Dict[str, Decimal]:
    return defaultdict(Decimal)


class Ledger:
    """
    Double-entry ledger acting as the execution environment for contracts.

    Implements LedgerView, so it can be handed to read-only code directly.

    Every transfer debits one wallet and credits another; value only enters
    through issue(), which debits SYSTEM_WALLET. The sum of all balances,
    system wallet included, is therefore always zero.

    Not thread-safe: one call runs at a time, as on a chain.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(native_asset())
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.issue("alice", "ETH", parse_ether("10"))

        ledger.transfer("alice", "bob", "ETH", parse_ether("1"), "payment_001")
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = False,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier (prefix of every exec_id)
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print every applied/rejected transaction (default: False)
            test_mode: Allow set_balance() (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: _zero_balances()}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.events: List[Any] = []
        self.last_rejection: Optional[str] = None
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._test_mode = test_mode
        self._receive_hooks: Dict[str, ReceiveHook] = {}
        # unit -> {wallet -> non-zero quantity}
        self._holders: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Deep copy of a unit's state; raises UnitNotRegistered."""
        return copy.deepcopy(self._require_unit(unit_symbol).state)

    def has_unit(self, unit_symbol: str) -> bool:
        return unit_symbol in self.units

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    # Extra read helpers (not part of LedgerView)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def get_unit(self, symbol: str) -> Unit:
        return self._require_unit(symbol)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Wallets holding a non-zero quantity of the unit, SYSTEM_WALLET included."""
        return dict(self._holders.get(unit_symbol, {}))

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        self._require_wallet(wallet_id)
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Sum over all wallets, system included; zero for issued assets."""
        self._require_unit(unit_symbol)
        return sum((b.get(unit_symbol, Decimal("0")) for b in self.balances.values()), Decimal("0"))

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    def _require_unit(self, unit_symbol: str) -> Unit:
        try:
            return self.units[unit_symbol]
        except KeyError:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered") from None

    # ========================================================================
    # TIME
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """Move the logical clock forward; ValueError if new_time is in the past."""
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """Register a wallet; ValueError if empty or already registered."""
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = _zero_balances()
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """Register a unit; ValueError if the symbol is taken."""
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        logger.debug("Registered unit %s (%s) [%s]", unit.symbol, unit.name, unit.unit_type)
        if self.verbose:
            print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def register_receive_hook(self, wallet_id: str, hook: ReceiveHook) -> None:
        """
        Attach code that runs whenever wallet_id is credited by transfer().

        The hook receives the ledger and the applied Move. It may call back
        into contracts (reentrancy); if it raises, the transfer fails.

        Raises:
            WalletNotRegistered: If wallet is not registered
        """
        self._require_wallet(wallet_id)
        self._receive_hooks[wallet_id] = hook

    def remove_receive_hook(self, wallet_id: str) -> None:
        self._receive_hooks.pop(wallet_id, None)

    # ========================================================================
    # FUNDING
    # ========================================================================

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance directly, bypassing double entry. Test mode only.

        Raises:
            LedgerError: If test_mode is off
            BalanceConstraintViolation: If quantity is outside the unit's bounds
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use issue() or transfer() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        self._require_wallet(wallet_id)
        unit = self._require_unit(unit_symbol)
        quantity = unit.round(Decimal(str(quantity)))
        if not unit.min_balance <= quantity <= unit.max_balance:
            raise BalanceConstraintViolation(
                f"{wallet_id} {unit_symbol}: {quantity} outside [{unit.min_balance}, {unit.max_balance}]"
            )
        self.balances[wallet_id][unit_symbol] = quantity
        self._index(wallet_id, unit_symbol, quantity)

    def issue(self, wallet_id: str, unit_symbol: str, amount: int) -> Transaction:
        """
        Mint `amount` base units into a wallet, debiting SYSTEM_WALLET.

        Raises:
            LedgerError: If the issuance is rejected (unknown wallet or unit)
        """
        move = Move(
            quantity=_to_quantity(amount),
            unit_symbol=unit_symbol,
            source=SYSTEM_WALLET,
            dest=wallet_id,
            contract_id=f"issue:{wallet_id}:{len(self.transaction_log)}",
        )
        pending = build_transaction(self, [move], origin=TransactionOrigin(OriginType.SYSTEM, "issuance"))
        if self.execute(pending) != ExecuteResult.APPLIED:
            raise LedgerError(f"Issuance to {wallet_id} rejected: {self.last_rejection}")
        return self.transaction_log[-1]

    # ========================================================================
    # CALL SCOPES AND VALUE TRANSFER
    # ========================================================================

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        All-or-nothing scope for a contract call.

        On any exception, everything a call can touch (balances, units,
        wallets, seen intents, transaction log, notifications) is put back
        as it was at entry and the exception propagates. Scopes nest: an
        inner failure undoes only the inner scope.
        """
        saved = self._capture()
        try:
            yield self
        except Exception:
            self._reinstate(saved)
            raise

    def transfer(
        self,
        source: str,
        dest: str,
        unit_symbol: str,
        amount: int,
        contract_id: str,
        origin: Optional[TransactionOrigin] = None,
    ) -> Transaction:
        """
        Move value from source to dest, then run dest's receive hook.

        The credit and whatever the hook does are undone together if the
        hook raises.

        Args:
            amount: Base units, positive (int or integral Decimal)
            contract_id: Name of the contract step; unique per step
            origin: Defaults to CONTRACT with source as source_id

        Raises:
            ValueError: If amount is not a positive whole number
            TransferFailed: If the move is rejected, was already applied,
                            or the recipient's hook raised
        """
        move = Move(
            quantity=_to_quantity(amount),
            unit_symbol=unit_symbol,
            source=source,
            dest=dest,
            contract_id=contract_id,
        )
        origin = origin or TransactionOrigin(OriginType.CONTRACT, source)

        with self.atomic():
            result = self.execute(build_transaction(self, [move], origin=origin))
            if result == ExecuteResult.ALREADY_APPLIED:
                logger.warning("Transfer %s already applied", contract_id)
                raise TransferFailed(f"Transfer failed: {contract_id} already applied")
            if result == ExecuteResult.REJECTED:
                logger.warning("Transfer %s rejected: %s", contract_id, self.last_rejection)
                raise TransferFailed(f"Transfer failed: {self.last_rejection}")
            tx = self.transaction_log[-1]

            hook = self._receive_hooks.get(dest)
            if hook is not None:
                try:
                    hook(self, move)
                except Exception as exc:
                    logger.warning("Receive hook of %s failed: %s", dest, exc)
                    raise TransferFailed(f"Transfer failed: recipient {dest} reverted ({exc})") from exc
        return tx

    # ========================================================================
    # NOTIFICATIONS
    # ========================================================================

    def emit(self, event: Any) -> None:
        """Append a notification to the event log."""
        self.events.append(event)
        logger.info("Event %r", event)
        if self.verbose:
            print(f"EVENT {event!r}")

    def events_of(self, event_type: Type) -> List[Any]:
        """Notifications of one type, in emission order."""
        return [e for e in self.events if isinstance(e, event_type)]

    # ========================================================================
    # TRANSACTION EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Validate and apply a PendingTransaction as one unit.

        Returns:
            APPLIED, ALREADY_APPLIED (same intent_id seen before; nothing
            changes) or REJECTED (reason in last_rejection; nothing changes)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            logger.debug("ALREADY_APPLIED: intent_id=%s", pending.intent_id)
            return ExecuteResult.ALREADY_APPLIED

        reason = self._check(pending)
        if reason:
            self.last_rejection = reason
            logger.debug("REJECTED: %s", reason)
            if self.verbose:
                print(f"REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = len(self.transaction_log)
        tx = Transaction(
            sequence=sequence,
            exec_id=f"{self.name}:{sequence}",
            intent_id=pending.intent_id,
            origin=pending.origin,
            executed_at=self._current_time,
            moves=pending.moves,
            state_changes=pending.state_changes,
            units_to_create=pending.units_to_create,
        )

        for unit in tx.units_to_create:
            self.units[unit.symbol] = unit
        for move in tx.moves:
            self._post(move.source, move.unit_symbol, -move.quantity)
            self._post(move.dest, move.unit_symbol, move.quantity)
        for sc in tx.state_changes:
            self.units[sc.unit] = replace(
                self.units[sc.unit], _frozen_state=_freeze_state(copy.deepcopy(sc.new_state))
            )

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        logger.debug("APPLIED %s (%d moves, %d state changes)",
                     tx.exec_id, len(tx.moves), len(tx.state_changes))
        if self.verbose:
            print(f"{tx!r}\n  -> APPLIED")
        return ExecuteResult.APPLIED

    def _check(self, pending: PendingTransaction) -> Optional[str]:
        """
        Reason the transaction cannot be applied, or None.

        Checked in order: timestamp not in the future, new units not yet
        registered, every unit and wallet registered, state changes built
        against the current state, and resulting balances within each
        unit's bounds (SYSTEM_WALLET exempt).
        """
        if pending.timestamp > self._current_time:
            return "future timestamp"

        units = dict(self.units)
        for unit in pending.units_to_create:
            if unit.symbol in units:
                return f"unit already registered: {unit.symbol}"
            units[unit.symbol] = unit

        for move in pending.moves:
            if move.unit_symbol not in units:
                return f"unit not registered: {move.unit_symbol}"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"

        created = {u.symbol for u in pending.units_to_create}
        for sc in pending.state_changes:
            if sc.unit not in units:
                return f"unit not registered: {sc.unit}"
            if sc.unit not in created and sc.old_state is not None and sc.old_state != units[sc.unit].state:
                return f"stale state for {sc.unit}"

        deltas: Dict[tuple, Decimal] = defaultdict(Decimal)
        for move in pending.moves:
            deltas[(move.source, move.unit_symbol)] -= move.quantity
            deltas[(move.dest, move.unit_symbol)] += move.quantity

        for (wallet, symbol), delta in sorted(deltas.items()):
            if wallet == SYSTEM_WALLET:
                continue
            unit = units[symbol]
            proposed = unit.round(self.balances[wallet].get(symbol, Decimal("0")) + delta)
            if proposed < unit.min_balance:
                return f"insufficient funds: {wallet} {symbol} {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return f"{wallet} {symbol}: {proposed} > max {unit.max_balance}"
        return None

    def _post(self, wallet_id: str, unit_symbol: str, delta: Decimal) -> None:
        unit = self.units[unit_symbol]
        quantity = unit.round(self.balances[wallet_id][unit_symbol] + delta)
        self.balances[wallet_id][unit_symbol] = quantity
        self._index(wallet_id, unit_symbol, quantity)

    def _index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        if quantity:
            self._holders[unit_symbol][wallet_id] = quantity
        else:
            self._holders[unit_symbol].pop(wallet_id, None)

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def _capture(self) -> Dict[str, Any]:
        """Copy of every piece of mutable state a call may touch."""
        return {
            'balances': {w: dict(b) for w, b in self.balances.items()},
            'units': dict(self.units),
            'registered_wallets': set(self.registered_wallets),
            'seen_intent_ids': set(self.seen_intent_ids),
            'transaction_log': list(self.transaction_log),
            'events': list(self.events),
            'holders': {u: dict(h) for u, h in self._holders.items()},
        }

    def _reinstate(self, saved: Dict[str, Any]) -> None:
        self.balances = {w: defaultdict(Decimal, b) for w, b in saved['balances'].items()}
        self.units = dict(saved['units'])
        self.registered_wallets = set(saved['registered_wallets'])
        self.seen_intent_ids = set(saved['seen_intent_ids'])
        self.transaction_log = list(saved['transaction_log'])
        self.events = list(saved['events'])
        self._holders = defaultdict(dict, {u: dict(h) for u, h in saved['holders'].items()})

    def clone(self) -> Ledger:
        """
        Independent copy of this ledger at its current time.

        Receive hooks are shared by reference.
        """
        cloned = Ledger(self.name, self._current_time, self.verbose, self._test_mode)
        cloned._reinstate(self._capture())
        cloned._receive_hooks = dict(self._receive_hooks)
        return cloned


def _to_quantity(amount: Any) -> Decimal:
    """Whole base-unit amount as a Decimal; ValueError for bools, floats and fractions."""
    if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
        raise ValueError(f"amount must be an integer, got {amount!r}")
    quantity = Decimal(amount)
    if not quantity.is_finite() or quantity != quantity.to_integral_value():
        raise ValueError(f"amount must be a whole number of base units, got {amount}")
    return quantity
