"""
ledger.py - Token Balance Book

The Ledger holds every wallet's token balances, the registered token
definitions and the log of applied transactions. It is the only writer of
balances: tokens, vaults and the investment manager describe their effects as
PendingTransactions and act on the ExecuteResult they get back.

Transfer rules receive the ledger itself as a LedgerView, so they read live
balances but have no business calling anything that mutates.

History is append-only. clone_at() unwinds a copy to an earlier instant and
replay() rebuilds a fresh ledger from the log; neither touches the original.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    Move, Transaction, Unit, UnitStateChange,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    QUANTITY_EPSILON, SYSTEM_WALLET,
    LedgerError, StateError,
    TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    _freeze_state,
)


_EPOCH = datetime(1970, 1, 1)
_ZERO = Decimal("0")


class Ledger:
    """
    Wallet balances per token, token definitions and the applied-transaction log.

    Every transaction is checked before any balance moves and every applied
    transaction is logged. SYSTEM_WALLET is the only wallet allowed to go
    negative: it funds every mint, so it holds minus the amount ever issued.

    Not thread-safe.

    Example:
        ledger = Ledger("investments", datetime(2025, 1, 1))
        token = InvestmentToken(ledger, "INV", "Investment Token", owner="desk", minter="desk")
        token.mint("desk", "alice", 100)
        ledger.get_balance("alice", "INV")   # Decimal("100")
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Args:
            name: Ledger identifier, embedded in every exec_id
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print a trace line for every registration and transaction
        """
        self.name = name
        self.verbose = verbose
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.balances: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: defaultdict(Decimal)}
        self.transaction_log: List[Transaction] = []
        self.seen_intent_ids: Set[str] = set()
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or _EPOCH
        # token -> {wallet -> non-zero balance}
        self._holders: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def _require_unit(self, symbol: str) -> Unit:
        unit = self.units.get(symbol)
        if unit is None:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return unit

    def _require_wallet(self, wallet_id: str) -> Dict[str, Decimal]:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return self.balances[wallet_id]

    # ========================================================================
    # LedgerView
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of one token in one wallet, zero if the wallet never held it.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If the token is not registered
        """
        book = self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        return book.get(unit_symbol, _ZERO)

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Copy of a token's role state; editing it changes nothing."""
        return copy.deepcopy(self._require_unit(unit_symbol).state)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Every wallet holding a non-zero balance of the token."""
        return dict(self._holders.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    # ========================================================================
    # OTHER QUERIES
    # ========================================================================

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def get_unit(self, symbol: str) -> Unit:
        return self._require_unit(symbol)

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        return dict(self._require_wallet(wallet_id))

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Net of a token's balances over all wallets, issuer included.

        Zero whenever the books balance. Wallets are summed in sorted order so
        the result does not depend on set iteration.
        """
        self._require_unit(unit_symbol)
        return sum(
            (self.balances[w].get(unit_symbol, _ZERO) for w in sorted(self.registered_wallets)),
            _ZERO,
        )

    def verify_double_entry(self, tolerance: Decimal = Decimal("1e-18")) -> Dict[str, Any]:
        """
        Check that every registered token nets to zero.

        Returns:
            {'valid': bool, 'supplies': {symbol: net}, 'discrepancies': [...]}
            where each discrepancy names the unit, the expected and actual
            net, and their difference.
        """
        supplies = {symbol: self.total_supply(symbol) for symbol in self.units}
        discrepancies = [
            {'unit': symbol, 'expected': _ZERO, 'actual': net, 'difference': abs(net)}
            for symbol, net in supplies.items()
            if abs(net) > tolerance
        ]
        return {'valid': not discrepancies, 'supplies': supplies, 'discrepancies': discrepancies}

    # ========================================================================
    # CLOCK AND REGISTRATION
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """Move the logical clock forward; standing still is allowed."""
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def register_wallet(self, wallet_id: str) -> str:
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(Decimal)
        return wallet_id

    def unregister_wallet(self, wallet_id: str) -> None:
        """
        Drop a wallet that holds nothing.

        Undoes the wallet of a vault whose first investment failed.

        Raises:
            WalletNotRegistered: If wallet is not registered
            StateError: If it is the system wallet or still holds a balance
        """
        book = self._require_wallet(wallet_id)
        if wallet_id == SYSTEM_WALLET:
            raise StateError("The system wallet cannot be unregistered")
        held = {symbol: q for symbol, q in book.items() if abs(q) > self.POSITION_EPSILON}
        if held:
            raise StateError(f"Wallet {wallet_id} still holds {held}")
        self.registered_wallets.discard(wallet_id)
        del self.balances[wallet_id]

    def register_unit(self, unit: Unit) -> None:
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule}")

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Apply a PendingTransaction all-or-nothing.

        An intent_id that has been applied before is reported as
        ALREADY_APPLIED and changes nothing. On REJECTED, last_rejection
        holds the reason; it is reset to None by every call.

        Raises:
            InvalidAmount: If a resulting balance cannot be held at the
                token's precision. Nothing is applied.
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        reason = self._rejection_reason(pending)
        if reason:
            self.last_rejection = reason
            if self.verbose:
                print(f"REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = len(self.transaction_log)
        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )
        for move in tx.moves:
            self._post(move)
        for change in tx.state_changes:
            self._install_state(change.unit, change.new_state)

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(tx.intent_id)
        if self.verbose:
            print(f"{tx!r}\n  APPLIED")
        return ExecuteResult.APPLIED

    def _exec_id(self, sequence: int) -> str:
        # exec:{ledger}:{sequence:012d}:{clock in microseconds since epoch}
        micros = int((self._current_time - _EPOCH).total_seconds() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def _rejection_reason(self, pending: PendingTransaction) -> Optional[str]:
        """Why the transaction cannot be applied, or None if it can."""
        if pending.timestamp > self._current_time:
            return "future timestamp"
        return (
            self._check_moves(pending.moves)
            or self._check_state_changes(pending.state_changes)
            or self._check_balance_limits(pending.moves)
        )

    def _check_moves(self, moves: Tuple[Move, ...]) -> Optional[str]:
        for move in moves:
            unit = self.units.get(move.unit_symbol)
            if unit is None:
                return f"unit not registered: {move.unit_symbol}"
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return f"wallet not registered: {wallet}"
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return str(e)
        return None

    def _check_state_changes(self, changes: Tuple[UnitStateChange, ...]) -> Optional[str]:
        # old_state must match what the token holds now, or another
        # transaction got there first.
        for change in changes:
            unit = self.units.get(change.unit)
            if unit is None:
                return f"unit not registered: {change.unit}"
            if change.old_state is not None and change.old_state != unit.state:
                return f"stale state for {change.unit}"
        return None

    def _check_balance_limits(self, moves: Tuple[Move, ...]) -> Optional[str]:
        net: Dict[Tuple[str, str], Decimal] = defaultdict(Decimal)
        for move in moves:
            unit = self.units[move.unit_symbol]
            debit, credit = (move.source, move.unit_symbol), (move.dest, move.unit_symbol)
            net[debit] = unit.round(net[debit] - move.quantity)
            net[credit] = unit.round(net[credit] + move.quantity)

        for (wallet, symbol), delta in net.items():
            unit = self.units[symbol]
            proposed = unit.round(self.balances[wallet][symbol] + delta)
            if wallet == SYSTEM_WALLET:
                continue
            if proposed < unit.min_balance:
                return f"{wallet} {symbol}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return f"{wallet} {symbol}: {proposed} > max {unit.max_balance}"
        return None

    def _post(self, move: Move, reverse: bool = False) -> None:
        """Book a move, or take it back, keeping the holder index in step."""
        unit = self.units[move.unit_symbol]
        debit, credit = (move.dest, move.source) if reverse else (move.source, move.dest)
        for wallet, delta in ((debit, -move.quantity), (credit, move.quantity)):
            balance = unit.round(self.balances[wallet][move.unit_symbol] + delta)
            self.balances[wallet][move.unit_symbol] = balance
            if abs(balance) > self.POSITION_EPSILON:
                self._holders[move.unit_symbol][wallet] = balance
            else:
                self._holders[move.unit_symbol].pop(wallet, None)

    def _install_state(self, symbol: str, state: Optional[UnitState]) -> None:
        # Unit is frozen: a state change swaps in a new Unit.
        fresh = copy.deepcopy(state) if isinstance(state, dict) else {}
        self.units[symbol] = replace(self.units[symbol], _frozen_state=_freeze_state(fresh))

    # ========================================================================
    # HISTORY
    # ========================================================================

    def clone(self) -> Ledger:
        """Independent copy; later changes to either ledger stay on that ledger."""
        twin = Ledger.__new__(Ledger)
        twin.name = self.name
        twin.verbose = self.verbose
        twin.last_rejection = self.last_rejection
        twin._current_time = self._current_time
        # Units are frozen and hold only scalar state, so they can be shared.
        twin.units = dict(self.units)
        twin.registered_wallets = set(self.registered_wallets)
        twin.balances = {w: defaultdict(Decimal, book) for w, book in self.balances.items()}
        twin.transaction_log = list(self.transaction_log)
        twin.seen_intent_ids = set(self.seen_intent_ids)
        twin._holders = defaultdict(dict, {s: dict(h) for s, h in self._holders.items()})
        return twin

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        Copy of the ledger as it stood at target_time.

        Transactions executed at exactly target_time are kept. Later ones are
        undone newest first: their moves reversed and each token's previous
        role state restored. Wallets registered since then stay registered
        (with zero balances).

        Raises:
            ValueError: If target_time is after the current time
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")

        past = self.clone()
        past._current_time = target_time
        kept = [tx for tx in self.transaction_log if tx.execution_time <= target_time]
        undone = self.transaction_log[len(kept):]
        past.transaction_log = kept
        past.seen_intent_ids = {tx.intent_id for tx in kept}

        for tx in reversed(undone):
            for move in tx.moves:
                past._post(move, reverse=True)
            for change in tx.state_changes:
                past._install_state(change.unit, change.old_state)
        return past

    def replay(self, from_tx: int = 0) -> Ledger:
        """
        Rebuild a ledger by re-executing the log from from_tx onward.

        Each token starts from the role state it had before the first replayed
        transaction changed it, so every logged state change validates again.

        Raises:
            LedgerError: If a logged transaction is rejected on the way
        """
        fresh = Ledger(f"{self.name}_replayed", _EPOCH, verbose=self.verbose)
        log = self.transaction_log[from_tx:]

        starting_state: Dict[str, Any] = {}
        for tx in log:
            for change in tx.state_changes:
                starting_state.setdefault(change.unit, change.old_state)
        for symbol, unit in self.units.items():
            fresh.units[symbol] = unit
            fresh._install_state(symbol, starting_state.get(symbol, unit.state))

        for wallet in sorted(self.registered_wallets - {SYSTEM_WALLET}):
            fresh.register_wallet(wallet)

        for tx in log:
            if tx.timestamp > fresh.current_time:
                fresh.advance_time(tx.timestamp)
            result = fresh.execute(PendingTransaction(
                moves=tx.moves,
                state_changes=tx.state_changes,
                origin=tx.origin,
                timestamp=tx.timestamp,
            ))
            if result == ExecuteResult.REJECTED:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}: {fresh.last_rejection}")
        return fresh
