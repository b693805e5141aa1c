"""
core.py - Records, errors and rules shared by every vaultledger component.

What lives here:
    - LedgerView, the read-only face of a Ledger that transfer rules see
    - Move / PendingTransaction / Transaction: a token movement, an intended
      batch of them, and the logged fact once a ledger applied it
    - Unit: a registered token definition with its frozen role state
    - The error hierarchy (authorization, state, address and amount errors)
    - Validators for user-supplied addresses and amounts
    - token_transfer_rule: the burn sink and the issuer wallet

Nothing here mutates a ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
import json
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# 50 significant digits: an 18-decimal token amount keeps up to 32 integer
# digits. Unit.round() turns anything larger into InvalidAmount.
# Set once at import; use decimal.localcontext() for anything else.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Issuer of every token. Skips balance limits: it holds minus total minted.
SYSTEM_WALLET = "system"

# Rejected wherever a principal is expected.
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Where burned tokens go. token_transfer_rule keeps them there.
BURN_ADDRESS = "0x000000000000000000000000000000000000dEaD"

UNIT_TYPE_TOKEN = "TOKEN"

QUANTITY_EPSILON = Decimal("1e-18")

TOKEN_DECIMAL_PLACES = 18

DEFAULT_LOCK_PERIOD = timedelta(days=30)

# Token amounts are truncated, never rounded up.
DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

Positions = Dict[str, Decimal]      # wallet -> balance, for one token
BalanceMap = Dict[str, Decimal]     # token -> balance, for one wallet
UnitState = Dict[str, Any]          # owner, minter, paused, revision


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What a transfer rule may ask of a ledger.

    Ledger satisfies this protocol; tests use tests.fake_view.FakeView, which
    has nothing but these methods.
    """

    @property
    def current_time(self) -> datetime: ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal: ...

    def get_unit_state(self, unit_symbol: str) -> UnitState: ...

    def get_positions(self, unit_symbol: str) -> Positions: ...

    def list_wallets(self) -> Set[str]: ...

    def get_unit(self, symbol: str) -> 'Unit': ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """What Ledger.execute() did with a PendingTransaction."""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"     # same intent_id seen before; nothing changed
    REJECTED = "rejected"                   # see Ledger.last_rejection


class OriginType(Enum):
    USER_ACTION = "user_action"     # an investor pulling stray tokens out of a vault
    CONTRACT = "contract"           # token, vault and manager operations
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Root of every error vaultledger raises on purpose."""


class AuthorizationError(LedgerError):
    """Caller lacks the role (owner, minter, manager, vault owner) the operation needs."""


class StateError(LedgerError):
    """
    Operation not possible right now.

    Paused, still locked, no investment to withdraw from, account already
    exists, wrong token for this vault.
    """


class ReentrancyError(StateError):
    """A guarded manager operation was entered while another was running."""


class AddressError(LedgerError, ValueError):
    """Empty or zero address where a principal is required."""


class InvalidAmount(LedgerError, ValueError):
    """Amount is not a positive finite number, or cannot be held at token precision."""


class InsufficientFunds(LedgerError, ValueError):
    """Wallet holds less than the amount to move."""


class TransferRuleViolation(LedgerError):
    pass


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def require_address(address: Any, what: str) -> str:
    """Return address if it names a principal, else raise AddressError."""
    if not isinstance(address, str) or not address.strip():
        raise AddressError(f"{what} address cannot be empty")
    if address == ZERO_ADDRESS:
        raise AddressError(f"{what} cannot be the zero address")
    return address


def as_quantity(value: Any, what: str = "amount") -> Decimal:
    """
    Turn a caller's amount into a positive, finite Decimal.

    Accepts int, str, Decimal and float. Floats are read through str(), so 0.1
    stays 0.1. Booleans are refused even though they are ints.

    Raises:
        InvalidAmount: For anything else, or for zero, negative, NaN and infinity.
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"{what} must be a number, got {value!r}")
    if isinstance(value, float):
        value = Decimal(str(value))
    elif isinstance(value, (int, str)):
        try:
            value = Decimal(value)
        except ArithmeticError:
            raise InvalidAmount(f"{what} must be a number, got {value!r}") from None
    elif not isinstance(value, Decimal):
        raise InvalidAmount(f"{what} must be a number, got {type(value).__name__}")
    if not value.is_finite():
        raise InvalidAmount(f"{what} must be finite, got {value}")
    if value <= 0:
        raise InvalidAmount(f"{what} must be positive, got {value}")
    return value


# ============================================================================
# TRANSACTION RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Who asked for a transaction.

    source_id is the token symbol or vault address; event_type names the
    operation ("MINT", "MINT_THROUGH", "BURN", "SET_MINTER", ...).
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        label = f"{self.origin_type.value}:{self.source_id}"
        if self.event_type:
            label += f"/{self.event_type}"
        if self.unit_symbol:
            label += f" [{self.unit_symbol}]"
        return f"Origin({label})"


@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Full before and after snapshots of a token's role state.

    Ledger.execute() refuses the change unless old_state is still current;
    clone_at() puts old_state back.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """{field: (old, new)} for the fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (old.get(key), new.get(key))
            for key in old.keys() | new.keys()
            if old.get(key) != new.get(key)
        }


_MOVE_TEXT_FIELDS = ("source", "dest", "unit_symbol", "contract_id")


@dataclass(frozen=True, slots=True)
class Move:
    """
    quantity of one token from source to dest.

    contract_id names the operation that produced the move and feeds the
    intent hash, which is how repeated identical operations stay distinct.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        for name in _MOVE_TEXT_FIELDS:
            text = getattr(self, name)
            if not text or not text.strip():
                raise ValueError(f"Move {name} cannot be empty")
        qty = self.quantity
        if not isinstance(qty, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(qty).__name__}")
        if not qty.is_finite():
            raise ValueError(f"Move quantity must be finite, got {qty}")
        if abs(qty) < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity {qty} is effectively zero")
        if self.source == self.dest:
            raise ValueError(f"Source and dest must be different, both are {self.source}")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


def _quantity_text(quantity: Decimal) -> str:
    # Decimal("1.0") and Decimal("1.00") must hash alike.
    return format(quantity.normalize(), 'f')


def _json_fallback(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"D:{_quantity_text(value)}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, timedelta):
        return f"P:{value.total_seconds()}"
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return f"R:{value!r}"


def _intent_digest(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Hash what a transaction does, ignoring when it was built.

    Move order, state-dict key order and Decimal exponent do not matter.
    """
    payload = {
        'origin': [origin.origin_type.value, origin.source_id, origin.unit_symbol, origin.event_type],
        'moves': sorted(
            [_quantity_text(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id]
            for m in moves
        ),
        'state': [
            [sc.unit, sc.old_state, sc.new_state]
            for sc in sorted(state_changes, key=lambda sc: sc.unit)
        ],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_json_fallback)
    return hashlib.sha256(encoded.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction not yet applied.

    intent_id is filled from the content when not given; two pending
    transactions that would do the same thing share it, whatever their
    timestamps.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id', _intent_digest(self.moves, self.state_changes, self.origin)
            )

    def is_empty(self) -> bool:
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Stamp moves and state changes with the view's current time.

    State snapshots are deep-copied so the caller's dicts can change later
    without touching what gets logged. origin defaults to a generic CONTRACT.

    Example:
        pending = build_transaction(ledger, [
            Move(Decimal("100"), "INV", SYSTEM_WALLET, "vault:alice", "INV:mint:1"),
        ])
        ledger.execute(pending)
    """
    snapshots = tuple(
        UnitStateChange(sc.unit, copy.deepcopy(sc.old_state), copy.deepcopy(sc.new_state))
        for sc in state_changes or ()
    )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=snapshots,
        origin=origin or TransactionOrigin(OriginType.CONTRACT, "contract"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    A logged, applied transaction.

    timestamp is when the PendingTransaction was built; execution_time is the
    ledger clock when it was applied, and is what clone_at() cuts on.
    exec_id and sequence_number are unique within one ledger. contract_ids is
    filled from the moves.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")
        if self.contract_ids is None:
            object.__setattr__(self, 'contract_ids', frozenset(m.contract_id for m in self.moves))

    def __repr__(self) -> str:
        lines = [
            f"#{self.sequence_number} {self.exec_id} {self.origin}",
            f"  intent {self.intent_id} at {self.execution_time}",
        ]
        lines += [f"  {m.quantity} {m.unit_symbol}: {m.source} -> {m.dest}" for m in self.moves]
        for sc in self.state_changes:
            lines += [
                f"  {sc.unit}.{name}: {old!r} -> {new!r}"
                for name, (old, new) in sorted(sc.changed_fields().items())
            ]
        return "\n".join(lines)


# ============================================================================
# UNITS
# ============================================================================

# Raises TransferRuleViolation to refuse a move.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted(state.items())) if state else ()


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    A token as the ledger knows it.

    min_balance / max_balance bound every wallet except SYSTEM_WALLET.
    decimal_places=None means amounts are stored unrounded. Role state is
    kept frozen; the ledger swaps in a new Unit when it changes.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Quantize value to decimal_places, truncating for tokens.

        Raises:
            InvalidAmount: If the value has too many integer digits to carry
                decimal_places within the ledger's decimal context.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        try:
            return value.quantize(quantizer, rounding=rounding_mode)
        except InvalidOperation:
            raise InvalidAmount(f"{value} exceeds {self.symbol} precision") from None


# ============================================================================
# TRANSFER RULES
# ============================================================================

def token_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Keep destroyed and issued supply where it belongs.

    - Nothing leaves BURN_ADDRESS, so tokens sent there are destroyed for good.
    - Nothing returns to SYSTEM_WALLET; supply only shrinks through the sink.

    Raises:
        TransferRuleViolation: If the move spends from the sink or redeems to the issuer.
    """
    if move.source == BURN_ADDRESS:
        raise TransferRuleViolation(
            f"{move.unit_symbol}: {BURN_ADDRESS} is a burn sink and cannot send"
        )
    if move.dest == SYSTEM_WALLET:
        raise TransferRuleViolation(
            f"{move.unit_symbol}: tokens cannot be returned to the issuer"
        )
