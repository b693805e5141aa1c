"""
token.py - Fungible Investment Token

An ERC20-style token on top of the Ledger:
1. create_token_unit() - Factory for the token's Unit (roles live in unit state)
2. InvestmentToken - mint, batch_mint, transfer, balance and supply queries,
   owner-controlled minter role and pause switch

Issuance is a move out of SYSTEM_WALLET, so the system wallet's balance is
always minus the amount ever minted. Destruction is a move into BURN_ADDRESS,
which the token's transfer rule never lets spend again.

Role changes (set_minter, pause, unpause) are recorded as unit state changes,
so they appear in the transaction log alongside balance moves and are
restored by Ledger.clone_at().
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, Optional, Sequence

from .core import (
    Move, Unit, UnitStateChange, TransactionOrigin, OriginType, ExecuteResult,
    SYSTEM_WALLET, BURN_ADDRESS, UNIT_TYPE_TOKEN, TOKEN_DECIMAL_PLACES,
    LedgerError, AuthorizationError, StateError, InvalidAmount, InsufficientFunds,
    build_transaction, require_address, as_quantity, token_transfer_rule,
    _freeze_state,
)
from .events import EventLog, MINTER_CHANGED, PAUSED, UNPAUSED
from .ledger import Ledger


def create_token_unit(
    symbol: str,
    name: str,
    owner: str,
    minter: Optional[str] = None,
    decimal_places: int = TOKEN_DECIMAL_PLACES,
) -> Unit:
    """
    Create the Unit backing an InvestmentToken.

    Args:
        symbol: Token symbol (e.g., "INV")
        name: Human-readable name
        owner: Address allowed to change the minter and pause the token
        minter: Address allowed to mint (None until set_minter is called)
        decimal_places: Token precision (default: 18)

    Returns:
        Unit with a zero minimum balance (no overdrafts) and the sink/issuer
        transfer rule. The state holds:
        - owner: administrative principal
        - minter: minting principal or None
        - paused: whether mint and transfer are blocked
        - revision: incremented on every role change
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    require_address(owner, "owner")
    if minter is not None:
        require_address(minter, "minter")
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")

    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
        transfer_rule=token_transfer_rule,
        _frozen_state=_freeze_state({
            'owner': owner,
            'minter': minter,
            'paused': False,
            'revision': 0,
        })
    )


class InvestmentToken:
    """
    Fungible token with an owner, a designated minter and a pause switch.

    Every operation takes the calling address first and checks it against the
    role recorded in the token's unit state.

    Example:
        ledger = Ledger("main", verbose=False)
        token = InvestmentToken(ledger, "INV", "Investment Token", owner="owner")
        token.set_minter("owner", "manager")
        token.mint("manager", "alice", 100)
        token.transfer("alice", "bob", 40)
        token.balance_of("bob")   # Decimal("40")
    """

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        name: str,
        owner: str,
        minter: Optional[str] = None,
        events: Optional[EventLog] = None,
        decimal_places: int = TOKEN_DECIMAL_PLACES,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.events = events if events is not None else EventLog()
        self._sequence = 0
        ledger.register_unit(create_token_unit(symbol, name, owner, minter, decimal_places))
        self._ensure_wallet(BURN_ADDRESS)

    # ========================================================================
    # ROLES AND STATE
    # ========================================================================

    @property
    def unit(self) -> Unit:
        return self.ledger.get_unit(self.symbol)

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def owner(self) -> str:
        return self.ledger.get_unit_state(self.symbol)['owner']

    @property
    def minter(self) -> Optional[str]:
        return self.ledger.get_unit_state(self.symbol)['minter']

    @property
    def paused(self) -> bool:
        return self.ledger.get_unit_state(self.symbol)['paused']

    def round(self, value: Decimal) -> Decimal:
        """Round to token precision (towards zero)."""
        return self.unit.round(value)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def balance_of(self, address: str) -> Decimal:
        """Balance held by an address; zero for addresses the ledger has never seen."""
        if not self.ledger.is_registered(address):
            return Decimal("0")
        return self.ledger.get_balance(address, self.symbol)

    def total_supply(self) -> Decimal:
        """Everything ever minted, including tokens sitting in the burn sink."""
        return -self.ledger.get_balance(SYSTEM_WALLET, self.symbol)

    def burned(self) -> Decimal:
        """Tokens destroyed by transfer to BURN_ADDRESS."""
        return self.ledger.get_balance(BURN_ADDRESS, self.symbol)

    def circulating_supply(self) -> Decimal:
        """Minted minus burned."""
        return self.total_supply() - self.burned()

    # ========================================================================
    # MINTING AND TRANSFERS
    # ========================================================================

    def mint(self, caller: str, to: str, amount) -> Decimal:
        """
        Create `amount` new tokens in `to`.

        Raises:
            AuthorizationError: If caller is not the minter
            StateError: If the token is paused
            InvalidAmount: If amount is not positive after rounding
        """
        self._require_minter(caller)
        self._require_not_paused()
        require_address(to, "recipient")
        quantity = self.to_quantity(amount)
        self._ensure_wallet(to)
        self._execute([self._issue_move(to, quantity)], "MINT", OriginType.SYSTEM)
        return quantity

    def batch_mint(self, caller: str, recipients: Sequence[str], amounts: Sequence) -> Decimal:
        """
        Mint to several recipients in one atomic transaction.

        Returns:
            Total quantity minted

        Raises:
            ValueError: If recipients and amounts differ in length or are empty
        """
        self._require_minter(caller)
        self._require_not_paused()
        if len(recipients) != len(amounts):
            raise ValueError(
                f"recipients and amounts differ in length: {len(recipients)} != {len(amounts)}"
            )
        if not recipients:
            raise ValueError("batch_mint needs at least one recipient")

        quantities = []
        for to, amount in zip(recipients, amounts):
            require_address(to, "recipient")
            quantities.append(self.to_quantity(amount))
        for to in recipients:
            self._ensure_wallet(to)

        moves = [self._issue_move(to, q) for to, q in zip(recipients, quantities)]
        self._execute(moves, "BATCH_MINT", OriginType.SYSTEM)
        return sum(quantities, Decimal("0"))

    def mint_through(self, caller: str, to: str, amount) -> Decimal:
        """
        Mint into the caller's own wallet and forward to `to` in one transaction.

        The minter holds the new tokens only inside the transaction; no state
        with the tokens parked at the minter is ever observable.
        """
        self._require_minter(caller)
        self._require_not_paused()
        require_address(to, "recipient")
        quantity = self.to_quantity(amount)
        self._ensure_wallet(caller)
        self._ensure_wallet(to)
        moves = [
            self._issue_move(caller, quantity),
            Move(
                quantity=quantity,
                unit_symbol=self.symbol,
                source=caller,
                dest=to,
                contract_id=self._next_contract_id("forward"),
            ),
        ]
        self._execute(moves, "MINT_THROUGH", source_id=caller)
        return quantity

    def transfer(
        self,
        caller: str,
        to: str,
        amount,
        event_type: str = "TRANSFER",
        origin_type: OriginType = OriginType.CONTRACT,
    ) -> Decimal:
        """
        Move `amount` from the caller's balance to `to`.

        Raises:
            StateError: If the token is paused
            InsufficientFunds: If the caller holds less than amount
            LedgerError: If the ledger rejects the move (e.g., spending from the sink)
        """
        self._require_not_paused()
        require_address(to, "recipient")
        quantity = self.to_quantity(amount)
        balance = self.balance_of(caller)
        if balance < quantity:
            raise InsufficientFunds(
                f"{caller} holds {balance} {self.symbol}, cannot transfer {quantity}"
            )
        self._ensure_wallet(to)
        move = Move(
            quantity=quantity,
            unit_symbol=self.symbol,
            source=caller,
            dest=to,
            contract_id=self._next_contract_id(event_type.lower()),
        )
        self._execute([move], event_type, origin_type, source_id=caller)
        return quantity

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_minter(self, caller: str, minter: str) -> None:
        """
        Designate the address allowed to mint. Owner only.

        Emits MinterChanged(minter).
        """
        self._require_owner(caller)
        require_address(minter, "minter")
        self._update_state("SET_MINTER", minter=minter)
        self.events.emit(MINTER_CHANGED, self.ledger.current_time, self.symbol, minter=minter)

    def pause(self, caller: str) -> None:
        """Block mint and transfer. Owner only."""
        self._require_owner(caller)
        if self.paused:
            raise StateError(f"{self.symbol} is already paused")
        self._update_state("PAUSE", paused=True)
        self.events.emit(PAUSED, self.ledger.current_time, self.symbol, account=caller)

    def unpause(self, caller: str) -> None:
        """Lift the pause. Owner only."""
        self._require_owner(caller)
        if not self.paused:
            raise StateError(f"{self.symbol} is not paused")
        self._update_state("UNPAUSE", paused=False)
        self.events.emit(UNPAUSED, self.ledger.current_time, self.symbol, account=caller)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise AuthorizationError(f"{caller} is not the owner of {self.symbol}")

    def _require_minter(self, caller: str) -> None:
        minter = self.minter
        if minter is None or caller != minter:
            raise AuthorizationError(f"{caller} is not the minter of {self.symbol}")

    def _require_not_paused(self) -> None:
        if self.paused:
            raise StateError(f"{self.symbol} is paused")

    def to_quantity(self, amount) -> Decimal:
        """Validate a user amount and round it to token precision."""
        quantity = self.round(as_quantity(amount))
        if quantity <= 0:
            raise InvalidAmount(f"amount {amount} rounds to zero {self.symbol}")
        return quantity

    def _ensure_wallet(self, address: str) -> None:
        if not self.ledger.is_registered(address):
            self.ledger.register_wallet(address)

    def _next_contract_id(self, action: str) -> str:
        # Distinct ids keep repeated identical operations from being
        # deduplicated by the ledger's intent hash.
        self._sequence += 1
        return f"{self.symbol}:{action}:{self._sequence}"

    def _issue_move(self, to: str, quantity: Decimal) -> Move:
        return Move(
            quantity=quantity,
            unit_symbol=self.symbol,
            source=SYSTEM_WALLET,
            dest=to,
            contract_id=self._next_contract_id("mint"),
        )

    def _update_state(self, event_type: str, **changes) -> None:
        old_state = self.ledger.get_unit_state(self.symbol)
        new_state = {**old_state, **changes, 'revision': old_state['revision'] + 1}
        self._execute(
            [],
            event_type,
            OriginType.SYSTEM,
            state_changes=[UnitStateChange(unit=self.symbol, old_state=old_state, new_state=new_state)],
        )

    def _execute(
        self,
        moves: List[Move],
        event_type: str,
        origin_type: OriginType = OriginType.CONTRACT,
        source_id: Optional[str] = None,
        state_changes: Optional[List[UnitStateChange]] = None,
    ) -> None:
        origin = TransactionOrigin(
            origin_type=origin_type,
            source_id=source_id or self.symbol,
            unit_symbol=self.symbol,
            event_type=event_type,
        )
        pending = build_transaction(self.ledger, moves, state_changes, origin)
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(
                f"{self.symbol} {event_type} {result.value}: {self.ledger.last_rejection}"
            )
