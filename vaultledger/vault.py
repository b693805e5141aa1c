"""
vault.py - Per-Investor Custodial Account

A Vault is a ledger wallet that holds investment tokens on behalf of one
investor. It is bound at construction to its owner, the investment token and
the manager; none of the three can change afterwards.

Two exits exist:
1. burn_tokens() - the manager destroys tokens after the lock period
2. withdraw_tokens() - the owner pulls out any OTHER token sent to the vault

The investment token only leaves through burn_tokens(), so the manager's
lock period cannot be bypassed by the owner.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional

from .core import (
    BURN_ADDRESS, OriginType,
    AuthorizationError, StateError,
    require_address,
)
from .events import EventLog, TOKENS_BURNED
from .ledger import Ledger
from .token import InvestmentToken


VAULT_PREFIX = "vault:"


def vault_address(investor: str) -> str:
    """Deterministic wallet id of an investor's vault."""
    return f"{VAULT_PREFIX}{investor}"


class Vault:
    """
    Custodial holder of one investor's tokens.

    Attributes:
        address: Ledger wallet id (vault:<investor>)
        owner: The investor
        token: The bound investment token
        manager: Address of the only caller allowed to burn
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        token: InvestmentToken,
        manager: str,
        events: Optional[EventLog] = None,
    ):
        require_address(owner, "owner")
        require_address(manager, "manager")
        self.ledger = ledger
        self.owner = owner
        self.token = token
        self.manager = manager
        self.address = vault_address(owner)
        self.events = events if events is not None else token.events
        # A removed vault leaves its wallet behind; a new vault for the same
        # investor takes it over.
        self.owns_wallet = not ledger.is_registered(self.address)
        if self.owns_wallet:
            ledger.register_wallet(self.address)

    def balance(self) -> Decimal:
        """Balance of the bound investment token."""
        return self.token.balance_of(self.address)

    def balance_of(self, token: InvestmentToken) -> Decimal:
        return token.balance_of(self.address)

    def burn_tokens(self, caller: str, token: InvestmentToken, amount) -> Decimal:
        """
        Destroy `amount` of the vault's investment tokens.

        Tokens are moved to BURN_ADDRESS, from which the transfer rule forbids
        any further movement.

        Emits TokensBurned(amount).

        Raises:
            AuthorizationError: If caller is not the bound manager
            StateError: If token is not the bound investment token
            InsufficientFunds: If the vault holds less than amount
        """
        if caller != self.manager:
            raise AuthorizationError(f"{caller} is not the manager of {self.address}")
        if token is not self.token:
            raise StateError(
                f"{self.address} only burns its bound {self.token.symbol}, "
                f"got {token.symbol} from ledger {token.ledger.name}"
            )
        burned = self.token.transfer(self.address, BURN_ADDRESS, amount, event_type="BURN")
        self.events.emit(
            TOKENS_BURNED, self.ledger.current_time, self.address, amount=burned,
        )
        return burned

    def withdraw_tokens(self, caller: str, token: InvestmentToken, amount) -> Decimal:
        """
        Send `amount` of a non-investment token held by the vault to the owner.

        Raises:
            AuthorizationError: If caller is not the vault owner
            StateError: If token is the bound investment token (those are
                only released through the manager's lock-gated withdrawal)
                or lives on another ledger
            InsufficientFunds: If the vault holds less than amount
        """
        if caller != self.owner:
            raise AuthorizationError(f"{caller} is not the owner of {self.address}")
        if token is self.token:
            raise StateError(
                f"{token.symbol} is locked in {self.address}; withdraw through the investment manager"
            )
        if token.ledger is not self.ledger:
            raise StateError(f"{token.symbol} belongs to ledger {token.ledger.name}, not {self.ledger.name}")
        return token.transfer(
            self.address, self.owner, amount,
            event_type="VAULT_WITHDRAW", origin_type=OriginType.USER_ACTION,
        )

    def __repr__(self) -> str:
        return f"Vault({self.address}, owner={self.owner}, {self.balance()} {self.token.symbol})"
