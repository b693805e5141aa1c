"""
manager.py - Investment Manager

Orchestrates deposits and lock-gated withdrawals:

    invest(investor, amount)
        -> factory.create_account() on first deposit
        -> token.mint_through(): mint to the manager, forward to the vault (one transaction)
        -> record last_investment_time = now (overwrites; the lock restarts)

    initiate_withdrawal(investor, tokens)
        -> require an investment and now > last_investment_time + lock_period
        -> vault.burn_tokens(): move tokens to the burn sink

Per investor:
    NoRecord --invest--> Invested(t) --invest--> Invested(now)
    Invested(t) is withdrawable once now > t + lock_period. Withdrawals never
    clear the record; an investor whose vault is empty has no investment to
    withdraw from.

The lock period is read from ManagerConfig at check time, so changing it
applies to every investor immediately.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterator, Optional, Union

from .conversion import Conversion, IDENTITY
from .core import (
    DEFAULT_LOCK_PERIOD, QUANTITY_EPSILON,
    AuthorizationError, StateError, ReentrancyError, InvalidAmount,
    require_address, as_quantity,
)
from .events import (
    EventLog,
    INVESTMENT_MADE, WITHDRAWAL_INITIATED, LOCK_PERIOD_CHANGED, PAUSED, UNPAUSED,
)
from .factory import VaultFactory
from .token import InvestmentToken
from .vault import Vault


DEFAULT_MANAGER_ADDRESS = "investment_manager"


def to_lock_period(period: Union[timedelta, int]) -> timedelta:
    """Accept a timedelta or a whole number of seconds."""
    if isinstance(period, bool):
        raise InvalidAmount(f"lock period must be seconds or a timedelta, got {period!r}")
    if isinstance(period, int):
        period = timedelta(seconds=period)
    if not isinstance(period, timedelta):
        raise InvalidAmount(f"lock period must be seconds or a timedelta, got {type(period).__name__}")
    if period < timedelta(0):
        raise InvalidAmount(f"lock period cannot be negative, got {period}")
    return period


@dataclass(frozen=True, slots=True)
class ManagerConfig:
    """
    Policy values read by the manager on every call.

    Attributes:
        lock_period: Minimum time between an investor's latest deposit and
            their first permitted withdrawal (exclusive boundary)
        conversion: Deposit <-> token conversion
    """
    lock_period: timedelta = DEFAULT_LOCK_PERIOD
    conversion: Conversion = IDENTITY

    def __post_init__(self):
        object.__setattr__(self, "lock_period", to_lock_period(self.lock_period))


class InvestmentManager:
    """
    Owner-operated investment desk: the sole minter of the token and the
    sole manager of every vault.

    Example:
        manager = InvestmentManager(token, factory, owner="owner")
        token.set_minter("owner", manager.address)
        factory.set_manager("owner", manager.address)

        manager.invest("owner", "alice", 1000)
        ledger.advance_time(ledger.current_time + timedelta(days=31))
        manager.initiate_withdrawal("owner", "alice", 400)
    """

    def __init__(
        self,
        token: InvestmentToken,
        factory: VaultFactory,
        owner: str,
        address: str = DEFAULT_MANAGER_ADDRESS,
        config: Optional[ManagerConfig] = None,
        events: Optional[EventLog] = None,
    ):
        self.token = token
        self.factory = factory
        self.ledger = token.ledger
        self.owner = require_address(owner, "owner")
        self.address = require_address(address, "manager")
        self.config = config or ManagerConfig()
        self.events = events if events is not None else token.events
        self.paused = False
        self.verbose = self.ledger.verbose
        self._investment_times: Dict[str, datetime] = {}
        self._in_flight = False

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def lock_period(self) -> timedelta:
        return self.config.lock_period

    def get_account(self, investor: str) -> Optional[Vault]:
        return self.factory.get_account(investor)

    def get_investment_time(self, investor: str) -> Optional[datetime]:
        """Time of the investor's latest deposit, or None if never invested."""
        return self._investment_times.get(investor)

    def unlock_time(self, investor: str) -> Optional[datetime]:
        """
        Last instant at which withdrawal is still refused.

        Withdrawal succeeds strictly after this time.
        """
        invested_at = self._investment_times.get(investor)
        if invested_at is None:
            return None
        return invested_at + self.config.lock_period

    def is_withdrawable(self, investor: str) -> bool:
        unlock = self.unlock_time(investor)
        return unlock is not None and self.ledger.current_time > unlock

    def vault_balance(self, investor: str) -> Decimal:
        vault = self.factory.get_account(investor)
        return vault.balance() if vault is not None else Decimal("0")

    def has_active_investment(self, investor: str) -> bool:
        """A deposit is on record and the vault still holds tokens."""
        return (
            investor in self._investment_times
            and self.vault_balance(investor) > QUANTITY_EPSILON
        )

    # ========================================================================
    # INVEST / WITHDRAW
    # ========================================================================

    def invest(self, caller: str, investor: str, amount) -> Decimal:
        """
        Credit an investor's vault with tokens for a deposit of `amount`.

        Creates the vault on first investment. Restarts the investor's lock
        period.

        Emits InvestmentMade(investor, amount, tokens).

        Returns:
            Tokens credited to the vault

        Raises:
            AuthorizationError: If caller is not the owner
            StateError: If paused, or on a reentrant call
            InvalidAmount: If amount (or its token equivalent) is not positive
        """
        self._require_owner(caller)
        self._require_not_paused()
        require_address(investor, "investor")
        amount = as_quantity(amount, "amount")

        with self._non_reentrant():
            mark = len(self.events)
            vault = self.factory.get_account(investor)
            created = vault is None
            if created:
                vault = self.factory.create_account(self.address, investor)
            try:
                tokens = self.token.round(self.config.conversion.to_tokens(amount))
                if tokens <= 0:
                    raise InvalidAmount(f"deposit of {amount} converts to no tokens")
                self.token.mint_through(self.address, vault.address, tokens)
            except Exception:
                if created:
                    self.factory.discard_account(self.address, investor)
                self.events.truncate(mark)
                raise

            now = self.ledger.current_time
            self._investment_times[investor] = now
            self.events.emit(
                INVESTMENT_MADE, now, self.address,
                investor=investor, amount=amount, tokens=tokens,
            )

        if self.verbose:
            print(f"[INVEST] {investor}: {amount} -> {tokens} {self.token.symbol}, "
                  f"locked until {now + self.config.lock_period}")
        return tokens

    def initiate_withdrawal(self, caller: str, investor: str, tokens) -> Decimal:
        """
        Burn `tokens` from an investor's vault once their lock period is over.

        Emits WithdrawalInitiated(investor, fiat_amount, tokens).

        Returns:
            The fiat amount corresponding to the burned tokens

        Raises:
            AuthorizationError: If caller is not the owner
            StateError: If paused, on a reentrant call, if there is no
                investment to withdraw from, or if the lock period is not over
            InvalidAmount: If tokens is not positive
            InsufficientFunds: If the vault holds fewer tokens
        """
        self._require_owner(caller)
        self._require_not_paused()
        tokens = self.token.to_quantity(tokens)

        with self._non_reentrant():
            invested_at = self._investment_times.get(investor)
            vault = self.factory.get_account(investor)
            if invested_at is None or vault is None:
                raise StateError(f"no investment found for {investor}")

            now = self.ledger.current_time
            unlock = invested_at + self.config.lock_period
            if now <= unlock:
                raise StateError(
                    f"lock period not over for {investor}: withdrawals open after {unlock}"
                )
            if vault.balance() <= QUANTITY_EPSILON:
                raise StateError(f"no investment found for {investor}: vault is empty")

            fiat_amount = self.config.conversion.to_fiat(tokens)
            vault.burn_tokens(self.address, self.token, tokens)
            self.events.emit(
                WITHDRAWAL_INITIATED, now, self.address,
                investor=investor, fiat_amount=fiat_amount, tokens=tokens,
            )

        if self.verbose:
            print(f"[WITHDRAW] {investor}: burned {tokens} {self.token.symbol} for {fiat_amount}")
        return fiat_amount

    def close_account(self, caller: str, investor: str) -> Vault:
        """
        Remove an investor's empty vault and clear their investment record.

        Raises:
            AuthorizationError: If caller is not the owner
            StateError: If there is no vault or it still holds tokens
        """
        self._require_owner(caller)
        with self._non_reentrant():
            vault = self.factory.remove_account(self.address, investor)
            self._investment_times.pop(investor, None)
        return vault

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_lock_period(self, caller: str, period: Union[timedelta, int]) -> None:
        """
        Replace the lock period for all investors, existing deposits included.

        Emits LockPeriodChanged(period).
        """
        self._require_owner(caller)
        period = to_lock_period(period)
        self.config = replace(self.config, lock_period=period)
        self.events.emit(LOCK_PERIOD_CHANGED, self.ledger.current_time, self.address, period=period)

    def pause(self, caller: str) -> None:
        self._require_owner(caller)
        if self.paused:
            raise StateError("Investment manager is already paused")
        self.paused = True
        self.events.emit(PAUSED, self.ledger.current_time, self.address, account=caller)

    def unpause(self, caller: str) -> None:
        self._require_owner(caller)
        if not self.paused:
            raise StateError("Investment manager is not paused")
        self.paused = False
        self.events.emit(UNPAUSED, self.ledger.current_time, self.address, account=caller)

    # ========================================================================
    # GUARDS
    # ========================================================================

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise AuthorizationError(f"{caller} is not the owner of the investment manager")

    def _require_not_paused(self) -> None:
        if self.paused:
            raise StateError("Investment manager is paused")

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        # One flag for all guarded entry points.
        if self._in_flight:
            raise ReentrancyError("Investment manager call already in progress")
        self._in_flight = True
        try:
            yield
        finally:
            self._in_flight = False
