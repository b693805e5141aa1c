"""
deploy.py - Wire a Complete Investment System

Creates the ledger, token, vault factory and manager and hands the manager
its two roles (token minter, factory manager), all from the owner's address.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from .conversion import Conversion, IDENTITY
from .core import DEFAULT_LOCK_PERIOD, TOKEN_DECIMAL_PLACES, require_address
from .events import EventLog
from .factory import VaultFactory
from .ledger import Ledger
from .manager import InvestmentManager, ManagerConfig, DEFAULT_MANAGER_ADDRESS
from .token import InvestmentToken


@dataclass
class InvestmentSystem:
    """Everything one deployment consists of."""
    ledger: Ledger
    token: InvestmentToken
    factory: VaultFactory
    manager: InvestmentManager
    events: EventLog
    owner: str

    def advance(self, delta: Union[timedelta, int]) -> None:
        """Move the ledger clock forward by a timedelta or a number of seconds."""
        if isinstance(delta, int):
            delta = timedelta(seconds=delta)
        self.ledger.advance_time(self.ledger.current_time + delta)


def deploy(
    owner: str,
    ledger: Optional[Ledger] = None,
    symbol: str = "INV",
    name: str = "Investment Token",
    lock_period: Union[timedelta, int] = DEFAULT_LOCK_PERIOD,
    conversion: Conversion = IDENTITY,
    manager_address: str = DEFAULT_MANAGER_ADDRESS,
    decimal_places: int = TOKEN_DECIMAL_PLACES,
    initial_time: Optional[datetime] = None,
    verbose: bool = False,
) -> InvestmentSystem:
    """
    Deploy token, factory and manager on a (new or given) ledger.

    Args:
        owner: Address that owns the token, the factory and the manager
        ledger: Existing ledger to deploy on (a new one is created if None)
        symbol: Token symbol
        name: Token name
        lock_period: Initial lock period (timedelta or seconds)
        conversion: Deposit <-> token conversion
        manager_address: Wallet id of the manager
        decimal_places: Token precision
        initial_time: Start time of a newly created ledger
        verbose: Trace output of a newly created ledger

    Example:
        system = deploy("owner", initial_time=datetime(2025, 1, 1))
        system.manager.invest("owner", "alice", 1000)
        system.advance(timedelta(days=30, seconds=1))
        system.manager.initiate_withdrawal("owner", "alice", 1000)
    """
    require_address(owner, "owner")
    if ledger is None:
        ledger = Ledger("investments", initial_time=initial_time, verbose=verbose)
    events = EventLog()

    token = InvestmentToken(ledger, symbol, name, owner=owner, events=events, decimal_places=decimal_places)
    factory = VaultFactory(ledger, token, owner=owner, events=events)
    manager = InvestmentManager(
        token,
        factory,
        owner=owner,
        address=manager_address,
        config=ManagerConfig(lock_period=lock_period, conversion=conversion),
        events=events,
    )
    token.set_minter(owner, manager.address)
    factory.set_manager(owner, manager.address)

    return InvestmentSystem(
        ledger=ledger,
        token=token,
        factory=factory,
        manager=manager,
        events=events,
        owner=owner,
    )
