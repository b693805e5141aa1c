"""
factory.py - Vault Factory

Owns the investor -> vault mapping and its one-vault-per-investor invariant.
Only the manager creates and removes vaults; anyone may look them up.
"""

from __future__ import annotations
from typing import Dict, Optional

from .core import AuthorizationError, StateError, QUANTITY_EPSILON, require_address
from .events import EventLog, ACCOUNT_CREATED, ACCOUNT_REMOVED
from .ledger import Ledger
from .token import InvestmentToken
from .vault import Vault


class VaultFactory:
    """
    Creates at most one Vault per investor.

    The manager address is fixed once, by the factory owner, after the manager
    is deployed (the manager itself needs the factory at construction).

    Example:
        factory = VaultFactory(ledger, token, owner="owner")
        factory.set_manager("owner", "investment_manager")
        vault = factory.create_account("investment_manager", "alice")
        factory.get_account("alice") is vault   # True
    """

    def __init__(
        self,
        ledger: Ledger,
        token: InvestmentToken,
        owner: str,
        manager: Optional[str] = None,
        events: Optional[EventLog] = None,
    ):
        self.ledger = ledger
        self.token = token
        self.owner = require_address(owner, "owner")
        self.manager: Optional[str] = None
        self.events = events if events is not None else token.events
        self._accounts: Dict[str, Vault] = {}
        if manager is not None:
            self.manager = require_address(manager, "manager")

    def set_manager(self, caller: str, manager: str) -> None:
        """
        Bind the factory to its manager. Owner only, once.

        Raises:
            AuthorizationError: If caller is not the factory owner
            AddressError: If manager is empty or the zero address
            StateError: If a manager is already set
        """
        if caller != self.owner:
            raise AuthorizationError(f"{caller} is not the owner of the vault factory")
        require_address(manager, "manager")
        if self.manager is not None:
            raise StateError(f"Vault factory manager already set to {self.manager}")
        self.manager = manager

    def create_account(self, caller: str, investor: str) -> Vault:
        """
        Deploy and register a vault for `investor`.

        Emits AccountCreated(investor, vault).

        Raises:
            AuthorizationError: If caller is not the manager
            StateError: If the investor already has a vault
        """
        self._require_manager(caller)
        require_address(investor, "investor")
        if investor in self._accounts:
            raise StateError(f"Account already exists for {investor}")
        vault = Vault(self.ledger, investor, self.token, self.manager, self.events)
        self._accounts[investor] = vault
        self.events.emit(
            ACCOUNT_CREATED, self.ledger.current_time, "factory",
            investor=investor, vault=vault.address,
        )
        return vault

    def get_account(self, investor: str) -> Optional[Vault]:
        """The investor's vault, or None."""
        return self._accounts.get(investor)

    def remove_account(self, caller: str, investor: str) -> Vault:
        """
        Forget an investor's vault. Manager only.

        The vault must be empty of the investment token; a vault holding
        tokens would otherwise become unreachable.

        Emits AccountRemoved(investor, vault).

        Raises:
            AuthorizationError: If caller is not the manager
            StateError: If no vault exists or it still holds investment tokens
        """
        self._require_manager(caller)
        vault = self._accounts.get(investor)
        if vault is None:
            raise StateError(f"No account for {investor}")
        balance = vault.balance()
        if balance > QUANTITY_EPSILON:
            raise StateError(
                f"{vault.address} still holds {balance} {self.token.symbol}"
            )
        del self._accounts[investor]
        self.events.emit(
            ACCOUNT_REMOVED, self.ledger.current_time, "factory",
            investor=investor, vault=vault.address,
        )
        return vault

    def accounts(self) -> Dict[str, Vault]:
        """Snapshot of the investor -> vault mapping."""
        return dict(self._accounts)

    def discard_account(self, caller: str, investor: str) -> None:
        """Undo a create_account() whose first investment failed. Manager only; emits nothing."""
        self._require_manager(caller)
        vault = self._accounts.pop(investor)
        if vault.owns_wallet:
            self.ledger.unregister_wallet(vault.address)

    def _require_manager(self, caller: str) -> None:
        if self.manager is None:
            raise StateError("Vault factory has no manager")
        if caller != self.manager:
            raise AuthorizationError(f"{caller} is not the manager of the vault factory")

    def __len__(self) -> int:
        return len(self._accounts)
