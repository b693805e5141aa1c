"""
vaultledger - Investment Bookkeeping on a Token Ledger

Investors deposit value through an owner-operated InvestmentManager, receive
fungible tokens held in a per-investor Vault, and may withdraw (burn) them only
after a lock period measured from their latest deposit.

Usage:
    from datetime import datetime, timedelta
    from vaultledger import deploy

    system = deploy("owner", initial_time=datetime(2025, 1, 1))
    system.manager.invest("owner", "alice", 1000)

    system.advance(timedelta(days=30, seconds=1))
    system.manager.initiate_withdrawal("owner", "alice", 400)
    system.manager.vault_balance("alice")   # Decimal("600")
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
    LedgerError,
    AuthorizationError,
    StateError,
    ReentrancyError,
    AddressError,
    InvalidAmount,
    InsufficientFunds,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    token_transfer_rule,
    require_address,
    as_quantity,
    SYSTEM_WALLET,
    ZERO_ADDRESS,
    BURN_ADDRESS,
    UNIT_TYPE_TOKEN,
    TOKEN_DECIMAL_PLACES,
    DEFAULT_LOCK_PERIOD,
)

# Ledger
from .ledger import Ledger

# Events
from .events import (
    ContractEvent,
    EventLog,
    INVESTMENT_MADE,
    WITHDRAWAL_INITIATED,
    LOCK_PERIOD_CHANGED,
    ACCOUNT_CREATED,
    ACCOUNT_REMOVED,
    TOKENS_BURNED,
    MINTER_CHANGED,
    PAUSED,
    UNPAUSED,
)

# Conversion
from .conversion import Conversion, IDENTITY, fixed_price

# Token
from .token import InvestmentToken, create_token_unit

# Vaults
from .vault import Vault, vault_address
from .factory import VaultFactory

# Manager
from .manager import InvestmentManager, ManagerConfig, DEFAULT_MANAGER_ADDRESS, to_lock_period

# Deployment
from .deploy import InvestmentSystem, deploy

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'LedgerError', 'AuthorizationError', 'StateError', 'ReentrancyError', 'AddressError',
    'InvalidAmount', 'InsufficientFunds', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'token_transfer_rule', 'require_address', 'as_quantity',
    'SYSTEM_WALLET', 'ZERO_ADDRESS', 'BURN_ADDRESS', 'UNIT_TYPE_TOKEN',
    'TOKEN_DECIMAL_PLACES', 'DEFAULT_LOCK_PERIOD',
    # Ledger
    'Ledger',
    # Events
    'ContractEvent', 'EventLog',
    'INVESTMENT_MADE', 'WITHDRAWAL_INITIATED', 'LOCK_PERIOD_CHANGED', 'ACCOUNT_CREATED',
    'ACCOUNT_REMOVED', 'TOKENS_BURNED', 'MINTER_CHANGED', 'PAUSED', 'UNPAUSED',
    # Conversion
    'Conversion', 'IDENTITY', 'fixed_price',
    # Token
    'InvestmentToken', 'create_token_unit',
    # Vaults
    'Vault', 'vault_address', 'VaultFactory',
    # Manager
    'InvestmentManager', 'ManagerConfig', 'DEFAULT_MANAGER_ADDRESS', 'to_lock_period',
    # Deployment
    'InvestmentSystem', 'deploy',
]

__version__ = '1.0.0'
