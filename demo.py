#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Investments, Vaults and Lock Periods

A step-by-step walk through the investment system. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Deployment      - Ledger, token, factory, manager and their roles
  4-6:   Investing       - Vault creation, the lock period, the exact boundary
  7-9:   Withdrawing     - Burning, staged exits, "no investment found"
  10-11: Administration  - Pause switch, changing the lock period
  12-13: Audit           - Time travel and the conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from vaultledger import (
    deploy, InvestmentSystem,
    LedgerError, StateError,
    SYSTEM_WALLET, BURN_ADDRESS,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    lock_period: timedelta = timedelta(days=30)

    owner: str = "desk"
    first_deposit: Decimal = Decimal("1000")
    top_ups: tuple = (Decimal("500"), Decimal("750"))
    withdrawals: tuple = (Decimal("500"), Decimal("750"), Decimal("1000"))


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def attempt(label: str, fn, *args):
    """Run an operation and print either its result or the error it raised."""
    try:
        result = fn(*args)
    except LedgerError as e:
        print(f"{label}: REFUSED ({type(e).__name__}: {e})")
        return None
    print(f"{label}: OK -> {result}")
    return result


# ============================================================================
# PHASE 1: DEPLOYMENT
# ============================================================================

def step_01_deploy() -> InvestmentSystem:
    step_header(1, "Deploying the System",
        "One call wires ledger, token, vault factory and investment manager.")

    print(f">>> system = deploy({CONFIG.owner!r}, lock_period={CONFIG.lock_period!r})")
    system = deploy(
        CONFIG.owner,
        initial_time=CONFIG.start_time,
        lock_period=CONFIG.lock_period,
        verbose=True,
    )

    section_header("Roles")
    print(f"Token owner:     {system.token.owner}")
    print(f"Token minter:    {system.token.minter}")
    print(f"Factory manager: {system.factory.manager}")
    print(f"Manager owner:   {system.manager.owner}")
    print(f"Lock period:     {system.manager.lock_period}")
    return system


def step_02_wallets(system: InvestmentSystem):
    step_header(2, "Wallets Before Anyone Invests",
        "Only the issuer and the burn sink exist.")

    print(f"Wallets: {sorted(system.ledger.list_wallets())}")
    print(f"Total supply: {system.token.total_supply()}")
    print("""
    SYSTEM_WALLET issues every token (its balance goes negative).
    BURN_ADDRESS receives destroyed tokens and can never send them again.
    """)


def step_03_authorization(system: InvestmentSystem):
    step_header(3, "Only the Owner Operates the Manager",
        "Every call names its caller; roles are checked explicitly.")

    attempt("mallory invests for alice", system.manager.invest, "mallory", "alice", 100)
    attempt("mallory mints to herself", system.token.mint, "mallory", "mallory", 100)


# ============================================================================
# PHASE 2: INVESTING
# ============================================================================

def step_04_first_investment(system: InvestmentSystem):
    step_header(4, "First Investment",
        "A vault is created on demand; tokens are minted straight into it.")

    system.manager.invest(CONFIG.owner, "alice", CONFIG.first_deposit)
    vault = system.manager.get_account("alice")

    section_header("Result")
    print(f"Vault:        {vault!r}")
    print(f"Unlock after: {system.manager.unlock_time('alice')}")
    print(f"Manager holds {system.token.balance_of(system.manager.address)} tokens")


def step_05_top_ups(system: InvestmentSystem):
    step_header(5, "Topping Up",
        "Further deposits reuse the vault and restart the lock.")

    for amount in CONFIG.top_ups:
        system.advance(timedelta(days=1))
        system.manager.invest(CONFIG.owner, "alice", amount)
    print(f"Vault balance: {system.manager.vault_balance('alice')}")
    print(f"Unlock after:  {system.manager.unlock_time('alice')}")


def step_06_boundary(system: InvestmentSystem):
    step_header(6, "The Lock Boundary Is Exclusive",
        "At exactly invested_at + lock the withdrawal is refused; one second later it is allowed.")

    unlock = system.manager.unlock_time("alice")
    system.ledger.advance_time(unlock)
    print(f"Now: {system.ledger.current_time}")
    attempt("withdraw at the boundary", system.manager.initiate_withdrawal,
            CONFIG.owner, "alice", CONFIG.withdrawals[0])

    system.advance(1)
    print(f"Now: {system.ledger.current_time}")
    print(f"is_withdrawable: {system.manager.is_withdrawable('alice')}")


# ============================================================================
# PHASE 3: WITHDRAWING
# ============================================================================

def step_07_staged_withdrawals(system: InvestmentSystem):
    step_header(7, "Staged Withdrawals",
        "Each withdrawal burns tokens from the vault into the sink.")

    for amount in CONFIG.withdrawals:
        attempt(f"withdraw {amount}", system.manager.initiate_withdrawal, CONFIG.owner, "alice", amount)
        print(f"  vault balance now {system.manager.vault_balance('alice')}")


def step_08_nothing_left(system: InvestmentSystem):
    step_header(8, "Nothing Left to Withdraw",
        "An empty vault means there is no investment to withdraw from.")

    attempt("withdraw again", system.manager.initiate_withdrawal, CONFIG.owner, "alice", 1)
    print(f"Last investment time is kept: {system.manager.get_investment_time('alice')}")


def step_09_vault_exit(system: InvestmentSystem):
    step_header(9, "The Vault Owner Cannot Bypass the Lock",
        "withdraw_tokens refuses the investment token.")

    system.manager.invest(CONFIG.owner, "bob", 300)
    vault = system.manager.get_account("bob")
    attempt("bob pulls his tokens directly", vault.withdraw_tokens, "bob", system.token, 300)


# ============================================================================
# PHASE 4: ADMINISTRATION
# ============================================================================

def step_10_pause(system: InvestmentSystem):
    step_header(10, "Pause and Resume",
        "A paused manager refuses deposits and withdrawals; queries keep working.")

    system.manager.pause(CONFIG.owner)
    attempt("invest while paused", system.manager.invest, CONFIG.owner, "carol", 100)
    print(f"bob's balance while paused: {system.manager.vault_balance('bob')}")
    system.manager.unpause(CONFIG.owner)
    attempt("invest after unpause", system.manager.invest, CONFIG.owner, "carol", 100)


def step_11_lock_change(system: InvestmentSystem):
    step_header(11, "Changing the Lock Period",
        "The new period applies to every investor immediately.")

    system.advance(timedelta(days=2))
    attempt("bob withdraws under a 30-day lock", system.manager.initiate_withdrawal, CONFIG.owner, "bob", 100)
    system.manager.set_lock_period(CONFIG.owner, timedelta(days=1))
    attempt("bob withdraws under a 1-day lock", system.manager.initiate_withdrawal, CONFIG.owner, "bob", 100)


# ============================================================================
# PHASE 5: AUDIT
# ============================================================================

def step_12_time_travel(system: InvestmentSystem):
    step_header(12, "Time Travel",
        "clone_at() rebuilds the ledger as it stood at any past instant.")

    for days in (0, 2, 40):
        when = CONFIG.start_time + timedelta(days=days)
        past = system.ledger.clone_at(min(when, system.ledger.current_time))
        print(f"{past.current_time}: alice's vault held {past.get_balance('vault:alice', system.token.symbol)}")


def step_13_conservation(system: InvestmentSystem):
    step_header(13, "Conservation Proof",
        "Minted minus burned equals what the vaults hold; every unit nets to zero.")

    token = system.token
    vaults = sum((v.balance() for v in system.factory.accounts().values()), Decimal("0"))
    print(f"Minted:      {token.total_supply()}")
    print(f"Burned:      {token.burned()}  (held by {BURN_ADDRESS})")
    print(f"Circulating: {token.circulating_supply()}")
    print(f"In vaults:   {vaults}")
    print(f"Issuer:      {system.ledger.get_balance(SYSTEM_WALLET, token.symbol)}")

    result = system.ledger.verify_double_entry()
    print(f"\nDouble entry valid: {result['valid']}")
    print(f"Events emitted:     {len(system.events)}")
    print(f"Transactions:       {len(system.ledger.transaction_log)}")


def main():
    system = step_01_deploy()
    wait_for_enter()
    system.ledger.verbose = False
    system.manager.verbose = True

    step_02_wallets(system)
    wait_for_enter()
    step_03_authorization(system)
    wait_for_enter()

    step_04_first_investment(system)
    wait_for_enter()
    step_05_top_ups(system)
    wait_for_enter()
    step_06_boundary(system)
    wait_for_enter()

    step_07_staged_withdrawals(system)
    wait_for_enter()
    step_08_nothing_left(system)
    wait_for_enter()
    step_09_vault_exit(system)
    wait_for_enter()

    step_10_pause(system)
    wait_for_enter()
    step_11_lock_change(system)
    wait_for_enter()

    step_12_time_travel(system)
    wait_for_enter()
    step_13_conservation(system)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See vaultledger/manager.py for the lock-period state machine
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
