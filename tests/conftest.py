"""
conftest.py - Shared pytest fixtures for vaultledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Bare ledgers and standalone tokens
- Fully wired deployments (token, factory, manager)
- Clock helpers
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from vaultledger import (
    Ledger, InvestmentToken, EventLog, deploy,
)

from tests.fake_view import FakeView


OWNER = "owner"
ALICE = "alice"
BOB = "bob"
CAROL = "carol"
MALLORY = "mallory"

START = datetime(2025, 1, 1)
LOCK = timedelta(days=30)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def warp(system, seconds: int = 0, **kwargs) -> None:
    """Advance a deployment's clock by a number of seconds (plus timedelta kwargs)."""
    system.advance(timedelta(seconds=seconds, **kwargs))


def events_named(system, name: str):
    return system.events.filter(name)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", START, verbose=False)


@pytest.fixture
def token(ledger):
    """Standalone token with the owner as minter."""
    return InvestmentToken(ledger, "INV", "Investment Token", owner=OWNER, minter=OWNER, events=EventLog())


@pytest.fixture
def other_token(ledger):
    """A second token sharing the ledger, for stray-deposit tests."""
    return InvestmentToken(ledger, "USDX", "Stray Dollar", owner=OWNER, minter=OWNER, events=EventLog())


# =============================================================================
# DEPLOYMENT FIXTURES
# =============================================================================

@pytest.fixture
def system():
    """Full deployment with a 30-day lock and identity conversion."""
    return deploy(OWNER, initial_time=START, lock_period=LOCK)


@pytest.fixture
def invested(system):
    """Deployment in which alice invested 1000 at START."""
    system.manager.invest(OWNER, ALICE, Decimal("1000"))
    return system


@pytest.fixture
def unlocked(invested):
    """Alice's 1000 just past the lock boundary."""
    warp(invested, int(LOCK.total_seconds()) + 1)
    return invested


@pytest.fixture
def fake_view():
    return FakeView(balances={}, time=START)
