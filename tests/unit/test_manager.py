"""
test_manager.py - Unit tests for manager.py

Tests:
- invest(): authorization, pause, validation, vault creation, rollback
- initiate_withdrawal(): lock boundary, missing/empty investments, burning
- close_account(), set_lock_period(), pause()/unpause()
- Reentrancy guard
- ManagerConfig / to_lock_period
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from vaultledger import (
    deploy, Conversion, ManagerConfig, to_lock_period, fixed_price,
    AuthorizationError, StateError, ReentrancyError, InvalidAmount,
    InsufficientFunds, AddressError,
    INVESTMENT_MADE, WITHDRAWAL_INITIATED, LOCK_PERIOD_CHANGED, ACCOUNT_CREATED,
    TOKENS_BURNED, PAUSED, UNPAUSED,
    DEFAULT_LOCK_PERIOD, DEFAULT_MANAGER_ADDRESS, ZERO_ADDRESS, BURN_ADDRESS,
)
from tests.conftest import OWNER, ALICE, BOB, MALLORY, START, LOCK, warp

LOCK_SECONDS = int(LOCK.total_seconds())


class TestInvest:

    def test_first_investment_creates_vault(self, system):
        tokens = system.manager.invest(OWNER, ALICE, 1000)
        vault = system.factory.get_account(ALICE)
        assert tokens == Decimal("1000")
        assert vault is not None
        assert vault.balance() == Decimal("1000")
        assert system.manager.get_investment_time(ALICE) == START
        assert system.token.total_supply() == Decimal("1000")

    def test_event(self, system):
        system.manager.invest(OWNER, ALICE, 1000)
        event = system.events.last(INVESTMENT_MADE)
        assert event.source == DEFAULT_MANAGER_ADDRESS
        assert event['investor'] == ALICE
        assert event['amount'] == Decimal("1000")
        assert event['tokens'] == Decimal("1000")
        assert event.timestamp == START

    def test_second_investment_reuses_vault(self, invested):
        vault = invested.factory.get_account(ALICE)
        invested.manager.invest(OWNER, ALICE, 500)
        assert invested.factory.get_account(ALICE) is vault
        assert vault.balance() == Decimal("1500")
        assert len(invested.events.filter(ACCOUNT_CREATED)) == 1

    def test_manager_never_holds_tokens(self, invested):
        assert invested.token.balance_of(invested.manager.address) == Decimal("0")

    def test_owner_only(self, system):
        with pytest.raises(AuthorizationError, match="not the owner"):
            system.manager.invest(MALLORY, ALICE, 1000)
        assert system.factory.get_account(ALICE) is None

    def test_paused(self, system):
        system.manager.pause(OWNER)
        with pytest.raises(StateError, match="paused"):
            system.manager.invest(OWNER, ALICE, 1000)

    @pytest.mark.parametrize("amount", [0, -1, True, "abc", Decimal("NaN")])
    def test_rejects_bad_amount(self, system, amount):
        with pytest.raises(InvalidAmount):
            system.manager.invest(OWNER, ALICE, amount)
        assert system.factory.get_account(ALICE) is None

    def test_rejects_amount_beyond_token_precision(self, system):
        events_before = len(system.events)
        with pytest.raises(InvalidAmount, match="exceeds INV precision"):
            system.manager.invest(OWNER, ALICE, 10**33)
        assert system.factory.get_account(ALICE) is None
        assert len(system.events) == events_before
        assert system.token.total_supply() == Decimal("0")

    @pytest.mark.parametrize("investor", ["", ZERO_ADDRESS])
    def test_rejects_bad_investor(self, system, investor):
        with pytest.raises(AddressError):
            system.manager.invest(OWNER, investor, 1000)

    def test_failed_first_investment_leaves_no_vault(self, system):
        system.token.pause(OWNER)
        events_before = len(system.events)
        with pytest.raises(StateError):
            system.manager.invest(OWNER, ALICE, 1000)
        assert system.factory.get_account(ALICE) is None
        assert not system.ledger.is_registered("vault:alice")
        assert system.manager.get_investment_time(ALICE) is None
        assert len(system.events) == events_before

    def test_failed_first_investment_can_be_retried(self, system):
        system.token.pause(OWNER)
        with pytest.raises(StateError):
            system.manager.invest(OWNER, ALICE, 1000)
        system.token.unpause(OWNER)
        system.manager.invest(OWNER, ALICE, 1000)
        assert system.manager.vault_balance(ALICE) == Decimal("1000")

    def test_failed_top_up_keeps_vault_and_lock(self, invested):
        warp(invested, days=10)
        invested.token.pause(OWNER)
        with pytest.raises(StateError):
            invested.manager.invest(OWNER, ALICE, 500)
        assert invested.factory.get_account(ALICE) is not None
        assert invested.manager.vault_balance(ALICE) == Decimal("1000")
        assert invested.manager.get_investment_time(ALICE) == START

    def test_conversion_to_zero_tokens(self):
        system = deploy(OWNER, initial_time=START, conversion=Conversion(
            to_tokens=lambda amount: Decimal("0"), to_fiat=lambda tokens: tokens,
        ))
        with pytest.raises(InvalidAmount, match="converts to no tokens"):
            system.manager.invest(OWNER, ALICE, 1000)
        assert system.factory.get_account(ALICE) is None

    def test_fixed_price(self):
        system = deploy(OWNER, initial_time=START, lock_period=0, conversion=fixed_price(2))
        assert system.manager.invest(OWNER, ALICE, 100) == Decimal("50")
        warp(system, 1)
        assert system.manager.initiate_withdrawal(OWNER, ALICE, 50) == Decimal("100")

    def test_verbose_trace(self, capsys):
        system = deploy(OWNER, initial_time=START, verbose=True)
        system.manager.invest(OWNER, ALICE, 1000)
        out = capsys.readouterr().out
        assert "[INVEST] alice: 1000 -> 1000" in out


class TestInitiateWithdrawal:

    def test_refused_at_lock_boundary(self, invested):
        warp(invested, LOCK_SECONDS)
        with pytest.raises(StateError, match="lock period not over"):
            invested.manager.initiate_withdrawal(OWNER, ALICE, 100)
        assert invested.manager.vault_balance(ALICE) == Decimal("1000")

    def test_allowed_one_second_after(self, unlocked):
        fiat = unlocked.manager.initiate_withdrawal(OWNER, ALICE, 400)
        assert fiat == Decimal("400")
        assert unlocked.manager.vault_balance(ALICE) == Decimal("600")
        assert unlocked.token.balance_of(BURN_ADDRESS) == Decimal("400")
        assert unlocked.token.circulating_supply() == Decimal("600")

    def test_events(self, unlocked):
        unlocked.manager.initiate_withdrawal(OWNER, ALICE, 400)
        burned = unlocked.events.last(TOKENS_BURNED)
        withdrawn = unlocked.events.last(WITHDRAWAL_INITIATED)
        assert burned['amount'] == Decimal("400")
        assert withdrawn['investor'] == ALICE
        assert withdrawn['tokens'] == Decimal("400")
        assert withdrawn['fiat_amount'] == Decimal("400")
        assert [e.name for e in unlocked.events][-2:] == [TOKENS_BURNED, WITHDRAWAL_INITIATED]

    def test_no_investment(self, system):
        with pytest.raises(StateError, match="no investment found"):
            system.manager.initiate_withdrawal(OWNER, ALICE, 1)

    def test_empty_vault(self, unlocked):
        unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1000)
        with pytest.raises(StateError, match="no investment found"):
            unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1)
        assert unlocked.manager.get_investment_time(ALICE) == START

    def test_lock_checked_before_balance(self, invested):
        with pytest.raises(StateError, match="lock period not over"):
            invested.manager.initiate_withdrawal(OWNER, ALICE, 5000)

    def test_more_than_held(self, unlocked):
        with pytest.raises(InsufficientFunds):
            unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1001)
        assert unlocked.events.last(WITHDRAWAL_INITIATED) is None

    def test_owner_only(self, unlocked):
        with pytest.raises(AuthorizationError):
            unlocked.manager.initiate_withdrawal(ALICE, ALICE, 1)

    def test_paused(self, unlocked):
        unlocked.manager.pause(OWNER)
        with pytest.raises(StateError, match="paused"):
            unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1)

    @pytest.mark.parametrize("tokens", [0, -3])
    def test_rejects_bad_amount(self, unlocked, tokens):
        with pytest.raises(InvalidAmount):
            unlocked.manager.initiate_withdrawal(OWNER, ALICE, tokens)

    def test_rejects_amount_beyond_token_precision(self, unlocked):
        with pytest.raises(InvalidAmount, match="exceeds INV precision"):
            unlocked.manager.initiate_withdrawal(OWNER, ALICE, 10**40)
        assert unlocked.manager.vault_balance(ALICE) == Decimal("1000")

    def test_reinvest_restarts_lock(self, invested):
        warp(invested, days=20)
        invested.manager.invest(OWNER, ALICE, 500)
        warp(invested, days=10, seconds=1)
        with pytest.raises(StateError, match="lock period not over"):
            invested.manager.initiate_withdrawal(OWNER, ALICE, 100)
        warp(invested, days=20)
        invested.manager.initiate_withdrawal(OWNER, ALICE, 1500)
        assert invested.manager.vault_balance(ALICE) == Decimal("0")

    def test_zero_lock_period_still_exclusive(self):
        system = deploy(OWNER, initial_time=START, lock_period=0)
        system.manager.invest(OWNER, ALICE, 10)
        with pytest.raises(StateError, match="lock period not over"):
            system.manager.initiate_withdrawal(OWNER, ALICE, 10)
        warp(system, 1)
        system.manager.initiate_withdrawal(OWNER, ALICE, 10)


class TestQueries:

    def test_unlock_time(self, invested):
        assert invested.manager.unlock_time(ALICE) == START + LOCK
        assert invested.manager.unlock_time(BOB) is None

    def test_is_withdrawable(self, invested):
        assert not invested.manager.is_withdrawable(ALICE)
        warp(invested, LOCK_SECONDS)
        assert not invested.manager.is_withdrawable(ALICE)
        warp(invested, 1)
        assert invested.manager.is_withdrawable(ALICE)
        assert not invested.manager.is_withdrawable(BOB)

    def test_has_active_investment(self, unlocked):
        assert unlocked.manager.has_active_investment(ALICE)
        unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1000)
        assert not unlocked.manager.has_active_investment(ALICE)
        assert not unlocked.manager.has_active_investment(BOB)

    def test_vault_balance_unknown(self, system):
        assert system.manager.vault_balance(BOB) == Decimal("0")

    def test_get_account(self, invested):
        assert invested.manager.get_account(ALICE) is invested.factory.get_account(ALICE)


class TestCloseAccount:

    def test_close_empty_vault(self, unlocked):
        unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1000)
        unlocked.manager.close_account(OWNER, ALICE)
        assert unlocked.factory.get_account(ALICE) is None
        assert unlocked.manager.get_investment_time(ALICE) is None

    def test_close_with_tokens(self, invested):
        with pytest.raises(StateError, match="still holds"):
            invested.manager.close_account(OWNER, ALICE)
        assert invested.manager.get_investment_time(ALICE) == START

    def test_reopen_after_close(self, unlocked):
        unlocked.manager.initiate_withdrawal(OWNER, ALICE, 1000)
        unlocked.manager.close_account(OWNER, ALICE)
        unlocked.manager.invest(OWNER, ALICE, 200)
        assert unlocked.manager.vault_balance(ALICE) == Decimal("200")
        assert unlocked.manager.get_investment_time(ALICE) == unlocked.ledger.current_time

    def test_owner_only(self, invested):
        with pytest.raises(AuthorizationError):
            invested.manager.close_account(ALICE, ALICE)


class TestAdministration:

    def test_set_lock_period(self, system):
        system.manager.set_lock_period(OWNER, timedelta(days=7))
        assert system.manager.lock_period == timedelta(days=7)
        assert system.events.last(LOCK_PERIOD_CHANGED)['period'] == timedelta(days=7)

    def test_set_lock_period_seconds(self, system):
        system.manager.set_lock_period(OWNER, 3600)
        assert system.manager.lock_period == timedelta(hours=1)

    def test_set_lock_period_owner_only(self, system):
        with pytest.raises(AuthorizationError):
            system.manager.set_lock_period(MALLORY, 0)
        assert system.manager.lock_period == LOCK

    def test_negative_lock_period(self, system):
        with pytest.raises(InvalidAmount, match="negative"):
            system.manager.set_lock_period(OWNER, -1)

    def test_lock_change_applies_to_existing_investors(self, invested):
        warp(invested, days=8)
        invested.manager.set_lock_period(OWNER, timedelta(days=7))
        invested.manager.initiate_withdrawal(OWNER, ALICE, 100)
        assert invested.manager.vault_balance(ALICE) == Decimal("900")

    def test_pause_unpause(self, system):
        system.manager.pause(OWNER)
        assert system.manager.paused
        system.manager.unpause(OWNER)
        assert not system.manager.paused
        assert [e.name for e in system.events][-2:] == [PAUSED, UNPAUSED]

    def test_double_pause(self, system):
        system.manager.pause(OWNER)
        with pytest.raises(StateError, match="already paused"):
            system.manager.pause(OWNER)

    def test_unpause_when_running(self, system):
        with pytest.raises(StateError, match="not paused"):
            system.manager.unpause(OWNER)

    def test_pause_owner_only(self, system):
        with pytest.raises(AuthorizationError):
            system.manager.pause(MALLORY)

    def test_queries_work_while_paused(self, invested):
        invested.manager.pause(OWNER)
        assert invested.manager.vault_balance(ALICE) == Decimal("1000")
        assert invested.manager.unlock_time(ALICE) == START + LOCK


class TestReentrancy:

    @staticmethod
    def _deploy_reentrant(hook):
        holder = {}

        def to_tokens(amount):
            hook(holder['system'])
            return amount

        def to_fiat(tokens):
            hook(holder['system'])
            return tokens

        system = deploy(OWNER, initial_time=START, lock_period=0,
                        conversion=Conversion(to_tokens, to_fiat, "reentrant"))
        holder['system'] = system
        return system

    def test_invest_reentering_invest(self):
        system = self._deploy_reentrant(lambda s: s.manager.invest(OWNER, BOB, 1))
        events_before = len(system.events)
        with pytest.raises(ReentrancyError):
            system.manager.invest(OWNER, ALICE, 1000)
        assert system.factory.get_account(ALICE) is None
        assert system.factory.get_account(BOB) is None
        assert system.token.total_supply() == Decimal("0")
        assert len(system.events) == events_before

    def test_guard_released_after_failure(self):
        calls = []

        def hook(s):
            if not calls:
                calls.append(1)
                s.manager.invest(OWNER, BOB, 1)

        system = self._deploy_reentrant(hook)
        with pytest.raises(ReentrancyError):
            system.manager.invest(OWNER, ALICE, 1000)
        system.manager.invest(OWNER, ALICE, 1000)
        assert system.manager.vault_balance(ALICE) == Decimal("1000")

    def test_withdraw_reentering_withdraw(self):
        armed = []

        def hook(s):
            if armed:
                s.manager.initiate_withdrawal(OWNER, ALICE, 1)

        system = self._deploy_reentrant(hook)
        system.manager.invest(OWNER, ALICE, 10)
        warp(system, 1)
        armed.append(True)
        with pytest.raises(ReentrancyError):
            system.manager.initiate_withdrawal(OWNER, ALICE, 5)
        assert system.manager.vault_balance(ALICE) == Decimal("10")
        assert system.token.burned() == Decimal("0")

    def test_reentrancy_is_a_state_error(self):
        assert issubclass(ReentrancyError, StateError)


class TestManagerConfig:

    def test_defaults(self):
        config = ManagerConfig()
        assert config.lock_period == DEFAULT_LOCK_PERIOD == timedelta(days=30)
        assert config.conversion.name == "identity"

    def test_seconds_normalized(self):
        assert ManagerConfig(lock_period=60).lock_period == timedelta(seconds=60)

    @pytest.mark.parametrize("bad", [True, "30d", 1.5, timedelta(seconds=-1)])
    def test_rejects_bad_period(self, bad):
        with pytest.raises(InvalidAmount):
            to_lock_period(bad)
