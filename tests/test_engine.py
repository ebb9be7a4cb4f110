"""
stakepool Engine Tests

User flows, atomicity, reentrancy and owner-gated parameters. Strict
invariants are on by default, so every call below also runs the
conservation check.
"""

import pytest

from conftest import ALICE, BOB, OP1, OP2, OP3, OWNER, REWARDER, U
from stakepool.constants import DEFAULT_MIN_FEE_RATE, MAX_PROTOCOL_FEE_RATE, SCALE
from stakepool.engine import StakePool
from stakepool.events import (
    BoostYieldEvent,
    DepositEvent,
    EventLog,
    InstantWithdrawEvent,
    ParameterUpdatedEvent,
    UnstakeCompletedEvent,
    ValidatorRewardsEvent,
)
from stakepool.exceptions import (
    ConfigurationError,
    InsufficientLiquidityError,
    InvalidAmountError,
    InvalidValidatorError,
    ReentrantCallError,
    TooEarlyError,
    UnauthorizedError,
)
from stakepool.numeric import mul_div_up


# =============================================================================
# DEPOSITS
# =============================================================================

class TestDeposit:

    def test_first_deposit_mints_one_to_one(self, engine, bank):
        shares = engine.deposit(100 * U, ALICE, ALICE)
        assert shares == 100 * U
        assert engine.balance_of(ALICE) == 100 * U
        assert bank.balance_of(engine.address) == 100 * U
        assert engine.ledger.native_amount == 100 * U
        event = engine.events.of_type(DepositEvent)[-1]
        assert (event.receiver, event.assets, event.shares) == (ALICE, 100 * U, 100 * U)

    def test_deposit_for_another_receiver(self, engine, bank):
        engine.deposit(10 * U, BOB, ALICE)
        assert engine.balance_of(BOB) == 10 * U
        assert engine.balance_of(ALICE) == 0
        assert bank.balance_of(ALICE) == 9_990 * U

    def test_zero_deposit_rejected(self, engine):
        with pytest.raises(InvalidAmountError):
            engine.deposit(0, ALICE, ALICE)

    def test_unfunded_deposit_rolls_back(self, engine, bank):
        with pytest.raises(InsufficientLiquidityError):
            engine.deposit(20_000 * U, ALICE, ALICE)
        assert engine.shares.total_supply == 0
        assert engine.ledger.native_amount == 0
        assert len(engine.events) == 0

    def test_mint_charges_preview(self, staked_engine):
        assets = staked_engine.preview_mint(100 * U)
        assert staked_engine.mint(100 * U, BOB, BOB) == assets
        assert staked_engine.balance_of(BOB) == 100 * U

    def test_share_price_tracks_revenue(self, staked_engine, service, advance):
        staked_engine.send_validator_rewards(1, 100 * U, SCALE // 10, REWARDER)
        advance(staked_engine, service)
        assert staked_engine.convert_to_assets(100 * U) > 100 * U
        assert staked_engine.preview_deposit(100 * U) < 100 * U


# =============================================================================
# INSTANT WITHDRAWALS
# =============================================================================

class TestInstantWithdraw:

    def test_withdraw_pays_net_from_pool(self, staked_engine, bank):
        before = bank.balance_of(ALICE)
        shares = staked_engine.withdraw(10 * U, ALICE, ALICE, ALICE)

        assert bank.balance_of(ALICE) == before + 10 * U
        assert staked_engine.current_liquidity() == 90 * U
        gross = mul_div_up(10 * U, SCALE, SCALE - DEFAULT_MIN_FEE_RATE)
        assert shares >= gross
        assert staked_engine.balance_of(ALICE) == 1_000 * U - shares

        event = staked_engine.events.of_type(InstantWithdrawEvent)[-1]
        assert event.assets == 10 * U
        assert event.fee == gross - 10 * U

    def test_redeem_pays_net_of_fee(self, staked_engine, bank):
        before = bank.balance_of(ALICE)
        paid = staked_engine.redeem(10 * U, ALICE, ALICE, ALICE)
        fee = 10 * U * DEFAULT_MIN_FEE_RATE // SCALE
        assert paid == 10 * U - fee
        assert bank.balance_of(ALICE) == before + paid
        assert staked_engine.preview_redeem(10 * U) <= paid

    def test_withdraw_beyond_pool_fails(self, staked_engine):
        with pytest.raises(InsufficientLiquidityError):
            staked_engine.withdraw(101 * U, ALICE, ALICE, ALICE)
        assert staked_engine.current_liquidity() == 100 * U
        assert staked_engine.balance_of(ALICE) == 1_000 * U

    def test_withdraw_on_behalf_needs_allowance(self, staked_engine, bank):
        with pytest.raises(InsufficientLiquidityError, match="allowance"):
            staked_engine.withdraw(5 * U, BOB, ALICE, BOB)

        staked_engine.approve(BOB, 10 * U, ALICE)
        shares = staked_engine.withdraw(5 * U, BOB, ALICE, BOB)
        assert staked_engine.allowance(ALICE, BOB) == 10 * U - shares
        assert bank.balance_of(BOB) == 10_005 * U

    def test_fee_does_not_leave_the_engine(self, staked_engine):
        equity = staked_engine.total_equity()
        staked_engine.withdraw(50 * U, ALICE, ALICE, ALICE)
        assert staked_engine.total_equity() == equity - 50 * U
        fee = staked_engine.events.of_type(InstantWithdrawEvent)[-1].fee
        assert staked_engine.ledger.revenue.current.earned == fee
        assert staked_engine.ledger.total_fees_collected == fee

    def test_withdrawal_fees_stay_in_quotes(self, staked_engine):
        staked_engine.withdraw(50 * U, ALICE, ALICE, ALICE)
        assert staked_engine.total_equity(True) == staked_engine.total_equity()

        fee, commission, _ = staked_engine.send_validator_rewards(
            1, 10 * U, SCALE // 10, REWARDER
        )
        kept = fee + commission
        assert staked_engine.total_equity(True) == staked_engine.total_equity() - kept


# =============================================================================
# TRADITIONAL UNSTAKE
# =============================================================================

class TestUnstake:

    def test_full_lifecycle(self, staked_engine, service, advance, bank):
        completion = staked_engine.request_unstake(100 * U, ALICE)
        assert completion == 6
        assert staked_engine.balance_of(ALICE) == 900 * U
        assert staked_engine.unstake_request(ALICE).assets == 100 * U

        with pytest.raises(TooEarlyError) as excinfo:
            staked_engine.complete_unstake(ALICE)
        assert excinfo.value.available_epoch == 6

        advance(staked_engine, service, epochs=4)
        assert staked_engine.ledger.working.reserved_amount == 100 * U
        with pytest.raises(TooEarlyError):
            staked_engine.complete_unstake(ALICE)

        advance(staked_engine, service)
        before = bank.balance_of(ALICE)
        assert staked_engine.complete_unstake(ALICE) == 100 * U
        assert bank.balance_of(ALICE) == before + 100 * U
        assert staked_engine.unstake_request(ALICE) is None
        assert staked_engine.ledger.liabilities.redemptions_payable == 0
        assert staked_engine.events.of_type(UnstakeCompletedEvent)[-1].assets == 100 * U

    def test_repeat_requests_merge(self, staked_engine, service, advance):
        staked_engine.request_unstake(10 * U, ALICE)
        advance(staked_engine, service)
        completion = staked_engine.request_unstake(20 * U, ALICE)

        request = staked_engine.unstake_request(ALICE)
        assert request.shares == 30 * U
        assert request.request_epoch == 2
        assert request.completion_epoch == completion == 7

    def test_request_is_a_liability(self, staked_engine):
        equity = staked_engine.total_equity()
        staked_engine.request_unstake(100 * U, ALICE)
        assert staked_engine.total_equity() == equity - 100 * U
        assert staked_engine.ledger.total_liabilities() == 100 * U

    def test_no_request(self, staked_engine):
        with pytest.raises(InvalidAmountError):
            staked_engine.complete_unstake(BOB)

    def test_request_beyond_balance(self, staked_engine):
        with pytest.raises(InsufficientLiquidityError):
            staked_engine.request_unstake(1_001 * U, ALICE)
        assert staked_engine.unstake_request(ALICE) is None
        assert staked_engine.ledger.liabilities.redemptions_payable == 0


# =============================================================================
# ATOMICITY AND REENTRANCY
# =============================================================================

class TestReentrancy:

    def test_callback_into_engine_is_rejected(self, staked_engine, bank):
        def reenter(sender, amount):
            staked_engine.deposit(U, BOB, BOB)

        bank.set_receive_hook(BOB, reenter)
        snapshot = staked_engine.ledger.snapshot()
        events = len(staked_engine.events)
        bob_balance = bank.balance_of(BOB)

        with pytest.raises(ReentrantCallError):
            staked_engine.withdraw(10 * U, BOB, ALICE, ALICE)

        assert staked_engine.ledger.snapshot() == snapshot
        assert len(staked_engine.events) == events
        assert bank.balance_of(BOB) == bob_balance
        assert staked_engine.balance_of(ALICE) == 1_000 * U

        bank.set_receive_hook(BOB, None)
        staked_engine.withdraw(10 * U, BOB, ALICE, ALICE)
        assert bank.balance_of(BOB) == bob_balance + 10 * U

    def test_rollback_keeps_event_log(self, staked_engine, bank):
        log = staked_engine.events
        bank.set_receive_hook(BOB, lambda sender, amount: staked_engine.deposit(U, BOB, BOB))
        with pytest.raises(ReentrantCallError):
            staked_engine.withdraw(10 * U, BOB, ALICE, ALICE)
        assert staked_engine.events is log
        assert not log.of_type(InstantWithdrawEvent)

        bank.set_receive_hook(BOB, None)
        staked_engine.withdraw(10 * U, BOB, ALICE, ALICE)
        assert staked_engine.events is log
        assert len(log.of_type(InstantWithdrawEvent)) == 1

    def test_lock_released_after_failure(self, engine):
        with pytest.raises(InvalidAmountError):
            engine.deposit(0, ALICE, ALICE)
        engine.deposit(U, ALICE, ALICE)
        assert engine.balance_of(ALICE) == U

    def test_crank_rejected_while_engine_busy(self, staked_engine, bank):
        calls = []

        def reenter(sender, amount):
            with pytest.raises(ReentrantCallError):
                staked_engine.crank()
            calls.append(amount)

        bank.set_receive_hook(BOB, reenter)
        staked_engine.withdraw(10 * U, BOB, ALICE, ALICE)
        assert calls == [10 * U]


# =============================================================================
# VALIDATORS AND REWARDS
# =============================================================================

class TestValidatorsAndRewards:

    def test_add_requires_owner(self, engine):
        with pytest.raises(UnauthorizedError):
            engine.add_validator(1, OP1, ALICE)
        assert engine.registry.count == 0

    def test_add_and_stats(self, engine):
        engine.add_validator(1, OP1, OWNER)
        stats = engine.validator_stats(1)
        assert stats.active
        assert not stats.deactivating
        assert stats.staked == 0

    def test_stats_for_unknown_validator(self, engine):
        with pytest.raises(InvalidValidatorError):
            engine.validator_stats(5_000)

    def test_reward_split_event(self, staked_engine):
        fee, commission, payout = staked_engine.send_validator_rewards(
            1, 10 * U, SCALE // 10, REWARDER
        )
        assert (fee, commission, payout) == (U, 45 * U // 100, 855 * U // 100)
        event = staked_engine.events.of_type(ValidatorRewardsEvent)[-1]
        assert event.validator_payout == payout

    def test_rewards_for_sentinel_rejected(self, staked_engine, bank):
        before = bank.balance_of(REWARDER)
        for sentinel in (0, staked_engine.registry.last_sentinel):
            with pytest.raises(InvalidValidatorError):
                staked_engine.send_validator_rewards(sentinel, 10 * U, 0, REWARDER)
        assert bank.balance_of(REWARDER) == before

    def test_fee_rate_capped(self, staked_engine):
        with pytest.raises(InvalidAmountError):
            staked_engine.send_validator_rewards(1, U, MAX_PROTOCOL_FEE_RATE + 1, REWARDER)

    def test_deactivate_requires_owner(self, staked_engine):
        with pytest.raises(UnauthorizedError):
            staked_engine.deactivate_validator(1, ALICE)
        assert not staked_engine.validator_stats(1).deactivating

    def test_capacity_is_configurable(self, bank, service):
        engine = StakePool(bank, service, OWNER, capacity=2)
        engine.add_validator(1, OP1, OWNER)
        engine.add_validator(2, OP2, OWNER)
        with pytest.raises(InvalidValidatorError):
            engine.add_validator(3, OP3, OWNER)


# =============================================================================
# BOOST
# =============================================================================

class TestBoost:

    def test_boost_recognized_next_epoch(self, staked_engine, service, advance):
        equity = staked_engine.total_equity()
        staked_engine.boost_yield(10 * U, BOB)
        assert staked_engine.total_equity() == equity
        assert staked_engine.events.of_type(BoostYieldEvent)[-1].amount == 10 * U

        advance(staked_engine, service)
        assert staked_engine.total_equity() == equity + 10 * U
        assert staked_engine.total_equity(for_withdrawal=True) == equity

    def test_zero_boost_rejected(self, staked_engine):
        with pytest.raises(InvalidAmountError):
            staked_engine.boost_yield(0, BOB)


# =============================================================================
# PARAMETERS
# =============================================================================

class TestParameters:

    def test_admin_calls_require_owner(self, staked_engine):
        with pytest.raises(UnauthorizedError):
            staked_engine.set_target_liquidity_percent(SCALE // 5, ALICE)
        with pytest.raises(UnauthorizedError):
            staked_engine.set_fee_curve(0, 0, 0, SCALE // 2, ALICE)
        with pytest.raises(UnauthorizedError):
            staked_engine.set_min_validator_payout(0, ALICE)
        with pytest.raises(UnauthorizedError):
            staked_engine.set_boost_commission(0, ALICE)
        with pytest.raises(UnauthorizedError):
            staked_engine.transfer_ownership(ALICE, ALICE)
        assert staked_engine.ledger.pending_parameters is None

    def test_target_change_applies_next_epoch(self, staked_engine, service, advance):
        staked_engine.set_target_liquidity_percent(SCALE // 5, OWNER)
        event = staked_engine.events.of_type(ParameterUpdatedEvent)[-1]
        assert event.parameter == 'target_liquidity_percent'
        assert event.effective_epoch == 2
        assert staked_engine.target_liquidity() == 100 * U

        advance(staked_engine, service)
        assert staked_engine.ledger.parameters.target_liquidity_percent == SCALE // 5
        assert staked_engine.target_liquidity() == 200 * U

    def test_invalid_fee_curve_rejected(self, staked_engine):
        with pytest.raises(ConfigurationError):
            staked_engine.set_fee_curve(SCALE // 10, SCALE // 100, SCALE // 5, SCALE // 2, OWNER)
        assert staked_engine.ledger.pending_parameters is None
        assert not staked_engine.events.of_type(ParameterUpdatedEvent)

    def test_ownership_transfer(self, staked_engine):
        staked_engine.transfer_ownership(BOB, OWNER)
        assert staked_engine.owner == BOB
        with pytest.raises(UnauthorizedError):
            staked_engine.set_min_validator_payout(0, OWNER)
        staked_engine.set_min_validator_payout(0, BOB)


# =============================================================================
# VIEWS
# =============================================================================

class TestViews:

    def test_cash_flows_by_offset(self, staked_engine):
        staked_engine.deposit(5 * U, BOB, BOB)
        assert staked_engine.global_cash_flows().queue_to_stake == 5 * U
        assert staked_engine.global_cash_flows(1).queue_to_stake == 1_000 * U
        assert staked_engine.global_cash_flows(1).delegated == 0
        assert staked_engine.global_cash_flows().delegated == 900 * U

    def test_working_capital_is_a_copy(self, staked_engine):
        working = staked_engine.working_capital()
        working.staked_amount = 0
        assert staked_engine.ledger.working.staked_amount == 900 * U

    def test_current_fee_rate(self, staked_engine):
        assert staked_engine.current_fee_rate() == DEFAULT_MIN_FEE_RATE


# =============================================================================
# EVENT LOG
# =============================================================================

class TestEventLog:

    def test_rollback_drops_later_events(self):
        log = EventLog()
        log.emit(DepositEvent(0, ALICE, ALICE, U, U))
        mark = log.checkpoint()
        log.emit(DepositEvent(0, BOB, BOB, U, U))
        log.emit(DepositEvent(0, BOB, BOB, U, U))
        log.rollback(mark)
        assert [e.caller for e in log] == [ALICE]
        assert log.checkpoint() == mark

    def test_rollback_with_trimmed_history(self):
        log = EventLog(max_events=2)
        for _ in range(3):
            log.emit(DepositEvent(0, ALICE, ALICE, U, U))
        mark = log.checkpoint()
        log.emit(DepositEvent(0, BOB, BOB, U, U))
        log.emit(DepositEvent(0, BOB, BOB, U, U))
        assert len(log) == 2
        log.rollback(mark)
        assert len(log) == 0
        assert log.checkpoint() == 3

    def test_engine_bounds_history(self, bank, service):
        engine = StakePool(bank, service, OWNER, max_events=2)
        for _ in range(4):
            engine.deposit(U, ALICE, ALICE)
        assert len(engine.events) == 2
