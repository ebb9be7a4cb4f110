"""
stakepool Crank Scheduler

Periodic, budget-bounded settlement. Each engine epoch has one global pass
followed by one unit of work per linked validator, walked in registry order
from a persisted cursor:

    crank_global     roll windows, recognize deferred revenue, apply staged
                     parameters, reserve for redemptions, rebalance the pool,
                     compute stake targets, reset the cursor
    crank_validator  roll the validator forward, settle past withdrawals,
                     claim and forward rewards, move stake toward target,
                     reap if deactivated and settled

A call that runs out of budget saves the cursor and returns False; the next
call resumes at the saved validator, so a sequence of bounded calls ends in
the same state as one unbounded call.
"""

from typing import Optional

from .events import (
    BoundaryDelayEvent,
    EpochCompletedEvent,
    EpochStartedEvent,
    RewardsClaimedEvent,
    RewardsForwardedEvent,
    SettlementStalledEvent,
    StakeDelegatedEvent,
    StakeUndelegatedEvent,
    ValidatorRemovedEvent,
    WithdrawalSettledEvent,
)
from .exceptions import StakingServiceError
from .ledger.records import StalledWithdrawal
from .liquidity.pool import AtomicLiquidityPool
from .logger import get_logger
from .staking.service import StakingService

logger = get_logger(__name__)


class StepBudget:
    """Validator units a single crank call may process (None = unlimited)."""

    def __init__(self, max_steps: Optional[int] = None):
        if max_steps is not None and (isinstance(max_steps, bool) or max_steps < 0):
            raise ValueError("max_steps must be a non-negative int or None")
        self.max_steps = max_steps
        self.used = 0

    @property
    def remaining(self) -> Optional[int]:
        if self.max_steps is None:
            return None
        return self.max_steps - self.used

    @property
    def exhausted(self) -> bool:
        return self.max_steps is not None and self.used >= self.max_steps

    def consume(self, steps: int = 1) -> bool:
        """Take ``steps`` from the budget; False if not enough remains."""
        if self.max_steps is not None and self.used + steps > self.max_steps:
            return False
        self.used += steps
        return True


class CrankScheduler:
    """
    Drives the epoch crank over an engine state.

    ``state`` carries ``ledger``, ``registry`` and ``events``; the engine may
    swap it for a restored copy, so the scheduler never caches its parts.
    """

    def __init__(self, state, service: StakingService, address: str,
                 pool: Optional[AtomicLiquidityPool] = None):
        self.state = state
        self.service = service
        self.address = address
        self.pool = pool or AtomicLiquidityPool()

    @property
    def ledger(self):
        return self.state.ledger

    @property
    def registry(self):
        return self.state.registry

    def _emit(self, event) -> None:
        self.state.events.emit(event)

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def epoch_complete(self) -> bool:
        return self.ledger.global_epochs.current.completed

    def is_up_to_date(self) -> bool:
        return self.epoch_complete() and self.service.current_epoch() <= self.ledger.epoch

    def next_validator(self) -> Optional[int]:
        """Validator the next crank call starts with, if an epoch is open."""
        if self.epoch_complete():
            return None
        cursor = self.ledger.crank_cursor
        if cursor is None or cursor == self.registry.last_sentinel:
            return None
        return cursor

    def crank(self, max_steps: Optional[int] = None) -> bool:
        """
        Advance settlement within ``max_steps`` validator units.

        Returns:
            True once the engine has caught up with the staking service,
            False if the budget ran out first
        """
        budget = StepBudget(max_steps)
        while True:
            if self.is_up_to_date():
                return True
            if self.epoch_complete():
                self.crank_global()

            if not self._crank_validators(budget):
                logger.info(
                    f"Crank paused at epoch {self.ledger.epoch}, "
                    f"next validator {self.ledger.crank_cursor}"
                )
                return False
            self._complete_epoch()

    def _crank_validators(self, budget: StepBudget) -> bool:
        registry = self.registry
        cursor = self.ledger.crank_cursor
        while cursor != registry.last_sentinel:
            if not budget.consume():
                self.ledger.crank_cursor = cursor
                return False
            # Reaping unlinks the node, so read the successor first
            following = registry.next_after(cursor)
            self.crank_validator(cursor)
            cursor = following
        self.ledger.crank_cursor = cursor
        return True

    def _complete_epoch(self) -> None:
        ledger = self.ledger
        record = ledger.global_epochs.current
        record.completed = True
        self._emit(EpochCompletedEvent(
            epoch=ledger.epoch,
            validators_cranked=record.validators_cranked,
        ))
        logger.info(
            f"Epoch {ledger.epoch} complete: {record.validators_cranked} validators cranked"
        )

    # =========================================================================
    # GLOBAL PASS
    # =========================================================================

    def crank_global(self) -> None:
        ledger = self.ledger
        registry = self.registry

        epoch = ledger.roll_epoch()
        record = ledger.global_epochs.current

        recognized = ledger.recognize_deferred()
        if recognized:
            logger.debug(f"Recognized {recognized} deferred revenue at epoch {epoch}")

        for name, value in ledger.apply_pending_parameters().items():
            logger.info(f"Parameter {name} set to {value} at epoch {epoch}")

        reserved = ledger.reserve_for_redemptions()
        rebalance = self.pool.rebalance(ledger, self.pool.compute_target(ledger))
        reserved += ledger.reserve_for_redemptions()

        working = ledger.working
        deficit = ledger.redemption_gap + rebalance.shortfall
        stake_target_total = max(0, working.staked_amount + ledger.native_amount - deficit)
        unstake_demand = min(
            max(0, deficit - working.unstaking_amount),
            working.available_staked,
        )

        staking = [v for v in registry if not registry.is_deactivating(v)]
        per_validator_target = stake_target_total // len(staking) if staking else 0

        escrow = ledger.escrow.current
        escrow.pending_staking = ledger.native_amount
        escrow.pending_unstaking = unstake_demand

        record.target_liquidity = rebalance.target
        record.per_validator_target = per_validator_target
        record.active_validators = len(staking)
        record.reserved_for_redemptions = reserved
        record.unstake_demand = unstake_demand
        record.global_cranked = True
        ledger.crank_cursor = registry.first()

        self._emit(EpochStartedEvent(
            epoch=epoch,
            target_liquidity=rebalance.target,
            per_validator_target=per_validator_target,
            active_validators=len(staking),
            reserved_for_redemptions=reserved,
            unstake_demand=unstake_demand,
        ))
        logger.info(
            f"Epoch {epoch} started: target liquidity {rebalance.target}, "
            f"per-validator target {per_validator_target} over {len(staking)} validators, "
            f"unstake demand {unstake_demand}"
        )

    # =========================================================================
    # VALIDATOR PASS
    # =========================================================================

    def crank_validator(self, validator_id: int) -> None:
        ledger = self.ledger
        registry = self.registry
        epoch = ledger.epoch
        record = ledger.global_epochs.current
        validator = ledger.validator(validator_id)

        target = 0 if registry.is_deactivating(validator_id) else record.per_validator_target
        for stalled in validator.roll_forward(epoch, target):
            self._report_stalled(validator_id, stalled)

        self.settle_past_edges(validator_id)
        self._retry_stalled(validator_id)
        self._claim_rewards(validator_id)
        self._pay_rewards(validator_id, flush=registry.can_reap(validator_id, epoch))
        self._adjust_stake(validator_id, target)

        validator.mark_cranked()
        record.validators_cranked += 1
        logger.debug(
            f"Cranked validator {validator_id} at epoch {epoch}: "
            f"staked {validator.staked}, unstaking {validator.unstaking}, target {target}"
        )

        if registry.reap(validator_id, epoch, validator.is_settled()):
            operator = registry.get(validator_id).operator
            ledger.close_validator(validator_id)
            self._emit(ValidatorRemovedEvent(
                epoch=epoch, validator_id=validator_id, operator=operator,
            ))

    def settle_past_edges(self, validator_id: int) -> None:
        """
        Settle withdrawals issued two epochs ago, retry those delayed by a
        boundary one epoch later, and clear settled deposit state.
        """
        ledger = self.ledger
        epoch = ledger.epoch
        validator = ledger.validator(validator_id)

        edge = validator.epochs.prev(2)
        if edge.has_withdrawal:
            if self._settle(validator_id, edge.withdrawal_id, edge.withdrawal_amount, epoch - 2):
                edge.has_withdrawal = False
            else:
                edge.cranked_in_boundary = True
                ledger.global_epochs.current.cranked_in_boundary = True
                validator.stats.boundary_delays += 1
                self._emit(BoundaryDelayEvent(
                    epoch=epoch,
                    validator_id=validator_id,
                    withdrawal_id=edge.withdrawal_id,
                    amount=edge.withdrawal_amount,
                    request_epoch=epoch - 2,
                ))
                logger.warning(
                    f"BOUNDARY delay: validator {validator_id} withdrawal "
                    f"{edge.withdrawal_id} of {edge.withdrawal_amount} not ready at epoch {epoch}"
                )
        edge.has_deposit = False
        validator.escrow.prev(2).clear()

        late = validator.epochs.prev(3)
        if late.has_withdrawal:
            if not self._settle(validator_id, late.withdrawal_id, late.withdrawal_amount, epoch - 3):
                stalled = StalledWithdrawal(
                    withdrawal_id=late.withdrawal_id,
                    amount=late.withdrawal_amount,
                    request_epoch=epoch - 3,
                )
                validator.stalled_withdrawals.append(stalled)
                self._report_stalled(validator_id, stalled)
            late.has_withdrawal = False

    def _settle(self, validator_id: int, withdrawal_id: int, amount: int,
                request_epoch: int) -> bool:
        if not self.service.withdrawal_ready(validator_id, withdrawal_id):
            return False
        received = self.service.withdraw(validator_id, withdrawal_id, self.address)
        if received != amount:
            raise StakingServiceError(
                f"Withdrawal {withdrawal_id} paid {received}, expected {amount}"
            )
        self.ledger.settle_withdrawal(validator_id, amount)
        self._emit(WithdrawalSettledEvent(
            epoch=self.ledger.epoch,
            validator_id=validator_id,
            withdrawal_id=withdrawal_id,
            amount=amount,
            request_epoch=request_epoch,
        ))
        logger.debug(f"Settled withdrawal {withdrawal_id} of {amount} for validator {validator_id}")
        return True

    def _retry_stalled(self, validator_id: int) -> None:
        validator = self.ledger.validator(validator_id)
        still_stalled = []
        for stalled in validator.stalled_withdrawals:
            if not self._settle(validator_id, stalled.withdrawal_id, stalled.amount,
                                stalled.request_epoch):
                still_stalled.append(stalled)
        validator.stalled_withdrawals = still_stalled

    def _report_stalled(self, validator_id: int, stalled: StalledWithdrawal) -> None:
        self._emit(SettlementStalledEvent(
            epoch=self.ledger.epoch,
            validator_id=validator_id,
            withdrawal_id=stalled.withdrawal_id,
            amount=stalled.amount,
            request_epoch=stalled.request_epoch,
        ))
        logger.error(
            f"STALLED settlement: validator {validator_id} withdrawal "
            f"{stalled.withdrawal_id} of {stalled.amount} from epoch {stalled.request_epoch}"
        )

    def _claim_rewards(self, validator_id: int) -> None:
        amount = self.service.claim_rewards(validator_id, self.address)
        if amount == 0:
            return
        self.ledger.record_claimed_rewards(validator_id, amount)
        self._emit(RewardsClaimedEvent(
            epoch=self.ledger.epoch, validator_id=validator_id, amount=amount,
        ))

    def _pay_rewards(self, validator_id: int, flush: bool) -> None:
        ledger = self.ledger
        validator = ledger.validator(validator_id)
        validator.collect_rewards()
        if validator.unpaid_rewards == 0:
            return
        if validator.unpaid_rewards < ledger.parameters.min_validator_payout and not flush:
            return

        amount = ledger.forward_rewards(validator_id)
        self.service.send_rewards(validator_id, amount, self.address)
        self._emit(RewardsForwardedEvent(
            epoch=ledger.epoch, validator_id=validator_id, amount=amount,
        ))
        logger.debug(f"Forwarded {amount} rewards to validator {validator_id}")

    def _adjust_stake(self, validator_id: int, target: int) -> None:
        ledger = self.ledger
        validator = ledger.validator(validator_id)
        escrow = ledger.escrow.current

        if target > validator.staked:
            amount = min(target - validator.staked, escrow.pending_staking, ledger.native_amount)
            if amount == 0:
                return
            self.service.delegate(validator_id, amount, self.address)
            ledger.delegate(validator_id, amount)
            escrow.pending_staking -= amount
            self._emit(StakeDelegatedEvent(
                epoch=ledger.epoch, validator_id=validator_id, amount=amount,
            ))
        elif target < validator.active_stake:
            amount = validator.active_stake - target
            withdrawal_id = self.service.undelegate(validator_id, amount, self.address)
            ledger.undelegate(validator_id, amount, withdrawal_id)
            escrow.pending_unstaking = max(0, escrow.pending_unstaking - amount)
            self._emit(StakeUndelegatedEvent(
                epoch=ledger.epoch,
                validator_id=validator_id,
                amount=amount,
                withdrawal_id=withdrawal_id,
            ))
