"""
Per-validator ledger.

Each linked validator owns three epoch windows (crank state, escrow and
rewards) plus its stake position at the staking service. ``staked`` counts
every unit the engine has delegated to the validator and not yet withdrawn,
so it includes ``unstaking``.
"""

from dataclasses import dataclass
from typing import List

from ..constants import MAX_LOOKBACK
from ..exceptions import InvariantViolation
from .records import StakingEscrow, StalledWithdrawal, ValidatorEpoch, ValidatorRewards
from .window import EpochWindow


@dataclass
class ValidatorLifetimeStats:
    rewards_posted: int = 0
    rewards_forwarded: int = 0
    rewards_claimed: int = 0
    total_delegated: int = 0
    total_undelegated: int = 0
    boundary_delays: int = 0


def _carry_target(previous: ValidatorEpoch, current: ValidatorEpoch) -> None:
    current.target_stake = previous.target_stake


class ValidatorLedger:
    """Windows and capital for one validator."""

    def __init__(self, validator_id: int, epoch: int = 0):
        self.validator_id = validator_id
        self.epochs: EpochWindow[ValidatorEpoch] = EpochWindow(ValidatorEpoch, epoch)
        self.escrow: EpochWindow[StakingEscrow] = EpochWindow(StakingEscrow, epoch)
        self.rewards: EpochWindow[ValidatorRewards] = EpochWindow(ValidatorRewards, epoch)

        self.staked = 0
        self.unstaking = 0
        self.unpaid_rewards = 0
        self.stalled_withdrawals: List[StalledWithdrawal] = []
        self.last_cranked_epoch = None
        self.stats = ValidatorLifetimeStats()

    @property
    def epoch(self) -> int:
        return self.epochs.epoch

    @property
    def active_stake(self) -> int:
        return self.staked - self.unstaking

    # =========================================================================
    # WINDOW MOVEMENT
    # =========================================================================

    def sync(self, epoch: int) -> List[StalledWithdrawal]:
        """
        Roll every window until ``current`` is ``epoch``.

        Rewards in an evicted slot join the unpaid queue; a withdrawal in an
        evicted slot joins the stalled list. Returns the withdrawals stalled
        this way.
        """
        swept = []
        while self.epochs.epoch < epoch:
            evicted_epoch = self.epochs.epoch - MAX_LOOKBACK
            evicted = self.epochs.roll(_carry_target)
            if evicted.has_withdrawal:
                stalled = StalledWithdrawal(
                    withdrawal_id=evicted.withdrawal_id,
                    amount=evicted.withdrawal_amount,
                    request_epoch=evicted_epoch,
                )
                self.stalled_withdrawals.append(stalled)
                swept.append(stalled)
            self.escrow.roll()
            evicted_rewards = self.rewards.roll()
            self.unpaid_rewards += evicted_rewards.rewards_payable
        return swept

    def roll_forward(self, epoch: int, new_target: int) -> List[StalledWithdrawal]:
        """Advance to ``epoch`` and record the target stake for it."""
        swept = self.sync(epoch)
        self.epochs.current.target_stake = new_target
        return swept

    # =========================================================================
    # POSITION CHANGES
    # =========================================================================

    def post_rewards(self, payout: int, earned: int) -> None:
        slot = self.rewards.current
        slot.rewards_payable += payout
        slot.earned_revenue += earned
        self.stats.rewards_posted += payout

    def collect_rewards(self) -> int:
        """Move rewards from ``prev(3..1)`` into the unpaid queue."""
        moved = 0
        for lookback in range(MAX_LOOKBACK, 0, -1):
            slot = self.rewards.prev(lookback)
            moved += slot.rewards_payable
            slot.rewards_payable = 0
        self.unpaid_rewards += moved
        return moved

    def take_unpaid(self) -> int:
        amount = self.unpaid_rewards
        self.unpaid_rewards = 0
        self.stats.rewards_forwarded += amount
        return amount

    def record_delegation(self, amount: int) -> None:
        self.staked += amount
        self.epochs.current.has_deposit = True
        self.escrow.current.pending_staking += amount
        self.stats.total_delegated += amount

    def record_undelegation(self, amount: int, withdrawal_id: int) -> None:
        if amount > self.active_stake:
            raise InvariantViolation(
                f"Validator {self.validator_id}: undelegating {amount} "
                f"with {self.active_stake} active"
            )
        slot = self.epochs.current
        if slot.has_withdrawal:
            raise InvariantViolation(
                f"Validator {self.validator_id}: second withdrawal in epoch {self.epoch}"
            )
        self.unstaking += amount
        slot.has_withdrawal = True
        slot.withdrawal_id = withdrawal_id
        slot.withdrawal_amount = amount
        self.escrow.current.pending_unstaking += amount
        self.stats.total_undelegated += amount

    def record_settlement(self, amount: int) -> None:
        if amount > self.unstaking:
            raise InvariantViolation(
                f"Validator {self.validator_id}: settling {amount} "
                f"with {self.unstaking} unstaking"
            )
        self.unstaking -= amount
        self.staked -= amount

    def mark_cranked(self) -> None:
        self.epochs.current.was_cranked = True
        self.last_cranked_epoch = self.epoch

    # =========================================================================
    # QUERIES
    # =========================================================================

    def window_rewards(self) -> int:
        return sum(slot.rewards_payable for _, slot in self.rewards.items())

    def pending_withdrawals(self) -> int:
        return sum(1 for _, slot in self.epochs.items() if slot.has_withdrawal)

    def owed_rewards(self) -> int:
        """Validator payouts held by the engine: queued plus still windowed."""
        return self.unpaid_rewards + self.window_rewards()

    def is_settled(self) -> bool:
        """Nothing left at the staking service or owed to the validator."""
        return (
            self.staked == 0
            and self.unstaking == 0
            and not self.stalled_withdrawals
            and self.unpaid_rewards == 0
            and self.window_rewards() == 0
            and self.pending_withdrawals() == 0
            and all(slot.is_empty for _, slot in self.escrow.items())
        )
