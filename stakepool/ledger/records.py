"""
stakepool Ledger Records

Plain records held by the ledger. Per-epoch records live inside an
``EpochWindow``; the capital records are single global instances.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from ..constants import (
    DEFAULT_BOOST_COMMISSION_RATE,
    DEFAULT_FEE_KINK,
    DEFAULT_MAX_FEE_RATE,
    DEFAULT_MID_FEE_RATE,
    DEFAULT_MIN_FEE_RATE,
    DEFAULT_MIN_VALIDATOR_PAYOUT,
    DEFAULT_TARGET_LIQUIDITY_PERCENT,
    SCALE,
)
from ..exceptions import ConfigurationError


# =============================================================================
# PER-EPOCH RECORDS
# =============================================================================

@dataclass
class ValidatorEpoch:
    """
    One validator's crank state for one epoch.

    Attributes:
        target_stake: Stake the crank aimed for in this epoch
        has_deposit: Stake delegated in this epoch awaiting activation
        has_withdrawal: Undelegation issued in this epoch awaiting settlement
        withdrawal_id: Staking-service id of that undelegation
        withdrawal_amount: Amount of that undelegation
        cranked_in_boundary: Settlement was deferred past the expected epoch
        was_cranked: The validator was processed in this epoch
    """
    target_stake: int = 0
    has_deposit: bool = False
    has_withdrawal: bool = False
    withdrawal_id: Optional[int] = None
    withdrawal_amount: int = 0
    cranked_in_boundary: bool = False
    was_cranked: bool = False


@dataclass
class StakingEscrow:
    """Pending stake movements; ``initialized`` marks a created record."""
    pending_staking: int = 0
    pending_unstaking: int = 0
    initialized: bool = True

    def clear(self) -> None:
        self.pending_staking = 0
        self.pending_unstaking = 0

    @property
    def is_empty(self) -> bool:
        return self.pending_staking == 0 and self.pending_unstaking == 0


@dataclass
class ValidatorRewards:
    """Validator payouts posted in an epoch, and revenue the engine kept."""
    rewards_payable: int = 0
    earned_revenue: int = 0


@dataclass
class CashFlows:
    """Global cash movements queued or executed in an epoch."""
    queue_to_stake: int = 0
    queue_for_unstake: int = 0
    instant_withdrawals: int = 0
    delegated: int = 0
    undelegated: int = 0
    settled: int = 0


@dataclass
class Revenue:
    """
    Recognized (``earned``) and not-yet-recognized (``deferred``) revenue.
    ``withdrawal_fees`` is the part of ``earned`` kept from instant
    withdrawals.
    """
    earned: int = 0
    deferred: int = 0
    withdrawal_fees: int = 0

    @property
    def reward_revenue(self) -> int:
        return self.earned - self.withdrawal_fees


@dataclass
class GlobalEpoch:
    """Global crank state for one epoch."""
    target_liquidity: int = 0
    per_validator_target: int = 0
    active_validators: int = 0
    validators_cranked: int = 0
    global_cranked: bool = False
    completed: bool = False
    cranked_in_boundary: bool = False
    reserved_for_redemptions: int = 0
    unstake_demand: int = 0


@dataclass
class StalledWithdrawal:
    """An undelegation that outlived the boundary grace period."""
    withdrawal_id: int
    amount: int
    request_epoch: int


# =============================================================================
# GLOBAL CAPITAL RECORDS
# =============================================================================

@dataclass
class WorkingCapital:
    """
    Attributes:
        staked_amount: Principal held at the staking service, in-flight
            undelegations included
        unstaking_amount: In-flight undelegations
        reserved_amount: Engine cash set aside for liabilities
    """
    staked_amount: int = 0
    unstaking_amount: int = 0
    reserved_amount: int = 0

    @property
    def available_staked(self) -> int:
        return self.staked_amount - self.unstaking_amount


@dataclass
class Liabilities:
    rewards_payable: int = 0
    redemptions_payable: int = 0

    @property
    def total(self) -> int:
        return self.rewards_payable + self.redemptions_payable


@dataclass
class AtomicCapital:
    """Instant-liquidity buffer; ``distributed <= allocated`` always."""
    allocated_amount: int = 0
    distributed_amount: int = 0

    @property
    def current(self) -> int:
        return self.allocated_amount - self.distributed_amount


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class PoolParameters:
    """Owner-tunable parameters. Rates are scaled by ``SCALE``."""
    target_liquidity_percent: int = DEFAULT_TARGET_LIQUIDITY_PERCENT
    min_fee_rate: int = DEFAULT_MIN_FEE_RATE
    mid_fee_rate: int = DEFAULT_MID_FEE_RATE
    max_fee_rate: int = DEFAULT_MAX_FEE_RATE
    fee_kink: int = DEFAULT_FEE_KINK
    min_validator_payout: int = DEFAULT_MIN_VALIDATOR_PAYOUT
    boost_commission_rate: int = DEFAULT_BOOST_COMMISSION_RATE

    def validate(self) -> 'PoolParameters':
        """
        Raises:
            ConfigurationError: If any parameter is out of range
        """
        if not 0 <= self.target_liquidity_percent <= SCALE:
            raise ConfigurationError("target_liquidity_percent must be within [0, SCALE]")
        if not 0 <= self.min_fee_rate <= self.mid_fee_rate <= self.max_fee_rate < SCALE:
            raise ConfigurationError("fee rates must satisfy 0 <= min <= mid <= max < SCALE")
        if not 0 < self.fee_kink < SCALE:
            raise ConfigurationError("fee_kink must be within (0, SCALE)")
        if self.min_validator_payout < 0:
            raise ConfigurationError("min_validator_payout must be non-negative")
        if not 0 <= self.boost_commission_rate <= SCALE:
            raise ConfigurationError("boost_commission_rate must be within [0, SCALE]")
        return self

    def updated(self, **changes) -> 'PoolParameters':
        return replace(self, **changes).validate()

    def to_dict(self) -> Dict[str, int]:
        return {
            'target_liquidity_percent': self.target_liquidity_percent,
            'min_fee_rate': self.min_fee_rate,
            'mid_fee_rate': self.mid_fee_rate,
            'max_fee_rate': self.max_fee_rate,
            'fee_kink': self.fee_kink,
            'min_validator_payout': self.min_validator_payout,
            'boost_commission_rate': self.boost_commission_rate,
        }
