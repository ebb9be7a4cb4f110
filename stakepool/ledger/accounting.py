"""
stakepool Capital & Liabilities Accounting

``GlobalLedger`` is the single aggregate every mutating operation goes
through. Engine cash is split into three buckets:

    reserved   cash backing validator payouts and redemptions
    atomic     the instant-liquidity pool (allocated - distributed)
    native     free cash, staked or pooled at the next crank

and ``working.staked_amount`` is the principal held at the staking service.
Bank transfers and staking-service calls are made by the caller; the ledger
only moves amounts between buckets and checks that the buckets still match
the physical balances.
"""

from typing import Dict, Optional, Tuple

from ..constants import MAX_LOOKBACK, SCALE
from ..exceptions import InvalidAmountError, InvariantViolation
from ..logger import get_logger
from ..numeric import apply_rate, require_amount
from .records import (
    AtomicCapital,
    CashFlows,
    GlobalEpoch,
    Liabilities,
    PoolParameters,
    Revenue,
    StakingEscrow,
    WorkingCapital,
)
from .validator_ledger import ValidatorLedger
from .window import EpochWindow

logger = get_logger(__name__)


class GlobalLedger:
    """Global capital, liabilities, revenue and per-epoch records."""

    def __init__(self, parameters: Optional[PoolParameters] = None, epoch: int = 0):
        self.epoch = epoch
        self.parameters = (parameters or PoolParameters()).validate()
        self.pending_parameters: Optional[PoolParameters] = None

        self.working = WorkingCapital()
        self.liabilities = Liabilities()
        self.atomic = AtomicCapital()
        self.native_amount = 0

        self.global_epochs: EpochWindow[GlobalEpoch] = EpochWindow(GlobalEpoch, epoch)
        self.escrow: EpochWindow[StakingEscrow] = EpochWindow(StakingEscrow, epoch)
        self.cash_flows: EpochWindow[CashFlows] = EpochWindow(CashFlows, epoch)
        self.revenue: EpochWindow[Revenue] = EpochWindow(Revenue, epoch)

        # The genesis epoch has nothing to crank
        self.global_epochs.current.global_cranked = True
        self.global_epochs.current.completed = True

        self.validators: Dict[int, ValidatorLedger] = {}
        self.crank_cursor: Optional[int] = None

        self.total_revenue_recognized = 0
        self.total_fees_collected = 0

    # =========================================================================
    # TOTALS
    # =========================================================================

    def deferred_revenue(self) -> int:
        return sum(slot.deferred for _, slot in self.revenue.items())

    def total_assets(self) -> int:
        return (
            self.working.staked_amount
            + self.working.reserved_amount
            + self.atomic.current
            + self.native_amount
        )

    def total_liabilities(self) -> int:
        return self.liabilities.total + self.deferred_revenue()

    def total_equity(self, for_withdrawal: bool = False) -> int:
        """
        Assets minus liabilities. With ``for_withdrawal`` the reward and boost
        revenue recognized in the current epoch is left out of the quote;
        instant-withdrawal fees already sit in the pool and stay in.
        """
        equity = self.total_assets() - self.total_liabilities()
        if for_withdrawal:
            equity -= self.revenue.current.reward_revenue
        return max(equity, 0)

    @property
    def free_reserve(self) -> int:
        """Reserved cash not backing validator payouts."""
        return self.working.reserved_amount - self.liabilities.rewards_payable

    @property
    def redemption_gap(self) -> int:
        return max(0, self.liabilities.redemptions_payable - self.free_reserve)

    # =========================================================================
    # VALIDATORS
    # =========================================================================

    def open_validator(self, validator_id: int) -> ValidatorLedger:
        if validator_id in self.validators:
            raise InvariantViolation(f"Validator {validator_id} already has a ledger")
        ledger = ValidatorLedger(validator_id, self.epoch)
        self.validators[validator_id] = ledger
        return ledger

    def close_validator(self, validator_id: int) -> None:
        ledger = self.validator(validator_id)
        if not ledger.is_settled():
            raise InvariantViolation(f"Validator {validator_id} closed while unsettled")
        del self.validators[validator_id]

    def validator(self, validator_id: int) -> ValidatorLedger:
        try:
            return self.validators[validator_id]
        except KeyError:
            raise InvariantViolation(f"No ledger for validator {validator_id}") from None

    # =========================================================================
    # USER FLOWS
    # =========================================================================

    def record_deposit(self, assets: int) -> None:
        require_amount(assets, "assets")
        self.native_amount += assets
        self.cash_flows.current.queue_to_stake += assets

    def record_redemption(self, assets: int) -> None:
        require_amount(assets, "assets")
        self.liabilities.redemptions_payable += assets
        self.cash_flows.current.queue_for_unstake += assets

    def settle_redemption(self, assets: int) -> None:
        """Pay out a completed unstake from reserved cash."""
        require_amount(assets, "assets")
        if assets > self.liabilities.redemptions_payable:
            raise InvariantViolation("Settling more than redemptions payable")
        if assets > self.free_reserve:
            raise InvariantViolation("Settling redemption beyond free reserve")
        self.working.reserved_amount -= assets
        self.liabilities.redemptions_payable -= assets

    def record_instant_withdrawal(self, net: int, fee: int) -> None:
        require_amount(net, "net")
        require_amount(fee, "fee")
        if net > self.atomic.current:
            raise InvariantViolation("Instant withdrawal beyond pool liquidity")
        self.atomic.distributed_amount += net
        self.cash_flows.current.instant_withdrawals += net
        self._recognize(fee)
        self.revenue.current.withdrawal_fees += fee
        self.total_fees_collected += fee

    # =========================================================================
    # REWARDS AND REVENUE
    # =========================================================================

    def record_validator_rewards(
        self, validator_id: int, amount: int, fee_rate: int, commission_rate: int
    ) -> Tuple[int, int, int]:
        """
        Split an incoming validator reward.

        Returns:
            (protocol_fee, commission, validator_payout)
        """
        require_amount(amount)
        if not 0 <= fee_rate <= SCALE or not 0 <= commission_rate <= SCALE:
            raise InvalidAmountError("rates must be within [0, SCALE]")

        protocol_fee = apply_rate(amount, fee_rate)
        commission = apply_rate(amount - protocol_fee, commission_rate)
        payout = amount - protocol_fee - commission

        ledger = self.validator(validator_id)
        ledger.sync(self.epoch)
        ledger.post_rewards(payout, protocol_fee + commission)

        self.native_amount += protocol_fee + commission
        self._recognize(protocol_fee + commission)
        self.working.reserved_amount += payout
        self.liabilities.rewards_payable += payout
        return protocol_fee, commission, payout

    def record_boost(self, amount: int) -> None:
        require_amount(amount)
        self.native_amount += amount
        self.revenue.current.deferred += amount

    def record_claimed_rewards(self, validator_id: int, amount: int) -> None:
        self.native_amount += amount
        self._recognize(amount)
        self.validator(validator_id).stats.rewards_claimed += amount

    def recognize_deferred(self) -> int:
        """Recognize every deferred amount from earlier epochs."""
        recognized = 0
        for lookback in range(MAX_LOOKBACK, 0, -1):
            slot = self.revenue.prev(lookback)
            recognized += slot.deferred
            slot.deferred = 0
        self._recognize(recognized)
        return recognized

    def forward_rewards(self, validator_id: int) -> int:
        """Release a validator's whole unpaid queue; the caller sends the cash."""
        amount = self.validator(validator_id).take_unpaid()
        self.working.reserved_amount -= amount
        self.liabilities.rewards_payable -= amount
        return amount

    def _recognize(self, amount: int) -> None:
        self.revenue.current.earned += amount
        self.total_revenue_recognized += amount

    # =========================================================================
    # CRANK TRANSITIONS
    # =========================================================================

    def roll_epoch(self) -> int:
        """Advance the global windows one epoch; returns the new epoch."""
        self.global_epochs.roll()
        self.escrow.roll()
        self.cash_flows.roll()
        self.revenue.roll()
        self.epoch += 1
        return self.epoch

    def reserve_for_redemptions(self) -> int:
        """Move free cash into reserve to cover redemptions payable."""
        amount = min(self.redemption_gap, self.native_amount)
        self.native_amount -= amount
        self.working.reserved_amount += amount
        return amount

    def delegate(self, validator_id: int, amount: int) -> None:
        require_amount(amount)
        if amount > self.native_amount:
            raise InvariantViolation(f"Delegating {amount} with {self.native_amount} free")
        self.validator(validator_id).record_delegation(amount)
        self.native_amount -= amount
        self.working.staked_amount += amount
        self.cash_flows.current.delegated += amount

    def undelegate(self, validator_id: int, amount: int, withdrawal_id: int) -> None:
        require_amount(amount)
        self.validator(validator_id).record_undelegation(amount, withdrawal_id)
        self.working.unstaking_amount += amount
        self.cash_flows.current.undelegated += amount

    def settle_withdrawal(self, validator_id: int, amount: int) -> None:
        """Withdrawn principal is back in engine cash."""
        self.validator(validator_id).record_settlement(amount)
        self.working.unstaking_amount -= amount
        self.working.staked_amount -= amount
        self.native_amount += amount
        self.cash_flows.current.settled += amount

    # =========================================================================
    # PARAMETERS
    # =========================================================================

    def stage_parameters(self, **changes) -> PoolParameters:
        """Queue parameter changes for the next crank."""
        base = self.pending_parameters or self.parameters
        self.pending_parameters = base.updated(**changes)
        return self.pending_parameters

    def apply_pending_parameters(self) -> Dict[str, int]:
        """Apply staged parameters; returns the fields that changed."""
        if self.pending_parameters is None:
            return {}
        old = self.parameters.to_dict()
        self.parameters = self.pending_parameters
        self.pending_parameters = None
        return {
            key: value
            for key, value in self.parameters.to_dict().items()
            if old[key] != value
        }

    # =========================================================================
    # CONSERVATION
    # =========================================================================

    def check_conservation(self, cash_balance: int, service_principal: int) -> None:
        """
        Verify the buckets against the engine's bank balance and its
        principal at the staking service.

        Raises:
            InvariantViolation: On any mismatch
        """
        buckets = {
            'staked_amount': self.working.staked_amount,
            'unstaking_amount': self.working.unstaking_amount,
            'reserved_amount': self.working.reserved_amount,
            'allocated_amount': self.atomic.allocated_amount,
            'distributed_amount': self.atomic.distributed_amount,
            'native_amount': self.native_amount,
            'rewards_payable': self.liabilities.rewards_payable,
            'redemptions_payable': self.liabilities.redemptions_payable,
        }
        for name, value in buckets.items():
            if value < 0:
                self._fail(f"{name} is negative: {value}")

        if self.atomic.distributed_amount > self.atomic.allocated_amount:
            self._fail("distributed exceeds allocated")
        if self.working.unstaking_amount > self.working.staked_amount:
            self._fail("unstaking exceeds staked")

        cash = self.working.reserved_amount + self.atomic.current + self.native_amount
        if cash != cash_balance:
            self._fail(f"cash buckets {cash} != bank balance {cash_balance}")
        if self.working.staked_amount != service_principal:
            self._fail(
                f"staked {self.working.staked_amount} != service principal {service_principal}"
            )
        if self.working.reserved_amount < self.liabilities.rewards_payable:
            self._fail("reserved below rewards payable")

        staked = sum(v.staked for v in self.validators.values())
        unstaking = sum(v.unstaking for v in self.validators.values())
        owed = sum(v.owed_rewards() for v in self.validators.values())
        if staked != self.working.staked_amount:
            self._fail(f"validator stake {staked} != staked {self.working.staked_amount}")
        if unstaking != self.working.unstaking_amount:
            self._fail(
                f"validator unstaking {unstaking} != unstaking {self.working.unstaking_amount}"
            )
        if owed != self.liabilities.rewards_payable:
            self._fail(
                f"validator payouts {owed} != rewards payable {self.liabilities.rewards_payable}"
            )

        if self.total_assets() < self.total_liabilities():
            self._fail("liabilities exceed assets")

    def _fail(self, message: str) -> None:
        logger.error(f"Conservation check failed at epoch {self.epoch}: {message}")
        raise InvariantViolation(message)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def snapshot(self) -> Dict[str, int]:
        """Flat view of the global buckets."""
        return {
            'epoch': self.epoch,
            'staked_amount': self.working.staked_amount,
            'unstaking_amount': self.working.unstaking_amount,
            'reserved_amount': self.working.reserved_amount,
            'atomic_allocated': self.atomic.allocated_amount,
            'atomic_distributed': self.atomic.distributed_amount,
            'native_amount': self.native_amount,
            'rewards_payable': self.liabilities.rewards_payable,
            'redemptions_payable': self.liabilities.redemptions_payable,
            'deferred_revenue': self.deferred_revenue(),
            'total_assets': self.total_assets(),
            'total_equity': self.total_equity(),
        }
