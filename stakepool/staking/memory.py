"""
In-memory staking service.

A self-contained implementation of ``StakingService`` over ``NativeBank``
used by the tests and the simulator. Delegations activate after
``activation_delay`` epochs and withdrawals become ready after
``withdrawal_delay`` epochs; while ``in_boundary`` is set, every new request
takes one extra epoch. Rewards are credited to a validator's delegators pro
rata to their bonded stake.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from ..bank import NativeBank
from ..constants import WITHDRAWAL_SETTLE_OFFSET
from ..exceptions import StakingServiceError
from ..logger import get_logger
from ..numeric import mul_div, require_amount
from .service import StakingService

logger = get_logger(__name__)


class WithdrawalStatus(Enum):
    """Status of an unbonding withdrawal."""
    PENDING = "pending"
    READY = "ready"
    COMPLETED = "completed"


@dataclass
class Delegation:
    active: int = 0
    pending: Dict[int, int] = field(default_factory=dict)  # activation epoch -> amount
    rewards: int = 0

    @property
    def bonded(self) -> int:
        return self.active + sum(self.pending.values())


@dataclass
class ServiceValidator:
    validator_id: int
    delegations: Dict[str, Delegation] = field(default_factory=dict)
    undistributed_rewards: int = 0
    total_rewards: int = 0

    def delegation(self, delegator: str) -> Delegation:
        if delegator not in self.delegations:
            self.delegations[delegator] = Delegation()
        return self.delegations[delegator]

    @property
    def bonded(self) -> int:
        return sum(d.bonded for d in self.delegations.values())


@dataclass
class Withdrawal:
    withdrawal_id: int
    validator_id: int
    delegator: str
    amount: int
    request_epoch: int
    ready_epoch: int
    status: WithdrawalStatus = WithdrawalStatus.PENDING


class InMemoryStakingService(StakingService):
    """Staking service held entirely in memory."""

    def __init__(
        self,
        bank: NativeBank,
        address: str = "staking-service",
        activation_delay: int = 1,
        withdrawal_delay: int = WITHDRAWAL_SETTLE_OFFSET,
        epoch: int = 0,
    ):
        if activation_delay < 0 or withdrawal_delay < 0:
            raise ValueError("delays must be non-negative")
        self.bank = bank
        self.address = address
        self.activation_delay = activation_delay
        self.withdrawal_delay = withdrawal_delay
        self.in_boundary = False
        self._epoch = epoch
        self._validators: Dict[int, ServiceValidator] = {}
        self._withdrawals: Dict[int, Withdrawal] = {}
        self._next_withdrawal_id = 1

    # =========================================================================
    # EPOCHS
    # =========================================================================

    def current_epoch(self) -> int:
        return self._epoch

    def advance_epoch(self, count: int = 1) -> int:
        """Move ``count`` epochs forward, activating pending stake."""
        for _ in range(count):
            self._epoch += 1
            for validator in self._validators.values():
                for delegation in validator.delegations.values():
                    due = [e for e in delegation.pending if e <= self._epoch]
                    for activation_epoch in due:
                        delegation.active += delegation.pending.pop(activation_epoch)
        return self._epoch

    def set_boundary(self, in_boundary: bool) -> None:
        self.in_boundary = in_boundary

    def _delay(self, base: int) -> int:
        return base + (1 if self.in_boundary else 0)

    # =========================================================================
    # STAKE
    # =========================================================================

    def validator(self, validator_id: int) -> ServiceValidator:
        if validator_id not in self._validators:
            self._validators[validator_id] = ServiceValidator(validator_id)
        return self._validators[validator_id]

    def delegate(self, validator_id: int, amount: int, delegator: str) -> None:
        require_amount(amount)
        if amount == 0:
            raise StakingServiceError("Cannot delegate zero")
        self.bank.transfer(delegator, self.address, amount)
        delegation = self.validator(validator_id).delegation(delegator)
        activation_epoch = self._epoch + self._delay(self.activation_delay)
        delegation.pending[activation_epoch] = delegation.pending.get(activation_epoch, 0) + amount
        logger.debug(
            f"Delegated {amount} to validator {validator_id} for {delegator}, "
            f"active at epoch {activation_epoch}"
        )

    def undelegate(self, validator_id: int, amount: int, delegator: str) -> int:
        require_amount(amount)
        if amount == 0:
            raise StakingServiceError("Cannot undelegate zero")
        delegation = self.validator(validator_id).delegation(delegator)
        if amount > delegation.bonded:
            raise StakingServiceError(
                f"Undelegating {amount} from validator {validator_id} "
                f"with {delegation.bonded} bonded"
            )

        remaining = amount
        from_active = min(remaining, delegation.active)
        delegation.active -= from_active
        remaining -= from_active
        for activation_epoch in sorted(delegation.pending, reverse=True):
            if remaining == 0:
                break
            taken = min(remaining, delegation.pending[activation_epoch])
            delegation.pending[activation_epoch] -= taken
            if delegation.pending[activation_epoch] == 0:
                del delegation.pending[activation_epoch]
            remaining -= taken

        withdrawal_id = self._next_withdrawal_id
        self._next_withdrawal_id += 1
        self._withdrawals[withdrawal_id] = Withdrawal(
            withdrawal_id=withdrawal_id,
            validator_id=validator_id,
            delegator=delegator,
            amount=amount,
            request_epoch=self._epoch,
            ready_epoch=self._epoch + self._delay(self.withdrawal_delay),
        )
        return withdrawal_id

    def _withdrawal(self, validator_id: int, withdrawal_id: int) -> Withdrawal:
        withdrawal = self._withdrawals.get(withdrawal_id)
        if withdrawal is None or withdrawal.validator_id != validator_id:
            raise StakingServiceError(
                f"Unknown withdrawal {withdrawal_id} for validator {validator_id}"
            )
        return withdrawal

    def withdrawal_status(self, validator_id: int, withdrawal_id: int) -> WithdrawalStatus:
        withdrawal = self._withdrawal(validator_id, withdrawal_id)
        if withdrawal.status == WithdrawalStatus.PENDING and self._epoch >= withdrawal.ready_epoch:
            return WithdrawalStatus.READY
        return withdrawal.status

    def withdrawal_ready(self, validator_id: int, withdrawal_id: int) -> bool:
        return self.withdrawal_status(validator_id, withdrawal_id) == WithdrawalStatus.READY

    def withdraw(self, validator_id: int, withdrawal_id: int, delegator: str) -> int:
        withdrawal = self._withdrawal(validator_id, withdrawal_id)
        if withdrawal.delegator != delegator:
            raise StakingServiceError(f"Withdrawal {withdrawal_id} belongs to another delegator")
        status = self.withdrawal_status(validator_id, withdrawal_id)
        if status != WithdrawalStatus.READY:
            raise StakingServiceError(
                f"Withdrawal {withdrawal_id} is {status.value}, ready at epoch {withdrawal.ready_epoch}"
            )
        withdrawal.status = WithdrawalStatus.COMPLETED
        self.bank.transfer(self.address, delegator, withdrawal.amount)
        return withdrawal.amount

    # =========================================================================
    # REWARDS
    # =========================================================================

    def distribute_rewards(self, validator_id: int, amount: int) -> None:
        """Mint block rewards for a validator's delegators."""
        require_amount(amount)
        self.bank.mint(self.address, amount)
        self._credit(self.validator(validator_id), amount)

    def send_rewards(self, validator_id: int, amount: int, sender: str) -> None:
        require_amount(amount)
        self.bank.transfer(sender, self.address, amount)
        self._credit(self.validator(validator_id), amount)

    def _credit(self, validator: ServiceValidator, amount: int) -> None:
        validator.total_rewards += amount
        bonded = validator.bonded
        if bonded == 0:
            validator.undistributed_rewards += amount
            return
        credited = 0
        for delegation in validator.delegations.values():
            share = mul_div(amount, delegation.bonded, bonded)
            delegation.rewards += share
            credited += share
        validator.undistributed_rewards += amount - credited

    def pending_rewards(self, validator_id: int, delegator: str) -> int:
        validator = self._validators.get(validator_id)
        if validator is None or delegator not in validator.delegations:
            return 0
        return validator.delegations[delegator].rewards

    def claim_rewards(self, validator_id: int, delegator: str) -> int:
        amount = self.pending_rewards(validator_id, delegator)
        if amount == 0:
            return 0
        self.validator(validator_id).delegations[delegator].rewards = 0
        self.bank.transfer(self.address, delegator, amount)
        return amount

    # =========================================================================
    # QUERIES
    # =========================================================================

    def stake_of(self, validator_id: int, delegator: str) -> int:
        validator = self._validators.get(validator_id)
        if validator is None or delegator not in validator.delegations:
            return 0
        return validator.delegations[delegator].bonded

    def active_stake_of(self, validator_id: int, delegator: str) -> int:
        validator = self._validators.get(validator_id)
        if validator is None or delegator not in validator.delegations:
            return 0
        return validator.delegations[delegator].active

    def pending_withdrawals(self, delegator: str) -> List[Withdrawal]:
        return [
            w for w in self._withdrawals.values()
            if w.delegator == delegator and w.status != WithdrawalStatus.COMPLETED
        ]

    def principal_of(self, delegator: str) -> int:
        bonded = sum(
            v.delegations[delegator].bonded
            for v in self._validators.values()
            if delegator in v.delegations
        )
        unbonding = sum(w.amount for w in self.pending_withdrawals(delegator))
        return bonded + unbonding
