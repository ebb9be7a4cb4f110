"""
Staking service contract.

The engine depends only on this observable behavior of the external staking
service: stake changes take effect after a fixed number of epochs, rewards
are queryable and claimable per validator, and withdrawal requests can be
polled for completion. Every call names the delegator it acts for.
"""

from abc import ABC, abstractmethod


class StakingService(ABC):
    """Abstract staking service used by the crank."""

    @abstractmethod
    def current_epoch(self) -> int:
        """Epoch the service is in."""

    @abstractmethod
    def delegate(self, validator_id: int, amount: int, delegator: str) -> None:
        """Move ``amount`` of the delegator's cash into stake on a validator."""

    @abstractmethod
    def undelegate(self, validator_id: int, amount: int, delegator: str) -> int:
        """Start unbonding ``amount``; returns the withdrawal id."""

    @abstractmethod
    def withdrawal_ready(self, validator_id: int, withdrawal_id: int) -> bool:
        """Whether a withdrawal has finished unbonding."""

    @abstractmethod
    def withdraw(self, validator_id: int, withdrawal_id: int, delegator: str) -> int:
        """
        Pay an unbonded withdrawal back to the delegator.

        Raises:
            StakingServiceError: If the withdrawal is unknown, not ready, or
                already withdrawn
        """

    @abstractmethod
    def pending_rewards(self, validator_id: int, delegator: str) -> int:
        """Rewards the delegator could claim from a validator."""

    @abstractmethod
    def claim_rewards(self, validator_id: int, delegator: str) -> int:
        """Pay out and return the delegator's pending rewards."""

    @abstractmethod
    def send_rewards(self, validator_id: int, amount: int, sender: str) -> None:
        """Hand ``amount`` of the sender's cash to a validator's delegators."""

    @abstractmethod
    def principal_of(self, delegator: str) -> int:
        """Principal held for the delegator, unbonding withdrawals included."""
