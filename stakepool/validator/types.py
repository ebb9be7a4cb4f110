"""
stakepool Validator Types

Core data types for the validator registry.
"""

from dataclasses import dataclass
from typing import Optional

from eth_utils import is_address, to_checksum_address

from ..exceptions import InvalidValidatorError


def normalize_operator(operator: str) -> str:
    """
    Validate and checksum a coinbase/operator address.

    Raises:
        InvalidValidatorError: If the address is not a 20-byte hex address
    """
    if not isinstance(operator, str) or not is_address(operator):
        raise InvalidValidatorError(f"Invalid operator address: {operator!r}")
    return to_checksum_address(operator)


@dataclass
class ValidatorRecord:
    """
    A validator known to the registry.

    Attributes:
        validator_id: Nonzero id assigned by the staking service
        operator: Checksummed coinbase/operator address
        active: Whether the validator is linked into the crank order
        added_epoch: Engine epoch of the (latest) add
        deactivation_epoch: Engine epoch of the deactivation request, if any
    """
    validator_id: int
    operator: str
    active: bool = True
    added_epoch: int = 0
    deactivation_epoch: Optional[int] = None

    @property
    def is_deactivating(self) -> bool:
        """Deactivation requested but the node is still linked."""
        return self.active and self.deactivation_epoch is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'validator_id': self.validator_id,
            'operator': self.operator,
            'active': self.active,
            'added_epoch': self.added_epoch,
            'deactivation_epoch': self.deactivation_epoch,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ValidatorRecord':
        """Create from dictionary."""
        return cls(
            validator_id=int(data['validator_id']),
            operator=normalize_operator(data['operator']),
            active=data.get('active', True),
            added_epoch=data.get('added_epoch', 0),
            deactivation_epoch=data.get('deactivation_epoch'),
        )


@dataclass
class ValidatorStats:
    """Read-only view of one validator's position, returned by the engine."""
    validator_id: int
    operator: Optional[str]
    active: bool
    deactivating: bool
    staked: int
    unstaking: int
    target_stake: int
    unpaid_rewards: int
    rewards_forwarded: int
    rewards_claimed: int
    stalled_withdrawals: int
    last_cranked_epoch: Optional[int]

    def to_dict(self) -> dict:
        return {
            'validator_id': self.validator_id,
            'operator': self.operator,
            'active': self.active,
            'deactivating': self.deactivating,
            'staked': self.staked,
            'unstaking': self.unstaking,
            'target_stake': self.target_stake,
            'unpaid_rewards': self.unpaid_rewards,
            'rewards_forwarded': self.rewards_forwarded,
            'rewards_claimed': self.rewards_claimed,
            'stalled_withdrawals': self.stalled_withdrawals,
            'last_cranked_epoch': self.last_cranked_epoch,
        }
