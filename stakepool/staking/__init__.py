"""
stakepool Staking Module

The staking-service contract the crank talks to, and an in-memory
implementation of it.
"""

from .memory import InMemoryStakingService, WithdrawalStatus
from .service import StakingService

__all__ = [
    'StakingService',
    'InMemoryStakingService',
    'WithdrawalStatus',
]
