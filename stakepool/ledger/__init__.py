"""
stakepool Ledger Module

Epoch-windowed records and the global capital/liabilities ledger.
"""

from .accounting import GlobalLedger
from .records import (
    AtomicCapital,
    CashFlows,
    GlobalEpoch,
    Liabilities,
    PoolParameters,
    Revenue,
    StakingEscrow,
    StalledWithdrawal,
    ValidatorEpoch,
    ValidatorRewards,
    WorkingCapital,
)
from .validator_ledger import ValidatorLedger
from .window import EpochWindow

__all__ = [
    'GlobalLedger',
    'ValidatorLedger',
    'EpochWindow',
    'PoolParameters',
    'ValidatorEpoch',
    'StakingEscrow',
    'ValidatorRewards',
    'CashFlows',
    'Revenue',
    'GlobalEpoch',
    'WorkingCapital',
    'Liabilities',
    'AtomicCapital',
    'StalledWithdrawal',
]
