"""
stakepool Liquidity Module

Fee curve and the atomic (instant-withdrawal) liquidity pool.
"""

from .fee_curve import FeeCurve
from .pool import AtomicLiquidityPool, RebalanceResult, WithdrawalQuote

__all__ = [
    'FeeCurve',
    'AtomicLiquidityPool',
    'RebalanceResult',
    'WithdrawalQuote',
]
