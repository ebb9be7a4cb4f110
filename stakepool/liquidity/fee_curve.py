"""
Utilization-sensitive fee curve for instant withdrawals.

    utilization u = (target - current) / target, clamped to [0, 1]

    u <= kink : min_fee + (mid_fee - min_fee) * u / kink
    u >  kink : mid_fee + (max_fee - mid_fee) * x**2,  x = (u - kink) / (1 - kink)

All values are integers scaled by ``SCALE``. The curve is continuous at the
kink and non-decreasing in utilization.
"""

from dataclasses import dataclass
from typing import List, Tuple

from ..constants import (
    DEFAULT_FEE_KINK,
    DEFAULT_MAX_FEE_RATE,
    DEFAULT_MID_FEE_RATE,
    DEFAULT_MIN_FEE_RATE,
    SCALE,
)
from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class FeeCurve:
    min_fee: int = DEFAULT_MIN_FEE_RATE
    mid_fee: int = DEFAULT_MID_FEE_RATE
    max_fee: int = DEFAULT_MAX_FEE_RATE
    kink: int = DEFAULT_FEE_KINK

    def __post_init__(self):
        if not 0 <= self.min_fee <= self.mid_fee <= self.max_fee < SCALE:
            raise ConfigurationError(
                "fee curve requires 0 <= min_fee <= mid_fee <= max_fee < SCALE"
            )
        if not 0 < self.kink < SCALE:
            raise ConfigurationError("fee curve kink must be within (0, SCALE)")

    @classmethod
    def from_parameters(cls, parameters) -> 'FeeCurve':
        return cls(
            min_fee=parameters.min_fee_rate,
            mid_fee=parameters.mid_fee_rate,
            max_fee=parameters.max_fee_rate,
            kink=parameters.fee_kink,
        )

    @staticmethod
    def utilization(current: int, target: int) -> int:
        """Share of the target liquidity already drawn, scaled by SCALE."""
        if target <= 0:
            return SCALE
        if current >= target:
            return 0
        return min(SCALE, (target - current) * SCALE // target)

    def fee_at(self, utilization: int) -> int:
        u = max(0, min(SCALE, utilization))
        if u <= self.kink:
            return self.min_fee + (self.mid_fee - self.min_fee) * u // self.kink
        x = (u - self.kink) * SCALE // (SCALE - self.kink)
        return self.mid_fee + (self.max_fee - self.mid_fee) * x * x // (SCALE * SCALE)

    def fee_rate(self, current: int, target: int) -> int:
        """Fee for a pool holding ``current`` against ``target``."""
        if target <= 0:
            return self.max_fee
        return self.fee_at(self.utilization(current, target))

    def sample(self, points: int = 11) -> List[Tuple[int, int]]:
        """(utilization, fee) pairs evenly spaced over [0, SCALE]."""
        if points < 2:
            raise ValueError("points must be at least 2")
        step = SCALE // (points - 1)
        samples = [(i * step, self.fee_at(i * step)) for i in range(points - 1)]
        samples.append((SCALE, self.fee_at(SCALE)))
        return samples
