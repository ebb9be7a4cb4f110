"""
stakepool Fee Curve Tests
"""

import pytest

from stakepool.constants import (
    DEFAULT_FEE_KINK,
    DEFAULT_MAX_FEE_RATE,
    DEFAULT_MID_FEE_RATE,
    DEFAULT_MIN_FEE_RATE,
    SCALE,
)
from stakepool.exceptions import ConfigurationError
from stakepool.liquidity import FeeCurve


@pytest.fixture
def curve():
    return FeeCurve()


class TestFeeCurveShape:
    """Piecewise linear-then-quadratic fee."""

    def test_endpoints(self, curve):
        assert curve.fee_at(0) == DEFAULT_MIN_FEE_RATE
        assert curve.fee_at(DEFAULT_FEE_KINK) == DEFAULT_MID_FEE_RATE
        assert curve.fee_at(SCALE) == DEFAULT_MAX_FEE_RATE

    def test_linear_below_kink(self, curve):
        halfway = curve.fee_at(DEFAULT_FEE_KINK // 2)
        assert halfway == DEFAULT_MIN_FEE_RATE + (DEFAULT_MID_FEE_RATE - DEFAULT_MIN_FEE_RATE) // 2

    def test_quadratic_above_kink(self, curve):
        # halfway between kink and full utilization: x = 1/2, x**2 = 1/4
        u = DEFAULT_FEE_KINK + (SCALE - DEFAULT_FEE_KINK) // 2
        expected = DEFAULT_MID_FEE_RATE + (DEFAULT_MAX_FEE_RATE - DEFAULT_MID_FEE_RATE) // 4
        assert curve.fee_at(u) == expected

    def test_continuous_at_kink(self, curve):
        below = curve.fee_at(DEFAULT_FEE_KINK - 1)
        at = curve.fee_at(DEFAULT_FEE_KINK)
        above = curve.fee_at(DEFAULT_FEE_KINK + 1)
        assert below <= at <= above
        assert above - below <= 1

    def test_non_decreasing(self, curve):
        fees = [fee for _, fee in curve.sample(101)]
        assert fees == sorted(fees)

    def test_utilization_clamped(self, curve):
        assert curve.fee_at(-5) == DEFAULT_MIN_FEE_RATE
        assert curve.fee_at(2 * SCALE) == DEFAULT_MAX_FEE_RATE

    def test_sample_covers_full_range(self, curve):
        samples = curve.sample(11)
        assert samples[0] == (0, DEFAULT_MIN_FEE_RATE)
        assert samples[-1] == (SCALE, DEFAULT_MAX_FEE_RATE)
        assert len(samples) == 11


class TestUtilization:

    def test_full_pool_has_zero_utilization(self):
        assert FeeCurve.utilization(100, 100) == 0
        assert FeeCurve.utilization(150, 100) == 0

    def test_empty_pool_fully_utilized(self):
        assert FeeCurve.utilization(0, 100) == SCALE

    def test_partial(self):
        assert FeeCurve.utilization(25, 100) == 3 * SCALE // 4

    def test_zero_target_charges_max(self, curve):
        assert curve.fee_rate(current=0, target=0) == DEFAULT_MAX_FEE_RATE
        assert curve.fee_rate(current=50, target=0) == DEFAULT_MAX_FEE_RATE


class TestFeeCurveValidation:

    @pytest.mark.parametrize("kwargs", [
        dict(min_fee=10, mid_fee=5, max_fee=20),
        dict(min_fee=1, mid_fee=30, max_fee=20),
        dict(max_fee=SCALE),
        dict(kink=0),
        dict(kink=SCALE),
        dict(min_fee=-1),
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ConfigurationError):
            FeeCurve(**kwargs)

    def test_flat_curve_allowed(self):
        curve = FeeCurve(min_fee=100, mid_fee=100, max_fee=100)
        assert curve.fee_at(0) == curve.fee_at(SCALE) == 100
