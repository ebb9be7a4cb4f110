"""
stakepool Atomic Liquidity Pool

Instant-withdrawal buffer carved out of engine cash. The pool holds no state
of its own: its capital lives in ``GlobalLedger.atomic`` and its target is
snapshotted in the current ``GlobalEpoch`` at each global crank, so every
method takes the ledger it works on.
"""

from dataclasses import dataclass

from ..constants import SCALE
from ..exceptions import InsufficientLiquidityError, InvalidAmountError
from ..logger import get_logger
from ..numeric import mul_div, mul_div_up, require_amount
from .fee_curve import FeeCurve

logger = get_logger(__name__)


@dataclass(frozen=True)
class WithdrawalQuote:
    """Gross asset value burned, net paid out, and the fee kept."""
    gross: int
    net: int
    fee: int
    fee_rate: int


@dataclass(frozen=True)
class RebalanceResult:
    target: int
    released: int
    filled: int
    shortfall: int


class AtomicLiquidityPool:
    """Fee quoting, instant withdrawals and crank-time rebalancing."""

    # =========================================================================
    # TARGET AND FEES
    # =========================================================================

    @staticmethod
    def compute_target(ledger) -> int:
        """min(equity * target_pct, equity); never raises."""
        equity = ledger.total_equity()
        target = mul_div(equity, ledger.parameters.target_liquidity_percent, SCALE)
        return min(target, equity)

    @staticmethod
    def target_liquidity(ledger) -> int:
        return ledger.global_epochs.current.target_liquidity

    @staticmethod
    def current_liquidity(ledger) -> int:
        return ledger.atomic.current

    def utilization(self, ledger) -> int:
        return FeeCurve.utilization(self.current_liquidity(ledger), self.target_liquidity(ledger))

    def fee_rate(self, ledger) -> int:
        curve = FeeCurve.from_parameters(ledger.parameters)
        if ledger.parameters.target_liquidity_percent == 0:
            return curve.max_fee
        return curve.fee_rate(self.current_liquidity(ledger), self.target_liquidity(ledger))

    # =========================================================================
    # QUOTES
    # =========================================================================

    def quote_withdraw(self, ledger, net: int) -> WithdrawalQuote:
        """Gross value needed for ``net`` paid out."""
        require_amount(net, "assets")
        rate = self.fee_rate(ledger)
        gross = mul_div_up(net, SCALE, SCALE - rate)
        return WithdrawalQuote(gross=gross, net=net, fee=gross - net, fee_rate=rate)

    def quote_redeem(self, ledger, gross: int) -> WithdrawalQuote:
        """Net paid out for ``gross`` value redeemed."""
        require_amount(gross, "assets")
        rate = self.fee_rate(ledger)
        fee = mul_div(gross, rate, SCALE)
        return WithdrawalQuote(gross=gross, net=gross - fee, fee=fee, fee_rate=rate)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def withdraw(self, ledger, quote: WithdrawalQuote) -> WithdrawalQuote:
        """
        Book an instant withdrawal; the caller pays ``quote.net`` out.

        Raises:
            InvalidAmountError: If nothing would be paid
            InsufficientLiquidityError: If the pool cannot cover ``quote.net``
        """
        if quote.net == 0:
            raise InvalidAmountError("Instant withdrawal pays nothing")
        available = self.current_liquidity(ledger)
        if quote.net > available:
            raise InsufficientLiquidityError(
                f"Instant withdrawal of {quote.net} exceeds pool liquidity {available}"
            )
        ledger.record_instant_withdrawal(quote.net, quote.fee)
        logger.debug(
            f"Instant withdrawal {quote.net} (fee {quote.fee}) at epoch {ledger.epoch}, "
            f"pool {ledger.atomic.current}"
        )
        return quote

    def rebalance(self, ledger, target: int) -> RebalanceResult:
        """
        Resize the pool to ``target``: surplus returns to free cash, a
        shortfall is filled from free cash, and whatever free cash cannot
        cover is reported back.
        """
        current = ledger.atomic.current
        released = filled = 0
        if current > target:
            released = current - target
            ledger.native_amount += released
            size = target
        else:
            filled = min(target - current, ledger.native_amount)
            ledger.native_amount -= filled
            size = current + filled

        ledger.atomic.allocated_amount = size
        ledger.atomic.distributed_amount = 0
        ledger.global_epochs.current.target_liquidity = target

        shortfall = target - size
        if shortfall:
            logger.info(
                f"Pool short of target by {shortfall} at epoch {ledger.epoch}"
            )
        return RebalanceResult(target=target, released=released, filled=filled, shortfall=shortfall)
