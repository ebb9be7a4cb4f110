"""
Share balances and asset/share conversion.

Only the parts of a fungible-share token the engine needs: balances, supply,
mint/burn, and the allowance check used when withdrawing on behalf of another
owner. Conversion follows the virtual-offset vault model so that the first
depositor cannot inflate the share price.
"""

from typing import Dict, Tuple

from .constants import VIRTUAL_ASSETS, VIRTUAL_SHARES
from .exceptions import InsufficientLiquidityError
from .numeric import mul_div, mul_div_up, require_amount


def convert_to_shares(assets: int, total_assets: int, total_supply: int, round_up: bool = False) -> int:
    """Shares worth ``assets`` at the given vault totals."""
    div = mul_div_up if round_up else mul_div
    return div(assets, total_supply + VIRTUAL_SHARES, total_assets + VIRTUAL_ASSETS)


def convert_to_assets(shares: int, total_assets: int, total_supply: int, round_up: bool = False) -> int:
    """Assets backing ``shares`` at the given vault totals."""
    div = mul_div_up if round_up else mul_div
    return div(shares, total_assets + VIRTUAL_ASSETS, total_supply + VIRTUAL_SHARES)


class ShareLedger:
    """Share balances, total supply and allowances."""

    def __init__(self, symbol: str = "spSHARE"):
        self.symbol = symbol
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, receiver: str, shares: int) -> None:
        require_amount(shares, "shares")
        self._balances[receiver] = self.balance_of(receiver) + shares
        self._total_supply += shares

    def burn(self, owner: str, shares: int) -> None:
        require_amount(shares, "shares")
        balance = self.balance_of(owner)
        if balance < shares:
            raise InsufficientLiquidityError(
                f"{owner} holds {balance} shares, cannot burn {shares}"
            )
        self._balances[owner] = balance - shares
        self._total_supply -= shares

    def approve(self, owner: str, spender: str, shares: int) -> None:
        require_amount(shares, "shares")
        self._allowances[(owner, spender)] = shares

    def spend_allowance(self, owner: str, spender: str, shares: int) -> None:
        """Consume allowance unless the spender is the owner."""
        if owner == spender:
            return
        allowed = self.allowance(owner, spender)
        if allowed < shares:
            raise InsufficientLiquidityError(
                f"allowance {allowed} for {spender} below {shares} shares"
            )
        self._allowances[(owner, spender)] = allowed - shares
