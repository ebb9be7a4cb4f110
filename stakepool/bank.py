"""
Native asset account book.

A minimal in-memory stand-in for the chain's native balance accounting. The
engine, its users, and the staking service all hold accounts here, so the
engine's cash can be checked against its ledger at any time. Addresses may
register a receive hook, which is how tests model a recipient that calls back
into the engine while being paid.
"""

from typing import Callable, Dict, Optional

from .exceptions import InsufficientLiquidityError
from .logger import get_logger
from .numeric import require_amount

logger = get_logger(__name__)

ReceiveHook = Callable[[str, int], None]


class NativeBank:
    """Account balances for the native asset."""

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._hooks: Dict[str, ReceiveHook] = {}
        self._total_supply = 0

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def mint(self, address: str, amount: int) -> None:
        """Create new native units (genesis funding, block rewards)."""
        require_amount(amount)
        self._balances[address] = self.balance_of(address) + amount
        self._total_supply += amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """
        Move ``amount`` from ``sender`` to ``recipient``.

        The recipient's receive hook, if any, runs after the balances are
        updated.

        Raises:
            InsufficientLiquidityError: If the sender balance is too low
        """
        require_amount(amount)
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientLiquidityError(
                f"{sender} holds {balance}, cannot send {amount}"
            )
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount

        hook = self._hooks.get(recipient)
        if hook is not None and amount > 0:
            hook(sender, amount)

    def set_receive_hook(self, address: str, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self._hooks.pop(address, None)
        else:
            self._hooks[address] = hook

    def snapshot(self) -> Dict[str, int]:
        return dict(self._balances)

    def restore(self, balances: Dict[str, int]) -> None:
        self._balances = dict(balances)
        self._total_supply = sum(self._balances.values())
