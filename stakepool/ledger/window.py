"""
Rolling epoch window.

Records are stored in a ring addressed by absolute epoch number and exposed
relative to the window cursor as ``prev(3)``, ``prev(2)``, ``prev(1)``,
``current`` and ``next``. Rolling recycles the oldest slot as the new
``next``.
"""

from typing import Callable, Generic, List, Optional, TypeVar

from ..constants import EPOCH_WINDOW_SIZE, MAX_LOOKBACK

T = TypeVar("T")


class EpochWindow(Generic[T]):
    """Fixed ring of per-epoch records around a cursor epoch."""

    def __init__(self, factory: Callable[[], T], epoch: int = 0):
        self._factory = factory
        self._size = EPOCH_WINDOW_SIZE
        self._epoch = epoch
        self._slots: List[T] = [factory() for _ in range(self._size)]
        self._tags: List[Optional[int]] = [None] * self._size
        for offset in range(-MAX_LOOKBACK, 2):
            self._tags[(epoch + offset) % self._size] = epoch + offset

    @property
    def epoch(self) -> int:
        """Epoch of the ``current`` slot."""
        return self._epoch

    def covers(self, epoch: int) -> bool:
        return self._epoch - MAX_LOOKBACK <= epoch <= self._epoch + 1

    def at(self, epoch: int) -> T:
        """Record for an absolute epoch inside the window."""
        if not self.covers(epoch):
            raise IndexError(
                f"epoch {epoch} outside window "
                f"[{self._epoch - MAX_LOOKBACK}, {self._epoch + 1}]"
            )
        return self._slots[epoch % self._size]

    @property
    def current(self) -> T:
        return self.at(self._epoch)

    @property
    def next(self) -> T:
        return self.at(self._epoch + 1)

    def prev(self, lookback: int) -> T:
        if not 1 <= lookback <= MAX_LOOKBACK:
            raise IndexError(f"lookback must be 1..{MAX_LOOKBACK}, got {lookback}")
        return self.at(self._epoch - lookback)

    def roll(self, carry: Optional[Callable[[T, T], None]] = None) -> T:
        """
        Advance the cursor one epoch.

        The slot holding ``prev(3)`` is evicted and reused, reset, as the new
        ``next``. ``carry(previous, current)`` runs after the move so callers
        can copy values forward. Returns the evicted record.
        """
        new_next = self._epoch + 2
        index = new_next % self._size
        evicted = self._slots[index]
        self._slots[index] = self._factory()
        self._tags[index] = new_next
        self._epoch += 1
        if carry is not None:
            carry(self.prev(1), self.current)
        return evicted

    def items(self):
        """(epoch, record) pairs from oldest to newest."""
        for epoch in range(self._epoch - MAX_LOOKBACK, self._epoch + 2):
            yield epoch, self._slots[epoch % self._size]

    def __len__(self) -> int:
        return self._size
