"""
stakepool Validator Registry

Sentinel-bounded doubly linked list of validator ids stored as a fixed-capacity
arena. Ids run from 1 to ``capacity``; slot 0 is the first sentinel and slot
``capacity + 1`` the last. ``next``/``prev`` are plain index lists so adding
and removing validators is O(1) and never reindexes the crank order.

Deactivation is soft: the validator stays linked (and its operator stays
resolvable) until the crank reaps it after the delay window, once nothing
remains to settle for it.
"""

from typing import Dict, Iterator, List, Optional

from ..constants import (
    DEFAULT_DEACTIVATION_DELAY_EPOCHS,
    DEFAULT_VALIDATOR_CAPACITY,
    FIRST_SENTINEL,
)
from ..exceptions import InvalidValidatorError, InvariantViolation
from ..logger import get_logger
from .types import ValidatorRecord, normalize_operator

logger = get_logger(__name__)

UNLINKED = -1


class ValidatorRegistry:
    """
    Linked-list validator registry.

    The crank walks the list from ``first()`` to ``last_sentinel`` using
    ``next_after``; the scheduler persists its own cursor.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_VALIDATOR_CAPACITY,
        deactivation_delay: int = DEFAULT_DEACTIVATION_DELAY_EPOCHS,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if deactivation_delay < 0:
            raise ValueError("deactivation_delay must be non-negative")

        self.capacity = capacity
        self.deactivation_delay = deactivation_delay
        self.first_sentinel = FIRST_SENTINEL
        self.last_sentinel = capacity + 1

        size = capacity + 2
        self._next: List[int] = [UNLINKED] * size
        self._prev: List[int] = [UNLINKED] * size
        self._records: List[Optional[ValidatorRecord]] = [None] * size
        self._by_operator: Dict[str, int] = {}
        self._count = 0

        self._next[self.first_sentinel] = self.last_sentinel
        self._prev[self.last_sentinel] = self.first_sentinel

    # =========================================================================
    # QUERIES
    # =========================================================================

    def is_sentinel(self, validator_id: int) -> bool:
        return validator_id in (self.first_sentinel, self.last_sentinel)

    def is_linked(self, validator_id: int) -> bool:
        return (
            self._in_range(validator_id)
            and not self.is_sentinel(validator_id)
            and self._next[validator_id] != UNLINKED
        )

    def is_active(self, validator_id: int) -> bool:
        """Linked into the crank order (deactivating validators included)."""
        return self.is_linked(validator_id)

    def is_deactivating(self, validator_id: int) -> bool:
        record = self.get(validator_id)
        return record is not None and record.is_deactivating

    def get(self, validator_id: int) -> Optional[ValidatorRecord]:
        if not self._in_range(validator_id):
            return None
        return self._records[validator_id]

    def validator_for(self, operator: str) -> Optional[int]:
        """Resolve an operator address to its validator id."""
        try:
            operator = normalize_operator(operator)
        except InvalidValidatorError:
            return None
        return self._by_operator.get(operator)

    def removable_epoch(self, validator_id: int) -> Optional[int]:
        record = self.get(validator_id)
        if record is None or record.deactivation_epoch is None:
            return None
        return record.deactivation_epoch + self.deactivation_delay

    @property
    def count(self) -> int:
        return self._count

    def active_ids(self) -> List[int]:
        return list(self)

    def __iter__(self) -> Iterator[int]:
        current = self._next[self.first_sentinel]
        while current != self.last_sentinel:
            yield current
            current = self._next[current]

    def __len__(self) -> int:
        return self._count

    def __contains__(self, validator_id: int) -> bool:
        return self.is_linked(validator_id)

    # =========================================================================
    # TRAVERSAL
    # =========================================================================

    def first(self) -> int:
        """First validator id, or the last sentinel if the list is empty."""
        return self._next[self.first_sentinel]

    def last(self) -> int:
        """Last validator id, or the first sentinel if the list is empty."""
        return self._prev[self.last_sentinel]

    def next_after(self, validator_id: int) -> int:
        if validator_id == self.last_sentinel:
            raise InvalidValidatorError("Nothing follows the last sentinel")
        if validator_id != self.first_sentinel and not self.is_linked(validator_id):
            raise InvalidValidatorError(f"Validator {validator_id} is not linked")
        return self._next[validator_id]

    def prev_before(self, validator_id: int) -> int:
        if validator_id == self.first_sentinel:
            raise InvalidValidatorError("Nothing precedes the first sentinel")
        if validator_id != self.last_sentinel and not self.is_linked(validator_id):
            raise InvalidValidatorError(f"Validator {validator_id} is not linked")
        return self._prev[validator_id]

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add(self, validator_id: int, operator: str, epoch: int) -> ValidatorRecord:
        """
        Link a validator at the tail of the crank order.

        Raises:
            InvalidValidatorError: If the id is out of range or already linked,
                the operator belongs to another id, or a previous deactivation
                of this validator has not been reaped yet
        """
        if not self._in_range(validator_id) or self.is_sentinel(validator_id):
            raise InvalidValidatorError(
                f"Validator id {validator_id} outside 1..{self.capacity}"
            )
        operator = normalize_operator(operator)

        record = self._records[validator_id]
        if self.is_linked(validator_id):
            if record is not None and record.is_deactivating:
                raise InvalidValidatorError(
                    f"Validator {validator_id} is deactivating and not yet removed"
                )
            raise InvalidValidatorError(f"Validator {validator_id} is already active")

        bound = self._by_operator.get(operator)
        if bound is not None and bound != validator_id:
            raise InvalidValidatorError(
                f"Operator {operator} already bound to validator {bound}"
            )
        if bound == validator_id:
            raise InvalidValidatorError(
                f"Validator {validator_id} has not been fully removed"
            )

        record = ValidatorRecord(
            validator_id=validator_id,
            operator=operator,
            active=True,
            added_epoch=epoch,
        )
        self._records[validator_id] = record
        self._by_operator[operator] = validator_id

        tail = self._prev[self.last_sentinel]
        self._next[tail] = validator_id
        self._prev[validator_id] = tail
        self._next[validator_id] = self.last_sentinel
        self._prev[self.last_sentinel] = validator_id
        self._count += 1

        logger.info(f"Registered validator {validator_id} ({operator}) at epoch {epoch}")
        return record

    def deactivate(self, validator_id: int, epoch: int) -> ValidatorRecord:
        """
        Request deactivation; the node stays linked for the delay window.

        Raises:
            InvalidValidatorError: If unknown, inactive or already deactivating
        """
        record = self.get(validator_id)
        if record is None or not self.is_linked(validator_id):
            raise InvalidValidatorError(f"Validator {validator_id} is not active")
        if record.deactivation_epoch is not None:
            raise InvalidValidatorError(f"Validator {validator_id} is already deactivating")

        record.deactivation_epoch = epoch
        logger.info(
            f"Validator {validator_id} deactivating at epoch {epoch}, "
            f"removable at epoch {epoch + self.deactivation_delay}"
        )
        return record

    def can_reap(self, validator_id: int, epoch: int) -> bool:
        removable = self.removable_epoch(validator_id)
        return (
            removable is not None
            and self.is_linked(validator_id)
            and epoch >= removable
        )

    def reap(self, validator_id: int, epoch: int, settled: bool) -> bool:
        """
        Unlink a deactivated validator once its delay elapsed and nothing is
        left to settle. Returns True if the node was removed.
        """
        if not settled or not self.can_reap(validator_id, epoch):
            return False

        record = self._records[validator_id]
        prev_id = self._prev[validator_id]
        next_id = self._next[validator_id]
        self._next[prev_id] = next_id
        self._prev[next_id] = prev_id
        self._next[validator_id] = UNLINKED
        self._prev[validator_id] = UNLINKED
        self._count -= 1

        record.active = False
        self._by_operator.pop(record.operator, None)

        logger.info(f"Removed validator {validator_id} ({record.operator}) at epoch {epoch}")
        return True

    # =========================================================================
    # INTEGRITY
    # =========================================================================

    def check_integrity(self) -> None:
        """
        Walk the list both ways and verify pointers, mapping and count.

        Raises:
            InvariantViolation: On any inconsistency
        """
        forward = []
        seen = set()
        current = self.first_sentinel
        while True:
            nxt = self._next[current]
            if nxt == UNLINKED or not self._in_range(nxt):
                raise InvariantViolation(f"Broken next pointer after {current}")
            if self._prev[nxt] != current:
                raise InvariantViolation(f"prev[{nxt}] != {current}")
            if nxt == self.last_sentinel:
                break
            if nxt in seen or nxt == self.first_sentinel:
                raise InvariantViolation(f"Cycle detected at {nxt}")
            seen.add(nxt)
            forward.append(nxt)
            current = nxt

        if len(forward) != self._count:
            raise InvariantViolation(
                f"Linked count {len(forward)} != recorded count {self._count}"
            )

        for validator_id in forward:
            record = self._records[validator_id]
            if record is None or not record.active:
                raise InvariantViolation(f"Linked validator {validator_id} has no active record")
            if self._by_operator.get(record.operator) != validator_id:
                raise InvariantViolation(f"Operator mapping lost for validator {validator_id}")

        if len(self._by_operator) != self._count:
            raise InvariantViolation("Operator mapping contains removed validators")

    def _in_range(self, validator_id: int) -> bool:
        return isinstance(validator_id, int) and 0 <= validator_id <= self.last_sentinel
