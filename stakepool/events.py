"""
Engine events.

Every externally visible state transition emits one of these frozen records
into the engine's ``EventLog``. Boundary delays are reported here rather than
raised: they are a scheduling deferral, not a failure.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar


@dataclass(frozen=True)
class EngineEvent:
    """Base event; ``epoch`` is the engine epoch at emission."""
    epoch: int

    @property
    def name(self) -> str:
        return type(self).__name__.replace("Event", "")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = self.name
        return data


@dataclass(frozen=True)
class DepositEvent(EngineEvent):
    caller: str
    receiver: str
    assets: int
    shares: int


@dataclass(frozen=True)
class InstantWithdrawEvent(EngineEvent):
    caller: str
    receiver: str
    owner: str
    assets: int
    shares: int
    fee: int


@dataclass(frozen=True)
class UnstakeRequestedEvent(EngineEvent):
    owner: str
    shares: int
    assets: int
    completion_epoch: int


@dataclass(frozen=True)
class UnstakeCompletedEvent(EngineEvent):
    owner: str
    assets: int


@dataclass(frozen=True)
class ValidatorAddedEvent(EngineEvent):
    validator_id: int
    operator: str


@dataclass(frozen=True)
class ValidatorDeactivatedEvent(EngineEvent):
    validator_id: int
    removable_epoch: int


@dataclass(frozen=True)
class ValidatorRemovedEvent(EngineEvent):
    validator_id: int
    operator: str


@dataclass(frozen=True)
class ValidatorRewardsEvent(EngineEvent):
    validator_id: int
    amount: int
    protocol_fee: int
    commission: int
    validator_payout: int


@dataclass(frozen=True)
class RewardsForwardedEvent(EngineEvent):
    validator_id: int
    amount: int


@dataclass(frozen=True)
class RewardsClaimedEvent(EngineEvent):
    validator_id: int
    amount: int


@dataclass(frozen=True)
class BoostYieldEvent(EngineEvent):
    donor: str
    amount: int


@dataclass(frozen=True)
class StakeDelegatedEvent(EngineEvent):
    validator_id: int
    amount: int


@dataclass(frozen=True)
class StakeUndelegatedEvent(EngineEvent):
    validator_id: int
    amount: int
    withdrawal_id: int


@dataclass(frozen=True)
class WithdrawalSettledEvent(EngineEvent):
    validator_id: int
    withdrawal_id: int
    amount: int
    request_epoch: int


@dataclass(frozen=True)
class BoundaryDelayEvent(EngineEvent):
    """A withdrawal was not ready at its expected epoch; retried next epoch."""
    validator_id: int
    withdrawal_id: int
    amount: int
    request_epoch: int


@dataclass(frozen=True)
class SettlementStalledEvent(EngineEvent):
    """A withdrawal outlived the boundary grace; retried on every crank."""
    validator_id: int
    withdrawal_id: int
    amount: int
    request_epoch: int


@dataclass(frozen=True)
class EpochStartedEvent(EngineEvent):
    target_liquidity: int
    per_validator_target: int
    active_validators: int
    reserved_for_redemptions: int
    unstake_demand: int


@dataclass(frozen=True)
class EpochCompletedEvent(EngineEvent):
    validators_cranked: int


@dataclass(frozen=True)
class ParameterUpdatedEvent(EngineEvent):
    parameter: str
    value: Any
    effective_epoch: int


E = TypeVar("E", bound=EngineEvent)


class EventLog:
    """
    Append-only event list with simple filtering.

    With ``max_events`` set only the newest events are kept. ``checkpoint``
    and ``rollback`` let an atomic call discard what it emitted without
    copying the history.
    """

    def __init__(self, max_events: Optional[int] = None):
        self._events: List[EngineEvent] = []
        self._max_events = max_events
        self._emitted = 0

    def emit(self, event: EngineEvent) -> EngineEvent:
        self._events.append(event)
        self._emitted += 1
        if self._max_events is not None and len(self._events) > self._max_events:
            del self._events[: len(self._events) - self._max_events]
        return event

    def of_type(self, event_type: Type[E]) -> List[E]:
        return [e for e in self._events if isinstance(e, event_type)]

    def checkpoint(self) -> int:
        return self._emitted

    def rollback(self, checkpoint: int) -> None:
        """Drop every event emitted after ``checkpoint``."""
        dropped = self._emitted - checkpoint
        if dropped <= 0:
            return
        del self._events[max(0, len(self._events) - dropped):]
        self._emitted = checkpoint

    def __iter__(self) -> Iterator[EngineEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)
