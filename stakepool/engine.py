"""
stakepool Engine

``StakePool`` is the external interface of the pooled-staking engine. It owns
the ledger, the validator registry, the share balances and the event log, and
drives the crank against a staking service.

Every state-mutating entry point is serialized by a reentrancy lock. All of
them except ``crank`` are also atomic: engine state and bank balances are
snapshotted on entry and restored if the call raises. The crank talks to the
staking service, whose side effects cannot be undone, so it only holds the
lock.
"""

import copy
import functools
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .bank import NativeBank
from .constants import (
    DEFAULT_DEACTIVATION_DELAY_EPOCHS,
    DEFAULT_VALIDATOR_CAPACITY,
    MAX_PROTOCOL_FEE_RATE,
    STAKEPOOL_STRICT_INVARIANTS,
    UNSTAKE_COMPLETION_EPOCHS,
)
from .crank import CrankScheduler
from .events import (
    BoostYieldEvent,
    DepositEvent,
    EngineEvent,
    EventLog,
    InstantWithdrawEvent,
    ParameterUpdatedEvent,
    UnstakeCompletedEvent,
    UnstakeRequestedEvent,
    ValidatorAddedEvent,
    ValidatorDeactivatedEvent,
    ValidatorRewardsEvent,
)
from .exceptions import (
    InsufficientLiquidityError,
    InvalidAmountError,
    InvalidValidatorError,
    ReentrantCallError,
    TooEarlyError,
    UnauthorizedError,
)
from .ledger import CashFlows, GlobalLedger, PoolParameters, WorkingCapital
from .liquidity import AtomicLiquidityPool
from .logger import get_logger
from .numeric import require_amount
from .shares import ShareLedger, convert_to_assets, convert_to_shares
from .staking.service import StakingService
from .validator import ValidatorRegistry, ValidatorStats

logger = get_logger(__name__)


@dataclass
class UnstakeRequest:
    """
    A pending traditional exit.

    Attributes:
        owner: Account the assets are paid to
        shares: Shares burned at request time
        assets: Assets owed, fixed at request time
        request_epoch: Engine epoch of the (latest) request
        completion_epoch: First engine epoch ``complete_unstake`` succeeds
    """
    owner: str
    shares: int
    assets: int
    request_epoch: int
    completion_epoch: int

    def to_dict(self) -> dict:
        return {
            'owner': self.owner,
            'shares': self.shares,
            'assets': self.assets,
            'request_epoch': self.request_epoch,
            'completion_epoch': self.completion_epoch,
        }


@dataclass
class EngineState:
    """Everything an atomic call may need to restore."""
    ledger: GlobalLedger
    registry: ValidatorRegistry
    owner: str
    shares: ShareLedger = field(default_factory=ShareLedger)
    unstake_requests: Dict[str, UnstakeRequest] = field(default_factory=dict)
    events: EventLog = field(default_factory=EventLog)


def nonreentrant(method):
    """Serialize a call under the engine lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self._acquire_lock(method.__name__)
        try:
            return method(self, *args, **kwargs)
        finally:
            self._release_lock()
    return wrapper


def atomic(method):
    """Serialize a call and roll engine state back if it raises."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self._acquire_lock(method.__name__)
        # The event log is shared with the snapshot and rewound on its own.
        events = self.state.events
        mark = events.checkpoint()
        saved_state = copy.deepcopy(self.state, {id(events): events})
        saved_balances = self.bank.snapshot()
        try:
            result = method(self, *args, **kwargs)
            self.check_invariants()
            return result
        except Exception as e:
            self._restore(saved_state, saved_balances)
            events.rollback(mark)
            logger.debug(f"{method.__name__} rolled back: {e}")
            raise
        finally:
            self._release_lock()
    return wrapper


class StakePool:
    """Pooled-staking engine."""

    def __init__(
        self,
        bank: NativeBank,
        service: StakingService,
        owner: str,
        address: str = "stakepool",
        parameters: Optional[PoolParameters] = None,
        capacity: int = DEFAULT_VALIDATOR_CAPACITY,
        deactivation_delay: int = DEFAULT_DEACTIVATION_DELAY_EPOCHS,
        strict_invariants: bool = bool(STAKEPOOL_STRICT_INVARIANTS),
        max_events: Optional[int] = None,
    ):
        self.bank = bank
        self.service = service
        self.address = address
        self.strict_invariants = strict_invariants
        self.pool = AtomicLiquidityPool()
        self.state = EngineState(
            ledger=GlobalLedger(parameters, epoch=service.current_epoch()),
            registry=ValidatorRegistry(capacity, deactivation_delay),
            owner=owner,
            events=EventLog(max_events),
        )
        self.scheduler = CrankScheduler(self.state, service, address, self.pool)
        self._locked = False
        self._locked_by: Optional[str] = None

    @classmethod
    def from_config(cls, config, bank: NativeBank, service: StakingService,
                    owner: str, address: str = "stakepool") -> 'StakePool':
        """Build an engine from an ``EngineConfig``."""
        config.validate()
        return cls(
            bank,
            service,
            owner,
            address=address,
            parameters=config.to_parameters(),
            capacity=config.registry.capacity,
            deactivation_delay=config.registry.deactivation_delay,
            strict_invariants=config.crank.strict_invariants,
            max_events=config.crank.max_events,
        )

    # =========================================================================
    # GUARDS
    # =========================================================================

    def _acquire_lock(self, entry_point: str) -> None:
        if self._locked:
            raise ReentrantCallError(
                f"{entry_point} called while {self._locked_by} is running"
            )
        self._locked = True
        self._locked_by = entry_point

    def _release_lock(self) -> None:
        self._locked = False
        self._locked_by = None

    def _restore(self, state: EngineState, balances: Dict[str, int]) -> None:
        self.state = state
        self.scheduler.state = state
        self.bank.restore(balances)

    def _only_owner(self, caller: str) -> None:
        if caller != self.state.owner:
            raise UnauthorizedError(f"{caller} is not the owner")

    def _emit(self, event: EngineEvent) -> None:
        self.state.events.emit(event)

    def check_invariants(self) -> None:
        """
        Run the conservation and registry checks when strict mode is on.

        Raises:
            InvariantViolation: If any check fails
        """
        if not self.strict_invariants:
            return
        self.ledger.check_conservation(
            self.bank.balance_of(self.address),
            self.service.principal_of(self.address),
        )
        self.registry.check_integrity()

    @property
    def ledger(self) -> GlobalLedger:
        return self.state.ledger

    @property
    def registry(self) -> ValidatorRegistry:
        return self.state.registry

    @property
    def shares(self) -> ShareLedger:
        return self.state.shares

    @property
    def events(self) -> EventLog:
        return self.state.events

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def epoch(self) -> int:
        return self.ledger.epoch

    # =========================================================================
    # CRANK
    # =========================================================================

    @nonreentrant
    def crank(self, max_steps: Optional[int] = None) -> bool:
        """
        Run settlement for up to ``max_steps`` validators.

        Returns True when the engine has caught up with the staking service.
        """
        done = self.scheduler.crank(max_steps)
        self.check_invariants()
        return done

    # =========================================================================
    # SHARE CONVERSION
    # =========================================================================

    def total_assets(self) -> int:
        return self.ledger.total_assets()

    def total_equity(self, for_withdrawal: bool = False) -> int:
        return self.ledger.total_equity(for_withdrawal)

    def convert_to_shares(self, assets: int) -> int:
        return convert_to_shares(assets, self.total_equity(), self.shares.total_supply)

    def convert_to_assets(self, shares: int) -> int:
        return convert_to_assets(shares, self.total_equity(), self.shares.total_supply)

    def preview_deposit(self, assets: int) -> int:
        require_amount(assets, "assets")
        return self.convert_to_shares(assets)

    def preview_mint(self, shares: int) -> int:
        require_amount(shares, "shares")
        return convert_to_assets(
            shares, self.total_equity(), self.shares.total_supply, round_up=True
        )

    def preview_withdraw(self, assets: int) -> int:
        """Shares burned to receive ``assets`` net of the instant fee."""
        quote = self.pool.quote_withdraw(self.ledger, assets)
        return convert_to_shares(
            quote.gross, self.total_equity(True), self.shares.total_supply, round_up=True
        )

    def preview_redeem(self, shares: int) -> int:
        """Assets received for ``shares`` net of the instant fee."""
        require_amount(shares, "shares")
        gross = convert_to_assets(shares, self.total_equity(True), self.shares.total_supply)
        return self.pool.quote_redeem(self.ledger, gross).net

    # =========================================================================
    # DEPOSITS
    # =========================================================================

    @atomic
    def deposit(self, assets: int, receiver: str, caller: str) -> int:
        """
        Deposit ``assets`` from ``caller`` and mint shares to ``receiver``.

        Raises:
            InvalidAmountError: If ``assets`` is zero or buys no shares
            InsufficientLiquidityError: If the caller cannot pay
        """
        require_amount(assets, "assets")
        if assets == 0:
            raise InvalidAmountError("Cannot deposit zero assets")
        shares = self.preview_deposit(assets)
        if shares == 0:
            raise InvalidAmountError(f"Deposit of {assets} rounds to zero shares")
        self._take_deposit(assets, shares, receiver, caller)
        return shares

    @atomic
    def mint(self, shares: int, receiver: str, caller: str) -> int:
        """Mint exactly ``shares`` to ``receiver``; returns assets charged."""
        require_amount(shares, "shares")
        if shares == 0:
            raise InvalidAmountError("Cannot mint zero shares")
        assets = self.preview_mint(shares)
        self._take_deposit(assets, shares, receiver, caller)
        return assets

    def _take_deposit(self, assets: int, shares: int, receiver: str, caller: str) -> None:
        self.bank.transfer(caller, self.address, assets)
        self.ledger.record_deposit(assets)
        self.shares.mint(receiver, shares)
        self._emit(DepositEvent(
            epoch=self.epoch, caller=caller, receiver=receiver, assets=assets, shares=shares,
        ))
        logger.debug(f"Deposit of {assets} from {caller} minted {shares} shares to {receiver}")

    # =========================================================================
    # INSTANT WITHDRAWALS
    # =========================================================================

    @atomic
    def withdraw(self, assets: int, receiver: str, owner: str, caller: str) -> int:
        """
        Pay ``assets`` to ``receiver`` from the liquidity pool, burning the
        owner's shares for the gross amount; returns shares burned.

        Raises:
            InsufficientLiquidityError: If the pool, the owner's shares or
                the caller's allowance fall short
        """
        require_amount(assets, "assets")
        if assets == 0:
            raise InvalidAmountError("Cannot withdraw zero assets")
        quote = self.pool.quote_withdraw(self.ledger, assets)
        shares = convert_to_shares(
            quote.gross, self.total_equity(True), self.shares.total_supply, round_up=True
        )
        self._pay_instant(quote, shares, receiver, owner, caller)
        return shares

    @atomic
    def redeem(self, shares: int, receiver: str, owner: str, caller: str) -> int:
        """Burn ``shares`` and pay their value net of fee; returns assets paid."""
        require_amount(shares, "shares")
        if shares == 0:
            raise InvalidAmountError("Cannot redeem zero shares")
        gross = convert_to_assets(shares, self.total_equity(True), self.shares.total_supply)
        quote = self.pool.quote_redeem(self.ledger, gross)
        self._pay_instant(quote, shares, receiver, owner, caller)
        return quote.net

    def _pay_instant(self, quote, shares: int, receiver: str, owner: str, caller: str) -> None:
        self.shares.spend_allowance(owner, caller, shares)
        self.shares.burn(owner, shares)
        self.pool.withdraw(self.ledger, quote)
        self._emit(InstantWithdrawEvent(
            epoch=self.epoch,
            caller=caller,
            receiver=receiver,
            owner=owner,
            assets=quote.net,
            shares=shares,
            fee=quote.fee,
        ))
        self.bank.transfer(self.address, receiver, quote.net)

    # =========================================================================
    # TRADITIONAL UNSTAKE
    # =========================================================================

    @atomic
    def request_unstake(self, shares: int, caller: str) -> int:
        """
        Burn ``shares`` now and owe their value at the completion epoch.

        Returns:
            The epoch from which ``complete_unstake`` succeeds
        """
        require_amount(shares, "shares")
        if shares == 0:
            raise InvalidAmountError("Cannot unstake zero shares")
        assets = convert_to_assets(shares, self.total_equity(True), self.shares.total_supply)
        if assets == 0:
            raise InvalidAmountError(f"{shares} shares are worth zero assets")

        self.shares.burn(caller, shares)
        self.ledger.record_redemption(assets)

        completion_epoch = self.epoch + UNSTAKE_COMPLETION_EPOCHS
        request = self.state.unstake_requests.get(caller)
        if request is None:
            request = UnstakeRequest(caller, 0, 0, self.epoch, completion_epoch)
            self.state.unstake_requests[caller] = request
        request.shares += shares
        request.assets += assets
        request.request_epoch = self.epoch
        request.completion_epoch = completion_epoch

        self._emit(UnstakeRequestedEvent(
            epoch=self.epoch,
            owner=caller,
            shares=shares,
            assets=assets,
            completion_epoch=completion_epoch,
        ))
        logger.info(
            f"Unstake of {shares} shares ({assets}) by {caller}, "
            f"completes at epoch {completion_epoch}"
        )
        return completion_epoch

    @atomic
    def complete_unstake(self, caller: str) -> int:
        """
        Pay out a due unstake request; returns the assets paid.

        Raises:
            InvalidAmountError: If the caller has no pending request
            TooEarlyError: Before the completion epoch
            InsufficientLiquidityError: If reserved cash cannot cover it yet
        """
        request = self.state.unstake_requests.get(caller)
        if request is None:
            raise InvalidAmountError(f"{caller} has no pending unstake")
        if self.epoch < request.completion_epoch:
            raise TooEarlyError(self.epoch, request.completion_epoch)

        self.ledger.reserve_for_redemptions()
        if request.assets > self.ledger.free_reserve:
            raise InsufficientLiquidityError(
                f"Reserved cash {self.ledger.free_reserve} cannot cover {request.assets} yet"
            )

        self.ledger.settle_redemption(request.assets)
        del self.state.unstake_requests[caller]
        self._emit(UnstakeCompletedEvent(epoch=self.epoch, owner=caller, assets=request.assets))
        self.bank.transfer(self.address, caller, request.assets)
        return request.assets

    # =========================================================================
    # VALIDATORS
    # =========================================================================

    @atomic
    def add_validator(self, validator_id: int, operator: str, caller: str) -> None:
        self._only_owner(caller)
        record = self.registry.add(validator_id, operator, self.epoch)
        self.ledger.open_validator(validator_id)
        self._emit(ValidatorAddedEvent(
            epoch=self.epoch, validator_id=validator_id, operator=record.operator,
        ))

    @atomic
    def deactivate_validator(self, validator_id: int, caller: str) -> int:
        """Start deactivation; returns the first epoch it may be removed."""
        self._only_owner(caller)
        self.registry.deactivate(validator_id, self.epoch)
        removable = self.registry.removable_epoch(validator_id)
        self._emit(ValidatorDeactivatedEvent(
            epoch=self.epoch, validator_id=validator_id, removable_epoch=removable,
        ))
        return removable

    # =========================================================================
    # REWARDS
    # =========================================================================

    @atomic
    def send_validator_rewards(
        self, validator_id: int, amount: int, fee_rate: int, caller: str
    ) -> Tuple[int, int, int]:
        """
        Accept a validator reward from ``caller``.

        Returns:
            (protocol_fee, commission, validator_payout)
        """
        require_amount(amount)
        if amount == 0:
            raise InvalidAmountError("Cannot send zero rewards")
        if not 0 <= fee_rate <= MAX_PROTOCOL_FEE_RATE:
            raise InvalidAmountError(f"fee_rate {fee_rate} above {MAX_PROTOCOL_FEE_RATE}")
        if not self.registry.is_active(validator_id):
            raise InvalidValidatorError(f"Validator {validator_id} is not active")

        self.bank.transfer(caller, self.address, amount)
        fee, commission, payout = self.ledger.record_validator_rewards(
            validator_id, amount, fee_rate, self.ledger.parameters.boost_commission_rate
        )
        self._emit(ValidatorRewardsEvent(
            epoch=self.epoch,
            validator_id=validator_id,
            amount=amount,
            protocol_fee=fee,
            commission=commission,
            validator_payout=payout,
        ))
        return fee, commission, payout

    @atomic
    def boost_yield(self, amount: int, donor: str) -> None:
        """Donate yield to shareholders; recognized at the next epoch."""
        require_amount(amount)
        if amount == 0:
            raise InvalidAmountError("Cannot boost with zero")
        self.bank.transfer(donor, self.address, amount)
        self.ledger.record_boost(amount)
        self._emit(BoostYieldEvent(epoch=self.epoch, donor=donor, amount=amount))

    # =========================================================================
    # ADMIN
    # =========================================================================

    def _stage(self, caller: str, **changes) -> None:
        self._only_owner(caller)
        self.ledger.stage_parameters(**changes)
        for name, value in changes.items():
            self._emit(ParameterUpdatedEvent(
                epoch=self.epoch, parameter=name, value=value, effective_epoch=self.epoch + 1,
            ))

    @atomic
    def set_target_liquidity_percent(self, percent: int, caller: str) -> None:
        self._stage(caller, target_liquidity_percent=percent)

    @atomic
    def set_fee_curve(self, min_fee: int, mid_fee: int, max_fee: int, kink: int,
                      caller: str) -> None:
        self._stage(
            caller,
            min_fee_rate=min_fee,
            mid_fee_rate=mid_fee,
            max_fee_rate=max_fee,
            fee_kink=kink,
        )

    @atomic
    def set_min_validator_payout(self, amount: int, caller: str) -> None:
        require_amount(amount)
        self._stage(caller, min_validator_payout=amount)

    @atomic
    def set_boost_commission(self, rate: int, caller: str) -> None:
        self._stage(caller, boost_commission_rate=rate)

    @atomic
    def transfer_ownership(self, new_owner: str, caller: str) -> None:
        self._only_owner(caller)
        self.state.owner = new_owner
        logger.info(f"Ownership transferred from {caller} to {new_owner}")

    @atomic
    def approve(self, spender: str, shares: int, caller: str) -> None:
        self.shares.approve(caller, spender, shares)

    def allowance(self, owner: str, spender: str) -> int:
        return self.shares.allowance(owner, spender)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def balance_of(self, owner: str) -> int:
        return self.shares.balance_of(owner)

    def current_liquidity(self) -> int:
        return self.pool.current_liquidity(self.ledger)

    def target_liquidity(self) -> int:
        return self.pool.target_liquidity(self.ledger)

    def current_fee_rate(self) -> int:
        return self.pool.fee_rate(self.ledger)

    def working_capital(self) -> WorkingCapital:
        return copy.copy(self.ledger.working)

    def global_cash_flows(self, offset: int = 0) -> CashFlows:
        """Cash flows ``offset`` epochs back (negative looks at ``next``)."""
        return copy.copy(self.ledger.cash_flows.at(self.epoch - offset))

    def next_validator_to_crank(self) -> Optional[int]:
        return self.scheduler.next_validator()

    def unstake_request(self, owner: str) -> Optional[UnstakeRequest]:
        request = self.state.unstake_requests.get(owner)
        return copy.copy(request) if request is not None else None

    def validator_stats(self, validator_id: int) -> ValidatorStats:
        record = self.registry.get(validator_id)
        if record is None:
            raise InvalidValidatorError(f"Unknown validator {validator_id}")
        ledger = self.ledger.validators.get(validator_id)
        if ledger is None:
            return ValidatorStats(
                validator_id=validator_id,
                operator=record.operator,
                active=False,
                deactivating=False,
                staked=0,
                unstaking=0,
                target_stake=0,
                unpaid_rewards=0,
                rewards_forwarded=0,
                rewards_claimed=0,
                stalled_withdrawals=0,
                last_cranked_epoch=None,
            )
        return ValidatorStats(
            validator_id=validator_id,
            operator=record.operator,
            active=self.registry.is_active(validator_id),
            deactivating=record.is_deactivating,
            staked=ledger.staked,
            unstaking=ledger.unstaking,
            target_stake=ledger.epochs.current.target_stake,
            unpaid_rewards=ledger.unpaid_rewards,
            rewards_forwarded=ledger.stats.rewards_forwarded,
            rewards_claimed=ledger.stats.rewards_claimed,
            stalled_withdrawals=len(ledger.stalled_withdrawals),
            last_cranked_epoch=ledger.last_cranked_epoch,
        )
