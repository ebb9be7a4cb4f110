"""
stakepool Exceptions

Custom exception classes for the staking engine.
"""


class StakePoolException(Exception):
    """Base exception for stakepool."""
    pass


class InvariantViolation(StakePoolException):
    """Ledger conservation or structural invariant failed. Never recoverable."""
    pass


class InvalidValidatorError(StakePoolException):
    """Unknown validator, duplicate operator, or validator not fully removed."""
    pass


class InsufficientLiquidityError(StakePoolException):
    """Requested amount exceeds available liquidity, shares, or allowance."""
    pass


class TooEarlyError(StakePoolException):
    """Operation attempted before the epoch it becomes available."""
    def __init__(self, current_epoch: int, available_epoch: int):
        self.current_epoch = current_epoch
        self.available_epoch = available_epoch
        super().__init__(
            f"Too early: current epoch {current_epoch}, available at epoch {available_epoch}"
        )


class ReentrantCallError(StakePoolException):
    """Nested call into a state-mutating entry point."""
    pass


class UnauthorizedError(StakePoolException):
    """Owner-gated call from a non-owner."""
    pass


class InvalidAmountError(StakePoolException):
    """Amount is zero, negative, or rounds to zero."""
    pass


class ConfigurationError(StakePoolException):
    """Configuration error."""
    pass


class StakingServiceError(StakePoolException):
    """The external staking service rejected a request."""
    pass
