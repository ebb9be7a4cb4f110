"""
Shared fixtures for the stakepool test suite.
"""

import pytest

from stakepool.bank import NativeBank
from stakepool.constants import ONE_UNIT
from stakepool.engine import StakePool
from stakepool.staking import InMemoryStakingService

U = ONE_UNIT

OWNER = "owner"
ALICE = "alice"
BOB = "bob"
REWARDER = "rewarder"

OP1 = "0x" + "11" * 20
OP2 = "0x" + "22" * 20
OP3 = "0x" + "33" * 20


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def bank():
    bank = NativeBank()
    bank.mint(ALICE, 10_000 * U)
    bank.mint(BOB, 10_000 * U)
    bank.mint(REWARDER, 10_000 * U)
    return bank


@pytest.fixture
def service(bank):
    return InMemoryStakingService(bank)


@pytest.fixture
def engine(bank, service):
    return StakePool(bank, service, OWNER)


@pytest.fixture
def advance():
    """Advance the staking service and crank the engine until caught up."""
    def _advance(engine, service, epochs=1, max_steps=None):
        for _ in range(epochs):
            service.advance_epoch()
            while not engine.crank(max_steps):
                pass
        return engine.epoch
    return _advance


@pytest.fixture
def staked_engine(engine, service, advance):
    """Two validators, 1000 units deposited by Alice and cranked into epoch 1."""
    engine.add_validator(1, OP1, OWNER)
    engine.add_validator(2, OP2, OWNER)
    engine.deposit(1_000 * U, ALICE, ALICE)
    advance(engine, service)
    return engine
