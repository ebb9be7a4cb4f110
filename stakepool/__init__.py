"""
stakepool Pooled-Staking Engine

Core imports are lazily loaded so that importing a submodule does not pull
in the whole engine. For direct module access, import from submodules:

    from stakepool.engine import StakePool
    from stakepool.staking import InMemoryStakingService
    from stakepool.exceptions import InvariantViolation
"""

# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'StakePool':
        from .engine import StakePool
        return StakePool
    elif name == 'NativeBank':
        from .bank import NativeBank
        return NativeBank
    elif name == 'InMemoryStakingService':
        from .staking import InMemoryStakingService
        return InMemoryStakingService
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'stakepool' has no attribute {name!r}")

__all__ = ['StakePool', 'NativeBank', 'InMemoryStakingService', 'load_config']
