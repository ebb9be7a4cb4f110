"""
stakepool Configuration

Loads the [stakepool] table of a TOML file.
Environment variables override TOML values.
"""

from .loader import (
    EngineConfig,
    RegistryConfig,
    LiquidityConfig,
    FeeCurveConfig,
    RewardsConfig,
    CrankConfig,
    SimulationConfig,
    SimulatedValidator,
    bps_to_rate,
    rate_to_bps,
    load_config,
)

__all__ = [
    "EngineConfig",
    "RegistryConfig",
    "LiquidityConfig",
    "FeeCurveConfig",
    "RewardsConfig",
    "CrankConfig",
    "SimulationConfig",
    "SimulatedValidator",
    "bps_to_rate",
    "rate_to_bps",
    "load_config",
]
