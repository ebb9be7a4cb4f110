"""
stakepool TOML Configuration Loader

Loads the ``[stakepool]`` table of a TOML file with environment variable
overrides. Rates are written in basis points in TOML and converted to
``SCALE``-based integers for the engine.

Environment variable mapping:
    [stakepool.registry] capacity          → STAKEPOOL_VALIDATOR_CAPACITY
    [stakepool.liquidity] target_bps       → STAKEPOOL_TARGET_LIQUIDITY_BPS
    [stakepool.crank] max_steps            → STAKEPOOL_CRANK_MAX_STEPS
    [stakepool.crank] max_events           → STAKEPOOL_MAX_EVENTS
    ...
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    BPS,
    DEFAULT_BOOST_COMMISSION_RATE,
    DEFAULT_DEACTIVATION_DELAY_EPOCHS,
    DEFAULT_FEE_KINK,
    DEFAULT_MAX_FEE_RATE,
    DEFAULT_MID_FEE_RATE,
    DEFAULT_MIN_FEE_RATE,
    DEFAULT_MIN_VALIDATOR_PAYOUT,
    DEFAULT_TARGET_LIQUIDITY_PERCENT,
    DEFAULT_VALIDATOR_CAPACITY,
    ONE_UNIT,
    SCALE,
    STAKEPOOL_CONFIG_PATH,
    STAKEPOOL_STRICT_INVARIANTS,
    WITHDRAWAL_SETTLE_OFFSET,
    parse_bool,
)
from ..exceptions import ConfigurationError
from ..ledger.records import PoolParameters
from ..logger import get_logger

logger = get_logger(__name__)


def bps_to_rate(bps: int) -> int:
    return bps * SCALE // BPS


def rate_to_bps(rate: int) -> int:
    return rate * BPS // SCALE


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class RegistryConfig:
    """[stakepool.registry] section."""
    capacity: int = DEFAULT_VALIDATOR_CAPACITY
    deactivation_delay: int = DEFAULT_DEACTIVATION_DELAY_EPOCHS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryConfig":
        return cls(
            capacity=data.get("capacity", DEFAULT_VALIDATOR_CAPACITY),
            deactivation_delay=data.get("deactivation_delay", DEFAULT_DEACTIVATION_DELAY_EPOCHS),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEPOOL_VALIDATOR_CAPACITY"):
            self.capacity = int(v)
        if v := os.environ.get("STAKEPOOL_DEACTIVATION_DELAY"):
            self.deactivation_delay = int(v)

    def validate(self) -> None:
        if self.capacity < 1:
            raise ConfigurationError("registry.capacity must be >= 1")
        if self.deactivation_delay < 0:
            raise ConfigurationError("registry.deactivation_delay must be >= 0")


@dataclass
class LiquidityConfig:
    """[stakepool.liquidity] section."""
    target_bps: int = rate_to_bps(DEFAULT_TARGET_LIQUIDITY_PERCENT)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LiquidityConfig":
        return cls(
            target_bps=data.get("target_bps", rate_to_bps(DEFAULT_TARGET_LIQUIDITY_PERCENT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEPOOL_TARGET_LIQUIDITY_BPS"):
            self.target_bps = int(v)

    def validate(self) -> None:
        if not 0 <= self.target_bps <= BPS:
            raise ConfigurationError("liquidity.target_bps must be within [0, 10000]")


@dataclass
class FeeCurveConfig:
    """[stakepool.fee_curve] section."""
    min_fee_bps: int = rate_to_bps(DEFAULT_MIN_FEE_RATE)
    mid_fee_bps: int = rate_to_bps(DEFAULT_MID_FEE_RATE)
    max_fee_bps: int = rate_to_bps(DEFAULT_MAX_FEE_RATE)
    kink_bps: int = rate_to_bps(DEFAULT_FEE_KINK)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeCurveConfig":
        return cls(
            min_fee_bps=data.get("min_fee_bps", rate_to_bps(DEFAULT_MIN_FEE_RATE)),
            mid_fee_bps=data.get("mid_fee_bps", rate_to_bps(DEFAULT_MID_FEE_RATE)),
            max_fee_bps=data.get("max_fee_bps", rate_to_bps(DEFAULT_MAX_FEE_RATE)),
            kink_bps=data.get("kink_bps", rate_to_bps(DEFAULT_FEE_KINK)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEPOOL_MIN_FEE_BPS"):
            self.min_fee_bps = int(v)
        if v := os.environ.get("STAKEPOOL_MID_FEE_BPS"):
            self.mid_fee_bps = int(v)
        if v := os.environ.get("STAKEPOOL_MAX_FEE_BPS"):
            self.max_fee_bps = int(v)
        if v := os.environ.get("STAKEPOOL_FEE_KINK_BPS"):
            self.kink_bps = int(v)

    def validate(self) -> None:
        if not 0 <= self.min_fee_bps <= self.mid_fee_bps <= self.max_fee_bps < BPS:
            raise ConfigurationError("fee_curve requires 0 <= min <= mid <= max < 10000 bps")
        if not 0 < self.kink_bps < BPS:
            raise ConfigurationError("fee_curve.kink_bps must be within (0, 10000)")


@dataclass
class RewardsConfig:
    """[stakepool.rewards] section."""
    min_validator_payout: int = DEFAULT_MIN_VALIDATOR_PAYOUT
    boost_commission_bps: int = rate_to_bps(DEFAULT_BOOST_COMMISSION_RATE)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewardsConfig":
        return cls(
            min_validator_payout=data.get("min_validator_payout", DEFAULT_MIN_VALIDATOR_PAYOUT),
            boost_commission_bps=data.get(
                "boost_commission_bps", rate_to_bps(DEFAULT_BOOST_COMMISSION_RATE)
            ),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEPOOL_MIN_VALIDATOR_PAYOUT"):
            self.min_validator_payout = int(v)
        if v := os.environ.get("STAKEPOOL_BOOST_COMMISSION_BPS"):
            self.boost_commission_bps = int(v)

    def validate(self) -> None:
        if self.min_validator_payout < 0:
            raise ConfigurationError("rewards.min_validator_payout must be >= 0")
        if not 0 <= self.boost_commission_bps <= BPS:
            raise ConfigurationError("rewards.boost_commission_bps must be within [0, 10000]")


@dataclass
class CrankConfig:
    """[stakepool.crank] section. ``max_steps = 0`` and ``max_events = 0`` mean unbounded."""
    max_steps: Optional[int] = None
    max_events: Optional[int] = None
    strict_invariants: bool = bool(STAKEPOOL_STRICT_INVARIANTS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrankConfig":
        max_steps = data.get("max_steps", 0)
        return cls(
            max_steps=max_steps or None,
            max_events=data.get("max_events", 0) or None,
            strict_invariants=data.get("strict_invariants", bool(STAKEPOOL_STRICT_INVARIANTS)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEPOOL_CRANK_MAX_STEPS"):
            self.max_steps = int(v) or None
        if v := os.environ.get("STAKEPOOL_MAX_EVENTS"):
            self.max_events = int(v) or None
        if v := os.environ.get("STAKEPOOL_STRICT_INVARIANTS"):
            self.strict_invariants = parse_bool(v) is True

    def validate(self) -> None:
        if self.max_steps is not None and self.max_steps < 0:
            raise ConfigurationError("crank.max_steps must be >= 0")
        if self.max_events is not None and self.max_events < 0:
            raise ConfigurationError("crank.max_events must be >= 0")


@dataclass
class SimulatedValidator:
    validator_id: int
    operator: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulatedValidator":
        return cls(validator_id=int(data["id"]), operator=str(data["operator"]))


def _default_validators() -> List[SimulatedValidator]:
    return [
        SimulatedValidator(1, "0x" + "11" * 20),
        SimulatedValidator(2, "0x" + "22" * 20),
        SimulatedValidator(3, "0x" + "33" * 20),
    ]


@dataclass
class SimulationConfig:
    """[stakepool.simulation] section, read by ``stakepool-sim run``."""
    epochs: int = 10
    activation_delay: int = 1
    withdrawal_delay: int = WITHDRAWAL_SETTLE_OFFSET
    deposit_per_epoch: int = 100 * ONE_UNIT
    rewards_per_epoch: int = 2 * ONE_UNIT
    protocol_fee_bps: int = 1_000
    instant_withdraw_per_epoch: int = 5 * ONE_UNIT
    validators: List[SimulatedValidator] = field(default_factory=_default_validators)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationConfig":
        validators = data.get("validators")
        return cls(
            epochs=data.get("epochs", 10),
            activation_delay=data.get("activation_delay", 1),
            withdrawal_delay=data.get("withdrawal_delay", WITHDRAWAL_SETTLE_OFFSET),
            deposit_per_epoch=data.get("deposit_per_epoch", 100 * ONE_UNIT),
            rewards_per_epoch=data.get("rewards_per_epoch", 2 * ONE_UNIT),
            protocol_fee_bps=data.get("protocol_fee_bps", 1_000),
            instant_withdraw_per_epoch=data.get("instant_withdraw_per_epoch", 5 * ONE_UNIT),
            validators=(
                [SimulatedValidator.from_dict(v) for v in validators]
                if validators is not None else _default_validators()
            ),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEPOOL_SIM_EPOCHS"):
            self.epochs = int(v)

    def validate(self) -> None:
        if self.epochs < 0:
            raise ConfigurationError("simulation.epochs must be >= 0")
        if self.activation_delay < 0 or self.withdrawal_delay < 0:
            raise ConfigurationError("simulation delays must be >= 0")
        if not 0 <= self.protocol_fee_bps <= BPS // 2:
            raise ConfigurationError("simulation.protocol_fee_bps must be within [0, 5000]")
        ids = [v.validator_id for v in self.validators]
        if len(ids) != len(set(ids)):
            raise ConfigurationError("simulation.validators has duplicate ids")


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """The whole ``[stakepool]`` table."""
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    liquidity: LiquidityConfig = field(default_factory=LiquidityConfig)
    fee_curve: FeeCurveConfig = field(default_factory=FeeCurveConfig)
    rewards: RewardsConfig = field(default_factory=RewardsConfig)
    crank: CrankConfig = field(default_factory=CrankConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        return cls(
            registry=RegistryConfig.from_dict(data.get("registry", {})),
            liquidity=LiquidityConfig.from_dict(data.get("liquidity", {})),
            fee_curve=FeeCurveConfig.from_dict(data.get("fee_curve", {})),
            rewards=RewardsConfig.from_dict(data.get("rewards", {})),
            crank=CrankConfig.from_dict(data.get("crank", {})),
            simulation=SimulationConfig.from_dict(data.get("simulation", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        """
        Load configuration from the ``[stakepool]`` table of a TOML file.

        A missing file yields the defaults (with env overrides).
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            raw = tomli.load(f)

        cfg = cls.from_dict(raw.get("stakepool", {}))
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.registry.apply_env()
        self.liquidity.apply_env()
        self.fee_curve.apply_env()
        self.rewards.apply_env()
        self.crank.apply_env()
        self.simulation.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all sections.

        Raises:
            ConfigurationError: on invalid config
        """
        self.registry.validate()
        self.liquidity.validate()
        self.fee_curve.validate()
        self.rewards.validate()
        self.crank.validate()
        self.simulation.validate()
        self.to_parameters()
        return True

    def to_parameters(self) -> PoolParameters:
        return PoolParameters(
            target_liquidity_percent=bps_to_rate(self.liquidity.target_bps),
            min_fee_rate=bps_to_rate(self.fee_curve.min_fee_bps),
            mid_fee_rate=bps_to_rate(self.fee_curve.mid_fee_bps),
            max_fee_rate=bps_to_rate(self.fee_curve.max_fee_bps),
            fee_kink=bps_to_rate(self.fee_curve.kink_bps),
            min_validator_payout=self.rewards.min_validator_payout,
            boost_commission_rate=bps_to_rate(self.rewards.boost_commission_bps),
        ).validate()

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "registry": {
                "capacity": self.registry.capacity,
                "deactivation_delay": self.registry.deactivation_delay,
            },
            "liquidity": {
                "target_bps": self.liquidity.target_bps,
            },
            "fee_curve": {
                "min_fee_bps": self.fee_curve.min_fee_bps,
                "mid_fee_bps": self.fee_curve.mid_fee_bps,
                "max_fee_bps": self.fee_curve.max_fee_bps,
                "kink_bps": self.fee_curve.kink_bps,
            },
            "rewards": {
                "min_validator_payout": self.rewards.min_validator_payout,
                "boost_commission_bps": self.rewards.boost_commission_bps,
            },
            "crank": {
                "max_steps": self.crank.max_steps or 0,
                "max_events": self.crank.max_events or 0,
                "strict_invariants": self.crank.strict_invariants,
            },
            "simulation": {
                "epochs": self.simulation.epochs,
                "activation_delay": self.simulation.activation_delay,
                "withdrawal_delay": self.simulation.withdrawal_delay,
                "deposit_per_epoch": self.simulation.deposit_per_epoch,
                "rewards_per_epoch": self.simulation.rewards_per_epoch,
                "protocol_fee_bps": self.simulation.protocol_fee_bps,
                "instant_withdraw_per_epoch": self.simulation.instant_withdraw_per_epoch,
                "validators": [
                    {"id": v.validator_id, "operator": v.operator}
                    for v in self.simulation.validators
                ],
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    Resolution order:
        1. Explicit *path* argument
        2. STAKEPOOL_CONFIG env var
        3. STAKEPOOL_CONFIG_PATH from .env (default ./stakepool.toml)
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("STAKEPOOL_CONFIG", str(STAKEPOOL_CONFIG_PATH))

    cfg = EngineConfig.from_file(path)
    cfg.validate()
    return cfg
