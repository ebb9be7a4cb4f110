"""
stakepool Constants

This module consolidates the global constants and environment configuration
used throughout the engine. Constants are organized by category for easy
reference and maintenance.
"""
import ast
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

ENGINE_DEFAULTS = {
    'STAKEPOOL_CONFIG_PATH':           'stakepool.toml',
    'STAKEPOOL_STRICT_INVARIANTS':     'True',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: CHANGING THE FIXED-POINT OR WINDOW CONSTANTS BELOW CHANGES THE MEANING
# OF EVERY STORED RATE AND EPOCH RECORD. ONLY CHANGE THEM FOR A FRESH LEDGER.

# ==================================================================================
# FIXED-POINT ARITHMETIC
# ==================================================================================
SCALE = 10 ** 18  # 1.0 in fixed-point rates
BPS = 10_000      # basis points per unit
ONE_UNIT = 10 ** 18  # smallest units per whole asset

# Virtual offsets used by share conversion (inflation-attack guard)
VIRTUAL_SHARES = 1
VIRTUAL_ASSETS = 1


# ==================================================================================
# EPOCH WINDOW
# ==================================================================================
# Slots kept per record: prev(3), prev(2), prev(1), current, next
EPOCH_WINDOW_SIZE = 5
MAX_LOOKBACK = 3

# Withdrawals issued in epoch E are settled while cranking E + this offset
WITHDRAWAL_SETTLE_OFFSET = 2
# Extra epochs granted to a withdrawal delayed across an epoch boundary
BOUNDARY_GRACE_EPOCHS = 1

# Epochs between request_unstake and complete_unstake:
# one global pass to order the undelegation, the settle offset, the boundary
# grace, and one global pass to reserve the returned cash.
UNSTAKE_COMPLETION_EPOCHS = 1 + WITHDRAWAL_SETTLE_OFFSET + BOUNDARY_GRACE_EPOCHS + 1


# ==================================================================================
# VALIDATOR REGISTRY
# ==================================================================================
FIRST_SENTINEL = 0
DEFAULT_VALIDATOR_CAPACITY = 1024
DEFAULT_DEACTIVATION_DELAY_EPOCHS = 5


# ==================================================================================
# LIQUIDITY AND FEES
# ==================================================================================
DEFAULT_TARGET_LIQUIDITY_PERCENT = SCALE // 10       # 10% of equity
DEFAULT_MIN_FEE_RATE = 5 * SCALE // BPS              # 0.05%
DEFAULT_MID_FEE_RATE = 30 * SCALE // BPS             # 0.30%
DEFAULT_MAX_FEE_RATE = 300 * SCALE // BPS            # 3.00%
DEFAULT_FEE_KINK = SCALE // 2                        # 50% utilization


# ==================================================================================
# REWARDS
# ==================================================================================
DEFAULT_MIN_VALIDATOR_PAYOUT = ONE_UNIT              # 1 whole asset
DEFAULT_BOOST_COMMISSION_RATE = 5 * SCALE // 100     # 5%
MAX_PROTOCOL_FEE_RATE = SCALE // 2                   # 50%


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = ENGINE_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
