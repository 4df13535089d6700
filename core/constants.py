"""
core/constants.py
Hard-coded safety rails and system constants.
These values are NOT configurable via the config document — they are the law.
"""

from typing import Final

# ---------------------------------------------------------------------------
# Contract economics
# ---------------------------------------------------------------------------
CONTRACT_FACE_VALUE: Final[float] = 1.00        # Binary contract pays $1.00 on a win
INITIAL_BALANCE: Final[float] = 1000.0          # Paper ledger starting bankroll

# ---------------------------------------------------------------------------
# Position sizing
# ---------------------------------------------------------------------------
HARD_MAX_CONTRACTS: Final[int] = 20             # Absolute cap on contracts per trade
DEFAULT_MAX_CONTRACTS: Final[int] = 20          # Cap when volume data is unavailable
LIQUIDITY_VOLUME_FRACTION: Final[float] = 0.10  # Never take more than 10% of daily volume

# ---------------------------------------------------------------------------
# Pending recommendations
# ---------------------------------------------------------------------------
PENDING_EXPIRY_MINUTES: Final[int] = 30

# ---------------------------------------------------------------------------
# Station uncertainty model
# ---------------------------------------------------------------------------
DEFAULT_SIGMA_F: Final[float] = 3.5
WINTER_MONTHS: Final[frozenset[int]] = frozenset({11, 12, 1, 2, 3})
WINTER_SIGMA_BUMP_F: Final[float] = 0.5
SIGMA_PRIOR_WEIGHT: Final[int] = 30
SIGMA_MIN_OBSERVATIONS: Final[int] = 5
MAE_TO_SIGMA: Final[float] = 1.253              # sqrt(pi/2) for a normal error
TRADEABLE_TIERS: Final[frozenset[str]] = frozenset({"A", "B"})

# ---------------------------------------------------------------------------
# History side channel
# ---------------------------------------------------------------------------
HISTORY_RECORD_VERSION: Final[int] = 1
HISTORY_KINDS: Final[tuple[str, ...]] = (
    "forecasts", "observations", "markets", "decisions", "trades", "executions",
)

# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------
SYSTEM_VERSION: Final[str] = "v1.0-guarded-ledger"
