"""
core/sizing.py
Kelly criterion position sizing for binary prediction-market contracts.

A YES contract priced at p_market costs p_market and pays $1.00, so the
full-Kelly fraction reduces to (p_true - p_market) / (1 - p_market).
We bet a fraction of that (quarter-Kelly by default), cap it at a share of
bankroll, and then apply a liquidity ceiling on the contract count.

Everything here is pure: identical inputs give identical outputs.
"""

import math
from dataclasses import dataclass

from core.constants import (
    DEFAULT_MAX_CONTRACTS,
    HARD_MAX_CONTRACTS,
    LIQUIDITY_VOLUME_FRACTION,
)


@dataclass(frozen=True)
class SizingResult:
    """Output of position_size()."""
    contracts: int
    fraction: float           # fraction of bankroll allocated
    edge: float               # p_true - p_market
    kelly_full: float
    dollar_risk: float        # contracts * cost per contract
    liquidity_capped: bool


NO_POSITION = SizingResult(
    contracts=0,
    fraction=0.0,
    edge=0.0,
    kelly_full=0.0,
    dollar_risk=0.0,
    liquidity_capped=False,
)


def _validate_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def kelly_fraction(p_true: float, p_market: float) -> float:
    """
    Full-Kelly fraction for a YES contract bought at p_market.

    Returns 0.0 when there is no edge.
    """
    _validate_probability("p_true", p_true)
    _validate_probability("p_market", p_market)
    if p_true <= p_market or p_market >= 1.0:
        return 0.0
    return (p_true - p_market) / (1.0 - p_market)


def fractional_kelly(p_true: float, p_market: float, multiplier: float = 0.25) -> float:
    """Kelly scaled down by `multiplier` (quarter-Kelly by default)."""
    if multiplier <= 0.0:
        raise ValueError(f"multiplier must be positive, got {multiplier}")
    return kelly_fraction(p_true, p_market) * multiplier


def liquidity_ceiling(volume: int | None = None, hard_max: int = HARD_MAX_CONTRACTS) -> int:
    """
    Max contracts the market can absorb.

    min(hard cap, 10% of daily volume) when volume is known, else the
    default cap. Never below 1.
    """
    if volume is None:
        volume_cap = DEFAULT_MAX_CONTRACTS
    else:
        volume_cap = math.floor(volume * LIQUIDITY_VOLUME_FRACTION)
    return min(hard_max, max(1, volume_cap))


def position_size(
    bankroll: float,
    p_true: float,
    p_market: float,
    max_fraction: float = 0.05,
    volume: int | None = None,
    kelly_multiplier: float = 0.25,
    hard_max: int = HARD_MAX_CONTRACTS,
) -> SizingResult:
    """
    Size a binary contract position.

    Parameters
    ----------
    bankroll : float
        Current balance in dollars.
    p_true : float
        Our estimated probability of YES (0-1).
    p_market : float
        Market-implied probability, i.e. the per-contract cost (0-1).
    max_fraction : float
        Hard cap on the fraction of bankroll at risk.
    volume : int | None
        Daily contract volume, for the liquidity ceiling.
    kelly_multiplier : float
        Fraction of full Kelly to bet.
    hard_max : int
        Absolute contract cap.

    Returns
    -------
    SizingResult
        contracts == 0 when there is no edge or no bankroll.
    """
    f = fractional_kelly(p_true, p_market, kelly_multiplier)
    if f <= 0.0 or bankroll <= 0.0 or p_market <= 0.0:
        return NO_POSITION

    fraction = min(f, max_fraction)
    dollar_amount = bankroll * fraction
    # epsilon keeps 50 / 0.10 from flooring to 499
    kelly_contracts = max(1, math.floor(dollar_amount / p_market + 1e-9))

    max_contracts = liquidity_ceiling(volume, hard_max)
    contracts = min(kelly_contracts, max_contracts)

    return SizingResult(
        contracts=contracts,
        fraction=fraction,
        edge=p_true - p_market,
        kelly_full=kelly_fraction(p_true, p_market),
        dollar_risk=round(contracts * p_market, 2),
        liquidity_capped=contracts < kelly_contracts,
    )
