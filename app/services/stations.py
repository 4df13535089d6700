"""
app/services/stations.py
Settlement-station reference data: tradeable whitelist, climatological
normals, forecast uncertainty (sigma) and correlation groups.

Station records live in a JSON document keyed by station id. The registry
is built once at startup; the correlation map is a plain adjacency dict
(station -> set of correlated stations) derived from group membership.
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from core.constants import (
    DEFAULT_SIGMA_F,
    MAE_TO_SIGMA,
    SIGMA_MIN_OBSERVATIONS,
    SIGMA_PRIOR_WEIGHT,
    TRADEABLE_TIERS,
    WINTER_MONTHS,
    WINTER_SIGMA_BUMP_F,
)
from core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class StationInfo(BaseModel):
    """One settlement station record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    city: str | None = None
    kalshi_city: str | None = None
    tier: str = "C"
    enabled: bool = True
    observation_station: str | None = None
    base_sigma: float | None = None
    running_mae: float | None = Field(default=None, alias="runningMAE")
    running_n: int | None = None
    # month (1-12) -> normal daily high, in the station's unit
    clim_normal_high: dict[int, float] = Field(default_factory=dict)
    correlation_group: str | None = None
    # months the sigma model was fit on; None -> fall back to guard config
    calibration_months: tuple[int, ...] | None = None


def bayesian_sigma_update(base_sigma: float, observed_mae: float | None, n_obs: int | None) -> float:
    """Shrink base sigma toward the observed error as observations accumulate."""
    if not observed_mae or not n_obs or n_obs < SIGMA_MIN_OBSERVATIONS:
        return base_sigma
    observed_sigma = observed_mae * MAE_TO_SIGMA
    posterior = (SIGMA_PRIOR_WEIGHT * base_sigma + n_obs * observed_sigma) / (SIGMA_PRIOR_WEIGHT + n_obs)
    return round(posterior, 2)


def build_correlation_map(stations: dict[str, StationInfo]) -> dict[str, frozenset[str]]:
    """station -> every other station in its correlation group."""
    groups: dict[str, set[str]] = {}
    for station_id, info in stations.items():
        if info.correlation_group:
            groups.setdefault(info.correlation_group, set()).add(station_id)

    adjacency: dict[str, frozenset[str]] = {}
    for members in groups.values():
        for station_id in members:
            adjacency[station_id] = frozenset(members - {station_id})
    return adjacency


class StationRegistry:
    """Immutable view over the station reference document."""

    def __init__(self, stations: dict[str, StationInfo]) -> None:
        self._stations = dict(stations)
        self._tradeable = frozenset(
            s for s, info in self._stations.items()
            if info.enabled and info.tier in TRADEABLE_TIERS
        )
        self._correlated = build_correlation_map(self._stations)

    @classmethod
    def from_dict(cls, raw: dict[str, dict]) -> "StationRegistry":
        try:
            stations = {k.upper(): StationInfo.model_validate(v) for k, v in raw.items()}
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid station record: {exc}") from exc
        return cls(stations)

    @classmethod
    def from_json(cls, path: str | Path) -> "StationRegistry":
        path = Path(path)
        if not path.exists():
            logger.warning("Station file %s not found; no stations are tradeable", path)
            return cls({})
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid station file {path}: {exc}") from exc
        return cls.from_dict(raw)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __contains__(self, station: str) -> bool:
        return station in self._stations

    def get(self, station: str) -> StationInfo | None:
        return self._stations.get(station)

    @property
    def station_ids(self) -> list[str]:
        return sorted(self._stations)

    @property
    def tradeable(self) -> frozenset[str]:
        return self._tradeable

    def is_tradeable(self, station: str) -> bool:
        return station in self._tradeable

    def correlated_with(self, station: str) -> frozenset[str]:
        return self._correlated.get(station, frozenset())

    def are_correlated(self, a: str, b: str) -> bool:
        return b in self.correlated_with(a)

    def clim_normal(self, station: str, month: int) -> float | None:
        info = self._stations.get(station)
        if info is None:
            return None
        return info.clim_normal_high.get(month)

    def calibration_months(self, station: str) -> tuple[int, ...] | None:
        info = self._stations.get(station)
        return info.calibration_months if info else None

    def effective_sigma(self, station: str, month: int) -> float:
        """Forecast sigma for a station and month (same-day horizon)."""
        info = self._stations.get(station)
        if info is None:
            return DEFAULT_SIGMA_F

        sigma = info.base_sigma or DEFAULT_SIGMA_F
        sigma = bayesian_sigma_update(sigma, info.running_mae, info.running_n)
        if month in WINTER_MONTHS:
            sigma += WINTER_SIGMA_BUMP_F
        return round(sigma, 1)

    def resolve(self, arg: str | None) -> str | None:
        """Resolve a station id or city code to a station id."""
        if not arg:
            return None
        key = arg.upper()
        if key in self._stations:
            return key
        for station_id, info in self._stations.items():
            if key in (info.city, info.kalshi_city):
                return station_id
        return None
