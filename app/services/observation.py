"""
app/services/observation.py
Observation feed — the realized outcome value each station settles on.

The settlement engine only depends on the ObservationFeed protocol. The
NWS implementation fetches a day's ASOS observations and reports the
daily high in °F.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

NWS_BASE_URL = "https://api.weather.gov"


@dataclass(frozen=True)
class Observation:
    """Realized values for one station and date."""
    station: str
    date: date
    value: float                 # the settlement value (daily high, °F)
    low: float | None = None
    count: int = 0


class ObservationFeed(Protocol):
    async def fetch(self, station: str, on: date) -> Observation | None:
        """Return the realized observation, or None if none is available."""
        ...


def _c_to_f(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def _temperature(feature: dict) -> float | None:
    props = feature.get("properties") or {}
    return (props.get("temperature") or {}).get("value")


class NwsObservationFeed:
    """api.weather.gov station observations."""

    def __init__(
        self,
        station_ids: dict[str, str],
        user_agent: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        # settlement station -> NWS observation station id
        self._station_ids = station_ids
        self._client = http_client or httpx.AsyncClient(
            timeout=15.0, headers={"User-Agent": user_agent},
        )

    async def fetch(self, station: str, on: date) -> Observation | None:
        obs_station = self._station_ids.get(station, station)
        # Local-day highs can land after 00Z, so read into the next morning
        params = {
            "start": f"{on.isoformat()}T00:00:00Z",
            "end": f"{(on + timedelta(days=1)).isoformat()}T06:00:00Z",
        }
        resp = await self._client.get(
            f"{NWS_BASE_URL}/stations/{obs_station}/observations", params=params,
        )
        resp.raise_for_status()

        features = resp.json().get("features", [])
        temps = [t for t in (_temperature(f) for f in features) if t is not None]
        if not temps:
            return None

        return Observation(
            station=station,
            date=on,
            value=round(_c_to_f(max(temps)), 1),
            low=round(_c_to_f(min(temps)), 1),
            count=len(temps),
        )

    async def close(self) -> None:
        await self._client.aclose()
