"""
storage/history.py
Append-only JSONL history: forecasts, observations, markets, decisions,
trades and executor attempts.

History is a best-effort side channel. A failed write must never abort a
trading decision, so every error is handed to the `on_error` hook and
swallowed here.
"""

import json
import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from core.constants import HISTORY_KINDS, HISTORY_RECORD_VERSION

logger = logging.getLogger(__name__)

ErrorHook = Callable[[str, Exception], None]


def _log_history_error(kind: str, exc: Exception) -> None:
    logger.warning("History write to %s failed: %s", kind, exc)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _record_date(record: dict) -> str | None:
    if record.get("date"):
        return str(record["date"])
    ts = record.get("timestamp")
    return str(ts)[:10] if ts else None


class HistoryLog:
    """JSONL appender/reader rooted at <data_dir>/history."""

    def __init__(self, directory: str | Path, on_error: ErrorHook | None = None) -> None:
        self._dir = Path(directory)
        self._on_error = on_error or _log_history_error

    def _path(self, kind: str) -> Path:
        name = kind if kind.endswith(".jsonl") else f"{kind}.jsonl"
        return self._dir / name

    def append(self, kind: str, data: dict[str, Any]) -> bool:
        """Append one versioned record. Returns False if the write failed."""
        record = {
            "v": HISTORY_RECORD_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            line = json.dumps(record, default=str)
            with self._path(kind).open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            self._on_error(kind, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Typed appenders
    # ------------------------------------------------------------------

    def append_decision(
        self,
        station: str,
        action: str,
        reasons: list[str],
        net_edge: float | None = None,
    ) -> bool:
        return self.append("decisions", {
            "date": _utc_today().isoformat(),
            "station": station,
            "action": action,
            "guards": reasons,
            "net_edge": net_edge,
        })

    def append_trade(self, data: dict[str, Any]) -> bool:
        return self.append("trades", {
            "date": data.get("date") or _utc_today().isoformat(),
            "station": data.get("station"),
            "contract": data.get("contract"),
            "side": data.get("side"),
            "qty": data.get("qty"),
            "price": data.get("price"),
            "expected_edge": data.get("expected_edge"),
            "market_sigma": data.get("market_sigma"),
            "our_sigma": data.get("our_sigma"),
        })

    def append_observation(
        self,
        station: str,
        actual: float,
        forecast_error: float | None,
        on: date | None = None,
    ) -> bool:
        return self.append("observations", {
            "date": (on or _utc_today()).isoformat(),
            "station": station,
            "actual": actual,
            "forecast_error": forecast_error,
        })

    def append_execution(self, entry: dict[str, Any]) -> bool:
        return self.append("executions", entry)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def read(
        self,
        kind: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        """Read every record of a kind, optionally filtered by YYYY-MM-DD range."""
        path = self._path(kind)
        if not path.exists():
            return []

        records = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt history line in %s", path.name)

        if start_date or end_date:
            filtered = []
            for r in records:
                d = _record_date(r)
                if d is not None:
                    if start_date and d < start_date:
                        continue
                    if end_date and d > end_date:
                        continue
                filtered.append(r)
            records = filtered
        return records

    def summary(self) -> dict[str, dict]:
        """Record count, date range and stations seen per history kind."""
        out: dict[str, dict] = {}
        for kind in HISTORY_KINDS:
            data = self.read(kind)
            dates = sorted(d for d in (_record_date(r) for r in data) if d)
            entry: dict[str, Any] = {
                "total_records": len(data),
                "date_range": {"start": dates[0], "end": dates[-1]} if dates else None,
            }
            if kind in ("forecasts", "observations", "markets", "decisions"):
                entry["stations"] = sorted({r["station"] for r in data if r.get("station")})
            out[kind] = entry
        return out
