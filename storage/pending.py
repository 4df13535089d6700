"""
storage/pending.py
Pending trade recommendations awaiting approval before execution.

State machine:
    pending  -> approved | rejected | expired
    approved -> executed

Expiry is lazy: any read of a `pending` record past its expires_at
rewrites it to `expired` and persists immediately. No background sweep.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import TypeAdapter

from core.constants import PENDING_EXPIRY_MINUTES
from core.errors import InvalidStateError, RecordNotFoundError
from storage.models import (
    PendingRecommendation,
    PendingStatus,
    PositionSide,
    Strategy,
)

logger = logging.getLogger(__name__)

_RECORDS = TypeAdapter(list[PendingRecommendation])

# Targets reachable from `pending` via update_status()
_FROM_PENDING = frozenset({
    PendingStatus.APPROVED,
    PendingStatus.REJECTED,
    PendingStatus.EXPIRED,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_expired(rec: PendingRecommendation, now: datetime) -> bool:
    """True if a still-pending record has passed its expiry time."""
    return rec.status == PendingStatus.PENDING and rec.expires_at <= now


class PendingStore:
    """JSON-file store of PendingRecommendation records."""

    def __init__(self, path: str | Path, expiry_minutes: int = PENDING_EXPIRY_MINUTES) -> None:
        self._path = Path(path)
        self._ttl = timedelta(minutes=expiry_minutes)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[PendingRecommendation]:
        if not self._path.exists():
            return []
        return _RECORDS.validate_json(self._path.read_bytes())

    def _save(self, records: list[PendingRecommendation]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(_RECORDS.dump_json(records, indent=2))
        tmp.replace(self._path)

    def _load_expiring(self, now: datetime) -> list[PendingRecommendation]:
        """Load and lazily expire; persists only if something changed."""
        records = self._load()
        changed = False
        for rec in records:
            if is_expired(rec, now):
                rec.status = PendingStatus.EXPIRED
                rec.updated_at = now
                changed = True
                logger.info("Pending recommendation %s expired", rec.id)
        if changed:
            self._save(records)
        return records

    @staticmethod
    def _find(records: list[PendingRecommendation], rec_id: str) -> PendingRecommendation:
        for rec in records:
            if rec.id == rec_id:
                return rec
        raise RecordNotFoundError(f"Trade {rec_id} not found")

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def add(
        self,
        contract: str,
        side: PositionSide | str,
        qty: int,
        price: float,
        edge: float = 0.0,
        reasoning: str = "",
        strategy: Strategy | str = Strategy.WEATHER,
        station: str | None = None,
        now: datetime | None = None,
    ) -> PendingRecommendation:
        """Store a new recommendation, expiring PENDING_EXPIRY_MINUTES from now."""
        now = now or _utcnow()
        records = self._load()
        existing = {r.id for r in records}

        rec_id = secrets.token_hex(4)
        while rec_id in existing:
            rec_id = secrets.token_hex(4)

        rec = PendingRecommendation(
            id=rec_id,
            strategy=Strategy(strategy),
            station=station,
            contract=contract,
            side=PositionSide(side.lower()) if not isinstance(side, PositionSide) else side,
            qty=qty,
            price=price,
            edge=edge,
            reasoning=reasoning,
            created_at=now,
            expires_at=now + self._ttl,
        )
        records.append(rec)
        self._save(records)
        logger.info(
            "Pending recommendation %s: %s %dx %s @ %.2f",
            rec.id, rec.side.value, rec.qty, rec.contract, rec.price,
        )
        return rec

    def list_pending(self, now: datetime | None = None) -> list[PendingRecommendation]:
        """All still-pending (non-expired) recommendations."""
        records = self._load_expiring(now or _utcnow())
        return [r for r in records if r.status == PendingStatus.PENDING]

    def list_all(self, now: datetime | None = None) -> list[PendingRecommendation]:
        return self._load_expiring(now or _utcnow())

    def find(self, rec_id: str, now: datetime | None = None) -> PendingRecommendation:
        return self._find(self._load_expiring(now or _utcnow()), rec_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_status(
        self,
        rec_id: str,
        status: PendingStatus | str,
        now: datetime | None = None,
    ) -> PendingRecommendation:
        """
        Move a `pending` record to approved / rejected / expired.

        Raises InvalidStateError without touching the record if it is not
        currently pending (including one that just expired on read).
        """
        now = now or _utcnow()
        status = PendingStatus(status)
        if status not in _FROM_PENDING:
            raise InvalidStateError(f"Cannot move a pending trade to {status.value}")

        records = self._load_expiring(now)
        rec = self._find(records, rec_id)
        if rec.status != PendingStatus.PENDING:
            raise InvalidStateError(f"Trade {rec_id} is {rec.status.value}, not pending")

        rec.status = status
        rec.updated_at = now
        self._save(records)
        logger.info("Pending recommendation %s -> %s", rec_id, status.value)
        return rec

    def mark_executed(
        self,
        rec_id: str,
        fill: dict | None = None,
        now: datetime | None = None,
    ) -> PendingRecommendation:
        """Attach fill details to an approved record and mark it executed."""
        now = now or _utcnow()
        records = self._load_expiring(now)
        rec = self._find(records, rec_id)
        if rec.status != PendingStatus.APPROVED:
            raise InvalidStateError(f"Trade {rec_id} is {rec.status.value}, must be approved")

        rec.status = PendingStatus.EXECUTED
        rec.updated_at = now
        rec.fill = dict(fill or {})
        self._save(records)
        logger.info("Pending recommendation %s executed", rec_id)
        return rec
