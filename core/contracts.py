"""
core/contracts.py
Parse the settlement terms encoded in a contract identifier.

Kalshi temperature tickers end in either a threshold (-T52) or a bracket
(-B52.5) and usually carry the event date (KXHIGHNY-26FEB10-T52).
"""

import math
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum

_THRESHOLD_RE = re.compile(r"-T(\d+(?:\.\d+)?)$")
_BRACKET_RE = re.compile(r"-B(\d+(?:\.\d+)?)$")
_DATE_RE = re.compile(r"-(\d{2})([A-Z]{3})(\d{2})(?:-|$)")

_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}


class ContractKind(str, Enum):
    THRESHOLD = "threshold"
    BRACKET = "bracket"


@dataclass(frozen=True)
class ContractTerms:
    """What a contract pays out on."""
    kind: ContractKind
    strike: float
    event_date: date | None = None

    @property
    def bracket_range(self) -> tuple[float, float]:
        """Half-open [lo, hi) range for a bracket contract."""
        lo = math.floor(self.strike)
        hi = math.ceil(self.strike) + (1 if self.strike == lo else 0)
        return float(lo), float(hi)

    def yes_wins(self, observed: float) -> bool:
        """True if the YES side of this contract wins for the observed value."""
        if self.kind == ContractKind.THRESHOLD:
            return observed >= self.strike
        lo, hi = self.bracket_range
        return lo <= observed < hi


def parse_event_date(contract: str) -> date | None:
    """Extract the YYMONDD event date segment, if present and valid."""
    match = _DATE_RE.search(contract.upper())
    if not match:
        return None
    yy, mon, dd = match.groups()
    month = _MONTHS.get(mon)
    if month is None:
        return None
    try:
        return date(2000 + int(yy), month, int(dd))
    except ValueError:
        return None


def parse_contract(contract: str) -> ContractTerms | None:
    """
    Parse threshold/bracket terms from a contract identifier.

    Returns None when the identifier encodes neither.
    """
    ticker = contract.strip().upper()
    kind = ContractKind.THRESHOLD
    match = _THRESHOLD_RE.search(ticker)
    if match is None:
        kind = ContractKind.BRACKET
        match = _BRACKET_RE.search(ticker)
    if match is None:
        return None
    return ContractTerms(
        kind=kind,
        strike=float(match.group(1)),
        event_date=parse_event_date(ticker),
    )
