"""
Donor lapse-risk and giving-frequency labels.

Everything here is a pure function of its arguments; the current time is
always passed in as ``now``.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from donorconnect.analytics.aggregation import record_amount, record_date, record_status, to_utc
from donorconnect.models.donation import COMPLETED


MEDIUM_RISK_DAYS = 90
HIGH_RISK_DAYS = 180
CRITICAL_RISK_DAYS = 365


class RiskLevel(str, Enum):
    NEW = "New"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def color(self) -> str:
        return _COLORS[self]


# New and Low share the bottom rank
_RANKS = {
    RiskLevel.NEW: 0,
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}

_COLORS = {
    RiskLevel.NEW: "#6c757d",
    RiskLevel.LOW: "#28a745",
    RiskLevel.MEDIUM: "#ffc107",
    RiskLevel.HIGH: "#dc3545",
    RiskLevel.CRITICAL: "#8b0000",
}


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    days_since_last_donation: int | None

    @property
    def color(self) -> str:
        return self.level.color

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "daysSinceLastDonation": self.days_since_last_donation,
            "color": self.color,
        }


def days_between(later: datetime, earlier: datetime) -> int:
    # timedelta.days is already floored
    return (to_utc(later) - to_utc(earlier)).days


def level_for_days(days: int) -> RiskLevel:
    if days < MEDIUM_RISK_DAYS:
        return RiskLevel.LOW
    if days < HIGH_RISK_DAYS:
        return RiskLevel.MEDIUM
    if days < CRITICAL_RISK_DAYS:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def risk_level(
    last_activity: datetime | None,
    has_any_qualifying_activity: bool,
    now: datetime,
) -> RiskAssessment:
    if last_activity is None or not has_any_qualifying_activity:
        return RiskAssessment(level=RiskLevel.NEW, days_since_last_donation=None)

    days = days_between(now, last_activity)
    return RiskAssessment(level=level_for_days(days), days_since_last_donation=days)


def donor_risk(donations: Iterable[Any], now: datetime) -> RiskAssessment:
    """Risk from a donor's raw donation list; only Completed gifts count as activity."""
    completed = [d for d in donations if record_status(d) == COMPLETED]
    if not completed:
        return risk_level(None, False, now)

    last = max(record_date(d) for d in completed)
    given = sum((record_amount(d) for d in completed), Decimal("0"))
    return risk_level(last, given > 0, now)


def donation_frequency(dates: Iterable[datetime]) -> str:
    ordered = sorted((to_utc(d) for d in dates), reverse=True)
    if len(ordered) < 2:
        return "New donor"

    gaps = [days_between(newer, older) for newer, older in zip(ordered, ordered[1:])]
    average = sum(gaps) / len(gaps)

    if average <= 30:
        return "Monthly donor"
    if average <= 90:
        return "Quarterly donor"
    if average <= 180:
        return "Semi-annual donor"
    if average <= 365:
        return "Annual donor"
    return "Infrequent donor"
