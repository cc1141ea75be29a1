"""
Derived fields stored on donors, campaigns and events.

``total_donated``/``last_donation``, ``raised_amount`` and ``attendees`` are a
materialized projection of the underlying donation and attendance records.
They are recomputed with these functions on every qualifying write and by the
full rebuild in ``ProjectionService.recalculate_all``.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from donorconnect.analytics.aggregation import record_amount, record_date, record_status
from donorconnect.models.donation import COMPLETED


@dataclass(frozen=True)
class DonorTotals:
    total_donated: Decimal
    last_donation: datetime | None


def completed_only(donations: Iterable[Any]) -> list:
    return [d for d in donations if record_status(d) == COMPLETED]


def project_donor(donations: Iterable[Any]) -> DonorTotals:
    completed = completed_only(donations)
    total = sum((record_amount(d) for d in completed), Decimal("0"))
    last = max((record_date(d) for d in completed), default=None)
    return DonorTotals(total_donated=total, last_donation=last)


def project_campaign(donations: Iterable[Any]) -> Decimal:
    return sum((record_amount(d) for d in completed_only(donations)), Decimal("0"))


def project_event(attendances: Iterable[Any]) -> int:
    count = 0
    for attendance in attendances:
        attended = attendance.get("attended") if isinstance(attendance, dict) else attendance.attended
        if attended:
            count += 1
    return count
