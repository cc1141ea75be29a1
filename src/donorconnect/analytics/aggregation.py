"""
Time-bucketed and per-entity reductions over donation records.

Records can be plain mappings (items straight from the table) or model
objects; both need an ``amount`` and a ``donation_date``.
"""
import calendar
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Hashable, Iterable


class InvalidRecordError(ValueError):
    """Raised when a record cannot be placed in a bucket."""


DATE_FIELDS = ("donation_date", "donationDate")


def _get(record: Any, *names: str) -> Any:
    for name in names:
        if isinstance(record, dict):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return None


def to_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def record_date(record: Any) -> datetime:
    value = _get(record, *DATE_FIELDS)
    if value is None:
        raise InvalidRecordError(f"Record has no donation date: {record!r}")
    try:
        return to_utc(value)
    except (TypeError, ValueError) as e:
        raise InvalidRecordError(f"Record has an unreadable donation date {value!r}: {e}") from e


def record_status(record: Any) -> str | None:
    return _get(record, "status")


def record_amount(record: Any) -> Decimal:
    value = _get(record, "amount")
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _bucket(records: Iterable[Any], key_fn: Callable[[datetime], Hashable]) -> dict:
    sums: dict = defaultdict(Decimal)
    for record in records:
        sums[key_fn(record_date(record))] += record_amount(record)
    return sums


def bucket_daily(records: Iterable[Any]) -> list[dict]:
    sums = _bucket(records, lambda d: d.strftime("%Y-%m-%d"))
    return [{"date": day, "amount": sums[day]} for day in sorted(sums)]


def bucket_monthly(records: Iterable[Any]) -> list[dict]:
    # YYYY-MM is zero padded and year first, so string order is time order
    sums = _bucket(records, lambda d: d.strftime("%Y-%m"))
    return [{"month": month, "amount": sums[month]} for month in sorted(sums)]


def bucket_yearly(records: Iterable[Any]) -> list[dict]:
    sums = _bucket(records, lambda d: d.year)
    return [{"year": year, "amount": sums[year]} for year in sorted(sums)]


def _as_date(value: datetime | str | None) -> datetime:
    if value is None:
        raise InvalidRecordError("Cannot bucket a missing date")
    return to_utc(value)


def count_monthly(dates: Iterable[datetime | str]) -> list[dict]:
    counts: dict[str, int] = defaultdict(int)
    for value in dates:
        counts[_as_date(value).strftime("%Y-%m")] += 1
    return [{"month": month, "count": counts[month]} for month in sorted(counts)]


def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar-month subtraction; the day is clamped to the target month's length."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def trailing_window_start(now: datetime, months: int = 12) -> datetime:
    return subtract_months(to_utc(now), months)


def in_window(records: Iterable[Any], start: datetime) -> list:
    return [r for r in records if record_date(r) >= start]


def monthly_trend(records: Iterable[Any], now: datetime, months: int = 12) -> list[dict]:
    """
    Monthly sums over the trailing window ending at ``now``.

    When nothing falls inside the window the whole history is bucketed
    instead, so a stale but non-empty dataset still produces a series.
    """
    records = list(records)
    windowed = bucket_monthly(in_window(records, trailing_window_start(now, months)))
    if windowed:
        return windowed
    return bucket_monthly(records)


def monthly_count_trend(dates: Iterable[datetime | str], now: datetime, months: int = 12) -> list[dict]:
    dates = [_as_date(d) for d in dates]
    start = trailing_window_start(now, months)
    windowed = count_monthly(d for d in dates if d >= start)
    if windowed:
        return windowed
    return count_monthly(dates)


def totals_by_entity(records: Iterable[Any], key: str) -> dict[Hashable, Decimal]:
    """
    Sum amounts per owning entity id.

    Every record passed in is counted; callers filter by status first where
    that matters. Records without an owner under ``key`` are skipped.
    """
    totals: dict = defaultdict(Decimal)
    for record in records:
        owner = _get(record, key)
        if owner is None:
            continue
        totals[owner] += record_amount(record)
    return dict(totals)
