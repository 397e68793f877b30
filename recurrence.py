from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import Frequency, PeriodType


# Nominal cycle length used for proration.
CYCLE_DAYS: dict[Frequency, int] = {
    Frequency.weekly: 7,
    Frequency.biweekly: 14,
    Frequency.semi_monthly: 15,
    Frequency.monthly: 30,
    Frequency.annually: 365,
}

NOMINAL_PERIOD_DAYS: dict[PeriodType, int] = {
    PeriodType.weekly: 7,
    PeriodType.bi_monthly: 15,
    PeriodType.monthly: 30,
}

# Frequencies whose cycle coincides with a calendar granularity.
NATIVE_PERIOD_TYPE: dict[Frequency, PeriodType] = {
    Frequency.weekly: PeriodType.weekly,
    Frequency.semi_monthly: PeriodType.bi_monthly,
    Frequency.monthly: PeriodType.monthly,
}

_DAY_STEPS: dict[Frequency, int] = {
    Frequency.weekly: 7,
    Frequency.biweekly: 14,
    Frequency.semi_monthly: 15,
}

_MONTH_STEPS: dict[Frequency, int] = {
    Frequency.monthly: 1,
    Frequency.annually: 12,
}


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift by whole months, snapping to the last day of short months."""
    desired_day = desired_day or base.day
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    dim = days_in_month(year, month)
    return date(year, month, min(desired_day, dim))


def recurs_faster_than(frequency: Frequency, period_type: PeriodType) -> bool:
    return CYCLE_DAYS[frequency] < NOMINAL_PERIOD_DAYS[period_type]


def nth_due_date(frequency: Frequency, anchor: date, n: int) -> date:
    if frequency in _DAY_STEPS:
        return anchor + timedelta(days=_DAY_STEPS[frequency] * n)
    return add_months(anchor, _MONTH_STEPS[frequency] * n, desired_day=anchor.day)


def calculate_next_date(frequency: Frequency, from_date: date, anchor: date) -> date:
    if frequency in _DAY_STEPS:
        return from_date + timedelta(days=_DAY_STEPS[frequency])
    months = _MONTH_STEPS[frequency]
    return add_months(from_date, months, desired_day=anchor.day)


def _first_index_near(frequency: Frequency, anchor: date, target: date) -> int:
    # Lower bound on the occurrence index that can land on or after target.
    if target <= anchor:
        return 0
    if frequency in _DAY_STEPS:
        return (target - anchor).days // _DAY_STEPS[frequency]
    months = (target.year - anchor.year) * 12 + (target.month - anchor.month)
    return max(months // _MONTH_STEPS[frequency] - 1, 0)


def next_due_on_or_after(
    frequency: Frequency,
    anchor: date,
    target: date,
    *,
    end_date: Optional[date] = None,
) -> Optional[date]:
    n = _first_index_near(frequency, anchor, target)
    candidate = nth_due_date(frequency, anchor, n)
    while candidate < target:
        n += 1
        candidate = nth_due_date(frequency, anchor, n)
    if end_date and candidate > end_date:
        return None
    return candidate


def due_dates_between(
    frequency: Frequency,
    anchor: date,
    start: date,
    end: date,
    *,
    end_date: Optional[date] = None,
) -> list[date]:
    """Every due date of an obligation anchored at `anchor` inside [start, end]."""
    if end < start:
        return []
    limit = min(end, end_date) if end_date else end
    dates: list[date] = []
    current = next_due_on_or_after(frequency, anchor, start)
    while current is not None and current <= limit:
        dates.append(current)
        current = calculate_next_date(frequency, current, anchor)
    return dates
