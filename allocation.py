from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from models import Frequency, PeriodType
from periods import Period
from recurrence import CYCLE_DAYS, NATIVE_PERIOD_TYPE, days_in_month


def to_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def day_weighted_monthly_amount(amount_cents: int, start: date, end: date) -> Decimal:
    """Accrue amount / days_in_month(d) for every day d in [start, end]."""
    amount = Decimal(amount_cents)
    total = Decimal(0)
    for day in Period(start, end).iter_days():
        total += amount / days_in_month(day.year, day.month)
    return total


def prorated_amount(amount_cents: int, frequency: Frequency, start: date, end: date) -> Decimal:
    period_days = Period(start, end).days
    return Decimal(amount_cents) * period_days / CYCLE_DAYS[frequency]


def allocation_for_period(
    amount_cents: int,
    frequency: Frequency,
    period_type: PeriodType,
    start: date,
    end: date,
) -> Decimal:
    """Unrounded amount (in cents) an obligation sets aside for one period."""
    if amount_cents < 0:
        raise ValueError("Amount must be positive")
    if frequency == Frequency.monthly:
        if period_type == PeriodType.monthly:
            return Decimal(amount_cents)
        if period_type == PeriodType.bi_monthly:
            return Decimal(amount_cents) * Decimal("0.5")
        return day_weighted_monthly_amount(amount_cents, start, end)
    if NATIVE_PERIOD_TYPE.get(frequency) == period_type:
        return Decimal(amount_cents)
    return prorated_amount(amount_cents, frequency, start, end)
