from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Protocol

from models import Frequency, PaymentType, PeriodStatus


class SplitLike(Protocol):
    amount_cents: int
    payment_type: PaymentType


OCCURRENCE_UNITS: dict[Frequency, str] = {
    Frequency.weekly: "weeks",
    Frequency.biweekly: "bi-weekly periods",
    Frequency.semi_monthly: "semi-monthly periods",
    Frequency.monthly: "months",
    Frequency.annually: "annual periods",
}


@dataclass(frozen=True)
class EnhancedStatus:
    status: PeriodStatus
    occurrences_total: int
    occurrences_paid: int
    occurrence_payment_percentage: int
    status_text: str


def total_paid_cents(splits: Iterable[SplitLike]) -> int:
    return sum(
        split.amount_cents
        for split in splits
        if split.payment_type != PaymentType.extra_principal
    )


def calculate_period_status(
    is_due_period: bool,
    due_date: Optional[date],
    expected_due_date: Optional[date],
    amount_due_cents: int,
    splits: Iterable[SplitLike],
    *,
    today: date,
    due_soon_days: int = 3,
) -> PeriodStatus:
    # expected_due_date is informational; only a due date inside the period drives status.
    total_paid = total_paid_cents(splits)

    if is_due_period and amount_due_cents > 0:
        is_past_due = due_date is not None and today > due_date
        if total_paid >= amount_due_cents:
            if due_date is not None and today < due_date:
                return PeriodStatus.paid_early
            return PeriodStatus.paid
        if total_paid > 0:
            return PeriodStatus.overdue if is_past_due else PeriodStatus.partial
        if is_past_due:
            return PeriodStatus.overdue
        if due_date is not None and (due_date - today).days < due_soon_days:
            return PeriodStatus.due_soon
        return PeriodStatus.pending

    if not is_due_period and total_paid > 0:
        return PeriodStatus.paid

    return PeriodStatus.pending


def calculate_budget_status(allocated_cents: int, spent_cents: int) -> PeriodStatus:
    if spent_cents > allocated_cents:
        return PeriodStatus.over_budget
    return PeriodStatus.on_track


def occurrence_unit(frequency: Optional[Frequency]) -> str:
    if frequency is None:
        return "occurrences"
    return OCCURRENCE_UNITS.get(frequency, "occurrences")


def calculate_enhanced_status(
    status: PeriodStatus,
    frequency: Optional[Frequency],
    occurrences_paid: int,
    occurrences_total: int,
) -> EnhancedStatus:
    if occurrences_total > 0:
        percentage = int(occurrences_paid * 100 / occurrences_total + 0.5)
    else:
        percentage = 0
    text = f"{occurrences_paid} of {occurrences_total} {occurrence_unit(frequency)} paid"
    return EnhancedStatus(
        status=status,
        occurrences_total=occurrences_total,
        occurrences_paid=occurrences_paid,
        occurrence_payment_percentage=percentage,
        status_text=text,
    )
