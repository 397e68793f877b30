import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from config import get_settings
from models import Obligation, PaymentType, PeriodInstance
from recurrence import due_dates_between, next_due_on_or_after, recurs_faster_than


logger = logging.getLogger(__name__)


@dataclass
class OccurrenceSet:
    due_dates: list[date]
    paid_flags: list[bool] = field(default_factory=list)
    transaction_ids: list[Optional[int]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.paid_flags and not self.transaction_ids:
            self.paid_flags = [False] * len(self.due_dates)
            self.transaction_ids = [None] * len(self.due_dates)
        if not (len(self.due_dates) == len(self.paid_flags) == len(self.transaction_ids)):
            raise ValueError("Occurrence arrays must share length")
        for paid, txn_id in zip(self.paid_flags, self.transaction_ids):
            if paid != (txn_id is not None):
                raise ValueError("Paid occurrences must reference a transaction")

    @property
    def paid_count(self) -> int:
        return sum(1 for paid in self.paid_flags if paid)

    @property
    def unpaid_count(self) -> int:
        return len(self.paid_flags) - self.paid_count

    def next_unpaid(self) -> Optional[date]:
        for due, paid in zip(self.due_dates, self.paid_flags):
            if not paid:
                return due
        return None


def load_occurrences(instance: PeriodInstance) -> Optional[OccurrenceSet]:
    if instance.occurrence_due_dates_json is None:
        return None
    return OccurrenceSet(
        due_dates=[date.fromisoformat(v) for v in json.loads(instance.occurrence_due_dates_json)],
        paid_flags=json.loads(instance.occurrence_paid_flags_json or "[]"),
        transaction_ids=json.loads(instance.occurrence_transaction_ids_json or "[]"),
    )


def store_occurrences(instance: PeriodInstance, occurrences: OccurrenceSet) -> None:
    instance.occurrence_due_dates_json = json.dumps(
        [d.isoformat() for d in occurrences.due_dates]
    )
    instance.occurrence_paid_flags_json = json.dumps(occurrences.paid_flags)
    instance.occurrence_transaction_ids_json = json.dumps(occurrences.transaction_ids)
    instance.occurrences_paid = occurrences.paid_count
    instance.occurrences_unpaid = occurrences.unpaid_count


def find_matching_occurrence_index(
    payment_date: date, due_dates: Sequence[date], tolerance_days: int = 3
) -> Optional[int]:
    """Index of the due date closest to payment_date, if within tolerance.

    Ties resolve to the earlier occurrence.
    """
    best_index: Optional[int] = None
    best_distance: Optional[int] = None
    for idx, due in enumerate(due_dates):
        distance = abs((payment_date - due).days)
        if distance > tolerance_days:
            continue
        if best_distance is None or distance < best_distance:
            best_index = idx
            best_distance = distance
    return best_index


def schedule_due_dates(instance: PeriodInstance, obligation: Obligation) -> None:
    due_dates = due_dates_between(
        obligation.frequency,
        obligation.first_date,
        instance.period_start,
        instance.period_end,
        end_date=obligation.fixed_end_date,
    )
    instance.is_due_period = bool(due_dates)
    instance.amount_due_cents = obligation.amount_cents * len(due_dates)
    instance.due_date = due_dates[0] if due_dates else None
    instance.first_due_date = due_dates[0] if due_dates else None
    instance.last_due_date = due_dates[-1] if due_dates else None
    instance.next_unpaid_due_date = instance.first_due_date
    instance.expected_due_date = next_due_on_or_after(
        obligation.frequency,
        obligation.first_date,
        instance.period_start,
        end_date=obligation.fixed_end_date,
    )
    if recurs_faster_than(obligation.frequency, instance.period_type):
        store_occurrences(instance, OccurrenceSet(due_dates=due_dates))
    else:
        instance.occurrences_paid = 0
        instance.occurrences_unpaid = len(due_dates)
    instance.paid_cents = 0
    instance.extra_principal_cents = 0
    instance.remaining_cents = instance.amount_due_cents


def apply_split_totals(instance: PeriodInstance) -> None:
    paid = 0
    extra = 0
    for split in instance.splits:
        if split.payment_type == PaymentType.extra_principal:
            extra += split.amount_cents
        else:
            paid += split.amount_cents
    instance.paid_cents = paid
    instance.extra_principal_cents = extra
    instance.remaining_cents = max(instance.amount_due_cents - paid, 0)


class OccurrenceTracker:
    def __init__(self, tolerance_days: Optional[int] = None) -> None:
        if tolerance_days is None:
            tolerance_days = get_settings().occurrence_tolerance_days
        self.tolerance_days = tolerance_days

    def rebuild(self, instance: PeriodInstance) -> bool:
        """Rebuild the occurrence arrays from the instance's current splits.

        Returns True when the paid flags or transaction ids changed.
        """
        current = load_occurrences(instance)
        if current is None:
            return False
        rebuilt = OccurrenceSet(due_dates=list(current.due_dates))
        splits = sorted(
            (s for s in instance.splits if s.payment_type != PaymentType.extra_principal),
            key=lambda s: (s.transaction.date, s.id),
        )
        for split in splits:
            idx = find_matching_occurrence_index(
                split.transaction.date, rebuilt.due_dates, self.tolerance_days
            )
            if idx is None:
                logger.info(
                    f"occurrence_unmatched: period={instance.id} split={split.id} "
                    f"date={split.transaction.date.isoformat()}"
                )
                continue
            rebuilt.paid_flags[idx] = True
            rebuilt.transaction_ids[idx] = split.transaction_id
        changed = (
            rebuilt.paid_flags != current.paid_flags
            or rebuilt.transaction_ids != current.transaction_ids
        )
        if changed:
            store_occurrences(instance, rebuilt)
        instance.next_unpaid_due_date = rebuilt.next_unpaid()
        return changed

    def refresh(self, instance: PeriodInstance) -> bool:
        apply_split_totals(instance)
        if load_occurrences(instance) is not None:
            return self.rebuild(instance)

        # Without an occurrence set, count whole occurrences covered by the paid total.
        total = instance.occurrences_paid + instance.occurrences_unpaid
        paid = 0
        if total and instance.amount_due_cents:
            per_occurrence = instance.amount_due_cents // total
            paid = min(total, instance.paid_cents // per_occurrence) if per_occurrence else total
        instance.occurrences_paid = paid
        instance.occurrences_unpaid = total - paid
        instance.next_unpaid_due_date = instance.due_date if paid < total else None
        return False
