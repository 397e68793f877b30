import json
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from models import (
    PaymentType,
    PeriodInstance,
    Transaction,
    TransactionStatus,
    TransactionType,
)


# Fields written only as a by-product of occurrence matching and status refresh.
BOOKKEEPING_FIELDS = frozenset(
    {
        "occurrence_paid_flags",
        "occurrence_transaction_ids",
        "occurrences_paid",
        "occurrences_unpaid",
        "next_unpaid_due_date",
        "status",
        "last_calculated",
        "updated_at",
    }
)

_PERIOD_COLUMNS = (
    "id",
    "obligation_id",
    "kind",
    "user_id",
    "source_period_id",
    "period_type",
    "period_start",
    "period_end",
    "allocated_cents",
    "amount_due_cents",
    "paid_cents",
    "extra_principal_cents",
    "remaining_cents",
    "status",
    "is_active",
    "is_due_period",
    "due_date",
    "expected_due_date",
    "next_unpaid_due_date",
    "occurrences_paid",
    "occurrences_unpaid",
    "last_calculated",
    "updated_at",
)


@dataclass(frozen=True)
class SplitSnapshot:
    id: int
    obligation_id: Optional[int]
    category_id: Optional[int]
    amount_cents: int
    payment_type: PaymentType
    target_monthly_period_id: Optional[str] = None
    target_weekly_period_id: Optional[str] = None
    target_bi_monthly_period_id: Optional[str] = None
    period_instance_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransactionSnapshot:
    id: int
    user_id: int
    date: date
    type: TransactionType
    status: TransactionStatus
    amount_cents: int
    splits: tuple[SplitSnapshot, ...] = ()

    @property
    def counts_as_spending(self) -> bool:
        return (
            self.status == TransactionStatus.approved
            and self.type == TransactionType.expense
        )


def snapshot_transaction(txn: Optional[Transaction]) -> Optional[TransactionSnapshot]:
    if txn is None or txn.deleted_at is not None:
        return None
    return TransactionSnapshot(
        id=txn.id,
        user_id=txn.user_id,
        date=txn.date,
        type=txn.type,
        status=txn.status,
        amount_cents=txn.amount_cents,
        splits=tuple(
            SplitSnapshot(
                id=split.id,
                obligation_id=split.obligation_id,
                category_id=split.category_id,
                amount_cents=split.amount_cents,
                payment_type=split.payment_type,
                target_monthly_period_id=split.target_monthly_period_id,
                target_weekly_period_id=split.target_weekly_period_id,
                target_bi_monthly_period_id=split.target_bi_monthly_period_id,
                period_instance_ids=tuple(sorted(p.id for p in split.period_instances)),
            )
            for split in txn.splits
        ),
    )


def snapshot_period_instance(instance: Optional[PeriodInstance]) -> Optional[dict[str, Any]]:
    if instance is None:
        return None
    data: dict[str, Any] = {name: getattr(instance, name) for name in _PERIOD_COLUMNS}
    data["occurrence_due_dates"] = json.loads(instance.occurrence_due_dates_json or "null")
    data["occurrence_paid_flags"] = json.loads(instance.occurrence_paid_flags_json or "null")
    data["occurrence_transaction_ids"] = json.loads(
        instance.occurrence_transaction_ids_json or "null"
    )
    data["split_ids"] = sorted(split.id for split in instance.splits)
    return data


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> set[str]:
    keys = set(before) | set(after)
    return {key for key in keys if before.get(key) != after.get(key)}
