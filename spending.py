import logging
from collections import defaultdict
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import (
    Category,
    Obligation,
    ObligationKind,
    PeriodInstance,
    Transaction,
    TransactionSplit,
    TransactionStatus,
    TransactionType,
)
from obligations import behavior_for
from snapshots import TransactionSnapshot


logger = logging.getLogger(__name__)


def contributions(snapshot: Optional[TransactionSnapshot]) -> dict[int, int]:
    totals: dict[int, int] = defaultdict(int)
    if snapshot is None or not snapshot.counts_as_spending:
        return {}
    for split in snapshot.splits:
        if split.obligation_id is None:
            continue
        totals[split.obligation_id] += split.amount_cents
    return dict(totals)


def spending_delta(
    before: Optional[TransactionSnapshot], after: Optional[TransactionSnapshot]
) -> dict[int, int]:
    old = contributions(before)
    new = contributions(after)
    delta: dict[int, int] = {}
    for obligation_id in set(old) | set(new):
        value = new.get(obligation_id, 0) - old.get(obligation_id, 0)
        if value:
            delta[obligation_id] = value
    return delta


class SpendingDeltaPropagator:
    def __init__(self, session: Session) -> None:
        self.session = session

    def propagate(
        self,
        before: Optional[TransactionSnapshot],
        after: Optional[TransactionSnapshot],
    ) -> set[str]:
        """Apply the spent delta between two transaction states.

        Returns the ids of the period instances that were changed.
        """
        if before is not None and after is not None and before.date != after.date:
            # Moving a transaction to another date is a removal plus an addition.
            touched = self._apply(before.user_id, before.date, spending_delta(before, None))
            touched |= self._apply(after.user_id, after.date, spending_delta(None, after))
            return touched
        effective = after or before
        if effective is None:
            return set()
        return self._apply(effective.user_id, effective.date, spending_delta(before, after))

    def _apply(self, user_id: int, when: date, deltas: dict[int, int]) -> set[str]:
        touched: set[str] = set()
        for obligation_id, delta in sorted(deltas.items()):
            obligation = self.session.get(Obligation, obligation_id)
            if not obligation or not behavior_for(obligation.kind).uses_spending_delta:
                continue
            stmt = select(PeriodInstance).where(
                PeriodInstance.obligation_id == obligation_id,
                PeriodInstance.user_id == user_id,
                PeriodInstance.is_active.is_(True),
                PeriodInstance.period_start <= when,
                PeriodInstance.period_end >= when,
            )
            instances = list(self.session.scalars(stmt))
            if not instances:
                logger.warning(
                    f"spending_delta_unmatched: obligation={obligation_id} "
                    f"date={when.isoformat()} delta={delta}"
                )
                continue
            for instance in instances:
                instance.paid_cents += delta
                instance.remaining_cents = instance.allocated_cents - instance.paid_cents
                touched.add(instance.id)
            logger.info(
                f"spending_delta_applied: obligation={obligation_id} "
                f"date={when.isoformat()} delta={delta} periods={len(instances)}"
            )
        self.session.flush()
        return touched

    def budget_for(self, user_id: int, category_id: Optional[int], when: date) -> Optional[int]:
        """Active budget of user_id covering category_id on when, lowest id first."""
        if category_id is None:
            return None
        stmt = (
            select(Obligation.id)
            .join(Obligation.categories)
            .join(PeriodInstance, PeriodInstance.obligation_id == Obligation.id)
            .where(
                Obligation.user_id == user_id,
                Obligation.kind == ObligationKind.budget,
                Obligation.is_active.is_(True),
                Category.id == category_id,
                PeriodInstance.is_active.is_(True),
                PeriodInstance.period_start <= when,
                PeriodInstance.period_end >= when,
            )
            .order_by(Obligation.id)
            .limit(1)
        )
        return self.session.scalar(stmt)

    def backfill(self, obligation: Obligation) -> set[str]:
        """Attribute unassigned historical spending in the obligation's categories."""
        category_ids = [category.id for category in obligation.categories]
        if not category_ids:
            return set()
        stmt = (
            select(TransactionSplit)
            .join(Transaction, TransactionSplit.transaction_id == Transaction.id)
            .where(
                Transaction.user_id == obligation.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.status == TransactionStatus.approved,
                Transaction.deleted_at.is_(None),
                TransactionSplit.obligation_id.is_(None),
                TransactionSplit.category_id.in_(category_ids),
            )
            .order_by(Transaction.date, TransactionSplit.id)
        )
        splits = list(self.session.scalars(stmt))
        instances = list(
            self.session.scalars(
                select(PeriodInstance).where(
                    PeriodInstance.obligation_id == obligation.id,
                    PeriodInstance.is_active.is_(True),
                )
            )
        )
        totals: dict[str, int] = defaultdict(int)
        for split in splits:
            split.obligation_id = obligation.id
            txn_date = split.transaction.date
            for instance in instances:
                if instance.period_start <= txn_date <= instance.period_end:
                    totals[instance.id] += split.amount_cents
        for instance in instances:
            if instance.id in totals:
                instance.paid_cents += totals[instance.id]
                instance.remaining_cents = instance.allocated_cents - instance.paid_cents
        self.session.flush()
        logger.info(
            f"spending_backfilled: obligation={obligation.id} splits={len(splits)} "
            f"periods={len(totals)}"
        )
        return set(totals)
