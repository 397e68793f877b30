import logging
from typing import Optional

from sqlalchemy.orm import Session

from matching import PeriodMatcher
from models import Obligation, PeriodInstance, TransactionSplit, TransactionStatus
from obligations import behavior_for
from snapshots import TransactionSnapshot


logger = logging.getLogger(__name__)


class SplitAssignmentService:
    """Keeps period instance split references in line with the ledger.

    Outflow and inflow instances derive their paid totals from these references;
    budgets are handled by delta propagation instead.
    """

    def __init__(self, session: Session, matcher: Optional[PeriodMatcher] = None) -> None:
        self.session = session
        self.matcher = matcher

    def _qualifies(self, snapshot: TransactionSnapshot, obligation: Obligation) -> bool:
        behavior = behavior_for(obligation.kind)
        return (
            not behavior.uses_spending_delta
            and obligation.is_active
            and obligation.user_id == snapshot.user_id
            and snapshot.status == TransactionStatus.approved
            and snapshot.type == behavior.transaction_type
        )

    def _resolve(self, snapshot: TransactionSnapshot, split: TransactionSplit) -> list[PeriodInstance]:
        if split.obligation_id is None:
            return []
        obligation = self.session.get(Obligation, split.obligation_id)
        if not obligation or not self._qualifies(snapshot, obligation):
            return []
        behavior = behavior_for(obligation.kind)
        matcher = self.matcher or PeriodMatcher(self.session, snapshot.user_id)
        result = behavior.match_transaction(matcher, obligation, split, snapshot.date)
        return [self.session.get(PeriodInstance, instance_id) for instance_id in result.ids]

    def sync(
        self,
        before: Optional[TransactionSnapshot],
        after: Optional[TransactionSnapshot],
    ) -> set[str]:
        """Rebuild split references for one transaction; returns touched instance ids."""
        touched: set[str] = set()
        desired: dict[int, list[PeriodInstance]] = {}

        if before is not None:
            for split_snapshot in before.splits:
                if self.session.get(TransactionSplit, split_snapshot.id) is None:
                    touched.update(split_snapshot.period_instance_ids)
                else:
                    desired[split_snapshot.id] = []

        if after is not None:
            for split_snapshot in after.splits:
                split = self.session.get(TransactionSplit, split_snapshot.id)
                if split is None:
                    continue
                desired[split.id] = self._resolve(after, split)

        for split_id, instances in desired.items():
            split = self.session.get(TransactionSplit, split_id)
            current = {instance.id for instance in split.period_instances}
            wanted = {instance.id for instance in instances}
            if current == wanted:
                continue
            split.period_instances = instances
            touched.update(current ^ wanted)
            logger.info(
                f"split_assigned: split={split_id} periods={sorted(wanted)} "
                f"released={sorted(current - wanted)}"
            )
        self.session.flush()
        return touched
