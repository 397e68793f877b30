import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import PreconditionNotMetError, ValidationError
from models import PeriodInstance, PeriodType, TransactionSplit
from source_periods import SourcePeriodCalendar


logger = logging.getLogger(__name__)


@dataclass
class MatchingPeriodsResult:
    monthly_id: Optional[str] = None
    weekly_id: Optional[str] = None
    bi_monthly_id: Optional[str] = None

    def id_for(self, period_type: PeriodType) -> Optional[str]:
        return getattr(self, f"{period_type.value}_id")

    def set(self, period_type: PeriodType, instance_id: Optional[str]) -> None:
        setattr(self, f"{period_type.value}_id", instance_id)

    @property
    def ids(self) -> list[str]:
        return [
            value
            for value in (self.monthly_id, self.weekly_id, self.bi_monthly_id)
            if value is not None
        ]

    @property
    def found_count(self) -> int:
        return len(self.ids)


def target_period_ids(split: TransactionSplit) -> list[tuple[PeriodType, str]]:
    targets = [
        (PeriodType.monthly, split.target_monthly_period_id),
        (PeriodType.bi_monthly, split.target_bi_monthly_period_id),
        (PeriodType.weekly, split.target_weekly_period_id),
    ]
    return [(period_type, value) for period_type, value in targets if value]


class PeriodMatcher:
    """Resolves the period instances of one obligation for a date or a target period."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id
        self.calendar = SourcePeriodCalendar(session)

    def _base_query(self, obligation_id: int):
        stmt = select(PeriodInstance).where(
            PeriodInstance.obligation_id == obligation_id,
            PeriodInstance.is_active.is_(True),
        )
        if self.user_id is not None:
            stmt = stmt.where(PeriodInstance.user_id == self.user_id)
        return stmt

    def by_date(self, obligation_id: int, when: date) -> MatchingPeriodsResult:
        stmt = (
            self._base_query(obligation_id)
            .where(PeriodInstance.period_start <= when, PeriodInstance.period_end >= when)
            .order_by(PeriodInstance.period_start, PeriodInstance.id)
        )
        result = MatchingPeriodsResult()
        for instance in self.session.scalars(stmt):
            if result.id_for(instance.period_type) is not None:
                logger.warning(
                    f"duplicate_period_match: obligation={obligation_id} "
                    f"type={instance.period_type.value} kept={result.id_for(instance.period_type)} "
                    f"ignored={instance.id}"
                )
                continue
            result.set(instance.period_type, instance.id)
        if not result.found_count:
            raise PreconditionNotMetError(
                f"No period instances for obligation {obligation_id} on {when.isoformat()}"
            )
        return result

    def by_target_period(
        self, obligation_id: int, target_period_id: str
    ) -> MatchingPeriodsResult:
        target = self.calendar.get(target_period_id)
        stmt = (
            self._base_query(obligation_id)
            .where(
                PeriodInstance.period_start <= target.end_date,
                PeriodInstance.period_end >= target.start_date,
            )
            .order_by(PeriodInstance.period_start, PeriodInstance.id)
        )
        result = MatchingPeriodsResult()
        exact: set[PeriodType] = set()
        for instance in self.session.scalars(stmt):
            if instance.source_period_id == target.id:
                result.set(instance.period_type, instance.id)
                exact.add(instance.period_type)
            elif (
                instance.period_type not in exact
                and result.id_for(instance.period_type) is None
            ):
                result.set(instance.period_type, instance.id)
        if not result.found_count:
            raise PreconditionNotMetError(
                f"No period instances for obligation {obligation_id} "
                f"overlapping source period {target_period_id}"
            )
        return result

    def for_split(
        self, obligation_id: int, split: TransactionSplit, transaction_date: date
    ) -> MatchingPeriodsResult:
        """An explicit target period wins; otherwise match by transaction date."""
        targets = target_period_ids(split)
        if not targets:
            return self.by_date(obligation_id, transaction_date)

        primary_type, primary_id = targets[0]
        result = self.by_target_period(obligation_id, primary_id)
        if result.id_for(primary_type) is None:
            raise PreconditionNotMetError(
                f"No {primary_type.value} period instance for obligation "
                f"{obligation_id} in {primary_id}"
            )
        for period_type, period_id in targets[1:]:
            target = self.calendar.get(period_id)
            if target.type != period_type:
                raise ValidationError(
                    f"Source period {period_id} is not a {period_type.value} period"
                )
            override = self.by_target_period(obligation_id, period_id)
            if override.id_for(period_type) is not None:
                result.set(period_type, override.id_for(period_type))
        return result
