import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from allocation import to_cents
from config import get_settings
from database import commit, commit_in_chunks
from errors import ValidationError
from models import Obligation, PeriodInstance, SourcePeriod
from obligations import behavior_for, instance_id
from occurrences import schedule_due_dates
from recurrence import add_months, local_today
from source_periods import SourcePeriodCalendar


logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    created_ids: list[str] = field(default_factory=list)
    skipped: int = 0
    range_start: Optional[date] = None
    range_end: Optional[date] = None


def default_generation_end(obligation: Obligation, today: date) -> date:
    horizon = add_months(today, get_settings().generation_horizon_months)
    if obligation.fixed_end_date and obligation.fixed_end_date < horizon:
        return obligation.fixed_end_date
    return horizon


class PeriodAllocationGenerator:
    def __init__(self, session: Session, batch_size: Optional[int] = None) -> None:
        self.session = session
        self.batch_size = batch_size or get_settings().batch_max_documents
        self.calendar = SourcePeriodCalendar(session)

    def build_instance(
        self, obligation: Obligation, period: SourcePeriod, today: date
    ) -> PeriodInstance:
        behavior = behavior_for(obligation.kind)
        allocated = to_cents(behavior.compute_allocation(obligation, period))
        instance = PeriodInstance(
            id=instance_id(obligation.id, period.id),
            obligation_id=obligation.id,
            kind=obligation.kind,
            user_id=obligation.user_id,
            source_period_id=period.id,
            period_type=period.type,
            period_start=period.start_date,
            period_end=period.end_date,
            allocated_cents=allocated,
            amount_due_cents=0,
            paid_cents=0,
            extra_principal_cents=0,
            remaining_cents=allocated,
            is_active=obligation.is_active,
            is_due_period=False,
            occurrences_paid=0,
            occurrences_unpaid=0,
        )
        if behavior.tracks_due_dates:
            schedule_due_dates(instance, obligation)
        instance.status = behavior.compute_status(instance, today)
        instance.last_calculated = datetime.utcnow()
        return instance

    def generate(
        self,
        obligation: Obligation,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        today: Optional[date] = None,
    ) -> GenerationResult:
        today = today or local_today()
        start = start or obligation.first_date
        end = end or default_generation_end(obligation, today)
        if obligation.fixed_end_date and end > obligation.fixed_end_date:
            end = obligation.fixed_end_date
        if start > end:
            raise ValidationError(
                f"Generation range {start.isoformat()}..{end.isoformat()} is empty"
            )
        if obligation.id is None:
            self.session.flush()

        periods = self.calendar.require_range(start, end)
        existing = set(
            self.session.scalars(
                select(PeriodInstance.id).where(
                    PeriodInstance.obligation_id == obligation.id
                )
            )
        )
        result = GenerationResult(range_start=start, range_end=end)
        new_instances: list[PeriodInstance] = []
        for period in periods:
            key = instance_id(obligation.id, period.id)
            if key in existing:
                result.skipped += 1
                continue
            new_instances.append(self.build_instance(obligation, period, today))
            result.created_ids.append(key)

        commit_in_chunks(self.session, new_instances, self.batch_size)
        self._record_bookkeeping(obligation, end)
        commit(self.session)
        logger.info(
            f"periods_generated: obligation={obligation.id} kind={obligation.kind.value} "
            f"created={len(result.created_ids)} skipped={result.skipped} "
            f"range={start.isoformat()}..{end.isoformat()}"
        )
        return result

    def _record_bookkeeping(self, obligation: Obligation, end: date) -> None:
        instances = list(
            self.session.scalars(
                select(PeriodInstance)
                .where(PeriodInstance.obligation_id == obligation.id)
                .order_by(PeriodInstance.period_start, PeriodInstance.period_end)
            )
        )
        if instances:
            obligation.first_generated_period_id = instances[0].source_period_id
            latest = max(instances, key=lambda inst: (inst.period_end, inst.period_start))
            obligation.last_generated_period_id = latest.source_period_id
        if obligation.generated_until is None or end > obligation.generated_until:
            obligation.generated_until = end
        obligation.needs_future_generation = (
            obligation.fixed_end_date is None
            or obligation.fixed_end_date > obligation.generated_until
        )
