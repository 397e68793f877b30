import json
import logging
from collections import Counter
from datetime import datetime
from typing import Any, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import PreconditionNotMetError, ValidationError
from models import (
    Obligation,
    ObligationKind,
    PeriodInstance,
    PeriodStatus,
    PeriodType,
    SourcePeriod,
    UserPeriodSummary,
)
from source_periods import SourcePeriodCalendar
from status import calculate_enhanced_status


logger = logging.getLogger(__name__)


class SummaryKey(NamedTuple):
    user_id: int
    period_type: PeriodType
    source_period_id: str


def summary_id(user_id: int, period_type: PeriodType, source_period_id: str) -> str:
    return f"{user_id}_{period_type.value}_{source_period_id}"


def summary_key_for(instance: PeriodInstance) -> SummaryKey:
    return SummaryKey(instance.user_id, instance.period_type, instance.source_period_id)


def _percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part * 100 / whole, 1)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _budget_entry(instance: PeriodInstance, obligation: Obligation) -> dict[str, Any]:
    overage = max(instance.paid_cents - instance.allocated_cents, 0)
    return {
        "obligation_id": obligation.id,
        "period_instance_id": instance.id,
        "name": obligation.name,
        "allocated_cents": instance.allocated_cents,
        "spent_cents": instance.paid_cents,
        "remaining_cents": instance.remaining_cents,
        "progress_percentage": _percentage(instance.paid_cents, instance.allocated_cents),
        "is_over_budget": overage > 0,
        "overage_cents": overage,
        "status": instance.status.value,
    }


def _occurrence_fields(instance: PeriodInstance, obligation: Obligation) -> dict[str, Any]:
    enhanced = calculate_enhanced_status(
        instance.status,
        obligation.frequency,
        instance.occurrences_paid,
        instance.occurrences_paid + instance.occurrences_unpaid,
    )
    return {
        "occurrences_total": enhanced.occurrences_total,
        "occurrences_paid": enhanced.occurrences_paid,
        "occurrence_payment_percentage": enhanced.occurrence_payment_percentage,
        "occurrence_status_text": enhanced.status_text,
    }


def _outflow_entry(instance: PeriodInstance, obligation: Obligation) -> dict[str, Any]:
    entry = {
        "obligation_id": obligation.id,
        "period_instance_id": instance.id,
        "name": obligation.name,
        "amount_due_cents": instance.amount_due_cents,
        "paid_cents": instance.paid_cents,
        "unpaid_cents": max(instance.amount_due_cents - instance.paid_cents, 0),
        "withheld_cents": instance.allocated_cents,
        "extra_principal_cents": instance.extra_principal_cents,
        "is_due_period": instance.is_due_period,
        "due_date": _iso(instance.due_date),
        "next_unpaid_due_date": _iso(instance.next_unpaid_due_date),
        "status": instance.status.value,
        "payment_progress_percentage": _percentage(
            instance.paid_cents, instance.amount_due_cents
        ),
    }
    entry.update(_occurrence_fields(instance, obligation))
    return entry


def _inflow_entry(instance: PeriodInstance, obligation: Obligation) -> dict[str, Any]:
    entry = {
        "obligation_id": obligation.id,
        "period_instance_id": instance.id,
        "name": obligation.name,
        "expected_cents": instance.amount_due_cents,
        "received_cents": instance.paid_cents,
        "pending_cents": max(instance.amount_due_cents - instance.paid_cents, 0),
        "is_receipt_period": instance.is_due_period,
        "expected_date": _iso(instance.due_date or instance.expected_due_date),
        "status": instance.status.value,
        "receipt_progress_percentage": _percentage(
            instance.paid_cents, instance.amount_due_cents
        ),
    }
    entry.update(_occurrence_fields(instance, obligation))
    return entry


def _totals(
    budgets: list[dict[str, Any]],
    outflows: list[dict[str, Any]],
    inflows: list[dict[str, Any]],
) -> dict[str, Any]:
    status_counts = Counter()
    for entry in outflows:
        status = entry["status"]
        if status == PeriodStatus.paid_early.value:
            status = PeriodStatus.paid.value
        status_counts[status] += 1
    return {
        "budgets": {
            "allocated_cents": sum(e["allocated_cents"] for e in budgets),
            "spent_cents": sum(e["spent_cents"] for e in budgets),
            "remaining_cents": sum(e["remaining_cents"] for e in budgets),
            "over_budget_count": sum(1 for e in budgets if e["is_over_budget"]),
        },
        "outflows": {
            "amount_due_cents": sum(e["amount_due_cents"] for e in outflows),
            "paid_cents": sum(e["paid_cents"] for e in outflows),
            "unpaid_cents": sum(e["unpaid_cents"] for e in outflows),
            "withheld_cents": sum(e["withheld_cents"] for e in outflows),
            "status_counts": dict(status_counts),
            "fully_paid_count": status_counts.get(PeriodStatus.paid.value, 0),
            "unpaid_count": sum(1 for e in outflows if e["unpaid_cents"] > 0),
            "due_period_count": sum(1 for e in outflows if e["is_due_period"]),
        },
        "inflows": {
            "expected_cents": sum(e["expected_cents"] for e in inflows),
            "received_cents": sum(e["received_cents"] for e in inflows),
            "pending_cents": sum(e["pending_cents"] for e in inflows),
        },
    }


def summary_to_dict(summary: UserPeriodSummary, include_entries: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": summary.id,
        "user_id": summary.user_id,
        "period_type": summary.period_type.value,
        "source_period_id": summary.source_period_id,
        "period_start": summary.period_start.isoformat(),
        "period_end": summary.period_end.isoformat(),
        "year": summary.year,
        "month": summary.month,
        "week_number": summary.week_number,
        "totals": json.loads(summary.totals_json),
        "cross_metrics": {
            "total_income_cents": summary.total_income_cents,
            "total_expenses_cents": summary.total_expenses_cents,
            "net_cash_flow_cents": summary.net_cash_flow_cents,
            "savings_rate": summary.savings_rate,
        },
        "last_recalculated": _iso(summary.last_recalculated),
    }
    if include_entries:
        data["budgets"] = json.loads(summary.budgets_json)
        data["outflows"] = json.loads(summary.outflows_json)
        data["inflows"] = json.loads(summary.inflows_json)
    return data


class SummaryAggregator:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        debounce_secs: Optional[float] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        if debounce_secs is None:
            debounce_secs = get_settings().summary_debounce_secs
        self.debounce_secs = debounce_secs
        self.calendar = SourcePeriodCalendar(session)

    def _source_period(self, period_type: PeriodType, source_period_id: str) -> SourcePeriod:
        period = self.calendar.get(source_period_id)
        if period.type != period_type:
            raise ValidationError(
                f"Source period {source_period_id} is {period.type.value}, "
                f"not {period_type.value}"
            )
        return period

    def recompute(
        self,
        period_type: PeriodType,
        source_period_id: str,
        *,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> UserPeriodSummary:
        now = now or datetime.utcnow()
        period = self._source_period(period_type, source_period_id)
        key = summary_id(self.user_id, period_type, source_period_id)
        summary = self.session.get(UserPeriodSummary, key)
        if (
            summary is not None
            and not force
            and summary.last_recalculated is not None
            and (now - summary.last_recalculated).total_seconds() < self.debounce_secs
        ):
            logger.info(f"summary_recompute_debounced: id={key}")
            return summary
        if summary is None:
            # Filled before add so autoflush never sees a half-built row.
            summary = UserPeriodSummary(id=key, user_id=self.user_id)
            self._fill(summary, period, now)
            self.session.add(summary)
        else:
            self._fill(summary, period, now)
        self.session.flush()
        logger.info(f"summary_recomputed: id={key} forced={force}")
        return summary

    def _fill(self, summary: UserPeriodSummary, period: SourcePeriod, now: datetime) -> None:
        stmt = (
            select(PeriodInstance, Obligation)
            .join(Obligation, PeriodInstance.obligation_id == Obligation.id)
            .where(
                PeriodInstance.user_id == self.user_id,
                PeriodInstance.period_type == period.type,
                PeriodInstance.source_period_id == period.id,
                PeriodInstance.is_active.is_(True),
            )
            .order_by(Obligation.name, PeriodInstance.id)
        )
        budgets: list[dict[str, Any]] = []
        outflows: list[dict[str, Any]] = []
        inflows: list[dict[str, Any]] = []
        expenses = 0
        income = 0
        for instance, obligation in self.session.execute(stmt):
            if instance.kind == ObligationKind.budget:
                budgets.append(_budget_entry(instance, obligation))
                expenses += instance.paid_cents
            elif instance.kind == ObligationKind.outflow:
                outflows.append(_outflow_entry(instance, obligation))
                expenses += instance.paid_cents + instance.extra_principal_cents
            else:
                inflows.append(_inflow_entry(instance, obligation))
                income += instance.paid_cents

        summary.period_type = period.type
        summary.source_period_id = period.id
        summary.period_start = period.start_date
        summary.period_end = period.end_date
        summary.year = period.year
        summary.month = period.month
        summary.week_number = period.week_number
        summary.budgets_json = json.dumps(budgets)
        summary.outflows_json = json.dumps(outflows)
        summary.inflows_json = json.dumps(inflows)
        summary.totals_json = json.dumps(_totals(budgets, outflows, inflows))
        summary.total_income_cents = income
        summary.total_expenses_cents = expenses
        summary.net_cash_flow_cents = income - expenses
        summary.savings_rate = (
            round((income - expenses) * 100 / income, 2) if income > 0 else 0.0
        )
        summary.last_recalculated = now

    def get(
        self,
        period_type: PeriodType,
        source_period_id: str,
        *,
        include_entries: bool = False,
    ) -> dict[str, Any]:
        self._source_period(period_type, source_period_id)
        summary = self.session.get(
            UserPeriodSummary, summary_id(self.user_id, period_type, source_period_id)
        )
        if summary is None:
            logger.info(
                f"summary_generated_on_read: user={self.user_id} "
                f"type={period_type.value} period={source_period_id}"
            )
            summary = self.recompute(period_type, source_period_id, force=True)
        return summary_to_dict(summary, include_entries)

    def pre_create(self, window: Optional[int] = None) -> int:
        window = get_settings().precreate_window if window is None else window
        now = datetime.utcnow()
        count = 0
        for period_type in PeriodType:
            try:
                periods = self.calendar.window(period_type, window)
            except PreconditionNotMetError:
                logger.warning(
                    f"summary_precreate_skipped: user={self.user_id} "
                    f"type={period_type.value} reason=no_current_period"
                )
                continue
            for period in periods:
                self.recompute(period_type, period.id, force=True, now=now)
                count += 1
        logger.info(f"summary_precreated: user={self.user_id} count={count}")
        return count
