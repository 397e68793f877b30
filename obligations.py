from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable

from allocation import allocation_for_period
from config import get_settings
from matching import MatchingPeriodsResult, PeriodMatcher
from models import (
    Obligation,
    ObligationKind,
    PeriodInstance,
    PeriodStatus,
    SourcePeriod,
    TransactionSplit,
    TransactionType,
)
from status import calculate_budget_status, calculate_period_status


@dataclass(frozen=True)
class ObligationBehavior:
    kind: ObligationKind
    transaction_type: TransactionType
    tracks_due_dates: bool
    uses_spending_delta: bool
    compute_allocation: Callable[[Obligation, SourcePeriod], Decimal]
    match_transaction: Callable[
        [PeriodMatcher, Obligation, TransactionSplit, date], MatchingPeriodsResult
    ]
    compute_status: Callable[[PeriodInstance, date], PeriodStatus]


def _allocation(obligation: Obligation, period: SourcePeriod) -> Decimal:
    return allocation_for_period(
        obligation.amount_cents,
        obligation.frequency,
        period.type,
        period.start_date,
        period.end_date,
    )


def _match_by_date(
    matcher: PeriodMatcher, obligation: Obligation, split: TransactionSplit, when: date
) -> MatchingPeriodsResult:
    return matcher.by_date(obligation.id, when)


def _match_split(
    matcher: PeriodMatcher, obligation: Obligation, split: TransactionSplit, when: date
) -> MatchingPeriodsResult:
    return matcher.for_split(obligation.id, split, when)


def _budget_status(instance: PeriodInstance, today: date) -> PeriodStatus:
    return calculate_budget_status(instance.allocated_cents, instance.paid_cents)


def _payment_status(instance: PeriodInstance, today: date) -> PeriodStatus:
    # Occurrences already paid no longer drive overdue/due-soon.
    return calculate_period_status(
        instance.is_due_period,
        instance.next_unpaid_due_date or instance.due_date,
        instance.expected_due_date,
        instance.amount_due_cents,
        instance.splits,
        today=today,
        due_soon_days=get_settings().due_soon_days,
    )


BEHAVIORS: dict[ObligationKind, ObligationBehavior] = {
    ObligationKind.budget: ObligationBehavior(
        kind=ObligationKind.budget,
        transaction_type=TransactionType.expense,
        tracks_due_dates=False,
        uses_spending_delta=True,
        compute_allocation=_allocation,
        match_transaction=_match_by_date,
        compute_status=_budget_status,
    ),
    ObligationKind.outflow: ObligationBehavior(
        kind=ObligationKind.outflow,
        transaction_type=TransactionType.expense,
        tracks_due_dates=True,
        uses_spending_delta=False,
        compute_allocation=_allocation,
        match_transaction=_match_split,
        compute_status=_payment_status,
    ),
    ObligationKind.inflow: ObligationBehavior(
        kind=ObligationKind.inflow,
        transaction_type=TransactionType.income,
        tracks_due_dates=True,
        uses_spending_delta=False,
        compute_allocation=_allocation,
        match_transaction=_match_split,
        compute_status=_payment_status,
    ),
}


def behavior_for(kind: ObligationKind) -> ObligationBehavior:
    return BEHAVIORS[kind]


def instance_id(obligation_id: int, source_period_id: str) -> str:
    return f"{obligation_id}_{source_period_id}"
