"""Entry points invoked when ledger or period-instance rows change.

Each handler takes before/after snapshots, performs the core mutation, commits,
and then refreshes the affected summaries. Summary refresh failures are logged
and never undo the committed core mutation.
"""

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from assignments import SplitAssignmentService
from database import commit
from errors import AggregationDegradation
from generator import GenerationResult, PeriodAllocationGenerator
from models import Obligation, PeriodInstance, PeriodType
from obligations import behavior_for
from occurrences import OccurrenceTracker
from recurrence import local_today
from snapshots import BOOKKEEPING_FIELDS, TransactionSnapshot, changed_fields
from spending import SpendingDeltaPropagator
from summaries import SummaryAggregator, SummaryKey, summary_key_for


logger = logging.getLogger(__name__)


def refresh_instance(
    instance: PeriodInstance, *, rematch: bool = True, today: Optional[date] = None
) -> None:
    behavior = behavior_for(instance.kind)
    if rematch and behavior.tracks_due_dates:
        OccurrenceTracker().refresh(instance)
    instance.status = behavior.compute_status(instance, today or local_today())
    instance.last_calculated = datetime.utcnow()


def refresh_summary(session: Session, key: SummaryKey) -> None:
    try:
        SummaryAggregator(session, key.user_id).recompute(
            key.period_type, key.source_period_id
        )
        commit(session)
    except Exception as exc:
        session.rollback()
        raise AggregationDegradation(
            f"summary refresh failed for {key.user_id}/{key.period_type.value}/"
            f"{key.source_period_id}"
        ) from exc


def refresh_summaries_quietly(session: Session, keys: Iterable[SummaryKey]) -> int:
    refreshed = 0
    ordered = sorted(
        set(keys), key=lambda k: (k.user_id, k.period_type.value, k.source_period_id)
    )
    for key in ordered:
        try:
            refresh_summary(session, key)
        except AggregationDegradation:
            logger.exception(f"summary_refresh_failed: key={tuple(key)}")
            continue
        refreshed += 1
    return refreshed


def _summary_key(snapshot: dict[str, Any]) -> SummaryKey:
    return SummaryKey(
        snapshot["user_id"],
        PeriodType(snapshot["period_type"]),
        snapshot["source_period_id"],
    )


def _load_instances(
    session: Session, instance_ids: Iterable[str]
) -> list[PeriodInstance]:
    ids = sorted(set(instance_ids))
    if not ids:
        return []
    stmt = (
        select(PeriodInstance)
        .where(PeriodInstance.id.in_(ids))
        .order_by(PeriodInstance.id)
    )
    return list(session.scalars(stmt))


def on_transaction_written(
    session: Session,
    before: Optional[TransactionSnapshot],
    after: Optional[TransactionSnapshot],
    *,
    today: Optional[date] = None,
) -> set[str]:
    touched = SpendingDeltaPropagator(session).propagate(before, after)
    touched |= SplitAssignmentService(session).sync(before, after)
    instances = _load_instances(session, touched)
    for instance in instances:
        session.expire(instance, ["splits"])
        refresh_instance(instance, today=today)
    session.flush()
    keys = [summary_key_for(instance) for instance in instances]
    commit(session)
    if touched:
        logger.info(f"transaction_propagated: periods={len(touched)}")
    refresh_summaries_quietly(session, keys)
    return touched


def on_period_instance_written(
    session: Session,
    before: Optional[dict[str, Any]],
    after: Optional[dict[str, Any]],
    *,
    today: Optional[date] = None,
) -> None:
    if after is None:
        if before is not None:
            refresh_summaries_quietly(session, [_summary_key(before)])
        return

    key = _summary_key(after)
    if before is not None:
        changed = changed_fields(before, after)
        if not changed:
            return
        if changed <= BOOKKEEPING_FIELDS:
            logger.info(
                f"period_rematch_skipped: id={after['id']} fields={sorted(changed)}"
            )
            refresh_summaries_quietly(session, [key])
            return
        rematch = "split_ids" in changed
    else:
        rematch = True

    instance = session.get(PeriodInstance, after["id"])
    if instance is None:
        return
    refresh_instance(instance, rematch=rematch, today=today)
    commit(session)
    refresh_summaries_quietly(session, [key])


def on_obligation_created(
    session: Session, obligation: Obligation, *, today: Optional[date] = None
) -> GenerationResult:
    result = PeriodAllocationGenerator(session).generate(obligation, today=today)
    if behavior_for(obligation.kind).uses_spending_delta:
        touched = SpendingDeltaPropagator(session).backfill(obligation)
        for instance in _load_instances(session, touched):
            refresh_instance(instance, rematch=False, today=today)
        commit(session)
    created = _load_instances(session, result.created_ids)
    keys = [summary_key_for(instance) for instance in created]
    refresh_summaries_quietly(session, keys)
    return result


def on_account_created(session: Session, user_id: int) -> int:
    try:
        count = SummaryAggregator(session, user_id).pre_create()
        commit(session)
    except Exception:
        session.rollback()
        logger.exception(f"summary_precreate_failed: user={user_id}")
        return 0
    return count
