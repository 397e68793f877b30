import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from database import commit
from errors import ValidationError
from generator import (
    GenerationResult,
    PeriodAllocationGenerator,
    default_generation_end,
)
from models import (
    Category,
    Obligation,
    PeriodInstance,
    Transaction,
    TransactionSplit,
    TransactionType,
)
from recurrence import local_today
from schemas import CategoryIn, ObligationIn, PeriodSummaryRequest, TransactionIn
from snapshots import snapshot_period_instance, snapshot_transaction
from source_periods import SourcePeriodCalendar
from spending import SpendingDeltaPropagator
from summaries import SummaryAggregator, summary_key_for, summary_to_dict
from triggers import (
    on_account_created,
    on_obligation_created,
    on_period_instance_written,
    on_transaction_written,
    refresh_instance,
    refresh_summaries_quietly,
)


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=data.name.strip(), type=data.type)
        self.session.add(category)
        commit(self.session)
        self.session.refresh(category)
        return category


class ObligationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _categories(self, category_ids: list[int]) -> list[Category]:
        categories: list[Category] = []
        for category_id in dict.fromkeys(category_ids):
            category = self.session.get(Category, category_id)
            if not category or category.user_id != self.user_id:
                raise ValueError("Category not found")
            categories.append(category)
        return categories

    def create(self, data: ObligationIn, *, today: Optional[date] = None) -> Obligation:
        if data.fixed_end_date and data.fixed_end_date < data.first_date:
            raise ValidationError("End date must not be before the first date")
        obligation = Obligation(
            user_id=self.user_id,
            kind=data.kind,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            frequency=data.frequency,
            first_date=data.first_date,
            fixed_end_date=data.fixed_end_date,
            is_active=True,
        )
        obligation.categories = self._categories(data.category_ids)
        self.session.add(obligation)
        try:
            self.session.flush()
            on_obligation_created(self.session, obligation, today=today)
        except Exception:
            self.session.rollback()
            raise
        return obligation

    def get(self, obligation_id: int) -> Obligation:
        obligation = self.session.get(Obligation, obligation_id)
        if not obligation or obligation.user_id != self.user_id:
            raise ValueError("Obligation not found")
        return obligation

    def list_all(self, include_inactive: bool = False) -> list[Obligation]:
        stmt = (
            select(Obligation)
            .where(Obligation.user_id == self.user_id)
            .order_by(Obligation.kind, Obligation.name)
        )
        if not include_inactive:
            stmt = stmt.where(Obligation.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def extend(
        self,
        obligation_id: int,
        until: Optional[date] = None,
        *,
        today: Optional[date] = None,
    ) -> GenerationResult:
        obligation = self.get(obligation_id)
        if not obligation.is_active:
            raise ValueError("Obligation is inactive")
        today = today or local_today()
        until = until or default_generation_end(obligation, today)
        start = obligation.first_date
        if obligation.generated_until:
            start = max(start, obligation.generated_until + timedelta(days=1))
        if obligation.fixed_end_date and start > obligation.fixed_end_date:
            return GenerationResult()
        if start > until:
            return GenerationResult()
        result = PeriodAllocationGenerator(self.session).generate(
            obligation, start, until, today=today
        )
        created = self.session.scalars(
            select(PeriodInstance).where(PeriodInstance.id.in_(result.created_ids))
        ).all()
        refresh_summaries_quietly(
            self.session, [summary_key_for(instance) for instance in created]
        )
        return result

    def deactivate(self, obligation_id: int) -> int:
        obligation = self.get(obligation_id)
        obligation.is_active = False
        obligation.needs_future_generation = False
        instances = self.session.scalars(
            select(PeriodInstance).where(
                PeriodInstance.obligation_id == obligation.id,
                PeriodInstance.is_active.is_(True),
            )
        ).all()
        changes: list[tuple[dict[str, Any], PeriodInstance]] = []
        for instance in instances:
            before = snapshot_period_instance(instance)
            instance.is_active = False
            changes.append((before, instance))
        commit(self.session)
        for before, instance in changes:
            on_period_instance_written(
                self.session, before, snapshot_period_instance(instance)
            )
        logger.info(
            f"obligation_deactivated: obligation={obligation.id} periods={len(changes)}"
        )
        return len(changes)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _validate(self, data: TransactionIn) -> None:
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category or category.user_id != self.user_id:
                raise ValueError("Category not found")
            if category.type != data.type:
                raise ValueError("Category type mismatch")
        if data.splits:
            total = sum(split.amount_cents for split in data.splits)
            if total != data.amount_cents:
                raise ValidationError(
                    f"Split amounts ({total}) must add up to the transaction "
                    f"amount ({data.amount_cents})"
                )
        for split in data.splits:
            if split.obligation_id is not None:
                obligation = self.session.get(Obligation, split.obligation_id)
                if not obligation or obligation.user_id != self.user_id:
                    raise ValueError("Obligation not found")
            if split.category_id is not None:
                category = self.session.get(Category, split.category_id)
                if not category or category.user_id != self.user_id:
                    raise ValueError("Category not found")

    def _build_splits(self, data: TransactionIn) -> list[TransactionSplit]:
        if not data.splits:
            splits = [
                TransactionSplit(
                    amount_cents=data.amount_cents,
                    category_id=data.category_id,
                )
            ]
        else:
            splits = [
                TransactionSplit(
                    amount_cents=split.amount_cents,
                    obligation_id=split.obligation_id,
                    category_id=split.category_id or data.category_id,
                    payment_type=split.payment_type,
                    target_monthly_period_id=split.target_monthly_period_id,
                    target_weekly_period_id=split.target_weekly_period_id,
                    target_bi_monthly_period_id=split.target_bi_monthly_period_id,
                )
                for split in data.splits
            ]
        if data.type == TransactionType.expense:
            # Budget spending is attributed by category when no obligation is named.
            budgets = SpendingDeltaPropagator(self.session)
            for split in splits:
                if split.obligation_id is None:
                    split.obligation_id = budgets.budget_for(
                        self.user_id, split.category_id, data.date
                    )
        return splits

    def create(self, data: TransactionIn, *, today: Optional[date] = None) -> Transaction:
        self._validate(data)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            status=data.status,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            note=data.note,
        )
        txn.splits = self._build_splits(data)
        self.session.add(txn)
        try:
            self.session.flush()
            on_transaction_written(
                self.session, None, snapshot_transaction(txn), today=today
            )
        except Exception:
            self.session.rollback()
            raise
        return txn

    def get(self, transaction_id: int, *, include_deleted: bool = False) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                selectinload(Transaction.splits).selectinload(
                    TransactionSplit.period_instances
                )
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not include_deleted:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def update(
        self, transaction_id: int, data: TransactionIn, *, today: Optional[date] = None
    ) -> Transaction:
        txn = self.get(transaction_id)
        self._validate(data)
        before = snapshot_transaction(txn)
        txn.date = data.date
        txn.type = data.type
        txn.status = data.status
        txn.amount_cents = data.amount_cents
        txn.category_id = data.category_id
        txn.note = data.note
        txn.splits = self._build_splits(data)
        try:
            self.session.flush()
            on_transaction_written(
                self.session, before, snapshot_transaction(txn), today=today
            )
        except Exception:
            self.session.rollback()
            raise
        return txn

    def soft_delete(self, transaction_id: int, *, today: Optional[date] = None) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        if txn.deleted_at is not None:
            return
        before = snapshot_transaction(txn)
        txn.deleted_at = datetime.utcnow()
        try:
            self.session.flush()
            on_transaction_written(self.session, before, None, today=today)
        except Exception:
            self.session.rollback()
            raise

    def restore(self, transaction_id: int, *, today: Optional[date] = None) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        if txn.deleted_at is None:
            return
        txn.deleted_at = None
        try:
            self.session.flush()
            on_transaction_written(
                self.session, None, snapshot_transaction(txn), today=today
            )
        except Exception:
            self.session.rollback()
            raise


class SummaryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get_period_summary(self, request: PeriodSummaryRequest) -> dict[str, Any]:
        aggregator = SummaryAggregator(self.session, self.user_id)
        data = aggregator.get(
            request.period_type,
            request.source_period_id,
            include_entries=request.include_entries,
        )
        commit(self.session)
        return data

    def recalculate_period_summary(self, request: PeriodSummaryRequest) -> dict[str, Any]:
        aggregator = SummaryAggregator(self.session, self.user_id)
        summary = aggregator.recompute(
            request.period_type, request.source_period_id, force=request.forced
        )
        commit(self.session)
        return summary_to_dict(summary, request.include_entries)

    def pre_create(self) -> int:
        return on_account_created(self.session, self.user_id)


class MaintenanceService:
    """Periodic upkeep: current-period flags, top-up generation, status drift."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def refresh_current_periods(self, today: date) -> int:
        count = SourcePeriodCalendar(self.session).refresh_current_flags(today)
        commit(self.session)
        return count

    def top_up_obligations(self, today: date) -> int:
        obligations = self.session.scalars(
            select(Obligation).where(
                Obligation.is_active.is_(True),
                Obligation.needs_future_generation.is_(True),
            )
        ).all()
        created = 0
        for obligation in obligations:
            target = default_generation_end(obligation, today)
            if obligation.generated_until and obligation.generated_until >= target:
                continue
            service = ObligationService(self.session, obligation.user_id)
            result = service.extend(obligation.id, target, today=today)
            created += len(result.created_ids)
        return created

    def refresh_statuses(self, today: date) -> int:
        instances = self.session.scalars(
            select(PeriodInstance).where(
                PeriodInstance.is_active.is_(True),
                PeriodInstance.period_start <= today,
                PeriodInstance.period_end >= today,
            )
        ).all()
        changed = []
        for instance in instances:
            previous = instance.status
            refresh_instance(instance, rematch=False, today=today)
            if instance.status != previous:
                changed.append(instance)
        commit(self.session)
        refresh_summaries_quietly(
            self.session, [summary_key_for(instance) for instance in changed]
        )
        return len(changed)

    def run(self, today: Optional[date] = None) -> dict[str, int]:
        today = today or local_today()
        return {
            "current_periods": self.refresh_current_periods(today),
            "periods_created": self.top_up_obligations(today),
            "statuses_changed": self.refresh_statuses(today),
        }
