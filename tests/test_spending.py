from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from factories import seed_calendar
from models import (
    Frequency,
    ObligationKind,
    PeriodInstance,
    PeriodStatus,
    TransactionSplit,
    TransactionStatus,
    TransactionType,
)
from schemas import CategoryIn, ObligationIn, TransactionIn, TransactionSplitIn
from services import CategoryService, ObligationService, TransactionService
from snapshots import snapshot_transaction
from spending import spending_delta
from triggers import on_transaction_written


TODAY = date(2025, 10, 20)


def _groceries_budget(session: Session, category_id: int):
    return ObligationService(session).create(
        ObligationIn(
            kind=ObligationKind.budget,
            name="Groceries",
            amount_cents=50_000,
            frequency=Frequency.monthly,
            first_date=date(2025, 10, 1),
            category_ids=[category_id],
        ),
        today=TODAY,
    )


def _expense(budget_id, amount: int, when: date, **extra) -> TransactionIn:
    return TransactionIn(
        date=when,
        type=TransactionType.expense,
        amount_cents=amount,
        splits=[TransactionSplitIn(amount_cents=amount, obligation_id=budget_id)],
        **extra,
    )


def _category(session: Session):
    return CategoryService(session).create(
        CategoryIn(name="Groceries", type=TransactionType.expense)
    )


def test_spending_is_added_and_removed() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert (october.paid_cents, october.allocated_cents) == (0, 50_000)

        transactions = TransactionService(session)
        txn = transactions.create(_expense(budget.id, 5_000, date(2025, 10, 15)), today=TODAY)

        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 5_000
        assert october.remaining_cents == 45_000
        assert october.status == PeriodStatus.on_track
        first_half = session.get(PeriodInstance, f"{budget.id}_2025-BM10A")
        assert first_half.paid_cents == 5_000

        transactions.soft_delete(txn.id, today=TODAY)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert (october.paid_cents, october.allocated_cents) == (0, 50_000)
        assert october.remaining_cents == 50_000


def test_updates_apply_the_difference() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        transactions = TransactionService(session)
        txn = transactions.create(_expense(budget.id, 5_000, date(2025, 10, 15)), today=TODAY)

        transactions.update(txn.id, _expense(budget.id, 7_000, date(2025, 10, 15)), today=TODAY)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 7_000

        transactions.update(txn.id, _expense(budget.id, 7_000, date(2025, 11, 3)), today=TODAY)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        november = session.get(PeriodInstance, f"{budget.id}_2025-M11")
        assert october.paid_cents == 0
        assert november.paid_cents == 7_000


def test_only_approved_expenses_count() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        transactions = TransactionService(session)
        txn = transactions.create(
            _expense(budget.id, 5_000, date(2025, 10, 15), status=TransactionStatus.pending),
            today=TODAY,
        )
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 0

        transactions.update(txn.id, _expense(budget.id, 5_000, date(2025, 10, 15)), today=TODAY)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 5_000


def test_overspending_flips_budget_status() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        TransactionService(session).create(
            _expense(budget.id, 60_000, date(2025, 10, 15)), today=TODAY
        )
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.status == PeriodStatus.over_budget
        assert october.remaining_cents == -10_000


def test_redelivered_event_without_change_is_a_no_op() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        txn = TransactionService(session).create(
            _expense(budget.id, 5_000, date(2025, 10, 15)), today=TODAY
        )
        snapshot = snapshot_transaction(TransactionService(session).get(txn.id))
        assert spending_delta(snapshot, snapshot) == {}

        touched = on_transaction_written(session, snapshot, snapshot, today=TODAY)
        assert touched == set()
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 5_000


def test_income_never_counts_as_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        TransactionService(session).create(
            TransactionIn(
                date=date(2025, 10, 15),
                type=TransactionType.income,
                amount_cents=5_000,
                splits=[TransactionSplitIn(amount_cents=5_000, obligation_id=budget.id)],
            ),
            today=TODAY,
        )
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 0


def test_new_budget_backfills_historical_spending() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        groceries = _category(session)
        transactions = TransactionService(session)
        txn = transactions.create(
            TransactionIn(
                date=date(2025, 10, 10),
                type=TransactionType.expense,
                amount_cents=3_000,
                category_id=groceries.id,
            ),
            today=TODAY,
        )

        budget = _groceries_budget(session, groceries.id)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 3_000
        split = session.get(TransactionSplit, txn.splits[0].id)
        assert split.obligation_id == budget.id

        transactions.soft_delete(txn.id, today=TODAY)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 0


def test_restored_transaction_counts_again() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _groceries_budget(session, _category(session).id)
        transactions = TransactionService(session)
        txn = transactions.create(_expense(budget.id, 5_000, date(2025, 10, 15)), today=TODAY)
        transactions.soft_delete(txn.id, today=TODAY)
        transactions.restore(txn.id, today=TODAY)

        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 5_000


def test_category_expense_after_budget_counts_toward_it() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        groceries = _category(session)
        budget = _groceries_budget(session, groceries.id)
        transactions = TransactionService(session)
        txn = transactions.create(
            TransactionIn(
                date=date(2025, 10, 15),
                type=TransactionType.expense,
                amount_cents=5_000,
                category_id=groceries.id,
            ),
            today=TODAY,
        )

        assert txn.splits[0].obligation_id == budget.id
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 5_000
        assert october.remaining_cents == 45_000

        transactions.soft_delete(txn.id, today=TODAY)
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 0


def test_category_expense_outside_budget_periods_stays_unassigned() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        groceries = _category(session)
        budget = _groceries_budget(session, groceries.id)
        txn = TransactionService(session).create(
            TransactionIn(
                date=date(2025, 9, 15),
                type=TransactionType.expense,
                amount_cents=5_000,
                category_id=groceries.id,
            ),
            today=TODAY,
        )

        assert txn.splits[0].obligation_id is None
        october = session.get(PeriodInstance, f"{budget.id}_2025-M10")
        assert october.paid_cents == 0
