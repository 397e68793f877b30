from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import Base, commit_in_chunks
from errors import PreconditionNotMetError, TransientStorageError, ValidationError
from factories import period_containing, seed_calendar
from generator import PeriodAllocationGenerator, default_generation_end
from models import (
    Category,
    Frequency,
    Obligation,
    ObligationKind,
    PeriodInstance,
    PeriodStatus,
    PeriodType,
    TransactionType,
)
from occurrences import load_occurrences
from schemas import ObligationIn
from services import ObligationService


def _rent(session: Session, **overrides) -> Obligation:
    values = dict(
        user_id=1,
        kind=ObligationKind.outflow,
        name="Rent",
        amount_cents=100_000,
        frequency=Frequency.monthly,
        first_date=date(2025, 10, 1),
        is_active=True,
    )
    values.update(overrides)
    obligation = Obligation(**values)
    session.add(obligation)
    session.commit()
    return obligation


def test_generates_one_instance_per_overlapping_period() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        rows = seed_calendar(session, 2025)
        rent = _rent(session)

        result = PeriodAllocationGenerator(session).generate(
            rent, date(2025, 10, 1), date(2025, 12, 31), today=date(2025, 9, 20)
        )

        # 3 months, 6 halves and the 14 Sunday weeks touching Oct 1 - Dec 31.
        assert len(result.created_ids) == 23
        assert result.skipped == 0
        by_type = dict(
            session.execute(
                select(PeriodInstance.period_type, func.count())
                .where(PeriodInstance.obligation_id == rent.id)
                .group_by(PeriodInstance.period_type)
            ).all()
        )
        assert by_type == {
            PeriodType.monthly: 3,
            PeriodType.bi_monthly: 6,
            PeriodType.weekly: 14,
        }

        october = session.get(PeriodInstance, f"{rent.id}_2025-M10")
        assert october.allocated_cents == 100_000
        assert october.amount_due_cents == 100_000
        assert october.is_due_period is True
        assert october.due_date == date(2025, 10, 1)
        assert october.status == PeriodStatus.pending

        second_half = session.get(PeriodInstance, f"{rent.id}_2025-BM10B")
        assert second_half.allocated_cents == 50_000
        assert second_half.is_due_period is False
        assert second_half.amount_due_cents == 0
        assert second_half.expected_due_date == date(2025, 11, 1)

        last_week = period_containing(rows, PeriodType.weekly, date(2025, 12, 31))
        assert rent.first_generated_period_id == period_containing(
            rows, PeriodType.weekly, date(2025, 10, 1)
        ).id
        assert rent.last_generated_period_id == last_week.id
        assert rent.generated_until == date(2025, 12, 31)
        assert rent.needs_future_generation is True


def test_generation_is_idempotent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _rent(session)
        generator = PeriodAllocationGenerator(session)
        first = generator.generate(rent, date(2025, 10, 1), date(2025, 11, 30))
        second = generator.generate(rent, date(2025, 10, 1), date(2025, 11, 30))

        assert second.created_ids == []
        assert second.skipped == len(first.created_ids)
        total = session.scalar(
            select(func.count()).select_from(PeriodInstance).where(
                PeriodInstance.obligation_id == rent.id
            )
        )
        assert total == len(first.created_ids)


def test_small_batches_still_write_everything() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _rent(session)
        result = PeriodAllocationGenerator(session, batch_size=5).generate(
            rent, date(2025, 10, 1), date(2025, 12, 31)
        )
        assert len(result.created_ids) == 23
        stored = session.scalar(select(func.count()).select_from(PeriodInstance))
        assert stored == 23


class _CountingSession:
    def __init__(self) -> None:
        self.added: list[object] = []
        self.commits = 0

    def add_all(self, rows) -> None:
        self.added.extend(rows)

    def commit(self) -> None:
        self.commits += 1


def test_commit_in_chunks_commits_each_chunk() -> None:
    session = _CountingSession()
    written = commit_in_chunks(session, list(range(12)), 5)
    assert written == 12
    assert session.commits == 3
    assert session.added == list(range(12))

    with pytest.raises(ValueError):
        commit_in_chunks(session, [1], 0)


def test_failed_chunk_keeps_earlier_chunks(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        real_commit = session.commit
        calls = {"count": 0}

        def flaky_commit() -> None:
            calls["count"] += 1
            if calls["count"] == 3:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)
        rows = [
            Category(user_id=1, name=f"Category {index}", type=TransactionType.expense)
            for index in range(6)
        ]

        with pytest.raises(TransientStorageError):
            commit_in_chunks(session, rows, 2)

    with Session(engine) as session:
        names = session.scalars(select(Category.name).order_by(Category.name)).all()
        assert names == [f"Category {index}" for index in range(4)]


def test_missing_calendar_raises_precondition() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        rent = _rent(session)
        with pytest.raises(PreconditionNotMetError):
            PeriodAllocationGenerator(session).generate(
                rent, date(2025, 10, 1), date(2025, 12, 31)
            )


def test_obligation_creation_rolls_back_without_calendar() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        service = ObligationService(session)
        with pytest.raises(PreconditionNotMetError):
            service.create(
                ObligationIn(
                    kind=ObligationKind.outflow,
                    name="Rent",
                    amount_cents=100_000,
                    frequency=Frequency.monthly,
                    first_date=date(2025, 10, 1),
                ),
                today=date(2025, 10, 1),
            )
        assert service.list_all() == []


def test_empty_range_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _rent(session)
        with pytest.raises(ValidationError):
            PeriodAllocationGenerator(session).generate(
                rent, date(2025, 12, 1), date(2025, 11, 1)
            )


def test_fixed_end_date_caps_generation() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        loan = _rent(
            session,
            name="Car loan",
            first_date=date(2025, 1, 15),
            fixed_end_date=date(2025, 3, 15),
        )
        assert default_generation_end(loan, date(2025, 1, 1)) == date(2025, 3, 15)

        PeriodAllocationGenerator(session).generate(loan, today=date(2025, 1, 1))
        months = session.scalars(
            select(PeriodInstance.source_period_id)
            .where(
                PeriodInstance.obligation_id == loan.id,
                PeriodInstance.period_type == PeriodType.monthly,
            )
            .order_by(PeriodInstance.period_start)
        ).all()
        assert months == ["2025-M01", "2025-M02", "2025-M03"]
        assert loan.needs_future_generation is False


def test_weekly_bill_in_month_tracks_each_occurrence() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        bill = _rent(
            session,
            name="Cleaner",
            amount_cents=2_500,
            frequency=Frequency.weekly,
            first_date=date(2025, 10, 3),
        )
        PeriodAllocationGenerator(session).generate(
            bill, date(2025, 10, 1), date(2025, 11, 30)
        )
        november = session.get(PeriodInstance, f"{bill.id}_2025-M11")
        occurrences = load_occurrences(november)
        assert occurrences.due_dates == [
            date(2025, 11, 7),
            date(2025, 11, 14),
            date(2025, 11, 21),
            date(2025, 11, 28),
        ]
        assert occurrences.paid_flags == [False] * 4
        assert november.amount_due_cents == 10_000
        assert november.occurrences_unpaid == 4

        # Weekly instances are native for a weekly bill and carry no occurrence arrays.
        weekly = session.scalars(
            select(PeriodInstance).where(
                PeriodInstance.obligation_id == bill.id,
                PeriodInstance.period_type == PeriodType.weekly,
            )
        ).first()
        assert load_occurrences(weekly) is None
