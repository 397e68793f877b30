from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import PreconditionNotMetError, ValidationError
from factories import period_containing, seed_calendar
from matching import PeriodMatcher
from models import (
    Frequency,
    ObligationKind,
    PaymentType,
    PeriodInstance,
    PeriodStatus,
    PeriodType,
    TransactionSplit,
    TransactionType,
)
from schemas import ObligationIn, TransactionIn, TransactionSplitIn
from services import ObligationService, TransactionService


def _obligation(session: Session, kind: ObligationKind, first_date: date, **overrides):
    data = dict(
        kind=kind,
        name="Rent" if kind == ObligationKind.outflow else "Groceries",
        amount_cents=100_000,
        frequency=Frequency.monthly,
        first_date=first_date,
    )
    data.update(overrides)
    return ObligationService(session).create(ObligationIn(**data), today=date(2025, 9, 1))


def test_by_date_returns_one_instance_per_granularity() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        rows = seed_calendar(session, 2025)
        budget = _obligation(
            session, ObligationKind.budget, date(2025, 10, 1), amount_cents=50_000
        )
        result = PeriodMatcher(session).by_date(budget.id, date(2025, 10, 15))

        week = period_containing(rows, PeriodType.weekly, date(2025, 10, 15))
        assert result.monthly_id == f"{budget.id}_2025-M10"
        assert result.bi_monthly_id == f"{budget.id}_2025-BM10A"
        assert result.weekly_id == f"{budget.id}_{week.id}"
        assert result.found_count == 3


def test_by_date_without_instances_raises() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _obligation(session, ObligationKind.budget, date(2025, 10, 1))
        with pytest.raises(PreconditionNotMetError):
            PeriodMatcher(session).by_date(budget.id, date(2030, 1, 1))


def test_matcher_scoped_to_owner_ignores_other_users() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        budget = _obligation(session, ObligationKind.budget, date(2025, 10, 1))

        owned = PeriodMatcher(session, user_id=1).by_date(budget.id, date(2025, 10, 15))
        assert owned.monthly_id == f"{budget.id}_2025-M10"
        with pytest.raises(PreconditionNotMetError):
            PeriodMatcher(session, user_id=2).by_date(budget.id, date(2025, 10, 15))


def test_target_periods_route_advance_payments() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _obligation(session, ObligationKind.outflow, date(2025, 1, 1))
        matcher = PeriodMatcher(session)

        monthly_ids = []
        for target in ("2025-M10", "2025-M11", "2025-M12"):
            split = TransactionSplit(
                amount_cents=100_000,
                payment_type=PaymentType.advance,
                target_monthly_period_id=target,
            )
            result = matcher.for_split(rent.id, split, date(2025, 9, 5))
            monthly_ids.append(result.monthly_id)
            assert result.bi_monthly_id.endswith(target.replace("-M", "-BM") + "A")
        assert monthly_ids == [
            f"{rent.id}_2025-M10",
            f"{rent.id}_2025-M11",
            f"{rent.id}_2025-M12",
        ]


def test_advance_payment_marks_future_months_paid_early() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _obligation(session, ObligationKind.outflow, date(2025, 1, 1))
        TransactionService(session).create(
            TransactionIn(
                date=date(2025, 9, 5),
                type=TransactionType.expense,
                amount_cents=300_000,
                splits=[
                    TransactionSplitIn(
                        amount_cents=100_000,
                        obligation_id=rent.id,
                        payment_type=PaymentType.advance,
                        target_monthly_period_id=target,
                    )
                    for target in ("2025-M10", "2025-M11", "2025-M12")
                ],
            ),
            today=date(2025, 9, 5),
        )

        for month in ("M10", "M11", "M12"):
            instance = session.get(PeriodInstance, f"{rent.id}_2025-{month}")
            assert instance.paid_cents == 100_000
            assert instance.remaining_cents == 0
            assert instance.status == PeriodStatus.paid_early
        september = session.get(PeriodInstance, f"{rent.id}_2025-M09")
        assert september.paid_cents == 0


def test_secondary_target_overrides_its_granularity() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _obligation(session, ObligationKind.outflow, date(2025, 1, 1))
        split = TransactionSplit(
            amount_cents=100_000,
            target_monthly_period_id="2025-M10",
            target_bi_monthly_period_id="2025-BM10B",
        )
        result = PeriodMatcher(session).for_split(rent.id, split, date(2025, 9, 5))
        assert result.monthly_id == f"{rent.id}_2025-M10"
        assert result.bi_monthly_id == f"{rent.id}_2025-BM10B"

        wrong = TransactionSplit(
            amount_cents=100_000,
            target_monthly_period_id="2025-M10",
            target_weekly_period_id="2025-M11",
        )
        with pytest.raises(ValidationError):
            PeriodMatcher(session).for_split(rent.id, wrong, date(2025, 9, 5))


def test_unknown_target_period_raises() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _obligation(session, ObligationKind.outflow, date(2025, 1, 1))
        split = TransactionSplit(amount_cents=1, target_monthly_period_id="2031-M01")
        with pytest.raises(PreconditionNotMetError):
            PeriodMatcher(session).for_split(rent.id, split, date(2025, 9, 5))


def test_split_without_targets_matches_by_transaction_date() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed_calendar(session, 2025)
        rent = _obligation(session, ObligationKind.outflow, date(2025, 1, 1))
        split = TransactionSplit(amount_cents=100_000)
        result = PeriodMatcher(session).for_split(rent.id, split, date(2025, 3, 2))
        assert result.monthly_id == f"{rent.id}_2025-M03"
        assert result.found_count == 3
