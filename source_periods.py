import logging
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from errors import PreconditionNotMetError, ValidationError
from models import PeriodType, SourcePeriod
from schemas import SourcePeriodRow


logger = logging.getLogger(__name__)


class SourcePeriodCalendar:
    """Read access to the pre-generated period calendar.

    Downstream code never synthesizes calendar rows; a missing period or range
    surfaces as PreconditionNotMetError.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, period_id: str) -> SourcePeriod:
        period = self.session.get(SourcePeriod, period_id)
        if not period:
            raise PreconditionNotMetError(f"Source period {period_id} not found")
        return period

    def current(self, period_type: PeriodType) -> SourcePeriod:
        stmt = (
            select(SourcePeriod)
            .where(SourcePeriod.type == period_type, SourcePeriod.is_current.is_(True))
            .order_by(SourcePeriod.index)
            .limit(1)
        )
        period = self.session.scalars(stmt).first()
        if not period:
            raise PreconditionNotMetError(f"No current {period_type.value} period")
        return period

    def by_index_range(
        self, period_type: PeriodType, low: int, high: int
    ) -> list[SourcePeriod]:
        stmt = (
            select(SourcePeriod)
            .where(
                SourcePeriod.type == period_type,
                SourcePeriod.index >= low,
                SourcePeriod.index <= high,
            )
            .order_by(SourcePeriod.index)
        )
        return list(self.session.scalars(stmt))

    def window(self, period_type: PeriodType, size: int) -> list[SourcePeriod]:
        current = self.current(period_type)
        return self.by_index_range(
            period_type, current.index - size, current.index + size
        )

    def overlapping(
        self,
        start: date,
        end: date,
        period_types: Optional[Iterable[PeriodType]] = None,
    ) -> list[SourcePeriod]:
        if start > end:
            raise ValidationError("Range start must not be after range end")
        stmt = select(SourcePeriod).where(
            SourcePeriod.start_date <= end, SourcePeriod.end_date >= start
        )
        if period_types is not None:
            stmt = stmt.where(SourcePeriod.type.in_(list(period_types)))
        stmt = stmt.order_by(SourcePeriod.type, SourcePeriod.start_date)
        return list(self.session.scalars(stmt))

    def require_range(self, start: date, end: date) -> list[SourcePeriod]:
        periods = self.overlapping(start, end)
        if not periods:
            raise PreconditionNotMetError(
                f"No source periods cover {start.isoformat()}..{end.isoformat()}; "
                "populate the calendar first"
            )
        return periods

    def import_rows(self, rows: Sequence[SourcePeriodRow]) -> int:
        created = 0
        for row in rows:
            if row.start_date > row.end_date:
                raise ValidationError(f"Source period {row.id} ends before it starts")
            existing = self.session.get(SourcePeriod, row.id)
            if existing:
                if (
                    existing.type != row.type
                    or existing.start_date != row.start_date
                    or existing.end_date != row.end_date
                ):
                    raise ValidationError(
                        f"Source period {row.id} already exists with different bounds"
                    )
                continue
            self.session.add(
                SourcePeriod(
                    id=row.id,
                    type=row.type,
                    start_date=row.start_date,
                    end_date=row.end_date,
                    index=row.index,
                    is_current=False,
                    year=row.year,
                    month=row.month,
                    week_number=row.week_number,
                    bi_monthly_half=row.bi_monthly_half,
                )
            )
            created += 1
        self.session.flush()
        logger.info(f"source_periods_imported: created={created} rows={len(rows)}")
        return created

    def refresh_current_flags(self, today: date) -> int:
        self.session.execute(
            update(SourcePeriod)
            .where(SourcePeriod.is_current.is_(True))
            .values(is_current=False)
        )
        result = self.session.execute(
            update(SourcePeriod)
            .where(SourcePeriod.start_date <= today, SourcePeriod.end_date >= today)
            .values(is_current=True)
        )
        self.session.flush()
        return result.rowcount or 0
