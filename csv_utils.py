import csv
from datetime import datetime
from io import StringIO
from typing import Optional

from models import PeriodType
from schemas import SourcePeriodRow


def parse_date(value: str):
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d.%m.%Y").date()


def _optional_int(value: Optional[str]) -> Optional[int]:
    value = (value or "").strip()
    return int(value) if value else None


def parse_source_periods(content: str) -> tuple[list[SourcePeriodRow], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[SourcePeriodRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            rows.append(
                SourcePeriodRow(
                    id=(raw.get("Id") or "").strip(),
                    type=PeriodType((raw.get("Type") or "").strip().lower()),
                    start_date=parse_date(raw.get("StartDate") or ""),
                    end_date=parse_date(raw.get("EndDate") or ""),
                    index=int((raw.get("Index") or "").strip()),
                    year=int((raw.get("Year") or "").strip()),
                    month=_optional_int(raw.get("Month")),
                    week_number=_optional_int(raw.get("WeekNumber")),
                    bi_monthly_half=_optional_int(raw.get("BiMonthlyHalf")),
                )
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors
