import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    Frequency,
    ObligationKind,
    PaymentType,
    PeriodType,
    TransactionStatus,
    TransactionType,
)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class ObligationIn(BaseModel):
    kind: ObligationKind
    name: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    frequency: Frequency
    first_date: date
    fixed_end_date: Optional[dt.date] = None
    category_ids: list[int] = Field(default_factory=list)


class TransactionSplitIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: int = Field(..., ge=0)
    obligation_id: Optional[int] = None
    category_id: Optional[int] = None
    payment_type: PaymentType = PaymentType.regular
    target_monthly_period_id: Optional[str] = Field(default=None, max_length=32)
    target_weekly_period_id: Optional[str] = Field(default=None, max_length=32)
    target_bi_monthly_period_id: Optional[str] = Field(default=None, max_length=32)


class TransactionIn(BaseModel):
    date: date
    type: TransactionType
    status: TransactionStatus = TransactionStatus.approved
    amount_cents: int = Field(..., ge=0)
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=200)
    splits: list[TransactionSplitIn] = Field(default_factory=list)


class PeriodSummaryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    period_type: PeriodType
    source_period_id: str = Field(..., min_length=1, max_length=32)
    include_entries: bool = False
    forced: bool = False


class SourcePeriodRow(BaseModel):
    id: str = Field(..., min_length=1, max_length=32)
    type: PeriodType
    start_date: date
    end_date: date
    index: int
    year: int = Field(..., ge=1970, le=3000)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    week_number: Optional[int] = Field(default=None, ge=1, le=54)
    bi_monthly_half: Optional[int] = Field(default=None, ge=1, le=2)


class CallerContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: int
    role: str = "user"
