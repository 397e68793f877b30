from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class PaymentType(str, Enum):
    regular = "regular"
    catch_up = "catch_up"
    advance = "advance"
    extra_principal = "extra_principal"


class PeriodType(str, Enum):
    weekly = "weekly"
    bi_monthly = "bi_monthly"
    monthly = "monthly"


class ObligationKind(str, Enum):
    budget = "budget"
    outflow = "outflow"
    inflow = "inflow"


class Frequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    semi_monthly = "semi_monthly"
    monthly = "monthly"
    annually = "annually"


class PeriodStatus(str, Enum):
    pending = "pending"
    due_soon = "due_soon"
    partial = "partial"
    paid = "paid"
    paid_early = "paid_early"
    overdue = "overdue"
    on_track = "on_track"
    over_budget = "over_budget"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("user_id", "name", "type", name="uq_category_user_name_type"),
    )


obligation_categories = Table(
    "obligation_categories",
    Base.metadata,
    Column(
        "obligation_id",
        Integer,
        ForeignKey("obligations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "category_id",
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


period_instance_splits = Table(
    "period_instance_splits",
    Base.metadata,
    Column(
        "period_instance_id",
        String(80),
        ForeignKey("period_instances.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "split_id",
        Integer,
        ForeignKey("transaction_splits.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Index("ix_period_instance_splits_split", "split_id"),
)


class Obligation(Base, TimestampMixin):
    __tablename__ = "obligations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    kind: Mapped[ObligationKind] = mapped_column(
        SAEnum(ObligationKind), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    first_date: Mapped[date] = mapped_column(Date, nullable=False)
    fixed_end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    first_generated_period_id: Mapped[Optional[str]] = mapped_column(String(32))
    last_generated_period_id: Mapped[Optional[str]] = mapped_column(String(32))
    generated_until: Mapped[Optional[date]] = mapped_column(Date)
    needs_future_generation: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    categories = relationship("Category", secondary=obligation_categories)
    period_instances = relationship("PeriodInstance", back_populates="obligation")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_obligation_amount_nonneg"),
        Index("ix_obligations_user_kind", "user_id", "kind"),
    )


class SourcePeriod(Base):
    __tablename__ = "source_periods"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    type: Mapped[PeriodType] = mapped_column(SAEnum(PeriodType), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    index: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[Optional[int]] = mapped_column(Integer)
    week_number: Mapped[Optional[int]] = mapped_column(Integer)
    bi_monthly_half: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("type", "index", name="uq_source_period_type_index"),
        CheckConstraint("end_date >= start_date", name="ck_source_period_range"),
        Index("ix_source_periods_type_start", "type", "start_date"),
    )


class PeriodInstance(Base, TimestampMixin):
    __tablename__ = "period_instances"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    obligation_id: Mapped[int] = mapped_column(
        ForeignKey("obligations.id"), nullable=False
    )
    kind: Mapped[ObligationKind] = mapped_column(
        SAEnum(ObligationKind), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    source_period_id: Mapped[str] = mapped_column(
        ForeignKey("source_periods.id"), nullable=False
    )
    period_type: Mapped[PeriodType] = mapped_column(SAEnum(PeriodType), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    allocated_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_due_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extra_principal_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    remaining_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[PeriodStatus] = mapped_column(
        SAEnum(PeriodStatus), nullable=False, default=PeriodStatus.pending
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_due_period: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    expected_due_date: Mapped[Optional[date]] = mapped_column(Date)
    first_due_date: Mapped[Optional[date]] = mapped_column(Date)
    last_due_date: Mapped[Optional[date]] = mapped_column(Date)
    next_unpaid_due_date: Mapped[Optional[date]] = mapped_column(Date)
    occurrence_due_dates_json: Mapped[Optional[str]] = mapped_column(Text)
    occurrence_paid_flags_json: Mapped[Optional[str]] = mapped_column(Text)
    occurrence_transaction_ids_json: Mapped[Optional[str]] = mapped_column(Text)
    occurrences_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    occurrences_unpaid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_calculated: Mapped[Optional[datetime]] = mapped_column(DateTime)

    obligation = relationship("Obligation", back_populates="period_instances")
    source_period = relationship("SourcePeriod")
    splits = relationship(
        "TransactionSplit",
        secondary=period_instance_splits,
        back_populates="period_instances",
        order_by="TransactionSplit.id",
    )

    __table_args__ = (
        UniqueConstraint(
            "obligation_id",
            "period_type",
            "source_period_id",
            name="uq_period_instance_obligation_period",
        ),
        CheckConstraint("period_end >= period_start", name="ck_period_instance_range"),
        Index("ix_period_instances_user_period", "user_id", "source_period_id"),
        Index(
            "ix_period_instances_obligation_range",
            "obligation_id",
            "period_start",
            "period_end",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.approved
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    note: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category = relationship("Category")
    splits = relationship(
        "TransactionSplit",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionSplit.id",
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_transaction_amount_nonneg"),
        Index("ix_transactions_user_date", "user_id", "date"),
    )


class TransactionSplit(Base):
    __tablename__ = "transaction_splits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    obligation_id: Mapped[Optional[int]] = mapped_column(ForeignKey("obligations.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(
        SAEnum(PaymentType), nullable=False, default=PaymentType.regular
    )
    target_monthly_period_id: Mapped[Optional[str]] = mapped_column(String(32))
    target_weekly_period_id: Mapped[Optional[str]] = mapped_column(String(32))
    target_bi_monthly_period_id: Mapped[Optional[str]] = mapped_column(String(32))

    transaction = relationship("Transaction", back_populates="splits")
    obligation = relationship("Obligation")
    period_instances = relationship(
        "PeriodInstance",
        secondary=period_instance_splits,
        back_populates="splits",
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_split_amount_nonneg"),
        Index("ix_transaction_splits_obligation", "obligation_id"),
    )


class UserPeriodSummary(Base, TimestampMixin):
    __tablename__ = "user_summaries"

    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    period_type: Mapped[PeriodType] = mapped_column(SAEnum(PeriodType), nullable=False)
    source_period_id: Mapped[str] = mapped_column(
        ForeignKey("source_periods.id"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[Optional[int]] = mapped_column(Integer)
    week_number: Mapped[Optional[int]] = mapped_column(Integer)
    budgets_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    outflows_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    inflows_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    totals_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    total_income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_expenses_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    net_cash_flow_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    savings_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_recalculated: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "period_type",
            "source_period_id",
            name="uq_user_summary_period",
        ),
    )
