"""initial period ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
PERIOD_TYPE = sa.Enum("weekly", "bi_monthly", "monthly", name="periodtype")
OBLIGATION_KIND = sa.Enum("budget", "outflow", "inflow", name="obligationkind")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", "type", name="uq_category_user_name_type"),
    )

    op.create_table(
        "source_periods",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("type", PERIOD_TYPE, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("index", sa.Integer(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer()),
        sa.Column("week_number", sa.Integer()),
        sa.Column("bi_monthly_half", sa.Integer()),
        sa.UniqueConstraint("type", "index", name="uq_source_period_type_index"),
        sa.CheckConstraint("end_date >= start_date", name="ck_source_period_range"),
    )
    op.create_index(
        "ix_source_periods_type_start", "source_periods", ["type", "start_date"]
    )

    op.create_table(
        "obligations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("kind", OBLIGATION_KIND, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum(
                "weekly",
                "biweekly",
                "semi_monthly",
                "monthly",
                "annually",
                name="frequency",
            ),
            nullable=False,
        ),
        sa.Column("first_date", sa.Date(), nullable=False),
        sa.Column("fixed_end_date", sa.Date()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("first_generated_period_id", sa.String(length=32)),
        sa.Column("last_generated_period_id", sa.String(length=32)),
        sa.Column("generated_until", sa.Date()),
        sa.Column(
            "needs_future_generation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_obligation_amount_nonneg"),
    )
    op.create_index("ix_obligations_user_kind", "obligations", ["user_id", "kind"])

    op.create_table(
        "obligation_categories",
        sa.Column(
            "obligation_id",
            sa.Integer(),
            sa.ForeignKey("obligations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "period_instances",
        sa.Column("id", sa.String(length=80), primary_key=True),
        sa.Column(
            "obligation_id", sa.Integer(), sa.ForeignKey("obligations.id"), nullable=False
        ),
        sa.Column("kind", OBLIGATION_KIND, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "source_period_id",
            sa.String(length=32),
            sa.ForeignKey("source_periods.id"),
            nullable=False,
        ),
        sa.Column("period_type", PERIOD_TYPE, nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("allocated_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_due_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "extra_principal_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("remaining_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "due_soon",
                "partial",
                "paid",
                "paid_early",
                "overdue",
                "on_track",
                "over_budget",
                name="periodstatus",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_due_period", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("due_date", sa.Date()),
        sa.Column("expected_due_date", sa.Date()),
        sa.Column("first_due_date", sa.Date()),
        sa.Column("last_due_date", sa.Date()),
        sa.Column("next_unpaid_due_date", sa.Date()),
        sa.Column("occurrence_due_dates_json", sa.Text()),
        sa.Column("occurrence_paid_flags_json", sa.Text()),
        sa.Column("occurrence_transaction_ids_json", sa.Text()),
        sa.Column("occurrences_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("occurrences_unpaid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_calculated", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "obligation_id",
            "period_type",
            "source_period_id",
            name="uq_period_instance_obligation_period",
        ),
        sa.CheckConstraint("period_end >= period_start", name="ck_period_instance_range"),
    )
    op.create_index(
        "ix_period_instances_user_period",
        "period_instances",
        ["user_id", "source_period_id"],
    )
    op.create_index(
        "ix_period_instances_obligation_range",
        "period_instances",
        ["obligation_id", "period_start", "period_end"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "approved", "rejected", "cancelled", name="transactionstatus"
            ),
            nullable=False,
            server_default="approved",
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("note", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transaction_amount_nonneg"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])

    op.create_table(
        "transaction_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("obligation_id", sa.Integer(), sa.ForeignKey("obligations.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "payment_type",
            sa.Enum(
                "regular", "catch_up", "advance", "extra_principal", name="paymenttype"
            ),
            nullable=False,
            server_default="regular",
        ),
        sa.Column("target_monthly_period_id", sa.String(length=32)),
        sa.Column("target_weekly_period_id", sa.String(length=32)),
        sa.Column("target_bi_monthly_period_id", sa.String(length=32)),
        sa.CheckConstraint("amount_cents >= 0", name="ck_split_amount_nonneg"),
    )
    op.create_index(
        "ix_transaction_splits_obligation", "transaction_splits", ["obligation_id"]
    )

    op.create_table(
        "period_instance_splits",
        sa.Column(
            "period_instance_id",
            sa.String(length=80),
            sa.ForeignKey("period_instances.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "split_id",
            sa.Integer(),
            sa.ForeignKey("transaction_splits.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index(
        "ix_period_instance_splits_split", "period_instance_splits", ["split_id"]
    )

    op.create_table(
        "user_summaries",
        sa.Column("id", sa.String(length=120), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("period_type", PERIOD_TYPE, nullable=False),
        sa.Column(
            "source_period_id",
            sa.String(length=32),
            sa.ForeignKey("source_periods.id"),
            nullable=False,
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer()),
        sa.Column("week_number", sa.Integer()),
        sa.Column("budgets_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("outflows_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("inflows_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("totals_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("total_income_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "total_expenses_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("net_cash_flow_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("savings_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_recalculated", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "period_type", "source_period_id", name="uq_user_summary_period"
        ),
    )


def downgrade():
    op.drop_table("user_summaries")
    op.drop_index("ix_period_instance_splits_split", table_name="period_instance_splits")
    op.drop_table("period_instance_splits")
    op.drop_index("ix_transaction_splits_obligation", table_name="transaction_splits")
    op.drop_table("transaction_splits")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_period_instances_obligation_range", table_name="period_instances")
    op.drop_index("ix_period_instances_user_period", table_name="period_instances")
    op.drop_table("period_instances")
    op.drop_table("obligation_categories")
    op.drop_index("ix_obligations_user_kind", table_name="obligations")
    op.drop_table("obligations")
    op.drop_index("ix_source_periods_type_start", table_name="source_periods")
    op.drop_table("source_periods")
    op.drop_table("categories")
