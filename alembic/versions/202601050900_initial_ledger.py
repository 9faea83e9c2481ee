"""initial ledger schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("plan", sa.String(length=20), nullable=False, server_default="free"),
        sa.Column("trading_balance", sa.Text(), nullable=True),
        sa.Column("notify_budget_50", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_budget_80", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_budget_95", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_budget_100", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_recurring", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_daily", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("balance", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_wallets_user", "wallets", ["user_id"])
    op.create_index(
        "uq_wallets_one_default_per_user",
        "wallets",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("is_default = 1"),
        postgresql_where=sa.text("is_default IS true"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id"), nullable=True),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("amount", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("icon", sa.String(length=60), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )
    op.create_index("ix_transactions_wallet", "transactions", ["wallet_id"])

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("amount", sa.Text(), nullable=False),
        sa.Column("frequency", sa.String(length=20), nullable=False),
        sa.Column("date", sa.Integer(), nullable=False),
        sa.Column("icon", sa.String(length=60), nullable=True),
        sa.Column("next_due_date", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_recurring_next_due", "recurring_transactions", ["next_due_date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("limit", sa.Text(), nullable=False),
        sa.Column("icon", sa.String(length=60), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "monthly_aggregates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("income", sa.Text(), nullable=False),
        sa.Column("expense", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "month_key", name="uq_monthly_agg_user_month"),
    )

    op.create_table(
        "daily_aggregates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("day_key", sa.String(length=10), nullable=False),
        sa.Column("income", sa.Text(), nullable=False),
        sa.Column("expense", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "day_key", name="uq_daily_agg_user_day"),
    )

    op.create_table(
        "category_aggregates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "month_key",
            "category",
            "type",
            name="uq_category_agg_user_month_category_type",
        ),
    )

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("pair", sa.String(length=50), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Text(), nullable=False),
        sa.Column("entry_price", sa.Text(), nullable=False),
        sa.Column("close_price", sa.Text(), nullable=True),
        sa.Column("pnl", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("leverage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("outcome", sa.String(length=20), nullable=True),
        sa.Column("opened_at", sa.DateTime(), nullable=False),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_trades_user_created", "trades", ["user_id", "created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_notifications_user_type_created",
        "notifications",
        ["user_id", "type", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_type_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_trades_user_created", table_name="trades")
    op.drop_table("trades")
    op.drop_table("category_aggregates")
    op.drop_table("daily_aggregates")
    op.drop_table("monthly_aggregates")
    op.drop_table("budgets")
    op.drop_index("ix_recurring_next_due", table_name="recurring_transactions")
    op.drop_table("recurring_transactions")
    op.drop_index("ix_transactions_wallet", table_name="transactions")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_wallets_one_default_per_user", table_name="wallets")
    op.drop_index("ix_wallets_user", table_name="wallets")
    op.drop_table("wallets")
    op.drop_table("users")
