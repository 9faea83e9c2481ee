from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class WalletType(str, Enum):
    bank = "BANK"
    cash = "CASH"
    e_wallet = "E_WALLET"
    other = "OTHER"


class Frequency(str, Enum):
    monthly = "Monthly"
    weekly = "Weekly"
    yearly = "Yearly"


class TradeSide(str, Enum):
    long = "LONG"
    short = "SHORT"


class TradeStatus(str, Enum):
    open = "OPEN"
    closed = "CLOSED"


class TradeOutcome(str, Enum):
    win = "WIN"
    loss = "LOSS"
    breakeven = "BE"


def text_enum(enum_cls: type[Enum], length: int = 20) -> SAEnum:
    """Store enum values as plain text, without a native type or CHECK."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda cls: [member.value for member in cls],
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    # encrypted
    trading_balance: Mapped[Optional[str]] = mapped_column(Text)
    notify_budget_50: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notify_budget_80: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notify_budget_95: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notify_budget_100: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notify_recurring: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    notify_daily: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notify_lunch: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    wallets: Mapped[list["Wallet"]] = relationship("Wallet", back_populates="user")


class Wallet(Base, TimestampMixin):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[WalletType] = mapped_column(
        text_enum(WalletType), nullable=False, default=WalletType.other
    )
    # encrypted
    balance: Mapped[Optional[str]] = mapped_column(Text)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="wallets")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="wallet"
    )

    __table_args__ = (Index("ix_wallets_user", "user_id"),)


Index(
    "uq_wallets_one_default_per_user",
    Wallet.user_id,
    unique=True,
    sqlite_where=Wallet.is_default.is_(true()),
    postgresql_where=Wallet.is_default.is_(true()),
)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    wallet_id: Mapped[Optional[int]] = mapped_column(ForeignKey("wallets.id"))
    # encrypted
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        text_enum(TransactionType), nullable=False
    )
    icon: Mapped[Optional[str]] = mapped_column(String(60))
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    wallet: Mapped[Optional["Wallet"]] = relationship(
        "Wallet", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        Index("ix_transactions_wallet", "wallet_id"),
    )


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    # encrypted
    name: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[str] = mapped_column(Text, nullable=False)

    frequency: Mapped[Frequency] = mapped_column(
        text_enum(Frequency), nullable=False
    )
    # day of month; see recurrence.first_due_date for the Weekly reading
    date: Mapped[int] = mapped_column(Integer, nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(60))
    next_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (Index("ix_recurring_next_due", "next_due_date"),)


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, unique=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    # encrypted
    limit: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(60))


class MonthlyAggregate(Base, TimestampMixin):
    __tablename__ = "monthly_aggregates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    # encrypted
    income: Mapped[str] = mapped_column(Text, nullable=False)
    expense: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "month_key", name="uq_monthly_agg_user_month"),
    )
    __mapper_args__ = {"version_id_col": version}


class DailyAggregate(Base, TimestampMixin):
    __tablename__ = "daily_aggregates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    day_key: Mapped[str] = mapped_column(String(10), nullable=False)
    # encrypted
    income: Mapped[str] = mapped_column(Text, nullable=False)
    expense: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "day_key", name="uq_daily_agg_user_day"),
    )


class CategoryAggregate(Base, TimestampMixin):
    __tablename__ = "category_aggregates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        text_enum(TransactionType), nullable=False
    )
    # encrypted
    amount: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "month_key",
            "category",
            "type",
            name="uq_category_agg_user_month_category_type",
        ),
    )


class Trade(Base, TimestampMixin):
    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    pair: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[TradeSide] = mapped_column(text_enum(TradeSide), nullable=False)
    # encrypted
    amount: Mapped[str] = mapped_column(Text, nullable=False)
    entry_price: Mapped[str] = mapped_column(Text, nullable=False)
    close_price: Mapped[Optional[str]] = mapped_column(Text)
    pnl: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    leverage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[TradeStatus] = mapped_column(
        text_enum(TradeStatus), nullable=False, default=TradeStatus.open
    )
    outcome: Mapped[Optional[TradeOutcome]] = mapped_column(text_enum(TradeOutcome))
    opened_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (Index("ix_trades_user_created", "user_id", "created_at"),)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_notifications_user_type_created", "user_id", "type", "created_at"),
    )
