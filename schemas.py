from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    Frequency,
    TradeOutcome,
    TradeSide,
    TradeStatus,
    TransactionType,
    WalletType,
)


class TransactionIn(BaseModel):
    merchant: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    date: datetime
    wallet_id: Optional[int] = None
    icon: Optional[str] = Field(default=None, max_length=60)
    description: Optional[str] = Field(default=None, max_length=500)


class TransactionPatch(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    merchant: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[datetime] = None
    wallet_id: Optional[int] = None
    icon: Optional[str] = Field(default=None, max_length=60)
    description: Optional[str] = Field(default=None, max_length=500)


class TransactionOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    user_id: int
    wallet_id: Optional[int]
    merchant: str
    amount: Decimal
    description: Optional[str]
    category: str
    type: TransactionType
    icon: Optional[str]
    date: datetime
    created_at: datetime
    updated_at: datetime


class WalletIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: WalletType = WalletType.other
    is_default: bool = False


class WalletOut(BaseModel):
    id: int
    name: str
    type: WalletType
    balance: Decimal
    is_default: bool


class RecurringTransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount: Decimal = Field(..., gt=0)
    frequency: Frequency
    date: int = Field(..., ge=1, le=31)
    icon: Optional[str] = Field(default=None, max_length=60)


class RecurringTransactionOut(BaseModel):
    id: int
    name: str
    amount: float
    frequency: Frequency
    date: int
    icon: Optional[str]
    next_due_date: Optional[datetime]


class BudgetIn(BaseModel):
    limit: Decimal = Field(..., ge=0)
    name: str = Field(default="Monthly Budget", min_length=1, max_length=120)
    icon: Optional[str] = Field(default="account_balance_wallet", max_length=60)


class BudgetOut(BaseModel):
    id: int
    name: str
    limit: float
    icon: Optional[str]


class TradeIn(BaseModel):
    pair: str = Field(..., min_length=1, max_length=50)
    type: TradeSide
    entry_price: Decimal = Field(..., gt=0)
    close_price: Optional[Decimal] = Field(default=None, gt=0)
    amount: Decimal = Field(..., gt=0)
    leverage: int = Field(default=1, ge=1)
    pnl: Decimal
    notes: Optional[str] = Field(default=None, max_length=500)


class TradeOut(BaseModel):
    id: int
    pair: str
    type: TradeSide
    amount: float
    entry_price: float
    close_price: Optional[float]
    leverage: int
    pnl: Optional[float]
    outcome: Optional[TradeOutcome]
    status: TradeStatus
    notes: Optional[str]
    opened_at: datetime
    closed_at: Optional[datetime]
    created_at: datetime


class TradingTransferIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    converted_amount: Optional[Decimal] = Field(default=None, gt=0)


class EquityPoint(BaseModel):
    date: datetime
    value: float


class TradingStats(BaseModel):
    wins: int
    losses: int
    total_pnl: float
    best_pair: str
    equity_curve: list[EquityPoint]
    current_balance: float


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    is_read: bool
    metadata: Optional[dict]
    created_at: datetime
