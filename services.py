from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

import codec
from models import (
    Budget,
    CategoryAggregate,
    DailyAggregate,
    MonthlyAggregate,
    RecurringTransaction,
    Trade,
    TradeOutcome,
    TradeStatus,
    Transaction,
    TransactionType,
    User,
    Wallet,
    WalletType,
)
from schemas import (
    EquityPoint,
    RecurringTransactionIn,
    RecurringTransactionOut,
    TradeIn,
    TradeOut,
    TradingStats,
    TradingTransferIn,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    WalletIn,
    WalletOut,
)


logger = logging.getLogger(__name__)

# Called with a user id after a ledger mutation has been committed.
ChangeHook = Callable[[int], None]

ZERO = Decimal("0")


class NotFound(ValueError):
    pass


class LedgerValidationError(ValueError):
    pass


class InsufficientBalance(ValueError):
    pass


class StaleAggregate(ValueError):
    pass


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def day_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def month_bounds(key: str) -> tuple[datetime, datetime]:
    year, month = (int(part) for part in key.split("-"))
    start = datetime(year, month, 1)
    if month == 12:
        return start, datetime(year + 1, 1, 1)
    return start, datetime(year, month + 1, 1)


def day_bounds(key: str) -> tuple[datetime, datetime]:
    start = datetime.strptime(key, "%Y-%m-%d")
    return start, start.replace(hour=23, minute=59, second=59, microsecond=999999)


def signed_amount(txn_type: TransactionType, amount: Decimal) -> Decimal:
    return amount if txn_type == TransactionType.income else -amount


def notify_change(hook: Optional[ChangeHook], user_id: int) -> None:
    if hook is None:
        return
    try:
        hook(user_id)
    except Exception:
        logger.exception(f"change_hook_failed: user_id={user_id}")


def _require_positive(amount: Optional[Decimal], field: str = "amount") -> Decimal:
    if amount is None:
        raise LedgerValidationError(f"{field} is required")
    if not amount.is_finite() or amount <= 0:
        raise LedgerValidationError(f"{field} must be a positive decimal")
    return amount


def to_transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        user_id=txn.user_id,
        wallet_id=txn.wallet_id,
        merchant=codec.decrypt(txn.merchant),
        amount=codec.decrypt_to_decimal(txn.amount),
        description=codec.decrypt(txn.description),
        category=txn.category,
        type=txn.type,
        icon=txn.icon,
        date=txn.date,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )


@dataclass(frozen=True)
class MonthlyTotals:
    month_key: str
    income: Decimal
    expense: Decimal
    version: int


@dataclass(frozen=True)
class DailyTotals:
    day_key: str
    income: Decimal
    expense: Decimal


@dataclass(frozen=True)
class CategoryTotal:
    month_key: str
    category: str
    type: TransactionType
    amount: Decimal


class AggregateService:
    """Denormalized per-user sums.

    Upserts take complete values; deltas are never applied here. Totals come
    from ``recompute_for_dates`` after a ledger mutation or from
    ``rebuild_aggregates`` when starting from scratch.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _upsert(self, model, keys: dict, values: dict, check=None):
        """Overwrite the row for ``keys`` or insert it.

        The insert runs in a savepoint; losing an insert race to a concurrent
        writer falls back to updating the row that won.
        """
        stmt = select(model).filter_by(user_id=self.user_id, **keys)
        existing = self.session.scalar(stmt)
        if existing is None:
            try:
                with self.session.begin_nested():
                    row = model(user_id=self.user_id, **keys, **values)
                    self.session.add(row)
                return row
            except IntegrityError:
                existing = self.session.scalar(stmt)
                if existing is None:
                    # not a unique-key conflict
                    raise
                logger.info(f"aggregate_upsert_race: model={model.__name__} keys={keys}")

        if check is not None:
            check(existing)
        for name, value in values.items():
            setattr(existing, name, value)
        existing.updated_at = datetime.utcnow()
        self.session.flush()
        return existing

    def upsert_monthly(
        self,
        key: str,
        income: Decimal,
        expense: Decimal,
        expected_version: Optional[int] = None,
    ) -> MonthlyAggregate:
        def check(row: MonthlyAggregate) -> None:
            if expected_version is not None and row.version != expected_version:
                raise StaleAggregate(
                    f"Monthly aggregate {key} is at version {row.version}, "
                    f"expected {expected_version}"
                )

        try:
            return self._upsert(
                MonthlyAggregate,
                {"month_key": key},
                {"income": codec.encrypt(income), "expense": codec.encrypt(expense)},
                check=check,
            )
        except StaleDataError as exc:
            raise StaleAggregate(f"Monthly aggregate {key} changed concurrently") from exc

    def upsert_daily(self, key: str, income: Decimal, expense: Decimal) -> DailyAggregate:
        return self._upsert(
            DailyAggregate,
            {"day_key": key},
            {"income": codec.encrypt(income), "expense": codec.encrypt(expense)},
        )

    def upsert_category(
        self, key: str, category: str, txn_type: TransactionType, amount: Decimal
    ) -> CategoryAggregate:
        return self._upsert(
            CategoryAggregate,
            {"month_key": key, "category": category, "type": txn_type},
            {"amount": codec.encrypt(amount)},
        )

    def get_monthly(self, key: str) -> Optional[MonthlyTotals]:
        row = self.session.scalar(
            select(MonthlyAggregate).where(
                MonthlyAggregate.user_id == self.user_id,
                MonthlyAggregate.month_key == key,
            )
        )
        return self._monthly(row) if row else None

    def get_all_monthly(self) -> list[MonthlyTotals]:
        rows = self.session.scalars(
            select(MonthlyAggregate)
            .where(MonthlyAggregate.user_id == self.user_id)
            .order_by(MonthlyAggregate.month_key)
        ).all()
        return [self._monthly(row) for row in rows]

    def get_daily(self, key: str) -> Optional[DailyTotals]:
        row = self.session.scalar(
            select(DailyAggregate).where(
                DailyAggregate.user_id == self.user_id,
                DailyAggregate.day_key == key,
            )
        )
        return self._daily(row) if row else None

    def get_daily_range(self, from_key: str, to_key: str) -> list[DailyTotals]:
        rows = self.session.scalars(
            select(DailyAggregate)
            .where(
                DailyAggregate.user_id == self.user_id,
                DailyAggregate.day_key >= from_key,
                DailyAggregate.day_key <= to_key,
            )
            .order_by(DailyAggregate.day_key)
        ).all()
        return [self._daily(row) for row in rows]

    def get_categories(self, key: str) -> list[CategoryTotal]:
        rows = self.session.scalars(
            select(CategoryAggregate)
            .where(
                CategoryAggregate.user_id == self.user_id,
                CategoryAggregate.month_key == key,
            )
            .order_by(CategoryAggregate.type, CategoryAggregate.category)
        ).all()
        return [
            CategoryTotal(
                month_key=row.month_key,
                category=row.category,
                type=row.type,
                amount=codec.decrypt_to_decimal(row.amount),
            )
            for row in rows
        ]

    def recompute_for_dates(self, dates: Iterable[datetime]) -> None:
        dates = list(dates)
        for key in sorted({month_key(d) for d in dates}):
            self._recompute_month(key)
        for key in sorted({day_key(d) for d in dates}):
            self._recompute_day(key)

    def _transactions_between(
        self, start: datetime, end: datetime, *, end_inclusive: bool
    ) -> list[Transaction]:
        upper = Transaction.date <= end if end_inclusive else Transaction.date < end
        return self.session.scalars(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.date >= start,
                upper,
            )
        ).all()

    def _recompute_month(self, key: str) -> None:
        start, end = month_bounds(key)
        txns = self._transactions_between(start, end, end_inclusive=False)
        income, expense = ZERO, ZERO
        by_category: dict[tuple[str, TransactionType], Decimal] = defaultdict(
            lambda: ZERO
        )
        for txn in txns:
            amount = codec.decrypt_to_decimal(txn.amount)
            if txn.type == TransactionType.income:
                income += amount
            else:
                expense += amount
            by_category[(txn.category, txn.type)] += amount

        if txns:
            self.upsert_monthly(key, income, expense)
        else:
            self.session.execute(
                delete(MonthlyAggregate).where(
                    MonthlyAggregate.user_id == self.user_id,
                    MonthlyAggregate.month_key == key,
                )
            )

        for (category, txn_type), amount in by_category.items():
            self.upsert_category(key, category, txn_type, amount)
        stale = self.session.scalars(
            select(CategoryAggregate).where(
                CategoryAggregate.user_id == self.user_id,
                CategoryAggregate.month_key == key,
            )
        ).all()
        for row in stale:
            if (row.category, row.type) not in by_category:
                self.session.delete(row)
        self.session.flush()

    def _recompute_day(self, key: str) -> None:
        start, end = day_bounds(key)
        txns = self._transactions_between(start, end, end_inclusive=True)
        if not txns:
            self.session.execute(
                delete(DailyAggregate).where(
                    DailyAggregate.user_id == self.user_id,
                    DailyAggregate.day_key == key,
                )
            )
            return
        income, expense = ZERO, ZERO
        for txn in txns:
            amount = codec.decrypt_to_decimal(txn.amount)
            if txn.type == TransactionType.income:
                income += amount
            else:
                expense += amount
        self.upsert_daily(key, income, expense)

    @staticmethod
    def _monthly(row: MonthlyAggregate) -> MonthlyTotals:
        return MonthlyTotals(
            month_key=row.month_key,
            income=codec.decrypt_to_decimal(row.income),
            expense=codec.decrypt_to_decimal(row.expense),
            version=row.version,
        )

    @staticmethod
    def _daily(row: DailyAggregate) -> DailyTotals:
        return DailyTotals(
            day_key=row.day_key,
            income=codec.decrypt_to_decimal(row.income),
            expense=codec.decrypt_to_decimal(row.expense),
        )


@dataclass
class RebuildSummary:
    months: int = 0
    days: int = 0
    categories: int = 0


def rebuild_aggregates(session: Session, user_id: int) -> RebuildSummary:
    """Recompute every aggregate of a user from the transaction log."""
    txns = session.scalars(
        select(Transaction).where(Transaction.user_id == user_id)
    ).all()

    monthly: dict[str, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
    daily: dict[str, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
    categories: dict[tuple[str, str, TransactionType], Decimal] = defaultdict(
        lambda: ZERO
    )
    for txn in txns:
        amount = codec.decrypt_to_decimal(txn.amount)
        slot = 0 if txn.type == TransactionType.income else 1
        mkey = month_key(txn.date)
        monthly[mkey][slot] += amount
        daily[day_key(txn.date)][slot] += amount
        categories[(mkey, txn.category, txn.type)] += amount

    aggregates = AggregateService(session, user_id)
    for key, (income, expense) in monthly.items():
        aggregates.upsert_monthly(key, income, expense)
    for key, (income, expense) in daily.items():
        aggregates.upsert_daily(key, income, expense)
    for (key, category, txn_type), amount in categories.items():
        aggregates.upsert_category(key, category, txn_type, amount)

    for row in session.scalars(
        select(MonthlyAggregate).where(MonthlyAggregate.user_id == user_id)
    ).all():
        if row.month_key not in monthly:
            session.delete(row)
    for row in session.scalars(
        select(DailyAggregate).where(DailyAggregate.user_id == user_id)
    ).all():
        if row.day_key not in daily:
            session.delete(row)
    for row in session.scalars(
        select(CategoryAggregate).where(CategoryAggregate.user_id == user_id)
    ).all():
        if (row.month_key, row.category, row.type) not in categories:
            session.delete(row)

    session.commit()
    return RebuildSummary(
        months=len(monthly), days=len(daily), categories=len(categories)
    )


def rebuild_all_aggregates(session: Session) -> int:
    user_ids = session.scalars(select(User.id).order_by(User.id)).all()
    rebuilt = 0
    for user_id in user_ids:
        try:
            summary = rebuild_aggregates(session, user_id)
        except Exception:
            session.rollback()
            logger.exception(f"aggregate_rebuild_failed: user_id={user_id}")
            continue
        rebuilt += 1
        logger.info(
            f"aggregate_rebuild: user_id={user_id} months={summary.months} "
            f"days={summary.days} categories={summary.categories}"
        )
    return rebuilt


class WalletService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _get_row(self, wallet_id: int, *, for_update: bool = False) -> Wallet:
        stmt = select(Wallet).where(
            Wallet.id == wallet_id, Wallet.user_id == self.user_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        wallet = self.session.scalar(stmt)
        if not wallet:
            raise NotFound("Wallet not found")
        return wallet

    @staticmethod
    def _out(wallet: Wallet) -> WalletOut:
        return WalletOut(
            id=wallet.id,
            name=wallet.name,
            type=wallet.type,
            balance=codec.decrypt_to_decimal(wallet.balance),
            is_default=wallet.is_default,
        )

    def get(self, wallet_id: int) -> WalletOut:
        return self._out(self._get_row(wallet_id))

    def list_all(self) -> list[WalletOut]:
        wallets = self.session.scalars(
            select(Wallet)
            .where(Wallet.user_id == self.user_id)
            .order_by(Wallet.is_default.desc(), Wallet.id)
        ).all()
        return [self._out(w) for w in wallets]

    def _clear_default(self) -> None:
        self.session.execute(
            update(Wallet)
            .where(Wallet.user_id == self.user_id, Wallet.is_default.is_(True))
            .values(is_default=False)
        )

    def create(self, data: WalletIn) -> WalletOut:
        if data.is_default:
            self._clear_default()
        wallet = Wallet(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            balance=codec.encrypt(ZERO),
            is_default=data.is_default,
        )
        self.session.add(wallet)
        self.session.commit()
        self.session.refresh(wallet)
        return self._out(wallet)

    def update(self, wallet_id: int, data: WalletIn) -> WalletOut:
        wallet = self._get_row(wallet_id)
        if data.is_default and not wallet.is_default:
            self._clear_default()
        wallet.name = data.name.strip()
        wallet.type = data.type
        wallet.is_default = data.is_default
        self.session.commit()
        self.session.refresh(wallet)
        return self._out(wallet)

    def delete(self, wallet_id: int) -> None:
        wallet = self._get_row(wallet_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.wallet_id == wallet.id,
            )
            .values(wallet_id=None)
        )
        self.session.delete(wallet)
        self.session.commit()

    def adjust_balance(self, wallet_id: int, delta: Decimal) -> Decimal:
        """Add ``delta`` to the stored balance. Does not commit."""
        wallet = self._get_row(wallet_id, for_update=True)
        balance = codec.decrypt_to_decimal(wallet.balance) + delta
        wallet.balance = codec.encrypt(balance)
        wallet.updated_at = datetime.utcnow()
        self.session.flush()
        return balance

    def replayed_balance(self, wallet_id: int) -> Decimal:
        txns = self.session.scalars(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.wallet_id == wallet_id,
            )
        ).all()
        total = ZERO
        for txn in txns:
            total += signed_amount(txn.type, codec.decrypt_to_decimal(txn.amount))
        return total

    def reconcile(self, wallet_id: int, repair: bool = True) -> Decimal:
        """Compare the stored balance with a replay of the wallet's
        transactions. Returns the drift (stored minus replayed)."""
        wallet = self._get_row(wallet_id, for_update=True)
        stored = codec.decrypt_to_decimal(wallet.balance)
        expected = self.replayed_balance(wallet_id)
        drift = stored - expected
        if drift != ZERO:
            logger.warning(
                f"wallet_drift: wallet_id={wallet_id} user_id={self.user_id} "
                f"stored={stored} expected={expected} repair={repair}"
            )
            if repair:
                wallet.balance = codec.encrypt(expected)
                wallet.updated_at = datetime.utcnow()
        self.session.commit()
        return drift

    def ensure_default(self) -> list[WalletOut]:
        existing = self.list_all()
        if existing:
            return existing

        logger.info(f"wallet_bootstrap: user_id={self.user_id} creating Main Bank")
        wallet = Wallet(
            user_id=self.user_id,
            name="Main Bank",
            type=WalletType.bank,
            balance=codec.encrypt(ZERO),
            is_default=True,
        )
        self.session.add(wallet)
        self.session.flush()
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.user_id == self.user_id, Transaction.wallet_id.is_(None))
            .values(wallet_id=wallet.id)
        )
        logger.info(
            f"wallet_bootstrap: user_id={self.user_id} assigned={result.rowcount}"
        )
        wallet.balance = codec.encrypt(self.replayed_balance(wallet.id))
        self.session.commit()
        return self.list_all()


def reconcile_all_wallets(session: Session, repair: bool = True) -> int:
    """Returns the number of wallets whose stored balance had drifted."""
    rows = session.execute(select(Wallet.id, Wallet.user_id).order_by(Wallet.id)).all()
    drifted = 0
    for wallet_id, user_id in rows:
        try:
            drift = WalletService(session, user_id).reconcile(wallet_id, repair=repair)
        except Exception:
            session.rollback()
            logger.exception(f"wallet_reconcile_failed: wallet_id={wallet_id}")
            continue
        if drift != ZERO:
            drifted += 1
    return drifted


@dataclass
class ResetSummary:
    transactions: int = 0
    recurring: int = 0
    budgets: int = 0
    wallets: int = 0


def reset_user_data(session: Session, user_id: int) -> ResetSummary:
    """Wipe a user's ledger content in one unit.

    Transactions, recurring templates, the budget and every aggregate row go;
    wallets stay with a zero balance. The account, notification settings and
    the trade journal are kept.
    """
    summary = ResetSummary()
    try:
        if session.get(User, user_id) is None:
            raise NotFound("User not found")
        summary.transactions = session.execute(
            delete(Transaction).where(Transaction.user_id == user_id)
        ).rowcount
        summary.recurring = session.execute(
            delete(RecurringTransaction).where(RecurringTransaction.user_id == user_id)
        ).rowcount
        summary.budgets = session.execute(
            delete(Budget).where(Budget.user_id == user_id)
        ).rowcount
        for model in (MonthlyAggregate, DailyAggregate, CategoryAggregate):
            session.execute(delete(model).where(model.user_id == user_id))
        wallets = session.scalars(
            select(Wallet).where(Wallet.user_id == user_id).with_for_update()
        ).all()
        for wallet in wallets:
            wallet.balance = codec.encrypt(ZERO)
            wallet.updated_at = datetime.utcnow()
        summary.wallets = len(wallets)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(
        f"user_reset: user_id={user_id} transactions={summary.transactions} "
        f"recurring={summary.recurring} budgets={summary.budgets} "
        f"wallets={summary.wallets}"
    )
    return summary


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        on_change: Optional[ChangeHook] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.on_change = on_change
        self.wallets = WalletService(session, user_id)
        self.aggregates = AggregateService(session, user_id)

    def _get_row(self, transaction_id: int) -> Optional[Transaction]:
        return self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
            )
        )

    def get(self, transaction_id: int) -> TransactionOut:
        txn = self._get_row(transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        return to_transaction_out(txn)

    def get_all(self) -> list[TransactionOut]:
        txns = self.session.scalars(
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        ).all()
        return [to_transaction_out(t) for t in txns]

    def get_by_month(self, month: int, year: int) -> list[TransactionOut]:
        if not 1 <= month <= 12:
            raise LedgerValidationError("month must be between 1 and 12")
        start, end = month_bounds(f"{year:04d}-{month:02d}")
        txns = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= start,
                Transaction.date < end,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        ).all()
        return [to_transaction_out(t) for t in txns]

    def insert(self, data: TransactionIn) -> Transaction:
        """Write a transaction with its side effects. The caller commits."""
        amount = _require_positive(data.amount)
        if data.wallet_id is not None:
            self.wallets.adjust_balance(data.wallet_id, signed_amount(data.type, amount))

        txn = Transaction(
            user_id=self.user_id,
            wallet_id=data.wallet_id,
            merchant=codec.encrypt(data.merchant),
            amount=codec.encrypt(amount),
            description=codec.encrypt(data.description),
            category=data.category,
            type=data.type,
            icon=data.icon,
            date=data.date,
        )
        self.session.add(txn)
        self.session.flush()
        self.aggregates.recompute_for_dates([txn.date])
        return txn

    def create(self, data: TransactionIn) -> TransactionOut:
        try:
            txn = self.insert(data)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        notify_change(self.on_change, self.user_id)
        return to_transaction_out(txn)

    def update(self, transaction_id: int, patch: TransactionPatch) -> TransactionOut:
        txn = self._get_row(transaction_id)
        if not txn:
            raise NotFound("Transaction not found")

        changes = patch.model_dump(exclude_unset=True)
        for field in ("merchant", "amount", "type", "category", "date"):
            if field in changes and changes[field] is None:
                raise LedgerValidationError(f"{field} cannot be cleared")
        if "amount" in changes:
            _require_positive(changes["amount"])

        try:
            old_date = txn.date
            if txn.wallet_id is not None:
                old_amount = codec.decrypt_to_decimal(txn.amount)
                self.wallets.adjust_balance(
                    txn.wallet_id, -signed_amount(txn.type, old_amount)
                )

            for field, value in changes.items():
                if field in ("merchant", "amount", "description"):
                    value = codec.encrypt(value)
                setattr(txn, field, value)
            txn.updated_at = datetime.utcnow()

            if txn.wallet_id is not None:
                new_amount = codec.decrypt_to_decimal(txn.amount)
                self.wallets.adjust_balance(
                    txn.wallet_id, signed_amount(txn.type, new_amount)
                )

            self.session.flush()
            self.aggregates.recompute_for_dates([old_date, txn.date])
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        notify_change(self.on_change, self.user_id)
        return to_transaction_out(txn)

    def delete(self, transaction_id: int) -> Optional[TransactionOut]:
        txn = self._get_row(transaction_id)
        if not txn:
            return None
        removed = to_transaction_out(txn)
        try:
            if txn.wallet_id is not None:
                self.wallets.adjust_balance(
                    txn.wallet_id, -signed_amount(removed.type, removed.amount)
                )
            self.session.delete(txn)
            self.session.flush()
            self.aggregates.recompute_for_dates([removed.date])
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        notify_change(self.on_change, self.user_id)
        return removed


class RecurringService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _out(item: RecurringTransaction) -> RecurringTransactionOut:
        return RecurringTransactionOut(
            id=item.id,
            name=codec.decrypt(item.name),
            amount=codec.decrypt_to_number(item.amount),
            frequency=item.frequency,
            date=item.date,
            icon=item.icon,
            next_due_date=item.next_due_date,
        )

    def _get_row(self, recurring_id: int) -> RecurringTransaction:
        item = self.session.get(RecurringTransaction, recurring_id)
        if not item or item.user_id != self.user_id:
            raise NotFound("Recurring transaction not found")
        return item

    def get(self, recurring_id: int) -> RecurringTransactionOut:
        return self._out(self._get_row(recurring_id))

    def list_all(self) -> list[RecurringTransactionOut]:
        items = self.session.scalars(
            select(RecurringTransaction)
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.next_due_date, RecurringTransaction.id)
        ).all()
        return [self._out(item) for item in items]

    def create(
        self, data: RecurringTransactionIn, now: Optional[datetime] = None
    ) -> RecurringTransactionOut:
        from recurrence import first_due_date, local_now

        now = now or local_now()
        item = RecurringTransaction(
            user_id=self.user_id,
            name=codec.encrypt(data.name),
            amount=codec.encrypt(_require_positive(data.amount)),
            frequency=data.frequency,
            date=data.date,
            icon=data.icon,
            next_due_date=first_due_date(data.frequency, data.date, now),
        )
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return self._out(item)

    def delete(self, recurring_id: int) -> None:
        item = self._get_row(recurring_id)
        self.session.delete(item)
        self.session.commit()


def trade_outcome(pnl: Decimal) -> TradeOutcome:
    if pnl > 0:
        return TradeOutcome.win
    if pnl < 0:
        return TradeOutcome.loss
    return TradeOutcome.breakeven


class TradingService:
    """Leveraged-trade journal backed by ``User.trading_balance``."""

    WALLET_MERCHANT = "Trading Wallet"
    CATEGORY = "Investments"
    ICON = "candlestick_chart"

    def __init__(
        self,
        session: Session,
        user_id: int,
        on_change: Optional[ChangeHook] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.on_change = on_change

    def _load_user(self, *, for_update: bool = False) -> User:
        stmt = select(User).where(User.id == self.user_id)
        if for_update:
            stmt = stmt.with_for_update()
        user = self.session.scalar(stmt)
        if not user:
            raise NotFound("User not found")
        return user

    @staticmethod
    def _out(trade: Trade) -> TradeOut:
        return TradeOut(
            id=trade.id,
            pair=trade.pair,
            type=trade.type,
            amount=codec.decrypt_to_number(trade.amount),
            entry_price=codec.decrypt_to_number(trade.entry_price),
            close_price=(
                codec.decrypt_to_number(trade.close_price)
                if trade.close_price
                else None
            ),
            leverage=trade.leverage,
            pnl=codec.decrypt_to_number(trade.pnl) if trade.pnl else None,
            outcome=trade.outcome,
            status=trade.status,
            notes=codec.decrypt(trade.notes) if trade.notes else None,
            opened_at=trade.opened_at,
            closed_at=trade.closed_at,
            created_at=trade.created_at,
        )

    def balance(self) -> Decimal:
        return codec.decrypt_to_decimal(self._load_user().trading_balance or "0")

    def create_trade(self, data: TradeIn) -> TradeOut:
        now = datetime.utcnow()
        try:
            user = self._load_user(for_update=True)
            trade = Trade(
                user_id=self.user_id,
                pair=data.pair,
                type=data.type,
                amount=codec.encrypt(data.amount),
                entry_price=codec.encrypt(data.entry_price),
                close_price=codec.encrypt(data.close_price),
                leverage=data.leverage,
                pnl=codec.encrypt(data.pnl),
                outcome=trade_outcome(data.pnl),
                status=TradeStatus.closed,
                notes=codec.encrypt(data.notes),
                opened_at=now,
                closed_at=now,
            )
            self.session.add(trade)
            current = codec.decrypt_to_decimal(user.trading_balance or "0")
            user.trading_balance = codec.encrypt(current + data.pnl)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(trade)
        return self._out(trade)

    def list_trades(self) -> list[TradeOut]:
        trades = self.session.scalars(
            select(Trade)
            .where(Trade.user_id == self.user_id)
            .order_by(Trade.created_at.desc(), Trade.id.desc())
        ).all()
        return [self._out(t) for t in trades]

    def get_stats(self) -> TradingStats:
        trades = self.session.scalars(
            select(Trade)
            .where(Trade.user_id == self.user_id)
            .order_by(Trade.created_at, Trade.id)
        ).all()

        wins = losses = 0
        total_pnl = 0.0
        by_pair: dict[str, float] = defaultdict(float)
        curve: list[EquityPoint] = []
        for trade in trades:
            pnl = codec.decrypt_to_number(trade.pnl or "0")
            total_pnl += pnl
            if pnl > 0:
                wins += 1
            elif pnl < 0:
                losses += 1
            by_pair[trade.pair] += pnl
            curve.append(EquityPoint(date=trade.created_at, value=total_pnl))

        best_pair = max(by_pair, key=by_pair.get) if by_pair else "-"
        return TradingStats(
            wins=wins,
            losses=losses,
            total_pnl=total_pnl,
            best_pair=best_pair,
            equity_curve=curve,
            current_balance=float(self.balance()),
        )

    def _bridge(
        self, data: TradingTransferIn, txn_type: TransactionType, direction: Decimal
    ) -> TransactionOut:
        from recurrence import local_now

        amount = _require_positive(data.amount)
        try:
            user = self._load_user(for_update=True)
            current = codec.decrypt_to_decimal(user.trading_balance or "0")
            if direction < 0 and current < amount:
                raise InsufficientBalance("Insufficient trading balance")
            user.trading_balance = codec.encrypt(current + direction * amount)

            label = "Withdrawal from" if direction < 0 else "Deposit to"
            description = f"{label} {self.WALLET_MERCHANT}"
            if data.converted_amount:
                description += f" (${amount})"
            txn = TransactionService(self.session, self.user_id).insert(
                TransactionIn(
                    merchant=self.WALLET_MERCHANT,
                    amount=data.converted_amount or amount,
                    type=txn_type,
                    category=self.CATEGORY,
                    date=local_now(),
                    icon=self.ICON,
                    description=description,
                )
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        notify_change(self.on_change, self.user_id)
        return to_transaction_out(txn)

    def withdraw(self, data: TradingTransferIn) -> TransactionOut:
        return self._bridge(data, TransactionType.income, Decimal("-1"))

    def deposit(self, data: TradingTransferIn) -> TransactionOut:
        return self._bridge(data, TransactionType.expense, Decimal("1"))
