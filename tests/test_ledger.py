from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

import codec
from database import Base
from models import (
    Budget,
    Frequency,
    TradeSide,
    Transaction,
    TransactionType,
    User,
    WalletType,
)
from schemas import (
    RecurringTransactionIn,
    TradeIn,
    TransactionIn,
    TransactionPatch,
    WalletIn,
)
from services import (
    AggregateService,
    LedgerValidationError,
    NotFound,
    RecurringService,
    TradingService,
    TransactionService,
    WalletService,
    reset_user_data,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _user(session: Session, email: str = "ana@example.com") -> User:
    user = User(name=email.split("@")[0], email=email)
    session.add(user)
    session.commit()
    return user


def _txn(
    amount: str,
    txn_type: TransactionType = TransactionType.expense,
    wallet_id=None,
    date: datetime = datetime(2024, 3, 10, 12, 0),
    category: str = "Food",
) -> TransactionIn:
    return TransactionIn(
        merchant="Warung",
        amount=Decimal(amount),
        type=txn_type,
        category=category,
        date=date,
        wallet_id=wallet_id,
    )


def test_wallet_balance_follows_create_update_delete() -> None:
    with _session() as session:
        user = _user(session)
        wallets = WalletService(session, user.id)
        main = wallets.create(WalletIn(name="Main", type=WalletType.bank, is_default=True))
        cash = wallets.create(WalletIn(name="Cash", type=WalletType.cash))
        savings = wallets.create(WalletIn(name="Savings", type=WalletType.bank))

        service = TransactionService(session, user.id)
        service.create(
            _txn("200", TransactionType.income, savings.id, category="Interest")
        )
        salary = service.create(
            _txn("1000.00", TransactionType.income, main.id, category="Salary")
        )
        coffee = service.create(_txn("12.50", wallet_id=main.id))
        assert wallets.get(main.id).balance == Decimal("987.50")

        service.update(coffee.id, TransactionPatch(wallet_id=cash.id, amount=Decimal("15")))
        assert wallets.get(main.id).balance == Decimal("1000.00")
        assert wallets.get(cash.id).balance == Decimal("-15")
        assert wallets.get(savings.id).balance == Decimal("200")

        service.update(salary.id, TransactionPatch(type=TransactionType.expense))
        assert wallets.get(main.id).balance == Decimal("-1000.00")
        assert wallets.get(savings.id).balance == Decimal("200")

        removed = service.delete(salary.id)
        assert removed is not None
        assert removed.merchant == "Warung"
        assert wallets.get(main.id).balance == Decimal("0")
        assert wallets.get(savings.id).balance == Decimal("200")
        assert service.delete(salary.id) is None


def test_sensitive_fields_are_stored_encrypted() -> None:
    with _session() as session:
        user = _user(session)
        created = TransactionService(session, user.id).create(
            TransactionIn(
                merchant="Bakery",
                amount=Decimal("4.20"),
                type=TransactionType.expense,
                category="Food",
                date=datetime(2024, 3, 1),
                description="croissant",
            )
        )
        row = session.get(Transaction, created.id)
        assert row.merchant != "Bakery"
        assert ":" in row.amount
        assert codec.decrypt(row.description) == "croissant"
        assert created.amount == Decimal("4.20")
        assert created.description == "croissant"


def test_foreign_wallet_is_rejected_without_writing() -> None:
    with _session() as session:
        owner = _user(session, "owner@example.com")
        other = _user(session, "other@example.com")
        foreign = WalletService(session, other.id).create(WalletIn(name="Other"))

        service = TransactionService(session, owner.id)
        with pytest.raises(NotFound):
            service.create(_txn("5", wallet_id=foreign.id))

        assert session.scalars(select(Transaction)).all() == []
        assert WalletService(session, other.id).get(foreign.id).balance == Decimal("0")


def test_failed_update_leaves_balances_untouched() -> None:
    with _session() as session:
        owner = _user(session, "owner@example.com")
        other = _user(session, "other@example.com")
        wallets = WalletService(session, owner.id)
        main = wallets.create(WalletIn(name="Main", is_default=True))
        foreign = WalletService(session, other.id).create(WalletIn(name="Other"))

        service = TransactionService(session, owner.id)
        txn = service.create(_txn("20", wallet_id=main.id))
        with pytest.raises(NotFound):
            service.update(txn.id, TransactionPatch(wallet_id=foreign.id))

        assert wallets.get(main.id).balance == Decimal("-20")
        assert service.get(txn.id).wallet_id == main.id


def test_rows_of_other_users_are_invisible() -> None:
    with _session() as session:
        owner = _user(session, "owner@example.com")
        other = _user(session, "other@example.com")
        txn = TransactionService(session, owner.id).create(_txn("9"))

        intruder = TransactionService(session, other.id)
        with pytest.raises(NotFound):
            intruder.get(txn.id)
        with pytest.raises(NotFound):
            intruder.update(txn.id, TransactionPatch(amount=Decimal("1")))
        assert intruder.delete(txn.id) is None
        assert intruder.get_all() == []


def test_update_rejects_clearing_required_fields() -> None:
    with _session() as session:
        user = _user(session)
        service = TransactionService(session, user.id)
        txn = service.create(_txn("9"))
        with pytest.raises(LedgerValidationError):
            service.update(txn.id, TransactionPatch(category=None))


def test_get_by_month_filters_and_orders_newest_first() -> None:
    with _session() as session:
        user = _user(session)
        service = TransactionService(session, user.id)
        service.create(_txn("1", date=datetime(2024, 2, 29, 23, 59)))
        early = service.create(_txn("2", date=datetime(2024, 3, 1, 0, 0)))
        late = service.create(_txn("3", date=datetime(2024, 3, 31, 18, 0)))
        service.create(_txn("4", date=datetime(2024, 4, 1, 0, 0)))

        march = service.get_by_month(3, 2024)
        assert [t.id for t in march] == [late.id, early.id]
        with pytest.raises(LedgerValidationError):
            service.get_by_month(13, 2024)


def test_change_hook_runs_after_commit_and_errors_are_contained() -> None:
    calls = []

    def hook(user_id: int) -> None:
        calls.append(user_id)
        raise RuntimeError("queue unavailable")

    with _session() as session:
        user = _user(session)
        service = TransactionService(session, user.id, on_change=hook)
        txn = service.create(_txn("7"))
        service.update(txn.id, TransactionPatch(amount=Decimal("8")))
        service.delete(txn.id)

        assert calls == [user.id, user.id, user.id]
        assert service.get_all() == []


def test_reset_wipes_ledger_and_leaves_it_consistent() -> None:
    with _session() as session:
        user = _user(session)
        other = _user(session, "other@example.com")
        wallets = WalletService(session, user.id)
        main = wallets.create(WalletIn(name="Main", type=WalletType.bank, is_default=True))
        service = TransactionService(session, user.id)
        service.create(_txn("500", TransactionType.income, main.id, category="Salary"))
        service.create(_txn("20", wallet_id=main.id))
        kept = TransactionService(session, other.id).create(_txn("7"))
        RecurringService(session, user.id).create(
            RecurringTransactionIn(
                name="Gym", amount=Decimal("30"), frequency=Frequency.monthly, date=5
            ),
            now=datetime(2024, 3, 1),
        )
        session.add(Budget(user_id=user.id, name="Monthly", limit=codec.encrypt(100)))
        TradingService(session, user.id).create_trade(
            TradeIn(
                pair="BTCUSD",
                type=TradeSide.long,
                entry_price=Decimal("60000"),
                close_price=Decimal("61000"),
                amount=Decimal("0.1"),
                leverage=2,
                pnl=Decimal("100"),
            )
        )

        summary = reset_user_data(session, user.id)

        assert summary.transactions == 2
        assert summary.recurring == 1
        assert summary.budgets == 1
        assert summary.wallets == 1
        assert service.get_all() == []
        assert wallets.get(main.id).balance == Decimal("0")
        assert wallets.replayed_balance(main.id) == Decimal("0")
        assert AggregateService(session, user.id).get_all_monthly() == []
        assert AggregateService(session, user.id).get_daily_range(
            "0000-01-01", "9999-12-31"
        ) == []
        assert RecurringService(session, user.id).list_all() == []
        assert session.scalars(select(Budget).where(Budget.user_id == user.id)).all() == []
        assert TradingService(session, user.id).balance() == Decimal("100")
        assert [t.id for t in TransactionService(session, other.id).get_all()] == [kept.id]
        assert AggregateService(session, other.id).get_monthly("2024-03") is not None

        with pytest.raises(NotFound):
            reset_user_data(session, 9999)
