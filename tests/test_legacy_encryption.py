from datetime import datetime
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

import codec
from database import Base
from legacy_encryption import encrypt_legacy_rows
from models import (
    Budget,
    Frequency,
    RecurringTransaction,
    Trade,
    TradeSide,
    Transaction,
    TransactionType,
    User,
    Wallet,
)
from services import TradingService, TransactionService, WalletService


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _seed_plaintext(session: Session) -> dict:
    user = User(name="Lama", email="lama@example.com", trading_balance="250")
    session.add(user)
    session.flush()
    wallet = Wallet(user_id=user.id, name="Cash", balance="75.5", is_default=True)
    session.add(wallet)
    session.flush()
    txn = Transaction(
        user_id=user.id,
        wallet_id=wallet.id,
        merchant="Old Market",
        amount="75.5",
        description="",
        category="Salary",
        type=TransactionType.income,
        date=datetime(2023, 11, 4, 10, 0),
    )
    already = Transaction(
        user_id=user.id,
        merchant=codec.encrypt("New Market"),
        amount=codec.encrypt("10"),
        description=None,
        category="Food",
        type=TransactionType.expense,
        date=datetime(2023, 11, 5, 10, 0),
    )
    session.add_all(
        [
            txn,
            already,
            Budget(user_id=user.id, name="Monthly", limit="1000"),
            RecurringTransaction(
                user_id=user.id,
                name="Rent",
                amount="400",
                frequency=Frequency.monthly,
                date=1,
            ),
            Trade(
                user_id=user.id,
                pair="EURUSD",
                type=TradeSide.short,
                amount="1000",
                entry_price="1.0850",
                pnl="250",
                notes="legacy import",
                opened_at=datetime(2023, 11, 1),
            ),
        ]
    )
    session.commit()
    return {
        "user": user.id,
        "wallet": wallet.id,
        "txn": txn.id,
        "already": already.id,
        "already_amount": already.amount,
    }


def test_plaintext_rows_are_encrypted_once() -> None:
    with _session() as session:
        ids = _seed_plaintext(session)

        first = encrypt_legacy_rows(session)
        assert first.updated["transactions"] == 1
        assert first.updated["wallets"] == 1
        assert first.updated["users"] == 1
        assert first.updated["budgets"] == 1
        assert first.updated["recurring_transactions"] == 1
        assert first.updated["trades"] == 1

        txn = session.get(Transaction, ids["txn"])
        assert codec.looks_encrypted(txn.merchant)
        assert codec.looks_encrypted(txn.amount)
        assert txn.description == ""
        assert session.get(Transaction, ids["already"]).amount == ids["already_amount"]
        trade = session.scalars(select(Trade)).one()
        assert trade.close_price is None
        assert codec.decrypt(trade.notes) == "legacy import"

        second = encrypt_legacy_rows(session)
        assert second.total_updated == 0
        assert second.scanned == first.scanned
        assert codec.decrypt(session.get(Transaction, ids["txn"]).merchant) == "Old Market"


def test_services_read_migrated_rows() -> None:
    with _session() as session:
        ids = _seed_plaintext(session)
        encrypt_legacy_rows(session)

        wallets = WalletService(session, ids["user"])
        assert wallets.get(ids["wallet"]).balance == Decimal("75.5")
        assert wallets.replayed_balance(ids["wallet"]) == Decimal("75.5")
        out = TransactionService(session, ids["user"]).get(ids["txn"])
        assert out.merchant == "Old Market"
        assert out.amount == Decimal("75.5")
        assert TradingService(session, ids["user"]).balance() == Decimal("250")
