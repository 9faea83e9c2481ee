from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import Base
from models import TransactionType, User
from schemas import TransactionIn, TransactionPatch
from services import (
    AggregateService,
    StaleAggregate,
    TransactionService,
    rebuild_aggregates,
    rebuild_all_aggregates,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _user(session: Session, email: str = "budi@example.com") -> User:
    user = User(name="Budi", email=email)
    session.add(user)
    session.commit()
    return user


def _create(
    service: TransactionService,
    amount: str,
    txn_type: TransactionType,
    category: str,
    date: datetime,
):
    return service.create(
        TransactionIn(
            merchant="Shop",
            amount=Decimal(amount),
            type=txn_type,
            category=category,
            date=date,
        )
    )


def _snapshot(aggregates: AggregateService):
    monthly = [(m.month_key, m.income, m.expense) for m in aggregates.get_all_monthly()]
    daily = [
        (d.day_key, d.income, d.expense)
        for d in aggregates.get_daily_range("0000-01-01", "9999-12-31")
    ]
    categories = [
        (c.month_key, c.category, c.type, c.amount)
        for key, *_ in monthly
        for c in aggregates.get_categories(key)
    ]
    return monthly, daily, categories


def test_mutations_keep_buckets_in_step() -> None:
    with _session() as session:
        user = _user(session)
        service = TransactionService(session, user.id)
        aggregates = AggregateService(session, user.id)

        _create(service, "3000", TransactionType.income, "Salary", datetime(2024, 3, 1, 9))
        food = _create(service, "45.50", TransactionType.expense, "Food", datetime(2024, 3, 1, 13))
        _create(service, "20", TransactionType.expense, "Transport", datetime(2024, 3, 2, 8))

        march = aggregates.get_monthly("2024-03")
        assert march.income == Decimal("3000")
        assert march.expense == Decimal("65.50")
        day = aggregates.get_daily("2024-03-01")
        assert (day.income, day.expense) == (Decimal("3000"), Decimal("45.50"))
        by_category = {
            (c.category, c.type): c.amount for c in aggregates.get_categories("2024-03")
        }
        assert by_category == {
            ("Salary", TransactionType.income): Decimal("3000"),
            ("Food", TransactionType.expense): Decimal("45.50"),
            ("Transport", TransactionType.expense): Decimal("20"),
        }

        service.update(
            food.id,
            TransactionPatch(date=datetime(2024, 4, 5, 12), category="Groceries"),
        )
        assert aggregates.get_monthly("2024-03").expense == Decimal("20")
        assert aggregates.get_monthly("2024-04").expense == Decimal("45.50")
        assert aggregates.get_daily("2024-03-01").expense == Decimal("0")
        assert [c.category for c in aggregates.get_categories("2024-03")] == [
            "Transport",
            "Salary",
        ]

        service.delete(food.id)
        assert aggregates.get_monthly("2024-04") is None
        assert aggregates.get_daily("2024-04-05") is None
        assert aggregates.get_categories("2024-04") == []


def test_rebuild_matches_incremental_totals_and_is_idempotent() -> None:
    with _session() as session:
        user = _user(session)
        service = TransactionService(session, user.id)
        aggregates = AggregateService(session, user.id)
        _create(service, "100", TransactionType.income, "Gift", datetime(2024, 1, 31, 23))
        _create(service, "12.25", TransactionType.expense, "Food", datetime(2024, 2, 1, 0))
        _create(service, "7.75", TransactionType.expense, "Food", datetime(2024, 2, 1, 19))
        incremental = _snapshot(aggregates)

        aggregates.upsert_monthly("2020-01", Decimal("1"), Decimal("1"))
        aggregates.upsert_daily("2020-01-01", Decimal("1"), Decimal("1"))
        aggregates.upsert_category("2020-01", "Ghost", TransactionType.expense, Decimal("1"))
        session.commit()

        summary = rebuild_aggregates(session, user.id)
        assert (summary.months, summary.days, summary.categories) == (2, 2, 2)
        assert _snapshot(aggregates) == incremental
        assert aggregates.get_monthly("2020-01") is None
        assert aggregates.get_categories("2020-01") == []

        rebuild_aggregates(session, user.id)
        assert _snapshot(aggregates) == incremental


def test_rebuild_all_covers_every_user() -> None:
    with _session() as session:
        first = _user(session, "a@example.com")
        second = _user(session, "b@example.com")
        _create(
            TransactionService(session, second.id),
            "5",
            TransactionType.expense,
            "Food",
            datetime(2024, 6, 1),
        )
        assert rebuild_all_aggregates(session) == 2
        assert AggregateService(session, first.id).get_all_monthly() == []
        assert AggregateService(session, second.id).get_monthly("2024-06").expense == Decimal("5")


def test_monthly_upsert_with_outdated_version_is_rejected() -> None:
    with _session() as session:
        user = _user(session)
        aggregates = AggregateService(session, user.id)
        row = aggregates.upsert_monthly("2024-03", Decimal("1"), Decimal("2"))
        assert row.version == 1

        row = aggregates.upsert_monthly(
            "2024-03", Decimal("5"), Decimal("2"), expected_version=1
        )
        assert row.version == 2

        with pytest.raises(StaleAggregate):
            aggregates.upsert_monthly(
                "2024-03", Decimal("9"), Decimal("9"), expected_version=1
            )
        assert aggregates.get_monthly("2024-03").income == Decimal("5")


def test_upsert_reraises_integrity_errors_unrelated_to_the_key() -> None:
    with _session() as session:
        user = _user(session)
        aggregates = AggregateService(session, user.id)
        with pytest.raises(IntegrityError):
            aggregates.upsert_category("2024-03", None, TransactionType.expense, Decimal("1"))
        assert aggregates.get_categories("2024-03") == []
