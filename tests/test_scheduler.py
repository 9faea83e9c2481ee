from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

import codec
from alerts import BudgetService
from database import Base
from models import (
    Frequency,
    Notification,
    RecurringTransaction,
    Transaction,
    User,
)
from push import DeliveryResult, PushDelivery, PushPayload
from schemas import BudgetIn
from scheduler import SchedulerManager


class RecordingDelivery(PushDelivery):
    def __init__(self) -> None:
        self.sent: list[tuple[int, PushPayload]] = []

    def send(self, user_id: int, payload: PushPayload) -> DeliveryResult:
        self.sent.append((user_id, payload))
        return DeliveryResult(success=True, channel="test")


def _factory() -> sessionmaker:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


def test_unknown_job_is_rejected():
    manager = SchedulerManager(delivery=RecordingDelivery(), session_factory=_factory())
    with pytest.raises(ValueError):
        manager.run_job("does_not_exist")


def test_recurring_job_posts_and_queues_budget_check():
    factory = _factory()
    with factory() as session:
        user = User(name="Gita", email="gita@example.com")
        session.add(user)
        session.commit()
        BudgetService(session, user.id).set_limit(BudgetIn(limit=Decimal("100")))
        session.add(
            RecurringTransaction(
                user_id=user.id,
                name=codec.encrypt("Insurance"),
                amount=codec.encrypt("90"),
                frequency=Frequency.monthly,
                date=1,
                next_due_date=datetime(2000, 1, 1),
            )
        )
        session.commit()
        user_id = user.id

    delivery = RecordingDelivery()
    manager = SchedulerManager(delivery=delivery, session_factory=factory)
    manager.run_job("recurring")

    with factory() as session:
        assert len(session.scalars(select(Transaction)).all()) == 1
        item = session.scalars(select(RecurringTransaction)).one()
        assert item.next_due_date == datetime(2000, 2, 1)
        assert session.scalars(select(Notification)).all() == []
    assert delivery.sent == []

    manager.submit_budget_check(user_id)
    pending = manager.scheduler.get_jobs()
    assert [job.id for job in pending] == [f"budget_check_{user_id}"]

    job = pending[0]
    job.func(*job.args)

    with factory() as session:
        alerts = session.scalars(select(Notification)).all()
        assert [n.meta["threshold"] for n in alerts] == [80]
    assert [uid for uid, _ in delivery.sent] == [user_id]


def test_sweeps_on_an_empty_database_send_nothing():
    delivery = RecordingDelivery()
    manager = SchedulerManager(delivery=delivery, session_factory=_factory())
    for name in (
        "reconcile_wallets",
        "encrypt_legacy_rows",
        "reminders",
        "lunch_reminder",
        "budget_alerts",
        "daily_summary",
    ):
        manager.run_job(name)
    assert delivery.sent == []


def test_lunch_reminder_job_respects_toggle():
    factory = _factory()
    with factory() as session:
        session.add_all(
            [
                User(name="Hadi", email="hadi@example.com"),
                User(name="Indah", email="indah@example.com", notify_lunch=False),
            ]
        )
        session.commit()
        hadi = session.scalars(select(User).where(User.name == "Hadi")).one().id

    delivery = RecordingDelivery()
    SchedulerManager(delivery=delivery, session_factory=factory).run_job("lunch_reminder")

    assert [uid for uid, _ in delivery.sent] == [hadi]
    assert delivery.sent[0][1].tag == "lunch-reminder"
