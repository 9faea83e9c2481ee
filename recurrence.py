import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

import codec
from config import get_settings
from models import Frequency, RecurringTransaction, TransactionType


logger = logging.getLogger(__name__)

RECURRING_CATEGORY = "Recurring"


def local_now() -> datetime:
    """Current wall-clock time in the configured zone, without tzinfo."""
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: datetime, months: int, *, desired_day: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(desired_day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def _midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def first_due_date(frequency: Frequency, day: int, now: datetime) -> datetime:
    """First occurrence of a new template created at ``now``.

    ``day`` is read as a day of the current month for every frequency. When
    that day has already passed, Monthly moves one month ahead, Weekly moves
    to a week after creation and Yearly moves one year ahead.
    """
    today = _midnight(now)
    candidate = today.replace(day=min(day, days_in_month(today.year, today.month)))
    if now.day <= day:
        return candidate

    if frequency == Frequency.monthly:
        return _add_months(candidate, 1, desired_day=day)
    if frequency == Frequency.weekly:
        return today + timedelta(days=7)
    return _add_months(candidate, 12, desired_day=day)


def advance_due_date(frequency: Frequency, current: datetime, day: int) -> datetime:
    if frequency == Frequency.monthly:
        return _add_months(current, 1, desired_day=day)
    if frequency == Frequency.weekly:
        return current + timedelta(days=7)
    return _add_months(current, 12, desired_day=day)


@dataclass
class RecurringRunResult:
    processed: int = 0
    failed: int = 0
    user_ids: set[int] = field(default_factory=set)


class RecurringEngine:
    def __init__(self, session: Session, on_change=None) -> None:
        self.session = session
        self.on_change = on_change

    def due_items(self, now: datetime) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .where(
                RecurringTransaction.next_due_date.is_not(None),
                RecurringTransaction.next_due_date <= now,
            )
            .order_by(RecurringTransaction.next_due_date, RecurringTransaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def process_due(self, now: Optional[datetime] = None) -> RecurringRunResult:
        from services import notify_change

        now = now or local_now()
        result = RecurringRunResult()
        for item in self.due_items(now):
            item_id, user_id = item.id, item.user_id
            try:
                with self.session.begin_nested():
                    self._materialize(item, now)
            except Exception:
                result.failed += 1
                logger.exception(
                    f"recurring_item_failed: id={item_id} user_id={user_id}"
                )
                continue
            result.processed += 1
            result.user_ids.add(user_id)

        self.session.commit()
        for user_id in sorted(result.user_ids):
            notify_change(self.on_change, user_id)
        return result

    def _materialize(self, item: RecurringTransaction, now: datetime) -> None:
        from schemas import TransactionIn
        from services import TransactionService

        TransactionService(self.session, item.user_id).insert(
            TransactionIn(
                merchant=codec.decrypt(item.name),
                amount=codec.decrypt_to_decimal(item.amount),
                type=TransactionType.expense,
                category=RECURRING_CATEGORY,
                date=now,
                icon=item.icon,
                description=f"Recurring: {item.frequency.value}",
            )
        )
        item.next_due_date = advance_due_date(
            item.frequency, item.next_due_date, item.date
        )
        item.updated_at = datetime.utcnow()
        self.session.flush()
