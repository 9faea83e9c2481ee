import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

import codec
from models import (
    Budget,
    Notification,
    RecurringTransaction,
    Transaction,
    TransactionType,
    User,
)
from push import PushDelivery, PushPayload
from recurrence import local_now
from schemas import BudgetIn, BudgetOut, NotificationOut
from services import NotFound, month_bounds, month_key


logger = logging.getLogger(__name__)

BUDGET_NOTIFICATION = "budget"

# (threshold, severity, toggle attribute), highest first
THRESHOLDS = (
    (100, "error", "notify_budget_100"),
    (95, "warning", "notify_budget_95"),
    (80, "warning", "notify_budget_80"),
    (50, "warning", "notify_budget_50"),
)


def format_amount(value: Decimal) -> str:
    return f"{value:,.0f}"


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _row(self) -> Optional[Budget]:
        return self.session.scalar(select(Budget).where(Budget.user_id == self.user_id))

    @staticmethod
    def _out(budget: Budget) -> BudgetOut:
        return BudgetOut(
            id=budget.id,
            name=budget.name,
            limit=codec.decrypt_to_number(budget.limit),
            icon=budget.icon,
        )

    def get(self) -> Optional[BudgetOut]:
        budget = self._row()
        return self._out(budget) if budget else None

    def limit(self) -> Decimal:
        budget = self._row()
        return codec.decrypt_to_decimal(budget.limit) if budget else Decimal("0")

    def set_limit(self, data: BudgetIn) -> BudgetOut:
        budget = self._row()
        if budget:
            budget.limit = codec.encrypt(data.limit)
            budget.updated_at = datetime.utcnow()
        else:
            budget = Budget(
                user_id=self.user_id,
                name=data.name,
                limit=codec.encrypt(data.limit),
                icon=data.icon,
            )
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return self._out(budget)


def select_threshold(percentage: int, user: User) -> Optional[tuple[int, str]]:
    """Highest reached threshold the user has enabled.

    The 50% informational alert only applies below 80%.
    """
    for threshold, severity, toggle in THRESHOLDS:
        if percentage < threshold:
            continue
        if threshold == 50 and percentage >= 80:
            continue
        if getattr(user, toggle):
            return threshold, severity
    return None


def budget_percentage(expense: Decimal, limit: Decimal) -> int:
    ratio = expense / limit * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_out(notification: Notification) -> NotificationOut:
    return NotificationOut(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        is_read=notification.is_read,
        metadata=notification.meta,
        created_at=notification.created_at,
    )


def _sum_by_type(
    session: Session, user_id: int, start: datetime, end: Optional[datetime] = None
) -> dict[TransactionType, Decimal]:
    stmt = select(Transaction.type, Transaction.amount).where(
        Transaction.user_id == user_id, Transaction.date >= start
    )
    if end is not None:
        stmt = stmt.where(Transaction.date < end)
    totals: dict[TransactionType, Decimal] = defaultdict(lambda: Decimal("0"))
    for txn_type, amount in session.execute(stmt):
        totals[txn_type] += codec.decrypt_to_decimal(amount)
    return totals


def _deliver(delivery: PushDelivery, user_id: int, payload: PushPayload) -> bool:
    try:
        result = delivery.send(user_id, payload)
    except Exception:
        logger.exception(f"push_failed: user_id={user_id} tag={payload.tag}")
        return False
    if not result.success:
        logger.warning(
            f"push_failed: user_id={user_id} tag={payload.tag} "
            f"channel={result.channel} error={result.error}"
        )
    return result.success


class BudgetAlertEvaluator:
    def __init__(self, session: Session, delivery: PushDelivery) -> None:
        self.session = session
        self.delivery = delivery

    def _already_sent(self, user_id: int, threshold: int, now: datetime) -> bool:
        start, end = month_bounds(month_key(now))
        sent = self.session.scalars(
            select(Notification).where(
                Notification.user_id == user_id,
                Notification.type == BUDGET_NOTIFICATION,
                Notification.created_at >= start,
                Notification.created_at < end,
            )
        ).all()
        return any((n.meta or {}).get("threshold") == threshold for n in sent)

    def evaluate(
        self, user_id: int, now: Optional[datetime] = None
    ) -> Optional[NotificationOut]:
        now = now or local_now()
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")

        limit = BudgetService(self.session, user_id).limit()
        if limit <= 0:
            return None

        start, _ = month_bounds(month_key(now))
        expense = _sum_by_type(self.session, user_id, start)[TransactionType.expense]
        percentage = budget_percentage(expense, limit)

        selected = select_threshold(percentage, user)
        if selected is None:
            return None
        threshold, severity = selected
        if self._already_sent(user_id, threshold, now):
            logger.debug(
                f"budget_alert_skip: user_id={user_id} threshold={threshold} already sent"
            )
            return None

        if threshold >= 100:
            title = "Budget exceeded"
        elif threshold >= 80:
            title = "Budget warning"
        else:
            title = "Budget update"
        message = (
            f"You have used {percentage}% of this month's budget "
            f"({format_amount(expense)} of {format_amount(limit)})."
        )
        notification = Notification(
            user_id=user_id,
            type=BUDGET_NOTIFICATION,
            title=title,
            message=message,
            meta={
                "threshold": threshold,
                "percentage": percentage,
                "severity": severity,
                "month": month_key(now),
            },
            created_at=now,
        )
        self.session.add(notification)
        self.session.commit()
        logger.info(
            f"budget_alert: user_id={user_id} threshold={threshold} "
            f"percentage={percentage}"
        )

        _deliver(
            self.delivery,
            user_id,
            PushPayload(
                title=title,
                body=message,
                tag=f"budget-alert-{threshold}",
                data={"url": "/budget", "action": "open-budget"},
            ),
        )
        return _to_out(notification)


def run_budget_alert_sweep(
    session: Session, delivery: PushDelivery, now: Optional[datetime] = None
) -> int:
    """Evaluate every user with a budget. Returns the number of alerts sent."""
    evaluator = BudgetAlertEvaluator(session, delivery)
    user_ids = session.scalars(select(Budget.user_id).order_by(Budget.user_id)).all()
    sent = 0
    for user_id in user_ids:
        try:
            if evaluator.evaluate(user_id, now=now) is not None:
                sent += 1
        except Exception:
            session.rollback()
            logger.exception(f"budget_alert_failed: user_id={user_id}")
    return sent


def send_recurring_reminders(
    session: Session, delivery: PushDelivery, now: Optional[datetime] = None
) -> int:
    """One reminder per user listing the templates due tomorrow."""
    now = now or local_now()
    tomorrow = now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    rows = session.execute(
        select(RecurringTransaction, User)
        .join(User, User.id == RecurringTransaction.user_id)
        .where(
            User.notify_recurring.is_(True),
            RecurringTransaction.next_due_date >= tomorrow,
            RecurringTransaction.next_due_date < tomorrow + timedelta(days=1),
        )
        .order_by(RecurringTransaction.user_id, RecurringTransaction.id)
    ).all()

    names_by_user: dict[int, list[str]] = defaultdict(list)
    for item, user in rows:
        names_by_user[user.id].append(codec.decrypt(item.name))

    sent = 0
    for user_id, names in names_by_user.items():
        payload = PushPayload(
            title="Bills due tomorrow",
            body=f"{', '.join(names)} due tomorrow. Make sure your balance covers it.",
            tag="recurring-reminder",
            data={"url": "/recurring", "action": "open-recurring"},
        )
        if _deliver(delivery, user_id, payload):
            sent += 1
    logger.info(f"recurring_reminders: users={len(names_by_user)} sent={sent}")
    return sent


def send_lunch_reminders(session: Session, delivery: PushDelivery) -> int:
    user_ids = session.scalars(
        select(User.id).where(User.notify_lunch.is_(True)).order_by(User.id)
    ).all()
    payload = PushPayload(
        title="Time for a break",
        body="Don't forget lunch, and log what you spent today.",
        tag="lunch-reminder",
    )
    sent = sum(1 for user_id in user_ids if _deliver(delivery, user_id, payload))
    logger.info(f"lunch_reminders: users={len(user_ids)} sent={sent}")
    return sent


def send_daily_summaries(
    session: Session, delivery: PushDelivery, now: Optional[datetime] = None
) -> int:
    now = now or local_now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start, _ = month_bounds(month_key(now))
    users = session.scalars(
        select(User).where(User.notify_daily.is_(True)).order_by(User.id)
    ).all()

    sent = 0
    for user in users:
        try:
            totals = _sum_by_type(session, user.id, today, today + timedelta(days=1))
            income = totals[TransactionType.income]
            expense = totals[TransactionType.expense]
            if income == 0 and expense == 0:
                continue
            body = f"Income: {format_amount(income)} | Expense: {format_amount(expense)}"
            limit = BudgetService(session, user.id).limit()
            if limit > 0:
                spent = _sum_by_type(session, user.id, month_start)[
                    TransactionType.expense
                ]
                remaining = max(Decimal("0"), limit - spent)
                body += f" | Budget left: {format_amount(remaining)}"
            payload = PushPayload(
                title="Today's summary", body=body, tag="daily-summary"
            )
        except Exception:
            logger.exception(f"daily_summary_failed: user_id={user.id}")
            continue
        if _deliver(delivery, user.id, payload):
            sent += 1
    logger.info(f"daily_summary: users={len(users)} sent={sent}")
    return sent


class NotificationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, limit: int = 50) -> list[NotificationOut]:
        rows = self.session.scalars(
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        ).all()
        return [_to_out(n) for n in rows]

    def mark_read(self, notification_id: int) -> NotificationOut:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise NotFound("Notification not found")
        notification.is_read = True
        self.session.commit()
        return _to_out(notification)

    def mark_all_read(self) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        self.session.commit()
        return result.rowcount

    def unread_count(self) -> int:
        return self.session.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
        )
