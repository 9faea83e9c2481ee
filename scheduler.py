import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from alerts import (
    BudgetAlertEvaluator,
    run_budget_alert_sweep,
    send_daily_summaries,
    send_lunch_reminders,
    send_recurring_reminders,
)
from config import get_settings
from database import session_scope
from legacy_encryption import encrypt_legacy_rows
from push import PushDelivery, delivery_from_settings
from recurrence import RecurringEngine
from services import reconcile_all_wallets


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        delivery: Optional[PushDelivery] = None,
        session_factory: Optional[sessionmaker] = None,
    ) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)
        self.delivery = delivery or delivery_from_settings()
        self.session_factory = session_factory
        self.jobs: dict[str, Callable[[str], None]] = {
            "recurring": self._run_recurring,
            "reminders": self._run_reminders,
            "lunch_reminder": self._run_lunch_reminder,
            "budget_alerts": self._run_budget_alerts,
            "daily_summary": self._run_daily_summary,
            "reconcile_wallets": self._run_reconcile,
            "encrypt_legacy_rows": self._run_legacy_encryption,
        }

    def _run_recurring(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            result = RecurringEngine(
                session, on_change=self.submit_budget_check
            ).process_due()
        logger.info(
            f"recurring_run: source={source} processed={result.processed} "
            f"failed={result.failed}"
        )

    def _run_reminders(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            sent = send_recurring_reminders(session, self.delivery)
        logger.info(f"reminders_run: source={source} sent={sent}")

    def _run_lunch_reminder(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            sent = send_lunch_reminders(session, self.delivery)
        logger.info(f"lunch_reminder_run: source={source} sent={sent}")

    def _run_budget_alerts(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            sent = run_budget_alert_sweep(session, self.delivery)
        logger.info(f"budget_alerts_run: source={source} sent={sent}")

    def _run_daily_summary(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            sent = send_daily_summaries(session, self.delivery)
        logger.info(f"daily_summary_run: source={source} sent={sent}")

    def _run_reconcile(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            drifted = reconcile_all_wallets(session)
        logger.info(f"reconcile_run: source={source} drifted={drifted}")

    def _run_legacy_encryption(self, source: str = "manual") -> None:
        with session_scope(self.session_factory) as session:
            summary = encrypt_legacy_rows(session)
        logger.info(
            f"legacy_encryption_run: source={source} "
            f"updated={summary.total_updated}"
        )

    def _check_budget(self, user_id: int) -> None:
        try:
            with session_scope(self.session_factory) as session:
                BudgetAlertEvaluator(session, self.delivery).evaluate(user_id)
        except Exception:
            logger.exception(f"budget_check_failed: user_id={user_id}")

    def run_job(self, name: str, source: str = "manual") -> None:
        job = self.jobs.get(name)
        if job is None:
            raise ValueError(f"Unknown job: {name}")
        job(source)

    def submit_budget_check(self, user_id: int) -> None:
        """Queue a budget evaluation for a user without waiting for it.

        Submissions for the same user replace each other until the job runs.
        Before ``start`` the check waits among the pending jobs and runs once
        the scheduler is up.
        """
        job_id = f"budget_check_{user_id}"
        if not self.scheduler.running and self.scheduler.get_job(job_id):
            return
        self.scheduler.add_job(
            self._check_budget,
            DateTrigger(),
            args=[user_id],
            id=job_id,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def start(self) -> None:
        self._run_recurring("startup")

        self.scheduler.add_job(
            self._run_recurring,
            IntervalTrigger(minutes=self.settings.recurring_interval_minutes),
            args=["interval"],
            id="recurring_sweep",
            replace_existing=True,
            misfire_grace_time=300,
        )
        for name, hour, minute in (
            ("reminders", 8, 0),
            ("lunch_reminder", 12, 0),
            ("budget_alerts", 9, 0),
            ("daily_summary", 20, 0),
            ("reconcile_wallets", 3, 15),
        ):
            self.scheduler.add_job(
                self.jobs[name],
                CronTrigger(hour=hour, minute=minute),
                args=[f"daily_{hour:02d}:{minute:02d}"],
                id=name,
                replace_existing=True,
                misfire_grace_time=3600,
            )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with recurring sweep every "
            f"{self.settings.recurring_interval_minutes}m and daily jobs"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
