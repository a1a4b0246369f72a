import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Runs due recurring transactions in the background."""

    def __init__(self) -> None:
        settings = get_settings()
        self.run_at = settings.recurring_run_at
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_due(self, source: str = "manual") -> int:
        with session_scope() as session:
            executions = RecurringEngine(session).execute_due()
        logger.info(f"recurring_run: source={source} executed={len(executions)}")
        return len(executions)

    def start(self) -> None:
        self.run_due("startup")

        hour, minute = self.run_at
        label = f"daily_{hour:02d}:{minute:02d}"
        self.scheduler.add_job(
            self.run_due,
            CronTrigger(hour=hour, minute=minute),
            args=[label],
            id="recurring_execute_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        # A rule created after today's run still gets picked up.
        self.scheduler.add_job(
            self.run_due,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="recurring_execute_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"recurring_scheduler_started: {label} plus hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("recurring_scheduler_stopped")
