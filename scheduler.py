import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from services import BudgetAuditService


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.audit_hour = settings.audit_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_audit(self, source: str = "manual") -> int:
        logger.info(f"budget_audit_run: source={source}")
        with session_scope() as session:
            drifted = BudgetAuditService(session).audit()
        logger.info(f"budget_audit_run: source={source} drifted={len(drifted)}")
        return len(drifted)

    def start(self) -> None:
        self._run_audit("startup")

        trigger = CronTrigger(hour=self.audit_hour, minute=0)
        self.scheduler.add_job(
            self._run_audit,
            trigger,
            args=[f"daily_{self.audit_hour:02d}:00"],
            id="budget_audit_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily budget audit at {self.audit_hour:02d}:00")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
