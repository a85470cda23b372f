"""
History Maintenance
Retention purge and stale-record sweep, run on cron schedules
"""
from typing import Callable, Dict, Optional, Tuple
from datetime import datetime
import asyncio

from croniter import croniter
import pytz
import structlog

from sqlbroker.config import settings
from sqlbroker.core.roles import longest_query_timeout_ms
from sqlbroker.services.history_ledger import HistoryLedger

logger = structlog.get_logger()


def default_stale_after_seconds(grace_seconds: Optional[float] = None) -> float:
    """Age past which a running record cannot belong to a live execution."""
    if grace_seconds is None:
        grace_seconds = settings.STALE_RUNNING_GRACE_SECONDS
    return longest_query_timeout_ms() / 1000 + grace_seconds


class HistoryMaintenance:
    """Housekeeping jobs for the execution history."""

    def __init__(
        self,
        ledger: HistoryLedger,
        retention_days: int = 90,
        stale_after_seconds: Optional[float] = None
    ):
        self.ledger = ledger
        self.retention_days = retention_days
        self.stale_after_seconds = stale_after_seconds or default_stale_after_seconds()

    def purge(self) -> int:
        """Delete terminal records past the retention window."""
        return self.ledger.purge_older_than(self.retention_days)

    def sweep_stale(self) -> int:
        """Mark orphaned running records (e.g. left by a crash) as errors."""
        return self.ledger.mark_stale_running(self.stale_after_seconds)


class MaintenanceScheduler:
    """Cron-based runner for HistoryMaintenance jobs"""

    def __init__(
        self,
        maintenance: HistoryMaintenance,
        purge_cron: str = "0 3 * * *",
        sweep_cron: str = "*/15 * * * *",
        timezone: str = "UTC"
    ):
        for cron_expression in (purge_cron, sweep_cron):
            is_valid, error = self.validate_cron_expression(cron_expression)
            if not is_valid:
                raise ValueError(f"Invalid cron expression '{cron_expression}': {error}")

        self.maintenance = maintenance
        self.timezone = timezone
        self.jobs: Dict[str, Tuple[str, Callable[[], int]]] = {
            "history_purge": (purge_cron, maintenance.purge),
            "stale_sweep": (sweep_cron, maintenance.sweep_stale),
        }
        self._tasks: Dict[str, asyncio.Task] = {}

    @staticmethod
    def validate_cron_expression(cron_expression: str) -> Tuple[bool, Optional[str]]:
        """
        Validate a cron expression

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            croniter(cron_expression)
            return True, None
        except Exception as e:
            return False, str(e)

    @staticmethod
    def next_run(cron_expression: str, timezone: str = 'UTC', base_time: Optional[datetime] = None) -> datetime:
        """
        Calculate next run time from cron expression

        Args:
            cron_expression: Cron expression string
            timezone: Timezone name (e.g., 'UTC', 'Europe/Berlin')
            base_time: Base time for calculation (defaults to now)

        Returns:
            Next run as an aware UTC datetime
        """
        tz = pytz.timezone(timezone)

        if base_time is None:
            base_time = datetime.now(tz)
        elif base_time.tzinfo is None:
            base_time = tz.localize(base_time)
        else:
            base_time = base_time.astimezone(tz)

        cron = croniter(cron_expression, base_time)
        return cron.get_next(datetime).astimezone(pytz.UTC)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self) -> None:
        """Start one background loop per job."""
        if self.running:
            return
        for name, (cron_expression, job) in self.jobs.items():
            self._tasks[name] = asyncio.create_task(self._run_loop(name, cron_expression, job))
        logger.info("maintenance_scheduler_started", jobs=list(self.jobs), timezone=self.timezone)

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("maintenance_scheduler_stopped")

    def run_job(self, name: str) -> int:
        """Run a job immediately."""
        _, job = self.jobs[name]
        result = job()
        logger.info("maintenance_job_completed", job=name, affected=result)
        return result

    async def _run_loop(self, name: str, cron_expression: str, job: Callable[[], int]) -> None:
        while True:
            next_run = self.next_run(cron_expression, self.timezone)
            delay = (next_run - datetime.now(pytz.UTC)).total_seconds()
            logger.debug("maintenance_job_scheduled", job=name, next_run=next_run.isoformat())
            try:
                await asyncio.sleep(max(delay, 0))
                self.run_job(name)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("maintenance_job_failed", job=name, error=str(e))
