"""
Main scheduler service for timetable polling.

This module provides:
- Fixed-delay polling with APScheduler
- Failing-streak tracking with status alerts
- Run-once mode and graceful shutdown
"""

import asyncio
import signal
from datetime import datetime, timedelta
from typing import Dict, Optional
from zoneinfo import ZoneInfo

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from scheduler.alerting import AlertManager
from scheduler.exceptions import FetchError
from scheduler.models import PollCycleResult, SchedulerConfig
from scheduler.poller import TimetablePoller

logger = structlog.get_logger(__name__)

POLL_JOB_ID = "timetable_poll"
FAILURE_STATUS_MESSAGE = "[STATUS] Timetable check failed: {error}"
RECOVERY_STATUS_MESSAGE = "[STATUS] Timetable check recovered after a failure."


class SchedulerService:
    """Main scheduler service for timetable change detection."""

    def __init__(self, config: SchedulerConfig, poller: TimetablePoller, alert_manager: AlertManager):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration
            poller: Poll orchestrator
            alert_manager: Used for status alerts
        """
        self.config = config
        self.poller = poller
        self.alert_manager = alert_manager
        self.tz = ZoneInfo(config.timezone)
        self.scheduler = AsyncIOScheduler(timezone=self.tz)
        self.logger = logger.bind(component="scheduler_service")

        # Single flag: repeated failures while failing do not re-alert
        self.is_failing = False
        self._stopping = False

        self._setup_scheduler_listeners()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, shutting down gracefully...")
            self._stopping = True

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            self.logger.debug("Job executed", job_id=event.job_id)

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    async def start(self, run_once: bool = False) -> Optional[PollCycleResult]:
        """
        Start the scheduler service.

        Args:
            run_once: Run a single cycle and return its result

        Returns:
            The cycle result in run-once mode, None otherwise
        """
        if run_once:
            self.logger.info("Starting scheduler service in RUN ONCE MODE")
            return await self.run_check()

        self.logger.info(
            "Starting scheduler service",
            check_interval_seconds=self.config.check_interval_seconds,
            timezone=self.config.timezone
        )

        self._setup_signal_handlers()
        self._schedule_next(delay_seconds=0)
        self.scheduler.start()

        try:
            while not self._stopping:
                await asyncio.sleep(1)
        finally:
            self.stop()

        return None

    def stop(self) -> None:
        """Stop the scheduler service."""
        self._stopping = True
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.logger.info("Scheduler service stopped")

    def _schedule_next(self, delay_seconds: float) -> None:
        """Queue the next cycle ``delay_seconds`` from now."""
        run_date = datetime.now(self.tz) + timedelta(seconds=delay_seconds)
        self.scheduler.add_job(
            func=self._poll_job,
            trigger=DateTrigger(run_date=run_date, timezone=self.tz),
            id=POLL_JOB_ID,
            name="Timetable Poll",
            max_instances=1,
            misfire_grace_time=None,
            replace_existing=True
        )
        self.logger.debug("Scheduled next timetable check", run_date=run_date.isoformat())

    async def _poll_job(self) -> None:
        """
        One scheduled cycle. The next one is queued after this one ends,
        so slow cycles stretch the interval instead of overlapping.
        """
        try:
            await self.run_check()
        finally:
            if not self._stopping:
                self._schedule_next(self.config.check_interval_seconds)

    async def run_check(self) -> Optional[PollCycleResult]:
        """
        Run one cycle and update the failing streak.

        Returns:
            The cycle result, or None when the cycle failed
        """
        try:
            result = await self.poller.run_cycle()
        except Exception as e:
            self.logger.error(
                "Timetable check failed",
                error=str(e),
                error_type=type(e).__name__,
                week=e.week if isinstance(e, FetchError) else None
            )
            if not self.is_failing:
                self.is_failing = True
                await self.alert_manager.send_status_alert(FAILURE_STATUS_MESSAGE.format(error=e))
            return None

        if self.is_failing:
            self.is_failing = False
            self.logger.info("Timetable check recovered after a failure")
            await self.alert_manager.send_status_alert(RECOVERY_STATUS_MESSAGE)

        return result

    def get_scheduler_status(self) -> Dict:
        """Get current scheduler status."""
        job = self.scheduler.get_job(POLL_JOB_ID)
        next_run_time = getattr(job, "next_run_time", None) if job is not None else None
        return {
            'running': self.scheduler.running,
            'failing': self.is_failing,
            'timezone': self.config.timezone,
            'check_interval_seconds': self.config.check_interval_seconds,
            'next_run_time': next_run_time.isoformat() if next_run_time else None
        }
