"""
Main entry point for the timetable watcher.

Usage:
    python scheduler_main.py           # Daemon mode, polls continuously
    python scheduler_main.py --once    # Single check, then exit
"""

import asyncio
import sys
from zoneinfo import ZoneInfo

from scheduler.alerting import AlertManager
from scheduler.change_detector import ChangeDetector
from scheduler.lesson_keys import build_cancelled_statuses
from scheduler.models import AlertConfig, SchedulerConfig
from scheduler.poller import TimetablePoller
from scheduler.scheduler_service import SchedulerService
from timetable.cache import SnapshotStore
from timetable.portal_client import PortalClient
from utilities.config import config
from utilities.logger import get_logger, setup_logging


def build_scheduler_config() -> SchedulerConfig:
    """Assemble the runtime configuration from environment settings."""
    alert_config = AlertConfig(
        enabled_providers=config.get_enabled_providers(),
        enable_status_alert=config.enable_status_alert,
        pushover_user_key=config.pushover_user_key,
        pushover_api_token=config.pushover_api_token,
        pushover_priority=config.pushover_priority,
        ntfy_url=config.ntfy_url,
        ntfy_priority=config.ntfy_priority,
        ntfy_title=config.ntfy_title,
        request_timeout=config.request_timeout
    )

    return SchedulerConfig(
        check_interval_seconds=config.check_interval_seconds,
        timezone=config.timezone,
        first_monday=config.first_monday,
        cancelled_statuses=sorted(build_cancelled_statuses(config.get_cancelled_statuses())),
        alert_config=alert_config
    )


async def build_service(scheduler_config: SchedulerConfig) -> SchedulerService:
    """Wire the store, portal client, diff engine and notifier together."""
    tz = ZoneInfo(scheduler_config.timezone)

    store = SnapshotStore(config.get_cache_file_path())
    await store.init()

    portal_client = PortalClient(
        base_url=config.portal_url,
        token=config.portal_token,
        request_timeout=config.request_timeout,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay
    )
    alert_manager = AlertManager(scheduler_config.alert_config, tz=tz)
    change_detector = ChangeDetector(frozenset(scheduler_config.cancelled_statuses), tz=tz)

    poller = TimetablePoller(
        portal_client=portal_client,
        store=store,
        alert_manager=alert_manager,
        change_detector=change_detector,
        first_monday=scheduler_config.first_monday,
        tz=tz
    )
    return SchedulerService(scheduler_config, poller, alert_manager)


async def main():
    """Main function to start the watcher."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger = get_logger(__name__)

    run_once = False
    if len(sys.argv) > 1:
        if sys.argv[1] == '--once':
            run_once = True
        else:
            print(f"Unknown argument: {sys.argv[1]}")
            print("Usage: python scheduler_main.py [--once]")
            sys.exit(1)

    try:
        scheduler_config = build_scheduler_config()
        service = await build_service(scheduler_config)

        logger.info(
            "Timetable watcher configured",
            first_monday=scheduler_config.first_monday.isoformat(),
            timezone=scheduler_config.timezone,
            check_interval_seconds=scheduler_config.check_interval_seconds,
            providers=scheduler_config.alert_config.enabled_providers,
            run_once=run_once
        )

        result = await service.start(run_once=run_once)
        if run_once and result is None:
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error("Failed to start timetable watcher", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
