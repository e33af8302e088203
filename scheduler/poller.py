"""
Poll orchestrator for the rolling three-week window.

One cycle fetches the current week and the two following ones, diffs each
against its cached snapshot, sends the resulting alerts, then commits the
new snapshots and evicts weeks that are already past.
"""

import time
import uuid
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, Dict, List, Optional

import structlog

from scheduler.alerting import AlertManager, format_lesson_time
from scheduler.change_detector import ChangeDetector
from scheduler.models import CancelledEvent, ChangeEvent, ChangeType, PollCycleResult, RestoredEvent
from scheduler.week_window import week_number, weeks_to_check
from timetable.cache import SnapshotStore
from timetable.models import WeekSnapshot
from timetable.portal_client import PortalClient
from utilities.logger import PollLogger

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimetablePoller:
    """Runs polling cycles over the rolling window of weeks."""

    def __init__(
        self,
        portal_client: PortalClient,
        store: SnapshotStore,
        alert_manager: AlertManager,
        change_detector: ChangeDetector,
        first_monday: date,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize the poller.

        Args:
            portal_client: Source of week lesson lists
            store: Snapshot store (owned by this poller)
            alert_manager: Notification dispatcher
            change_detector: Week diff engine
            first_monday: First Monday of the term (week 1)
            tz: Timezone defining "today"
            clock: Returns the current aware datetime
        """
        self.portal_client = portal_client
        self.store = store
        self.alert_manager = alert_manager
        self.change_detector = change_detector
        self.first_monday = first_monday
        self.tz = tz
        self.clock = clock
        self.poll_logger = PollLogger("timetable_poller")
        self.logger = logger.bind(component="timetable_poller")

    def current_week(self) -> int:
        """Week number of today in the configured timezone."""
        now = self.clock()
        today = now.astimezone(self.tz).date() if self.tz is not None else now.date()
        return week_number(today, self.first_monday)

    async def run_cycle(self) -> PollCycleResult:
        """
        Run one full polling cycle.

        Fetch or diff failures propagate and nothing is persisted for the
        cycle; notification failures are logged and do not stop the commit.

        Returns:
            PollCycleResult with the cycle summary
        """
        cycle_id = str(uuid.uuid4())
        started = time.monotonic()
        run_timestamp = self.clock()
        current_week = self.current_week()
        weeks = weeks_to_check(current_week)

        self.poll_logger.clear_context().bind_context(cycle_id=cycle_id)
        self.poll_logger.log_check_start(weeks)

        staged: Dict[int, WeekSnapshot] = {}
        first_observation_weeks: List[int] = []
        events: List[ChangeEvent] = []

        for week in weeks:
            self.logger.debug("Fetching week", week=week)
            lessons = await self.portal_client.fetch_week(week)
            snapshot = WeekSnapshot(week_number=week, fetched_at=self.clock(), lessons=lessons)

            previous = self.store.load_snapshot(week)
            if previous is None:
                self.poll_logger.log_first_observation(week)
                first_observation_weeks.append(week)
            else:
                week_events = self.change_detector.diff_week(lessons, previous.lessons)
                for event in week_events:
                    self._log_event(event)
                events.extend(week_events)

            staged[week] = snapshot

        notifications_sent = 0
        if events:
            try:
                notifications_sent = await self.alert_manager.send_change_alerts(events)
            except Exception as e:
                self.logger.error(
                    "Failed to dispatch change alerts",
                    cycle_id=cycle_id,
                    changes=len(events),
                    error=str(e)
                )
            if notifications_sent > 0:
                self.poll_logger.log_notifications_sent(notifications_sent)

        for week, snapshot in staged.items():
            self.store.save_snapshot(week, snapshot)

        evicted_weeks = [week for week in self.store.cached_weeks() if week < current_week]
        for week in evicted_weeks:
            self.store.evict(week)
        if evicted_weeks:
            self.poll_logger.log_eviction(evicted_weeks)

        await self.store.persist(self.clock())

        changes_by_type: Dict[ChangeType, int] = {}
        for event in events:
            changes_by_type[event.change_type] = changes_by_type.get(event.change_type, 0) + 1

        duration = time.monotonic() - started
        self.poll_logger.log_check_end(len(events), duration)

        return PollCycleResult(
            cycle_id=cycle_id,
            run_timestamp=run_timestamp,
            current_week=current_week,
            weeks_checked=weeks,
            first_observation_weeks=first_observation_weeks,
            evicted_weeks=evicted_weeks,
            changes_detected=len(events),
            changes_by_type=changes_by_type,
            notifications_sent=notifications_sent,
            duration_seconds=duration
        )

    def _log_event(self, event: ChangeEvent) -> None:
        lesson = event.lesson
        details: List[str] = []
        if isinstance(event, CancelledEvent):
            details.append(f"reason: {event.reason_status}")
            details.append(f"impact: {event.impact.impact_type.value}")
        else:
            if isinstance(event, RestoredEvent):
                details.append(f"restored (was: {event.prior_status})")
            for change in event.field_changes:
                details.append(f"{change.field.value}: {change.old_value or 'N/A'} -> {change.new_value or 'N/A'}")

        self.poll_logger.log_lesson_change(
            event.change_type.value,
            lesson.subject_or_title,
            format_lesson_time(lesson.start_time, lesson.end_time, self.tz),
            details
        )
