"""
Test cases for the poll orchestrator.
Uses a fake portal client and a real snapshot store in a temporary directory.
"""

import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from scheduler.change_detector import ChangeDetector
from scheduler.exceptions import FetchError
from scheduler.models import CancelledEvent, ChangeType, ModifiedEvent
from scheduler.poller import TimetablePoller
from timetable.cache import SnapshotStore
from timetable.models import WeekSnapshot
from timetable.portal_client import PortalClient


FIRST_MONDAY = datetime(2024, 9, 2).date()
# Monday 14 October 2024, week 7
NOW = datetime(2024, 10, 14, 7, 0, tzinfo=timezone.utc)


def make_portal(weeks):
    """Fake portal returning ``weeks[n]`` (empty by default)."""
    portal = AsyncMock(spec=PortalClient)

    def fetch_week(week):
        lessons = weeks.get(week, [])
        if isinstance(lessons, Exception):
            raise lessons
        return lessons

    portal.fetch_week.side_effect = fetch_week
    return portal


async def make_store(cache_path, **snapshots) -> SnapshotStore:
    store = SnapshotStore(cache_path)
    await store.init()
    for week, lessons in snapshots.items():
        number = int(week.lstrip("w"))
        store.save_snapshot(number, WeekSnapshot(week_number=number, fetched_at=NOW, lessons=lessons))
    await store.persist(NOW)
    return store


def make_poller(portal, store, alert_manager) -> TimetablePoller:
    return TimetablePoller(
        portal_client=portal,
        store=store,
        alert_manager=alert_manager,
        change_detector=ChangeDetector(),
        first_monday=FIRST_MONDAY,
        tz=timezone.utc,
        clock=lambda: NOW
    )


class TestCurrentWeek:
    """Test cases for week resolution."""

    def test_current_week(self, mock_alert_manager, cache_path):
        """Today is resolved against the first Monday."""
        poller = make_poller(make_portal({}), SnapshotStore(cache_path), mock_alert_manager)
        assert poller.current_week() == 7


class TestRunCycle:
    """Test cases for one polling cycle."""

    @pytest.mark.asyncio
    async def test_first_observation_is_silent(self, mock_alert_manager, cache_path, sample_day):
        """Weeks seen for the first time are stored without alerts."""
        portal = make_portal({7: sample_day})
        store = await make_store(cache_path)
        poller = make_poller(portal, store, mock_alert_manager)

        result = await poller.run_cycle()

        assert result.current_week == 7
        assert result.weeks_checked == [7, 8, 9]
        assert result.first_observation_weeks == [7, 8, 9]
        assert result.changes_detected == 0
        mock_alert_manager.send_change_alerts.assert_not_awaited()
        assert [call.args[0] for call in portal.fetch_week.await_args_list] == [7, 8, 9]

        on_disk = json.loads(cache_path.read_text(encoding="utf-8"))
        assert sorted(on_disk["timetable"]["weeks"]) == ["7", "8", "9"]
        assert len(on_disk["timetable"]["weeks"]["7"]["classes"]) == 3
        assert on_disk["lastUpdate"] == "2024-10-14T07:00:00.000Z"

    @pytest.mark.asyncio
    async def test_cancellation_alerted(self, mock_alert_manager, cache_path, sample_day):
        """A cancellation in a known week is sent and committed."""
        mock_alert_manager.send_change_alerts.return_value = 2
        cancelled_day = [sample_day[0], sample_day[1].model_copy(update={"status": "Cours annulé"}), sample_day[2]]
        store = await make_store(cache_path, w7=sample_day, w8=[], w9=[])
        poller = make_poller(make_portal({7: cancelled_day}), store, mock_alert_manager)

        result = await poller.run_cycle()

        mock_alert_manager.send_change_alerts.assert_awaited_once()
        events = mock_alert_manager.send_change_alerts.await_args.args[0]
        assert len(events) == 1
        assert isinstance(events[0], CancelledEvent)
        assert result.first_observation_weeks == []
        assert result.changes_detected == 1
        assert result.changes_by_type == {ChangeType.CANCELLED: 1}
        assert result.notifications_sent == 2

        assert store.load_snapshot(7).lessons[1].status == "Cours annulé"

    @pytest.mark.asyncio
    async def test_same_data_twice_no_alert(self, mock_alert_manager, cache_path, sample_day):
        """Polling unchanged data after the first observation sends nothing."""
        store = await make_store(cache_path)
        poller = make_poller(make_portal({7: sample_day}), store, mock_alert_manager)

        await poller.run_cycle()
        result = await poller.run_cycle()

        assert result.changes_detected == 0
        assert result.first_observation_weeks == []
        mock_alert_manager.send_change_alerts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_events_across_weeks(self, mock_alert_manager, cache_path, sample_day, lesson_factory):
        """Events of every week are sent in one dispatch, in week order."""
        week8_lesson = lesson_factory("2024-10-22T08:00", "2024-10-22T09:00", subject="Chimie")
        store = await make_store(cache_path, w7=sample_day, w8=[week8_lesson], w9=[])
        portal = make_portal({
            7: [sample_day[0].model_copy(update={"rooms": ("C310",)})] + sample_day[1:],
            8: [week8_lesson.model_copy(update={"status": "Prof. absent"})],
        })
        poller = make_poller(portal, store, mock_alert_manager)

        result = await poller.run_cycle()

        events = mock_alert_manager.send_change_alerts.await_args.args[0]
        assert [type(event) for event in events] == [ModifiedEvent, CancelledEvent]
        assert result.changes_by_type == {ChangeType.MODIFIED: 1, ChangeType.CANCELLED: 1}

    @pytest.mark.asyncio
    async def test_past_weeks_evicted(self, mock_alert_manager, cache_path, sample_day):
        """Weeks before the current one are dropped, future ones kept."""
        store = await make_store(cache_path, w5=[], w6=sample_day, w12=[])
        poller = make_poller(make_portal({}), store, mock_alert_manager)

        result = await poller.run_cycle()

        assert result.evicted_weeks == [5, 6]
        assert store.cached_weeks() == [7, 8, 9, 12]
        on_disk = json.loads(cache_path.read_text(encoding="utf-8"))
        assert sorted(on_disk["timetable"]["weeks"], key=int) == ["7", "8", "9", "12"]

    @pytest.mark.asyncio
    async def test_fetch_failure_persists_nothing(self, mock_alert_manager, cache_path, sample_day):
        """A failed fetch aborts the cycle before any snapshot is committed."""
        cancelled_day = [lesson.model_copy(update={"status": "Cours annulé"}) for lesson in sample_day]
        store = await make_store(cache_path, w6=[], w7=sample_day)
        before = cache_path.read_text(encoding="utf-8")
        portal = make_portal({7: cancelled_day, 8: FetchError("timeout", week=8)})
        poller = make_poller(portal, store, mock_alert_manager)

        with pytest.raises(FetchError):
            await poller.run_cycle()

        mock_alert_manager.send_change_alerts.assert_not_awaited()
        assert cache_path.read_text(encoding="utf-8") == before
        assert store.load_snapshot(7).lessons == sample_day
        assert store.cached_weeks() == [6, 7]

        # The change is still detected once the portal recovers
        portal.fetch_week.side_effect = None
        portal.fetch_week.return_value = cancelled_day
        result = await poller.run_cycle()
        assert result.changes_by_type[ChangeType.CANCELLED] == 3

    @pytest.mark.asyncio
    async def test_notification_failure_still_commits(self, mock_alert_manager, cache_path, sample_day):
        """An unexpected dispatch error does not block the commit."""
        mock_alert_manager.send_change_alerts.side_effect = RuntimeError("provider exploded")
        changed_day = [sample_day[0].model_copy(update={"teacher_names": ("Mme MARTIN",)})] + sample_day[1:]
        store = await make_store(cache_path, w7=sample_day, w8=[], w9=[])
        poller = make_poller(make_portal({7: changed_day}), store, mock_alert_manager)

        result = await poller.run_cycle()

        assert result.changes_detected == 1
        assert result.notifications_sent == 0

        reloaded = SnapshotStore(cache_path)
        await reloaded.init()
        assert reloaded.load_snapshot(7).lessons[0].teacher_names == ("Mme MARTIN",)
