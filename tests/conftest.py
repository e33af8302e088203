"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

from timetable.models import LessonOccurrence


FIRST_MONDAY = date(2024, 9, 2)


def make_lesson(
    start: str,
    end: str,
    subject: str = "Mathématiques",
    status: str = "",
    teachers=("M. DUPONT",),
    rooms=("B204",)
) -> LessonOccurrence:
    """Build a lesson from ``YYYY-MM-DDTHH:MM`` UTC strings."""
    return LessonOccurrence(
        start_time=datetime.fromisoformat(start).replace(tzinfo=timezone.utc),
        end_time=datetime.fromisoformat(end).replace(tzinfo=timezone.utc),
        subject_or_title=subject,
        status=status,
        teacher_names=tuple(teachers),
        rooms=tuple(rooms)
    )


@pytest.fixture
def lesson_factory():
    """Factory building lessons from UTC time strings."""
    return make_lesson


@pytest.fixture
def sample_lesson():
    """A held Monday morning lesson."""
    return make_lesson("2024-10-14T08:00", "2024-10-14T09:00")


@pytest.fixture
def sample_day():
    """Three held lessons on Tuesday 15 October 2024 (UTC)."""
    return [
        make_lesson("2024-10-15T08:00", "2024-10-15T09:00", subject="Mathématiques"),
        make_lesson("2024-10-15T10:00", "2024-10-15T11:00", subject="Physique", teachers=("Mme MARTIN",), rooms=("LAB1",)),
        make_lesson("2024-10-15T14:00", "2024-10-15T15:00", subject="Histoire", teachers=("M. BERNARD",), rooms=("A101",)),
    ]


@pytest.fixture
def sample_record():
    """A portal lesson record."""
    return {
        "startDate": "2024-10-14T08:00:00.000Z",
        "endDate": "2024-10-14T09:00:00.000Z",
        "subject": {"name": "Mathématiques"},
        "title": None,
        "status": None,
        "teacherNames": ["M. DUPONT", "Mme LEROY"],
        "classrooms": ["B204"],
        "isSuperposedCanceled": False
    }


# Scheduler-specific fixtures
@pytest.fixture
def alert_config():
    """Create alert configuration for testing."""
    from scheduler.models import AlertConfig
    return AlertConfig(
        enabled=True,
        enabled_providers=["pushover", "ntfy"],
        pushover_user_key="user-key",
        pushover_api_token="api-token",
        ntfy_url="https://ntfy.example.com/timetable"
    )


@pytest.fixture
def scheduler_config(alert_config):
    """Create scheduler configuration for testing."""
    from scheduler.models import SchedulerConfig
    return SchedulerConfig(
        check_interval_seconds=60,
        timezone="UTC",
        first_monday=FIRST_MONDAY,
        alert_config=alert_config
    )


@pytest.fixture
def mock_alert_manager():
    """Create a mock alert manager."""
    from scheduler.alerting import AlertManager
    manager = AsyncMock(spec=AlertManager)
    manager.send_change_alerts.return_value = 0
    manager.send_status_alert.return_value = 1
    return manager


@pytest.fixture
def cache_path(tmp_path):
    """Location of a cache file inside a temporary directory."""
    return tmp_path / "cache" / "timetable_data.json"
