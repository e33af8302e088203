"""
Test cases for scheduler models: events, impacts and configurations.
"""

import pytest
from datetime import date, datetime, timezone
from pydantic import TypeAdapter, ValidationError

from scheduler.lesson_keys import CANCELLED_STATUSES
from scheduler.models import (
    AlertConfig, CancelledEvent, ChangeEvent, ChangeType, FieldChange, ImpactClassification,
    ImpactType, LateStart, ModifiedEvent, PollCycleResult, RestoredEvent, SchedulerConfig,
    TrackedField, WholeDay
)


class TestSchedulerConfig:
    """Test cases for SchedulerConfig model."""

    def test_valid_scheduler_config(self):
        """Test creating valid scheduler configuration."""
        config = SchedulerConfig(
            check_interval_seconds=120,
            timezone="Europe/Paris",
            first_monday=date(2024, 9, 2)
        )

        assert config.check_interval_seconds == 120
        assert config.timezone == "Europe/Paris"
        assert config.first_monday == date(2024, 9, 2)
        assert set(config.cancelled_statuses) == CANCELLED_STATUSES
        assert isinstance(config.alert_config, AlertConfig)

    def test_defaults(self):
        """Test scheduler configuration defaults."""
        config = SchedulerConfig(first_monday=date(2024, 9, 2))

        assert config.check_interval_seconds == 300
        assert config.timezone == "Europe/Paris"

    def test_first_monday_must_be_monday(self):
        """Week numbering needs a Monday anchor."""
        with pytest.raises(ValidationError):
            SchedulerConfig(first_monday=date(2024, 9, 3))

    def test_interval_too_short(self):
        """Intervals below ten seconds are rejected."""
        with pytest.raises(ValidationError):
            SchedulerConfig(first_monday=date(2024, 9, 2), check_interval_seconds=5)


class TestAlertConfig:
    """Test cases for AlertConfig model."""

    def test_alert_config_defaults(self):
        """Test alert configuration defaults."""
        config = AlertConfig()

        assert config.enabled is True
        assert config.enabled_providers == ["pushover", "ntfy"]
        assert config.enable_status_alert is True
        assert config.pushover_priority == 0
        assert config.ntfy_priority == 3

    def test_providers_normalized(self):
        """Provider names are stripped and lowercased."""
        config = AlertConfig(enabled_providers=[" Pushover", "NTFY", ""])
        assert config.enabled_providers == ["pushover", "ntfy"]

    def test_invalid_priorities(self):
        """Priorities outside the provider ranges are rejected."""
        with pytest.raises(ValidationError):
            AlertConfig(pushover_priority=3)

        with pytest.raises(ValidationError):
            AlertConfig(ntfy_priority=0)


class TestChangeEvents:
    """Test cases for change event models."""

    def test_modified_requires_changes(self, sample_lesson):
        """A modification always carries at least one field change."""
        with pytest.raises(ValidationError):
            ModifiedEvent(lesson=sample_lesson, field_changes=[])

    def test_event_discriminator(self, sample_lesson):
        """Serialized events parse back to the right variant."""
        adapter = TypeAdapter(ChangeEvent)
        event = CancelledEvent(lesson=sample_lesson, reason_status="Cours annulé", impact=WholeDay())

        parsed = adapter.validate_python(event.model_dump())

        assert isinstance(parsed, CancelledEvent)
        assert parsed.change_type == ChangeType.CANCELLED
        assert isinstance(parsed.impact, WholeDay)

    def test_restored_event(self, sample_lesson):
        """Test creating a restored event."""
        event = RestoredEvent(
            lesson=sample_lesson,
            prior_status="Prof. absent",
            field_changes=[FieldChange(field=TrackedField.STATUS, old_value="Prof. absent")]
        )

        assert event.change_type == ChangeType.RESTORED
        assert event.field_changes[0].new_value is None
        assert event.detected_at.tzinfo is not None

    def test_impact_discriminator(self):
        """Impacts are told apart by their type tag."""
        adapter = TypeAdapter(ImpactClassification)
        start = datetime(2024, 10, 14, 10, 0, tzinfo=timezone.utc)

        parsed = adapter.validate_python({
            "impact_type": ImpactType.LATE_START,
            "new_start": start,
            "original_start": start.replace(hour=8)
        })

        assert isinstance(parsed, LateStart)
        assert parsed.impact_type == ImpactType.LATE_START


class TestPollCycleResult:
    """Test cases for PollCycleResult model."""

    def test_valid_result(self):
        """Test creating a cycle result."""
        result = PollCycleResult(
            cycle_id="cycle-1",
            current_week=7,
            weeks_checked=[7, 8, 9],
            first_observation_weeks=[9],
            evicted_weeks=[6],
            changes_detected=2,
            changes_by_type={ChangeType.CANCELLED: 1, ChangeType.MODIFIED: 1},
            notifications_sent=4,
            duration_seconds=1.5
        )

        assert result.weeks_checked == [7, 8, 9]
        assert result.changes_by_type[ChangeType.CANCELLED] == 1
        assert result.run_timestamp is not None
