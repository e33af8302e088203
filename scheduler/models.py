"""
Models for scheduler and change detection functionality.

This module defines Pydantic models for:
- Change events emitted by the week diff engine
- Impact classification of cancellations
- Alert and scheduler configurations
- Poll cycle results
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from scheduler.lesson_keys import CANCELLED_STATUSES
from timetable.models import LessonOccurrence


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeType(str, Enum):
    """Types of changes that can be detected."""
    CANCELLED = "cancelled"
    RESTORED = "restored"
    MODIFIED = "modified"


class TrackedField(str, Enum):
    """Lesson attributes compared between two polls."""
    STATUS = "status"
    TEACHER = "teacher"
    ROOM = "room"


class ImpactType(str, Enum):
    """Practical consequence of a single cancellation on its day."""
    WHOLE_DAY = "whole_day"
    LATE_START = "late_start"
    EARLY_FINISH = "early_finish"
    MID_DAY_GAP = "mid_day_gap"


class FieldChange(BaseModel):
    """One tracked attribute that differs between two polls."""
    field: TrackedField = Field(..., description="Attribute that changed")
    old_value: Optional[str] = Field(default=None, description="Previous value")
    new_value: Optional[str] = Field(default=None, description="New value")

    model_config = {"frozen": True}


class WholeDay(BaseModel):
    """No lesson is held anymore on that day."""
    impact_type: Literal[ImpactType.WHOLE_DAY] = ImpactType.WHOLE_DAY

    model_config = {"frozen": True}


class LateStart(BaseModel):
    """The day now starts with a later lesson."""
    impact_type: Literal[ImpactType.LATE_START] = ImpactType.LATE_START
    new_start: datetime
    original_start: datetime

    model_config = {"frozen": True}


class EarlyFinish(BaseModel):
    """The day now ends with an earlier lesson."""
    impact_type: Literal[ImpactType.EARLY_FINISH] = ImpactType.EARLY_FINISH
    new_end: datetime
    original_end: datetime

    model_config = {"frozen": True}


class MidDayGap(BaseModel):
    """A free period opens between held lessons."""
    impact_type: Literal[ImpactType.MID_DAY_GAP] = ImpactType.MID_DAY_GAP
    start: datetime
    end: datetime

    model_config = {"frozen": True}


ImpactClassification = Annotated[
    Union[WholeDay, LateStart, EarlyFinish, MidDayGap],
    Field(discriminator="impact_type")
]


class CancelledEvent(BaseModel):
    """A lesson that was held is now cancelled."""
    change_type: Literal[ChangeType.CANCELLED] = ChangeType.CANCELLED
    lesson: LessonOccurrence
    reason_status: str = Field(..., description="Cancellation status from the source")
    impact: ImpactClassification
    detected_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


class RestoredEvent(BaseModel):
    """A previously cancelled lesson is held again."""
    change_type: Literal[ChangeType.RESTORED] = ChangeType.RESTORED
    lesson: LessonOccurrence
    prior_status: str = Field(..., description="Cancellation status before restoration")
    field_changes: List[FieldChange] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


class ModifiedEvent(BaseModel):
    """Status, teacher or room of a lesson changed."""
    change_type: Literal[ChangeType.MODIFIED] = ChangeType.MODIFIED
    lesson: LessonOccurrence
    field_changes: List[FieldChange] = Field(..., min_length=1)
    detected_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


ChangeEvent = Annotated[
    Union[CancelledEvent, RestoredEvent, ModifiedEvent],
    Field(discriminator="change_type")
]


class AlertConfig(BaseModel):
    """Configuration for the notification providers."""
    enabled: bool = Field(default=True)
    enabled_providers: List[str] = Field(default_factory=lambda: ["pushover", "ntfy"])
    enable_status_alert: bool = Field(default=True)

    # Pushover
    pushover_user_key: Optional[str] = Field(default=None)
    pushover_api_token: Optional[str] = Field(default=None)
    pushover_priority: int = Field(default=0, ge=-2, le=2)

    # ntfy
    ntfy_url: str = Field(default="https://ntfy.sh/your-topic-here")
    ntfy_priority: int = Field(default=3, ge=1, le=5)
    ntfy_title: str = Field(default="Timetable watch")

    request_timeout: int = Field(default=30, description="Request timeout in seconds")

    @field_validator("enabled_providers")
    @classmethod
    def normalize_providers(cls, v):
        return [name.strip().lower() for name in v if name and name.strip()]


class SchedulerConfig(BaseModel):
    """Configuration for the polling scheduler."""
    check_interval_seconds: int = Field(default=300, ge=10, description="Delay between the end of a cycle and the next start")
    timezone: str = Field(default="Europe/Paris", description="Timezone for local dates")
    first_monday: date = Field(..., description="First Monday of the term (week 1)")
    cancelled_statuses: List[str] = Field(
        default_factory=lambda: sorted(CANCELLED_STATUSES),
        description="Statuses meaning the lesson does not happen"
    )

    # Alerting
    alert_config: AlertConfig = Field(default_factory=AlertConfig)

    @field_validator("first_monday")
    @classmethod
    def validate_first_monday(cls, v):
        """Week numbering is anchored on a Monday."""
        if v.weekday() != 0:
            raise ValueError("first_monday must be a Monday")
        return v


class PollCycleResult(BaseModel):
    """Result of one polling cycle."""
    cycle_id: str = Field(..., description="Unique cycle identifier")
    run_timestamp: datetime = Field(default_factory=_utcnow)
    current_week: int = Field(..., description="Week number of the cycle's 'today'")
    weeks_checked: List[int] = Field(default_factory=list)
    first_observation_weeks: List[int] = Field(default_factory=list)
    evicted_weeks: List[int] = Field(default_factory=list)

    changes_detected: int = Field(default=0)
    changes_by_type: Dict[ChangeType, int] = Field(default_factory=dict)
    notifications_sent: int = Field(default=0)

    duration_seconds: float = Field(default=0.0)
