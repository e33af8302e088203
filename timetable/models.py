"""
Pydantic models for timetable data validation and serialization.
Implements the lesson occurrence and week snapshot schemas, plus the
record conversion shared by the portal payloads and the cache file.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


UNKNOWN_SUBJECT = "???"


class LessonOccurrence(BaseModel):
    """
    Immutable snapshot of one scheduled class instance.

    The slot identity is ``(start_time, end_time, subject_or_title)``;
    status, teachers and rooms are attributes of that slot which may change
    between polls.
    """
    start_time: Optional[datetime] = Field(None, description="Lesson start (timezone aware)")
    end_time: Optional[datetime] = Field(None, description="Lesson end (timezone aware)")
    subject_or_title: str = Field(default=UNKNOWN_SUBJECT, description="Subject name, or free-text title")
    status: str = Field(default="", description="Source status text, empty when held as planned")
    teacher_names: Tuple[str, ...] = Field(default=(), description="Teachers, primary first")
    rooms: Tuple[str, ...] = Field(default=(), description="Rooms, primary first")

    model_config = {"frozen": True}

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc_when_naive(cls, v):
        """Naive timestamps are read as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        """A missing status means the lesson is held as planned."""
        return v or ""

    @field_validator("subject_or_title", mode="before")
    @classmethod
    def default_subject(cls, v):
        return v or UNKNOWN_SUBJECT

    @property
    def primary_teacher(self) -> Optional[str]:
        return self.teacher_names[0] if self.teacher_names else None

    @property
    def primary_room(self) -> Optional[str]:
        return self.rooms[0] if self.rooms else None

    @property
    def has_time_range(self) -> bool:
        """Whether the lesson can be keyed at all."""
        return self.start_time is not None and self.end_time is not None


class WeekSnapshot(BaseModel):
    """All lessons fetched for one week at one point in time."""
    week_number: int = Field(..., description="Week index relative to the term's first Monday")
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    lessons: List[LessonOccurrence] = Field(default_factory=list)

    model_config = {"frozen": True}


def lesson_from_record(record: Dict[str, Any]) -> LessonOccurrence:
    """
    Build a LessonOccurrence from a portal/cache lesson record.

    Args:
        record: Mapping with ``startDate``, ``endDate``, ``subject.name``,
            ``title``, ``status``, ``teacherNames`` and ``classrooms`` keys

    Returns:
        LessonOccurrence instance
    """
    subject = record.get("subject") or {}
    subject_name = subject.get("name") if isinstance(subject, dict) else None

    return LessonOccurrence(
        start_time=record.get("startDate"),
        end_time=record.get("endDate"),
        subject_or_title=subject_name or record.get("title") or UNKNOWN_SUBJECT,
        status=record.get("status") or "",
        teacher_names=tuple(record.get("teacherNames") or ()),
        rooms=tuple(record.get("classrooms") or ()),
    )


def lesson_to_record(lesson: LessonOccurrence) -> Dict[str, Any]:
    """Serialize a lesson back into the record shape used on disk."""
    return {
        "startDate": to_iso_timestamp(lesson.start_time),
        "endDate": to_iso_timestamp(lesson.end_time),
        "subject": {"name": lesson.subject_or_title},
        "title": None,
        "status": lesson.status or None,
        "teacherNames": list(lesson.teacher_names),
        "classrooms": list(lesson.rooms),
    }


def to_iso_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    if value is None:
        return None
    utc_value = value.astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"
