"""
Lesson identity and cancellation status helpers.

This module provides:
- The canonical identity key of a lesson slot
- Cancellation status classification against a closed vocabulary
- Local calendar date resolution used for per-day grouping
"""

from datetime import date, datetime, timezone, tzinfo
from typing import AbstractSet, Iterable, Optional, Tuple

from timetable.models import LessonOccurrence


# Closed enumeration of source statuses meaning "the class does not happen".
# Phrasings outside this set are treated as plain modifications; new ones
# are added through the ``EXTRA_CANCELLED_STATUSES`` setting.
CANCELLED_STATUSES: frozenset = frozenset({
    "Cours annulé",
    "Prof. absent",
    "Classe absente",
    "Prof./pers. absent",
    "Sortie pédagogique",
})

LessonKey = Tuple[datetime, datetime, str]


def identity_key(lesson: LessonOccurrence) -> LessonKey:
    """
    Build the identity key of a lesson slot.

    Start and end are normalized to UTC instants so equal wall-clock
    times compare equal whatever offset they were serialized with.

    Raises:
        ValueError: if the lesson lacks a start or end time
    """
    if not lesson.has_time_range:
        raise ValueError("Lesson without start/end time cannot be keyed")

    return (
        lesson.start_time.astimezone(timezone.utc),
        lesson.end_time.astimezone(timezone.utc),
        lesson.subject_or_title,
    )


def is_cancelled(
    status: Optional[str],
    cancelled_statuses: AbstractSet[str] = CANCELLED_STATUSES
) -> bool:
    """True iff status is non-empty and part of the cancellation vocabulary."""
    return bool(status) and status in cancelled_statuses


def build_cancelled_statuses(extra: Iterable[str] = ()) -> frozenset:
    """Default vocabulary extended with configured phrasings."""
    return CANCELLED_STATUSES | frozenset(s.strip() for s in extra if s and s.strip())


def keyable(lessons: Iterable[LessonOccurrence]):
    """Lessons that have both a start and an end time, in input order."""
    return [lesson for lesson in lessons if lesson.has_time_range]


def local_date(value: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of a timestamp, in ``tz`` when given."""
    if tz is not None and value.tzinfo is not None:
        return value.astimezone(tz).date()
    return value.date()
