"""
Impact classification for cancelled lessons.

Given a cancellation and the lessons of its week, works out what the
cancellation means for that day: a day off, a late start, an early
finish, or a gap between held lessons.
"""

from datetime import tzinfo
from typing import AbstractSet, Iterable, Optional

import structlog

from scheduler.exceptions import ImpactClassificationEdgeCase
from scheduler.lesson_keys import CANCELLED_STATUSES, is_cancelled, local_date
from scheduler.models import EarlyFinish, ImpactClassification, LateStart, MidDayGap, WholeDay
from timetable.models import LessonOccurrence

logger = structlog.get_logger(__name__)


def classify_impact(
    cancelled_lesson: LessonOccurrence,
    week_lessons: Iterable[LessonOccurrence],
    cancelled_statuses: AbstractSet[str] = CANCELLED_STATUSES,
    tz: Optional[tzinfo] = None
) -> ImpactClassification:
    """
    Classify the impact of a cancellation relative to its day's held lessons.

    Pure and independent of the order of ``week_lessons``. Never raises:
    unusable neighbour data falls back to ``WholeDay``.

    Args:
        cancelled_lesson: The lesson that is now cancelled
        week_lessons: All lessons of that week (the new snapshot)
        cancelled_statuses: Cancellation vocabulary
        tz: Timezone defining the calendar day; lesson offsets when None

    Returns:
        One of WholeDay, LateStart, EarlyFinish, MidDayGap
    """
    try:
        return _classify(cancelled_lesson, week_lessons, cancelled_statuses, tz)
    except ImpactClassificationEdgeCase as e:
        logger.warning(
            "Impact classification fell back to whole day",
            subject=cancelled_lesson.subject_or_title,
            reason=str(e)
        )
        return WholeDay()


def _classify(
    cancelled_lesson: LessonOccurrence,
    week_lessons: Iterable[LessonOccurrence],
    cancelled_statuses: AbstractSet[str],
    tz: Optional[tzinfo]
) -> ImpactClassification:
    start = cancelled_lesson.start_time
    if start is None or cancelled_lesson.end_time is None:
        raise ImpactClassificationEdgeCase("cancelled lesson has no time range")

    day = local_date(start, tz)
    held_same_day = [
        lesson for lesson in week_lessons
        if lesson.start_time is not None
        and local_date(lesson.start_time, tz) == day
        and not is_cancelled(lesson.status, cancelled_statuses)
    ]

    held_before = [lesson for lesson in held_same_day if lesson.start_time < start]
    held_after = [lesson for lesson in held_same_day if lesson.start_time > start]

    if not held_before and not held_after:
        return WholeDay()

    if not held_before:
        next_lesson = min(held_after, key=lambda lesson: lesson.start_time)
        return LateStart(new_start=next_lesson.start_time, original_start=start)

    if not held_after:
        latest_start = max(lesson.start_time for lesson in held_before)
        # split groups can share a start; the longest one ends the day
        previous_ends = [lesson.end_time for lesson in held_before if lesson.start_time == latest_start]
        if None in previous_ends:
            raise ImpactClassificationEdgeCase("previous held lesson has no end time")
        return EarlyFinish(new_end=max(previous_ends), original_end=cancelled_lesson.end_time)

    return MidDayGap(start=start, end=cancelled_lesson.end_time)
