"""
Change detection engine for timetable snapshots.

This module provides:
- Comparison of two lesson lists for the same week
- Classification of differences into cancelled / restored / modified events
- Impact assessment of cancellations

The engine is pure: no I/O, no clock, deterministic output order.
"""

from datetime import tzinfo
from typing import AbstractSet, Dict, List, Optional, Sequence

import structlog

from scheduler.impact import classify_impact
from scheduler.lesson_keys import CANCELLED_STATUSES, LessonKey, identity_key, is_cancelled, keyable
from scheduler.models import (
    CancelledEvent, ChangeEvent, FieldChange, ModifiedEvent, RestoredEvent, TrackedField
)
from timetable.models import LessonOccurrence

logger = structlog.get_logger(__name__)


class ChangeDetector:
    """Engine for detecting changes between two snapshots of a week."""

    def __init__(
        self,
        cancelled_statuses: AbstractSet[str] = CANCELLED_STATUSES,
        tz: Optional[tzinfo] = None
    ):
        """
        Initialize change detector.

        Args:
            cancelled_statuses: Statuses meaning the lesson does not happen
            tz: Timezone defining calendar days for impact classification
        """
        self.cancelled_statuses = frozenset(cancelled_statuses)
        self.tz = tz
        self.logger = logger.bind(component="change_detector")

    def diff_week(
        self,
        new_lessons: Sequence[LessonOccurrence],
        previous_lessons: Sequence[LessonOccurrence]
    ) -> List[ChangeEvent]:
        """
        Compare a freshly fetched week against its previous snapshot.

        Lessons are matched by identity key; unmatched lessons on either
        side produce no event. Events follow the order of ``new_lessons``.

        Args:
            new_lessons: Lessons from the latest fetch
            previous_lessons: Lessons from the cached snapshot

        Returns:
            Ordered list of change events
        """
        previous_by_key: Dict[LessonKey, LessonOccurrence] = {
            identity_key(lesson): lesson for lesson in keyable(previous_lessons)
        }

        events: List[ChangeEvent] = []
        for lesson in keyable(new_lessons):
            old_lesson = previous_by_key.get(identity_key(lesson))
            if old_lesson is None:
                continue

            event = self._compare_lessons(old_lesson, lesson, new_lessons)
            if event is not None:
                events.append(event)

        self.logger.debug(
            "Compared week lessons",
            new_lessons=len(new_lessons),
            previous_lessons=len(previous_lessons),
            changes_detected=len(events)
        )

        return events

    def _compare_lessons(
        self,
        old_lesson: LessonOccurrence,
        new_lesson: LessonOccurrence,
        week_lessons: Sequence[LessonOccurrence]
    ) -> Optional[ChangeEvent]:
        """Derive at most one event for a matched slot."""
        status_changed = old_lesson.status != new_lesson.status
        teacher_changed = old_lesson.primary_teacher != new_lesson.primary_teacher
        room_changed = old_lesson.primary_room != new_lesson.primary_room

        if not (status_changed or teacher_changed or room_changed):
            return None

        was_cancelled = is_cancelled(old_lesson.status, self.cancelled_statuses)
        now_cancelled = is_cancelled(new_lesson.status, self.cancelled_statuses)

        # Cancellation wins over any simultaneous teacher/room change
        if not was_cancelled and now_cancelled:
            return CancelledEvent(
                lesson=new_lesson,
                reason_status=new_lesson.status,
                impact=classify_impact(new_lesson, week_lessons, self.cancelled_statuses, self.tz)
            )

        field_changes: List[FieldChange] = []
        if status_changed:
            field_changes.append(FieldChange(
                field=TrackedField.STATUS,
                old_value=old_lesson.status or None,
                new_value=new_lesson.status or None
            ))
        if teacher_changed:
            field_changes.append(FieldChange(
                field=TrackedField.TEACHER,
                old_value=old_lesson.primary_teacher,
                new_value=new_lesson.primary_teacher
            ))
        if room_changed:
            field_changes.append(FieldChange(
                field=TrackedField.ROOM,
                old_value=old_lesson.primary_room,
                new_value=new_lesson.primary_room
            ))

        if not field_changes:
            return None

        if was_cancelled and not now_cancelled:
            return RestoredEvent(
                lesson=new_lesson,
                prior_status=old_lesson.status,
                field_changes=field_changes
            )

        return ModifiedEvent(lesson=new_lesson, field_changes=field_changes)


def diff_week(
    new_lessons: Sequence[LessonOccurrence],
    previous_lessons: Sequence[LessonOccurrence],
    cancelled_statuses: AbstractSet[str] = CANCELLED_STATUSES,
    tz: Optional[tzinfo] = None
) -> List[ChangeEvent]:
    """Module-level shortcut for ``ChangeDetector(...).diff_week``."""
    return ChangeDetector(cancelled_statuses, tz).diff_week(new_lessons, previous_lessons)
