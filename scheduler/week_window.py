"""
Week numbering relative to the term's first Monday.
"""

from datetime import date, datetime, timezone
from typing import List, Union

WEEKS_IN_WINDOW = 3


def week_number(day: Union[date, datetime], first_monday: Union[date, datetime]) -> int:
    """
    Map a calendar date to its week index, week 1 starting on ``first_monday``.

    Aware datetimes count by their UTC date. Only calendar dates are
    compared, so daylight-saving shifts cannot move a day across a week
    boundary. Dates before the epoch give weeks <= 0.
    """
    days_between = (_as_date(day) - _as_date(first_monday)).days
    return 1 + days_between // 7


def weeks_to_check(current_week: int, window: int = WEEKS_IN_WINDOW) -> List[int]:
    """The rolling window: the current week and the ones right after it."""
    return [current_week + offset for offset in range(window)]


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value
