"""
Recurrence expansion for duty schedules.

Pure date arithmetic; no database access. Weekday numbers follow the
0 = Sunday ... 6 = Saturday convention used by the API.
"""
import calendar
import datetime as dt
from typing import Iterable, List, Optional

from app.core import config
from app.core.errors import ValidationError
from app.features.duty.models import RecurrenceType


def weekday_number(day: dt.date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def add_months(base: dt.date, months: int) -> dt.date:
    """``base`` moved by ``months`` calendar months, clamped to the month's last day."""
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def next_weekly_date(current: dt.date, days: Iterable[int]) -> dt.date:
    """The first date after ``current`` whose weekday is in ``days``."""
    wanted = sorted(set(days))
    today = weekday_number(current)
    for day in wanted:
        if day > today:
            return current + dt.timedelta(days=day - today)
    # Wrap to the first configured day of next week
    return current + dt.timedelta(days=7 - today + wanted[0])


def expand(
    base_date: dt.date,
    recurrence_type: RecurrenceType,
    end_date: Optional[dt.date],
    days: Optional[List[int]] = None,
    limit: Optional[int] = None,
) -> List[dt.date]:
    """
    Dates of the additional occurrences after ``base_date``, up to and
    including ``end_date``. The base date itself is not part of the result.

    Monthly recurrence always counts from the base date so a schedule on
    the 31st lands on the last day of shorter months and returns to the
    31st afterwards.
    """
    if recurrence_type == RecurrenceType.NONE:
        return []
    if end_date is None:
        raise ValidationError("recurrence_end_date is required for recurring schedules",
                              field="recurrence_end_date")
    if end_date <= base_date:
        raise ValidationError("recurrence_end_date must be after the schedule date",
                              field="recurrence_end_date")
    if days and any(d < 0 or d > 6 for d in days):
        raise ValidationError("recurrence_days must be between 0 and 6", field="recurrence_days")

    if limit is None:
        limit = config.MAX_RECURRENCE_OCCURRENCES

    occurrences: List[dt.date] = []
    current = base_date
    step = 0
    while True:
        step += 1
        if recurrence_type == RecurrenceType.DAILY:
            current = current + dt.timedelta(days=1)
        elif recurrence_type == RecurrenceType.WEEKLY:
            current = next_weekly_date(current, days) if days else current + dt.timedelta(days=7)
        elif recurrence_type == RecurrenceType.BIWEEKLY:
            current = current + dt.timedelta(days=14)
        elif recurrence_type == RecurrenceType.MONTHLY:
            current = add_months(base_date, step)
        else:
            raise ValidationError(f"Unknown recurrence type {recurrence_type}", field="recurrence_type")

        if current > end_date:
            return occurrences
        occurrences.append(current)
        if len(occurrences) > limit:
            raise ValidationError(
                f"Recurrence would create more than {limit} schedules",
                field="recurrence_end_date",
            )
