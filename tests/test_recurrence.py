"""
Recurrence expansion.
"""
import datetime as dt

import pytest

from app.core.errors import ValidationError
from app.features.duty.models import RecurrenceType
from app.features.duty.recurrence import add_months, expand, next_weekly_date, weekday_number


MONDAY = dt.date(2030, 1, 7)


def test_weekday_numbers_start_on_sunday():
    assert weekday_number(dt.date(2030, 1, 6)) == 0
    assert weekday_number(MONDAY) == 1
    assert weekday_number(dt.date(2030, 1, 12)) == 6


def test_none_expands_to_nothing():
    assert expand(MONDAY, RecurrenceType.NONE, None) == []


def test_daily_excludes_base_and_includes_end():
    dates = expand(MONDAY, RecurrenceType.DAILY, MONDAY + dt.timedelta(days=3))
    assert dates == [MONDAY + dt.timedelta(days=n) for n in (1, 2, 3)]


def test_weekly_on_selected_days():
    dates = expand(MONDAY, RecurrenceType.WEEKLY, MONDAY + dt.timedelta(days=14), days=[1, 3])
    assert dates == [
        dt.date(2030, 1, 9),
        dt.date(2030, 1, 14),
        dt.date(2030, 1, 16),
        dt.date(2030, 1, 21),
    ]


def test_weekly_without_days_repeats_every_seven():
    dates = expand(MONDAY, RecurrenceType.WEEKLY, MONDAY + dt.timedelta(days=20))
    assert dates == [dt.date(2030, 1, 14), dt.date(2030, 1, 21)]


def test_next_weekly_date_wraps_to_next_week():
    saturday = dt.date(2030, 1, 12)
    assert next_weekly_date(saturday, [1, 3]) == dt.date(2030, 1, 14)


def test_biweekly():
    dates = expand(MONDAY, RecurrenceType.BIWEEKLY, MONDAY + dt.timedelta(days=30))
    assert dates == [dt.date(2030, 1, 21), dt.date(2030, 2, 4)]


def test_monthly_clamps_and_recovers():
    dates = expand(dt.date(2030, 1, 31), RecurrenceType.MONTHLY, dt.date(2030, 4, 30))
    assert dates == [dt.date(2030, 2, 28), dt.date(2030, 3, 31), dt.date(2030, 4, 30)]


def test_add_months_across_year_and_leap_day():
    assert add_months(dt.date(2031, 12, 15), 1) == dt.date(2032, 1, 15)
    assert add_months(dt.date(2032, 2, 29), 12) == dt.date(2033, 2, 28)
    assert add_months(dt.date(2030, 3, 31), -1) == dt.date(2030, 2, 28)


@pytest.mark.parametrize("end_date", [None, MONDAY, MONDAY - dt.timedelta(days=1)])
def test_recurring_needs_end_after_base(end_date):
    with pytest.raises(ValidationError):
        expand(MONDAY, RecurrenceType.DAILY, end_date)


def test_rejects_out_of_range_weekdays():
    with pytest.raises(ValidationError):
        expand(MONDAY, RecurrenceType.WEEKLY, MONDAY + dt.timedelta(days=14), days=[7])


def test_occurrence_cap():
    assert len(expand(MONDAY, RecurrenceType.DAILY, MONDAY + dt.timedelta(days=5), limit=5)) == 5
    with pytest.raises(ValidationError):
        expand(MONDAY, RecurrenceType.DAILY, MONDAY + dt.timedelta(days=6), limit=5)
