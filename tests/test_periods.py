import datetime

import pytest

from errors import ValidationFailed
from periods import (business_dates, count_business_days, month_bounds, resolve_period,
                     week_bounds)


def test_today_is_a_single_day():
    period = resolve_period("hoy", today=datetime.date(2024, 1, 10))
    assert period.start_date == period.end_date == datetime.date(2024, 1, 10)
    assert period.business_days == 1
    assert period.is_single_day


def test_specific_date_accepts_iso_string_and_date():
    from_string = resolve_period("fecha", "2024-01-08")
    from_date = resolve_period("fecha", datetime.date(2024, 1, 8))
    assert from_string == from_date
    assert from_string.start_date == datetime.date(2024, 1, 8)


def test_week_runs_monday_to_sunday():
    period = resolve_period("semana", today=datetime.date(2024, 1, 10))
    assert period.start_date == datetime.date(2024, 1, 8)
    assert period.end_date == datetime.date(2024, 1, 14)
    assert period.business_days == 5


def test_sunday_belongs_to_the_week_that_ends_on_it():
    monday, sunday = week_bounds(datetime.date(2024, 1, 14))
    assert monday == datetime.date(2024, 1, 8)
    assert sunday == datetime.date(2024, 1, 14)


def test_month_covers_leap_february():
    period = resolve_period("mes", today=datetime.date(2024, 2, 15))
    assert period.start_date == datetime.date(2024, 2, 1)
    assert period.end_date == datetime.date(2024, 2, 29)
    assert period.business_days == 21
    assert month_bounds(datetime.date(2023, 12, 31)) == (datetime.date(2023, 12, 1), datetime.date(2023, 12, 31))


@pytest.mark.parametrize("start,end", [
    (datetime.date(2024, 1, 13), datetime.date(2024, 1, 13)),
    (datetime.date(2024, 1, 13), datetime.date(2024, 1, 14)),
    (datetime.date(2024, 1, 14), datetime.date(2024, 1, 13)),
])
def test_business_day_count_is_never_zero(start, end):
    assert count_business_days(start, end) == 1


def test_weekend_specific_date_still_counts_one_business_day():
    assert resolve_period("fecha", "2024-01-13").business_days == 1


def test_business_dates_skip_weekends_in_order():
    dates = business_dates(datetime.date(2024, 1, 5), datetime.date(2024, 1, 9))
    assert dates == [datetime.date(2024, 1, 5), datetime.date(2024, 1, 8), datetime.date(2024, 1, 9)]


def test_unknown_tag_is_rejected():
    with pytest.raises(ValidationFailed):
        resolve_period("trimestre")


@pytest.mark.parametrize("value", [None, "", "2024-02-30", "08/01/2024"])
def test_specific_date_must_be_valid(value):
    with pytest.raises(ValidationFailed):
        resolve_period("fecha", value)


def test_period_label_is_spanish():
    assert resolve_period("semana", today=datetime.date(2024, 1, 10)).label == "Semana"
