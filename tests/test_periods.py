from datetime import date

import pytest

from periods import resolve_period


TODAY = date(2024, 3, 13)


def test_default_period_is_this_month():
    period = resolve_period(None, None, None, today=TODAY)
    assert (period.slug, period.start, period.end) == (
        "this_month",
        date(2024, 3, 1),
        date(2024, 3, 31),
    )


def test_relative_presets():
    assert resolve_period("today", None, None, today=TODAY).start == TODAY
    yesterday = resolve_period("yesterday", None, None, today=TODAY)
    assert yesterday.start == yesterday.end == date(2024, 3, 12)

    week = resolve_period("this_week", None, None, today=TODAY)
    assert (week.start, week.end) == (date(2024, 3, 11), date(2024, 3, 17))

    last_month = resolve_period("last_month", None, None, today=TODAY)
    assert (last_month.start, last_month.end) == (date(2024, 2, 1), date(2024, 2, 29))

    quarter = resolve_period("last_3_months", None, None, today=TODAY)
    assert (quarter.start, quarter.end) == (date(2024, 1, 1), date(2024, 3, 31))


def test_last_three_months_crosses_year():
    quarter = resolve_period("last_3_months", None, None, today=date(2024, 1, 20))
    assert (quarter.start, quarter.end) == (date(2023, 11, 1), date(2024, 1, 31))


def test_all_period_runs_to_today():
    period = resolve_period("all", None, None, today=TODAY)
    assert period.end == TODAY
    assert period.start == date(1970, 1, 1)


def test_custom_period_validation():
    period = resolve_period("custom", "2024-01-05", "2024-02-05", today=TODAY)
    assert (period.start, period.end) == (date(2024, 1, 5), date(2024, 2, 5))

    with pytest.raises(ValueError):
        resolve_period("custom", "2024-02-05", None, today=TODAY)
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-02-05", "2024-01-05", today=TODAY)


def test_unknown_period_is_rejected():
    with pytest.raises(ValueError):
        resolve_period("fortnight", None, None, today=TODAY)
