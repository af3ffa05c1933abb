"""Tests for renewal calendar arithmetic."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.scheduling import add_calendar_months, compute_renewal_schedule, parse_date_only


@pytest.mark.parametrize(
    ("start", "months", "expected"),
    [
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2023, 1, 31), 1, date(2023, 2, 28)),
        (date(2024, 3, 31), -1, date(2024, 2, 29)),
        (date(2025, 11, 15), 3, date(2026, 2, 15)),
        (date(2026, 1, 15), -2, date(2025, 11, 15)),
        (date(2024, 2, 29), 12, date(2025, 2, 28)),
    ],
)
def test_add_calendar_months_clamps_day(start, months, expected):
    assert add_calendar_months(start, months) == expected


def test_schedule_for_mid_month_completion():
    schedule = compute_renewal_schedule(date(2025, 3, 15))

    assert schedule.start_date == date(2025, 3, 15)
    assert schedule.renewal_due_date == date(2026, 3, 15)
    assert schedule.renewal_end_date == date(2027, 3, 15)
    assert [(r.months_before, r.date) for r in schedule.reminders] == [
        (3, date(2025, 12, 15)),
        (2, date(2026, 1, 15)),
        (1, date(2026, 2, 15)),
    ]


def test_schedule_for_month_end_completion():
    schedule = compute_renewal_schedule(date(2025, 5, 31))

    assert schedule.renewal_due_date == date(2026, 5, 31)
    assert [r.date for r in schedule.reminders] == [
        date(2026, 2, 28),
        date(2026, 3, 31),
        date(2026, 4, 30),
    ]


def test_reminders_are_increasing_and_before_due_date():
    day = date(2023, 1, 1)
    while day < date(2025, 1, 1):
        schedule = compute_renewal_schedule(day)
        dates = [r.date for r in schedule.reminders]
        assert dates == sorted(set(dates))
        assert all(d < schedule.renewal_due_date for d in dates)
        assert schedule.renewal_due_date == add_calendar_months(day, 12)
        day += timedelta(days=1)


def test_expiry_reminder_is_opt_in():
    assert all(not r.expiry for r in compute_renewal_schedule(date(2025, 3, 15)).reminders)

    schedule = compute_renewal_schedule(date(2025, 3, 15), include_expiry=True)
    expiry = schedule.reminders[-1]
    assert expiry.expiry is True
    assert expiry.months_before == 0
    assert expiry.date == schedule.renewal_due_date


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2025-03-15", date(2025, 3, 15)),
        ("2025-03-15T10:30:00", date(2025, 3, 15)),
        ("2025-03-15T23:30:00-05:00", date(2025, 3, 16)),
        ("2025-03-15T00:10:00Z", date(2025, 3, 15)),
        (datetime(2025, 3, 15, 22, 0, tzinfo=timezone(timedelta(hours=-4))), date(2025, 3, 16)),
        (date(2025, 3, 15), date(2025, 3, 15)),
        ("", None),
        ("not a date", None),
        (None, None),
    ],
)
def test_parse_date_only(raw, expected):
    assert parse_date_only(raw) == expected
