"""Calendar arithmetic for maintenance renewal schedules.

All dates are calendar dates in UTC. Month arithmetic clamps the day of
month, so Jan 31 + 1 month is the last day of February rather than a date
in March.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone

from src.schemas.renewals import Reminder, RenewalSchedule

RENEWAL_TERM_MONTHS = 12
REMINDER_MONTHS_BEFORE = (3, 2, 1)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def add_calendar_months(value: date, months: int) -> date:
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def compute_renewal_schedule(completed: date, include_expiry: bool = False) -> RenewalSchedule:
    renewal_due = add_calendar_months(completed, RENEWAL_TERM_MONTHS)
    reminders = [
        Reminder(months_before=months, date=add_calendar_months(renewal_due, -months))
        for months in REMINDER_MONTHS_BEFORE
    ]
    if include_expiry:
        reminders.append(Reminder(months_before=0, date=renewal_due, expiry=True))
    return RenewalSchedule(
        start_date=completed,
        renewal_due_date=renewal_due,
        renewal_end_date=add_calendar_months(renewal_due, RENEWAL_TERM_MONTHS),
        reminders=reminders,
    )


def parse_date_only(value: object) -> date | None:
    """Parse a Simpro date or datetime into a UTC calendar date."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        if _DATE_ONLY.match(text):
            return date.fromisoformat(text)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def to_date_string(value: date) -> str:
    return value.isoformat()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()
