"""
Calendar Date Helpers

Due dates and payment dates are calendar dates with no time of day. Any
datetime or timestamp string that reaches the ledger is cut down to its date
part before it is compared, so timezone offsets never shift a due date.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo
import calendar

DateLike = Union[date, datetime, str]


def parse_date(value: DateLike) -> date:
    """
    Convert a date, datetime or ISO string to a calendar date

    Strings may carry a time part ("2024-03-05T00:00:00-04:00"); only the
    leading YYYY-MM-DD is used.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        return date.fromisoformat(value.split('T')[0].split(' ')[0])
    raise ValueError(f"Cannot interpret {value!r} as a date")


def optional_date(value: Optional[DateLike]) -> Optional[date]:
    """Like parse_date but passes None and empty strings through"""
    if value is None or value == '':
        return None
    return parse_date(value)


def days_between(later: DateLike, earlier: DateLike) -> int:
    """Whole days from earlier to later (negative if later is before earlier)"""
    return (parse_date(later) - parse_date(earlier)).days


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_period(current_date: date, frequency, periods: int = 1) -> date:
    """
    Calculate the due date `periods` payment periods after current_date

    frequency may be a PaymentFrequency member or its string value.
    """
    frequency = getattr(frequency, 'value', frequency)
    if frequency == "daily":
        return current_date + timedelta(days=periods)
    elif frequency == "weekly":
        return current_date + timedelta(days=7 * periods)
    elif frequency == "biweekly":
        return current_date + timedelta(days=14 * periods)
    elif frequency == "monthly":
        return add_months(current_date, periods)
    else:
        raise ValueError(f"Unsupported payment frequency: {frequency}")


def today(tz_name: str = "America/Santo_Domingo") -> date:
    """Current calendar date in the business timezone"""
    return datetime.now(ZoneInfo(tz_name)).date()
