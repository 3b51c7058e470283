"""
Date rules for site operations.
Handles site-local "today", working weeks and calendar arithmetic.
"""
import calendar
import math
from datetime import date, datetime, timedelta
from typing import Optional

import pytz

from ..config import settings


def local_now(tz_name: Optional[str] = None) -> datetime:
    """Current time in the site timezone (timezone-aware)."""
    return datetime.now(pytz.timezone(tz_name or settings.tz_default))


def local_today(tz_name: Optional[str] = None) -> date:
    return local_now(tz_name).date()


def week_start(week_ending: date) -> date:
    return week_ending - timedelta(days=6)


def days_until(target: Optional[date], today: date) -> Optional[int]:
    """
    Whole days from ``today`` until ``target``.

    Negative once the date has passed; None when there is no date.
    """
    if target is None:
        return None
    return (target - today).days


def weeks_started(start: date, end: date) -> int:
    """Whole or part weeks elapsed between two dates, ceil(days / 7)."""
    days = (end - start).days
    if days <= 0:
        return 0
    return math.ceil(days / 7)


def add_months(day: date, months: int) -> date:
    """
    Shift ``day`` by whole months, clamping to the last day of short months.

    Args:
        day: Starting date
        months: Months to add (may be negative)

    Returns:
        Shifted date
    """
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def format_uk_date(day: date) -> str:
    """dd/mm/yyyy"""
    return day.strftime("%d/%m/%Y")
