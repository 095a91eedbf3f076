"""Date-time helpers for class logs."""

from datetime import date, time
from decimal import Decimal


def weekday_name(day: date) -> str:
    """Return the English weekday name, e.g. ``Sunday``."""

    return day.strftime("%A")


def compact_date(day: date) -> str:
    """Format a date as ``YYYYMMDD``."""

    return day.strftime("%Y%m%d")


def format_time_range(start: time, end: time) -> str:
    """Render a time range as ``HH:MM-HH:MM``."""

    return f"{start:%H:%M}-{end:%H:%M}"


def duration_hours(start: time, end: time) -> Decimal:
    """Return the length of a same-day session in hours, to two decimals."""

    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute
    if end_minutes <= start_minutes:
        raise ValueError("End time must be after start time.")
    return (Decimal(end_minutes - start_minutes) / Decimal(60)).quantize(Decimal("0.01"))
