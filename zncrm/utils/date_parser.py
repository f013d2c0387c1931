"""Date and time helpers for appointment records.

Appointments are stored with a plain calendar ``date`` column (``YYYY-MM-DD``)
and a separate ``time`` column (``HH:MM`` or ``HH:MM:SS``). Both are
interpreted in local time.
"""

from datetime import date, datetime, timedelta
from typing import Any, Optional
from dateutil import parser as dateutil_parser
import re

from zncrm.utils.logger import log_debug


_RELATIVE_DAYS = {
    "today": 0,
    "vandaag": 0,
    "tomorrow": 1,
    "morgen": 1,
    "yesterday": -1,
    "gisteren": -1,
}


def today_local(now: Optional[datetime] = None) -> str:
    """Return the local calendar day as ``YYYY-MM-DD``."""
    return (now or datetime.now()).strftime("%Y-%m-%d")


def _digit_parts(value: Any, separator: str, count: int) -> Optional[list]:
    parts = [part.strip() for part in str(value).split(separator)]
    if len(parts) < count:
        return None
    if not all(re.fullmatch(r"\d+", part) for part in parts[:count]):
        return None
    return parts[:count]


def parse_appointment_datetime(date_value: Any, time_value: Any) -> Optional[datetime]:
    """Combine an appointment's date and time columns into a local datetime.

    Seconds in the time column are ignored. Returns None when either value is
    missing, a component is not a number, or the result is not a real
    calendar date-time.
    """
    if not date_value or not time_value:
        return None

    day_parts = _digit_parts(date_value, "-", 3)
    time_parts = _digit_parts(time_value, ":", 2)
    if day_parts is None or time_parts is None:
        return None

    try:
        year, month, day, hour, minute = (int(part) for part in day_parts + time_parts)
        return datetime(year, month, day, hour, minute)
    except (ValueError, OverflowError):
        # int() rejects huge digit strings, datetime() rejects values past C long
        return None


def format_time(value: Optional[str]) -> str:
    """Trim a stored time to ``HH:MM`` for display."""
    if not value:
        return ""
    parts = str(value).split(":")
    if len(parts) >= 2:
        return f"{parts[0]}:{parts[1]}"
    return str(value)


def parse_day(day_str: Optional[str], reference_date: Optional[datetime] = None) -> Optional[date]:
    """Parse a user supplied day into a date.

    Supports:
    - "today", "tomorrow", "yesterday" (and the Dutch vandaag/morgen/gisteren)
    - "+3" / "-1" day offsets
    - anything dateutil understands, day-first ("18-10-2026", "2026-10-18", "18 okt")

    Returns:
        Parsed date, or None if parsing fails
    """
    if not day_str:
        return None

    day_str = day_str.lower().strip()
    ref_date = reference_date or datetime.now()

    if day_str in _RELATIVE_DAYS:
        return (ref_date + timedelta(days=_RELATIVE_DAYS[day_str])).date()

    offset_match = re.fullmatch(r"([+-]\d+)", day_str)
    if offset_match:
        return (ref_date + timedelta(days=int(offset_match.group(1)))).date()

    # ISO dates are unambiguous; everything else is read day-first
    iso = re.fullmatch(r"\d{4}-\d{1,2}-\d{1,2}", day_str)
    try:
        parsed = dateutil_parser.parse(day_str, default=ref_date, dayfirst=not iso)
        log_debug(f"Parsed day '{day_str}' as {parsed.date()}")
        return parsed.date()
    except (ValueError, TypeError, OverflowError) as e:
        log_debug(f"Failed to parse day '{day_str}': {e}")
        return None


def parse_clock(time_str: Optional[str]) -> Optional[str]:
    """Normalise a user supplied clock time to ``HH:MM``.

    Accepts "9:30", "09.30", "930", "9 PM" and similar.
    """
    if not time_str:
        return None

    time_str = time_str.strip().lower().replace(".", ":")
    if re.fullmatch(r"\d{3,4}", time_str):
        time_str = f"{time_str[:-2]}:{time_str[-2:]}"

    try:
        parsed = dateutil_parser.parse(time_str, default=datetime(2000, 1, 1))
    except (ValueError, TypeError, OverflowError) as e:
        log_debug(f"Failed to parse time '{time_str}': {e}")
        return None
    return parsed.strftime("%H:%M")
