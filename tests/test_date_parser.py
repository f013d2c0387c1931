from __future__ import annotations

from datetime import date, datetime

from zncrm.utils.date_parser import (
    format_time,
    parse_appointment_datetime,
    parse_clock,
    parse_day,
    today_local,
)


REF = datetime(2026, 10, 18, 9, 0)


def test_today_local_uses_local_calendar_day() -> None:
    assert today_local(datetime(2026, 10, 18, 23, 59)) == "2026-10-18"


def test_parse_appointment_datetime_ignores_seconds() -> None:
    assert parse_appointment_datetime("2026-10-18", "14:30:59") == datetime(2026, 10, 18, 14, 30)


def test_parse_appointment_datetime_rejects_bad_values() -> None:
    assert parse_appointment_datetime(None, "10:00") is None
    assert parse_appointment_datetime("2026-10-18", "") is None
    assert parse_appointment_datetime("2026-10-18", "10") is None
    assert parse_appointment_datetime("2026-xx-18", "10:00") is None
    assert parse_appointment_datetime("2026-02-30", "10:00") is None
    assert parse_appointment_datetime("2026-10-18", "25:00") is None


def test_parse_appointment_datetime_rejects_oversized_numbers() -> None:
    assert parse_appointment_datetime("2026-10-18", "99999999999999999999:00") is None
    assert parse_appointment_datetime("1" * 5000 + "-10-18", "09:00") is None


def test_format_time() -> None:
    assert format_time("09:05:00") == "09:05"
    assert format_time(None) == ""
    assert format_time("9") == "9"


def test_parse_day_keywords_and_offsets() -> None:
    assert parse_day("today", REF) == date(2026, 10, 18)
    assert parse_day("morgen", REF) == date(2026, 10, 19)
    assert parse_day("+3", REF) == date(2026, 10, 21)
    assert parse_day("-1", REF) == date(2026, 10, 17)


def test_parse_day_formats() -> None:
    assert parse_day("2026-11-02", REF) == date(2026, 11, 2)
    assert parse_day("02-11-2026", REF) == date(2026, 11, 2)
    assert parse_day("not a day at all", REF) is None


def test_parse_clock() -> None:
    assert parse_clock("9:30") == "09:30"
    assert parse_clock("09.30") == "09:30"
    assert parse_clock("930") == "09:30"
    assert parse_clock("9 PM") == "21:00"
    assert parse_clock("") is None
