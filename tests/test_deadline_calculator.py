import time as time_module
from datetime import datetime, time, timedelta, timezone

import pytest

from deadline_calculator import (
    calculate_deadline,
    format_deadline,
    is_order_late,
    parse_creation_date,
)

END_OF_DAY = time(23, 59, 59, 999000)


@pytest.mark.parametrize("created, expected", [
    ("2024-01-15T10:00:00", datetime(2024, 1, 15, 23, 59, 59, 999000)),
    ("2024-01-15 11:59", datetime(2024, 1, 15, 23, 59, 59, 999000)),
    ("2024-01-15T12:00:00", datetime(2024, 1, 16, 23, 59, 59, 999000)),
    ("2024-01-15T14:00:00", datetime(2024, 1, 16, 23, 59, 59, 999000)),
    ("2024-01-31T18:30:00", datetime(2024, 2, 1, 23, 59, 59, 999000)),
    ("2024-12-31T23:00:00", datetime(2025, 1, 1, 23, 59, 59, 999000)),
])
def test_calculate_deadline(created, expected):
    assert calculate_deadline(created) == expected


def test_calculate_deadline_accepts_datetime():
    assert calculate_deadline(datetime(2024, 3, 1, 9, 15)) == datetime(2024, 3, 1, 23, 59, 59, 999000)


@pytest.mark.parametrize("value", [None, "", "   ", "not a date", "15/01/2024"])
def test_calculate_deadline_without_usable_date(value):
    assert calculate_deadline(value) is None


def test_utc_suffix_is_converted_to_local_time():
    parsed = parse_creation_date("2024-01-15T07:00:00Z")
    assert parsed is not None
    assert parsed.tzinfo is not None
    assert parsed == datetime(2024, 1, 15, 7, tzinfo=timezone.utc)

    deadline = calculate_deadline("2024-01-15T07:00:00Z")
    assert deadline.time() == END_OF_DAY
    expected_day = parsed.date() + timedelta(days=1 if parsed.hour >= 12 else 0)
    assert deadline.date() == expected_day


def test_parse_creation_date_naive_is_unchanged():
    assert parse_creation_date(" 2024-01-15 14:00 ") == datetime(2024, 1, 15, 14, 0)


def test_parse_creation_date_short_fraction():
    assert parse_creation_date("2024-01-15T07:00:00.12Z") == datetime(
        2024, 1, 15, 7, 0, 0, 120000, tzinfo=timezone.utc
    )


@pytest.fixture
def new_york_tz(monkeypatch):
    """Run with a local zone that switches to DST on 2024-03-10."""
    if not hasattr(time_module, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "America/New_York")
    time_module.tzset()
    yield
    monkeypatch.undo()
    time_module.tzset()


def test_next_day_deadline_across_dst_change(new_york_tz):
    deadline = calculate_deadline("2024-03-09T14:00:00-05:00")

    assert deadline.replace(tzinfo=None) == datetime(2024, 3, 10, 23, 59, 59, 999000)
    assert deadline.utcoffset() == timedelta(hours=-4)


def test_same_day_deadline_keeps_local_offset(new_york_tz):
    deadline = calculate_deadline("2024-03-09T09:00:00Z")

    assert deadline.replace(tzinfo=None) == datetime(2024, 3, 9, 23, 59, 59, 999000)
    assert deadline.utcoffset() == timedelta(hours=-5)


# ============================================================================
# Lateness
# ============================================================================

DEADLINE = datetime(2024, 1, 15, 23, 59, 59, 999000)


def test_pending_order_past_deadline_is_late():
    assert is_order_late(DEADLINE, 'pending', now=datetime(2024, 1, 16, 8, 0))


def test_pending_order_before_deadline_is_not_late():
    assert not is_order_late(DEADLINE, 'pending', now=datetime(2024, 1, 15, 20, 0))


def test_scanned_order_is_never_late():
    assert not is_order_late(DEADLINE, 'scanned', now=datetime(2024, 2, 1))


def test_order_without_deadline_is_never_late():
    assert not is_order_late(None, 'pending', now=datetime(2030, 1, 1))


def test_mixed_naive_and_aware_times():
    assert is_order_late(DEADLINE, 'pending', now=datetime(2024, 1, 20, tzinfo=timezone.utc))
    assert not is_order_late(DEADLINE, 'pending', now=datetime(2024, 1, 10, tzinfo=timezone.utc))


def test_format_deadline():
    assert format_deadline(DEADLINE) == "15 Jan, 23:59"
    assert format_deadline(None) == "-"
