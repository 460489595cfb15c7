"""
tests.test_timestamps

Rounding, formatting and parsing of BO timestamps.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from unibo.bo.timestamps import (
    TimestampRounding,
    ensure_aware,
    format_time,
    normalize_for_storage,
    parse_time,
    round_timestamp,
)

UTC = timezone.utc


@pytest.mark.parametrize(
    ("rounding", "micro", "expected"),
    [
        (TimestampRounding.SECOND, 499_999, datetime(2024, 5, 6, 7, 8, 9, tzinfo=UTC)),
        (TimestampRounding.SECOND, 500_000, datetime(2024, 5, 6, 7, 8, 10, tzinfo=UTC)),
        (TimestampRounding.MILLISECOND, 123_499, datetime(2024, 5, 6, 7, 8, 9, 123_000, tzinfo=UTC)),
        (TimestampRounding.MILLISECOND, 123_500, datetime(2024, 5, 6, 7, 8, 9, 124_000, tzinfo=UTC)),
        (TimestampRounding.MICROSECOND, 123_456, datetime(2024, 5, 6, 7, 8, 9, 123_456, tzinfo=UTC)),
        (TimestampRounding.NONE, 123_456, datetime(2024, 5, 6, 7, 8, 9, 123_456, tzinfo=UTC)),
    ],
)
def test_round_timestamp(rounding, micro, expected) -> None:
    value = datetime(2024, 5, 6, 7, 8, 9, micro, tzinfo=UTC)
    assert round_timestamp(value, rounding) == expected


def test_round_second_carries_into_next_minute() -> None:
    value = datetime(2024, 12, 31, 23, 59, 59, 900_000, tzinfo=UTC)
    assert round_timestamp(value, TimestampRounding.SECOND) == datetime(2025, 1, 1, tzinfo=UTC)


def test_naive_datetimes_are_utc() -> None:
    naive = datetime(2024, 1, 1, 12, 0, 0)
    assert ensure_aware(naive).tzinfo == UTC
    assert round_timestamp(naive, TimestampRounding.SECOND).tzinfo == UTC


def test_format_time_rfc3339() -> None:
    assert format_time(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == "2024-01-02T03:04:05Z"
    assert (
        format_time(datetime(2024, 1, 2, 3, 4, 5, 120_000, tzinfo=UTC))
        == "2024-01-02T03:04:05.12Z"
    )
    plus7 = timezone(timedelta(hours=7))
    assert format_time(datetime(2024, 1, 2, 3, 4, 5, tzinfo=plus7)) == "2024-01-02T03:04:05+07:00"


def test_parse_time_rfc3339() -> None:
    assert parse_time("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    # Nanosecond digits are truncated to microseconds.
    assert parse_time("2024-01-02T03:04:05.123456789Z").microsecond == 123_456
    parsed = parse_time("2024-01-02T03:04:05-05:30")
    assert parsed.utcoffset() == -timedelta(hours=5, minutes=30)
    assert parse_time("2024-01-02 03:04:05.5+00:00").tzinfo is UTC
    assert parse_time("2024-01-02T03:04:05").tzinfo is UTC
    with pytest.raises(ValueError):
        parse_time("yesterday")


def test_custom_layout() -> None:
    value = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert format_time(value, "%Y/%m/%d %H:%M:%S") == "2024/01/02 03:04:05"
    assert parse_time("2024/01/02 03:04:05", "%Y/%m/%d %H:%M:%S") == value


def test_normalize_for_storage() -> None:
    value = datetime(2024, 1, 2, 3, 4, 5, 600_000, tzinfo=UTC)
    assert normalize_for_storage(value, TimestampRounding.SECOND) == "2024-01-02T03:04:06Z"
    assert (
        normalize_for_storage(value, TimestampRounding.MILLISECOND) == "2024-01-02T03:04:05.6Z"
    )
