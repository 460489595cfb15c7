"""
unibo.bo.timestamps

Timestamp rounding, formatting and parsing.

Responsibilities:
- Define the rounding settings a BO applies before persistence or checksumming.
- Render/parse the canonical layout (RFC3339 with fractional seconds).
- Provide the single storage normalization entry point: `normalize_for_storage`.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone

from dateutil.parser import isoparse

# Canonical layout marker; any other layout is a `strftime`/`strptime` format string.
RFC3339 = "rfc3339"


class TimestampRounding(enum.StrEnum):
    NONE = "none"
    NANOSECOND = "nanosecond"
    MICROSECOND = "microsecond"
    MILLISECOND = "millisecond"
    SECOND = "second"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    # Naive datetimes coming from drivers (SQLite, pymongo) are UTC by convention.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def round_timestamp(value: datetime, rounding: TimestampRounding) -> datetime:
    """Round half-up to the unit named by `rounding`.

    NONE, NANOSECOND and MICROSECOND are identities: a Python datetime already has
    microsecond resolution.
    """

    value = ensure_aware(value)
    if rounding == TimestampRounding.SECOND:
        carry = timedelta(seconds=1) if value.microsecond >= 500_000 else timedelta(0)
        return value.replace(microsecond=0) + carry
    if rounding == TimestampRounding.MILLISECOND:
        remainder = value.microsecond % 1000
        carry = timedelta(milliseconds=1) if remainder >= 500 else timedelta(0)
        return value.replace(microsecond=value.microsecond - remainder) + carry
    return value


def format_time(value: datetime, layout: str = RFC3339) -> str:
    value = ensure_aware(value)
    if layout != RFC3339:
        return value.strftime(layout)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    hours, minutes = divmod(abs(total) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def parse_time(value: str, layout: str = RFC3339) -> datetime:
    """Parse `value`; raises ValueError when it does not match `layout`."""

    if layout != RFC3339:
        return ensure_aware(datetime.strptime(value, layout))
    # isoparse truncates sub-microsecond digits.
    parsed = ensure_aware(isoparse(value.strip()))
    if parsed.utcoffset() == timedelta(0):
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_for_storage(
    value: datetime, rounding: TimestampRounding, layout: str = RFC3339
) -> str:
    """format(round(value, rounding), layout): the one storage-boundary conversion."""

    return format_time(round_timestamp(value, rounding), layout)


# --- Module Notes -----------------------------------------------------------
# Backends storing native instants (SQL, MongoDB) receive rounded datetimes; backends
# storing text (DynamoDB, JSON data trees) receive `normalize_for_storage` output.
