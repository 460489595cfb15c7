"""
unibo.dao.row_mappers

Translation between a BO's generic attribute bag and backend rows.

Responsibilities:
- Name the backend column for each logical field (`id` is `zid` in SQL, `_id` in MongoDB).
- Carry `data` as JSON text (SQL) or as a decoded tree (document, wide-column).
- Normalize driver-returned values on read: naive datetimes are UTC, DynamoDB numbers
  come back as `Decimal`.
"""

from __future__ import annotations

import abc
import json
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Final

from unibo.bo.timestamps import RFC3339, ensure_aware, format_time
from unibo.bo.universal import (
    FIELD_CHECKSUM,
    FIELD_DATA,
    FIELD_ID,
    FIELD_TAG_VERSION,
    FIELD_TIME_CREATED,
    FIELD_TIME_UPDATED,
    RESERVED_FIELDS,
)
from unibo.errors import MappingError
from unibo.utils.hashing import canonical_json

SQL_COL_ID: Final = "zid"
SQL_COL_DATA: Final = "zdata"
SQL_COL_TAG_VERSION: Final = "ztversion"
SQL_COL_CHECKSUM: Final = "zchecksum"
SQL_COL_TIME_CREATED: Final = "ztcreated"
SQL_COL_TIME_UPDATED: Final = "ztupdated"

# `ztversion` is a signed BIGINT on every supported dialect.
SQL_MAX_TAG_VERSION: Final = 2**63 - 1

SQL_STANDARD_COLUMNS: Final[dict[str, str]] = {
    FIELD_ID: SQL_COL_ID,
    FIELD_DATA: SQL_COL_DATA,
    FIELD_TAG_VERSION: SQL_COL_TAG_VERSION,
    FIELD_CHECKSUM: SQL_COL_CHECKSUM,
    FIELD_TIME_CREATED: SQL_COL_TIME_CREATED,
    FIELD_TIME_UPDATED: SQL_COL_TIME_UPDATED,
}

DOC_COL_ID: Final = "_id"

# Properties added by the partitioned store itself (Cosmos DB).
PARTITIONED_SYSTEM_FIELDS: Final[frozenset[str]] = frozenset(
    {"_attachments", "_etag", "_rid", "_self", "_ts"}
)


def to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def _decode_data(value: Any) -> Any:
    if value is None or not isinstance(value, (str, bytes, bytearray)):
        return value
    text = value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else value
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError as e:
        raise MappingError(f"[{FIELD_DATA}] is not valid JSON: {e}") from e


def _encode_data(value: Any) -> str:
    if isinstance(value, str):
        return value
    return canonical_json(value)


def _require_id(bag: Mapping[str, Any]) -> Any:
    value = bag.get(FIELD_ID)
    if value is None:
        raise MappingError(f"missing required field [{FIELD_ID}]")
    return value


class RowMapper(abc.ABC):
    """Maps generic bags (see `UniversalBo.to_generic`) to backend rows and back."""

    @abc.abstractmethod
    def to_row(self, table: str, bag: Mapping[str, Any]) -> dict[str, Any]: ...

    @abc.abstractmethod
    def to_bo(self, table: str, row: Mapping[str, Any] | None) -> dict[str, Any] | None: ...

    @abc.abstractmethod
    def columns(self, table: str) -> list[str]: ...

    @abc.abstractmethod
    def to_column_name(self, table: str, field: str) -> str | None:
        """Backend column for a logical field; None when the field is not stored as a column."""

    @abc.abstractmethod
    def to_field_name(self, table: str, column: str) -> str | None: ...


class SqlRowMapper(RowMapper):
    """
    Fixed columns plus promoted columns (`{column: extras field}`).

    Extras without a promoted column are not persisted by the SQL backend.
    """

    def __init__(
        self, extra_columns: Mapping[str, str] | None = None, *, data_as_json: bool = False
    ) -> None:
        self._extra_columns = dict(extra_columns or {})
        self._data_as_json = data_as_json
        self._field_to_col = {**SQL_STANDARD_COLUMNS}
        for col, field in self._extra_columns.items():
            if field in RESERVED_FIELDS:
                raise MappingError(f"promoted column [{col}] cannot map reserved field [{field}]")
            self._field_to_col[field] = col
        self._col_to_field = {c: f for f, c in self._field_to_col.items()}

    @property
    def extra_columns(self) -> dict[str, str]:
        return dict(self._extra_columns)

    def to_row(self, table: str, bag: Mapping[str, Any]) -> dict[str, Any]:
        data = bag.get(FIELD_DATA)
        tag_version = bag.get(FIELD_TAG_VERSION)
        if tag_version is not None and tag_version > SQL_MAX_TAG_VERSION:
            raise MappingError(
                f"tag version [{tag_version}] exceeds the SQL column range for [{table}]"
            )
        row: dict[str, Any] = {
            SQL_COL_ID: _require_id(bag),
            SQL_COL_DATA: _decode_data(data) if self._data_as_json else data,
            SQL_COL_TAG_VERSION: tag_version,
            SQL_COL_CHECKSUM: bag.get(FIELD_CHECKSUM),
            SQL_COL_TIME_CREATED: to_utc(bag[FIELD_TIME_CREATED]),
            SQL_COL_TIME_UPDATED: to_utc(bag[FIELD_TIME_UPDATED]),
        }
        for col, field in self._extra_columns.items():
            value = bag.get(field)
            row[col] = to_utc(value) if isinstance(value, datetime) else value
        return row

    def to_bo(self, table: str, row: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        bag: dict[str, Any] = {}
        for col, field in self._extra_columns.items():
            value = row.get(col)
            # NULL promoted columns mean "extra not set".
            if value is not None:
                bag[field] = ensure_aware(value) if isinstance(value, datetime) else value
        data = row.get(SQL_COL_DATA)
        bag.update(
            {
                FIELD_ID: row.get(SQL_COL_ID),
                FIELD_DATA: None if data is None else _encode_data(data),
                FIELD_TAG_VERSION: row.get(SQL_COL_TAG_VERSION),
                FIELD_CHECKSUM: row.get(SQL_COL_CHECKSUM),
                FIELD_TIME_CREATED: row.get(SQL_COL_TIME_CREATED),
                FIELD_TIME_UPDATED: row.get(SQL_COL_TIME_UPDATED),
            }
        )
        return bag

    def columns(self, table: str) -> list[str]:
        return [*SQL_STANDARD_COLUMNS.values(), *self._extra_columns]

    def to_column_name(self, table: str, field: str) -> str | None:
        return self._field_to_col.get(field)

    def to_field_name(self, table: str, column: str) -> str | None:
        return self._col_to_field.get(column)


class DocumentRowMapper(RowMapper):
    """Top-level fields and extras become document properties; `id` is stored as `_id`."""

    def to_row(self, table: str, bag: Mapping[str, Any]) -> dict[str, Any]:
        row = {k: v for k, v in bag.items() if k not in RESERVED_FIELDS and k != DOC_COL_ID}
        row.update(
            {
                DOC_COL_ID: _require_id(bag),
                FIELD_DATA: _decode_data(bag.get(FIELD_DATA)),
                FIELD_TAG_VERSION: bag.get(FIELD_TAG_VERSION),
                FIELD_CHECKSUM: bag.get(FIELD_CHECKSUM),
                FIELD_TIME_CREATED: to_utc(bag[FIELD_TIME_CREATED]),
                FIELD_TIME_UPDATED: to_utc(bag[FIELD_TIME_UPDATED]),
            }
        )
        return row

    def _skip(self, column: str) -> bool:
        return False

    def to_bo(self, table: str, row: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        bag: dict[str, Any] = {}
        for key, value in row.items():
            if key == DOC_COL_ID or self._skip(key):
                continue
            bag[key] = ensure_aware(value) if isinstance(value, datetime) else value
        bag[FIELD_ID] = row.get(DOC_COL_ID)
        data = row.get(FIELD_DATA)
        bag[FIELD_DATA] = None if data is None else _encode_data(data)
        return bag

    def columns(self, table: str) -> list[str]:
        return [
            DOC_COL_ID,
            FIELD_DATA,
            FIELD_TAG_VERSION,
            FIELD_CHECKSUM,
            FIELD_TIME_CREATED,
            FIELD_TIME_UPDATED,
        ]

    def to_column_name(self, table: str, field: str) -> str | None:
        return DOC_COL_ID if field == FIELD_ID else field

    def to_field_name(self, table: str, column: str) -> str | None:
        return FIELD_ID if column == DOC_COL_ID else column


class PartitionedDocumentRowMapper(DocumentRowMapper):
    def _skip(self, column: str) -> bool:
        return column in PARTITIONED_SYSTEM_FIELDS


def to_dynamodb_value(value: Any, layout: str = RFC3339) -> Any:
    """Make a Python value acceptable to boto3's TypeSerializer."""

    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, datetime):
        return format_time(value, layout)
    if isinstance(value, Mapping):
        return {str(k): to_dynamodb_value(v, layout) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamodb_value(v, layout) for v in value]
    return value


def from_dynamodb_value(value: Any) -> Any:
    """Inverse of `to_dynamodb_value` for numbers and containers."""

    if isinstance(value, Decimal):
        if value == value.to_integral_value() and value.as_tuple().exponent >= 0:
            return int(value)
        return float(value)
    if isinstance(value, Mapping):
        return {k: from_dynamodb_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamodb_value(v) for v in value]
    return value


class WideColumnRowMapper(RowMapper):
    """
    Items keyed by (`pk_prefix`?, `id`); `data` stored as a map, timestamps as layout strings.

    The partition-key attribute is an ordinary extras field named `pk_prefix`.
    """

    def __init__(self, pk_prefix: str | None = None, *, time_layout: str = RFC3339) -> None:
        self._pk_prefix = pk_prefix
        self._layout = time_layout

    @property
    def key_columns(self) -> list[str]:
        if self._pk_prefix:
            return [self._pk_prefix, FIELD_ID]
        return [FIELD_ID]

    def to_row(self, table: str, bag: Mapping[str, Any]) -> dict[str, Any]:
        row = {
            k: to_dynamodb_value(v, self._layout)
            for k, v in bag.items()
            if k not in RESERVED_FIELDS
        }
        row.update(
            {
                FIELD_ID: _require_id(bag),
                FIELD_DATA: to_dynamodb_value(_decode_data(bag.get(FIELD_DATA)), self._layout),
                FIELD_TAG_VERSION: bag.get(FIELD_TAG_VERSION),
                FIELD_CHECKSUM: bag.get(FIELD_CHECKSUM),
                FIELD_TIME_CREATED: format_time(bag[FIELD_TIME_CREATED], self._layout),
                FIELD_TIME_UPDATED: format_time(bag[FIELD_TIME_UPDATED], self._layout),
            }
        )
        return row

    def to_bo(self, table: str, row: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        bag = {k: from_dynamodb_value(v) for k, v in row.items()}
        data = bag.get(FIELD_DATA)
        bag[FIELD_DATA] = None if data is None else _encode_data(data)
        return bag

    def columns(self, table: str) -> list[str]:
        return [
            *self.key_columns,
            FIELD_DATA,
            FIELD_TAG_VERSION,
            FIELD_CHECKSUM,
            FIELD_TIME_CREATED,
            FIELD_TIME_UPDATED,
        ]

    def to_column_name(self, table: str, field: str) -> str | None:
        return field

    def to_field_name(self, table: str, column: str) -> str | None:
        return column


# --- Module Notes -----------------------------------------------------------
# `to_bo` returns a generic bag, not a BO: `UniversalBo.from_generic` re-syncs it with
# the DAO's BO options.
