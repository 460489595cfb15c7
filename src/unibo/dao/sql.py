"""
unibo.dao.sql

Relational backend (SQLAlchemy Core, synchronous engine).

Responsibilities:
- Describe the BO table (fixed columns + promoted columns) as a SQLAlchemy `Table`.
- Translate filters/sorts into SQL expressions on known columns only.
- Implement the DAO contract; classify unique violations as `DuplicatedEntryError`.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql.expression import ClauseElement, ColumnElement

from unibo.bo.universal import FIELD_ID, UboOptions, UniversalBo
from unibo.dao.base import UniversalDao
from unibo.dao.filters import (
    AndFilter,
    FieldFilter,
    Filter,
    FilterOp,
    OrFilter,
    RawFilter,
    Sort,
    SortField,
)
from unibo.dao.row_mappers import (
    SQL_COL_CHECKSUM,
    SQL_COL_DATA,
    SQL_COL_ID,
    SQL_COL_TAG_VERSION,
    SQL_COL_TIME_CREATED,
    SQL_COL_TIME_UPDATED,
    SqlRowMapper,
    to_utc,
)
from unibo.errors import DuplicatedEntryError, InvalidFilterError
from unibo.observability.context import operation_context
from unibo.observability.logging import get_logger

log = get_logger(__name__)

_UNIQUE_VIOLATION_SQLSTATE = "23505"


def build_sql_table(
    metadata: sa.MetaData,
    table_name: str,
    column_types: Mapping[str, Any] | None = None,
    extra_columns: Sequence[str] = (),
) -> sa.Table:
    """
    The BO table definition. `column_types` overrides the type of any column (fixed or
    promoted); promoted columns without a type are untyped pass-through columns.
    """

    types = dict(column_types or {})
    columns = [
        sa.Column(SQL_COL_ID, types.get(SQL_COL_ID, sa.String(64)), primary_key=True),
        sa.Column(SQL_COL_DATA, types.get(SQL_COL_DATA, sa.Text())),
        sa.Column(SQL_COL_TAG_VERSION, types.get(SQL_COL_TAG_VERSION, sa.BigInteger())),
        sa.Column(SQL_COL_CHECKSUM, types.get(SQL_COL_CHECKSUM, sa.String(32))),
        sa.Column(
            SQL_COL_TIME_CREATED, types.get(SQL_COL_TIME_CREATED, sa.DateTime(timezone=True))
        ),
        sa.Column(
            SQL_COL_TIME_UPDATED, types.get(SQL_COL_TIME_UPDATED, sa.DateTime(timezone=True))
        ),
    ]
    for name in extra_columns:
        columns.append(sa.Column(name, types.get(name, sa.types.NullType())))
    return sa.Table(table_name, metadata, *columns)


def is_duplicate_error(e: sa_exc.IntegrityError) -> bool:
    orig = e.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == _UNIQUE_VIOLATION_SQLSTATE:
        return True
    message = str(orig).lower()
    return "unique" in message or "duplicate" in message


class SqlDao(UniversalDao):
    """
    One table per BO type. Extras are persisted only through promoted columns
    (`extra_columns` maps column name -> extras field).
    """

    def __init__(
        self,
        engine: Engine,
        table_name: str,
        *,
        extra_columns: Mapping[str, str] | None = None,
        column_types: Mapping[str, Any] | None = None,
        tx_mode_on_write: bool = True,
        ubo_options: UboOptions | None = None,
        default_sort: Sort | None = None,
    ) -> None:
        super().__init__(ubo_options=ubo_options)
        self._engine = engine
        self._table_name = table_name
        self._tx_mode_on_write = tx_mode_on_write
        self._default_sort = list(default_sort or [SortField(FIELD_ID)])
        data_type = (column_types or {}).get(SQL_COL_DATA)
        self._mapper = SqlRowMapper(
            extra_columns, data_as_json=isinstance(data_type, sa.JSON)
        )
        self._table = build_sql_table(
            sa.MetaData(), table_name, column_types, list(self._mapper.extra_columns)
        )

    @property
    def table(self) -> sa.Table:
        return self._table

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def mapper(self) -> SqlRowMapper:
        return self._mapper

    @contextmanager
    def _write_connection(self) -> Iterator[Connection]:
        if self._tx_mode_on_write:
            with self._engine.begin() as conn:
                yield conn
        else:
            with self._engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                yield conn

    @contextmanager
    def _duplicates_as_error(self, id: str) -> Iterator[None]:
        try:
            yield
        except sa_exc.IntegrityError as e:
            if not is_duplicate_error(e):
                raise
            log.info("duplicated_entry", id=id, detail=str(e.orig))
            raise DuplicatedEntryError(self._table_name, id, str(e.orig)) from e

    # ------------------------------------------------------------------ translation

    def _column(self, field: str) -> sa.Column[Any]:
        name = self._mapper.to_column_name(self._table_name, field)
        if name is None and field in self._table.c:
            name = field
        if name is None:
            raise InvalidFilterError(
                f"field [{field}] has no column in table [{self._table_name}]"
            )
        return self._table.c[name]

    def _field_clause(self, f: FieldFilter) -> ColumnElement[bool]:
        col = self._column(f.field)
        value = to_utc(f.value) if isinstance(f.value, datetime) else f.value
        op = FilterOp(f.op)
        if value is None:
            if op == FilterOp.EQ:
                return col.is_(None)
            if op == FilterOp.NE:
                return col.is_not(None)
            raise InvalidFilterError(f"operator [{op}] cannot compare [{f.field}] with NULL")
        if op == FilterOp.EQ:
            return col == value
        if op == FilterOp.NE:
            return col != value
        if op == FilterOp.LT:
            return col < value
        if op == FilterOp.LTE:
            return col <= value
        if op == FilterOp.GT:
            return col > value
        return col >= value

    def to_where_clause(self, f: Filter | None) -> ColumnElement[bool] | None:
        if f is None:
            return None
        if isinstance(f, FieldFilter):
            return self._field_clause(f)
        if isinstance(f, AndFilter):
            return sa.and_(sa.true(), *[self.to_where_clause(c) for c in f.filters])
        if isinstance(f, OrFilter):
            return sa.or_(sa.false(), *[self.to_where_clause(c) for c in f.filters])
        if isinstance(f, RawFilter):
            if isinstance(f.value, Mapping):
                return sa.and_(
                    sa.true(), *[self._column(k) == v for k, v in f.value.items()]
                )
            if isinstance(f.value, ClauseElement):
                return f.value
            raise InvalidFilterError(
                f"unsupported raw filter for SQL: {type(f.value).__name__}"
            )
        raise InvalidFilterError(f"unsupported filter: {type(f).__name__}")

    def to_order_by(self, sort: Sort | None) -> list[ColumnElement[Any]]:
        result = []
        for s in sort or self._default_sort:
            col = self._column(s.field)
            result.append(col.desc() if s.descending else col.asc())
        return result

    def _select_by_id(self, id: str) -> sa.Select[Any]:
        return sa.select(self._table).where(self._table.c[SQL_COL_ID] == id)

    # ------------------------------------------------------------------ DAO contract

    def create(self, bo: UniversalBo) -> bool:
        bo = bo.clone()
        row = self._mapper.to_row(self._table_name, bo.to_generic())
        with operation_context(dao="sql", table=self._table_name, op="create"):
            with self._duplicates_as_error(bo.id), self._write_connection() as conn:
                conn.execute(sa.insert(self._table).values(**row))
            log.debug("dao_create", id=bo.id)
            return True

    def get(self, id: str) -> UniversalBo | None:
        with operation_context(dao="sql", table=self._table_name, op="get"):
            with self._engine.connect() as conn:
                row = conn.execute(self._select_by_id(id)).mappings().first()
            log.debug("dao_get", id=id, found=row is not None)
            return self._to_bo(self._mapper.to_bo(self._table_name, row))

    def get_n(
        self,
        from_offset: int = 0,
        max_rows: int = 0,
        filter: Filter | None = None,
        sort: Sort | None = None,
    ) -> list[UniversalBo]:
        with operation_context(dao="sql", table=self._table_name, op="get_n"):
            stmt = sa.select(self._table)
            where = self.to_where_clause(filter)
            if where is not None:
                stmt = stmt.where(where)
            stmt = stmt.order_by(*self.to_order_by(sort))
            if from_offset > 0:
                stmt = stmt.offset(from_offset)
            if max_rows > 0:
                stmt = stmt.limit(max_rows)
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
            log.debug("dao_get_n", offset=from_offset, limit=max_rows, rows=len(rows))
            result = []
            for row in rows:
                bo = self._to_bo(self._mapper.to_bo(self._table_name, row))
                if bo is not None:
                    result.append(bo)
            return result

    def update(self, bo: UniversalBo) -> bool:
        bo = bo.clone()
        row = self._mapper.to_row(self._table_name, bo.to_generic())
        values = {k: v for k, v in row.items() if k != SQL_COL_ID}
        with operation_context(dao="sql", table=self._table_name, op="update"):
            with self._duplicates_as_error(bo.id), self._write_connection() as conn:
                result = conn.execute(
                    sa.update(self._table)
                    .where(self._table.c[SQL_COL_ID] == bo.id)
                    .values(**values)
                )
            log.debug("dao_update", id=bo.id, updated=result.rowcount > 0)
            return result.rowcount > 0

    def save(self, bo: UniversalBo) -> tuple[bool, UniversalBo | None]:
        bo = bo.clone()
        row = self._mapper.to_row(self._table_name, bo.to_generic())
        values = {k: v for k, v in row.items() if k != SQL_COL_ID}
        with operation_context(dao="sql", table=self._table_name, op="save"):
            with self._duplicates_as_error(bo.id), self._write_connection() as conn:
                existing = conn.execute(self._select_by_id(bo.id)).mappings().first()
                result = conn.execute(
                    sa.update(self._table)
                    .where(self._table.c[SQL_COL_ID] == bo.id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    conn.execute(sa.insert(self._table).values(**row))
            previous = self._to_bo(self._mapper.to_bo(self._table_name, existing))
            log.debug("dao_save", id=bo.id, inserted=previous is None)
            return True, previous

    def delete(self, bo: UniversalBo) -> bool:
        with operation_context(dao="sql", table=self._table_name, op="delete"):
            with self._write_connection() as conn:
                result = conn.execute(
                    sa.delete(self._table).where(self._table.c[SQL_COL_ID] == bo.id)
                )
            log.debug("dao_delete", id=bo.id, deleted=result.rowcount > 0)
            return result.rowcount > 0


# --- Module Notes -----------------------------------------------------------
# The engine (and its pool) belongs to the caller; the DAO only opens short-lived
# connections from it and never disposes it.
