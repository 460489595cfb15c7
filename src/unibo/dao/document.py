"""
unibo.dao.document

Document backend (MongoDB via pymongo).

Responsibilities:
- Store one document per BO, keyed by `_id`; extras are top-level document properties.
- Translate filters into MongoDB query documents and sorts into cursor sort specs.
- Map `DuplicateKeyError` (primary key or unique index) to `DuplicatedEntryError`.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import pymongo
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

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
from unibo.dao.row_mappers import DOC_COL_ID, DocumentRowMapper, to_utc
from unibo.errors import DuplicatedEntryError, InvalidFilterError
from unibo.observability.context import operation_context
from unibo.observability.logging import get_logger

log = get_logger(__name__)

_MONGO_OPS: dict[FilterOp, str] = {
    FilterOp.EQ: "$eq",
    FilterOp.NE: "$ne",
    FilterOp.LT: "$lt",
    FilterOp.LTE: "$lte",
    FilterOp.GT: "$gt",
    FilterOp.GTE: "$gte",
}

# Matches no document; used for an empty OR.
_MATCH_NOTHING: dict[str, Any] = {DOC_COL_ID: {"$in": []}}


class DocumentDao(UniversalDao):
    dao_name = "document"

    def __init__(
        self,
        collection: Collection,
        *,
        tx_mode_on_write: bool = False,
        ubo_options: UboOptions | None = None,
        default_sort: Sort | None = None,
        mapper: DocumentRowMapper | None = None,
    ) -> None:
        super().__init__(ubo_options=ubo_options)
        self._collection = collection
        self._tx_mode_on_write = tx_mode_on_write
        self._default_sort = list(default_sort or [SortField(FIELD_ID)])
        self._mapper = mapper or DocumentRowMapper()

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def table_name(self) -> str:
        return self._collection.name

    # ------------------------------------------------------------------ hooks

    def _write_filter(self, bo: UniversalBo) -> dict[str, Any]:
        return {DOC_COL_ID: bo.id}

    def _prepare_bo(self, bo: UniversalBo) -> None:
        """Adjust the (cloned) BO before it is mapped to a row; its checksum covers the result."""

    def _read_filter(self, query: Mapping[str, Any]) -> dict[str, Any]:
        return dict(query)

    def _context(self, op: str):
        return operation_context(dao=self.dao_name, table=self.table_name, op=op)

    @contextmanager
    def _duplicates_as_error(self, id: str) -> Iterator[None]:
        try:
            yield
        except DuplicateKeyError as e:
            log.info("duplicated_entry", id=id, detail=str(e))
            raise DuplicatedEntryError(self.table_name, id, str(e)) from e

    # ------------------------------------------------------------------ translation

    def _column(self, field: str) -> str:
        return self._mapper.to_column_name(self.table_name, field) or field

    def to_query(self, f: Filter | None) -> dict[str, Any]:
        if f is None:
            return {}
        if isinstance(f, FieldFilter):
            value = to_utc(f.value) if isinstance(f.value, datetime) else f.value
            return {self._column(f.field): {_MONGO_OPS[FilterOp(f.op)]: value}}
        if isinstance(f, AndFilter):
            parts = [self.to_query(c) for c in f.filters]
            return {"$and": parts} if parts else {}
        if isinstance(f, OrFilter):
            parts = [self.to_query(c) for c in f.filters]
            return {"$or": parts} if parts else dict(_MATCH_NOTHING)
        if isinstance(f, RawFilter):
            if isinstance(f.value, Mapping):
                return dict(f.value)
            raise InvalidFilterError(
                f"unsupported raw filter for MongoDB: {type(f.value).__name__}"
            )
        raise InvalidFilterError(f"unsupported filter: {type(f).__name__}")

    def to_sort(self, sort: Sort | None) -> list[tuple[str, int]]:
        return [
            (self._column(s.field), pymongo.DESCENDING if s.descending else pymongo.ASCENDING)
            for s in (sort or self._default_sort)
        ]

    def _to_row(self, bo: UniversalBo) -> dict[str, Any]:
        self._prepare_bo(bo)
        return self._mapper.to_row(self.table_name, bo.to_generic())

    def _row_to_bo(self, row: Mapping[str, Any] | None) -> UniversalBo | None:
        return self._to_bo(self._mapper.to_bo(self.table_name, row))

    # ------------------------------------------------------------------ DAO contract

    def create(self, bo: UniversalBo) -> bool:
        bo = bo.clone()
        with self._context("create"):
            row = self._to_row(bo)
            with self._duplicates_as_error(bo.id):
                self._collection.insert_one(row)
            log.debug("dao_create", id=bo.id)
            return True

    def get(self, id: str) -> UniversalBo | None:
        with self._context("get"):
            row = self._collection.find_one(self._read_filter({DOC_COL_ID: id}))
            log.debug("dao_get", id=id, found=row is not None)
            return self._row_to_bo(row)

    def get_n(
        self,
        from_offset: int = 0,
        max_rows: int = 0,
        filter: Filter | None = None,
        sort: Sort | None = None,
    ) -> list[UniversalBo]:
        with self._context("get_n"):
            cursor = self._collection.find(self._read_filter(self.to_query(filter)))
            cursor = cursor.sort(self.to_sort(sort))
            if from_offset > 0:
                cursor = cursor.skip(from_offset)
            if max_rows > 0:
                cursor = cursor.limit(max_rows)
            result = []
            for row in cursor:
                bo = self._row_to_bo(row)
                if bo is not None:
                    result.append(bo)
            log.debug("dao_get_n", offset=from_offset, limit=max_rows, rows=len(result))
            return result

    def update(self, bo: UniversalBo) -> bool:
        bo = bo.clone()
        with self._context("update"):
            row = self._to_row(bo)
            with self._duplicates_as_error(bo.id):
                result = self._collection.replace_one(self._write_filter(bo), row)
            log.debug("dao_update", id=bo.id, updated=result.matched_count > 0)
            return result.matched_count > 0

    def _save(
        self, bo: UniversalBo, row: dict[str, Any], session: ClientSession | None = None
    ) -> Mapping[str, Any] | None:
        query = self._write_filter(bo)
        existing = self._collection.find_one(query, session=session)
        self._collection.replace_one(query, row, upsert=True, session=session)
        return existing

    def save(self, bo: UniversalBo) -> tuple[bool, UniversalBo | None]:
        bo = bo.clone()
        with self._context("save"):
            row = self._to_row(bo)
            with self._duplicates_as_error(bo.id):
                if self._tx_mode_on_write:
                    with self._collection.database.client.start_session() as session:
                        existing = session.with_transaction(lambda s: self._save(bo, row, s))
                else:
                    existing = self._save(bo, row)
            previous = self._row_to_bo(existing)
            log.debug("dao_save", id=bo.id, inserted=previous is None)
            return True, previous

    def delete(self, bo: UniversalBo) -> bool:
        with self._context("delete"):
            result = self._collection.delete_one(self._write_filter(bo))
            log.debug("dao_delete", id=bo.id, deleted=result.deleted_count > 0)
            return result.deleted_count > 0


# --- Module Notes -----------------------------------------------------------
# Uniqueness beyond `_id` comes from unique indexes created by
# `unibo.db.init_db.init_mongo_collection`; the DAO only classifies their violations.
