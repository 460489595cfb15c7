"""
unibo.dao.wide_column

Wide-column backend (AWS DynamoDB, boto3 low-level client).

Responsibilities:
- Key items by (`pk_prefix`?, `id`) and fill the partition value in from extras or config.
- Enforce unique groups through the UIDX side table in one `transact_write_items` call.
- Read pages by scanning, or by querying a mapped secondary index when a sort is requested.
- Translate filters into `FilterExpression`s with placeholder names and values, moving
  conditions on a queried index sort key into the `KeyConditionExpression`.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from typing import Any

from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

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
)
from unibo.dao.row_mappers import WideColumnRowMapper, to_dynamodb_value
from unibo.dao.uidx import (
    DEFAULT_HASH_FUNCTIONS,
    UidxHasher,
    exists_condition,
    failed_conditions,
    not_exists_condition,
    serialize_item,
    serialize_value,
    tx_delete,
    tx_delete_uidx,
    tx_put,
    tx_put_uidx,
)
from unibo.dao.uidx import uidx_table_name as default_uidx_table_name
from unibo.errors import ConfigurationError, DuplicatedEntryError, InvalidFilterError
from unibo.observability.context import operation_context
from unibo.observability.logging import get_logger

log = get_logger(__name__)

_DYNAMODB_OPS: dict[FilterOp, str] = {
    FilterOp.EQ: "=",
    FilterOp.NE: "<>",
    FilterOp.LT: "<",
    FilterOp.LTE: "<=",
    FilterOp.GT: ">",
    FilterOp.GTE: ">=",
}


class _ExpressionBuilder:
    """Accumulates `#n*` / `:v*` placeholders while rendering a filter expression."""

    def __init__(self, layout: str) -> None:
        self._layout = layout
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}

    def name(self, attr: str) -> str:
        for placeholder, existing in self.names.items():
            if existing == attr:
                return placeholder
        placeholder = f"#n{len(self.names)}"
        self.names[placeholder] = attr
        return placeholder

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = serialize_value(to_dynamodb_value(value, self._layout))
        return placeholder

    def field(self, f: FieldFilter) -> str:
        n = self.name(f.field)
        op = FilterOp(f.op)
        if f.value is None and op in (FilterOp.EQ, FilterOp.NE):
            null_type = self.value("NULL")
            if op == FilterOp.EQ:
                return f"(attribute_not_exists({n}) OR attribute_type({n}, {null_type}))"
            return f"(attribute_exists({n}) AND NOT attribute_type({n}, {null_type}))"
        return f"{n} {_DYNAMODB_OPS[op]} {self.value(f.value)}"

    def build(self, f: Filter) -> str:
        if isinstance(f, FieldFilter):
            return self.field(f)
        if isinstance(f, AndFilter):
            if not f.filters:
                return f"attribute_exists({self.name(FIELD_ID)})"
            return "(" + " AND ".join(self.build(c) for c in f.filters) + ")"
        if isinstance(f, OrFilter):
            if not f.filters:
                return f"attribute_not_exists({self.name(FIELD_ID)})"
            return "(" + " OR ".join(self.build(c) for c in f.filters) + ")"
        if isinstance(f, RawFilter):
            if isinstance(f.value, Mapping) and f.value:
                parts = tuple(FieldFilter(k, FilterOp.EQ, v) for k, v in f.value.items())
                return self.build(AndFilter(parts))
            raise InvalidFilterError(
                f"unsupported raw filter for DynamoDB: {type(f.value).__name__}"
            )
        raise InvalidFilterError(f"unsupported filter: {type(f).__name__}")

    def key_condition(self, conditions: Sequence[FieldFilter]) -> str:
        """Render conditions on an index sort key; DynamoDB accepts one comparison or BETWEEN."""

        if len(conditions) == 1:
            (f,) = conditions
            op = FilterOp(f.op)
            if op != FilterOp.NE and f.value is not None:
                return f"{self.name(f.field)} {_DYNAMODB_OPS[op]} {self.value(f.value)}"
        if len(conditions) == 2:
            bounds = {FilterOp(f.op): f for f in conditions}
            low, high = bounds.get(FilterOp.GTE), bounds.get(FilterOp.LTE)
            if low is not None and high is not None and None not in (low.value, high.value):
                return (
                    f"{self.name(low.field)} BETWEEN {self.value(low.value)}"
                    f" AND {self.value(high.value)}"
                )
        raise InvalidFilterError(
            f"conditions on index sort key [{conditions[0].field}] must be a single"
            " comparison or a >=/<= pair"
        )


def _flatten(f: Filter) -> list[Filter]:
    if isinstance(f, RawFilter) and isinstance(f.value, Mapping) and f.value:
        return [FieldFilter(k, FilterOp.EQ, v) for k, v in f.value.items()]
    if isinstance(f, AndFilter):
        return [part for child in f.filters for part in _flatten(child)]
    return [f]


def _mentions(f: Filter, field: str) -> bool:
    if isinstance(f, FieldFilter):
        return f.field == field
    if isinstance(f, (AndFilter, OrFilter)):
        return any(_mentions(c, field) for c in f.filters)
    if isinstance(f, RawFilter) and isinstance(f.value, Mapping):
        return field in f.value
    return False


def split_key_conditions(
    f: Filter | None, sort_field: str
) -> tuple[list[FieldFilter], Filter | None]:
    """
    Separate the top-level conditions on `sort_field` from the rest of `f`.

    A query may not filter on its index keys, so these become part of the key condition.
    Raises `InvalidFilterError` when `sort_field` appears anywhere else, e.g. under an OR.
    """

    if f is None:
        return [], None
    keys: list[FieldFilter] = []
    rest: list[Filter] = []
    for part in _flatten(f):
        if isinstance(part, FieldFilter) and part.field == sort_field:
            keys.append(part)
        elif _mentions(part, sort_field):
            raise InvalidFilterError(
                f"index sort key [{sort_field}] may only be filtered by top-level conditions"
            )
        else:
            rest.append(part)
    if not rest:
        return keys, None
    return keys, rest[0] if len(rest) == 1 else AndFilter(tuple(rest))


class WideColumnDao(UniversalDao):
    """
    `uidx_attrs` lists the unique groups, each an ordered list of extras fields whose
    combined values must be unique across the table.
    """

    dao_name = "wide_column"

    def __init__(
        self,
        client: Any,
        table_name: str,
        *,
        pk_prefix: str | None = None,
        pk_prefix_value: Any = None,
        uidx_attrs: Sequence[Sequence[str]] | None = None,
        uidx_table_name: str | None = None,
        hash_functions: Sequence[str] = DEFAULT_HASH_FUNCTIONS,
        ubo_options: UboOptions | None = None,
    ) -> None:
        super().__init__(ubo_options=ubo_options)
        self._client = client
        self._table_name = table_name
        self._pk_prefix = pk_prefix or None
        self._pk_prefix_value = pk_prefix_value
        self._uidx_attrs = [list(g) for g in (uidx_attrs or [])]
        if any(not g for g in self._uidx_attrs):
            raise ConfigurationError("unique groups must not be empty")
        self._uidx_table_name = (
            (uidx_table_name or default_uidx_table_name(table_name)) if self._uidx_attrs else None
        )
        self._hasher = UidxHasher(hash_functions)
        self._mapper = WideColumnRowMapper(
            self._pk_prefix, time_layout=self._ubo_options.time_layout
        )
        self._deserializer = TypeDeserializer()
        self._secondary_indexes: dict[str, str] = {}
        self._secondary_indexes_lock = threading.Lock()

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def uidx_table_name(self) -> str | None:
        return self._uidx_table_name

    @property
    def uidx_attrs(self) -> list[list[str]]:
        return [list(g) for g in self._uidx_attrs]

    @property
    def hasher(self) -> UidxHasher:
        return self._hasher

    def map_secondary_index(self, index_name: str, sort_field: str) -> None:
        """Use GSI `index_name` (key: pk_prefix + `sort_field`) when sorting by `sort_field`."""

        with self._secondary_indexes_lock:
            self._secondary_indexes[sort_field] = index_name

    def secondary_index_for(self, sort_field: str) -> str | None:
        with self._secondary_indexes_lock:
            return self._secondary_indexes.get(sort_field)

    def _context(self, op: str):
        return operation_context(dao=self.dao_name, table=self._table_name, op=op)

    # ------------------------------------------------------------------ keys and rows

    def _resolve_pk(self, bag: Mapping[str, Any]) -> Any:
        value = bag.get(self._pk_prefix) if self._pk_prefix else None
        if value is None:
            value = self._pk_prefix_value
        if value is None:
            raise ConfigurationError(
                f"cannot resolve partition value [{self._pk_prefix}] for table [{self._table_name}]"
            )
        return value

    def _bag(self, bo: UniversalBo) -> dict[str, Any]:
        """
        Generic bag of `bo` after storing the resolved partition value in its extras.

        Mutates `bo`; callers pass their own clone. The persisted checksum then covers
        the partition attribute that `get` reads back.
        """

        if self._pk_prefix:
            bo.set_extra_attr(self._pk_prefix, self._resolve_pk(bo.get_extra_attrs()))
        return bo.to_generic()

    def _write_key(self, bo: UniversalBo) -> dict[str, Any]:
        key: dict[str, Any] = {FIELD_ID: bo.id}
        if self._pk_prefix:
            key[self._pk_prefix] = self._resolve_pk(bo.get_extra_attrs())
        return key

    def _pk(self, bag: Mapping[str, Any]) -> dict[str, Any]:
        return {self._pk_prefix: bag[self._pk_prefix]} if self._pk_prefix else {}

    def _key(self, bag: Mapping[str, Any]) -> dict[str, Any]:
        return {**self._pk(bag), FIELD_ID: bag[FIELD_ID]}

    def _deserialize(self, item: Mapping[str, Any]) -> dict[str, Any]:
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

    def _fetch(self, key: Mapping[str, Any]) -> dict[str, Any] | None:
        resp = self._client.get_item(
            TableName=self._table_name, Key=serialize_item(key), ConsistentRead=True
        )
        item = resp.get("Item")
        return self._deserialize(item) if item else None

    def _row_to_bo(self, row: Mapping[str, Any] | None) -> UniversalBo | None:
        return self._to_bo(self._mapper.to_bo(self._table_name, row))

    def _read_back(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """`row` as `_fetch` would return it after a write; fingerprints hash this form."""

        stored = self._deserialize(serialize_item(row))
        return self._mapper.to_bo(self._table_name, stored) or {}

    # ------------------------------------------------------------------ write protocols

    def _insert(self, bag: dict[str, Any]) -> None:
        id = bag[FIELD_ID]
        row = self._mapper.to_row(self._table_name, bag)
        condition = not_exists_condition(self._mapper.key_columns)
        try:
            if not self._uidx_attrs:
                expression, names = condition
                self._client.put_item(
                    TableName=self._table_name,
                    Item=serialize_item(row),
                    ConditionExpression=expression,
                    ExpressionAttributeNames=names,
                )
                return
            fingerprints = self._hasher.fingerprints(self._uidx_attrs, self._read_back(row))
            items = [tx_put(self._table_name, row, condition)]
            items += [
                tx_put_uidx(self._uidx_table_name, fp, id, self._pk(bag))
                for fp in fingerprints.values()
            ]
            self._client.transact_write_items(TransactItems=items)
        except ClientError as e:
            failed = failed_conditions(e)
            if not failed:
                raise
            log.info("duplicated_entry", id=id, failed_items=sorted(failed))
            raise DuplicatedEntryError(self._table_name, id) from e

    def _replace(self, bag: dict[str, Any], old_row: Mapping[str, Any]) -> bool:
        """Replace an existing row; False when it vanished before the write landed."""

        id = bag[FIELD_ID]
        row = self._mapper.to_row(self._table_name, bag)
        condition = exists_condition(self._mapper.key_columns)
        try:
            if not self._uidx_attrs:
                expression, names = condition
                self._client.put_item(
                    TableName=self._table_name,
                    Item=serialize_item(row),
                    ConditionExpression=expression,
                    ExpressionAttributeNames=names,
                )
                return True
            old_bag = self._mapper.to_bo(self._table_name, old_row) or {}
            old_fp = self._hasher.fingerprints(self._uidx_attrs, old_bag)
            new_fp = self._hasher.fingerprints(self._uidx_attrs, self._read_back(row))
            changed = [name for name, fp in new_fp.items() if old_fp[name] != fp]
            items = [tx_put(self._table_name, row, condition)]
            items += [tx_delete_uidx(self._uidx_table_name, old_fp[name]) for name in changed]
            items += [
                tx_put_uidx(self._uidx_table_name, new_fp[name], id, self._pk(bag))
                for name in changed
            ]
            self._client.transact_write_items(TransactItems=items)
            return True
        except ClientError as e:
            failed = failed_conditions(e)
            if not failed:
                raise
            if 0 in failed:
                log.info("row_vanished", id=id)
                return False
            log.info("duplicated_entry", id=id, failed_items=sorted(failed))
            raise DuplicatedEntryError(self._table_name, id) from e

    # ------------------------------------------------------------------ DAO contract

    def create(self, bo: UniversalBo) -> bool:
        bo = bo.clone()
        with self._context("create"):
            self._insert(self._bag(bo))
            log.debug("dao_create", id=bo.id)
            return True

    def get(self, id: str) -> UniversalBo | None:
        with self._context("get"):
            key = {FIELD_ID: id}
            if self._pk_prefix:
                key[self._pk_prefix] = self._resolve_pk({})
            row = self._fetch(key)
            log.debug("dao_get", id=id, found=row is not None)
            return self._row_to_bo(row)

    def get_n(
        self,
        from_offset: int = 0,
        max_rows: int = 0,
        filter: Filter | None = None,
        sort: Sort | None = None,
    ) -> list[UniversalBo]:
        """
        Rows come back in index order when the first sort field has a mapped secondary
        index and a partition value is configured; otherwise the order is undefined.
        Filters on that sort field must then fit a key condition (see `split_key_conditions`).
        """

        with self._context("get_n"):
            expr = _ExpressionBuilder(self._ubo_options.time_layout)
            sort = list(sort or [])
            index = self.secondary_index_for(sort[0].field) if sort else None
            pk_value = self._pk_prefix_value
            kwargs: dict[str, Any] = {"TableName": self._table_name}
            if index and self._pk_prefix and pk_value is not None:
                call = self._client.query
                key_filters, filter = split_key_conditions(filter, sort[0].field)
                key_condition = f"{expr.name(self._pk_prefix)} = {expr.value(pk_value)}"
                if key_filters:
                    key_condition += f" AND {expr.key_condition(key_filters)}"
                filter_expression = expr.build(filter) if filter is not None else None
                kwargs["IndexName"] = index
                kwargs["ScanIndexForward"] = not sort[0].descending
                kwargs["KeyConditionExpression"] = key_condition
            else:
                call = self._client.scan
                filter_expression = expr.build(filter) if filter is not None else None
                if self._pk_prefix and pk_value is not None:
                    scope = f"{expr.name(self._pk_prefix)} = {expr.value(pk_value)}"
                    filter_expression = (
                        f"{scope} AND {filter_expression}" if filter_expression else scope
                    )
            if filter_expression:
                kwargs["FilterExpression"] = filter_expression
            if expr.names:
                kwargs["ExpressionAttributeNames"] = expr.names
            if expr.values:
                kwargs["ExpressionAttributeValues"] = expr.values

            rows: list[dict[str, Any]] = []
            wanted = from_offset + max_rows if max_rows > 0 else None
            while True:
                resp = call(**kwargs)
                rows.extend(self._deserialize(item) for item in resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key or (wanted is not None and len(rows) >= wanted):
                    break
                kwargs["ExclusiveStartKey"] = last_key

            page = rows[from_offset:wanted]
            log.debug(
                "dao_get_n", index=index, offset=from_offset, limit=max_rows, rows=len(page)
            )
            result = []
            for row in page:
                bo = self._row_to_bo(row)
                if bo is not None:
                    result.append(bo)
            return result

    def update(self, bo: UniversalBo) -> bool:
        bo = bo.clone()
        with self._context("update"):
            bag = self._bag(bo)
            old_row = self._fetch(self._key(bag))
            if old_row is None:
                log.debug("dao_update", id=bo.id, updated=False)
                return False
            updated = self._replace(bag, old_row)
            log.debug("dao_update", id=bo.id, updated=updated)
            return updated

    def save(self, bo: UniversalBo) -> tuple[bool, UniversalBo | None]:
        bo = bo.clone()
        with self._context("save"):
            bag = self._bag(bo)
            old_row = self._fetch(self._key(bag))
            previous = self._row_to_bo(old_row)
            if old_row is not None and not self._uidx_attrs:
                row = self._mapper.to_row(self._table_name, bag)
                self._client.put_item(TableName=self._table_name, Item=serialize_item(row))
            elif old_row is None or not self._replace(bag, old_row):
                self._insert(bag)
            log.debug("dao_save", id=bo.id, inserted=previous is None)
            return True, previous

    def delete(self, bo: UniversalBo) -> bool:
        with self._context("delete"):
            key = self._write_key(bo)
            if not self._uidx_attrs:
                resp = self._client.delete_item(
                    TableName=self._table_name, Key=serialize_item(key), ReturnValues="ALL_OLD"
                )
                deleted = bool(resp.get("Attributes"))
                log.debug("dao_delete", id=bo.id, deleted=deleted)
                return deleted

            # Index rows are addressed by the stored values, which may differ from `bo`.
            old_row = self._fetch(key)
            if old_row is None:
                log.debug("dao_delete", id=bo.id, deleted=False)
                return False
            old_bag = self._mapper.to_bo(self._table_name, old_row) or {}
            items = [tx_delete(self._table_name, key, exists_condition(self._mapper.key_columns))]
            items += [
                tx_delete_uidx(self._uidx_table_name, fp)
                for fp in self._hasher.fingerprints(self._uidx_attrs, old_bag).values()
            ]
            try:
                self._client.transact_write_items(TransactItems=items)
            except ClientError as e:
                if 0 not in failed_conditions(e):
                    raise
                log.info("row_vanished", id=bo.id)
                return False
            log.debug("dao_delete", id=bo.id, deleted=True)
            return True


# --- Module Notes -----------------------------------------------------------
# Writes never mix per-item error handling with protocol logic: items are built first,
# submitted once, and any cancellation goes through `uidx.failed_conditions`.
