"""
unibo.dao.partitioned

Partitioned document backend (sharded MongoDB, Cosmos DB API for MongoDB).

Responsibilities:
- Resolve a partition-key value for every write (BO extras first, DAO default second).
- Scope every read to the DAO's partition unless cross-partition reads are enabled.
- Strip store-added system properties when mapping rows back to BOs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pymongo.collection import Collection

from unibo.bo.path import MISSING, PathAccessor, parse_path
from unibo.bo.universal import UboOptions, UniversalBo
from unibo.dao.document import DocumentDao
from unibo.dao.filters import Sort
from unibo.dao.row_mappers import DOC_COL_ID, PartitionedDocumentRowMapper
from unibo.errors import ConfigurationError


class PartitionedDocumentDao(DocumentDao):
    """
    `pk_path` is a dotted path into the BO's extras (and the stored document) holding the
    partition key. `pk_value` is the partition this DAO reads from and the fallback for
    BOs that do not carry one.
    """

    dao_name = "partitioned_document"

    def __init__(
        self,
        collection: Collection,
        *,
        pk_path: str,
        pk_value: Any = None,
        cross_partition: bool = False,
        tx_mode_on_write: bool = False,
        ubo_options: UboOptions | None = None,
        default_sort: Sort | None = None,
    ) -> None:
        if not pk_path or not pk_path.strip():
            raise ConfigurationError("partitioned document DAO requires a partition-key path")
        super().__init__(
            collection,
            tx_mode_on_write=tx_mode_on_write,
            ubo_options=ubo_options,
            default_sort=default_sort,
            mapper=PartitionedDocumentRowMapper(),
        )
        self._pk_path = pk_path.strip()
        self._pk_value = pk_value
        self._cross_partition = cross_partition

    @property
    def pk_path(self) -> str:
        return self._pk_path

    @property
    def pk_value(self) -> Any:
        return self._pk_value

    def partition_value(self, bo: UniversalBo) -> Any:
        value = PathAccessor(bo.get_extra_attrs()).get(self._pk_path)
        if value is MISSING or value is None:
            value = self._pk_value
        if value is None:
            raise ConfigurationError(
                f"cannot resolve partition key [{self._pk_path}] for BO [{bo.id}]"
            )
        return value

    def _write_filter(self, bo: UniversalBo) -> dict[str, Any]:
        return {DOC_COL_ID: bo.id, self._pk_path: self.partition_value(bo)}

    def _prepare_bo(self, bo: UniversalBo) -> None:
        extras = bo.get_extra_attrs()
        PathAccessor(extras).set(self._pk_path, self.partition_value(bo))
        top = parse_path(self._pk_path)[0]
        bo.set_extra_attr(top, extras[top])

    def _read_filter(self, query: Mapping[str, Any]) -> dict[str, Any]:
        if self._pk_value is not None:
            scope = {self._pk_path: self._pk_value}
            return {"$and": [dict(query), scope]} if query else scope
        if self._cross_partition:
            return dict(query)
        raise ConfigurationError(
            f"reads on [{self.table_name}] need a partition-key value or cross_partition=True"
        )


# --- Module Notes -----------------------------------------------------------
# Writes always address (id, partition key), so a BO can never be moved between
# partitions by `update`; delete it and create it again instead.
# A defaulted partition key is stored in the written BO's extras, so the persisted
# checksum matches the BO that `get` reads back.
