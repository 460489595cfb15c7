"""
unibo.db.init_db

Schema initialization helpers (dev/test convenience and first-time provisioning).

Responsibilities:
- Create the SQL table (fixed + promoted columns) and its unique indexes.
- Create unique indexes on a MongoDB collection.
- Create the DynamoDB main table, its optional `_uidx` table and secondary indexes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

import pymongo
import sqlalchemy as sa
from botocore.exceptions import ClientError
from pymongo.collection import Collection
from pymongo.database import Database

from unibo.bo.universal import FIELD_ID
from unibo.dao.row_mappers import SQL_COL_DATA
from unibo.dao.sql import build_sql_table
from unibo.dao.uidx import UIDX_COL_HASH, UIDX_COL_NAME, uidx_table_name
from unibo.observability.logging import get_logger

log = get_logger(__name__)


def _index_name(prefix: str, table_name: str, columns: Sequence[str]) -> str:
    return f"{prefix}_{table_name}_{'_'.join(columns)}"


def init_sql_table(
    engine: sa.Engine,
    table_name: str,
    extra_columns: Mapping[str, Any] | None = None,
    unique_indexes: Sequence[Sequence[str]] | None = None,
    data_type: Any = None,
) -> sa.Table:
    """
    Create the BO table if it does not exist.

    `extra_columns` maps each promoted column to its SQLAlchemy type; `unique_indexes` lists
    column groups that must be unique; `data_type` overrides the `zdata` column type
    (e.g. `sa.JSON`).
    """

    types = dict(extra_columns or {})
    if data_type is not None:
        types[SQL_COL_DATA] = data_type
    metadata = sa.MetaData()
    table = build_sql_table(metadata, table_name, types, list(extra_columns or {}))
    for columns in unique_indexes or []:
        sa.Index(
            _index_name("uidx", table_name, columns),
            *[table.c[c] for c in columns],
            unique=True,
        )
    # Transactional DDL where the backend supports it.
    with engine.begin() as conn:
        metadata.create_all(conn)
    log.info("sql_table_ready", table=table_name)
    return table


def init_mongo_collection(
    db: Database, name: str, unique_indexes: Sequence[Sequence[str]] | None = None
) -> Collection:
    collection = db[name]
    for fields in unique_indexes or []:
        collection.create_index(
            [(f, pymongo.ASCENDING) for f in fields],
            unique=True,
            name=_index_name("uidx", name, fields),
        )
    log.info("mongo_collection_ready", collection=name)
    return collection


@dataclass(frozen=True, slots=True)
class SecondaryIndexSpec:
    """GSI keyed by (pk_prefix, sort_field), or by sort_field alone without a prefix."""

    name: str
    sort_field: str
    attribute_type: Literal["S", "N"] = "S"


@dataclass(frozen=True, slots=True)
class DynamodbTablesSpec:
    pk_prefix: str | None = None
    with_uidx_table: bool = False
    uidx_table_name: str | None = None
    secondary_indexes: Sequence[SecondaryIndexSpec] = ()


def _create_table(client: Any, **kwargs: Any) -> None:
    name = kwargs["TableName"]
    try:
        client.create_table(BillingMode="PAY_PER_REQUEST", **kwargs)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") != "ResourceInUseException":
            raise
        log.info("dynamodb_table_exists", table=name)
    client.get_waiter("table_exists").wait(TableName=name)
    log.info("dynamodb_table_ready", table=name)


def init_dynamodb_tables(client: Any, table_name: str, spec: DynamodbTablesSpec) -> None:
    """Create the main table (and, per `spec`, the `_uidx` table and GSIs) if missing."""

    attribute_types: dict[str, str] = {FIELD_ID: "S"}
    if spec.pk_prefix:
        attribute_types[spec.pk_prefix] = "S"
        key_schema = [
            {"AttributeName": spec.pk_prefix, "KeyType": "HASH"},
            {"AttributeName": FIELD_ID, "KeyType": "RANGE"},
        ]
    else:
        key_schema = [{"AttributeName": FIELD_ID, "KeyType": "HASH"}]

    indexes = []
    for index in spec.secondary_indexes:
        attribute_types[index.sort_field] = index.attribute_type
        if spec.pk_prefix:
            index_keys = [
                {"AttributeName": spec.pk_prefix, "KeyType": "HASH"},
                {"AttributeName": index.sort_field, "KeyType": "RANGE"},
            ]
        else:
            index_keys = [{"AttributeName": index.sort_field, "KeyType": "HASH"}]
        indexes.append(
            {
                "IndexName": index.name,
                "KeySchema": index_keys,
                "Projection": {"ProjectionType": "ALL"},
            }
        )

    kwargs: dict[str, Any] = {
        "TableName": table_name,
        "KeySchema": key_schema,
        "AttributeDefinitions": [
            {"AttributeName": n, "AttributeType": t} for n, t in attribute_types.items()
        ],
    }
    if indexes:
        kwargs["GlobalSecondaryIndexes"] = indexes
    _create_table(client, **kwargs)

    if spec.with_uidx_table:
        _create_table(
            client,
            TableName=spec.uidx_table_name or uidx_table_name(table_name),
            KeySchema=[
                {"AttributeName": UIDX_COL_NAME, "KeyType": "HASH"},
                {"AttributeName": UIDX_COL_HASH, "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": UIDX_COL_NAME, "AttributeType": "S"},
                {"AttributeName": UIDX_COL_HASH, "AttributeType": "S"},
            ],
        )


# --- Module Notes -----------------------------------------------------------
# Production schemas are usually provisioned by infrastructure tooling; these helpers
# create exactly the layout the DAOs expect and are idempotent.
