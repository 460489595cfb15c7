"""
tests.conftest

Shared backend fixtures.

Responsibilities:
- SQLite file database per test (SQLAlchemy engine).
- In-memory MongoDB (mongomock) per test.
- Mocked DynamoDB (moto) per test.
- A `backend` fixture parametrized over every DAO, for contract tests.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import boto3
import mongomock
import pytest
import sqlalchemy as sa
from moto import mock_aws

from unibo.dao.base import UniversalDao
from unibo.dao.document import DocumentDao
from unibo.dao.partitioned import PartitionedDocumentDao
from unibo.dao.sql import SqlDao
from unibo.dao.wide_column import WideColumnDao
from unibo.db.init_db import (
    DynamodbTablesSpec,
    SecondaryIndexSpec,
    init_dynamodb_tables,
    init_mongo_collection,
    init_sql_table,
)

TABLE = "users"

SQL_COLUMN_TYPES = {
    "email": sa.String(255),
    "age": sa.Integer(),
    "t": sa.DateTime(timezone=True),
}


@dataclass
class Backend:
    name: str
    dao: UniversalDao
    count: Callable[[], int]
    # Partition attributes a backend adds to the extras of every BO it writes.
    partition_extras: dict[str, Any] = field(default_factory=dict)


@pytest.fixture
def engine(tmp_path) -> Iterator[sa.Engine]:
    eng = sa.create_engine(f"sqlite:///{tmp_path / 'unibo.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["unibo_test"]


@pytest.fixture
def aws_credentials(monkeypatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def dynamodb_client(aws_credentials):
    with mock_aws():
        yield boto3.client("dynamodb", region_name="us-east-1")


def dynamodb_count(client, table_name: str) -> int:
    total = 0
    kwargs = {"TableName": table_name, "Select": "COUNT"}
    while True:
        resp = client.scan(**kwargs)
        total += resp["Count"]
        if "LastEvaluatedKey" not in resp:
            return total
        kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]


@pytest.fixture
def sql_backend(engine) -> Backend:
    table = init_sql_table(engine, TABLE, SQL_COLUMN_TYPES, unique_indexes=[["email"]])
    dao = SqlDao(
        engine,
        TABLE,
        extra_columns={c: c for c in SQL_COLUMN_TYPES},
        column_types=SQL_COLUMN_TYPES,
    )

    def count() -> int:
        with engine.connect() as conn:
            return conn.execute(sa.select(sa.func.count()).select_from(table)).scalar_one()

    return Backend("sql", dao, count)


@pytest.fixture
def document_backend(mongo_db) -> Backend:
    collection = init_mongo_collection(mongo_db, TABLE, unique_indexes=[["email"]])
    return Backend("document", DocumentDao(collection), lambda: collection.count_documents({}))


@pytest.fixture
def partitioned_backend(mongo_db) -> Backend:
    collection = init_mongo_collection(mongo_db, TABLE, unique_indexes=[["email"]])
    dao = PartitionedDocumentDao(collection, pk_path="tenant", pk_value="acme")
    return Backend(
        "partitioned", dao, lambda: collection.count_documents({}), {"tenant": "acme"}
    )


@pytest.fixture
def wide_column_backend(dynamodb_client) -> Backend:
    init_dynamodb_tables(
        dynamodb_client,
        TABLE,
        DynamodbTablesSpec(
            pk_prefix="pk",
            with_uidx_table=True,
            secondary_indexes=[SecondaryIndexSpec("gsi_email", "email")],
        ),
    )
    dao = WideColumnDao(
        dynamodb_client,
        TABLE,
        pk_prefix="pk",
        pk_prefix_value="users",
        uidx_attrs=[["pk", "email"]],
    )
    dao.map_secondary_index("gsi_email", "email")
    return Backend(
        "wide_column", dao, lambda: dynamodb_count(dynamodb_client, TABLE), {"pk": "users"}
    )


@pytest.fixture(params=["sql", "document", "partitioned", "wide_column"])
def backend(request) -> Backend:
    return request.getfixturevalue(f"{request.param}_backend")


# --- Module Notes -----------------------------------------------------------
# Every backend shares the promoted/unique field layout (email unique, age numeric,
# t timestamp) so the contract suite can run unchanged against all of them.
