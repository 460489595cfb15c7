"""
tests.test_wide_column_dao

DynamoDB DAO behavior on moto: UIDX protocol, save/previous, secondary-index paging.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone

import pytest
from boto3.dynamodb.types import TypeDeserializer

from unibo.bo.universal import UboOptions, UniversalBo
from unibo.dao.filters import and_, eq, gte, lte, or_, sort_by
from unibo.dao.wide_column import WideColumnDao
from unibo.db.init_db import DynamodbTablesSpec, SecondaryIndexSpec, init_dynamodb_tables
from unibo.errors import ConfigurationError, DuplicatedEntryError, InvalidFilterError

TABLE = "accounts"
GROUPS = [["pk", "email"], ["pk", "subject", "level"]]


@pytest.fixture
def client(dynamodb_client):
    init_dynamodb_tables(
        dynamodb_client,
        TABLE,
        DynamodbTablesSpec(
            pk_prefix="pk",
            with_uidx_table=True,
            secondary_indexes=[SecondaryIndexSpec("gsi_email", "email")],
        ),
    )
    return dynamodb_client


@pytest.fixture
def dao(client) -> WideColumnDao:
    return WideColumnDao(
        client, TABLE, pk_prefix="pk", pk_prefix_value="users", uidx_attrs=GROUPS
    )


def _student(id: str, email: str, subject: str = "English", level: int = 1) -> UniversalBo:
    bo = UniversalBo(id).set_data_attr("name", id.upper())
    bo.set_extra_attr("email", email)
    bo.set_extra_attr("subject", subject)
    bo.set_extra_attr("level", level)
    return bo


def _uidx_rows(client, dao: WideColumnDao) -> set[tuple[str, str, str]]:
    deserializer = TypeDeserializer()
    items = client.scan(TableName=dao.uidx_table_name)["Items"]
    rows = [{k: deserializer.deserialize(v) for k, v in item.items()} for item in items]
    return {(r["uname"], r["uhash"], r["id"]) for r in rows}


def _expected_uidx_rows(dao: WideColumnDao, *bos: UniversalBo) -> set[tuple[str, str, str]]:
    expected = set()
    for bo in bos:
        bag = {**bo.to_generic(), "pk": "users"}
        for fp in dao.hasher.fingerprints(GROUPS, bag).values():
            expected.add((fp.uname, fp.uhash, bo.id))
    return expected


def test_update_collision_rolls_back(dao: WideColumnDao) -> None:
    b1 = _student("s1", "1@school", level=1)
    b2 = _student("s2", "2@school", level=2)
    assert dao.create(b1) is True
    assert dao.create(b2) is True

    b1.set_extra_attr("email", "2@school")
    with pytest.raises(DuplicatedEntryError):
        dao.update(b1)
    got = dao.get("s1")
    assert got is not None and got.get_extra_attr("email") == "1@school"


def test_create_rejects_duplicate_group(dao: WideColumnDao, client) -> None:
    dao.create(_student("s1", "1@school", level=1))
    with pytest.raises(DuplicatedEntryError):
        dao.create(_student("s2", "other@school", level=1))
    with pytest.raises(DuplicatedEntryError):
        dao.create(_student("s1", "fresh@school", level=9))
    assert client.scan(TableName=TABLE, Select="COUNT")["Count"] == 1


def test_save_returns_previous_value(dao: WideColumnDao) -> None:
    b = _student("d1", "d@school").set_extra_attr("age", 35)
    dao.create(b)
    b.set_extra_attr("age", 37)
    changed, previous = dao.save(b)
    assert changed is True
    assert previous is not None and previous.get_extra_attr("age") == 35
    got = dao.get("d1")
    assert got is not None and got.get_extra_attr("age") == 37


def test_uidx_rows_follow_main_rows(dao: WideColumnDao, client) -> None:
    b1 = _student("s1", "1@school", level=1)
    b2 = _student("s2", "2@school", level=2)
    dao.create(b1)
    dao.create(b2)
    assert _uidx_rows(client, dao) == _expected_uidx_rows(dao, b1, b2)

    b1.set_extra_attr("email", "new@school").set_extra_attr("level", 3)
    assert dao.update(b1) is True
    assert _uidx_rows(client, dao) == _expected_uidx_rows(dao, b1, b2)

    b2.set_extra_attr("subject", "Maths")
    assert dao.save(b2)[0] is True
    assert _uidx_rows(client, dao) == _expected_uidx_rows(dao, b1, b2)

    # Delete addresses the stored index rows even if the caller's copy drifted.
    stale = b1.clone().set_extra_attr("email", "drifted@school")
    assert dao.delete(stale) is True
    assert _uidx_rows(client, dao) == _expected_uidx_rows(dao, b2)
    assert dao.delete(b2) is True
    assert dao.delete(b2) is False
    assert _uidx_rows(client, dao) == set()


def test_freed_unique_values_can_be_reused(dao: WideColumnDao) -> None:
    b1 = _student("s1", "1@school")
    dao.create(b1)
    b1.set_extra_attr("email", "moved@school")
    dao.update(b1)
    assert dao.create(_student("s2", "1@school", level=2)) is True


def test_update_missing_row(dao: WideColumnDao) -> None:
    assert dao.update(_student("ghost", "g@school")) is False


def test_partition_value_from_extras(dao: WideColumnDao, client) -> None:
    b = _student("p1", "p@school").set_extra_attr("pk", "archive")
    dao.create(b)
    assert dao.get("p1") is None
    key = {"pk": {"S": "archive"}, "id": {"S": "p1"}}
    assert "Item" in client.get_item(TableName=TABLE, Key=key)


def test_without_unique_groups(client) -> None:
    dao = WideColumnDao(client, TABLE, pk_prefix="pk", pk_prefix_value="users")
    assert dao.uidx_table_name is None
    b = _student("n1", "n@school")
    assert dao.create(b) is True
    with pytest.raises(DuplicatedEntryError):
        dao.create(b)
    b.set_extra_attr("level", 4)
    assert dao.update(b) is True
    b.set_extra_attr("level", 5)
    changed, previous = dao.save(b)
    assert changed is True
    assert previous is not None and previous.get_extra_attr("level") == 4
    assert dao.delete(b) is True
    assert dao.delete(b) is False


def test_secondary_index_paging(dao: WideColumnDao) -> None:
    dao.map_secondary_index("gsi_email", "email")
    ids = list(range(10))
    random.shuffle(ids)
    for i in ids:
        dao.create(_student(str(i), f"{i}@d", level=i))

    page = dao.get_n(3, 4, sort=sort_by("-email"))
    assert [b.id for b in page] == ["6", "5", "4", "3"]
    asc = dao.get_all(sort=sort_by("email"))
    assert [b.id for b in asc] == [str(i) for i in range(10)]


def test_scan_filter(dao: WideColumnDao) -> None:
    for i in range(10):
        dao.create(_student(f"f{i}", f"f{i}@d", level=i))
    found = dao.get_all(gte("level", 3))
    assert sorted(b.get_extra_attr("level") for b in found) == list(range(3, 10))


def test_unresolvable_partition(client) -> None:
    dao = WideColumnDao(client, TABLE, pk_prefix="pk")
    with pytest.raises(ConfigurationError):
        dao.create(_student("x", "x@school"))
    with pytest.raises(ConfigurationError):
        WideColumnDao(client, TABLE, uidx_attrs=[[]])


class _RecordingClient:
    """Delegates to a real client and keeps the kwargs of every `query` call."""

    def __init__(self, client) -> None:
        self._client = client
        self.queries: list[dict] = []

    def query(self, **kwargs):
        self.queries.append(kwargs)
        return self._client.query(**kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)


@pytest.fixture
def ledger_client(dynamodb_client):
    init_dynamodb_tables(
        dynamodb_client, "ledger", DynamodbTablesSpec(pk_prefix="pk", with_uidx_table=True)
    )
    return dynamodb_client


def test_float_unique_value_survives_updates(ledger_client) -> None:
    dao = WideColumnDao(
        ledger_client,
        "ledger",
        pk_prefix="pk",
        pk_prefix_value="users",
        uidx_attrs=[["pk", "score"]],
    )
    b = UniversalBo("f1").set_extra_attr("score", 1e20)
    assert dao.create(b) is True
    b.set_data_attr("note", "first")
    assert dao.update(b) is True
    b.set_data_attr("note", "second")
    assert dao.save(b)[0] is True
    assert len(_uidx_rows(ledger_client, dao)) == 1
    with pytest.raises(DuplicatedEntryError):
        dao.create(UniversalBo("f2").set_extra_attr("score", 1e20))
    assert dao.delete(b) is True
    assert _uidx_rows(ledger_client, dao) == set()


def test_custom_layout_datetime_in_unique_group(ledger_client) -> None:
    dao = WideColumnDao(
        ledger_client,
        "ledger",
        pk_prefix="pk",
        pk_prefix_value="users",
        uidx_attrs=[["pk", "due"]],
        ubo_options=UboOptions(time_layout="%Y-%m-%d %H:%M:%S"),
    )
    due = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    b = UniversalBo("d1").set_extra_attr("due", due)
    assert dao.create(b) is True
    b.set_data_attr("note", "changed")
    assert dao.update(b) is True
    assert len(_uidx_rows(ledger_client, dao)) == 1
    with pytest.raises(DuplicatedEntryError):
        dao.create(UniversalBo("d2").set_extra_attr("due", due))


def test_sort_key_filters_become_key_conditions(client) -> None:
    recording = _RecordingClient(client)
    dao = WideColumnDao(
        recording, TABLE, pk_prefix="pk", pk_prefix_value="users", uidx_attrs=GROUPS
    )
    dao.map_secondary_index("gsi_email", "email")
    for i in range(8):
        dao.create(_student(str(i), f"{i}@d", level=i))

    page = dao.get_all(and_(gte("email", "5@d"), gte("level", 0)), sort=sort_by("-email"))
    assert [b.id for b in page] == ["7", "6", "5"]
    query = recording.queries[-1]
    assert query["IndexName"] == "gsi_email"
    names = {attr: n for n, attr in query["ExpressionAttributeNames"].items()}
    assert names["email"] not in query["FilterExpression"]
    assert names["level"] in query["FilterExpression"]
    assert ">=" in query["KeyConditionExpression"]

    between = dao.get_all(and_(gte("email", "2@d"), lte("email", "4@d")), sort=sort_by("email"))
    assert [b.id for b in between] == ["2", "3", "4"]
    assert "BETWEEN" in recording.queries[-1]["KeyConditionExpression"]
    assert "FilterExpression" not in recording.queries[-1]

    with pytest.raises(InvalidFilterError):
        dao.get_all(or_(eq("email", "1@d"), eq("level", 2)), sort=sort_by("email"))
