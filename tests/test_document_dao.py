"""
tests.test_document_dao

MongoDB DAO behavior on mongomock.
"""

from __future__ import annotations

import pytest
from pymongo.errors import DuplicateKeyError

from unibo.bo.universal import UniversalBo
from unibo.dao.document import DocumentDao
from unibo.dao.filters import OrFilter, RawFilter, and_, eq, gt, lt, sort_by
from unibo.db.init_db import init_mongo_collection
from unibo.errors import DuplicatedEntryError


@pytest.fixture
def collection(mongo_db):
    return init_mongo_collection(mongo_db, "people", unique_indexes=[["email"]])


@pytest.fixture
def dao(collection) -> DocumentDao:
    return DocumentDao(collection)


def _person(id: str, email: str, **extras) -> UniversalBo:
    bo = UniversalBo(id).set_extra_attr("email", email).set_data_attr("profile.id", id)
    for k, v in extras.items():
        bo.set_extra_attr(k, v)
    return bo


def test_duplicate_unique_field_is_rejected(dao: DocumentDao, collection) -> None:
    b = _person("id", "x@y")
    assert dao.create(b) is True
    b.set_id("id2")
    with pytest.raises(DuplicatedEntryError) as info:
        dao.create(b)
    assert isinstance(info.value.__cause__, DuplicateKeyError)
    assert collection.count_documents({}) == 1


def test_document_layout(dao: DocumentDao, collection) -> None:
    dao.create(_person("d1", "d1@x", level=3))
    doc = collection.find_one({"_id": "d1"})
    assert doc["data"] == {"profile": {"id": "d1"}}
    assert doc["email"] == "d1@x"
    assert doc["level"] == 3
    assert "id" not in doc


def test_every_extra_round_trips(dao: DocumentDao) -> None:
    b = _person("e1", "e1@x", tags=["a", "b"], nested={"k": 1})
    dao.create(b)
    got = dao.get("e1")
    assert got is not None
    assert got.get_extra_attrs() == {"email": "e1@x", "tags": ["a", "b"], "nested": {"k": 1}}
    assert got.checksum == b.checksum


def test_default_sort_and_filters(dao: DocumentDao) -> None:
    for i in (3, 1, 2, 0):
        dao.create(_person(f"p{i}", f"p{i}@x", level=i))
    assert [b.id for b in dao.get_all()] == ["p0", "p1", "p2", "p3"]
    assert [b.id for b in dao.get_all(and_(gt("level", 0), lt("level", 3)))] == ["p1", "p2"]
    assert [b.id for b in dao.get_all(eq("id", "p2"))] == ["p2"]
    assert dao.get_all(OrFilter(())) == []
    native = RawFilter({"level": {"$in": [0, 3]}})
    assert [b.id for b in dao.get_all(native, sort_by("-level"))] == ["p3", "p0"]


def test_update_and_save(dao: DocumentDao) -> None:
    b = _person("s1", "s1@x", level=1)
    assert dao.update(b) is False
    assert dao.save(b) == (True, None)

    b.set_extra_attr("level", 2)
    assert dao.update(b) is True
    b.set_extra_attr("level", 5)
    changed, previous = dao.save(b)
    assert changed is True
    assert previous is not None and previous.get_extra_attr("level") == 2
    got = dao.get("s1")
    assert got is not None and got.get_extra_attr("level") == 5


def test_update_unique_collision(dao: DocumentDao) -> None:
    dao.create(_person("u1", "u1@x"))
    dao.create(_person("u2", "u2@x"))
    with pytest.raises(DuplicatedEntryError):
        dao.update(_person("u2", "u1@x"))
    got = dao.get("u2")
    assert got is not None and got.get_extra_attr("email") == "u2@x"


def test_delete(dao: DocumentDao) -> None:
    b = _person("x", "x@x")
    dao.create(b)
    assert dao.delete(b) is True
    assert dao.delete(b) is False
    assert dao.get("x") is None
