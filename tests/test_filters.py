"""
tests.test_filters

Filter/sort constructors.
"""

from __future__ import annotations

from unibo.dao.filters import (
    AndFilter,
    FieldFilter,
    FilterOp,
    OrFilter,
    SortField,
    and_,
    eq,
    gte,
    make_filter,
    or_,
    sort_by,
)


def test_helpers_build_variants() -> None:
    f = and_(eq("a", 1), or_(gte("b", 2), eq("c", None)))
    assert isinstance(f, AndFilter)
    assert f.filters[0] == FieldFilter("a", FilterOp.EQ, 1)
    assert isinstance(f.filters[1], OrFilter)
    assert f.filters[1].filters[0].op == FilterOp.GTE
    assert FilterOp.NE.value == "!="


def test_make_filter() -> None:
    assert make_filter({}) is None
    assert make_filter({"a": 1}) == eq("a", 1)
    assert make_filter({"a": 1, "b": 2}) == AndFilter((eq("a", 1), eq("b", 2)))


def test_sort_by() -> None:
    assert sort_by("email", "-age", ("name", True), SortField("x")) == [
        SortField("email"),
        SortField("age", True),
        SortField("name", True),
        SortField("x"),
    ]
