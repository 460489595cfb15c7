"""
unibo.dao.filters

Backend-neutral filter and sort descriptions.

Responsibilities:
- Model filters as a small tagged variant (field/op/value, AND, OR, raw native predicate).
- Model sorting as an ordered sequence of (field, descending).
- Offer terse constructors for call sites and tests.

Each DAO translates these into its own native predicates.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias


class FilterOp(enum.StrEnum):
    EQ = "="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    NE = "!="


@dataclass(frozen=True, slots=True)
class FieldFilter:
    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class AndFilter:
    filters: tuple[Filter, ...]


@dataclass(frozen=True, slots=True)
class OrFilter:
    filters: tuple[Filter, ...]


@dataclass(frozen=True, slots=True)
class RawFilter:
    """Native predicate handed to the backend as-is (a mapping, or a backend expression)."""

    value: Any


Filter: TypeAlias = FieldFilter | AndFilter | OrFilter | RawFilter


@dataclass(frozen=True, slots=True)
class SortField:
    field: str
    descending: bool = False


Sort: TypeAlias = Sequence[SortField]


def eq(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOp.EQ, value)


def ne(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOp.NE, value)


def lt(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOp.LT, value)


def lte(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOp.LTE, value)


def gt(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOp.GT, value)


def gte(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, FilterOp.GTE, value)


def and_(*filters: Filter) -> AndFilter:
    return AndFilter(tuple(filters))


def or_(*filters: Filter) -> OrFilter:
    return OrFilter(tuple(filters))


def make_filter(conditions: Mapping[str, Any]) -> Filter | None:
    """Equality AND over a mapping; None for an empty mapping."""

    parts = [eq(k, v) for k, v in conditions.items()]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return AndFilter(tuple(parts))


def sort_by(*specs: str | tuple[str, bool] | SortField) -> list[SortField]:
    """
    Build a sort list. Accepts `"field"`, `"-field"` (descending), `(field, descending)` or
    `SortField` instances.
    """

    result: list[SortField] = []
    for spec in specs:
        if isinstance(spec, SortField):
            result.append(spec)
        elif isinstance(spec, tuple):
            result.append(SortField(spec[0], bool(spec[1])))
        elif spec.startswith("-"):
            result.append(SortField(spec[1:], True))
        else:
            result.append(SortField(spec))
    return result
