"""
unibo.dao.base

The uniform DAO contract every backend implements.

Responsibilities:
- Declare the seven CRUD operations with identical signatures across backends.
- Hold the per-DAO defaults shared by every backend (BO options applied on read).

NotFound is a value (None / False); duplicates raise `DuplicatedEntryError`; backend
failures propagate as the driver's own exception.
"""

from __future__ import annotations

import abc
from typing import Any

from unibo.bo.universal import UboOptions, UniversalBo
from unibo.dao.filters import Filter, Sort


class UniversalDao(abc.ABC):
    def __init__(self, *, ubo_options: UboOptions | None = None) -> None:
        self._ubo_options = ubo_options or UboOptions()

    @property
    def ubo_options(self) -> UboOptions:
        return self._ubo_options

    def _to_bo(self, bag: dict[str, Any] | None) -> UniversalBo | None:
        return UniversalBo.from_generic(bag, options=self._ubo_options)

    @abc.abstractmethod
    def create(self, bo: UniversalBo) -> bool:
        """Insert `bo`; raises `DuplicatedEntryError` on id or unique-group collision."""

    @abc.abstractmethod
    def get(self, id: str) -> UniversalBo | None: ...

    @abc.abstractmethod
    def get_n(
        self,
        from_offset: int = 0,
        max_rows: int = 0,
        filter: Filter | None = None,
        sort: Sort | None = None,
    ) -> list[UniversalBo]:
        """Page of BOs; `max_rows <= 0` means no limit."""

    def get_all(self, filter: Filter | None = None, sort: Sort | None = None) -> list[UniversalBo]:
        return self.get_n(0, 0, filter, sort)

    @abc.abstractmethod
    def update(self, bo: UniversalBo) -> bool:
        """Replace the stored row for `bo.id`; False when no such row exists."""

    @abc.abstractmethod
    def save(self, bo: UniversalBo) -> tuple[bool, UniversalBo | None]:
        """Insert or replace; returns (changed, previous value or None on fresh insert)."""

    @abc.abstractmethod
    def delete(self, bo: UniversalBo) -> bool:
        """Remove the row for `bo.id`; False when it did not exist."""


# --- Module Notes -----------------------------------------------------------
# Implementations clone the caller's BO before create/update/save: the caller keeps
# exclusive ownership of the instance it passed in.
