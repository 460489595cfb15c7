"""
unibo.errors

Error taxonomy for the persistence layer.

Responsibilities:
- Give callers distinct error kinds for duplicates, mapping, filter and configuration
  failures.
- Leave backend/driver errors untouched: they propagate as the driver's own types.
"""

from __future__ import annotations


class UniboError(Exception):
    """Base class for every error raised by unibo itself."""


class DuplicatedEntryError(UniboError):
    """A primary-key or unique-group collision.

    This is a normal outcome of `create`, `update` and `save`; retry with different input,
    not with the same input.
    """

    def __init__(self, table: str, id: str | None = None, detail: str | None = None) -> None:
        self.table = table
        self.id = id
        message = f"duplicated entry in [{table}]"
        if id is not None:
            message += f" for id [{id}]"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class MappingError(UniboError):
    """A row or value could not be translated to/from its BO form."""


class PathError(MappingError):
    """A data path cannot be read or written in the current data tree."""


class ConversionError(MappingError, ValueError):
    """A value cannot be converted to the requested type."""


class InvalidFilterError(UniboError, ValueError):
    """A filter or sort references something the backend cannot express."""


class ConfigurationError(UniboError):
    """A DAO was constructed or used without required configuration."""


# --- Module Notes -----------------------------------------------------------
# NotFound is deliberately absent: `get` returns None and `update`/`delete` return False.
