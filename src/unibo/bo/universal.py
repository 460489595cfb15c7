"""
unibo.bo.universal

The universal business object (UBO).

Responsibilities:
- Hold the top-level fields (id, tver, csum, tcre, tupd), the free-form `data` tree and
  the flat `extras` map.
- Track dirtiness and recompute checksum / serialized data lazily at sync time.
- Round timestamps per the BO's rounding setting before anything leaves the object.
- Guard mutations with an exclusive lock and reads with a shared lock.
"""

from __future__ import annotations

import copy
import enum
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Final, TypeVar

from unibo.bo.convert import ValueType, convert, to_str, to_time, to_uint
from unibo.bo.path import MISSING, PathAccessor
from unibo.bo.timestamps import (
    RFC3339,
    TimestampRounding,
    format_time,
    normalize_for_storage,
    round_timestamp,
    utc_now,
)
from unibo.errors import ConversionError, MappingError, PathError
from unibo.utils.concurrency import RWLock
from unibo.utils.hashing import canonical_json, checksum_hex

T = TypeVar("T")

FIELD_ID: Final = "id"
FIELD_DATA: Final = "data"
FIELD_TAG_VERSION: Final = "tver"
FIELD_CHECKSUM: Final = "csum"
FIELD_TIME_CREATED: Final = "tcre"
FIELD_TIME_UPDATED: Final = "tupd"
# Only used by the JSON form produced by `to_dict`/`to_json`.
FIELD_EXTRAS: Final = "_ext"

RESERVED_FIELDS: Final[frozenset[str]] = frozenset(
    {
        FIELD_ID,
        FIELD_DATA,
        FIELD_TAG_VERSION,
        FIELD_CHECKSUM,
        FIELD_TIME_CREATED,
        FIELD_TIME_UPDATED,
    }
)

_MAX_TAG_VERSION: Final = 2**64 - 1


class _DataInit(enum.Enum):
    NONE = "none"
    MAP = "map"
    LIST = "list"


@dataclass(frozen=True, slots=True)
class UboOptions:
    """Per-BO settings; DAOs pass their defaults to every BO they materialize."""

    timestamp_rounding: TimestampRounding = TimestampRounding.SECOND
    time_layout: str = RFC3339


def _decode_lenient(text: str) -> Any:
    # Invariant: unparseable data behaves as an empty (null) tree.
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _as_data_json(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8").strip()
    # Some rows carry the tree already decoded.
    return canonical_json(value)


class UniversalBo:
    """
    Semi-structured business object persisted by every `UniversalDao`.

    Mutators mark the BO dirty; `sync` (explicit, or implicit at every storage boundary:
    `clone`, `to_generic`, `to_dict`) rounds timestamps, recomputes the checksum and
    re-serializes the data tree.
    """

    def __init__(
        self, id: str = "", tag_version: int = 0, *, options: UboOptions | None = None
    ) -> None:
        self._init_state(options or UboOptions())
        now = round_timestamp(utc_now(), self._options.timestamp_rounding)
        self._id = id.strip()
        self._tag_version = self._check_tag_version(tag_version)
        self._time_created = now
        self._time_updated = now
        self._dirty = True
        self.sync()

    def _init_state(self, options: UboOptions) -> None:
        self._options = options
        self._lock = RWLock()
        self._id = ""
        self._tag_version = 0
        self._checksum = ""
        self._data_json = "null"
        self._tree: Any = None
        self._tree_loaded = True
        self._time_created = datetime.fromtimestamp(0, tz=timezone.utc)
        self._time_updated = self._time_created
        self._extras: dict[str, Any] = {}
        self._dirty = False

    @classmethod
    def _blank(cls, options: UboOptions) -> UniversalBo:
        bo = cls.__new__(cls)
        bo._init_state(options)
        return bo

    @staticmethod
    def _check_tag_version(value: Any) -> int:
        result = to_uint(value)
        if result > _MAX_TAG_VERSION:
            raise ConversionError(f"tag version [{value}] does not fit in 64 bits")
        return result

    # ------------------------------------------------------------------ factories

    @classmethod
    def from_generic(
        cls, bag: Mapping[str, Any] | None, *, options: UboOptions | None = None
    ) -> UniversalBo | None:
        """
        Rebuild a BO from a flat attribute bag (the output of a row mapper's `to_bo`).

        Returns None when `bag` is None or its `data` is not valid JSON.
        Raises MappingError when a top-level field is missing or has the wrong shape.
        """

        if bag is None:
            return None
        raw_id = bag.get(FIELD_ID)
        if raw_id is None:
            raise MappingError(f"missing required field [{FIELD_ID}]")

        bo = cls._blank(options or UboOptions())
        data_json = _as_data_json(bag.get(FIELD_DATA))
        if data_json:
            try:
                tree = json.loads(data_json)
            except ValueError:
                return None
        else:
            tree = None

        layout = bo._options.time_layout
        try:
            bo._id = to_str(raw_id).strip()
            bo._tag_version = cls._check_tag_version(bag.get(FIELD_TAG_VERSION) or 0)
            tcre = bag.get(FIELD_TIME_CREATED)
            tupd = bag.get(FIELD_TIME_UPDATED)
            bo._time_created = to_time(tcre, layout) if tcre is not None else utc_now()
            bo._time_updated = to_time(tupd, layout) if tupd is not None else bo._time_created
        except ConversionError as e:
            raise MappingError(f"cannot map row with id [{raw_id}]: {e}") from e

        bo._checksum = to_str(bag.get(FIELD_CHECKSUM) or "")
        bo._data_json = data_json or "null"
        bo._tree = tree
        bo._tree_loaded = True
        bo._extras = {
            k: copy.deepcopy(v) for k, v in bag.items() if k not in RESERVED_FIELDS
        }
        bo._dirty = True
        bo.sync()
        return bo

    @classmethod
    def from_json(cls, text: str | bytes, *, options: UboOptions | None = None) -> UniversalBo:
        """Inverse of `to_json`."""

        try:
            payload = json.loads(text)
        except ValueError as e:
            raise MappingError(f"invalid BO JSON: {e}") from e
        if not isinstance(payload, dict):
            raise MappingError("BO JSON must be an object")
        extras = payload.get(FIELD_EXTRAS) or {}
        if not isinstance(extras, dict):
            raise MappingError(f"[{FIELD_EXTRAS}] must be an object")
        bag = {k: v for k, v in extras.items() if k not in RESERVED_FIELDS}
        bag.update({k: payload.get(k) for k in RESERVED_FIELDS})
        bo = cls.from_generic(bag, options=options)
        if bo is None:
            raise MappingError(f"invalid [{FIELD_DATA}] in BO JSON")
        return bo

    # ------------------------------------------------------------------ top-level fields

    @property
    def id(self) -> str:
        return self._id

    def set_id(self, value: str) -> UniversalBo:
        with self._lock.exclusive():
            self._id = value.strip()
            self._dirty = True
        return self

    @property
    def tag_version(self) -> int:
        return self._tag_version

    def set_tag_version(self, value: int) -> UniversalBo:
        checked = self._check_tag_version(value)
        with self._lock.exclusive():
            self._tag_version = checked
            self._dirty = True
        return self

    @property
    def checksum(self) -> str:
        self.sync()
        return self._checksum

    @property
    def time_created(self) -> datetime:
        return self._time_created

    @property
    def time_updated(self) -> datetime:
        return self._time_updated

    def set_time_updated(self, value: datetime) -> UniversalBo:
        # tupd is not a checksum input, so this does not dirty the BO.
        with self._lock.exclusive():
            self._time_updated = round_timestamp(value, self._options.timestamp_rounding)
        return self

    @property
    def options(self) -> UboOptions:
        return self._options

    @property
    def timestamp_rounding(self) -> TimestampRounding:
        return self._options.timestamp_rounding

    def set_timestamp_rounding(self, rounding: TimestampRounding) -> UniversalBo:
        with self._lock.exclusive():
            self._options = replace(self._options, timestamp_rounding=TimestampRounding(rounding))
            self._dirty = True
        return self

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------ data tree

    @property
    def data_json(self) -> str:
        self.sync()
        return self._data_json

    def set_data_json(self, value: str) -> UniversalBo:
        with self._lock.exclusive():
            self._data_json = value.strip()
            self._tree = None
            self._tree_loaded = False
            self._dirty = True
        return self

    @property
    def data(self) -> Any:
        """A deep copy of the decoded data tree (None for an empty tree)."""

        with self._lock.shared():
            return copy.deepcopy(self._load_tree())

    def _load_tree(self, init: _DataInit = _DataInit.NONE) -> Any:
        if not self._tree_loaded:
            self._tree = _decode_lenient(self._data_json)
            self._tree_loaded = True
        if self._tree is None and init is _DataInit.MAP:
            self._tree = {}
        elif self._tree is None and init is _DataInit.LIST:
            self._tree = []
        return self._tree

    def get_data_attr(self, path: str, typ: ValueType | type | None = None) -> Any:
        """Value at `path` in the data tree (None when absent), optionally converted."""

        with self._lock.shared():
            tree = self._load_tree()
            if not isinstance(tree, (dict, list)):
                return None
            value = PathAccessor(tree).get(path)
            if value is MISSING:
                return None
            return convert(copy.deepcopy(value), typ, layout=self._options.time_layout)

    def get_data_attr_as_time(self, path: str, layout: str | None = None) -> datetime | None:
        value = self.get_data_attr(path)
        if value is None:
            return None
        return to_time(value, layout or self._options.time_layout)

    def set_data_attr(self, path: str, value: Any) -> UniversalBo:
        """
        Write `value` at `path`, creating the root/intermediate containers as needed.
        Datetimes are stored as rounded, formatted strings.
        """

        init = _DataInit.LIST if path.strip().startswith("[") else _DataInit.MAP
        with self._lock.exclusive():
            tree = self._load_tree(init)
            if not isinstance(tree, (dict, list)):
                raise PathError(f"cannot set data at path [{path}]: data root is a scalar")
            if isinstance(value, datetime):
                value = normalize_for_storage(
                    value, self._options.timestamp_rounding, self._options.time_layout
                )
            else:
                value = copy.deepcopy(value)
            self._dirty = True
            PathAccessor(tree).set(path, value)
        return self

    # ------------------------------------------------------------------ extras

    def get_extra_attrs(self) -> dict[str, Any]:
        with self._lock.shared():
            return copy.deepcopy(self._extras)

    def get_extra_attr(self, key: str, default: Any = None) -> Any:
        with self._lock.shared():
            return copy.deepcopy(self._extras.get(key, default))

    def get_extra_attr_as(
        self, key: str, typ: ValueType | type | None, *, layout: str | None = None
    ) -> Any:
        return convert(
            self.get_extra_attr(key), typ, layout=layout or self._options.time_layout
        )

    def set_extra_attr(self, key: str, value: Any) -> UniversalBo:
        if key in RESERVED_FIELDS:
            raise MappingError(f"[{key}] is a reserved top-level field name")
        with self._lock.exclusive():
            if isinstance(value, datetime):
                value = round_timestamp(value, self._options.timestamp_rounding)
            else:
                value = copy.deepcopy(value)
            self._extras[key] = value
            self._dirty = True
        return self

    def remove_extra_attr(self, key: str) -> UniversalBo:
        with self._lock.exclusive():
            if key in self._extras:
                del self._extras[key]
                self._dirty = True
        return self

    # ------------------------------------------------------------------ sync / copy

    def sync(
        self, *, update_timestamp: bool = False, update_timestamp_if_checksum_change: bool = False
    ) -> UniversalBo:
        with self._lock.exclusive():
            self._sync_locked(update_timestamp, update_timestamp_if_checksum_change)
        return self

    def _sync_locked(self, update_timestamp: bool, update_timestamp_if_checksum_change: bool) -> None:
        if not self._dirty:
            return
        rounding = self._options.timestamp_rounding
        self._time_created = round_timestamp(self._time_created, rounding)
        self._time_updated = round_timestamp(self._time_updated, rounding)

        previous = self._checksum
        tree = self._load_tree()
        self._checksum = self._compute_checksum(tree)
        if update_timestamp or (update_timestamp_if_checksum_change and previous != self._checksum):
            # tupd is not a checksum input: no recomputation needed.
            self._time_updated = round_timestamp(utc_now(), rounding)

        self._data_json = canonical_json(tree)
        self._dirty = False

    def _compute_checksum(self, tree: Any) -> str:
        return checksum_hex(
            {
                "id": self._id,
                "tver": self._tag_version,
                "tcre": format_time(
                    self._time_created.astimezone(timezone.utc), self._options.time_layout
                ),
                "data": tree,
                "extras": self._extras,
            },
            "md5",
        )

    def _read_synced(self, reader: Callable[[], T]) -> T:
        # Sync, then read under the shared lock; retry if a writer slipped in between.
        while True:
            self.sync()
            with self._lock.shared():
                if not self._dirty:
                    return reader()

    def clone(self) -> UniversalBo:
        """Independent deep copy; not dirty, same options."""

        def _copy() -> UniversalBo:
            other = UniversalBo._blank(self._options)
            other._id = self._id
            other._tag_version = self._tag_version
            other._checksum = self._checksum
            other._data_json = self._data_json
            other._tree_loaded = False
            other._time_created = self._time_created
            other._time_updated = self._time_updated
            other._extras = copy.deepcopy(self._extras)
            return other

        return self._read_synced(_copy)

    def to_generic(self) -> dict[str, Any]:
        """Flat attribute bag: extras plus every top-level field (top-level wins)."""

        def _bag() -> dict[str, Any]:
            bag = copy.deepcopy(self._extras)
            bag.update(
                {
                    FIELD_ID: self._id,
                    FIELD_DATA: self._data_json,
                    FIELD_TAG_VERSION: self._tag_version,
                    FIELD_CHECKSUM: self._checksum,
                    FIELD_TIME_CREATED: self._time_created,
                    FIELD_TIME_UPDATED: self._time_updated,
                }
            )
            return bag

        return self._read_synced(_bag)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form with extras nested under `_ext`."""

        def _dict() -> dict[str, Any]:
            layout = self._options.time_layout
            return {
                FIELD_ID: self._id,
                FIELD_DATA: self._data_json,
                FIELD_TAG_VERSION: self._tag_version,
                FIELD_CHECKSUM: self._checksum,
                FIELD_TIME_CREATED: format_time(self._time_created, layout),
                FIELD_TIME_UPDATED: format_time(self._time_updated, layout),
                FIELD_EXTRAS: copy.deepcopy(self._extras),
            }

        return self._read_synced(_dict)

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    def same_content(self, other: UniversalBo) -> bool:
        """True when both BOs carry the same id and checksummed content."""

        return self.id == other.id and self.checksum == other.checksum

    def __repr__(self) -> str:
        return (
            f"UniversalBo(id={self._id!r}, tag_version={self._tag_version}, "
            f"checksum={self._checksum!r}, dirty={self._dirty})"
        )


# --- Module Notes -----------------------------------------------------------
# Checksum inputs are (id, tver, tcre in UTC, data tree, extras); tupd is excluded so
# re-saving identical content never changes the checksum.
