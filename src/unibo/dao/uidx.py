"""
unibo.dao.uidx

Unique-index (UIDX) emulation for the wide-column backend.

Responsibilities:
- Fingerprint a BO for each unique group with two independent hash functions.
- Build DynamoDB `TransactItems` entries as plain data.
- Classify a cancelled transaction: which items failed their condition check.

DynamoDB has no multi-attribute unique constraints. Each unique group gets one row in the
`<table>_uidx` side table keyed by (uname, uhash); conditional puts on that table inside
the same transaction as the main-row write enforce uniqueness.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from unibo.bo.universal import FIELD_ID
from unibo.errors import ConfigurationError
from unibo.utils.hashing import checksum_hex, resolve_hash_function

UIDX_TABLE_SUFFIX: Final = "_uidx"
UIDX_COL_NAME: Final = "uname"
UIDX_COL_HASH: Final = "uhash"

DEFAULT_HASH_FUNCTIONS: Final = ("sha1", "md5")

TX_CANCELLED: Final = "TransactionCanceledException"
CONDITIONAL_CHECK_FAILED: Final = "ConditionalCheckFailed"
CONDITIONAL_CHECK_FAILED_EXCEPTION: Final = "ConditionalCheckFailedException"

_REASONS_IN_MESSAGE = re.compile(r"\[([^\[\]]*)\]\s*$")

_serializer = TypeSerializer()


@dataclass(frozen=True, slots=True)
class Fingerprint:
    uname: str
    uhash: str


def uidx_table_name(table_name: str) -> str:
    return f"{table_name}{UIDX_TABLE_SUFFIX}"


def group_name(group: Sequence[str]) -> str:
    return "|".join(group)


class UidxHasher:
    """Twin-hash fingerprinting: a collision needs both hash functions to collide."""

    def __init__(self, hash_functions: Sequence[str] = DEFAULT_HASH_FUNCTIONS) -> None:
        if len(hash_functions) != 2:
            raise ConfigurationError("exactly two hash functions are required")
        try:
            h1, h2 = (resolve_hash_function(h) for h in hash_functions)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if h1 == h2:
            raise ConfigurationError(f"hash functions must differ, got [{h1}] twice")
        self._h1 = h1
        self._h2 = h2

    @property
    def hash_functions(self) -> tuple[str, str]:
        return self._h1, self._h2

    def fingerprint(self, group: Sequence[str], bag: Mapping[str, Any]) -> Fingerprint:
        h1 = [checksum_hex(bag.get(f), self._h1) for f in group]
        h2 = [checksum_hex(bag.get(f), self._h2) for f in group]
        return Fingerprint(
            group_name(group), f"{checksum_hex(h1, self._h1)}|{checksum_hex(h2, self._h2)}"
        )

    def fingerprints(
        self, groups: Sequence[Sequence[str]], bag: Mapping[str, Any]
    ) -> dict[str, Fingerprint]:
        return {group_name(g): self.fingerprint(g, bag) for g in groups}


def serialize_value(value: Any) -> dict[str, Any]:
    return _serializer.serialize(value)


def serialize_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {k: serialize_value(v) for k, v in item.items()}


def _names(columns: Sequence[str]) -> dict[str, str]:
    return {f"#k{i}": c for i, c in enumerate(columns)}


def not_exists_condition(key_columns: Sequence[str]) -> tuple[str, dict[str, str]]:
    names = _names(key_columns)
    return " AND ".join(f"attribute_not_exists({n})" for n in names), names


def exists_condition(key_columns: Sequence[str]) -> tuple[str, dict[str, str]]:
    names = _names(key_columns)
    return " AND ".join(f"attribute_exists({n})" for n in names), names


def tx_put(
    table: str, item: Mapping[str, Any], condition: tuple[str, dict[str, str]] | None = None
) -> dict[str, Any]:
    put: dict[str, Any] = {"TableName": table, "Item": serialize_item(item)}
    if condition is not None:
        put["ConditionExpression"], put["ExpressionAttributeNames"] = condition
    return {"Put": put}


def tx_delete(
    table: str, key: Mapping[str, Any], condition: tuple[str, dict[str, str]] | None = None
) -> dict[str, Any]:
    delete: dict[str, Any] = {"TableName": table, "Key": serialize_item(key)}
    if condition is not None:
        delete["ConditionExpression"], delete["ExpressionAttributeNames"] = condition
    return {"Delete": delete}


def uidx_key(fp: Fingerprint) -> dict[str, str]:
    return {UIDX_COL_NAME: fp.uname, UIDX_COL_HASH: fp.uhash}


def uidx_row(fp: Fingerprint, id: str, pk: Mapping[str, Any]) -> dict[str, Any]:
    return {**pk, **uidx_key(fp), FIELD_ID: id}


def tx_put_uidx(table: str, fp: Fingerprint, id: str, pk: Mapping[str, Any]) -> dict[str, Any]:
    return tx_put(
        table, uidx_row(fp, id, pk), not_exists_condition([UIDX_COL_NAME, UIDX_COL_HASH])
    )


def tx_delete_uidx(table: str, fp: Fingerprint) -> dict[str, Any]:
    return tx_delete(table, uidx_key(fp))


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _cancellation_codes(error: ClientError) -> list[str | None]:
    reasons = error.response.get("CancellationReasons")
    if reasons:
        return [r.get("Code") for r in reasons]
    # Older botocore releases only expose the reasons inside the message.
    m = _REASONS_IN_MESSAGE.search(error.response.get("Error", {}).get("Message", ""))
    if m is None:
        return []
    return [None if c.strip() == "None" else c.strip() for c in m.group(1).split(",")]


def failed_conditions(error: ClientError) -> frozenset[int]:
    """
    Indices of the transaction items whose condition check failed.

    Empty when `error` is not a cancellation caused by condition checks; callers then
    re-raise it unchanged.
    """

    code = error_code(error)
    if code == CONDITIONAL_CHECK_FAILED_EXCEPTION:
        # Single-item (non-transactional) conditional write.
        return frozenset({0})
    if code != TX_CANCELLED:
        return frozenset()
    return frozenset(
        i for i, c in enumerate(_cancellation_codes(error)) if c == CONDITIONAL_CHECK_FAILED
    )


# --- Module Notes -----------------------------------------------------------
# Fingerprints are computed on the generic bag after the partition-key value has been
# filled in, so groups may include the partition-key attribute itself.
