"""
unibo.utils.hashing

Deterministic serialization and hashing helpers.

Responsibilities:
- Render arbitrary BO values (trees, extras, timestamps) as canonical JSON.
- Hash canonical JSON with a named hashlib algorithm.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Any

from unibo.bo.timestamps import format_time

__all__ = [
    "canonical_json",
    "checksum_hex",
    "json_default",
    "resolve_hash_function",
]


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for the non-JSON scalars a BO may hold."""

    if isinstance(value, datetime):
        return format_time(value)
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"value of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Compact JSON with sorted keys; equal values always render identically."""

    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=json_default,
    )


def resolve_hash_function(name: str) -> str:
    """Validate a hashlib algorithm name and return its normalized form."""

    normalized = name.strip().lower()
    # Variable-length digests (shake_*) need an explicit length and are not supported.
    if normalized not in hashlib.algorithms_available or normalized.startswith("shake"):
        raise ValueError(f"unknown hash function [{name}]")
    return normalized


def checksum_hex(value: Any, algorithm: str = "md5") -> str:
    """Hex digest of the canonical JSON form of ``value``."""

    digest = hashlib.new(algorithm, canonical_json(value).encode("utf-8"))
    return digest.hexdigest()
