"""
unibo.bo.path

Hierarchical access to a decoded JSON tree.

Responsibilities:
- Parse dotted paths with array indices (`a.b[2].c`, `[0].name`, `m[1][0]`).
- Read values, optionally converted to a target type.
- Write values, creating intermediate maps/lists and growing lists as required.
"""

from __future__ import annotations

import re
from typing import Any, Final

from unibo.bo.convert import ValueType, convert
from unibo.bo.timestamps import RFC3339
from unibo.errors import PathError

PathToken = str | int

_SEGMENT_RE: Final = re.compile(r"^(?P<key>[^\[\]]*)(?P<idx>(?:\[\d+\])*)$")
_INDEX_RE: Final = re.compile(r"\[(\d+)\]")


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


def parse_path(path: str) -> list[PathToken]:
    if not path or not path.strip():
        raise PathError("empty path")
    tokens: list[PathToken] = []
    for i, segment in enumerate(path.strip().split(".")):
        m = _SEGMENT_RE.match(segment)
        if m is None:
            raise PathError(f"invalid segment [{segment}] in path [{path}]")
        key, idx = m.group("key"), m.group("idx")
        if key:
            tokens.append(key)
        elif not idx or i > 0:
            # Only the root segment may start directly with an index.
            raise PathError(f"empty segment in path [{path}]")
        tokens.extend(int(n) for n in _INDEX_RE.findall(idx))
    return tokens


class PathAccessor:
    """Get/set over a mutable tree of dicts and lists; the root must be a container."""

    def __init__(self, tree: dict[str, Any] | list[Any]) -> None:
        if not isinstance(tree, (dict, list)):
            raise PathError(f"cannot access paths in a {type(tree).__name__} root")
        self._tree = tree

    def get(self, path: str) -> Any:
        """Value at `path`, or `MISSING` when any segment does not resolve."""

        node: Any = self._tree
        for token in parse_path(path):
            if isinstance(token, int):
                if not isinstance(node, list) or token >= len(node):
                    return MISSING
                node = node[token]
            else:
                if not isinstance(node, dict) or token not in node:
                    return MISSING
                node = node[token]
        return node

    def get_as(self, path: str, typ: ValueType | type | None, *, layout: str = RFC3339) -> Any:
        value = self.get(path)
        if value is MISSING:
            return None
        return convert(value, typ, layout=layout)

    def set(self, path: str, value: Any) -> None:
        tokens = parse_path(path)
        node: Any = self._tree
        for i, token in enumerate(tokens[:-1]):
            following = tokens[i + 1]
            child = self._child(node, token, path)
            if child is None:
                child = [] if isinstance(following, int) else {}
                self._assign(node, token, child, path)
            elif not isinstance(child, (dict, list)):
                raise PathError(f"cannot descend into scalar at [{token}] of path [{path}]")
            node = child
        self._assign(node, tokens[-1], value, path)

    @staticmethod
    def _child(node: Any, token: PathToken, path: str) -> Any:
        if isinstance(token, int):
            if not isinstance(node, list):
                raise PathError(f"index [{token}] applied to a map in path [{path}]")
            return node[token] if token < len(node) else None
        if not isinstance(node, dict):
            raise PathError(f"key [{token}] applied to a list in path [{path}]")
        return node.get(token)

    @staticmethod
    def _assign(node: Any, token: PathToken, value: Any, path: str) -> None:
        if isinstance(token, int):
            if not isinstance(node, list):
                raise PathError(f"index [{token}] applied to a map in path [{path}]")
            if token >= len(node):
                node.extend([None] * (token + 1 - len(node)))
            node[token] = value
            return
        if not isinstance(node, dict):
            raise PathError(f"key [{token}] applied to a list in path [{path}]")
        node[token] = value


# --- Module Notes -----------------------------------------------------------
# Timestamp normalization is not done here; `UniversalBo.set_data_attr` normalizes
# before delegating, so the accessor stays a pure tree walker.
