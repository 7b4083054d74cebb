"""Cache key construction and matching."""

from collections.abc import Mapping
from typing import Any

from mortgagepro.types import CacheKey


def _freeze(value: Any) -> Any:
    """Turn filter values into hashable, order-stable equivalents."""
    if isinstance(value, Mapping):
        return tuple(
            sorted(
                ((str(k), _freeze(v)) for k, v in value.items() if v is not None),
                key=lambda pair: pair[0],
            )
        )
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return tuple(sorted((_freeze(v) for v in value), key=repr))
    return value


def make_key(*parts: Any) -> CacheKey:
    """
    Build a cache key from an entity name and filter parts.

    Example:
        make_key("clients")                       # ("clients",)
        make_key("todos", "u1", {"status": "pending"})
        # ("todos", "u1", (("status", "pending"),))
    """
    if not parts:
        raise ValueError("A cache key needs at least one part")
    return CacheKey(tuple(_freeze(p) for p in parts))


def is_key_prefix(prefix: CacheKey, key: CacheKey) -> bool:
    """Check if prefix is a prefix of key (for non-exact invalidation)."""
    if len(prefix) > len(key):
        return False
    return key[: len(prefix)] == prefix


def serialize_key(key: CacheKey) -> str:
    """Render a key for log lines."""

    def render(part: Any) -> str:
        if isinstance(part, tuple):
            return "(" + ",".join(render(p) for p in part) + ")"
        return str(part).replace(":", "\\:")

    return ":".join(render(p) for p in key)
