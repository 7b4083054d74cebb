"""Core types for the mortgagepro query cache and mutation controller."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    NewType,
    TypeVar,
)

T = TypeVar("T")

# Branded key type - compile-time enforcement only
if TYPE_CHECKING:
    CacheKey = NewType("CacheKey", tuple[Any, ...])
else:
    CacheKey = tuple

Row = dict[str, Any]


class MutationStatus(str, Enum):
    """Lifecycle of a single mutation invocation."""

    IDLE = "idle"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SETTLED = "settled"


@dataclass
class QueryState(Generic[T]):
    """A cached collection with freshness metadata."""

    data: T | None
    data_updated_at: int  # Unix timestamp ms, 0 if never loaded
    last_accessed_at: int
    stale_time: int  # ms
    gc_time: int  # ms
    is_invalidated: bool = False
    invalidation_count: int = 0
    fetch_fn: Callable[[], Awaitable[T]] | None = None
    has_data: bool = False


@dataclass(frozen=True, slots=True)
class Snapshot(Generic[T]):
    """Cache entry captured when a mutation begins.

    data is the cached object itself, held by reference. It stays valid
    because updates always replace cached values instead of mutating them.
    """

    key: CacheKey
    data: T | None
    existed: bool


@dataclass(slots=True)
class MutationContext(Generic[T]):
    """Context handed to mutation hooks."""

    snapshot: Snapshot[T]
    speculative: T | None = None
    variables: Any = None


@dataclass(frozen=True, slots=True)
class Session:
    """The signed-in user on whose behalf services act."""

    user_id: str
    email: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


# Duration type alias
Duration = str | int  # "30s", "5m", "2h", "1d" or milliseconds
