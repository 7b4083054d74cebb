"""QueryClient - the key-addressed collection cache.

This module provides the cache every entity service reads through:
- fetch_query(): cached fetch with stampede protection and staleness
- get_query_data(), set_query_data(): synchronous copy-on-write access
- snapshot(), restore(): exact save/restore used for optimistic rollback
- cancel_queries(): cancel in-flight reads so they cannot clobber writes
- invalidate_queries(): mark stale and refetch in the background
- collect_garbage(): evict entries nobody has touched for gc_time

A QueryClient is a plain object. Create one per application (or per test)
and pass it to the services that share it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar, cast

from mortgagepro.duration import parse_duration
from mortgagepro.keys import is_key_prefix, serialize_key
from mortgagepro.types import CacheKey, Duration, QueryState, Snapshot

if TYPE_CHECKING:
    from mortgagepro.config import Settings

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class QueryClient:
    """In-process query cache with invalidation and background refetch."""

    def __init__(
        self,
        *,
        default_stale_time: Duration = "0s",
        default_gc_time: Duration = "5m",
        max_queries: int | None = None,
    ) -> None:
        self._default_stale_time = parse_duration(default_stale_time)
        self._default_gc_time = parse_duration(default_gc_time)
        if max_queries is not None and max_queries < 1:
            raise ValueError("max_queries must be at least 1")
        self._max_queries = max_queries
        self._queries: OrderedDict[CacheKey, QueryState[Any]] = OrderedDict()
        self._in_flight: dict[CacheKey, asyncio.Task[Any]] = {}
        self._background_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: Settings, max_queries: int | None = None) -> QueryClient:
        return cls(
            default_stale_time=settings.default_stale_time,
            default_gc_time=settings.default_gc_time,
            max_queries=max_queries,
        )

    # -------------------------------------------------------------------------
    # Reads and writes
    # -------------------------------------------------------------------------

    async def fetch_query(
        self,
        key: CacheKey,
        fn: Callable[[], Awaitable[T]],
        *,
        stale_time: Duration | None = None,
        gc_time: Duration | None = None,
    ) -> T:
        """Return cached data for key, fetching it when missing or stale.

        Args:
            key: Cache key
            fn: Async function that loads the collection
            stale_time: How long loaded data counts as fresh
            gc_time: How long an untouched entry survives garbage collection

        Returns:
            Cached or freshly fetched data
        """
        state = self._ensure_state(key)
        state.fetch_fn = fn
        if stale_time is not None:
            state.stale_time = parse_duration(stale_time)
        if gc_time is not None:
            state.gc_time = parse_duration(gc_time)
        self._touch(key, state)

        if state.has_data and not self._is_stale(state):
            return cast(T, state.data)

        return cast(T, await self._fetch(key))

    def get_query_data(self, key: CacheKey) -> Any | None:
        """Synchronously read the cached data for key."""
        state = self._queries.get(key)
        if state is None:
            return None
        self._touch(key, state)
        return state.data

    def get_query_state(self, key: CacheKey) -> QueryState[Any] | None:
        """Return the full state record for key, if any."""
        return self._queries.get(key)

    def set_query_data(
        self,
        key: CacheKey,
        updater: Any | Callable[[Any | None], Any],
    ) -> Any:
        """Replace the data for key.

        The updater receives the current value and must return a new object;
        cached collections are never mutated in place, which is what makes
        snapshots safe to hold by reference.
        """
        state = self._ensure_state(key)
        new_value = updater(state.data) if callable(updater) else updater
        state.data = new_value
        state.has_data = True
        state.data_updated_at = _now_ms()
        state.is_invalidated = False
        self._touch(key, state)
        return new_value

    def snapshot(self, key: CacheKey) -> Snapshot[Any]:
        """Capture the current value of key for a later exact restore."""
        state = self._queries.get(key)
        if state is None or not state.has_data:
            return Snapshot(key=key, data=None, existed=False)
        return Snapshot(key=key, data=state.data, existed=True)

    def restore(self, snapshot: Snapshot[Any]) -> None:
        """Overwrite the cache entry with a snapshot (no merging)."""
        if snapshot.existed:
            state = self._ensure_state(snapshot.key)
            state.data = snapshot.data
            state.has_data = True
            state.data_updated_at = _now_ms()
            return

        state = self._queries.get(snapshot.key)
        if state is None:
            return
        if state.fetch_fn is None and snapshot.key not in self._in_flight:
            del self._queries[snapshot.key]
            return
        state.data = None
        state.has_data = False
        state.data_updated_at = 0

    # -------------------------------------------------------------------------
    # Cancellation and invalidation
    # -------------------------------------------------------------------------

    def cancel_queries(self, key: CacheKey, *, exact: bool = False) -> int:
        """Cancel in-flight reads for matching keys.

        A cancelled read never writes to the cache; anyone awaiting it gets
        whatever the cache holds at that point. Returns the number of reads
        cancelled.
        """
        cancelled = 0
        for matched in self._match(key, exact=exact, include_in_flight=True):
            task = self._in_flight.pop(matched, None)
            if task is not None and not task.done():
                task.cancel()
                cancelled += 1
                logger.debug("Cancelled in-flight fetch for %s", serialize_key(matched))
        return cancelled

    def invalidate_queries(
        self,
        key: CacheKey,
        *,
        exact: bool = False,
        refetch: bool = True,
    ) -> int:
        """Mark matching entries stale and refetch them in the background.

        By default (exact=False), invalidating ("clients",) also invalidates
        ("clients", "user-1", ...). Returns the number of entries marked.
        """
        matched = self._match(key, exact=exact)
        for matched_key in matched:
            state = self._queries[matched_key]
            state.is_invalidated = True
            state.invalidation_count += 1
            logger.debug("Invalidated %s", serialize_key(matched_key))
            if refetch and state.fetch_fn is not None:
                self._refetch_in_background(matched_key)
        return len(matched)

    def is_stale(self, key: CacheKey) -> bool:
        """Check whether key would be refetched on the next read."""
        state = self._queries.get(key)
        if state is None:
            return True
        return self._is_stale(state)

    def remove_queries(self, key: CacheKey, *, exact: bool = False) -> int:
        """Drop matching entries, cancelling their in-flight reads."""
        matched = self._match(key, exact=exact)
        for matched_key in matched:
            task = self._in_flight.pop(matched_key, None)
            if task is not None:
                task.cancel()
            del self._queries[matched_key]
        return len(matched)

    def clear(self) -> None:
        """Drop every entry."""
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        self._queries.clear()

    def collect_garbage(self, now: int | None = None) -> int:
        """Evict entries untouched for longer than their gc_time."""
        now = _now_ms() if now is None else now
        expired = [
            key
            for key, state in self._queries.items()
            if key not in self._in_flight and now - state.last_accessed_at > state.gc_time
        ]
        for key in expired:
            del self._queries[key]
            logger.debug("Garbage collected %s", serialize_key(key))
        return len(expired)

    async def wait_for_fetches(self) -> None:
        """Wait until all in-flight and background fetches are done."""
        while True:
            pending = [
                t
                for t in (*self._background_tasks, *self._in_flight.values())
                if not t.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def keys(self) -> list[CacheKey]:
        """Return the keys currently held, least recently used first."""
        return list(self._queries.keys())

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _ensure_state(self, key: CacheKey) -> QueryState[Any]:
        state = self._queries.get(key)
        if state is None:
            now = _now_ms()
            state = QueryState(
                data=None,
                data_updated_at=0,
                last_accessed_at=now,
                stale_time=self._default_stale_time,
                gc_time=self._default_gc_time,
            )
            self._queries[key] = state
            self._evict_if_needed()
        return state

    def _touch(self, key: CacheKey, state: QueryState[Any]) -> None:
        state.last_accessed_at = _now_ms()
        if key in self._queries:
            self._queries.move_to_end(key)  # LRU touch

    def _evict_if_needed(self) -> None:
        if not self._max_queries:
            return
        while len(self._queries) > self._max_queries:
            victim = next(
                (k for k in self._queries if k not in self._in_flight),
                None,
            )
            if victim is None:
                return
            del self._queries[victim]

    def _is_stale(self, state: QueryState[Any]) -> bool:
        if state.is_invalidated or not state.has_data:
            return True
        return _now_ms() - state.data_updated_at >= state.stale_time

    def _match(
        self,
        key: CacheKey,
        *,
        exact: bool,
        include_in_flight: bool = False,
    ) -> list[CacheKey]:
        candidates = list(self._queries.keys())
        if include_in_flight:
            candidates.extend(k for k in self._in_flight if k not in self._queries)
        if exact:
            return [k for k in candidates if k == key]
        return [k for k in candidates if is_key_prefix(key, k)]

    async def _fetch(self, key: CacheKey) -> Any:
        """Coalesce concurrent reads for the same key (stampede protection)."""
        task = self._in_flight.get(key)
        if task is None:
            task = self._start_fetch(key)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # The read was cancelled by cancel_queries(); keep the cache
                return self.get_query_data(key)
            raise

    def _start_fetch(self, key: CacheKey) -> asyncio.Task[Any]:
        fn = self._queries[key].fetch_fn
        if fn is None:
            raise RuntimeError(f"No fetch function registered for {serialize_key(key)}")

        async def run() -> Any:
            value = await fn()
            state = self._queries.get(key)
            if state is not None:
                state.data = value
                state.has_data = True
                state.data_updated_at = _now_ms()
                state.is_invalidated = False
            return value

        task = asyncio.create_task(run())
        self._in_flight[key] = task

        def forget(done: asyncio.Task[Any]) -> None:
            if self._in_flight.get(key) is done:
                del self._in_flight[key]

        task.add_done_callback(forget)
        return task

    def _refetch_in_background(self, key: CacheKey) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s refetches on next read", serialize_key(key))
            return

        existing = self._in_flight.pop(key, None)
        if existing is not None and not existing.done():
            existing.cancel()
        task = self._start_fetch(key)

        async def refresh() -> None:
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            except Exception:
                logger.warning(
                    "Background refetch failed for %s", serialize_key(key), exc_info=True
                )

        background = asyncio.create_task(refresh())
        self._background_tasks.add(background)
        background.add_done_callback(self._background_tasks.discard)


__all__ = ["QueryClient"]
