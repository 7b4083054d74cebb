"""Optimistic mutations over cached collections.

A mutation wraps one remote write with a speculative cache update:

1. begin: cancel in-flight reads of the key, snapshot it, write the
   speculative value (all synchronous, so atomic on the event loop)
2. await the remote write (the only suspension point)
3. on failure restore the snapshot exactly, then call on_error
4. always invalidate the key, or the broader invalidate_key prefix when one
   is given, so a refetch becomes the source of truth

Each call to mutate() is an independent invocation with its own snapshot.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, Literal, TypeVar

from mortgagepro.keys import serialize_key
from mortgagepro.query_client import QueryClient
from mortgagepro.types import CacheKey, MutationContext, MutationStatus

T = TypeVar("T")
V = TypeVar("V")
ItemT = TypeVar("ItemT")

ConflictPolicy = Literal["overwrite", "compare"]

logger = logging.getLogger(__name__)


async def _call_hook(hook: Callable[..., Any] | None, *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class OptimisticMutation(Generic[T, V]):
    """A remote write with speculative cache update and exact rollback."""

    def __init__(
        self,
        client: QueryClient,
        mutation_fn: Callable[[V], Awaitable[T]],
        cache_key: CacheKey,
        update_fn: Callable[[Any, V], Any] | None = None,
        *,
        on_success: Callable[[T, V, MutationContext[Any]], Any] | None = None,
        on_error: Callable[[BaseException, V, MutationContext[Any]], Any] | None = None,
        on_settled: Callable[[], Any] | None = None,
        conflict_policy: ConflictPolicy = "overwrite",
        invalidate_key: CacheKey | None = None,
    ) -> None:
        if conflict_policy not in ("overwrite", "compare"):
            raise ValueError(f"Unknown conflict policy: {conflict_policy!r}")
        self._client = client
        self._mutation_fn = mutation_fn
        self._cache_key = cache_key
        self._invalidate_key = cache_key if invalidate_key is None else invalidate_key
        self._update_fn = update_fn
        self._on_success = on_success
        self._on_error = on_error
        self._on_settled = on_settled
        self._conflict_policy = conflict_policy
        self._pending = 0
        self._tasks: set[asyncio.Task[T | None]] = set()
        self.status = MutationStatus.IDLE
        self.data: T | None = None
        self.error: BaseException | None = None

    @property
    def cache_key(self) -> CacheKey:
        return self._cache_key

    @property
    def invalidate_key(self) -> CacheKey:
        """Prefix marked stale when an invocation settles."""
        return self._invalidate_key

    @property
    def is_pending(self) -> bool:
        """True while any invocation is waiting on the remote write."""
        return self._pending > 0

    def mutate(self, variables: V) -> asyncio.Task[T | None]:
        """Fire and forget. Failures are reported only through on_error."""

        async def run() -> T | None:
            try:
                return await self.mutate_async(variables)
            except Exception:
                logger.debug(
                    "Mutation on %s failed", serialize_key(self._cache_key), exc_info=True
                )
                return None

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def mutate_async(self, variables: V) -> T:
        """Run one invocation and return the remote result (or raise)."""
        context = self._begin(variables)
        self.status = MutationStatus.PENDING
        self.error = None
        self._pending += 1
        try:
            try:
                data = await self._mutation_fn(variables)
            except Exception as exc:
                self.status = MutationStatus.FAILED
                self.error = exc
                self._rollback(context)
                await _call_hook(self._on_error, exc, variables, context)
                raise

            self.status = MutationStatus.SUCCEEDED
            self.data = data
            await _call_hook(self._on_success, data, variables, context)
            return data
        finally:
            self._pending -= 1
            self._client.invalidate_queries(self._invalidate_key)
            await _call_hook(self._on_settled)
            self.status = MutationStatus.SETTLED

    async def wait(self) -> None:
        """Wait for every fire-and-forget invocation to settle."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _begin(self, variables: V) -> MutationContext[Any]:
        self._client.cancel_queries(self._cache_key)
        snapshot = self._client.snapshot(self._cache_key)
        context: MutationContext[Any] = MutationContext(
            snapshot=snapshot, variables=variables
        )
        if self._update_fn is not None:
            update_fn = self._update_fn
            context.speculative = self._client.set_query_data(
                self._cache_key, lambda old: update_fn(old, variables)
            )
        return context

    def _rollback(self, context: MutationContext[Any]) -> None:
        if self._update_fn is None:
            return
        if self._conflict_policy == "compare":
            current = self._client.get_query_data(self._cache_key)
            if current is not context.speculative:
                logger.debug(
                    "Skipping rollback of %s; a newer write owns the cache",
                    serialize_key(self._cache_key),
                )
                return
        self._client.restore(context.snapshot)


class OptimisticListMutation(OptimisticMutation[ItemT, V]):
    """Optimistic mutation over a list of items.

    Exactly one transform applies per call site:
    - add_item(variables) -> item, prepended
    - update_item(item, variables) -> item, applied where find_item matches
    - remove_item(variables) -> bool, items filtered out (only those matching
      find_item when one is given, otherwise every item)
    """

    def __init__(
        self,
        client: QueryClient,
        mutation_fn: Callable[[V], Awaitable[ItemT]],
        cache_key: CacheKey,
        *,
        add_item: Callable[[V], ItemT] | None = None,
        update_item: Callable[[ItemT, V], ItemT] | None = None,
        find_item: Callable[[ItemT, V], bool] | None = None,
        remove_item: Callable[[V], bool] | None = None,
        on_success: Callable[[ItemT, V, MutationContext[Any]], Any] | None = None,
        on_error: Callable[[BaseException, V, MutationContext[Any]], Any] | None = None,
        on_settled: Callable[[], Any] | None = None,
        conflict_policy: ConflictPolicy = "overwrite",
        invalidate_key: CacheKey | None = None,
    ) -> None:
        if update_item is not None and find_item is None:
            raise ValueError("update_item requires find_item")
        self._add_item = add_item
        self._update_item = update_item
        self._find_item = find_item
        self._remove_item = remove_item
        super().__init__(
            client,
            mutation_fn,
            cache_key,
            self._transform,
            on_success=on_success,
            on_error=on_error,
            on_settled=on_settled,
            conflict_policy=conflict_policy,
            invalidate_key=invalidate_key,
        )

    def _transform(self, old: list[ItemT] | None, variables: V) -> list[ItemT]:
        items = list(old) if old else []
        if self._add_item is not None:
            return [self._add_item(variables), *items]
        if self._update_item is not None and self._find_item is not None:
            update_item, find_item = self._update_item, self._find_item
            return [
                update_item(item, variables) if find_item(item, variables) else item
                for item in items
            ]
        if self._remove_item is not None:
            if not self._remove_item(variables):
                return items
            if self._find_item is None:
                return []
            find_item = self._find_item
            return [item for item in items if not find_item(item, variables)]
        return items


def create_optimistic_mutation(
    client: QueryClient,
    mutation_fn: Callable[[V], Awaitable[T]],
    cache_key: CacheKey,
    update_fn: Callable[[Any, V], Any],
    **options: Any,
) -> OptimisticMutation[T, V]:
    """Create a mutation that speculatively writes update_fn(old, variables).

    Args:
        client: Query cache holding cache_key
        mutation_fn: The authoritative remote write
        cache_key: Key of the cached value to update
        update_fn: Builds the speculative value from the cached one
        **options: on_success, on_error, on_settled, conflict_policy,
            invalidate_key

    Returns:
        OptimisticMutation with mutate(), mutate_async() and is_pending
    """
    return OptimisticMutation(client, mutation_fn, cache_key, update_fn, **options)


def create_list_mutation(
    client: QueryClient,
    mutation_fn: Callable[[V], Awaitable[ItemT]],
    cache_key: CacheKey,
    **options: Any,
) -> OptimisticListMutation[ItemT, V]:
    """Create an optimistic mutation over a cached list.

    Options are add_item, update_item + find_item, remove_item (optionally
    with find_item), on_success, on_error, on_settled, conflict_policy and
    invalidate_key.
    """
    return OptimisticListMutation(client, mutation_fn, cache_key, **options)


__all__ = [
    "OptimisticListMutation",
    "OptimisticMutation",
    "create_list_mutation",
    "create_optimistic_mutation",
]
