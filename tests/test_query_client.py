"""Tests for the QueryClient cache."""

import asyncio

import pytest

from mortgagepro import QueryClient, make_key

KEY = make_key("clients", "user-1")


def counting_fetch(value):
    calls = {"count": 0}

    async def fetch():
        calls["count"] += 1
        return value

    return fetch, calls


class TestFetchQuery:
    """Tests for fetch_query() with stampede protection."""

    async def test_cache_miss_calls_fn(self, client: QueryClient) -> None:
        fetch, calls = counting_fetch([{"id": "c1"}])
        assert await client.fetch_query(KEY, fetch) == [{"id": "c1"}]
        assert calls["count"] == 1

    async def test_fresh_data_is_served_from_cache(self, client: QueryClient) -> None:
        fetch, calls = counting_fetch([{"id": "c1"}])
        await client.fetch_query(KEY, fetch, stale_time="5m")
        await client.fetch_query(KEY, fetch, stale_time="5m")
        assert calls["count"] == 1

    async def test_stale_data_is_refetched(self) -> None:
        client = QueryClient(default_stale_time=0)
        fetch, calls = counting_fetch([])
        await client.fetch_query(KEY, fetch)
        await client.fetch_query(KEY, fetch)
        assert calls["count"] == 2

    async def test_stampede_protection(self, client: QueryClient) -> None:
        """Concurrent reads share the same fetch."""
        fetch_count = 0

        async def slow_fetch() -> list:
            nonlocal fetch_count
            fetch_count += 1
            await asyncio.sleep(0.05)
            return [{"id": "c1"}]

        results = await asyncio.gather(
            *(client.fetch_query(KEY, slow_fetch) for _ in range(5))
        )
        assert all(r == [{"id": "c1"}] for r in results)
        assert fetch_count == 1

    async def test_fetch_error_propagates_and_caches_nothing(
        self, client: QueryClient
    ) -> None:
        async def failing() -> list:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await client.fetch_query(KEY, failing)
        assert client.get_query_data(KEY) is None


class TestSetAndSnapshot:
    """Tests for synchronous writes and exact restore."""

    def test_set_query_data_with_value(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "c1"}])
        assert client.get_query_data(KEY) == [{"id": "c1"}]

    def test_set_query_data_with_updater(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "c1"}])
        client.set_query_data(KEY, lambda old: [*old, {"id": "c2"}])
        assert [c["id"] for c in client.get_query_data(KEY)] == ["c1", "c2"]

    def test_restore_returns_the_same_object(self, client: QueryClient) -> None:
        original = [{"id": "c1"}]
        client.set_query_data(KEY, original)
        snap = client.snapshot(KEY)
        client.set_query_data(KEY, [])
        client.restore(snap)
        assert client.get_query_data(KEY) is original

    def test_restore_of_missing_entry_removes_it(self, client: QueryClient) -> None:
        snap = client.snapshot(KEY)
        assert snap.existed is False
        client.set_query_data(KEY, [{"id": "temp-1"}])
        client.restore(snap)
        assert client.get_query_data(KEY) is None
        assert KEY not in client.keys()


class TestInvalidation:
    """Tests for invalidate_queries() and background refetch."""

    async def test_prefix_invalidation(self, client: QueryClient) -> None:
        client.set_query_data(make_key("clients", "user-1"), [])
        client.set_query_data(make_key("clients", "user-1", {"status": "active"}), [])
        client.set_query_data(make_key("lenders", "user-1"), [])

        assert client.invalidate_queries(make_key("clients")) == 2
        assert client.is_stale(make_key("clients", "user-1"))
        assert not client.is_stale(make_key("lenders", "user-1"))

    async def test_exact_invalidation(self, client: QueryClient) -> None:
        client.set_query_data(make_key("clients", "user-1"), [])
        client.set_query_data(make_key("clients", "user-1", {"status": "active"}), [])
        assert client.invalidate_queries(make_key("clients", "user-1"), exact=True) == 1

    async def test_invalidation_refetches_in_background(self, client: QueryClient) -> None:
        value = [{"id": "c1"}]

        async def fetch() -> list:
            return list(value)

        await client.fetch_query(KEY, fetch)
        value.append({"id": "c2"})
        client.invalidate_queries(KEY)
        await client.wait_for_fetches()

        assert [c["id"] for c in client.get_query_data(KEY)] == ["c1", "c2"]
        assert not client.is_stale(KEY)

    async def test_invalidation_counts(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [])
        client.invalidate_queries(KEY)
        client.invalidate_queries(KEY)
        assert client.get_query_state(KEY).invalidation_count == 2

    def test_invalidate_without_loop_only_marks_stale(self, client: QueryClient) -> None:
        async def fetch() -> list:
            return []

        state_key = make_key("notes", "user-1")
        client.set_query_data(state_key, [])
        client.get_query_state(state_key).fetch_fn = fetch
        assert client.invalidate_queries(state_key) == 1
        assert client.is_stale(state_key)


class TestCancellation:
    """Tests for cancel_queries()."""

    async def test_cancelled_read_never_writes(self, client: QueryClient) -> None:
        started = asyncio.Event()

        async def slow_fetch() -> list:
            started.set()
            await asyncio.sleep(0.1)
            return [{"id": "stale"}]

        reader = asyncio.create_task(client.fetch_query(KEY, slow_fetch))
        await started.wait()

        assert client.cancel_queries(KEY) == 1
        client.set_query_data(KEY, [{"id": "fresh"}])

        result = await reader
        assert result == [{"id": "fresh"}]
        await asyncio.sleep(0.15)
        assert client.get_query_data(KEY) == [{"id": "fresh"}]

    async def test_cancel_with_nothing_in_flight(self, client: QueryClient) -> None:
        assert client.cancel_queries(KEY) == 0


class TestEviction:
    """Tests for LRU bounds and garbage collection."""

    def test_max_queries_evicts_least_recently_used(self) -> None:
        client = QueryClient(max_queries=2)
        client.set_query_data(make_key("a"), 1)
        client.set_query_data(make_key("b"), 2)
        client.get_query_data(make_key("a"))
        client.set_query_data(make_key("c"), 3)
        assert client.keys() == [make_key("a"), make_key("c")]

    def test_max_queries_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            QueryClient(max_queries=0)

    def test_collect_garbage(self) -> None:
        client = QueryClient(default_gc_time="1s")
        client.set_query_data(KEY, [])
        last_access = client.get_query_state(KEY).last_accessed_at
        assert client.collect_garbage(now=last_access + 500) == 0
        assert client.collect_garbage(now=last_access + 1001) == 1
        assert client.keys() == []

    def test_remove_and_clear(self, client: QueryClient) -> None:
        client.set_query_data(make_key("clients", "u"), [])
        client.set_query_data(make_key("lenders", "u"), [])
        assert client.remove_queries(make_key("clients")) == 1
        client.clear()
        assert client.keys() == []
