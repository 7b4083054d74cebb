"""Tests for optimistic mutations."""

import asyncio

import pytest

from mortgagepro import (
    MutationStatus,
    OptimisticListMutation,
    QueryClient,
    create_list_mutation,
    create_optimistic_mutation,
    make_key,
)

KEY = make_key("loans", "user-1")


def merge(item: dict, changes: dict) -> dict:
    return {**item, **changes}


def same_id(item: dict, changes: dict) -> bool:
    return item["id"] == changes["id"]


class Gate:
    """A remote write that waits until the test releases it."""

    def __init__(self, result=None, error: BaseException | None = None) -> None:
        self.released = asyncio.Event()
        self.started = asyncio.Event()
        self.result = result
        self.error = error
        self.calls: list = []

    async def __call__(self, variables):
        self.calls.append(variables)
        self.started.set()
        await self.released.wait()
        if self.error is not None:
            raise self.error
        return self.result if self.result is not None else variables


def update_mutation(client: QueryClient, fn, **options) -> OptimisticListMutation:
    return create_list_mutation(
        client, fn, KEY, update_item=merge, find_item=same_id, **options
    )


class TestSpeculativeWrite:
    """Tests for the begin step."""

    async def test_update_is_visible_before_remote_write_finishes(
        self, client: QueryClient
    ) -> None:
        client.set_query_data(KEY, [{"id": "a", "status": "pending"}])
        gate = Gate()
        mutation = update_mutation(client, gate)

        task = asyncio.create_task(mutation.mutate_async({"id": "a", "status": "approved"}))
        await gate.started.wait()

        assert client.get_query_data(KEY) == [{"id": "a", "status": "approved"}]
        assert mutation.is_pending
        assert mutation.status is MutationStatus.PENDING

        gate.released.set()
        await task
        assert not mutation.is_pending
        assert mutation.status is MutationStatus.SETTLED

    async def test_add_item_prepends(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a"}])
        gate = Gate()
        mutation = create_list_mutation(
            client, gate, KEY, add_item=lambda values: {"id": "temp-1", **values}
        )

        task = asyncio.create_task(mutation.mutate_async({"loan_number": "L-1"}))
        await gate.started.wait()
        assert [item["id"] for item in client.get_query_data(KEY)] == ["temp-1", "a"]

        gate.released.set()
        await task

    async def test_add_item_on_empty_cache(self, client: QueryClient) -> None:
        mutation = create_list_mutation(
            client, Gate(), KEY, add_item=lambda values: {"id": "temp-1"}
        )
        mutation._begin({})
        assert client.get_query_data(KEY) == [{"id": "temp-1"}]

    async def test_remove_item_with_find_item_is_targeted(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a"}, {"id": "b"}])
        mutation = create_list_mutation(
            client,
            Gate(),
            KEY,
            remove_item=lambda loan_id: True,
            find_item=lambda item, loan_id: item["id"] == loan_id,
        )
        mutation._begin("a")
        assert client.get_query_data(KEY) == [{"id": "b"}]

    async def test_remove_item_without_find_item_clears_list(
        self, client: QueryClient
    ) -> None:
        client.set_query_data(KEY, [{"id": "a"}, {"id": "b"}])
        mutation = create_list_mutation(client, Gate(), KEY, remove_item=lambda v: True)
        mutation._begin("a")
        assert client.get_query_data(KEY) == []

    async def test_remove_item_false_keeps_items(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a"}])
        mutation = create_list_mutation(client, Gate(), KEY, remove_item=lambda v: False)
        mutation._begin("a")
        assert client.get_query_data(KEY) == [{"id": "a"}]

    async def test_non_matching_items_keep_identity(self, client: QueryClient) -> None:
        a, b = {"id": "a", "status": "pending"}, {"id": "b", "status": "pending"}
        client.set_query_data(KEY, [a, b])
        mutation = update_mutation(client, Gate())

        mutation._begin({"id": "a", "status": "approved"})

        current = client.get_query_data(KEY)
        assert current[1] is b
        assert current[0] is not a
        assert a == {"id": "a", "status": "pending"}

    async def test_begin_cancels_in_flight_reads(self, client: QueryClient) -> None:
        started = asyncio.Event()

        async def slow_fetch() -> list:
            started.set()
            await asyncio.sleep(0.1)
            return [{"id": "a", "status": "pending"}]

        client.set_query_data(KEY, [{"id": "a", "status": "pending"}])
        client.invalidate_queries(KEY)
        reader = asyncio.create_task(client.fetch_query(KEY, slow_fetch))
        await started.wait()

        gate = Gate()
        mutation = update_mutation(client, gate)
        task = asyncio.create_task(mutation.mutate_async({"id": "a", "status": "approved"}))
        await gate.started.wait()

        await reader
        assert client.get_query_data(KEY) == [{"id": "a", "status": "approved"}]
        gate.released.set()
        await task

    def test_update_item_requires_find_item(self, client: QueryClient) -> None:
        with pytest.raises(ValueError, match="find_item"):
            create_list_mutation(client, Gate(), KEY, update_item=merge)

    def test_unknown_conflict_policy(self, client: QueryClient) -> None:
        with pytest.raises(ValueError, match="conflict policy"):
            create_list_mutation(client, Gate(), KEY, conflict_policy="merge")


class TestRollback:
    """Tests for failure handling."""

    async def test_failed_update_restores_exact_snapshot(self, client: QueryClient) -> None:
        """[a, b] updated to a.status=approved, then the write fails."""
        original = [{"id": "a", "status": "pending"}, {"id": "b", "status": "pending"}]
        client.set_query_data(KEY, original)
        invalidations_before = client.get_query_state(KEY).invalidation_count
        errors = []
        gate = Gate(error=RuntimeError("network down"))
        gate.released.set()

        mutation = update_mutation(
            client,
            gate,
            on_error=lambda error, variables, context: errors.append(error),
        )

        with pytest.raises(RuntimeError, match="network down"):
            await mutation.mutate_async({"id": "a", "status": "approved"})

        assert client.get_query_data(KEY) is original
        assert len(errors) == 1
        assert mutation.error is errors[0]
        state = client.get_query_state(KEY)
        assert state.invalidation_count == invalidations_before + 1

    async def test_rollback_happens_before_on_error(self, client: QueryClient) -> None:
        original = [{"id": "a"}]
        client.set_query_data(KEY, original)
        seen = []

        async def failing(variables):
            raise RuntimeError("nope")

        mutation = update_mutation(
            client,
            failing,
            on_error=lambda e, v, c: seen.append(client.get_query_data(KEY)),
        )
        with pytest.raises(RuntimeError):
            await mutation.mutate_async({"id": "a", "status": "x"})
        assert seen == [original]

    async def test_failed_add_on_empty_cache_removes_entry(self, client: QueryClient) -> None:
        async def failing(variables):
            raise RuntimeError("nope")

        mutation = create_list_mutation(client, failing, KEY, add_item=lambda v: {"id": "t"})
        with pytest.raises(RuntimeError):
            await mutation.mutate_async({})
        assert client.get_query_data(KEY) is None

    async def test_failed_add_on_populated_list_restores_exact_snapshot(
        self, client: QueryClient
    ) -> None:
        original = [{"id": "a"}, {"id": "b"}]
        client.set_query_data(KEY, original)
        gate = Gate(error=RuntimeError("insert rejected"))
        mutation = create_list_mutation(
            client, gate, KEY, add_item=lambda v: {"id": "temp-1", **v}
        )

        task = asyncio.create_task(mutation.mutate_async({"name": "new"}))
        await gate.started.wait()
        assert [row["id"] for row in client.get_query_data(KEY)] == ["temp-1", "a", "b"]

        gate.released.set()
        with pytest.raises(RuntimeError, match="insert rejected"):
            await task
        assert client.get_query_data(KEY) is original

    async def test_failed_remove_restores_exact_snapshot(self, client: QueryClient) -> None:
        original = [{"id": "a"}, {"id": "b"}]
        client.set_query_data(KEY, original)
        gate = Gate(error=RuntimeError("delete rejected"))
        mutation = create_list_mutation(
            client,
            gate,
            KEY,
            remove_item=lambda entity_id: True,
            find_item=lambda item, entity_id: item["id"] == entity_id,
        )

        task = asyncio.create_task(mutation.mutate_async("a"))
        await gate.started.wait()
        assert client.get_query_data(KEY) == [{"id": "b"}]

        gate.released.set()
        with pytest.raises(RuntimeError, match="delete rejected"):
            await task
        assert client.get_query_data(KEY) is original

    async def test_mutate_fire_and_forget_swallows(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a"}])
        errors = []

        async def failing(variables):
            raise RuntimeError("nope")

        mutation = update_mutation(
            client, failing, on_error=lambda e, v, c: errors.append(e)
        )
        task = mutation.mutate({"id": "a", "status": "x"})
        assert await task is None
        assert len(errors) == 1
        await mutation.wait()


class TestSettle:
    """Tests for the settle step."""

    async def test_success_invalidates_once_and_calls_hooks(
        self, client: QueryClient
    ) -> None:
        client.set_query_data(KEY, [{"id": "a"}])
        events = []

        async def write(variables):
            return {"id": "a", "status": "approved"}

        mutation = update_mutation(
            client,
            write,
            on_success=lambda data, variables, context: events.append(("success", data)),
            on_settled=lambda: events.append(("settled", client.is_stale(KEY))),
        )
        result = await mutation.mutate_async({"id": "a", "status": "approved"})

        assert result == {"id": "a", "status": "approved"}
        assert mutation.data == result
        assert events == [("success", result), ("settled", True)]
        assert client.get_query_state(KEY).invalidation_count == 1

    async def test_invalidate_key_widens_settle(self, client: QueryClient) -> None:
        filtered = make_key("loans", "user-1", {"client_id": "c1"})
        other = make_key("loans", "user-1", {"client_id": "c2"})
        for key in (KEY, filtered, other):
            client.set_query_data(key, [{"id": "a", "status": "pending"}])

        async def write(variables):
            return variables

        mutation = create_list_mutation(
            client,
            write,
            filtered,
            update_item=merge,
            find_item=same_id,
            invalidate_key=KEY,
        )
        assert mutation.cache_key == filtered
        assert mutation.invalidate_key == KEY

        await mutation.mutate_async({"id": "a", "status": "approved"})

        assert all(client.is_stale(key) for key in (KEY, filtered, other))
        assert client.get_query_data(filtered) == [{"id": "a", "status": "approved"}]
        assert client.get_query_data(KEY) == [{"id": "a", "status": "pending"}]

    async def test_async_hooks_are_awaited(self, client: QueryClient) -> None:
        done = []

        async def on_settled() -> None:
            await asyncio.sleep(0)
            done.append(True)

        async def write(variables):
            return variables

        mutation = create_optimistic_mutation(
            client, write, KEY, lambda old, v: v, on_settled=on_settled
        )
        await mutation.mutate_async({"count": 1})
        assert done == [True]

    async def test_settle_refetch_becomes_source_of_truth(
        self, client: QueryClient
    ) -> None:
        server = [{"id": "a", "status": "pending"}]

        async def fetch() -> list:
            return [dict(row) for row in server]

        async def write(variables):
            server[0] = {**server[0], "status": "approved", "updated_by": "server"}
            return server[0]

        await client.fetch_query(KEY, fetch)
        mutation = update_mutation(client, write)
        await mutation.mutate_async({"id": "a", "status": "approved"})
        await client.wait_for_fetches()

        assert client.get_query_data(KEY) == [
            {"id": "a", "status": "approved", "updated_by": "server"}
        ]


class TestConcurrentInvocations:
    """Tests for overlapping invocations on the same key."""

    async def test_no_double_apply(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a", "n": 0}, {"id": "b", "n": 0}])
        first, second = Gate(), Gate()

        m1 = update_mutation(client, first)
        m2 = update_mutation(client, second)
        t1 = asyncio.create_task(m1.mutate_async({"id": "a", "n": 1}))
        t2 = asyncio.create_task(m2.mutate_async({"id": "b", "n": 2}))
        await first.started.wait()
        await second.started.wait()

        assert client.get_query_data(KEY) == [{"id": "a", "n": 1}, {"id": "b", "n": 2}]
        first.released.set()
        second.released.set()
        await asyncio.gather(t1, t2)

    async def test_overwrite_policy_is_last_writer_wins(self, client: QueryClient) -> None:
        """Rollback of an older invocation overwrites a newer speculative write."""
        original = [{"id": "a", "n": 0}]
        client.set_query_data(KEY, original)
        older = Gate(error=RuntimeError("fail"))
        newer = Gate()

        m1 = update_mutation(client, older)
        m2 = update_mutation(client, newer)
        t1 = asyncio.create_task(m1.mutate_async({"id": "a", "n": 1}))
        await older.started.wait()
        t2 = asyncio.create_task(m2.mutate_async({"id": "a", "n": 2}))
        await newer.started.wait()

        older.released.set()
        with pytest.raises(RuntimeError):
            await t1
        assert client.get_query_data(KEY) is original

        newer.released.set()
        await t2

    async def test_compare_policy_keeps_newer_write(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a", "n": 0}])
        older = Gate(error=RuntimeError("fail"))
        newer = Gate()

        m1 = update_mutation(client, older, conflict_policy="compare")
        m2 = update_mutation(client, newer, conflict_policy="compare")
        t1 = asyncio.create_task(m1.mutate_async({"id": "a", "n": 1}))
        await older.started.wait()
        t2 = asyncio.create_task(m2.mutate_async({"id": "a", "n": 2}))
        await newer.started.wait()

        older.released.set()
        with pytest.raises(RuntimeError):
            await t1
        assert client.get_query_data(KEY) == [{"id": "a", "n": 2}]

        newer.released.set()
        await t2

    async def test_same_mutation_tracks_each_invocation(self, client: QueryClient) -> None:
        client.set_query_data(KEY, [{"id": "a"}, {"id": "b"}])
        gate = Gate()
        mutation = update_mutation(client, gate)

        t1 = asyncio.create_task(mutation.mutate_async({"id": "a", "x": 1}))
        t2 = asyncio.create_task(mutation.mutate_async({"id": "b", "x": 2}))
        await asyncio.sleep(0)
        assert len(gate.calls) == 2
        assert mutation.is_pending

        gate.released.set()
        await asyncio.gather(t1, t2)
        assert not mutation.is_pending
