import asyncio
from typing import Any, Awaitable, Callable

import pytest

from async_refetch.client import RefetchClient
from async_refetch.models import Status
from async_refetch.persistence import MemoryKeyValueStore


class Recorder:
    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        await asyncio.sleep(0)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.mark.asyncio
async def test_update_queries_seed_targets_without_running_them(client: RefetchClient) -> None:
    b_op = Recorder("b-own")
    client.query("B", b_op)
    a = client.query("A", Recorder({"x": 1}), update_queries=["B"])

    await a.execute()

    b = client.state("B")
    assert b.data == {"x": 1}
    assert b.status is Status.SUCCESS
    assert b.is_fetched is True
    assert b_op.calls == 0


@pytest.mark.asyncio
async def test_update_creates_unknown_target_lazily(client: RefetchClient) -> None:
    a = client.query("A", Recorder(5), update_queries=["fresh"])
    assert "fresh" not in client

    await a.execute()

    assert client.state("fresh").data == 5


@pytest.mark.asyncio
async def test_invalidate_queries_force_next_trigger(client: RefetchClient) -> None:
    b_op = Recorder("b")
    b = client.query("B", b_op, revalidation=True, revalidate_time=600.0)
    await b.execute()
    # Window not elapsed: trigger is served from cache
    assert (await b.trigger()).executed is False
    assert b_op.calls == 1

    a = client.query("A", Recorder("a"), invalidate_queries=["B"])
    await a.execute()

    assert client.state("B").is_invalidated is True
    # Invalidation alone does not execute anything
    assert b_op.calls == 1

    settlement = await b.trigger()
    assert settlement.executed is True
    assert b_op.calls == 2
    assert client.state("B").is_invalidated is False


@pytest.mark.asyncio
async def test_invalidation_does_not_reset_error_count(client: RefetchClient) -> None:
    b = client.query("B", Recorder(RuntimeError("down")))
    await b.execute()
    a = client.query("A", Recorder("a"), invalidate_queries=["B"])
    await a.execute()
    assert client.state("B").error_count == 1


@pytest.mark.asyncio
async def test_failure_propagates_nothing(client: RefetchClient) -> None:
    client.query("B", Recorder("b"))
    a = client.query(
        "A", Recorder(RuntimeError("no")), update_queries=["B"], invalidate_queries=["B"]
    )
    await a.execute()
    b = client.state("B")
    assert b.data is None
    assert b.is_invalidated is False


@pytest.mark.asyncio
async def test_propagation_is_one_level_deep(client: RefetchClient) -> None:
    client.query("B", Recorder("b"), update_queries=["C"], invalidate_queries=["D"])
    client.query("C", Recorder("c"))
    client.query("D", Recorder("d"))
    a = client.query("A", Recorder("a"), update_queries=["B"])

    await a.execute()

    assert client.state("B").data == "a"
    assert client.state("C").data is None
    assert client.state("D").is_invalidated is False


@pytest.mark.asyncio
async def test_cyclic_configuration_terminates(client: RefetchClient) -> None:
    a_op = Recorder("from-a")
    b_op = Recorder("from-b")
    a = client.query("A", a_op, update_queries=["B"])
    b = client.query("B", b_op, update_queries=["A"])

    await a.execute()
    assert client.state("B").data == "from-a"
    assert client.state("A").data == "from-a"

    await b.execute()
    assert client.state("A").data == "from-b"
    assert a_op.calls == 1
    assert b_op.calls == 1


@pytest.mark.asyncio
async def test_update_target_in_flight_keeps_its_own_settlement(client: RefetchClient) -> None:
    proceed = asyncio.Event()

    async def slow_b() -> str:
        await proceed.wait()
        return "b-own"

    b = client.query("B", slow_b)
    b_task = asyncio.create_task(b.execute())
    await asyncio.sleep(0)

    a = client.query("A", Recorder("from-a"), update_queries=["B"])
    await a.execute()

    mid = client.state("B")
    assert mid.data == "from-a"
    assert mid.status is Status.REVALIDATING

    proceed.set()
    await b_task
    # Last writer wins
    assert client.state("B").data == "b-own"
    assert client.state("B").status is Status.SUCCESS


@pytest.mark.asyncio
async def test_updated_target_is_persisted_when_it_stores(
    client: RefetchClient, backend: MemoryKeyValueStore
) -> None:
    client.query("B", Recorder("b"), store=True)
    a = client.query("A", Recorder([1, 2]), update_queries=["B"])

    await a.execute()

    assert backend.get("refetch:B") == [1, 2]
    assert backend.get("refetch:A") is None


@pytest.mark.asyncio
async def test_uncached_execution_still_propagates(client: RefetchClient) -> None:
    op = Recorder("x")
    client.register("A", op, cache=False, update_queries=["B"], invalidate_queries=["C"])
    await client.execute("A", op)
    assert client.state("B").data == "x"
    assert client.state("C").is_invalidated is True


@pytest.mark.asyncio
async def test_updated_target_resumes_revalidation_after_failure(
    client: RefetchClient, wait_for: Callable[..., Awaitable[None]]
) -> None:
    b_op = Recorder(RuntimeError("down"))
    b = client.query("B", b_op, revalidation=True, revalidate_time=0.05, retry_limit=0)
    b.mount()
    await b.execute()
    entry = client._store.get("B")
    assert entry.status is Status.ERROR
    assert entry.revalidation_timer is None

    a = client.query("A", Recorder("a"), update_queries=["B"])
    await a.execute()

    assert entry.status is Status.SUCCESS
    assert entry.revalidation_timer is not None
    assert entry.revalidation_timer.active
    await wait_for(lambda: b_op.calls == 2)
    b.unmount()


@pytest.mark.asyncio
async def test_update_drops_pending_retry_on_target(client: RefetchClient) -> None:
    b_op = Recorder(RuntimeError("down"))
    b = client.query("B", b_op, retry_limit=1, retry_time=0.05)
    b.mount()
    await b.execute()
    entry = client._store.get("B")
    assert entry.retry_timer is not None

    a = client.query("A", Recorder("a"), update_queries=["B"])
    await a.execute()

    assert entry.retry_timer is None
    await asyncio.sleep(0.1)
    assert b_op.calls == 1
    assert client.state("B").data == "a"
    b.unmount()
