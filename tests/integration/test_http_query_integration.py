import asyncio
from typing import Awaitable, Callable

import httpx
import pytest
import respx

from async_refetch.client import RefetchClient
from async_refetch.fetchers import HttpJsonFetcher
from async_refetch.persistence import MemoryKeyValueStore

BASE_URL = "https://api.example.com"
WaitFor = Callable[..., Awaitable[None]]


@pytest.fixture
async def fetcher():
    f = HttpJsonFetcher(base_url=BASE_URL)
    yield f
    await f.aclose()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_http_request(
    client: RefetchClient, fetcher: HttpJsonFetcher, respx_router: respx.Router
) -> None:
    route = respx_router.get(f"{BASE_URL}/users").mock(
        return_value=httpx.Response(200, json=[{"id": 1}, {"id": 2}])
    )
    users = client.query("users", fetcher.operation("/users"))

    results = await asyncio.gather(*(users.execute() for _ in range(10)))

    assert route.call_count == 1
    assert all(r.data == [{"id": 1}, {"id": 2}] for r in results)
    assert users.state.is_success


@pytest.mark.asyncio
async def test_server_error_is_retried_until_success(
    client: RefetchClient,
    fetcher: HttpJsonFetcher,
    respx_router: respx.Router,
    wait_for: WaitFor,
) -> None:
    route = respx_router.get(f"{BASE_URL}/status").mock(
        side_effect=[
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(502),
            httpx.Response(200, json={"ok": True}),
        ]
    )
    status = client.query(
        "status", fetcher.operation("/status"), auto_fetch=True, retry_limit=3, retry_time=0.01
    )

    async with status.observe():
        await wait_for(lambda: status.state.is_success)

    assert route.call_count == 3
    assert status.state.data == {"ok": True}
    assert status.state.error_count == 0


@pytest.mark.asyncio
async def test_mutation_updates_and_invalidates_related_queries(
    client: RefetchClient,
    fetcher: HttpJsonFetcher,
    respx_router: respx.Router,
    backend: MemoryKeyValueStore,
) -> None:
    list_route = respx_router.get(f"{BASE_URL}/todos").mock(
        side_effect=[
            httpx.Response(200, json=[{"id": 1}]),
            httpx.Response(200, json=[{"id": 1}, {"id": 2}]),
        ]
    )
    respx_router.get(f"{BASE_URL}/todos/2").mock(
        return_value=httpx.Response(200, json={"id": 2, "title": "new"})
    )

    todos = client.query("todos", fetcher.operation("/todos"))
    latest = client.query("latest-todo", fetcher.operation("/todos/{}"), store=True)
    detail = client.query(
        "todo-detail",
        fetcher.operation("/todos/{}"),
        update_queries=["latest-todo"],
        invalidate_queries=["todos"],
    )

    await todos.trigger()
    assert (await todos.trigger()).executed is False

    await detail.execute(2)

    assert latest.state.data == {"id": 2, "title": "new"}
    assert backend.get("refetch:latest-todo") == {"id": 2, "title": "new"}
    assert todos.state.is_invalidated is True

    refreshed = await todos.trigger()
    assert refreshed.executed is True
    assert refreshed.data == [{"id": 1}, {"id": 2}]
    assert list_route.call_count == 2


@pytest.mark.asyncio
async def test_failed_refresh_keeps_last_good_payload(
    client: RefetchClient, fetcher: HttpJsonFetcher, respx_router: respx.Router
) -> None:
    respx_router.get(f"{BASE_URL}/quote").mock(
        side_effect=[
            httpx.Response(200, json={"price": 10}),
            httpx.Response(503),
        ]
    )
    quote = client.query("quote", fetcher.operation("/quote"))

    await quote.execute()
    failed = await quote.revalidate()

    assert failed.ok is False
    assert "503" in failed.error
    assert quote.state.data == {"price": 10}
    assert quote.state.error_count == 1
