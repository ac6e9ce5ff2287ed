from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator

import pytest
import respx

from async_refetch.client import RefetchClient
from async_refetch.config import Settings
from async_refetch.persistence import MemoryKeyValueStore


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self._t = start

    def now(self) -> float:  # acts as now_fn
        return self._t

    def advance(self, dt: float) -> None:
        self._t += dt


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    # Short timers so scheduler tests finish quickly
    return Settings(
        REFETCH_RETRY_LIMIT=1,
        REFETCH_RETRY_TIME_SECONDS=0.01,
        REFETCH_REVALIDATE_TIME_SECONDS=60.0,
        REFETCH_STORE_PATH=None,
    )


@pytest.fixture
def backend() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
async def client(settings: Settings, backend: MemoryKeyValueStore) -> AsyncIterator[RefetchClient]:
    c = RefetchClient(settings=settings, backend=backend)
    yield c
    await c.aclose()


@pytest.fixture
def wait_for() -> Callable[..., Awaitable[None]]:
    """Poll ``predicate`` on the event loop until it holds or time runs out."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def respx_router() -> Iterator[respx.Router]:
    with respx.mock(assert_all_called=False) as router:
        yield router
