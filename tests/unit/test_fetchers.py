import httpx
import pytest
import respx

from async_refetch.fetchers import HttpJsonFetcher


@pytest.mark.asyncio
async def test_get_json_returns_payload(respx_router: respx.Router) -> None:
    route = respx_router.get("https://api.example.com/items").mock(
        return_value=httpx.Response(200, json={"items": [1, 2]})
    )
    async with HttpJsonFetcher(base_url="https://api.example.com") as fetcher:
        assert await fetcher.get_json("/items") == {"items": [1, 2]}
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_operation_formats_url_and_merges_params(respx_router: respx.Router) -> None:
    route = respx_router.get("https://api.example.com/users/42").mock(
        return_value=httpx.Response(200, json={"id": 42})
    )
    async with HttpJsonFetcher(base_url="https://api.example.com") as fetcher:
        op = fetcher.operation("/users/{}", expand="profile")
        assert await op(42, lang="en") == {"id": 42}

    request = route.calls.last.request
    assert request.url.params["expand"] == "profile"
    assert request.url.params["lang"] == "en"


@pytest.mark.asyncio
async def test_error_status_raises(respx_router: respx.Router) -> None:
    respx_router.get("https://api.example.com/broken").mock(
        return_value=httpx.Response(503, json={"error": "unavailable"})
    )
    async with HttpJsonFetcher(base_url="https://api.example.com") as fetcher:
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher.operation("/broken")()


@pytest.mark.asyncio
async def test_injected_client_is_used(respx_router: respx.Router) -> None:
    respx_router.get("https://other.example.com/ping").mock(
        return_value=httpx.Response(200, json="pong")
    )
    client = httpx.AsyncClient(base_url="https://other.example.com")
    fetcher = HttpJsonFetcher(client=client)
    try:
        assert await fetcher.get_json("/ping") == "pong"
    finally:
        await fetcher.aclose()
    assert client.is_closed
