"""Ready-made HTTP operations backed by httpx.

``HttpJsonFetcher.operation(url)`` returns an Operation suitable for
``RefetchClient.query``: it GETs JSON and raises ``httpx.HTTPStatusError`` on
non-2xx responses, so failed requests surface as entry errors and drive the
retry scheduler. Retrying, caching and deduplication are left to the client.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .models import Operation

_logger = logging.getLogger(__name__)


class HttpJsonFetcher:
    """Thin JSON GET wrapper around a shared ``httpx.AsyncClient``.

    Parameters are sourced from Settings by default, but can be overridden
    for testability.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        s = Settings()
        self._base_url = base_url if base_url is not None else s.HTTP_BASE_URL
        self._timeout_seconds = int(timeout_seconds or s.HTTP_TIMEOUT_SECONDS)
        if client is None:
            kwargs: Dict[str, Any] = {"timeout": self._timeout_seconds}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            client = httpx.AsyncClient(**kwargs)
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpJsonFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        _logger.debug("HTTP GET JSON", extra={"op": "get_json"})
        response = await self._client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    def operation(self, url: str, **params: Any) -> Operation:
        """Build an operation GETting ``url``.

        Positional arguments passed at execution fill ``{}`` placeholders in
        ``url``; keyword arguments become query parameters on top of
        ``params``::

            user = fetcher.operation("/users/{}")
            await client.execute("user", user, 42)  # GET /users/42
        """

        async def _get(*args: Any, **extra: Any) -> Any:
            target = url.format(*args) if args else url
            merged = {**params, **extra}
            return await self.get_json(target, params=merged or None)

        return _get


__all__ = ["HttpJsonFetcher"]
