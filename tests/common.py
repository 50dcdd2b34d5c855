from collections.abc import Callable
from typing import Any

import httpx

from ipgeo.cache import GeolocationCache, InMemoryCacheStore
from ipgeo.settings import CacheSettings


class MockResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class MockAsyncClient:
    """Minimal async context-manager mock for httpx.AsyncClient.

    Every `get` is appended to `calls` as (url, params, headers) so tests can
    assert on what was sent and how many requests were made.
    """

    def __init__(self, response: MockResponse, calls: list[tuple[str, Any, Any]] | None = None) -> None:
        self._response = response
        self.calls = calls if calls is not None else []

    async def __aenter__(self) -> "MockAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def get(self, url: str, params: Any = None, headers: Any = None) -> MockResponse:
        self.calls.append((url, params, headers))
        return self._response


class FailingAsyncClient:
    """Async client that raises a RequestError on enter to simulate network failure.

    The target URL is provided at construction time, so tests for different providers
    can reuse this implementation with different base URLs.
    """

    def __init__(self, url: str, *args: Any, **kwargs: Any) -> None:
        self._url = url

    async def __aenter__(self) -> "FailingAsyncClient":
        request = httpx.Request("GET", self._url)
        raise httpx.RequestError("Network failure", request=request)

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


class TimingOutAsyncClient:
    """Async client whose request times out."""

    def __init__(self, url: str, *args: Any, **kwargs: Any) -> None:
        self._url = url

    async def __aenter__(self) -> "TimingOutAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def get(self, url: str, params: Any = None, headers: Any = None) -> MockResponse:
        raise httpx.ReadTimeout("timed out", request=httpx.Request("GET", url))


def make_fake_async_client(
    response: MockResponse, calls: list[tuple[str, Any, Any]] | None = None
) -> Callable[..., MockAsyncClient]:
    """Factory for a fake httpx.AsyncClient returning a fixed response.

    Pass a shared `calls` list to count requests across several clients.
    """

    def _fake_client(*args: Any, **kwargs: Any) -> MockAsyncClient:
        return MockAsyncClient(response, calls)

    return _fake_client


def make_failing_async_client(url: str, client_cls: type = FailingAsyncClient) -> Callable[..., Any]:
    def _fake_client(*args: Any, **kwargs: Any) -> Any:
        return client_cls(url)

    return _fake_client


def make_cache(provider: str, **overrides: Any) -> tuple[GeolocationCache, InMemoryCacheStore]:
    """A fresh in-memory cache for one provider, plus its store for inspection."""
    store = InMemoryCacheStore()
    return GeolocationCache(store, CacheSettings(**overrides), provider), store


def unexpected_client(*args: Any, **kwargs: Any) -> None:
    raise AssertionError("no HTTP request expected")

