from http import HTTPStatus

import httpx
import pytest

from ipgeo.clients.ipapi import IpApi
from ipgeo.errors import IncompleteDataError, InvalidAddressError, ProviderError, ReservedAddressError, TransportError
from ipgeo.settings import ProviderSettings
from tests.common import MockResponse, make_cache, make_failing_async_client, make_fake_async_client, unexpected_client

IPAPI_PAYLOAD = {
    "ip": "8.8.8.8",
    "city": "Mountain View",
    "region": "California",
    "country": "US",
    "country_code": "US",
    "country_name": "United States",
    "continent_code": "NA",
    "postal": "94043",
    "latitude": "37.42301",
    "longitude": "-122.083352",
    "timezone": "America/Los_Angeles",
    "utc_offset": "-0700",
    "currency": "USD",
    "currency_name": "Dollar",
    "asn": "AS15169",
    "org": "GOOGLE",
}


@pytest.mark.asyncio
async def test_lookup_success(monkeypatch: pytest.MonkeyPatch) -> None:
    """Happy path: string lat/lon coerced to float, "-0700" offset converted to hours."""
    calls: list = []
    response = MockResponse(status_code=HTTPStatus.OK, payload=IPAPI_PAYLOAD)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response, calls))

    result = await IpApi().lookup("8.8.8.8")

    assert result.ip == "8.8.8.8"
    assert result.country_code == "US"
    assert result.country == "United States"
    assert result.latitude == pytest.approx(37.42301)
    assert result.longitude == pytest.approx(-122.083352)
    assert result.timezone_offset == -7.0
    assert result.asn == "AS15169"
    assert result.isp == "GOOGLE"
    assert result.currency_code == "USD"
    assert result.continent_code == "NA"

    url, params, _ = calls[0]
    assert url == "https://ipapi.co/8.8.8.8/json/"
    assert params is None


@pytest.mark.asyncio
async def test_optional_key_is_sent_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list = []
    response = MockResponse(status_code=HTTPStatus.OK, payload=IPAPI_PAYLOAD)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response, calls))

    await IpApi(ProviderSettings(driver="ipapi", api_key="secret")).lookup()

    url, params, _ = calls[0]
    assert url == "https://ipapi.co/json/"
    assert params == {"key": "secret"}


@pytest.mark.asyncio
async def test_invalid_ip_fails_before_any_io(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(httpx, "AsyncClient", unexpected_client)

    with pytest.raises(InvalidAddressError):
        await IpApi().lookup("999.999.999.999")


@pytest.mark.asyncio
async def test_reserved_ip_error_in_body(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {"ip": "127.0.0.1", "error": True, "reason": "Reserved IP Address", "reserved": True}
    response = MockResponse(status_code=HTTPStatus.OK, payload=payload)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))

    with pytest.raises(ReservedAddressError):
        await IpApi().lookup("127.0.0.1")


@pytest.mark.asyncio
async def test_rate_limited_body_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {"error": True, "reason": "RateLimited", "message": "Visit https://ipapi.co/ratelimited/"}
    response = MockResponse(status_code=HTTPStatus.OK, payload=payload)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))
    cache, store = make_cache("ipapi")

    with pytest.raises(ProviderError, match="rate limit"):
        await IpApi(cache=cache).lookup("8.8.8.8")

    assert len(store) == 0


@pytest.mark.asyncio
async def test_http_429_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.TOO_MANY_REQUESTS, payload={}, text="Too Many Requests")
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))
    cache, store = make_cache("ipapi")

    with pytest.raises(ProviderError, match="rate limit"):
        await IpApi(cache=cache).lookup("8.8.8.8")

    assert len(store) == 0


@pytest.mark.asyncio
async def test_server_error(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.SERVICE_UNAVAILABLE, payload={})
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))

    with pytest.raises(ProviderError, match="server error"):
        await IpApi().lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_missing_country_is_incomplete(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.OK, payload={"ip": "8.8.8.8"})
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))

    with pytest.raises(IncompleteDataError):
        await IpApi().lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Network-level failures are surfaced as TransportError."""
    monkeypatch.setattr(httpx, "AsyncClient", make_failing_async_client("https://ipapi.co/8.8.8.8/json/"))

    with pytest.raises(TransportError):
        await IpApi().lookup("8.8.8.8")
