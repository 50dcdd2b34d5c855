from http import HTTPStatus

import httpx
import pytest

from ipgeo.clients.ipinfo import IpInfo, split_asn_org
from ipgeo.context import client_ip_context
from ipgeo.errors import (
    IncompleteDataError,
    InvalidAddressError,
    MissingCredentialError,
    ProviderError,
    ReservedAddressError,
    TransportError,
)
from ipgeo.models.details import GeolocationDetails
from ipgeo.settings import ProviderSettings
from tests.common import (
    MockResponse,
    TimingOutAsyncClient,
    make_cache,
    make_failing_async_client,
    make_fake_async_client,
    unexpected_client,
)

IPINFO_PAYLOAD = {
    "ip": "8.8.8.8",
    "hostname": "dns.google",
    "city": "Mountain View",
    "region": "California",
    "country": "US",
    "loc": "37.4056,-122.0775",
    "org": "AS15169 Google LLC",
    "postal": "94043",
    "timezone": "America/Los_Angeles",
}


def make_client(**kwargs) -> IpInfo:
    settings = ProviderSettings(driver="ipinfo", access_token="test-token")
    return IpInfo(settings, **kwargs)


@pytest.mark.asyncio
async def test_lookup_success_maps_canonical_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list = []
    response = MockResponse(status_code=HTTPStatus.OK, payload=IPINFO_PAYLOAD)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response, calls))

    result = await make_client().lookup("8.8.8.8")

    assert isinstance(result, GeolocationDetails)
    assert result.ip == "8.8.8.8"
    assert result.country == "United States"
    assert result.country_code == "US"
    assert result.city == "Mountain View"
    assert result.region == "California"
    assert result.postal_code == "94043"
    assert result.latitude == pytest.approx(37.4056)
    assert result.longitude == pytest.approx(-122.0775)
    assert result.asn == "AS15169"
    assert result.asn_name == "Google LLC"
    assert result.organization == "Google LLC"
    assert result.hostname == "dns.google"
    assert result.timezone_offset in (-7.0, -8.0)

    url, _, headers = calls[0]
    assert url == "https://ipinfo.io/8.8.8.8/json"
    assert headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_lookup_without_ip_uses_self_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list = []
    response = MockResponse(status_code=HTTPStatus.OK, payload=IPINFO_PAYLOAD)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response, calls))

    await make_client().lookup()

    assert calls[0][0] == "https://ipinfo.io/json"


@pytest.mark.asyncio
async def test_lookup_without_ip_uses_client_address_from_context(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list = []
    response = MockResponse(status_code=HTTPStatus.OK, payload=IPINFO_PAYLOAD)
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response, calls))

    with client_ip_context("8.8.8.8"):
        await make_client().lookup()

    assert calls[0][0] == "https://ipinfo.io/8.8.8.8/json"


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_ip", ["not-an-ip", "999.1.1.1", "1.2.3"])
async def test_invalid_ip_fails_before_any_io(monkeypatch: pytest.MonkeyPatch, bad_ip: str) -> None:
    monkeypatch.setattr(httpx, "AsyncClient", unexpected_client)
    cache, store = make_cache("ipinfo")

    with pytest.raises(InvalidAddressError):
        await make_client(cache=cache).lookup(bad_ip)

    assert len(store) == 0


@pytest.mark.asyncio
async def test_missing_token_raises_missing_credential(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(httpx, "AsyncClient", unexpected_client)

    client = IpInfo(ProviderSettings(driver="ipinfo"))
    with pytest.raises(MissingCredentialError, match="ACCESS_TOKEN"):
        await client.lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_rate_limit_is_provider_error_and_not_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.TOO_MANY_REQUESTS, payload={})
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))
    cache, store = make_cache("ipinfo")

    with pytest.raises(ProviderError, match="(?i)rate limit"):
        await make_client(cache=cache).lookup("8.8.8.8")

    assert len(store) == 0


@pytest.mark.asyncio
async def test_server_error_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.BAD_GATEWAY, payload={})
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))

    with pytest.raises(ProviderError, match="HTTP 502"):
        await make_client().lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_bogon_is_reserved_address_error(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.OK, payload={"ip": "10.0.0.1", "bogon": True})
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))

    with pytest.raises(ReservedAddressError):
        await make_client().lookup("10.0.0.1")


@pytest.mark.asyncio
async def test_missing_country_is_incomplete(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.OK, payload={"ip": "8.8.8.8", "city": "Mountain View"})
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))
    cache, store = make_cache("ipinfo")

    with pytest.raises(IncompleteDataError):
        await make_client(cache=cache).lookup("8.8.8.8")

    assert len(store) == 0


@pytest.mark.asyncio
async def test_non_json_body_is_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    response = MockResponse(status_code=HTTPStatus.OK, payload=ValueError("Expecting value"))
    monkeypatch.setattr(httpx, "AsyncClient", make_fake_async_client(response))

    with pytest.raises(ProviderError, match="JSON"):
        await make_client().lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_network_error_is_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(httpx, "AsyncClient", make_failing_async_client("https://ipinfo.io/8.8.8.8/json"))

    with pytest.raises(TransportError):
        await make_client().lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_timeout_is_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        make_failing_async_client("https://ipinfo.io/8.8.8.8/json", TimingOutAsyncClient),
    )

    with pytest.raises(TransportError, match="timed out"):
        await make_client().lookup("8.8.8.8")


def test_split_asn_org() -> None:
    assert split_asn_org("AS15169 Google LLC") == ("AS15169", "Google LLC")
    assert split_asn_org("Some ISP") == (None, "Some ISP")
    assert split_asn_org(None) == (None, None)
