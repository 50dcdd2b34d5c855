from http import HTTPStatus
from typing import Any

from ipgeo.cache import RawGeolocation
from ipgeo.clients.base import BaseHttpProvider, as_dict, optional_bool
from ipgeo.errors import IncompleteDataError, ProviderError
from ipgeo.settings import DriverKind
from ipgeo.timezones import to_float


class IpGeolocation(BaseHttpProvider):
    """Client for the https://ipgeolocation.io/ API.

    The key travels as the `apiKey` query parameter. Location fields are either
    top level or nested under `location` depending on the API revision, and
    `time_zone.offset` is already expressed in hours.
    """

    kind = DriverKind.ipgeolocation
    display_name = "IPGeolocation API"
    default_base_url = "https://api.ipgeolocation.io/ipgeo"
    credential_field = "api_key"
    status_messages = {
        HTTPStatus.UNAUTHORIZED: "Invalid API key - please check your ipgeolocation.io API key",
        HTTPStatus.FORBIDDEN: "Access forbidden - verify your API key permissions or subscription status",
        HTTPStatus.LOCKED: "Request quota exceeded - upgrade your ipgeolocation.io plan",
        HTTPStatus.TOO_MANY_REQUESTS: "Rate limit exceeded - too many requests to IPGeolocation API",
    }

    def _build_request(
        self, ip: str | None, credential: str | None
    ) -> tuple[str, dict[str, Any] | None, dict[str, str] | None]:
        params: dict[str, Any] = {"apiKey": credential}
        if ip:
            params["ip"] = ip
        if self._settings.language != "en":
            params["lang"] = self._settings.language

        include = [
            field
            for field, enabled in (
                ("hostname", self._settings.include_hostname),
                ("security", self._settings.include_security),
                ("useragent", self._settings.include_useragent),
            )
            if enabled
        ]
        if include:
            params["include"] = ",".join(include)

        return self._base_url, params, None

    def _handle_provider_error(self, data: dict[str, Any]) -> None:
        message = data.get("message")
        if isinstance(message, str) and "ip" not in data:
            raise ProviderError(f"IPGeolocation API error: {message}")

    def _ensure_complete(self, data: dict[str, Any]) -> None:
        location = _location(data)
        if not data.get("ip") or not location.get("country_code2"):
            raise IncompleteDataError(
                "Incomplete geolocation data received from IPGeolocation API: missing ip or country_code2"
            )

    def _normalize_payload(self, data: dict[str, Any]) -> RawGeolocation:
        location = _location(data)
        time_zone = as_dict(data.get("time_zone"))
        currency = as_dict(data.get("currency"))
        security = as_dict(data.get("security"))
        device = as_dict(data.get("device"))
        asn = data.get("asn")

        return {
            "ip": data["ip"],
            "city": location.get("city"),
            "region": location.get("state_prov"),
            "country": location["country_code2"],
            "countryCode": location["country_code2"],
            "latitude": location.get("latitude"),
            "longitude": location.get("longitude"),
            "timezone": time_zone.get("name"),
            "timezoneOffset": to_float(time_zone.get("offset")),
            "postalCode": location.get("zipcode"),
            "organization": data.get("organization"),
            "isp": data.get("isp"),
            "asn": _normalize_asn(asn),
            "asnName": data.get("organization"),
            "connectionType": data.get("connection_type") or None,
            "currency": currency.get("name"),
            "currencyCode": currency.get("code"),
            "currencySymbol": currency.get("symbol"),
            "continent": location.get("continent_name"),
            "continentCode": location.get("continent_code"),
            "isMobile": optional_bool(device.get("is_mobile")),
            "isProxy": optional_bool(security.get("is_proxy")),
            "isCrawler": optional_bool(security.get("is_crawler")),
            "isTor": optional_bool(security.get("is_tor")),
            "hostname": data.get("hostname"),
        }


def _location(data: dict[str, Any]) -> dict[str, Any]:
    location = data.get("location")
    return location if isinstance(location, dict) else data


def _normalize_asn(value: Any) -> str | None:
    """ipgeolocation sends "AS15169" on some plans and a bare 15169 on others."""
    if value is None or value == "":
        return None
    text = str(value).strip()
    return text.upper() if text.upper().startswith("AS") else f"AS{text}"
