from typing import Any

from ipgeo.cache import RawGeolocation
from ipgeo.clients.base import BaseHttpProvider, as_dict, optional_bool
from ipgeo.errors import ProviderError
from ipgeo.settings import DriverKind
from ipgeo.timezones import seconds_to_hours

# https://ipstack.com/documentation#errors
_RATE_LIMIT_ERROR_CODES = {104, 106}
_CREDENTIAL_ERROR_CODES = {101, 102, 105}


class IpStack(BaseHttpProvider):
    """Client for the http://api.ipstack.com/ API.

    The key is the `access_key` query parameter. ipstack signals most failures
    with HTTP 200 and an `error` object; `time_zone.gmt_offset` is in seconds.
    """

    kind = DriverKind.ipstack
    display_name = "IPStack API"
    default_base_url = "http://api.ipstack.com"
    credential_field = "access_key"
    essential_fields = ("ip", "country_code")

    def _build_request(
        self, ip: str | None, credential: str | None
    ) -> tuple[str, dict[str, Any] | None, dict[str, str] | None]:
        url = f"{self._base_url}/{ip}" if ip else f"{self._base_url}/check"
        params: dict[str, Any] = {"access_key": credential, "output": "json"}
        if self._settings.include_hostname:
            params["hostname"] = 1
        if self._settings.include_security:
            params["security"] = 1
        if self._settings.language != "en":
            params["language"] = self._settings.language
        return url, params, None

    def _handle_provider_error(self, data: dict[str, Any]) -> None:
        """{"success": false, "error": {"code": 104, "type": "usage_limit_reached", "info": "..."}}"""
        error = data.get("error")
        if not error:
            return

        error = error if isinstance(error, dict) else {"info": str(error)}
        code = error.get("code", "unknown")
        error_type = error.get("type", "unknown_error")
        info = error.get("info", "Unknown error occurred")

        if code in _RATE_LIMIT_ERROR_CODES:
            raise ProviderError(f"IPStack rate limit or usage limit exceeded [{code}] {error_type}: {info}")
        if code in _CREDENTIAL_ERROR_CODES:
            raise ProviderError(f"IPStack rejected the access key [{code}] {error_type}: {info}")
        raise ProviderError(f"IPStack API error [{code}] {error_type}: {info}")

    def _normalize_payload(self, data: dict[str, Any]) -> RawGeolocation:
        time_zone = as_dict(data.get("time_zone"))
        currency = as_dict(data.get("currency"))
        connection = as_dict(data.get("connection"))
        security = as_dict(data.get("security"))
        asn = connection.get("asn")

        return {
            "ip": data["ip"],
            "city": data.get("city"),
            "region": data.get("region_name"),
            "country": data["country_code"],
            "countryCode": data["country_code"],
            "latitude": data.get("latitude"),
            "longitude": data.get("longitude"),
            "timezone": time_zone.get("id"),
            "timezoneOffset": seconds_to_hours(time_zone.get("gmt_offset")),
            "postalCode": data.get("zip"),
            "organization": connection.get("asn_org"),
            "isp": connection.get("isp"),
            "asn": f"AS{asn}" if asn else None,
            "asnName": connection.get("asn_org"),
            "connectionType": data.get("connection_type") or connection.get("type"),
            "currency": currency.get("name"),
            "currencyCode": currency.get("code"),
            "currencySymbol": currency.get("symbol"),
            "continent": data.get("continent_name"),
            "continentCode": data.get("continent_code"),
            "isProxy": optional_bool(security.get("is_proxy")),
            "isCrawler": optional_bool(security.get("is_crawler")),
            "isTor": optional_bool(security.get("is_tor")),
            "hostname": data.get("hostname"),
        }
