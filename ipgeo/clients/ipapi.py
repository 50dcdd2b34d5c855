from http import HTTPStatus
from typing import Any

from ipgeo.cache import RawGeolocation
from ipgeo.clients.base import BaseHttpProvider
from ipgeo.errors import IncompleteDataError, ProviderError, ReservedAddressError
from ipgeo.settings import DriverKind
from ipgeo.timezones import parse_utc_offset


class IpApi(BaseHttpProvider):
    """Client for the https://ipapi.co/ IP geolocation API.

    The free tier needs no credential; a configured `api_key` is sent as the
    `key` query parameter. The UTC offset comes as a "+0200" string and is
    converted to hours here.
    """

    kind = DriverKind.ipapi
    display_name = "ipapi.co"
    default_base_url = "https://ipapi.co"
    credential_field = "api_key"
    credential_required = False
    status_messages = {
        HTTPStatus.BAD_REQUEST: "Bad Request - invalid IP address format",
        HTTPStatus.FORBIDDEN: "Authentication failed - check your ipapi.co key or plan",
        HTTPStatus.NOT_FOUND: "URL Not Found - invalid ipapi.co endpoint",
        HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed when calling ipapi.co",
        HTTPStatus.TOO_MANY_REQUESTS: "ipapi.co rate limit or quota exceeded - too many requests",
    }

    def _build_request(
        self, ip: str | None, credential: str | None
    ) -> tuple[str, dict[str, Any] | None, dict[str, str] | None]:
        url = f"{self._base_url}/{ip}/json/" if ip else f"{self._base_url}/json/"
        params = {"key": credential} if credential else None
        return url, params, None

    def _handle_provider_error(self, data: dict[str, Any]) -> None:
        """Normalize error payloads ipapi.co embeds in the JSON body, sometimes with HTTP 200.

        Examples:
            { "error": true, "reason": "Invalid IP Address", "ip": "..." }
            { "error": true, "reason": "Reserved IP Address", "ip": "127.0.0.1", "reserved": true }
            { "error": true, "reason": "RateLimited", "message": "..." }
            { "error": true, "reason": "Quota exceeded", "message": "..." }
        """
        if not data.get("error"):
            return

        reason = str(data.get("reason") or data.get("message") or "Unknown error")
        lower_reason = reason.lower()

        # Reserved / private address, e.g. 127.0.0.1, 192.168.x.x.
        if "reserved" in lower_reason or data.get("reserved") is True:
            raise ReservedAddressError(f"ipapi.co API error: {reason}")

        if "ratelimited" in lower_reason or "quota" in lower_reason:
            raise ProviderError(f"ipapi.co rate limit or quota exceeded: {reason}")

        raise ProviderError(f"ipapi.co API error: {reason}")

    def _ensure_complete(self, data: dict[str, Any]) -> None:
        if not data.get("ip") or not (data.get("country_code") or data.get("country")):
            raise IncompleteDataError("Incomplete geolocation data received from ipapi.co: missing ip or country")

    def _normalize_payload(self, data: dict[str, Any]) -> RawGeolocation:
        """Map ipapi.co's response into the raw canonical map.

        Latitude/longitude are passed through as-is; GeolocationDetails coerces them.
        """
        country_code = data.get("country_code") or data.get("country")

        return {
            "ip": data["ip"],
            "city": data.get("city"),
            "region": data.get("region"),
            "country": country_code,
            "countryCode": country_code,
            "latitude": data.get("latitude"),
            "longitude": data.get("longitude"),
            "timezone": data.get("timezone"),
            "timezoneOffset": parse_utc_offset(data.get("utc_offset")),
            "postalCode": data.get("postal"),
            # ipapi.co exposes organisation/ISP information via the "org" field.
            "organization": data.get("org"),
            "isp": data.get("org"),
            "asn": data.get("asn"),
            "asnName": data.get("org"),
            "currency": data.get("currency_name"),
            "currencyCode": data.get("currency"),
            "continentCode": data.get("continent_code"),
        }
