import re
from http import HTTPStatus
from typing import Any

from ipgeo.cache import RawGeolocation
from ipgeo.clients.base import BaseHttpProvider
from ipgeo.errors import ProviderError, ReservedAddressError
from ipgeo.models.details import parse_coordinates
from ipgeo.settings import DriverKind

# ipinfo reports the ASN inside the free-text organisation, e.g. "AS15169 Google LLC".
_ASN_ORG_RE = re.compile(r"^(AS\d+)\s+(.+)$", re.IGNORECASE)


def split_asn_org(org: Any) -> tuple[str | None, str | None]:
    """Split "AS15169 Google LLC" into ("AS15169", "Google LLC").

    Anything that does not start with an AS number is treated as a bare name.
    """
    if not isinstance(org, str) or not org.strip():
        return None, None

    match = _ASN_ORG_RE.match(org.strip())
    if match is None:
        return None, org.strip()
    return match.group(1).upper(), match.group(2).strip()


class IpInfo(BaseHttpProvider):
    """Client for the https://ipinfo.io/ API.

    Authenticates with a bearer token. The response carries coordinates as a
    single "lat,lon" string in `loc`, a bare country code in `country`, and no
    explicit UTC offset, so the offset is derived from `timezone`.
    """

    kind = DriverKind.ipinfo
    display_name = "IpInfo API"
    default_base_url = "https://ipinfo.io"
    credential_field = "access_token"
    essential_fields = ("ip", "country")
    status_messages = {
        HTTPStatus.UNAUTHORIZED: "Invalid API key - please check your ipinfo access token",
        HTTPStatus.FORBIDDEN: "Access forbidden - verify your ipinfo token permissions",
        HTTPStatus.TOO_MANY_REQUESTS: "Rate limit exceeded - too many requests to IpInfo API",
    }

    def _build_request(
        self, ip: str | None, credential: str | None
    ) -> tuple[str, dict[str, Any] | None, dict[str, str] | None]:
        url = f"{self._base_url}/{ip}/json" if ip else f"{self._base_url}/json"
        return url, None, {"Authorization": f"Bearer {credential}"}

    def _handle_provider_error(self, data: dict[str, Any]) -> None:
        """ipinfo answers private ranges with HTTP 200 and {"ip": ..., "bogon": true}."""
        if data.get("bogon"):
            raise ReservedAddressError(f"Reserved IP address: {data.get('ip')}")

        error = data.get("error")
        if isinstance(error, dict):
            title = error.get("title") or "Unknown error"
            message = error.get("message") or ""
            raise ProviderError(f"IpInfo API error: {title} {message}".strip())

    def _normalize_payload(self, data: dict[str, Any]) -> RawGeolocation:
        """Map ipinfo's response into the raw canonical map."""
        asn, asn_name = split_asn_org(data.get("org"))
        latitude, longitude = parse_coordinates(data.get("loc")) or (None, None)

        return {
            "ip": data["ip"],
            "city": data.get("city"),
            "region": data.get("region"),
            # Expanded to a display name by GeolocationDetails.
            "country": data["country"],
            "countryCode": data["country"],
            "latitude": latitude,
            "longitude": longitude,
            "timezone": data.get("timezone"),
            "postalCode": data.get("postal"),
            "organization": asn_name,
            "isp": asn_name,
            "asn": asn,
            "asnName": asn_name,
            "hostname": data.get("hostname"),
        }
