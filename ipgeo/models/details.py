import json
from collections.abc import Mapping
from datetime import UTC, datetime
from ipaddress import ip_address
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, ValidationError, ValidatorFunctionWrapHandler, field_validator
from pydantic.alias_generators import to_camel

from ipgeo.countries import CountryTranslator, country_flag, country_name
from ipgeo.timezones import calculate_timezone_offset, to_float


def parse_coordinates(value: Any) -> tuple[float, float] | None:
    """Split a "lat,lon" string into floats; anything malformed yields None."""
    if not isinstance(value, str):
        return None

    parts = value.split(",")
    if len(parts) != 2:
        return None

    latitude, longitude = to_float(parts[0].strip()), to_float(parts[1].strip())
    if latitude is None or longitude is None:
        return None
    return latitude, longitude


class GeolocationDetails(BaseModel):
    """Normalized, provider-agnostic geolocation record for one IP address.

    Instances are immutable. Build them with `from_raw`, which accepts the raw
    canonical map produced by a provider (or restored from cache) and never
    raises on missing, unknown or malformed values. `to_dict` returns the same
    camelCase map, so `from_raw(details.to_dict()) == details`.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    ip: str | None = None
    city: str | None = None
    region: str | None = None
    country: str | None = None
    country_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None
    timezone_offset: float | None = None
    postal_code: str | None = None
    organization: str | None = None
    isp: str | None = None
    asn: str | None = None
    asn_name: str | None = None
    connection_type: str | None = None
    currency: str | None = None
    currency_code: str | None = None
    currency_symbol: str | None = None
    continent: str | None = None
    continent_code: str | None = None
    is_mobile: bool | None = None
    is_proxy: bool | None = None
    is_crawler: bool | None = None
    is_tor: bool | None = None
    hostname: str | None = None

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_malformed(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        """A value that cannot be coerced degrades to None instead of failing the record."""
        try:
            return handler(value)
        except ValidationError:
            return None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_lat_lon(cls, value: Any) -> float | None:
        """Allow latitude/longitude to be provided as strings, numbers, or null.

        Providers may return these fields as strings; this validator normalizes them
        into floats while gracefully handling missing or invalid values.
        """
        number = to_float(value)
        if number is None:
            return None
        # For general GPS and mapping, 5-6 decimal places (e.g., 34.052235)
        return round(number, 6)

    @classmethod
    def from_raw(cls, data: Any, translator: CountryTranslator | None = None) -> "GeolocationDetails":
        """Build a record from a raw mapping, a JSON object string or another record."""
        raw = _coerce_mapping(data)

        values: dict[str, Any] = {}
        for key, value in raw.items():
            name = _FIELD_BY_KEY.get(key)
            if name is not None and value is not None:
                values[name] = value

        # `country` is always a code on the way in; an explicit countryCode wins.
        raw_country = values.pop("country", None)
        if raw_country is not None:
            values.setdefault("country_code", raw_country)
        code = values.get("country_code")
        display = raw_country if raw_country is not None else code
        if display is not None:
            values["country"] = country_name(str(display), translator)

        if "latitude" not in values and "longitude" not in values:
            coordinates = parse_coordinates(raw.get("loc"))
            if coordinates is not None:
                values["latitude"], values["longitude"] = coordinates

        offset = to_float(values.get("timezone_offset"))
        if offset is None:
            tz_name = values.get("timezone")
            offset = calculate_timezone_offset(tz_name) if isinstance(tz_name, str) else None
        values["timezone_offset"] = offset

        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Raw canonical map with camelCase keys."""
        return self.model_dump(by_alias=True)

    def is_valid(self) -> bool:
        """True when the record is usable for mapping: ip, country code and coordinates present."""
        return bool(self.ip) and bool(self.country_code) and self.latitude is not None and self.longitude is not None

    def has_timezone(self) -> bool:
        return bool(self.timezone)

    def current_time(self) -> datetime | None:
        """Current wall-clock time in the record's timezone."""
        zone = self._zone()
        if zone is None:
            return None
        return datetime.now(zone)

    def convert_to_local_time(self, moment: datetime) -> datetime | None:
        """Convert a datetime into the record's timezone; naive values are taken as UTC."""
        zone = self._zone()
        if zone is None:
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(zone)

    def formatted_address(self) -> str:
        """City, region and country name, e.g. "Mountain View, California, United States"."""
        return _join(self.city, self.region, self.country)

    def short_address(self) -> str:
        return _join(self.city, self.country_code)

    def full_address(self) -> str:
        return _join(self.city, self.region, self.postal_code, self.country_code)

    def google_maps_link(self) -> str | None:
        if self.latitude is None or self.longitude is None:
            return None
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"

    def openstreetmap_link(self, zoom: int = 12) -> str | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (
            f"https://www.openstreetmap.org/?mlat={self.latitude}&mlon={self.longitude}"
            f"#map={zoom}/{self.latitude}/{self.longitude}"
        )

    def apple_maps_link(self) -> str | None:
        if self.latitude is None or self.longitude is None:
            return None
        return f"maps://maps.apple.com/?q={self.latitude},{self.longitude}"

    def country_flag(self) -> str | None:
        return country_flag(self.country_code)

    def country_flag_url(self, width: int = 320) -> str | None:
        if not self.country_code:
            return None
        return f"https://flagcdn.com/w{width}/{self.country_code.lower()}.png"

    def is_ipv4(self) -> bool:
        return self._ip_version() == 4

    def is_ipv6(self) -> bool:
        return self._ip_version() == 6

    def _ip_version(self) -> int | None:
        if not self.ip:
            return None
        try:
            return ip_address(self.ip).version
        except ValueError:
            return None

    def _zone(self) -> ZoneInfo | None:
        if not self.timezone:
            return None
        try:
            return ZoneInfo(self.timezone)
        except (KeyError, ValueError, OSError):
            # ZoneInfoNotFoundError is a KeyError subclass.
            return None

    def __str__(self) -> str:
        address = self.formatted_address()
        if address and self.ip:
            return f"{self.ip} ({address})"
        return address or self.ip or ""


_FIELD_BY_KEY: dict[str, str] = {}
for _name in GeolocationDetails.model_fields:
    _FIELD_BY_KEY[_name] = _name
    _FIELD_BY_KEY[to_camel(_name)] = _name


def _coerce_mapping(data: Any) -> Mapping[str, Any]:
    if isinstance(data, GeolocationDetails):
        return data.to_dict()
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError:
            return {}
    if isinstance(data, Mapping):
        return data
    return {}


def _join(*parts: str | None) -> str:
    return ", ".join(part for part in parts if part)
