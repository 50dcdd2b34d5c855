"""Configuration for the geolocation manager and its providers.

Values are read from the environment (prefix ``GEOLOCATION_``, nested keys
separated by ``__``) and from an optional ``.env`` file, e.g.::

    GEOLOCATION_DEFAULT_DRIVER=maxmind
    GEOLOCATION_CACHE__TTL=3600
    GEOLOCATION_PROVIDERS__IPINFO__ACCESS_TOKEN=abc123
    GEOLOCATION_PROVIDERS__MAXMIND__DATABASE_PATH=/var/lib/geoip/GeoLite2-City.mmdb
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DriverKind(str, Enum):
    """Backend kinds a configured provider can declare via its `driver` key."""

    ipinfo = "ipinfo"
    ipapi = "ipapi"
    ipgeolocation = "ipgeolocation"
    ipstack = "ipstack"
    maxmind = "maxmind"


class RetrySettings(BaseModel):
    """Retry knobs passed straight through to the HTTP transport."""

    attempts: int = Field(default=2, ge=0)
    # Milliseconds. Accepted for configuration compatibility; httpx retries connects immediately.
    delay: int = Field(default=100, ge=0)


class CacheTagSettings(BaseModel):
    enabled: bool = False
    names: list[str] = Field(default_factory=lambda: ["geolocation"])


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl: int = Field(default=86400, ge=0)
    prefix: str = "geolocation"
    store: str | None = None
    tags: CacheTagSettings = Field(default_factory=CacheTagSettings)


class ProviderSettings(BaseModel):
    """Settings for one configured provider.

    Each backend only reads the keys it understands; the rest stay at their defaults.
    """

    driver: str
    access_token: str | None = None  # ipinfo
    api_key: str | None = None  # ipgeolocation (required), ipapi (optional)
    access_key: str | None = None  # ipstack
    base_url: str | None = None
    database_path: str | None = None  # maxmind
    language: str = "en"
    include_hostname: bool = False
    include_security: bool = False
    include_useragent: bool = False
    user_agent: str = "ipgeo/0.2"


DEFAULT_PROVIDERS: dict[str, dict[str, Any]] = {
    "ipinfo": {"driver": DriverKind.ipinfo.value},
    "ipapi": {"driver": DriverKind.ipapi.value},
    "ipgeolocation": {"driver": DriverKind.ipgeolocation.value},
    "ipstack": {"driver": DriverKind.ipstack.value},
    "maxmind": {"driver": DriverKind.maxmind.value, "database_path": "app/geoip/GeoLite2-City.mmdb"},
}


class GeolocationSettings(BaseSettings):
    """Top-level configuration consumed by GeolocationManager."""

    model_config = SettingsConfigDict(
        env_prefix="GEOLOCATION_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )

    default_driver: str = "ipinfo"
    timeout: float = Field(default=5.0, gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    storage_path: Path = Path("storage")
    localization: Literal["builtin", "pycountry"] = "builtin"
    log_level: str = "INFO"
    providers: dict[str, ProviderSettings] = Field(
        default_factory=lambda: {name: ProviderSettings(**values) for name, values in DEFAULT_PROVIDERS.items()}
    )

    @field_validator("providers", mode="before")
    @classmethod
    def _merge_default_providers(cls, value: Any) -> Any:
        """Overlay user-supplied provider settings on top of the built-in defaults.

        Lets a single env var such as GEOLOCATION_PROVIDERS__IPINFO__ACCESS_TOKEN
        configure a credential without redeclaring every provider.
        """
        if not isinstance(value, dict):
            return value

        merged: dict[str, Any] = {name: dict(values) for name, values in DEFAULT_PROVIDERS.items()}
        for name, values in value.items():
            if isinstance(values, ProviderSettings):
                values = values.model_dump()
            if not isinstance(values, dict):
                merged[name] = values
                continue
            base = merged.get(name, {})
            # A provider that is not one of the defaults falls back to a driver named after itself.
            base.setdefault("driver", name)
            merged[name] = {**base, **values}
        return merged

    def provider(self, name: str) -> ProviderSettings | None:
        return self.providers.get(name)


@lru_cache
def get_settings() -> GeolocationSettings:
    """Load settings once per process."""
    return GeolocationSettings()
