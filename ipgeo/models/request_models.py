from ipaddress import ip_address

from pydantic import BaseModel, Field, field_validator


class IPLookupRequest(BaseModel):
    """Query parameters of /v1/ip/lookup.

    `ip` omitted or blank means "whoever is calling"; `provider` omitted or
    blank means the configured default provider.
    """

    ip: str | None = Field(
        default=None,
        description="IPv4 or IPv6 address to look up. If omitted, the client's IP is used.",
        examples=["8.8.8.8", "2001:4860:4860::8888"],
    )
    provider: str | None = Field(
        default=None,
        description="Configured provider name. Defaults to GEOLOCATION_DEFAULT_DRIVER.",
        examples=["ipinfo", "ipapi", "ipgeolocation", "ipstack", "maxmind"],
    )

    @field_validator("ip", mode="before")
    @classmethod
    def _validate_ip(cls, value: str | None) -> str | None:
        """Reject anything that is not an IP literal so the route never runs for it."""
        text = _blank_to_none(value)
        if text is None:
            return None

        try:
            ip_address(text)
        except ValueError as exc:
            raise ValueError("ip must be a valid IPv4 or IPv6 address") from exc
        return text

    @field_validator("provider", mode="before")
    @classmethod
    def _validate_provider(cls, value: str | None) -> str | None:
        return _blank_to_none(value)


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None
