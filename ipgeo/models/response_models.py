from pydantic import BaseModel

from ipgeo.models.details import GeolocationDetails


class HealthResponse(BaseModel):
    """Response model for the health check endpoint."""

    status: str
    default_provider: str | None = None


class IPLookupResponse(GeolocationDetails):
    """Geolocation record plus the name of the provider that produced it."""

    provider: str

    @classmethod
    def from_details(cls, details: GeolocationDetails, provider: str) -> "IPLookupResponse":
        return cls(provider=provider, **details.model_dump())
