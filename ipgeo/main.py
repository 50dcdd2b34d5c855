from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request, status
from pydantic import ValidationError

from ipgeo.context import client_ip_context
from ipgeo.errors import AppError, ConfigurationError, GeoLookupError
from ipgeo.exception_handlers import (
    app_error_exception_handler,
    error_status,
    pydantic_validation_exception_handler,
    unhandled_exception_handler,
)
from ipgeo.logger import configure_logging, logger
from ipgeo.manager import GeolocationManager
from ipgeo.models.request_models import IPLookupRequest
from ipgeo.models.response_models import HealthResponse, IPLookupResponse
from ipgeo.settings import get_settings


@lru_cache
def get_geolocation_manager() -> GeolocationManager:
    """Dependency providing the process-wide GeolocationManager."""
    return GeolocationManager()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    # Release MaxMind readers, but only if a manager was ever built.
    if get_geolocation_manager.cache_info().currsize:
        get_geolocation_manager().close()


app = FastAPI(
    title="IP Geolocation Service",
    version="0.2.0",
    description="Multi-provider IP geolocation with normalized records and caching.",
    lifespan=lifespan,
)
configure_logging(get_settings().log_level)
logger.info("Started IP Geolocation Service")


def get_client_address(request: Request) -> str | None:
    """Caller's address: the first X-Forwarded-For hop when present, else the socket peer."""
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        first_hop = x_forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else None


# Register global exception handlers using the shared handlers module.
app.add_exception_handler(ValidationError, pydantic_validation_exception_handler)
app.add_exception_handler(AppError, app_error_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


@app.get(
    "/health",
    tags=["health"],
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
)
async def health(
    manager: Annotated[GeolocationManager, Depends(get_geolocation_manager)],
) -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="ok", default_provider=manager.settings.default_driver)


@app.get(
    "/v1/ip/lookup",
    response_model=IPLookupResponse,
    status_code=status.HTTP_200_OK,
    tags=["ip"],
    summary="Look up geolocation information for an IP address.",
)
async def ip_lookup(
    request: Request,
    query: Annotated[IPLookupRequest, Depends()],
    manager: Annotated[GeolocationManager, Depends(get_geolocation_manager)],
) -> IPLookupResponse:
    """Look up geolocation information for either a specific IP or the caller's IP.

    - If `query.ip` is provided, that IP is used.
    - Otherwise the caller's address (first X-Forwarded-For hop, or the socket
      peer) is handed to the provider as the address to resolve.
    - If `query.provider` is provided, it selects which configured provider to use;
      otherwise the configured default provider is used.
    """
    ip = query.ip
    provider = query.provider or manager.settings.default_driver
    client_ip = get_client_address(request)

    logger.info(
        f"Performing {'explicit' if ip else 'client'} IP lookup "
        f"path={request.url.path} method={request.method} ip={ip} client_ip={client_ip} provider={provider}"
    )

    try:
        with client_ip_context(client_ip):
            details = await manager.lookup(ip, provider=provider)
    except (ConfigurationError, GeoLookupError) as exc:
        status_code, code = error_status(exc)
        message = (
            f"Geolocation lookup failed code={code} "
            f"path={request.url.path} method={request.method} ip={ip} provider={provider} error={exc!r}"
        )
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.exception(message)
        else:
            logger.error(message)
        raise HTTPException(
            status_code=status_code,
            detail={
                "code": code,
                "message": str(exc),
                "provider": provider,
            },
        ) from exc

    return IPLookupResponse.from_details(details, provider=provider)
