from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ipgeo.errors import (
    AddressNotFoundError,
    AppError,
    ConfigurationError,
    InvalidAddressError,
    MissingCredentialError,
    ReservedAddressError,
    UndefinedDriverError,
    UnsupportedDriverError,
)
from ipgeo.logger import get_logger

logger = get_logger("api")

# Most specific first: the first isinstance match wins.
_ERROR_STATUS: list[tuple[type[AppError], int, str]] = [
    (InvalidAddressError, status.HTTP_400_BAD_REQUEST, "invalid_ip"),
    (ReservedAddressError, status.HTTP_400_BAD_REQUEST, "reserved_ip"),
    (UndefinedDriverError, status.HTTP_400_BAD_REQUEST, "unknown_provider"),
    (UnsupportedDriverError, status.HTTP_400_BAD_REQUEST, "unknown_provider"),
    (AddressNotFoundError, status.HTTP_404_NOT_FOUND, "ip_not_found"),
    (MissingCredentialError, status.HTTP_503_SERVICE_UNAVAILABLE, "provider_unavailable"),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE, "provider_unavailable"),
]


def error_status(exc: AppError) -> tuple[int, str]:
    """HTTP status and machine-readable code for a lookup failure.

    Anything not listed (provider, transport and incomplete-data failures) is an
    upstream problem and maps to 502.
    """
    for error_cls, status_code, code in _ERROR_STATUS:
        if isinstance(exc, error_cls):
            return status_code, code
    return status.HTTP_502_BAD_GATEWAY, "upstream_error"


def _get_provider_from_request(request: Request) -> str | None:
    # Only /v1/ip/lookup takes a provider; elsewhere this is None.
    return request.query_params.get("provider") or None


def _build_validation_error_payload(exc: ValidationError) -> dict:
    """Reduce validation errors to a `code`/`message` pair; field details stay internal."""
    code = "invalid_request"
    message = "Invalid request parameters"

    for error in exc.errors(include_url=False, include_context=False):
        loc = error.get("loc", ())
        if loc and loc[-1] == "ip":
            code = "invalid_ip"
            message = "The supplied IP address is not a valid IPv4 or IPv6 address."
            break

    return {
        "code": code,
        "message": message,
    }


async def pydantic_validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """IPLookupRequest is built as a dependency, so its ValidationError lands here as a 400."""
    provider = _get_provider_from_request(request)
    logger.info(
        f"Rejected request parameters path={request.url.path} method={request.method} "
        f"provider={provider} errors={exc.errors(include_url=False)}"
    )
    payload = _build_validation_error_payload(exc)
    payload["provider"] = provider
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=payload)


async def app_error_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map library errors raised outside the lookup route (e.g. from dependencies)."""
    provider = _get_provider_from_request(request)
    status_code, code = error_status(exc)
    logger.error(
        f"Geolocation error path={request.url.path} method={request.method} provider={provider} error={exc!r}"
    )
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": str(exc), "provider": provider},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected errors to return a structured 500 response."""
    provider = _get_provider_from_request(request)
    logger.exception(
        "Unhandled exception while processing request: "
        f"{repr(exc)} path={request.url.path} method={request.method} provider={provider}"
    )
    content: dict[str, Any] = {
        "code": "internal_error",
        "message": "An unexpected error occurred while processing the request.",
        "provider": provider,
    }
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
    )
