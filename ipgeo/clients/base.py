from abc import ABC, abstractmethod
from http import HTTPStatus
from ipaddress import ip_address
from typing import Any, ClassVar

import httpx

from ipgeo.cache import GeolocationCache, InMemoryCacheStore, RawGeolocation
from ipgeo.context import get_client_ip
from ipgeo.countries import CountryTranslator
from ipgeo.errors import IncompleteDataError, InvalidAddressError, MissingCredentialError, ProviderError, TransportError
from ipgeo.logger import get_logger
from ipgeo.models.details import GeolocationDetails
from ipgeo.settings import CacheSettings, DriverKind, ProviderSettings

logger = get_logger("clients")


def validate_ip_address(value: str) -> str:
    """Return the stripped IP literal, or raise InvalidAddressError."""
    candidate = str(value).strip()
    try:
        ip_address(candidate)
    except ValueError as exc:
        raise InvalidAddressError(f"Invalid IP address: {value}") from exc
    return candidate


def optional_bool(value: Any) -> bool | None:
    """Backend flags are often absent; keep None rather than defaulting to False."""
    return bool(value) if value is not None else None


def as_dict(value: Any) -> dict[str, Any]:
    """Nested objects that arrive as anything other than an object are treated as empty."""
    return value if isinstance(value, dict) else {}


class BaseGeolocationProvider(ABC):
    """Abstract base for all geolocation providers.

    Concrete implementations (ipinfo, ipapi.co, ipgeolocation.io, ipstack,
    MaxMind) only implement `_fetch`, mapping their backend's response into the
    raw canonical map understood by `GeolocationDetails.from_raw`. Address
    validation, caller-address resolution and cache-aside live here.
    """

    kind: ClassVar[DriverKind]

    def __init__(
        self,
        *,
        name: str | None = None,
        cache: GeolocationCache | None = None,
        translator: CountryTranslator | None = None,
    ) -> None:
        self.name = name or self.kind.value
        self._cache = cache or GeolocationCache(InMemoryCacheStore(), CacheSettings(), self.name)
        self._translator = translator

    async def lookup(self, ip_address: str | None = None) -> GeolocationDetails:
        """Look up an explicit IP address, or the caller's own address when omitted."""
        ip = self._resolve_address(ip_address)
        data = await self._cache.remember(ip, lambda: self._fetch(ip))
        return GeolocationDetails.from_raw(data, translator=self._translator)

    def forget(self, ip_address: str | None = None) -> bool:
        """Drop the cached entry for one address (None: the caller's own address)."""
        return self._cache.forget(ip_address)

    def flush_cache(self) -> bool:
        return self._cache.flush()

    @abstractmethod
    async def _fetch(self, ip: str | None) -> RawGeolocation:
        """Fetch and normalize data for `ip`; None asks the backend for the caller's address."""
        raise NotImplementedError

    @staticmethod
    def _resolve_address(ip_address: str | None) -> str | None:
        if ip_address:
            return validate_ip_address(ip_address)

        client_ip = get_client_ip()
        if client_ip:
            try:
                return validate_ip_address(client_ip)
            except InvalidAddressError:
                logger.warning(f"Ignoring unparsable client address client_ip={client_ip!r}")
        return None


class BaseHttpProvider(BaseGeolocationProvider):
    """Shared request/response handling for remote JSON APIs.

    Subclasses describe their backend with class attributes and implement
    `_build_request` and `_normalize_payload`; they may refine error handling
    through `status_messages`, `_handle_provider_error` and `_ensure_complete`.
    """

    display_name: ClassVar[str] = "IP provider"
    default_base_url: ClassVar[str]
    # ProviderSettings attribute holding the credential, None when the backend needs none.
    credential_field: ClassVar[str | None] = None
    credential_required: ClassVar[bool] = True
    essential_fields: ClassVar[tuple[str, ...]] = ("ip",)
    status_messages: ClassVar[dict[int, str]] = {}

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        name: str | None = None,
        cache: GeolocationCache | None = None,
        translator: CountryTranslator | None = None,
        timeout_seconds: float = 5.0,
        retries: int = 0,
    ) -> None:
        super().__init__(name=name, cache=cache, translator=translator)
        self._settings = settings or ProviderSettings(driver=self.kind.value)
        self._base_url = (self._settings.base_url or self.default_base_url).rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._retries = retries

    async def _fetch(self, ip: str | None) -> RawGeolocation:
        credential = self._credential()
        url, params, headers = self._build_request(ip, credential)

        logger.info(f"Querying provider={self.name} url={url} ip={ip or 'self'}")
        response = await self._request(url, params=params, headers=headers)

        self._handle_http_errors(response)

        data = self._parse_json(response)
        self._handle_provider_error(data)
        self._ensure_complete(data)

        return self._normalize_payload(data)

    def _credential(self) -> str | None:
        if self.credential_field is None:
            return None

        credential = getattr(self._settings, self.credential_field, None)
        if not credential and self.credential_required:
            setting = f"GEOLOCATION_PROVIDERS__{self.name.upper()}__{self.credential_field.upper()}"
            raise MissingCredentialError(f"{self.display_name} credential is missing. Set {setting}.")
        return credential or None

    async def _request(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform a single GET, mapping network-level failures to TransportError."""
        request_headers = {"Accept": "application/json", "User-Agent": self._settings.user_agent}
        request_headers.update(headers or {})

        try:
            transport = httpx.AsyncHTTPTransport(retries=self._retries)
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=transport) as client:
                return await client.get(url, params=params, headers=request_headers)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Connection to {self.display_name} timed out after {self._timeout_seconds}s"
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"Network error while calling {self.display_name}: {repr(exc)}") from exc

    def _handle_http_errors(self, response: httpx.Response) -> None:
        """Map non-200 status codes from the provider to ProviderError with a specific message."""
        status_code = response.status_code
        if status_code == HTTPStatus.OK:
            return

        message = self.status_messages.get(status_code)
        if message is None:
            if status_code == HTTPStatus.UNAUTHORIZED:
                message = f"Invalid API key - check the {self.display_name} credential"
            elif status_code == HTTPStatus.FORBIDDEN:
                message = f"Access forbidden - verify your {self.display_name} API key permissions"
            elif status_code == HTTPStatus.TOO_MANY_REQUESTS:
                message = f"{self.display_name} rate limit exceeded - too many requests"
            elif status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
                message = f"{self.display_name} server error"
            else:
                message = f"{self.display_name} returned HTTP error {status_code}"

        raise ProviderError(f"{message} (HTTP {status_code}).")

    def _handle_provider_error(self, data: dict[str, Any]) -> None:
        """Hook for error objects embedded in HTTP 200 bodies."""

    def _ensure_complete(self, data: dict[str, Any]) -> None:
        missing = [field for field in self.essential_fields if not data.get(field)]
        if missing:
            raise IncompleteDataError(
                f"Incomplete geolocation data received from {self.display_name}: missing {', '.join(missing)}"
            )

    def _parse_json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"Failed to decode {self.display_name} response as JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected {self.display_name} response: expected a JSON object")
        return data

    @abstractmethod
    def _build_request(
        self, ip: str | None, credential: str | None
    ) -> tuple[str, dict[str, Any] | None, dict[str, str] | None]:
        """Return (url, query params, extra headers) for the lookup."""
        raise NotImplementedError

    @abstractmethod
    def _normalize_payload(self, data: dict[str, Any]) -> RawGeolocation:
        """Map the backend's response into the raw canonical map."""
        raise NotImplementedError
