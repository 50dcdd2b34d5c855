from collections.abc import Callable
from pathlib import Path
from typing import Any

from ipgeo.cache import CacheStore, GeolocationCache, InMemoryCacheStore
from ipgeo.clients.base import BaseGeolocationProvider, BaseHttpProvider
from ipgeo.clients.ipapi import IpApi
from ipgeo.clients.ipgeolocation import IpGeolocation
from ipgeo.clients.ipinfo import IpInfo
from ipgeo.clients.ipstack import IpStack
from ipgeo.clients.maxmind import MaxMind
from ipgeo.countries import COUNTRIES, CountryTranslator, pycountry_translator
from ipgeo.errors import DatabaseConfigurationError, UndefinedDriverError, UnsupportedDriverError
from ipgeo.logger import get_logger
from ipgeo.models.details import GeolocationDetails
from ipgeo.settings import DriverKind, GeolocationSettings, ProviderSettings, get_settings

logger = get_logger("manager")

ProviderFactory = Callable[["GeolocationManager", str, ProviderSettings], BaseGeolocationProvider]


def _http_factory(provider_cls: type[BaseHttpProvider]) -> ProviderFactory:
    def build(manager: "GeolocationManager", name: str, settings: ProviderSettings) -> BaseGeolocationProvider:
        return provider_cls(
            settings,
            name=name,
            cache=manager._cache_for(name),
            translator=manager.translator,
            timeout_seconds=manager.settings.timeout,
            retries=manager.settings.retry.attempts,
        )

    return build


def _maxmind_factory(manager: "GeolocationManager", name: str, settings: ProviderSettings) -> BaseGeolocationProvider:
    if not settings.database_path:
        setting = f"GEOLOCATION_PROVIDERS__{name.upper()}__DATABASE_PATH"
        raise DatabaseConfigurationError(f"MaxMind database path not configured. Set {setting}.")

    path = Path(settings.database_path)
    if not path.is_absolute():
        path = manager.settings.storage_path / path

    return MaxMind.from_path(path, name=name, cache=manager._cache_for(name), translator=manager.translator)


_FACTORIES: dict[DriverKind, ProviderFactory] = {
    DriverKind.ipinfo: _http_factory(IpInfo),
    DriverKind.ipapi: _http_factory(IpApi),
    DriverKind.ipgeolocation: _http_factory(IpGeolocation),
    DriverKind.ipstack: _http_factory(IpStack),
    DriverKind.maxmind: _maxmind_factory,
}


class GeolocationManager:
    """Builds, memoizes and hands out configured geolocation providers.

    Providers are addressed by their configured name (``providers.<name>``);
    the ``driver`` key of that entry selects the backend. All providers built
    by one manager share its cache store.

        manager = GeolocationManager()
        details = await manager.lookup("8.8.8.8", provider="ipapi")
    """

    def __init__(self, settings: GeolocationSettings | None = None, cache_store: CacheStore | None = None) -> None:
        self.settings = settings or get_settings()
        self.cache_store = cache_store if cache_store is not None else InMemoryCacheStore()
        self.translator: CountryTranslator | None = (
            pycountry_translator if self.settings.localization == "pycountry" else None
        )
        self._providers: dict[str, BaseGeolocationProvider] = {}
        self._current: str | None = None

    def driver(self, name: str | None = None) -> BaseGeolocationProvider:
        """Return the provider configured under `name`, or the default provider."""
        name = name or self.settings.default_driver

        provider = self._providers.get(name)
        if provider is None:
            provider = self._build(name)
            self._providers[name] = provider

        self._current = name
        return provider

    async def lookup(self, ip: str | None = None, provider: str | None = None) -> GeolocationDetails:
        return await self.driver(provider).lookup(ip)

    def forget(self, ip: str | None = None, provider: str | None = None) -> bool:
        return self.driver(provider).forget(ip)

    def flush_cache(self, provider: str | None = None) -> bool:
        return self.driver(provider).flush_cache()

    def cache_info(self) -> dict[str, Any]:
        cache = self.settings.cache
        return {
            "enabled": cache.enabled,
            "ttl": cache.ttl,
            "prefix": cache.prefix,
            "store": cache.store,
            "tags": cache.tags.names if cache.tags.enabled else [],
        }

    def countries(self) -> dict[str, str]:
        """ISO 3166-1 alpha-2 code to display-name table used for `country`."""
        if self.translator is None:
            return dict(COUNTRIES)
        return {code: self.translator(code) or name for code, name in COUNTRIES.items()}

    def close(self) -> None:
        """Release resources held by built providers (MaxMind readers)."""
        for provider in self._providers.values():
            if isinstance(provider, MaxMind):
                provider.close()
        self._providers.clear()
        self._current = None

    def _build(self, name: str) -> BaseGeolocationProvider:
        settings = self.settings.provider(name)
        if settings is None:
            raise UndefinedDriverError(f"Geolocation provider [{name}] is not defined.")

        try:
            kind = DriverKind(settings.driver)
        except ValueError as exc:
            raise UnsupportedDriverError(
                f"Driver [{settings.driver}] for provider [{name}] is not supported."
            ) from exc

        logger.info(f"Building provider name={name} driver={kind.value}")
        return _FACTORIES[kind](self, name, settings)

    def _cache_for(self, name: str) -> GeolocationCache:
        return GeolocationCache(self.cache_store, self.settings.cache, name)

    def __getattr__(self, item: str) -> Any:
        # Only reached for attributes the manager itself lacks.
        if item.startswith("_"):
            raise AttributeError(item)
        return getattr(self.driver(self._current), item)
