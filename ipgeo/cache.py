"""Cache-aside support for provider lookups.

Providers never cache `GeolocationDetails` objects, only the raw canonical map
a successful fetch produced. Keys are namespaced so entries can live in a
store shared with unrelated application data:

    geolocation:ipinfo:<md5 of the ip, or of "current" for the caller's own address>
"""

import hashlib
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from ipgeo.logger import get_logger
from ipgeo.settings import CacheSettings

logger = get_logger("cache")

CURRENT_ADDRESS_SENTINEL = "current"

RawGeolocation = dict[str, Any]


class CacheStore(Protocol):
    """Minimal key-value store contract the providers rely on."""

    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] | None = None) -> None: ...

    def forget(self, key: str) -> bool: ...

    def flush(self, tags: Iterable[str]) -> bool: ...


class InMemoryCacheStore:
    """Process-local store with per-entry expiry and tag-based bulk invalidation."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._tags: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                self._drop(key)
                return None
            return value

    def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] | None = None) -> None:
        # ttl <= 0 means "no expiry".
        expires_at = self._clock() + ttl if ttl > 0 else None
        with self._lock:
            self._entries[key] = (value, expires_at)
            for tag in tags or ():
                self._tags.setdefault(tag, set()).add(key)

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._drop(key)

    def flush(self, tags: Iterable[str]) -> bool:
        with self._lock:
            keys: set[str] = set()
            for tag in tags:
                keys |= self._tags.pop(tag, set())
            for key in keys:
                self._drop(key)
        return True

    def _drop(self, key: str) -> bool:
        """Remove an entry and its tag memberships. Caller holds the lock."""
        removed = self._entries.pop(key, None) is not None
        for tag in [tag for tag, keys in self._tags.items() if key in keys]:
            self._tags[tag].discard(key)
            if not self._tags[tag]:
                del self._tags[tag]
        return removed

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, expires_at in self._entries.values() if expires_at is None or expires_at > now)


def make_cache_key(prefix: str, provider: str, ip: str | None) -> str:
    digest = hashlib.md5((ip or CURRENT_ADDRESS_SENTINEL).encode("utf-8")).hexdigest()
    return f"{prefix}:{provider}:{digest}"


class GeolocationCache:
    """Get-or-compute wrapper around a CacheStore for a single provider."""

    def __init__(self, store: CacheStore, settings: CacheSettings, provider: str) -> None:
        self._store = store
        self._settings = settings
        self._provider = provider

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def tags(self) -> list[str] | None:
        """Tag names entries are written with, or None when tagging is disabled.

        Every entry also carries a per-provider tag so one provider can be flushed alone.
        """
        if not self._settings.tags.enabled:
            return None
        return [*self._settings.tags.names, self._provider_tag]

    @property
    def _provider_tag(self) -> str:
        return f"{self._settings.prefix}:{self._provider}"

    def key(self, ip: str | None) -> str:
        return make_cache_key(self._settings.prefix, self._provider, ip)

    async def remember(self, ip: str | None, fetch: Callable[[], Awaitable[RawGeolocation]]) -> RawGeolocation:
        """Return the cached raw map for `ip`, or fetch, store and return it.

        A failed fetch propagates its exception and leaves the store untouched.
        """
        if not self.enabled:
            return await fetch()

        key = self.key(ip)
        cached = self._store.get(key)
        if cached is not None:
            logger.debug(f"Cache hit provider={self._provider} key={key}")
            return dict(cached)

        logger.debug(f"Cache miss provider={self._provider} key={key}")
        data = await fetch()
        self._store.put(key, dict(data), self._settings.ttl, tags=self.tags)
        return data

    def forget(self, ip: str | None) -> bool:
        return self._store.forget(self.key(ip))

    def flush(self) -> bool:
        """Drop every entry written by this provider.

        Only possible with tags enabled; without them the store may hold unrelated
        data, so nothing is flushed and False is returned.
        """
        if not self._settings.tags.enabled:
            logger.warning(f"Cache tags are disabled, refusing to flush provider={self._provider}")
            return False
        return self._store.flush([self._provider_tag])
