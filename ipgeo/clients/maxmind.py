import os
from pathlib import Path
from typing import Any

import geoip2.database
import geoip2.errors
import maxminddb

from ipgeo.cache import GeolocationCache, RawGeolocation
from ipgeo.clients.base import BaseGeolocationProvider, optional_bool
from ipgeo.countries import CountryTranslator
from ipgeo.errors import AddressNotFoundError, DatabaseConfigurationError, IncompleteDataError, ProviderError
from ipgeo.logger import get_logger
from ipgeo.settings import DriverKind

logger = get_logger("clients.maxmind")

DOWNLOAD_HINT = "Download it from https://dev.maxmind.com/geoip/geolite2-free-geolocation-data"


def open_database(path: Path) -> geoip2.database.Reader:
    """Open a MaxMind database, failing fast on anything that would break later lookups."""
    if not path.exists():
        raise DatabaseConfigurationError(f"MaxMind database not found at: {path}. {DOWNLOAD_HINT}")

    if not path.is_file() or not os.access(path, os.R_OK):
        raise DatabaseConfigurationError(f"MaxMind database is not readable: {path}. Check file permissions.")

    try:
        reader = geoip2.database.Reader(str(path))
    except maxminddb.InvalidDatabaseError as exc:
        raise DatabaseConfigurationError(f"MaxMind database is corrupt or invalid: {path}: {exc}") from exc
    except (OSError, ValueError) as exc:
        raise DatabaseConfigurationError(f"Failed to initialize MaxMind reader for {path}: {exc}") from exc

    database_type = reader.metadata().database_type
    if "City" not in database_type:
        reader.close()
        raise DatabaseConfigurationError(
            f"MaxMind database at {path} is a {database_type} database; a City database is required. {DOWNLOAD_HINT}"
        )
    return reader


class MaxMind(BaseGeolocationProvider):
    """Provider backed by a local MaxMind GeoIP2/GeoLite2 City database.

    No network and no credential: the reader is opened (and validated) before
    the provider is built, and each lookup is a synchronous keyed read.
    Addresses missing from the dataset raise AddressNotFoundError.
    """

    kind = DriverKind.maxmind

    def __init__(
        self,
        reader: geoip2.database.Reader,
        *,
        name: str | None = None,
        cache: GeolocationCache | None = None,
        translator: CountryTranslator | None = None,
    ) -> None:
        super().__init__(name=name, cache=cache, translator=translator)
        self._reader = reader

    @classmethod
    def from_path(cls, path: Path | str, **kwargs: Any) -> "MaxMind":
        return cls(open_database(Path(path)), **kwargs)

    async def _fetch(self, ip: str | None) -> RawGeolocation:
        if ip is None:
            # A local database cannot discover the caller; there is no "self" endpoint.
            raise ProviderError("MaxMind lookups need an explicit IP address or a known client address.")

        try:
            record = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError as exc:
            raise AddressNotFoundError(f"IP address not found in database: {ip}") from exc
        except (ValueError, TypeError, maxminddb.InvalidDatabaseError, geoip2.errors.GeoIP2Error) as exc:
            # TypeError: the reader holds a Country or ASN database.
            raise ProviderError(f"MaxMind database error: {exc}") from exc

        if not record.country.iso_code:
            raise IncompleteDataError(f"Incomplete geolocation data in MaxMind database for {ip}: missing country")

        logger.debug(f"Database hit ip={ip} country={record.country.iso_code}")
        return self._normalize_record(ip, record)

    @staticmethod
    def _normalize_record(ip: str, record: Any) -> RawGeolocation:
        """Map a geoip2 City model into the raw canonical map."""
        traits = record.traits
        asn = traits.autonomous_system_number

        return {
            "ip": traits.ip_address or ip,
            "city": record.city.name,
            "region": record.subdivisions.most_specific.name,
            "country": record.country.iso_code,
            "countryCode": record.country.iso_code,
            "latitude": record.location.latitude,
            "longitude": record.location.longitude,
            "timezone": record.location.time_zone,
            "postalCode": record.postal.code,
            "organization": traits.organization or traits.autonomous_system_organization,
            "isp": traits.isp,
            "asn": f"AS{asn}" if asn else None,
            "asnName": traits.autonomous_system_organization,
            "connectionType": traits.connection_type,
            "continent": record.continent.name,
            "continentCode": record.continent.code,
            "isProxy": optional_bool(traits.is_anonymous),
            "isTor": optional_bool(traits.is_tor_exit_node),
        }

    def close(self) -> None:
        self._reader.close()
