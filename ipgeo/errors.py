class AppError(Exception):
    """Base application error for the IP geolocation package."""


class ConfigurationError(AppError):
    """Raised when a provider cannot be built from the current configuration."""


class UndefinedDriverError(ConfigurationError):
    """Raised when the requested provider name is not present in configuration."""


class UnsupportedDriverError(ConfigurationError):
    """Raised when a provider declares a driver kind we have no factory for."""


class DatabaseConfigurationError(ConfigurationError):
    """Raised when a local database file is missing, unreadable or corrupt."""


class GeoLookupError(AppError):
    """Base error for any failure while looking up an IP address."""


class InvalidAddressError(GeoLookupError):
    """Raised when the supplied IP address is syntactically invalid."""


class MissingCredentialError(GeoLookupError):
    """Raised when a provider requires a credential that is not configured."""


class ProviderError(GeoLookupError):
    """Raised when the backend responded but signalled a failure."""


class ReservedAddressError(ProviderError):
    """Raised when the backend refuses a reserved/private address (e.g. 127.0.0.1, 192.168.x.x)."""


class TransportError(GeoLookupError):
    """Raised when the backend could not be reached (timeout, DNS, connection reset)."""


class IncompleteDataError(GeoLookupError):
    """Raised when the backend omitted fields required to build a usable record."""


class AddressNotFoundError(GeoLookupError):
    """Raised when a valid address is absent from the local database."""
