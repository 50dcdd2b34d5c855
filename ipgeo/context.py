"""Request-scoped access to the caller's own IP address.

The HTTP layer records the address it observed for the current request; a
provider asked to look up "no address" resolves the caller through it.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_client_ip: ContextVar[str | None] = ContextVar("ipgeo_client_ip", default=None)


def get_client_ip() -> str | None:
    return _client_ip.get()


@contextmanager
def client_ip_context(ip: str | None) -> Iterator[None]:
    """Make `ip` the caller's address for the duration of the block."""
    token = _client_ip.set(ip)
    try:
        yield
    finally:
        _client_ip.reset(token)
