import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

from aggregate_executor.errors import ConfigurationError, FormatError, InvalidUriError

logger = logging.getLogger(__name__)

ACCOUNT_ENDPOINT_KEY = "AccountEndpoint"
ACCOUNT_KEY_KEY = "AccountKey"
REQUIRED_SETTINGS = frozenset(key.casefold() for key in (ACCOUNT_ENDPOINT_KEY, ACCOUNT_KEY_KEY))


@dataclass(frozen=True)
class ConnectionDescriptor:
    """
    Validated endpoint and credential for a document store account.

    Every setting from the connection string is kept in `settings` (keyed by
    the lower-cased name); only the endpoint and key are used to connect.
    """
    endpoint: str
    auth_key: str = field(repr=False)
    settings: Mapping[str, str] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if not self.endpoint or not self.endpoint.strip():
            raise ConfigurationError("endpoint must not be empty")
        if not self.auth_key or not self.auth_key.strip():
            raise ConfigurationError("authKey must not be empty")
        _validate_uri(self.endpoint)
        object.__setattr__(self, "settings", MappingProxyType(dict(self.settings)))


def _validate_uri(endpoint: str) -> None:
    try:
        parts = urlsplit(endpoint)
        # Accessing port forces validation of the netloc
        parts.port
    except ValueError as e:
        raise InvalidUriError(f"Invalid URI '{endpoint}': {e}") from e

    if not parts.scheme or not parts.netloc:
        raise InvalidUriError(f"Invalid URI '{endpoint}': an absolute URI with scheme and host is required")


def _tokenize(connection_string: str) -> Dict[str, str]:
    """Split `name=value;name=value` into a dict keyed by lower-cased name."""
    settings: Dict[str, str] = {}

    for name_value in connection_string.split(";"):
        if not name_value:
            continue

        name, separator, value = name_value.partition("=")
        if not separator:
            raise FormatError('Settings must be of the form "name=value".')

        key = name.casefold()
        if key in settings:
            raise FormatError(f"Duplicate setting '{name}' found.")

        settings[key] = value

    return settings


def _parse_impl(connection_string: Optional[str]) -> ConnectionDescriptor:
    if connection_string is None or not connection_string.strip():
        raise ConfigurationError("Connection string must not be empty")

    settings = _tokenize(connection_string)

    missing = REQUIRED_SETTINGS - settings.keys()
    if missing:
        names = [key for key in (ACCOUNT_ENDPOINT_KEY, ACCOUNT_KEY_KEY) if key.casefold() in missing]
        raise FormatError(f"Connection string is missing required settings: {', '.join(names)}")

    return ConnectionDescriptor(
        endpoint=settings[ACCOUNT_ENDPOINT_KEY.casefold()],
        auth_key=settings[ACCOUNT_KEY_KEY.casefold()],
        settings=settings,
    )


def parse(connection_string: Optional[str]) -> ConnectionDescriptor:
    return _parse_impl(connection_string)


def try_parse(connection_string: Optional[str]) -> Optional[ConnectionDescriptor]:
    """Same as parse(), but returns None instead of raising."""
    try:
        return _parse_impl(connection_string)
    except ConfigurationError as e:
        logger.debug(f"Connection string rejected: {e}")
        return None
