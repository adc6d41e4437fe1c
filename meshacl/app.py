"""Server settings helpers: TLS client auth, database strings, bearer auth."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

log = logging.getLogger(__name__)

AUTH_PREFIX = "Bearer "
POSTGRES = "postgres"
SQLITE = "sqlite3"

DISABLED_CLIENT_AUTH = "disabled"
RELAXED_CLIENT_AUTH = "relaxed"
ENFORCED_CLIENT_AUTH = "enforced"


class ClientAuthMode(Enum):
    """How TLS client certificates are handled."""

    NO_CLIENT_CERT = "no_client_cert"
    REQUIRE_ANY_CLIENT_CERT = "require_any_client_cert"
    REQUIRE_AND_VERIFY_CLIENT_CERT = "require_and_verify_client_cert"


_CLIENT_AUTH_MODES = {
    DISABLED_CLIENT_AUTH: ClientAuthMode.NO_CLIENT_CERT,
    RELAXED_CLIENT_AUTH: ClientAuthMode.REQUIRE_ANY_CLIENT_CERT,
    ENFORCED_CLIENT_AUTH: ClientAuthMode.REQUIRE_AND_VERIFY_CLIENT_CERT,
}


class UnsupportedDatabaseError(ValueError):
    """The configured database type is not supported."""

    def __init__(self, message: str = "unsupported DB") -> None:
        super().__init__(message)


class AuthenticationError(Exception):
    """A request failed bearer authentication; ``status`` is the HTTP code."""

    def __init__(self, message: str, status: int = 401) -> None:
        super().__init__(message)
        self.status = status


def lookup_tls_client_auth_mode(mode: str) -> tuple[ClientAuthMode, bool]:
    """Map a configured mode name; unknown names give the default and False."""
    if mode in _CLIENT_AUTH_MODES:
        return _CLIENT_AUTH_MODES[mode], True
    return ClientAuthMode.REQUIRE_ANY_CLIENT_CERT, False


def database_connection_string(
    db_type: str,
    host: str = "",
    name: str = "",
    user: str = "",
    port: int = 0,
    password: str = "",
    path: str = "",
) -> str:
    """Build the connection string for a PostgreSQL or SQLite database."""
    if db_type == POSTGRES:
        dsn = f"host={host} dbname={name} user={user} sslmode=disable"
        if port:
            dsn += f" port={port}"
        if password:
            dsn += f" password={password}"
        return dsn
    if db_type == SQLITE:
        return path
    raise UnsupportedDatabaseError()


def authenticate_bearer(header: str | None, validator: Callable[[str], bool]) -> str:
    """Check an Authorization header and return the token it carries."""
    header = header or ""
    if not header.startswith(AUTH_PREFIX):
        log.error('missing "Bearer " prefix in "Authorization" header')
        raise AuthenticationError(
            'missing "Bearer " prefix in "Authorization" header', 401
        )
    token = header[len(AUTH_PREFIX):]
    try:
        valid = validator(token)
    except Exception as exc:
        log.error("failed to validate token: %s", exc)
        raise AuthenticationError("failed to validate token", 500) from exc
    if not valid:
        log.info("invalid token")
        raise AuthenticationError("invalid token", 401)
    return token