"""
Conversion between dsql:// URIs and libpq-compatible postgresql:// URIs.

A cluster is addressed as::

    dsql://admin@abc123.dsql.us-east-1.on.aws/postgres?region=us-east-1

PostgreSQL drivers do not understand the scheme or the ``region`` parameter,
and need the IAM token as the password with TLS required.
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from dsqlkit.core.config import ConfigError, DEFAULT_IDENTITY

DSQL_SCHEME = "dsql"
POSTGRES_SCHEME = "postgresql"

_HOST_REGION = re.compile(r"^[^.]+\.dsql\.([a-z0-9-]+)\.on\.aws$")


@dataclass(frozen=True)
class DsqlEndpoint:
    """Parsed pieces of a dsql:// URI."""

    host: str
    port: Optional[int]
    database: str
    username: Optional[str]
    region: Optional[str]
    params: tuple[tuple[str, str], ...] = ()


def region_from_host(host: str) -> Optional[str]:
    """Extract the region from a cluster hostname, e.g. ``us-east-1``."""
    match = _HOST_REGION.match(host.lower())
    return match.group(1) if match else None


def parse_dsql_uri(uri: str) -> DsqlEndpoint:
    """Split a dsql:// URI into its parts.

    Raises:
        ConfigError: on a wrong scheme or missing host.
    """
    parts = urlsplit(uri)
    if parts.scheme != DSQL_SCHEME:
        raise ConfigError(f"expected a dsql:// URI, got scheme {parts.scheme!r}")
    if not parts.hostname:
        raise ConfigError("dsql:// URI has no host")

    params = parse_qsl(parts.query, keep_blank_values=True)
    region = dict(params).get("region") or region_from_host(parts.hostname)
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"invalid port in dsql:// URI: {e}", cause=e)

    return DsqlEndpoint(
        host=parts.hostname,
        port=port,
        database=parts.path.lstrip("/") or "postgres",
        username=parts.username or None,
        region=region,
        params=tuple((k, v) for k, v in params if k != "region"),
    )


def resolve_identity(endpoint: DsqlEndpoint, username: Optional[str] = None) -> str:
    """Pick the database role: explicit override, then URI, then admin."""
    return username or endpoint.username or DEFAULT_IDENTITY


def prepare_postgres_uri(
    uri: str,
    token: str,
    username: Optional[str] = None,
) -> str:
    """Turn a dsql:// URI into a postgresql:// URI authenticated by token.

    ``sslmode=require`` is forced and ``region`` dropped. Other query
    parameters are preserved.
    """
    endpoint = parse_dsql_uri(uri)
    user = resolve_identity(endpoint, username)

    netloc = f"{quote(user, safe='')}:{quote(token, safe='')}@{endpoint.host}"
    if endpoint.port:
        netloc += f":{endpoint.port}"

    params = dict(endpoint.params)
    params["sslmode"] = "require"

    return urlunsplit(
        (POSTGRES_SCHEME, netloc, f"/{endpoint.database}", urlencode(params), "")
    )


def redact_uri(uri: str) -> str:
    """Replace the password of a URI with *** for logging."""
    parts = urlsplit(uri)
    if parts.password is None:
        return uri
    netloc = parts.netloc.rsplit("@", 1)[1]
    user = parts.username or ""
    return urlunsplit(parts._replace(netloc=f"{user}:***@{netloc}"))
