"""Aurora DSQL integration - auth tokens, URIs, connections, error codes."""

from dsqlkit.integrations.dsql.auth import AuthError, TokenProvider
from dsqlkit.integrations.dsql.connection import ConnectionFactory, DatabaseConnectionError
from dsqlkit.integrations.dsql.errors import (
    classify_dsql_error,
    is_occ_conflict,
    is_unique_violation,
    sqlstate_of,
)
from dsqlkit.integrations.dsql.uri import (
    DsqlEndpoint,
    parse_dsql_uri,
    prepare_postgres_uri,
    redact_uri,
    region_from_host,
)

__all__ = [
    "AuthError",
    "TokenProvider",
    "ConnectionFactory",
    "DatabaseConnectionError",
    "classify_dsql_error",
    "is_occ_conflict",
    "is_unique_violation",
    "sqlstate_of",
    "DsqlEndpoint",
    "parse_dsql_uri",
    "prepare_postgres_uri",
    "redact_uri",
    "region_from_host",
]
