"""
Connection provisioning for Aurora DSQL.

Every physical connection asks the TokenProvider for a fresh token, both for
single connections and for connections opened by the pool.

DSQL does not allow DDL and DML in one transaction, so connections are
autocommit: each statement is its own transaction and OCC conflicts surface
on the statement that caused them.
"""

from typing import Any, Callable, Optional

import psycopg
import structlog
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool

from dsqlkit.core.config import DsqlSettings
from dsqlkit.core.retry import DsqlkitError
from dsqlkit.integrations.dsql.auth import TokenProvider
from dsqlkit.integrations.dsql.uri import (
    parse_dsql_uri,
    prepare_postgres_uri,
    redact_uri,
    resolve_identity,
)

log = structlog.get_logger()


class DatabaseConnectionError(DsqlkitError):
    """The database refused or dropped the connection attempt."""


class ConnectionFactory:
    """Opens psycopg connections to a DSQL cluster.

    Usage:
        factory = ConnectionFactory(settings)
        with factory.connect() as conn:
            conn.execute("SELECT 1")
    """

    def __init__(
        self,
        settings: DsqlSettings,
        token_provider: Optional[TokenProvider] = None,
        connect: Callable[..., psycopg.Connection] = psycopg.connect,
    ) -> None:
        """Initialize the factory.

        Args:
            settings: Endpoint, identity, region and pool sizing.
            token_provider: Source of auth tokens.
            connect: psycopg.connect or a stand-in with the same signature.
        """
        self._settings = settings
        self._tokens = token_provider or TokenProvider(expires_in=settings.token_expires_in)
        self._connect = connect
        self._endpoint = parse_dsql_uri(settings.uri)
        self._identity = resolve_identity(self._endpoint, settings.identity)
        self._region = self._endpoint.region or settings.region
        self._log = log.bind(component="connection_factory", host=self._endpoint.host)

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def region(self) -> Optional[str]:
        return self._region

    def token(self) -> str:
        """Request a new token. AuthError propagates unchanged."""
        return self._tokens.generate(self._endpoint.host, self._region, self._identity)

    def connect(self) -> psycopg.Connection:
        """Open one autocommit connection with a fresh token.

        Raises:
            AuthError: token generation failed.
            DatabaseConnectionError: the server could not be reached or
                rejected the credentials.
        """
        uri = prepare_postgres_uri(self._settings.uri, self.token(), self._identity)
        self._log.info("connecting", uri=redact_uri(uri), identity=self._identity)
        try:
            return self._connect(uri, autocommit=True)
        except psycopg.OperationalError as e:
            self._log.error("connection_failed", error=str(e))
            raise DatabaseConnectionError(
                f"connect to {self._endpoint.host} as {self._identity}", cause=e
            ) from e

    def conninfo(self) -> str:
        """libpq conninfo without a password (the pool adds it per connection)."""
        return make_conninfo(
            host=self._endpoint.host,
            port=self._endpoint.port,
            dbname=self._endpoint.database,
            user=self._identity,
            sslmode="require",
            **dict(self._endpoint.params),
        )

    def create_pool(self, open: bool = True) -> ConnectionPool:
        """Build a pool whose connections each carry a fresh token."""
        factory = self

        class TokenConnection(psycopg.Connection):
            @classmethod
            def connect(cls, conninfo: str = "", **kwargs: Any) -> "TokenConnection":
                kwargs["password"] = factory.token()
                return super().connect(conninfo, **kwargs)

        pool_settings = self._settings.pool
        options: dict[str, Any] = {
            "min_size": pool_settings.min_size,
            "max_size": pool_settings.max_size,
        }
        if pool_settings.max_lifetime_seconds:
            options["max_lifetime"] = pool_settings.max_lifetime_seconds
        if pool_settings.max_idle_seconds:
            options["max_idle"] = pool_settings.max_idle_seconds

        self._log.info("creating_pool", **options)
        return ConnectionPool(
            self.conninfo(),
            connection_class=TokenConnection,
            kwargs={"autocommit": True},
            open=open,
            name="dsqlkit",
            **options,
        )
