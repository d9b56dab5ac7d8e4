"""
IAM token generation for Aurora DSQL.

Tokens are short-lived presigned strings used as the connection password.
A fresh token is generated for every connection attempt; nothing here caches
tokens. Token failures are never retried by dsqlkit.
"""

import threading
from typing import Any, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from dsqlkit.core.config import DEFAULT_IDENTITY, DEFAULT_TOKEN_EXPIRES_IN
from dsqlkit.core.retry import DsqlkitError

log = structlog.get_logger()


class AuthError(DsqlkitError):
    """Token could not be generated (credentials, region, permissions)."""


class TokenProvider:
    """Generates DSQL auth tokens with boto3.

    The ``admin`` role needs an admin token (dsql:DbConnectAdmin); any other
    role uses a regular token (dsql:DbConnect).

    Usage:
        provider = TokenProvider()
        token = provider.generate("abc.dsql.us-east-1.on.aws", "us-east-1", "admin")
    """

    def __init__(
        self,
        session: Optional[boto3.Session] = None,
        expires_in: int = DEFAULT_TOKEN_EXPIRES_IN,
    ) -> None:
        """Initialize the provider.

        Args:
            session: boto3 session to create clients from (default session if None).
            expires_in: Token lifetime in seconds.
        """
        self._session = session
        self._expires_in = expires_in
        self._clients: dict[Optional[str], Any] = {}
        self._lock = threading.Lock()

    def _client(self, region: Optional[str]) -> Any:
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                session = self._session or boto3.Session()
                client = session.client("dsql", region_name=region)
                self._clients[region] = client
            return client

    def generate(
        self,
        hostname: str,
        region: Optional[str],
        identity: Optional[str] = None,
    ) -> str:
        """Generate a token for connecting to hostname as identity.

        Raises:
            AuthError: if botocore fails to sign the request.
        """
        identity = identity or DEFAULT_IDENTITY
        try:
            client = self._client(region)
            if identity == DEFAULT_IDENTITY:
                token = client.generate_db_connect_admin_auth_token(
                    Hostname=hostname, ExpiresIn=self._expires_in
                )
            else:
                token = client.generate_db_connect_auth_token(
                    Hostname=hostname, ExpiresIn=self._expires_in
                )
        except (BotoCoreError, ClientError) as e:
            log.error(
                "token_generation_failed",
                hostname=hostname,
                region=region,
                identity=identity,
                error=str(e),
            )
            raise AuthError(f"generate DSQL auth token for {identity}@{hostname}", cause=e) from e

        log.debug("token_generated", hostname=hostname, identity=identity)
        return token
