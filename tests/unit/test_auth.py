"""Unit tests for IAM token generation."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from dsqlkit.integrations.dsql.auth import AuthError, TokenProvider

HOST = "abc123.dsql.us-east-1.on.aws"


@pytest.fixture
def session():
    session = MagicMock()
    client = session.client.return_value
    client.generate_db_connect_admin_auth_token.return_value = "admin-token"
    client.generate_db_connect_auth_token.return_value = "user-token"
    return session


class TestTokenProvider:
    """Test TokenProvider.generate."""

    def test_admin_uses_admin_token(self, session):
        provider = TokenProvider(session=session, expires_in=600)

        assert provider.generate(HOST, "us-east-1", "admin") == "admin-token"

        session.client.assert_called_once_with("dsql", region_name="us-east-1")
        session.client.return_value.generate_db_connect_admin_auth_token.assert_called_once_with(
            Hostname=HOST, ExpiresIn=600
        )

    def test_default_identity_is_admin(self, session):
        assert TokenProvider(session=session).generate(HOST, "us-east-1") == "admin-token"

    def test_other_role_uses_regular_token(self, session):
        token = TokenProvider(session=session).generate(HOST, "us-east-1", "app_user")

        assert token == "user-token"
        session.client.return_value.generate_db_connect_admin_auth_token.assert_not_called()

    def test_fresh_token_every_call(self, session):
        client = session.client.return_value
        client.generate_db_connect_admin_auth_token.side_effect = ["t1", "t2"]
        provider = TokenProvider(session=session)

        assert provider.generate(HOST, "us-east-1") == "t1"
        assert provider.generate(HOST, "us-east-1") == "t2"
        assert client.generate_db_connect_admin_auth_token.call_count == 2

    def test_client_cached_per_region(self, session):
        provider = TokenProvider(session=session)

        provider.generate(HOST, "us-east-1")
        provider.generate(HOST, "us-east-1")
        provider.generate("x.dsql.us-west-2.on.aws", "us-west-2")

        assert session.client.call_count == 2

    def test_missing_credentials_is_auth_error(self, session):
        session.client.return_value.generate_db_connect_admin_auth_token.side_effect = (
            NoCredentialsError()
        )

        with pytest.raises(AuthError) as exc_info:
            TokenProvider(session=session).generate(HOST, "us-east-1")

        assert isinstance(exc_info.value.cause, NoCredentialsError)
        assert "admin@" in str(exc_info.value)

    def test_client_error_is_auth_error(self, session):
        session.client.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GenerateToken"
        )

        with pytest.raises(AuthError):
            TokenProvider(session=session).generate(HOST, "us-east-1", "app_user")
