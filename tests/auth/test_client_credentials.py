from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from entrapulse.auth.models.errors import (
    ConfigError,
    InsufficientScopeError,
    InvalidCredentialsError,
    TokenError,
)
from entrapulse.auth.models.tokens import TokenResponse
from entrapulse.auth.services.cache import TokenCache
from entrapulse.auth.services.credentials import ClientCredentialFlow


class TestClientCredentialFlow:
    @pytest.fixture(autouse=True)
    def setup(self, application_config):
        # Arrange
        self.config = application_config
        self.token_manager = AsyncMock()
        self.cache = TokenCache(self.config, self.token_manager)
        self.flow = ClientCredentialFlow(self.token_manager, self.cache)

    async def test_missing_expiry_defaults_to_one_hour(self):
        # Arrange
        self.token_manager.request_client_credentials.return_value = TokenResponse(
            access_token="app-token", token_type="Bearer"
        )
        before = datetime.now(timezone.utc)

        # Act
        token = await self.flow.acquire(self.config)

        # Assert
        assert token.access_token == "app-token"
        assert token.id_token == ""
        assert token.scopes == ["https://graph.microsoft.com/.default"]
        expected = before + timedelta(hours=1)
        assert abs((token.expires_on - expected).total_seconds()) < 5
        assert self.cache.last_token is token
        assert self.cache.tracked_account is None

    async def test_request_carries_secret_and_scopes(self):
        self.token_manager.request_client_credentials.return_value = TokenResponse(
            access_token="app-token", expires_in=3599
        )

        await self.flow.acquire(self.config)

        request = self.token_manager.request_client_credentials.call_args[0][0]
        assert request.client_id == "client-123"
        assert request.client_secret == "s3cret"
        assert request.scope == "https://graph.microsoft.com/.default"
        assert request.token_endpoint == self.config.token_endpoint

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            ("invalid_client", InvalidCredentialsError),
            ("unauthorized_client", InvalidCredentialsError),
            ("invalid_scope", InsufficientScopeError),
            ("temporarily_unavailable", TokenError),
        ],
    )
    async def test_provider_errors_are_mapped(self, error, expected):
        # Arrange
        self.token_manager.request_client_credentials.return_value = TokenResponse(
            error=error, error_description="AADSTS-something"
        )

        # Act & Assert
        with pytest.raises(expected, match=error):
            await self.flow.acquire(self.config)
        assert self.token_manager.request_client_credentials.await_count == 1

    async def test_transport_errors_propagate_without_retry(self):
        self.token_manager.request_client_credentials.side_effect = TokenError("boom")

        with pytest.raises(TokenError, match="boom"):
            await self.flow.acquire(self.config)
        assert self.token_manager.request_client_credentials.await_count == 1

    async def test_missing_secret_is_config_error(self):
        config = self.config.model_copy(update={"client_secret": None})

        with pytest.raises(ConfigError):
            await self.flow.acquire(config)
        self.token_manager.request_client_credentials.assert_not_called()
