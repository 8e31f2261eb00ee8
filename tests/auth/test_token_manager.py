"""Tests for the token endpoint client.

Covers the three grants and the response parsing rules:
- Form encoding and request parameters per grant
- Error responses returned, not raised
- Transport and parsing failures raised as TokenError
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from entrapulse.auth.models.errors import TokenError
from entrapulse.auth.models.tokens import (
    ClientCredentialRequest,
    RefreshTokenRequest,
    TokenRequest,
)
from entrapulse.auth.services.tokens import OAuth2TokenManager

TOKEN_ENDPOINT = "https://login.microsoftonline.com/tenant-456/oauth2/v2.0/token"


def json_response(status_code: int, payload) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


class TestTokenExchange:
    """Authorization code grant against the v2.0 token endpoint."""

    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()
        self.code_verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

    async def test_successful_token_exchange_with_all_fields(self):
        # Arrange
        token_request = TokenRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="auth-code-123",
            redirect_uri="http://localhost",
            client_id="client-123",
            code_verifier=self.code_verifier,
            scope="User.Read openid profile offline_access",
        )
        self.token_manager._http_client.post.return_value = json_response(
            200,
            {
                "access_token": "access-token-xyz",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "refresh-token-abc",
                "id_token": "id-token-def",
                "scope": "User.Read profile openid",
                "ext_expires_in": 3600,
            },
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(token_request)

        # Assert
        assert token_response.is_success()
        assert token_response.access_token == "access-token-xyz"
        assert token_response.refresh_token == "refresh-token-abc"
        assert token_response.id_token == "id-token-def"
        assert token_response.expires_in == 3600

        call_args = self.token_manager._http_client.post.call_args
        assert call_args[0][0] == TOKEN_ENDPOINT

        form_data = call_args[1]["data"]
        assert form_data == {
            "grant_type": "authorization_code",
            "client_id": "client-123",
            "code": "auth-code-123",
            "redirect_uri": "http://localhost",
            "code_verifier": self.code_verifier,
            "scope": "User.Read openid profile offline_access",
        }

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Accept"] == "application/json"

    async def test_error_response_is_returned_not_raised(self):
        # Arrange
        token_request = TokenRequest(
            token_endpoint=TOKEN_ENDPOINT,
            code="used-code",
            redirect_uri="http://localhost",
            client_id="client-123",
            code_verifier=self.code_verifier,
        )
        self.token_manager._http_client.post.return_value = json_response(
            400,
            {
                "error": "invalid_grant",
                "error_description": "AADSTS54005: OAuth2 Authorization code was already redeemed",
                "error_codes": [54005],
            },
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(token_request)

        # Assert
        assert token_response.is_error()
        assert not token_response.is_success()
        assert token_response.describe_error().startswith("invalid_grant - AADSTS54005")
        assert "scope" not in self.token_manager._http_client.post.call_args[1]["data"]

    async def test_error_status_without_error_field_gets_placeholder(self):
        self.token_manager._http_client.post.return_value = json_response(500, {})

        token_response = await self.token_manager.exchange_code_for_token(
            TokenRequest(
                token_endpoint=TOKEN_ENDPOINT,
                code="c",
                redirect_uri="http://localhost",
                client_id="client-123",
                code_verifier=self.code_verifier,
            )
        )

        assert token_response.error == "unknown_error"

    async def test_network_error_raises_token_error(self):
        # Arrange
        self.token_manager._http_client.post.side_effect = httpx.ConnectError(
            "connection refused"
        )

        # Act & Assert
        with pytest.raises(TokenError, match="HTTP error during token exchange"):
            await self.token_manager.exchange_code_for_token(
                TokenRequest(
                    token_endpoint=TOKEN_ENDPOINT,
                    code="c",
                    redirect_uri="http://localhost",
                    client_id="client-123",
                    code_verifier=self.code_verifier,
                )
            )

    async def test_success_without_access_token_raises(self):
        self.token_manager._http_client.post.return_value = json_response(
            200, {"token_type": "Bearer"}
        )

        with pytest.raises(TokenError, match="missing required access_token"):
            await self.token_manager.exchange_code_for_token(
                TokenRequest(
                    token_endpoint=TOKEN_ENDPOINT,
                    code="c",
                    redirect_uri="http://localhost",
                    client_id="client-123",
                    code_verifier=self.code_verifier,
                )
            )

    async def test_non_json_body_raises(self):
        response = MagicMock()
        response.status_code = 502
        response.json.side_effect = ValueError("Expecting value")
        self.token_manager._http_client.post.return_value = response

        with pytest.raises(TokenError, match="Invalid token exchange response"):
            await self.token_manager.exchange_code_for_token(
                TokenRequest(
                    token_endpoint=TOKEN_ENDPOINT,
                    code="c",
                    redirect_uri="http://localhost",
                    client_id="client-123",
                    code_verifier=self.code_verifier,
                )
            )


class TestRefreshAndClientCredentials:
    def setup_method(self):
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()

    async def test_refresh_request_form_data(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(
            200, {"access_token": "new-token", "expires_in": 3600}
        )

        # Act
        token_response = await self.token_manager.refresh_access_token(
            RefreshTokenRequest(
                token_endpoint=TOKEN_ENDPOINT,
                refresh_token="refresh-abc",
                client_id="client-123",
                scope="User.Read offline_access",
            )
        )

        # Assert
        assert token_response.access_token == "new-token"
        form_data = self.token_manager._http_client.post.call_args[1]["data"]
        assert form_data == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-abc",
            "client_id": "client-123",
            "scope": "User.Read offline_access",
        }

    async def test_client_credentials_form_data_has_no_pkce(self):
        # Arrange
        self.token_manager._http_client.post.return_value = json_response(
            200, {"access_token": "app-token", "expires_in": 3599}
        )

        # Act
        await self.token_manager.request_client_credentials(
            ClientCredentialRequest(
                token_endpoint=TOKEN_ENDPOINT,
                client_id="client-123",
                client_secret="s3cret",
                scope="https://graph.microsoft.com/.default",
            )
        )

        # Assert
        form_data = self.token_manager._http_client.post.call_args[1]["data"]
        assert form_data == {
            "grant_type": "client_credentials",
            "client_id": "client-123",
            "client_secret": "s3cret",
            "scope": "https://graph.microsoft.com/.default",
        }
        assert "code_verifier" not in form_data

    def test_secrets_stay_out_of_request_repr(self):
        request = ClientCredentialRequest(
            token_endpoint=TOKEN_ENDPOINT,
            client_id="client-123",
            client_secret="s3cret",
            scope="x",
        )

        assert "s3cret" not in repr(request)

    async def test_close_closes_http_client(self):
        await self.token_manager.close()

        self.token_manager._http_client.aclose.assert_awaited_once()
