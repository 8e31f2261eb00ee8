"""Token endpoint client.

Implements the three grants the session manager uses against the Microsoft
identity platform v2.0 token endpoint: authorization code with PKCE,
refresh token, and client credentials.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from entrapulse.auth.models.errors import TokenError
from entrapulse.auth.models.tokens import (
    ClientCredentialRequest,
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuth2TokenManager:
    """Sends token requests and parses token endpoint responses.

    Provider-declined requests come back as error TokenResponses so each
    caller can map them to its own error type. Transport and parsing
    failures raise TokenError.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, token_request: TokenRequest
    ) -> TokenResponse:
        """Exchange an authorization code for tokens (RFC 6749 Section 4.1.3).

        Args:
            token_request: Code, PKCE verifier and redirect URI of the attempt

        Returns:
            TokenResponse: Success or provider error response

        Raises:
            TokenError: If the exchange fails due to network/parsing issues
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")
        return await self._post(
            token_request.token_endpoint,
            token_request.to_form_data(),
            "token exchange",
        )

    async def refresh_access_token(
        self, refresh_request: RefreshTokenRequest
    ) -> TokenResponse:
        """Redeem a refresh token (RFC 6749 Section 6).

        Args:
            refresh_request: Refresh token and the scopes to renew

        Returns:
            TokenResponse: Success or provider error response. A successful
                response may carry a rotated refresh token.

        Raises:
            TokenError: If the refresh fails due to network/parsing issues
        """
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")
        return await self._post(
            refresh_request.token_endpoint,
            refresh_request.to_form_data(),
            "token refresh",
        )

    async def request_client_credentials(
        self, credential_request: ClientCredentialRequest
    ) -> TokenResponse:
        """Request an app-only token (RFC 6749 Section 4.4).

        Args:
            credential_request: Client id, secret and the resource .default scope

        Returns:
            TokenResponse: Success or provider error response

        Raises:
            TokenError: If the request fails due to network/parsing issues
        """
        logger.debug(
            f"Requesting client credentials token for {credential_request.client_id} "
            f"at {credential_request.token_endpoint}"
        )
        return await self._post(
            credential_request.token_endpoint,
            credential_request.to_form_data(),
            "client credentials request",
        )

    async def _post(
        self, endpoint: str, form_data: dict[str, str], operation: str
    ) -> TokenResponse:
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}, "
            f"scope={form_data.get('scope', 'none')}"
        )

        try:
            response = await self._http_client.post(
                endpoint,
                data=form_data,
                headers=_FORM_HEADERS,
            )
            return self._parse_token_response(response, operation)

        except TokenError:
            raise
        except httpx.HTTPError as e:
            raise TokenError(f"HTTP error during {operation}: {e}") from e
        except Exception as e:
            raise TokenError(f"Unexpected error during {operation}: {e}") from e

    def _parse_token_response(
        self, response: httpx.Response, operation: str
    ) -> TokenResponse:
        """Parse a token endpoint response into a TokenResponse.

        A 200 must carry an access_token. Any other status is an error
        response (RFC 6749 Section 5.2) and is returned, not raised.

        Raises:
            TokenError: If the response cannot be parsed
        """
        try:
            payload = response.json()
        except ValueError as e:
            raise TokenError(
                f"Invalid {operation} response ({response.status_code}): {e}"
            ) from e

        if not isinstance(payload, dict):
            raise TokenError(f"Invalid {operation} response: expected a JSON object")

        try:
            if response.status_code == 200:
                if "access_token" not in payload:
                    raise TokenError("Token response missing required access_token")

                logger.info(f"{operation.capitalize()} successful")
                return TokenResponse(**payload)

            payload.setdefault("error", "unknown_error")
            token_response = TokenResponse(**payload)
            logger.warning(
                f"{operation.capitalize()} failed with {response.status_code}: "
                f"{token_response.describe_error()}"
            )
            return token_response

        except ValidationError as e:
            raise TokenError(f"Invalid {operation} response format: {e}") from e

    async def close(self) -> None:
        """Release the pooled HTTP connections."""
        await self._http_client.aclose()
