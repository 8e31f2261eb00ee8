"""Application-only token acquisition (client credentials grant)."""

from __future__ import annotations

import logging

from entrapulse.auth.models.config import AuthConfig
from entrapulse.auth.models.errors import (
    ConfigError,
    InsufficientScopeError,
    InvalidCredentialsError,
    TokenError,
)
from entrapulse.auth.models.tokens import AuthToken, ClientCredentialRequest
from entrapulse.auth.services.cache import TokenCache
from entrapulse.auth.services.tokens import OAuth2TokenManager

logger = logging.getLogger(__name__)

_INVALID_CREDENTIAL_ERRORS = {"invalid_client", "unauthorized_client"}
_SCOPE_ERRORS = {"invalid_scope", "insufficient_scope"}


class ClientCredentialFlow:
    """Requests app-only tokens with the configured client secret.

    Stateless apart from storing the result in the token cache. No retries;
    retry policy belongs to the caller.
    """

    def __init__(self, token_manager: OAuth2TokenManager, cache: TokenCache | None):
        self._token_manager = token_manager
        self._cache = cache

    async def acquire(self, config: AuthConfig) -> AuthToken:
        """Request a token for the configured scopes.

        Raises:
            ConfigError: If no client secret is configured
            InvalidCredentialsError: If the client id or secret is rejected
            InsufficientScopeError: If the scopes cannot be granted
            TokenError: For any other provider or transport failure
        """
        if not config.client_secret:
            raise ConfigError("Client secret is required for client credentials flow")

        request = ClientCredentialRequest(
            token_endpoint=config.token_endpoint,
            client_id=config.client_id,
            client_secret=config.client_secret,
            scope=" ".join(config.scopes),
        )

        token_response = await self._token_manager.request_client_credentials(request)

        if not token_response.is_success():
            message = token_response.describe_error()
            if token_response.error in _INVALID_CREDENTIAL_ERRORS:
                raise InvalidCredentialsError(message)
            if token_response.error in _SCOPE_ERRORS:
                raise InsufficientScopeError(message)
            raise TokenError(f"Failed to acquire token using client credentials: {message}")

        token = token_response.to_auth_token(config.scopes)
        if self._cache is not None:
            self._cache.store(None, token)

        logger.info(f"Acquired application token for client {config.client_id}")
        return token
