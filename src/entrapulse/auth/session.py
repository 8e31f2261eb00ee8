"""Authentication session manager.

The single entry point the rest of the desktop app uses. Graph data access,
MCP orchestration and the UI only depend on get_token() returning a valid
AuthToken or raising a typed AuthError.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Protocol
from urllib.parse import urlparse

from entrapulse.auth.models.config import GRAPH_DEFAULT_SCOPE, AuthConfig, AuthMode
from entrapulse.auth.models.errors import AuthError, ConfigError, NotSignedInError
from entrapulse.auth.models.session import AuthenticationInfo, ConfigurationCheck
from entrapulse.auth.models.tokens import AuthToken
from entrapulse.auth.primitives.claims import TokenClaimsDecoder
from entrapulse.auth.services.cache import TokenCache
from entrapulse.auth.services.credentials import ClientCredentialFlow
from entrapulse.auth.services.interactive import InteractiveFlowController
from entrapulse.auth.services.tokens import OAuth2TokenManager
from entrapulse.auth.surfaces.base import WebSurfaceFactory
from entrapulse.auth.surfaces.loopback import LoopbackBrowserSurface

logger = logging.getLogger(__name__)


class SessionFlow(Protocol):
    """Mode-specific behaviour, selected once by initialize()."""

    mode: AuthMode

    @property
    def is_authenticated(self) -> bool: ...

    async def sign_in(self) -> AuthToken: ...

    async def get_token(self) -> AuthToken: ...

    def abort(self) -> None: ...


class DelegatedSession:
    """Signed-in user session: interactive sign-in, silent renewal afterwards."""

    mode = AuthMode.DELEGATED

    def __init__(
        self,
        config: AuthConfig,
        cache: TokenCache,
        controller: InteractiveFlowController,
    ):
        self._config = config
        self._cache = cache
        self._controller = controller

    @property
    def is_authenticated(self) -> bool:
        return self._cache.tracked_account is not None

    async def sign_in(self) -> AuthToken:
        return await self._controller.sign_in()

    async def get_token(self) -> AuthToken:
        """Silent renewal only. A miss never opens a window.

        Raises:
            NotSignedInError: If there is no account or renewal missed
            TokenRefreshError: If renewal failed in transport
        """
        account = self._cache.tracked_account
        if account is None or not self._cache.list_accounts():
            raise NotSignedInError("User not signed in - please sign in first")

        token = await self._cache.try_silent(account, self._config.scopes)
        if token is None:
            logger.info("Silent token acquisition failed, requiring sign-in")
            raise NotSignedInError("User not signed in - please sign in first")
        return token

    def abort(self) -> None:
        self._controller.abort()


class ApplicationSession:
    """App-only session: every token comes from a fresh credential grant."""

    mode = AuthMode.APPLICATION

    def __init__(self, config: AuthConfig, flow: ClientCredentialFlow):
        self._config = config
        self._flow = flow

    @property
    def is_authenticated(self) -> bool:
        # No user session to lose; credentials are checked per request.
        return True

    async def sign_in(self) -> AuthToken:
        return await self._flow.acquire(self._config)

    async def get_token(self) -> AuthToken:
        return await self._flow.acquire(self._config)

    def abort(self) -> None:
        pass


class AuthSessionManager:
    """Facade over both authentication modes.

    Usage:
        manager = AuthSessionManager(AuthConfig.from_env())
        await manager.sign_in()
        token = await manager.get_token()
    """

    def __init__(
        self,
        config: AuthConfig | None = None,
        surface_factory: WebSurfaceFactory | None = None,
        claims_decoder: TokenClaimsDecoder | None = None,
    ):
        """Initialize the session manager.

        Args:
            config: Optional configuration; initialize() may be called later
            surface_factory: Creates the sign-in window for delegated mode.
                Defaults to the system browser with a loopback listener.
            claims_decoder: Decoder used for permission display
        """
        self._surface_factory = surface_factory
        self._claims_decoder = claims_decoder or TokenClaimsDecoder()
        self._config: AuthConfig | None = None
        self._session: SessionFlow | None = None
        self._cache: TokenCache | None = None
        self._token_manager: OAuth2TokenManager | None = None

        if config is not None:
            self.initialize(config)

    @property
    def config(self) -> AuthConfig | None:
        return self._config

    @property
    def cache(self) -> TokenCache | None:
        return self._cache

    def initialize(self, config: AuthConfig) -> None:
        """Validate configuration and select the flow for its mode.

        Raises:
            ConfigError: If client/tenant ids are missing, or application mode
                has no client secret
        """
        if not config.client_id or not config.tenant_id:
            raise ConfigError(
                "Missing required configuration: client_id and tenant_id are required"
            )
        if config.mode == AuthMode.APPLICATION and not config.client_secret:
            raise ConfigError("Client secret is required for client credentials mode")

        if self._session is not None:
            self._session.abort()

        self._config = config.model_copy(deep=True)
        if self._token_manager is None:
            self._token_manager = OAuth2TokenManager(timeout=self._config.timeout)
        self._cache = TokenCache(self._config, self._token_manager)

        if self._config.mode == AuthMode.APPLICATION:
            self._session = ApplicationSession(
                self._config, ClientCredentialFlow(self._token_manager, self._cache)
            )
        else:
            surface_factory = self._surface_factory or functools.partial(
                LoopbackBrowserSurface, self._config.redirect_uri
            )
            controller = InteractiveFlowController(
                self._config,
                self._token_manager,
                self._cache,
                surface_factory,
                claims_decoder=self._claims_decoder,
            )
            self._session = DelegatedSession(self._config, self._cache, controller)

        logger.info(
            f"Authentication initialized in {self._config.mode.value} mode "
            f"for client {self._config.client_id}"
        )

    async def sign_in(self) -> AuthToken:
        """Acquire a token with the configured mode's flow.

        Errors from the flows propagate unchanged.

        Returns:
            AuthToken: The token issued by the interactive or credential flow

        Raises:
            ConfigError: If initialize() has not been called
            SignInInProgressError: If an interactive sign-in is already running
            AuthError: Any typed failure of the selected flow
        """
        return await self._require_session().sign_in()

    async def sign_out(self) -> None:
        """Forget the account and in-memory tokens. Server sessions are not revoked.

        Raises:
            ConfigError: If initialize() has not been called
        """
        self._require_session()
        self._cache.discard_session()
        logger.info("Signed out")

    async def get_token(self) -> AuthToken:
        """Get a token for API calls.

        Delegated mode renews silently and raises NotSignedInError on a miss.
        Application mode requests a fresh token every time.

        Returns:
            AuthToken: A token valid for at least the expiry buffer

        Raises:
            ConfigError: If initialize() has not been called
            NotSignedInError: If delegated mode has no usable session
            TokenRefreshError: If silent renewal failed in transport
            ClientCredentialError: If the credential grant was rejected
        """
        return await self._require_session().get_token()

    async def request_additional_permissions(
        self, new_scopes: list[str] | set[str]
    ) -> AuthToken:
        """Add scopes to the configuration and sign in again.

        In delegated mode this always means a new interactive consent.

        Args:
            new_scopes: Scopes to add; ones already configured are ignored

        Returns:
            AuthToken: The token from the new sign-in
        """
        session = self._require_session()
        added = self._config.add_scopes(new_scopes)
        if added:
            logger.info(f"Requesting additional permissions: {added}")
        return await session.sign_in()

    async def get_token_with_permissions(
        self, permissions: list[str] | set[str]
    ) -> AuthToken:
        """Get a token, elevating first if any permission is not configured yet.

        Args:
            permissions: Scopes the caller needs for its next request

        Returns:
            AuthToken: A token covering the configured scopes after the call
        """
        self._require_session()
        if all(p in self._config.scopes for p in permissions):
            return await self.get_token()
        return await self.request_additional_permissions(permissions)

    def get_authentication_info(self) -> AuthenticationInfo:
        """Report mode, configured scopes and whether a session exists."""
        session = self._require_session()
        return AuthenticationInfo(
            mode=session.mode,
            configured_scopes=list(self._config.scopes),
            is_authenticated=session.is_authenticated,
            client_id=self._config.client_id,
            tenant_id=self._config.tenant_id,
        )

    async def get_authentication_info_with_token(self) -> AuthenticationInfo:
        """Report authentication info with the permissions the live token grants.

        Configured scopes are only a request; actual_permissions is decoded
        from the access token itself.
        """
        basic_info = self.get_authentication_info()

        try:
            token = await self.get_token()
        except AuthError as e:
            logger.warning(f"Failed to get token for permission extraction: {e}")
            if basic_info.mode == AuthMode.DELEGATED:
                return basic_info.with_updates(is_authenticated=False)
            return basic_info

        actual_permissions = self._claims_decoder.permissions(token.access_token)
        if actual_permissions:
            logger.debug(f"Found actual permissions in token: {actual_permissions}")
            return basic_info.with_updates(
                actual_permissions=actual_permissions, is_authenticated=True
            )

        logger.debug("No permissions found in token, using configured permissions")
        return basic_info.with_updates(is_authenticated=True)

    async def get_id_token_claims(self) -> dict[str, Any] | None:
        """Claims of the current ID token.

        Returns:
            The decoded claims, or None when not signed in, in application
            mode, or when the ID token cannot be decoded
        """
        try:
            token = await self.get_token()
        except AuthError as e:
            logger.debug(f"No ID token available: {e}")
            return None

        if not token.id_token:
            return None
        return self._claims_decoder.decode_claims(token.id_token)

    async def clear_token_cache(self) -> None:
        """Remove every cached account and token.

        Needed after scope changes so silent renewal cannot return tokens
        carrying old permissions. Safe to call repeatedly.
        """
        self._require_session()
        self._cache.clear()

    async def force_reauthentication(self) -> AuthToken:
        """Clear the cache and run a fresh sign-in."""
        logger.info("Forcing fresh authentication")
        await self.clear_token_cache()
        return await self.sign_in()

    async def check_configuration(
        self, config: AuthConfig | None = None
    ) -> ConfigurationCheck:
        """Check a configuration without touching the live session.

        Application mode requests a real token for the Graph default scope.
        Delegated mode can only be validated structurally since a full test
        needs a user at the keyboard.
        """
        candidate = config or self._config
        if candidate is None or not candidate.client_id or not candidate.tenant_id:
            return ConfigurationCheck(
                success=False,
                error="Missing required configuration: client_id and tenant_id are required",
            )

        if candidate.mode == AuthMode.APPLICATION:
            return await self._check_client_credentials(candidate)

        if not _is_valid_redirect_uri(candidate.redirect_uri):
            return ConfigurationCheck(
                success=False,
                error="Redirect URI must use HTTPS or a loopback address",
            )

        return ConfigurationCheck(
            success=True,
            details={
                "token_type": "configuration_valid",
                "message": "Configuration is valid. Interactive sign-in is "
                "required for full testing.",
            },
        )

    async def close(self) -> None:
        """Abort any running sign-in and close HTTP connections."""
        if self._session is not None:
            self._session.abort()
        if self._token_manager is not None:
            await self._token_manager.close()

    async def _check_client_credentials(
        self, candidate: AuthConfig
    ) -> ConfigurationCheck:
        if not candidate.client_secret:
            return ConfigurationCheck(
                success=False,
                error="Client secret is required for client credentials mode",
            )

        token_manager = OAuth2TokenManager(timeout=candidate.timeout)
        flow = ClientCredentialFlow(token_manager, cache=None)
        try:
            token = await flow.acquire(
                candidate.model_copy(update={"scopes": [GRAPH_DEFAULT_SCOPE]})
            )
        except AuthError as e:
            logger.error(f"Authentication test failed: {e}")
            return ConfigurationCheck(success=False, error=str(e))
        finally:
            await token_manager.close()

        logger.info("Client credentials authentication test successful")
        return ConfigurationCheck(
            success=True,
            details={"token_type": "client_credentials", "expires_on": token.expires_on},
        )

    def _require_session(self) -> SessionFlow:
        if self._session is None:
            raise ConfigError("Authentication service not initialized")
        return self._session


def _is_valid_redirect_uri(uri: str) -> bool:
    try:
        parsed = urlparse(uri)
    except ValueError:
        return False
    return parsed.scheme == "https" or (
        parsed.scheme == "http"
        and parsed.hostname in {"localhost", "127.0.0.1", "::1"}
    )
