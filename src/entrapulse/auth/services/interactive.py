"""Interactive sign-in through an embedded web surface.

Drives one authorization code + PKCE attempt at a time. Three independent
surface signals race to finish an attempt:

1. navigation/redirect to the loopback redirect origin,
2. a load failure on the redirect origin (nothing listens there),
3. the user closing the window.

The first signal to claim the attempt wins; every later signal is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from urllib.parse import urlparse

from entrapulse.auth.models.config import AuthConfig
from entrapulse.auth.models.errors import (
    AuthError,
    AuthorizationError,
    CsrfError,
    SignInInProgressError,
    TokenExchangeError,
    UserCancelledError,
)
from entrapulse.auth.models.flow import (
    AuthorizationRequest,
    AuthorizationResponse,
    FlowState,
    LoginAttempt,
    with_reserved_scopes,
)
from entrapulse.auth.models.tokens import AccountRef, AuthToken, TokenRequest, TokenResponse
from entrapulse.auth.primitives.claims import TokenClaimsDecoder
from entrapulse.auth.primitives.pkce import PKCEManager
from entrapulse.auth.services.cache import TokenCache
from entrapulse.auth.services.tokens import OAuth2TokenManager
from entrapulse.auth.surfaces.base import WebSurfaceFactory

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


class _AttemptListener:
    """Routes surface events to the attempt they belong to.

    A surface that keeps firing after its attempt finished only ever reaches
    that finished attempt, never a newer one.
    """

    def __init__(self, controller: InteractiveFlowController, attempt: LoginAttempt):
        self._controller = controller
        self._attempt = attempt

    def on_navigation(self, url: str) -> None:
        self._controller._handle_navigation(self._attempt, url)

    def on_load_failure(self, url: str, description: str) -> None:
        self._controller._handle_load_failure(self._attempt, url, description)

    def on_closed(self) -> None:
        self._controller._handle_closed(self._attempt)


class InteractiveFlowController:
    """Owns interactive login attempts end to end.

    IDLE -> AWAITING_REDIRECT -> EXCHANGING_CODE -> AUTHENTICATED | FAILED

    Signals are delivered on the event loop thread. The attempt's completed
    flag is checked and set before anything is awaited, so a signal delivered
    re-entrantly while another is being handled is ignored.
    """

    def __init__(
        self,
        config: AuthConfig,
        token_manager: OAuth2TokenManager,
        cache: TokenCache,
        surface_factory: WebSurfaceFactory,
        pkce_manager: PKCEManager | None = None,
        claims_decoder: TokenClaimsDecoder | None = None,
    ):
        self._config = config
        self._token_manager = token_manager
        self._cache = cache
        self._surface_factory = surface_factory
        self._pkce_manager = pkce_manager or PKCEManager()
        self._claims_decoder = claims_decoder or TokenClaimsDecoder()
        self._attempt: LoginAttempt | None = None

    @property
    def state(self) -> FlowState:
        if self._attempt is None:
            return FlowState.IDLE
        return self._attempt.flow_state

    @property
    def in_progress(self) -> bool:
        return self._attempt is not None and not self._attempt.future.done()

    async def sign_in(self) -> AuthToken:
        """Run one interactive login attempt to completion.

        No timeout is applied; wrap in asyncio.wait_for() if one is needed.

        Raises:
            SignInInProgressError: If another attempt is still running
            CsrfError: If the redirect state does not match
            AuthorizationError: If the provider declined or the page failed to load
            UserCancelledError: If the user closed the window first
            TokenExchangeError: If the code could not be exchanged for tokens
        """
        if self.in_progress:
            raise SignInInProgressError("A sign-in is already in progress")

        pkce_params = self._pkce_manager.generate_parameters()
        auth_request = AuthorizationRequest(
            authorization_endpoint=self._config.authorization_endpoint,
            client_id=self._config.client_id,
            redirect_uri=self._config.redirect_uri,
            code_challenge=pkce_params.code_challenge,
            code_challenge_method=pkce_params.code_challenge_method,
            state=pkce_params.state,
            scopes=tuple(self._config.scopes),
            prompt=self._config.prompt,
        )
        authorization_url = auth_request.build_authorization_url()

        surface = self._surface_factory()
        attempt = LoginAttempt(
            state=pkce_params.state,
            code_verifier=pkce_params.code_verifier,
            surface=surface,
            future=asyncio.get_running_loop().create_future(),
        )
        self._attempt = attempt
        attempt.flow_state = FlowState.AWAITING_REDIRECT

        logger.info("Starting interactive sign-in")
        logger.debug(f"Opening sign-in window at {self._config.authorization_endpoint}")

        try:
            await surface.open(authorization_url, _AttemptListener(self, attempt))
        except Exception as e:
            if attempt.try_complete():
                self._reject(
                    attempt, AuthorizationError(f"Failed to open sign-in window: {e}")
                )

        try:
            return await attempt.future
        finally:
            if attempt.try_complete():
                # Caller gave up while we were still waiting for the redirect
                logger.info("Interactive sign-in abandoned by caller")
                attempt.flow_state = FlowState.FAILED
                self._close_surface(attempt)

    def abort(self) -> None:
        """Cancel the running attempt, if any, as if the user closed the window."""
        attempt = self._attempt
        if attempt is not None and attempt.try_complete():
            self._reject(attempt, UserCancelledError("Sign-in was cancelled"))

    # Signal handlers

    def _handle_navigation(self, attempt: LoginAttempt, url: str) -> None:
        if attempt.completed or not self._is_redirect_target(url):
            return

        response = AuthorizationResponse.from_url(url)
        if response.code is None and response.error is None:
            logger.debug("Ignoring redirect without code or error")
            return

        self._handle_redirect(attempt, response)

    def _handle_load_failure(
        self, attempt: LoginAttempt, url: str, description: str
    ) -> None:
        if attempt.completed:
            return

        if self._is_redirect_target(url):
            # The loopback address has no page to serve; the failed load
            # still carries the authorization response.
            response = AuthorizationResponse.from_url(url)
            if response.code is not None:
                self._handle_redirect(attempt, response)
            return

        if attempt.try_complete():
            self._reject(
                attempt,
                AuthorizationError(f"Authentication page failed to load: {description}"),
            )

    def _handle_closed(self, attempt: LoginAttempt) -> None:
        attempt.surface_closed = True
        if attempt.try_complete():
            self._reject(
                attempt, UserCancelledError("Authentication window was closed by user")
            )

    def _handle_redirect(
        self, attempt: LoginAttempt, response: AuthorizationResponse
    ) -> None:
        if not attempt.try_complete():
            return

        self._close_surface(attempt)

        try:
            self._pkce_manager.validate_state(attempt.state, response.state)
        except CsrfError as e:
            self._reject(attempt, e)
            return

        if response.is_error():
            description = response.error_description or "No description provided"
            self._reject(
                attempt, AuthorizationError(f"{response.error} - {description}")
            )
            return

        if response.code is None:
            self._reject(
                attempt, AuthorizationError("No authorization code received in redirect")
            )
            return

        logger.info("Authorization code received, exchanging for tokens")
        attempt.flow_state = FlowState.EXCHANGING_CODE
        attempt.exchange_task = attempt.future.get_loop().create_task(
            self._exchange_code(attempt, response.code)
        )

    # Code exchange

    async def _exchange_code(self, attempt: LoginAttempt, code: str) -> None:
        """Exchange the code and commit the result to the cache.

        Runs as its own task: a caller that stops waiting does not stop the
        exchange, and committed tokens still reach the cache.
        """
        scopes = list(self._config.scopes)
        token_request = TokenRequest(
            token_endpoint=self._config.token_endpoint,
            code=code,
            redirect_uri=self._config.redirect_uri,
            client_id=self._config.client_id,
            code_verifier=attempt.code_verifier,
            scope=" ".join(with_reserved_scopes(scopes)),
        )

        try:
            token_response = await self._token_manager.exchange_code_for_token(
                token_request
            )
            if not token_response.is_success():
                self._reject(
                    attempt,
                    TokenExchangeError(
                        f"Token exchange failed: {token_response.describe_error()}"
                    ),
                )
                return

            token = token_response.to_auth_token(scopes)
            account = self._account_from_response(token_response)
            self._cache.store(account, token, token_response.refresh_token)
        except asyncio.CancelledError:
            attempt.flow_state = FlowState.FAILED
            if not attempt.future.done():
                attempt.future.cancel()
            raise
        except Exception as e:
            # Every attempt settles, even on a malformed token response
            error = TokenExchangeError(f"Token exchange failed: {e}")
            error.__cause__ = e
            self._reject(attempt, error)
            return

        attempt.flow_state = FlowState.AUTHENTICATED
        logger.info(f"Interactive sign-in successful for {account.username or 'user'}")

        if not attempt.future.done():
            attempt.future.set_result(token)

    def _account_from_response(self, token_response: TokenResponse) -> AccountRef:
        claims = {}
        if token_response.id_token:
            claims = self._claims_decoder.decode_claims(token_response.id_token) or {}

        oid = claims.get("oid") or claims.get("sub")
        tid = claims.get("tid") or self._config.tenant_id
        home_account_id = f"{oid}.{tid}" if oid else uuid.uuid4().hex
        username = (
            claims.get("preferred_username")
            or claims.get("upn")
            or claims.get("email")
            or ""
        )
        return AccountRef(home_account_id=home_account_id, username=username, tenant_id=tid)

    # Terminal transitions

    def _reject(self, attempt: LoginAttempt, error: AuthError) -> None:
        attempt.flow_state = FlowState.FAILED
        self._close_surface(attempt)

        if isinstance(error, UserCancelledError):
            logger.info(f"Interactive sign-in cancelled: {error}")
        else:
            logger.error(f"Interactive sign-in failed: {error}")

        if not attempt.future.done():
            attempt.future.set_exception(error)

    def _close_surface(self, attempt: LoginAttempt) -> None:
        if attempt.surface_closed:
            return
        attempt.surface_closed = True
        try:
            attempt.surface.close()
        except Exception as e:
            logger.warning(f"Failed to close sign-in window: {e}")

    def _is_redirect_target(self, url: str) -> bool:
        try:
            target = urlparse(url)
            expected = urlparse(self._config.redirect_uri)
            return (
                target.scheme == expected.scheme
                and (target.hostname or "") == (expected.hostname or "")
                and _port(target) == _port(expected)
            )
        except ValueError:
            return False


def _port(parsed) -> int | None:
    return parsed.port or _DEFAULT_PORTS.get(parsed.scheme)
