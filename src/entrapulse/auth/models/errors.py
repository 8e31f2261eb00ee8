"""Exception hierarchy for session authentication errors.

Every failure mode of the session manager has its own type so callers can
decide on retry, re-prompt or silent handling without string matching.
Nothing in this package retries on its own.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all authentication session errors."""

    pass


class ConfigError(AuthError):
    """Raised when client, tenant or secret configuration is missing or invalid.

    Fatal: surfaced immediately, never retried.
    """

    pass


class PKCEError(AuthError):
    """Raised when PKCE parameter generation fails."""

    pass


class CsrfError(AuthError):
    """Raised when the redirect state does not match the login attempt.

    Treated as a security incident. Never retried automatically.
    """

    pass


class AuthorizationError(AuthError):
    """Raised when the identity provider declines the authorization request."""

    pass


class UserCancelledError(AuthError):
    """Raised when the user closes the sign-in window before completing it.

    Kept apart from AuthorizationError so UI code can treat it quietly.
    """

    pass


class SignInInProgressError(AuthError):
    """Raised when a sign-in is requested while another one is still running."""

    pass


class NotSignedInError(AuthError):
    """Raised when silent renewal misses and no interactive sign-in was asked for.

    Recoverable by calling sign_in() explicitly.
    """

    pass


class TokenError(AuthError):
    """Raised when token endpoint operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when the authorization code to token exchange fails.

    Authorization codes are single-use, so the only retry is a new
    interactive flow.
    """

    pass


class TokenRefreshError(TokenError):
    """Raised when silent renewal fails for a transport reason."""

    pass


class ClientCredentialError(TokenError):
    """Raised when the client-credential grant is rejected."""

    pass


class InvalidCredentialsError(ClientCredentialError):
    """Raised when the client id or secret is rejected by the provider."""

    pass


class InsufficientScopeError(ClientCredentialError):
    """Raised when the requested application scopes cannot be granted."""

    pass
