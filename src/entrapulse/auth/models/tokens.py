"""Token request, response and session token models.

Request objects are immutable value objects converted to form data for the
token endpoint. TokenResponse is the wire model; AuthToken and AccountRef
are what the rest of the application sees.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

# Applied when the provider omits expires_in.
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange request (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636).
    """

    token_endpoint: str
    code: str = field(repr=False)
    redirect_uri: str
    client_id: str
    code_verifier: str = field(repr=False)
    scope: str | None = None
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Form fields for the token endpoint POST body."""
        data = {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier,
        }

        if self.scope:
            data["scope"] = self.scope

        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token request (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str = field(repr=False)
    client_id: str
    scope: str | None = None
    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }

        if self.scope:
            data["scope"] = self.scope

        return data


@dataclass(frozen=True)
class ClientCredentialRequest:
    """Client credentials grant request (RFC 6749 Section 4.4).

    No PKCE and no account; the audience is carried by the scope.
    """

    token_endpoint: str
    client_id: str
    client_secret: str = field(repr=False)
    scope: str
    grant_type: str = "client_credentials"

    def to_form_data(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": self.scope,
        }


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5).

    Covers both successful responses (Section 5.1) and error responses
    (Section 5.2).
    """

    # Success response fields
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    # Error response fields
    error: str | None = None
    error_description: str | None = None
    error_codes: list[int] | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def describe_error(self) -> str:
        if self.error_description:
            return f"{self.error} - {self.error_description}"
        return str(self.error)

    def calculate_expires_on(self) -> datetime:
        lifetime = (
            timedelta(seconds=self.expires_in)
            if self.expires_in is not None
            else DEFAULT_TOKEN_LIFETIME
        )
        return datetime.now(timezone.utc) + lifetime

    def to_auth_token(self, requested_scopes: list[str]) -> AuthToken:
        """Convert a successful response into an AuthToken.

        The granted scope string wins over the requested scopes when the
        provider returns one.

        Raises:
            ValueError: If called on an error response
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to AuthToken")

        scopes = self.scope.split() if self.scope else list(requested_scopes)
        return AuthToken(
            access_token=self.access_token,
            id_token=self.id_token or "",
            expires_on=self.calculate_expires_on(),
            scopes=scopes,
        )


@dataclass
class AuthToken:
    """An issued access token as handed to API callers."""

    access_token: str = field(repr=False)
    id_token: str = field(default="", repr=False)
    expires_on: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME
    )
    scopes: list[str] = field(default_factory=list)

    def is_valid(self, buffer_seconds: float = 30.0) -> bool:
        """Check if the access token is still usable with a safety buffer."""
        if not self.access_token:
            return False
        return time.time() < (self.expires_on.timestamp() - buffer_seconds)

    def covers(self, scopes: list[str]) -> bool:
        """Check if every requested scope was granted.

        Granted scopes often come back fully qualified
        (https://graph.microsoft.com/User.Read) while configuration uses the
        short form, so the last path segment is compared too.
        """
        granted = {s.lower() for s in self.scopes}
        granted |= {s.rsplit("/", 1)[-1] for s in granted}
        return all(
            s.lower() in granted or s.lower().rsplit("/", 1)[-1] in granted
            for s in scopes
        )


@dataclass(frozen=True)
class AccountRef:
    """Opaque handle for the signed-in account, required for silent renewal."""

    home_account_id: str
    username: str = ""
    tenant_id: str = ""
