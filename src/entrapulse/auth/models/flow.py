"""Interactive flow models.

Contains the authorization request, the parsed redirect response and the
transient state of a single login attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlencode, urlparse

if TYPE_CHECKING:
    from entrapulse.auth.models.tokens import AuthToken
    from entrapulse.auth.surfaces.base import WebSurface

# Always requested in delegated mode so an ID token and a refresh token
# come back alongside the access token.
RESERVED_SCOPES = ("openid", "profile", "offline_access")


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the PKCE authorization code flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    state: str
    scopes: tuple[str, ...] = ()
    code_challenge_method: str = "S256"
    prompt: str | None = None

    def build_authorization_url(self) -> str:
        """Authorization endpoint URL to load in the sign-in window."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(with_reserved_scopes(self.scopes)),
            "response_mode": "query",
            "state": self.state,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }

        if self.prompt:
            params["prompt"] = self.prompt

        return f"{self.authorization_endpoint}?{urlencode(params)}"


def with_reserved_scopes(scopes: tuple[str, ...] | list[str]) -> list[str]:
    merged = list(scopes)
    merged.extend(s for s in RESERVED_SCOPES if s not in merged)
    return merged


@dataclass(frozen=True)
class AuthorizationResponse:
    """Query parameters carried by a redirect back to the loopback URI."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_url(cls, url: str) -> AuthorizationResponse:
        query_params = parse_qs(urlparse(url).query)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
        )

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None


class FlowState(str, Enum):
    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING_CODE = "exchanging_code"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowState.AUTHENTICATED, FlowState.FAILED)


@dataclass
class LoginAttempt:
    """Transient state of one interactive login attempt.

    `completed` is set by whichever signal wins; every later signal sees it
    and does nothing. `surface_closed` guards the single close call.
    """

    state: str = field(repr=False)
    code_verifier: str = field(repr=False)
    surface: WebSurface
    future: asyncio.Future[AuthToken]
    flow_state: FlowState = FlowState.IDLE
    completed: bool = False
    surface_closed: bool = False
    exchange_task: asyncio.Task[None] | None = None

    def try_complete(self) -> bool:
        """Claim the attempt for the calling signal.

        Returns:
            True if the caller won the race, False if another signal already did
        """
        if self.completed:
            return False
        self.completed = True
        return True
