"""Session status models returned by the session manager."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from entrapulse.auth.models.config import AuthMode


@dataclass(frozen=True)
class AuthenticationInfo:
    """Authentication status as shown by the UI.

    configured_scopes is what was requested. actual_permissions is what the
    live token grants and is only filled in by
    AuthSessionManager.get_authentication_info_with_token().
    """

    mode: AuthMode
    configured_scopes: list[str]
    is_authenticated: bool
    client_id: str
    tenant_id: str
    actual_permissions: list[str] | None = None

    def with_updates(self, **changes: Any) -> AuthenticationInfo:
        return replace(self, **changes)


@dataclass(frozen=True)
class ConfigurationCheck:
    """Outcome of a configuration check run outside the live session."""

    success: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
