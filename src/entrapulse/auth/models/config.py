"""Authentication configuration for the session manager.

The session core takes a fully resolved AuthConfig. from_env() is a
convenience for scripts and the CLI; the desktop app builds the model from
its own settings store.
"""

from __future__ import annotations

import os
import re
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
DEFAULT_REDIRECT_URI = "http://localhost"
GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


def _dedupe(scopes: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for scope in scopes:
        scope = scope.strip()
        if scope:
            seen.setdefault(scope, None)
    return list(seen)


class AuthMode(str, Enum):
    """The two mutually exclusive trust models."""

    DELEGATED = "interactive"
    APPLICATION = "client-credentials"


class AuthConfig(BaseModel):
    """Client registration and scope configuration for one session."""

    client_id: str = ""
    tenant_id: str = ""
    client_secret: str | None = None
    scopes: list[str] = Field(default_factory=list)
    mode: AuthMode = AuthMode.DELEGATED

    redirect_uri: str = DEFAULT_REDIRECT_URI
    authority_host: str = DEFAULT_AUTHORITY_HOST
    prompt: str | None = "select_account"
    timeout: float = 30.0

    @field_validator("scopes")
    @classmethod
    def dedupe_scopes(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @field_validator("authority_host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def authority(self) -> str:
        return f"{self.authority_host}/{self.tenant_id}"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    def add_scopes(self, new_scopes: list[str] | set[str]) -> list[str]:
        """Union new scopes into the configured set, keeping order.

        Returns:
            The scopes that were not configured before
        """
        if isinstance(new_scopes, set):
            new_scopes = sorted(new_scopes)
        added = _dedupe([s for s in new_scopes if s not in self.scopes])
        self.scopes = _dedupe(self.scopes + added)
        return added

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> AuthConfig:
        """Build a configuration from ENTRA_* environment variables.

        Loads a .env file first when one is present. ENTRA_SCOPES accepts
        space or comma separated values.
        """
        load_dotenv(dotenv_path)

        use_client_credentials = os.getenv(
            "ENTRA_USE_CLIENT_CREDENTIALS", ""
        ).strip().lower() in {"1", "true", "yes", "on"}
        raw_scopes = os.getenv("ENTRA_SCOPES", "")

        kwargs = {
            "client_id": os.getenv("ENTRA_CLIENT_ID", ""),
            "tenant_id": os.getenv("ENTRA_TENANT_ID", ""),
            "client_secret": os.getenv("ENTRA_CLIENT_SECRET") or None,
            "scopes": [s for s in re.split(r"[\s,]+", raw_scopes) if s],
            "mode": AuthMode.APPLICATION
            if use_client_credentials
            else AuthMode.DELEGATED,
        }
        if os.getenv("ENTRA_REDIRECT_URI"):
            kwargs["redirect_uri"] = os.getenv("ENTRA_REDIRECT_URI")

        return cls(**kwargs)
