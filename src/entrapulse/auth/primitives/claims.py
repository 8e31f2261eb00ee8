"""JWT claim extraction for permission display.

Signatures are not verified here; that is the resource server's job. The
decoded claims only drive UI and permission checks, so every malformed input
degrades to an empty result instead of raising.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPermissions:
    """Permissions carried by an access token.

    roles are application permissions, scopes are delegated permissions.
    """

    roles: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)

    @property
    def effective(self) -> list[str]:
        return self.roles if self.roles else self.scopes


class TokenClaimsDecoder:
    """Decodes JWT payloads without signature verification."""

    def decode_claims(self, token: str) -> dict[str, Any] | None:
        """Decode the payload segment of a JWT.

        Returns:
            The claim set, or None if the token is not a decodable JWT
        """
        if not isinstance(token, str):
            return None

        parts = token.split(".")
        if len(parts) != 3:
            logger.debug(f"Invalid JWT format - expected 3 parts, got {len(parts)}")
            return None

        payload = parts[1]
        padded = payload + "=" * (-len(payload) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
            claims = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as e:
            logger.debug(f"Failed to decode JWT payload: {e}")
            return None

        if not isinstance(claims, dict):
            return None
        return claims

    def decode(self, access_token: str) -> TokenPermissions:
        """Extract permissions from an access token.

        Precedence: a non-empty roles claim, else scp/scope (space-delimited
        string or list), else a scopes array, else nothing.
        """
        claims = self.decode_claims(access_token)
        if claims is None:
            return TokenPermissions()

        roles = _string_list(claims.get("roles"))
        if roles:
            logger.debug(f"Found application permissions (roles): {roles}")
            return TokenPermissions(roles=roles)

        raw_scopes = claims.get("scp") or claims.get("scope")
        if isinstance(raw_scopes, str):
            scopes = [s for s in raw_scopes.split(" ") if s]
        else:
            scopes = _string_list(raw_scopes)
        if scopes:
            logger.debug(f"Found delegated permissions (scopes): {scopes}")
            return TokenPermissions(scopes=scopes)

        scopes = _string_list(claims.get("scopes"))
        if scopes:
            return TokenPermissions(scopes=scopes)

        logger.debug("No permission claims found in token")
        return TokenPermissions()

    def permissions(self, access_token: str) -> list[str]:
        """Permissions to display for an access token.

        Args:
            access_token: Encoded JWT access token

        Returns:
            App roles when present, otherwise delegated scopes; empty for
            tokens that cannot be decoded
        """
        return self.decode(access_token).effective


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]
