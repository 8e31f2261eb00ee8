"""PKCE (Proof Key for Code Exchange) parameter generation.

Implements RFC 7636 verifier/challenge generation plus the anti-CSRF state
nonce that travels with each authorization request.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from entrapulse.auth.models.errors import CsrfError, PKCEError
from entrapulse.auth.models.security import PKCEParameters

_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
_VERIFIER_LENGTH = 128


class PKCEManager:
    """Generates single-use PKCE parameters for interactive sign-in.

    Verifiers are 128 characters long, the maximum RFC 7636 allows. Only the
    S256 challenge is produced; the state nonce is drawn separately so it
    reveals nothing about the verifier.
    """

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for one login attempt.

        Raises:
            PKCEError: If the system random source is unavailable
        """
        try:
            verifier = self._new_verifier()
            return PKCEParameters(
                code_verifier=verifier,
                code_challenge=self.generate_code_challenge(verifier),
                state=self._new_state(),
            )
        except Exception as e:
            raise PKCEError(f"Could not generate PKCE parameters: {e}") from e

    @staticmethod
    def generate_code_challenge(code_verifier: str) -> str:
        """Derive the S256 code challenge for a verifier.

        RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
        without padding.
        """
        hashed = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(hashed).decode("ascii").rstrip("=")

    @staticmethod
    def validate_state(expected: str, actual: str | None) -> None:
        """Compare a redirect's state against the attempt's state.

        Raises:
            CsrfError: If the state is missing or does not match exactly
        """
        if actual is None or not secrets.compare_digest(
            expected.encode("utf-8"), actual.encode("utf-8")
        ):
            raise CsrfError("Invalid state parameter - possible CSRF attack")

    def _new_verifier(self) -> str:
        # Unreserved characters only (RFC 7636 Section 4.1)
        return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(_VERIFIER_LENGTH))

    def _new_state(self) -> str:
        # 43 url-safe characters, drawn independently of the verifier
        return secrets.token_urlsafe(32)
