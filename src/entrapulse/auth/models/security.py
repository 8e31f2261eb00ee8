"""Security-related models for the interactive sign-in flow.

Contains the PKCE parameters bound to a single login attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE (Proof Key for Code Exchange) parameters for one login attempt.

    Generated fresh for every attempt and discarded when it ends (RFC 7636).
    The verifier is a secret and is left out of repr so it never reaches a
    log line.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str
    state: str = field(repr=False)
    code_challenge_method: str = "S256"

    def __post_init__(self) -> None:
        for name in ("code_verifier", "code_challenge"):
            length = len(getattr(self, name))
            if length < 43 or length > 128:
                raise ValueError(f"{name} length {length} is outside 43..128")
        if self.code_challenge_method != "S256":
            raise ValueError(
                f"Unsupported code challenge method: {self.code_challenge_method}"
            )
        if not self.state:
            raise ValueError("state must not be empty")
