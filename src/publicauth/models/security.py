"""PKCE values bound to one authorization code flow (RFC 7636)."""

from __future__ import annotations

from dataclasses import dataclass

PKCE_MIN_LENGTH = 43
PKCE_MAX_LENGTH = 128
S256 = "S256"


@dataclass(frozen=True)
class PKCEParameters:
    """Verifier kept by the client, challenge sent in the authorization URL."""

    code_verifier: str
    code_challenge: str
    code_challenge_method: str = S256

    def __post_init__(self) -> None:
        for name in ("code_verifier", "code_challenge"):
            length = len(getattr(self, name))
            if not PKCE_MIN_LENGTH <= length <= PKCE_MAX_LENGTH:
                raise ValueError(
                    f"{name} must be {PKCE_MIN_LENGTH}-{PKCE_MAX_LENGTH} "
                    f"characters, got {length}"
                )
        if self.code_challenge_method != S256:
            raise ValueError(
                f"Unsupported code challenge method {self.code_challenge_method!r}; "
                f"only {S256} is accepted"
            )
