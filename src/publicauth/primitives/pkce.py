"""Proof Key for Code Exchange (RFC 7636).

Binds an authorization code to the client instance that started the flow, so
an intercepted code cannot be redeemed elsewhere.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from publicauth.models.errors import PKCEError
from publicauth.models.security import S256, PKCEParameters


class PKCEManager:
    """Creates S256 verifier/challenge pairs."""

    # 96 random bytes encode to the maximum verifier length of 128 characters
    VERIFIER_ENTROPY_BYTES = 96

    def generate_parameters(self) -> PKCEParameters:
        """Create a fresh pair for one authorization code flow.

        Raises:
            PKCEError: If the generated values are rejected
        """
        verifier = secrets.token_urlsafe(self.VERIFIER_ENTROPY_BYTES)
        try:
            return PKCEParameters(
                code_verifier=verifier,
                code_challenge=self.compute_code_challenge(verifier),
                code_challenge_method=S256,
            )
        except ValueError as e:
            raise PKCEError(f"Could not create PKCE parameters: {e}") from e

    @staticmethod
    def compute_code_challenge(code_verifier: str) -> str:
        """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))) without padding."""
        hashed = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(hashed).rstrip(b"=").decode("ascii")
