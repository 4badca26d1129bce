"""Authorization flow models.

Contains the authorization URL request and the parsed redirect callback.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

from publicauth.models.errors import ValidationError


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the authorization code flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    code_challenge_method: str = "S256"
    state: str | None = None
    prompt: str | None = None
    login_hint: str | None = None

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        Raises:
            ValidationError: If no PKCE code challenge was supplied
        """
        if not self.code_challenge:
            raise ValidationError("Authorization URL requires a PKCE code challenge")

        params = {
            "client_id": self.client_id,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
        }

        if self.state:
            params["state"] = self.state
        if self.prompt:
            params["prompt"] = self.prompt
        if self.login_hint:
            params["login_hint"] = self.login_hint

        return f"{self.authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None
