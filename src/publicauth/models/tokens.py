"""Token endpoint request and response models.

Contains one immutable request model per grant type and the token response
(the "token exchange result") that every grant produces and the token cache
consumes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5).

    Represents both successful responses (Section 5.1) and error responses
    (Section 5.2). ``client_info`` and ``foci`` are provider extensions used to
    build the account identity and the refresh token family.
    """

    model_config = ConfigDict(extra="ignore")

    # Issued token (5.1)
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None
    client_info: str | None = None
    foci: str | None = None

    # Failure (5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        """True when a token was issued."""
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def granted_scopes(self) -> list[str] | None:
        """Scopes the provider actually granted, if it said so."""
        if not self.scope:
            return None
        return self.scope.split()

    def calculate_expires_on(self, now: float | None = None) -> float:
        """Absolute expiry time, in epoch seconds.

        Providers that omit ``expires_in`` get the RFC 6749 recommended
        default lifetime of ten minutes.
        """
        now = time.time() if now is None else now
        expires_in = 600 if self.expires_in is None else self.expires_in
        return now + expires_in


@dataclass(frozen=True)
class AuthCodeTokenRequest:
    """Authorization code redemption (RFC 6749 Section 4.1.3) with PKCE."""

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    code_verifier: str  # RFC 7636 PKCE

    grant_type: str = "authorization_code"
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": self.code_verifier,
            "client_info": "1",
        }
        if self.scope:
            data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token redemption (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str
    client_id: str

    grant_type: str = "refresh_token"
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
            "client_info": "1",
        }
        if self.scope:
            data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class UsernamePasswordTokenRequest:
    """Resource owner password credentials (RFC 6749 Section 4.3)."""

    token_endpoint: str
    username: str
    password: str
    client_id: str

    grant_type: str = "password"
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "username": self.username,
            "password": self.password,
            "client_id": self.client_id,
            "client_info": "1",
        }
        if self.scope:
            data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class ClientCredentialsTokenRequest:
    """Client credentials grant (RFC 6749 Section 4.4)."""

    token_endpoint: str
    client_id: str
    client_secret: str

    grant_type: str = "client_credentials"
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.scope:
            data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class OnBehalfOfTokenRequest:
    """On-behalf-of exchange of an incoming user assertion (RFC 7523)."""

    token_endpoint: str
    client_id: str
    client_secret: str
    assertion: str

    grant_type: str = JWT_BEARER_GRANT_TYPE
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "assertion": self.assertion,
            "requested_token_use": "on_behalf_of",
            "client_info": "1",
        }
        if self.scope:
            data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class DeviceCodeTokenRequest:
    """Device code redemption poll (RFC 8628 Section 3.4)."""

    token_endpoint: str
    device_code: str
    client_id: str

    grant_type: str = DEVICE_CODE_GRANT_TYPE

    def to_form_data(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "device_code": self.device_code,
            "client_id": self.client_id,
            "client_info": "1",
        }


class DeviceCodeResult(BaseModel):
    """Device authorization response (RFC 8628 Section 3.2)."""

    model_config = ConfigDict(extra="ignore")

    device_code: str
    user_code: str = ""
    verification_uri: str = ""
    expires_in: int = 900
    interval: int = 5
    message: str | None = None
