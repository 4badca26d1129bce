"""Per-request authentication parameters and results.

``AuthParameters`` travels from the application through the grant executor
and into the token cache, so the cache knows which client, environment and
realm an exchange result belongs to.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from publicauth.models.authority import AuthorityEndpoints, AuthorityInfo
from publicauth.models.cache import Account, RESERVED_SCOPES
from publicauth.models.errors import CacheWriteError


class AuthorizationType(str, Enum):
    AUTH_CODE = "authorization_code"
    DEVICE_CODE = "device_code"
    USERNAME_PASSWORD = "password"
    CLIENT_CREDENTIALS = "client_credentials"
    ON_BEHALF_OF = "on_behalf_of"
    REFRESH_TOKEN = "refresh_token"


@dataclass(frozen=True)
class AuthParameters:
    """Everything a grant executor needs besides the resolved endpoints."""

    client_id: str
    authority_info: AuthorityInfo
    scopes: tuple[str, ...]
    authorization_type: AuthorizationType
    endpoints: AuthorityEndpoints | None = None

    # Flow specific inputs; each executor validates the ones it needs
    redirect_uri: str | None = None
    code: str | None = None
    code_verifier: str | None = None
    username: str | None = None
    password: str | None = None
    client_secret: str | None = None
    assertion: str | None = None
    refresh_token: str | None = None
    home_account_id: str | None = None
    account_realm: str | None = None

    def with_endpoints(self, endpoints: AuthorityEndpoints) -> AuthParameters:
        return replace(self, endpoints=endpoints)

    def request_scope(self) -> str:
        """Scope parameter for user flows: requested plus reserved OIDC scopes."""
        requested = list(self.scopes)
        if self.authorization_type in (
            AuthorizationType.CLIENT_CREDENTIALS,
            AuthorizationType.ON_BEHALF_OF,
        ):
            return " ".join(requested)
        extra = [s for s in sorted(RESERVED_SCOPES) if s not in requested]
        return " ".join(requested + extra)


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a token acquisition.

    ``cache_write_error`` is set when the provider issued the token but the
    cache could not store it; the token itself is still valid.
    """

    access_token: str
    expires_on: float
    account: Account | None = None
    scopes: tuple[str, ...] = ()
    id_token_claims: dict[str, Any] = field(default_factory=dict)
    cache_write_error: CacheWriteError | None = None
