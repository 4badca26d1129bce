"""Token cache entry models.

Immutable records stored by the token cache. Each model knows its own
composite key; writing an entry with an existing key replaces it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from publicauth.models.authority import AuthorityType

# Requested alongside every user flow, never part of cache matching
RESERVED_SCOPES = frozenset({"openid", "profile", "offline_access"})


def normalize_scopes(scopes) -> frozenset[str]:
    """Lower-case a scope collection and drop the reserved OIDC scopes."""
    return frozenset(
        scope.lower() for scope in scopes if scope.lower() not in RESERVED_SCOPES
    )


class Account(BaseModel):
    """A signed-in identity within one tenant."""

    model_config = ConfigDict(frozen=True)

    home_account_id: str
    environment: str
    realm: str
    local_account_id: str = ""
    authority_type: AuthorityType = AuthorityType.STANDARD
    username: str = ""

    def cache_key(self) -> tuple[str, str, str]:
        return (
            self.home_account_id.lower(),
            self.environment.lower(),
            self.realm.lower(),
        )


class AccessToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret: str
    expires_on: float
    scopes: frozenset[str]
    realm: str
    client_id: str
    environment: str
    home_account_id: str | None = None
    cached_at: float = 0.0
    token_type: str = "Bearer"

    def cache_key(self) -> tuple:
        return (
            self.client_id.lower(),
            self.environment.lower(),
            self.realm.lower(),
            (self.home_account_id or "").lower(),
            normalize_scopes(self.scopes),
        )

    def is_expired(self, now: float) -> bool:
        return self.expires_on <= now


class RefreshToken(BaseModel):
    """Refresh token; tenant-agnostic, so neither realm nor scopes are keyed."""

    model_config = ConfigDict(frozen=True)

    secret: str
    environment: str
    home_account_id: str
    client_id: str
    family_id: str | None = None

    def cache_key(self) -> tuple[str, str, str]:
        return (
            self.client_id.lower(),
            self.environment.lower(),
            self.home_account_id.lower(),
        )


class IdToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret: str
    realm: str
    client_id: str
    environment: str
    home_account_id: str

    def cache_key(self) -> tuple[str, str, str, str]:
        return (
            self.client_id.lower(),
            self.environment.lower(),
            self.realm.lower(),
            self.home_account_id.lower(),
        )
