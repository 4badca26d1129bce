"""Client application configuration."""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from publicauth.models.authority import AuthorityInfo

DEFAULT_AUTHORITY = "https://login.microsoftonline.com/common"
DEFAULT_REDIRECT_URI = "http://localhost:8080/callback"


class ClientConfig(BaseModel):
    """Settings shared by every request a client application makes.

    Invalid authorities raise ``ConfigurationError`` at construction time,
    before any network access.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(min_length=1)
    authority: str = DEFAULT_AUTHORITY
    validate_authority: bool = True
    timeout: float = Field(default=30.0, gt=0)
    redirect_uri: str = DEFAULT_REDIRECT_URI

    # Only confidential clients carry a secret
    client_secret: str | None = None

    @field_validator("authority")
    @classmethod
    def validate_authority_uri(cls, v: str) -> str:
        AuthorityInfo.from_authority_uri(v)
        return v

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str) -> str:
        """Redirect URIs must use HTTPS or point at localhost."""
        parsed = urlparse(v)
        is_localhost = parsed.hostname in ("localhost", "127.0.0.1")
        if parsed.scheme == "http" and not is_localhost:
            raise ValueError(f"Redirect URI must use HTTPS or localhost: {v}")
        return v

    def authority_info(self) -> AuthorityInfo:
        return AuthorityInfo.from_authority_uri(
            self.authority, self.validate_authority
        )
