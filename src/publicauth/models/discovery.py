"""OpenID configuration document model.

Only the three fields the authority resolver depends on are modelled; the
rest of the document is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class TenantDiscoveryResponse(BaseModel):
    """OpenID Connect provider metadata returned by the discovery endpoint."""

    model_config = ConfigDict(extra="ignore")

    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    issuer: str | None = None

    def has_authorization_endpoint(self) -> bool:
        return bool(self.authorization_endpoint)

    def has_token_endpoint(self) -> bool:
        return bool(self.token_endpoint)

    def has_issuer(self) -> bool:
        return bool(self.issuer)
