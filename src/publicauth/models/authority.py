"""Authority models.

An authority is the base URL naming the identity provider and the tenant
partition that handles a request, e.g.
``https://login.microsoftonline.com/common``. These models parse authority
strings, apply tenant overrides and carry the endpoints discovered for them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from urllib.parse import urlparse

from publicauth.models.errors import ConfigurationError

ADFS_TENANT = "adfs"

COMMON = "common"
ORGANIZATIONS = "organizations"
CONSUMERS = "consumers"

# Aliases that may be narrowed to a concrete tenant
MULTI_TENANT_ALIASES = frozenset({COMMON, ORGANIZATIONS})
TENANT_ALIASES = frozenset({COMMON, ORGANIZATIONS, CONSUMERS})


class AuthorityType(str, Enum):
    """Kind of identity provider behind an authority."""

    STANDARD = "MSSTS"
    ADFS = "ADFS"


@dataclass(frozen=True)
class AuthorityInfo:
    """Parsed, immutable description of an authority."""

    host: str
    tenant: str
    authority_type: AuthorityType
    canonical_uri: str
    validate_authority: bool = True

    @classmethod
    def from_authority_uri(
        cls, authority_uri: str, validate_authority: bool = True
    ) -> AuthorityInfo:
        """Parse an authority URI such as ``https://host/tenant/``.

        Raises:
            ConfigurationError: If the URI is not https or has no tenant segment
        """
        parsed = urlparse(authority_uri)
        if parsed.scheme != "https":
            raise ConfigurationError(
                f"Authority must use https, got {authority_uri!r}"
            )
        if not parsed.netloc:
            raise ConfigurationError(f"Authority has no host: {authority_uri!r}")

        segments = [segment for segment in parsed.path.split("/") if segment]
        if not segments:
            raise ConfigurationError(
                f"Authority must include a tenant path segment: {authority_uri!r}"
            )

        host = parsed.netloc.lower()
        tenant = segments[0]
        authority_type = (
            AuthorityType.ADFS
            if tenant.lower() == ADFS_TENANT
            else AuthorityType.STANDARD
        )

        return cls(
            host=host,
            tenant=tenant,
            authority_type=authority_type,
            canonical_uri=f"https://{host}/{tenant}/",
            validate_authority=validate_authority,
        )

    @property
    def is_tenant_alias(self) -> bool:
        return self.tenant.lower() in TENANT_ALIASES

    def openid_configuration_url(self) -> str:
        """Build the OpenID configuration document URL for this authority."""
        if self.authority_type is AuthorityType.ADFS:
            return f"https://{self.host}/adfs/.well-known/openid-configuration"
        return f"{self.canonical_uri}v2.0/.well-known/openid-configuration"

    def with_tenant(self, tenant: str | None) -> AuthorityInfo:
        """Return the effective authority for a tenant override.

        Base ``common``/``organizations`` accept any override. Base
        ``consumers`` and federated authorities accept none. A concrete tenant
        only accepts itself.

        Raises:
            ConfigurationError: If the override is not allowed for this authority
        """
        if not tenant:
            return self

        if self.authority_type is AuthorityType.ADFS:
            raise ConfigurationError(
                "ADFS authorities do not support tenant overrides"
            )

        base = self.tenant.lower()
        requested = tenant.lower()

        if base == CONSUMERS:
            raise ConfigurationError(
                f"Authority {self.canonical_uri} is consumer-only and "
                f"cannot be redirected to tenant {tenant!r}"
            )

        if base in MULTI_TENANT_ALIASES:
            if requested == base:
                return self
            return replace(
                self,
                tenant=tenant,
                canonical_uri=f"https://{self.host}/{tenant}/",
            )

        if requested == base:
            return self

        if requested in TENANT_ALIASES:
            raise ConfigurationError(
                f"Authority {self.canonical_uri} is pinned to a tenant and "
                f"cannot be generalized to {tenant!r}"
            )
        raise ConfigurationError(
            f"Authority {self.canonical_uri} is pinned to tenant "
            f"{self.tenant!r} and cannot be redirected to {tenant!r}"
        )


@dataclass(frozen=True)
class AuthorityEndpoints:
    """Endpoints resolved for an authority, tenant placeholders substituted."""

    authorization_endpoint: str
    token_endpoint: str
    issuer: str
    host: str

    @property
    def device_code_endpoint(self) -> str:
        base, _, last = self.token_endpoint.rstrip("/").rpartition("/")
        return f"{base}/{last.replace('token', 'devicecode')}"


@dataclass(frozen=True)
class EndpointCacheEntry:
    """Cached endpoints for one canonical authority URI.

    For federated authorities the entry only serves lookups whose user
    principal domain is in ``valid_for_domains``.
    """

    endpoints: AuthorityEndpoints
    valid_for_domains: frozenset[str] = field(default_factory=frozenset)

    def is_valid_for(self, domain: str) -> bool:
        return domain in self.valid_for_domains

    def union(self, *domains: str) -> EndpointCacheEntry:
        """Return a copy whose domain set also contains ``domains``."""
        return replace(self, valid_for_domains=self.valid_for_domains | set(domains))
