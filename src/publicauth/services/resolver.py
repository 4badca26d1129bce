"""Authority endpoint resolution service.

Resolves an authority's authorization and token endpoints through OpenID
discovery and memoizes them per canonical authority URI. Federated (ADFS)
entries are only reused for user principal domains they were validated for.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from publicauth.models.authority import (
    AuthorityEndpoints,
    AuthorityInfo,
    AuthorityType,
    EndpointCacheEntry,
)
from publicauth.models.errors import DiscoveryError, ValidationError
from publicauth.primitives.discovery import TenantDiscoveryFetcher

logger = logging.getLogger(__name__)

TENANT_PLACEHOLDER = "{tenant}"


def adfs_domain_from_upn(user_principal_name: str) -> str:
    """Return the domain part of a user principal name.

    Raises:
        ValidationError: If the UPN has no ``@``
    """
    _, sep, domain = user_principal_name.rpartition("@")
    if not sep or not domain:
        raise ValidationError(
            f"User principal name {user_principal_name!r} has no domain part"
        )
    return domain.lower()


class AuthorityEndpointResolver:
    """Resolves and caches authority endpoints.

    The cache belongs to this instance, and each client application owns one
    resolver. Map mutation is serialized by a lock. Concurrent misses for the
    same authority (and, for ADFS, the same domain) on one event loop share a
    single discovery call.
    """

    def __init__(self, fetcher: TenantDiscoveryFetcher):
        self._fetcher = fetcher
        self._entries: dict[str, EndpointCacheEntry] = {}
        # Keyed per event loop; a future can only be awaited on its own loop
        self._inflight: dict[
            tuple[str, str, asyncio.AbstractEventLoop],
            asyncio.Future[AuthorityEndpoints | None],
        ] = {}
        self._lock = threading.Lock()

    async def resolve_endpoints(
        self, authority_info: AuthorityInfo, user_principal_name: str = ""
    ) -> AuthorityEndpoints:
        """Resolve the endpoints for an authority.

        Args:
            authority_info: Authority to resolve
            user_principal_name: Signing-in user, required for ADFS authorities

        Returns:
            Endpoints with ``{tenant}`` replaced by the authority's tenant

        Raises:
            ValidationError: If an ADFS authority is resolved without a UPN
            DiscoveryError: If the discovery document is missing an endpoint
        """
        domain = ""
        if authority_info.authority_type is AuthorityType.ADFS:
            if not user_principal_name:
                raise ValidationError(
                    "User principal name is required to validate an ADFS authority"
                )
            domain = adfs_domain_from_upn(user_principal_name)

        loop = asyncio.get_running_loop()
        key = (authority_info.canonical_uri, domain, loop)

        while True:
            with self._lock:
                endpoints = self._try_get_cached(authority_info, domain)
                if endpoints is not None:
                    logger.info("Resolving authority endpoints. Using cached value")
                    return endpoints

                pending = self._inflight.get(key)
                if pending is None:
                    pending = loop.create_future()
                    self._inflight[key] = pending
                    break

            # Another task is already discovering this authority
            endpoints = await asyncio.shield(pending)
            if endpoints is not None:
                return endpoints

        logger.info("Resolving authority endpoints. No cached value. Performing lookup")
        try:
            endpoints = await self._discover(authority_info)
        except BaseException:
            self._finish(key, pending, None)
            raise

        with self._lock:
            self._add_cached(authority_info, domain, endpoints)
        self._finish(key, pending, endpoints)
        return endpoints

    def cache_entry(self, canonical_uri: str) -> EndpointCacheEntry | None:
        with self._lock:
            return self._entries.get(canonical_uri)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def _discover(self, authority_info: AuthorityInfo) -> AuthorityEndpoints:
        openid_config_url = authority_info.openid_configuration_url()
        response = await self._fetcher.get_tenant_discovery_response(openid_config_url)

        if not response.has_authorization_endpoint():
            raise DiscoveryError(
                "Authorize endpoint was not found in the openid configuration",
                field="authorization_endpoint",
            )
        if not response.has_token_endpoint():
            raise DiscoveryError(
                "Token endpoint was not found in the openid configuration",
                field="token_endpoint",
            )
        if not response.has_issuer():
            raise DiscoveryError(
                "Issuer was not found in the openid configuration",
                field="issuer",
            )

        tenant = authority_info.tenant
        return AuthorityEndpoints(
            authorization_endpoint=response.authorization_endpoint.replace(
                TENANT_PLACEHOLDER, tenant
            ),
            token_endpoint=response.token_endpoint.replace(TENANT_PLACEHOLDER, tenant),
            issuer=response.issuer.replace(TENANT_PLACEHOLDER, tenant),
            host=authority_info.host,
        )

    def _try_get_cached(
        self, authority_info: AuthorityInfo, domain: str
    ) -> AuthorityEndpoints | None:
        entry = self._entries.get(authority_info.canonical_uri)
        if entry is None:
            return None
        if authority_info.authority_type is AuthorityType.ADFS:
            return entry.endpoints if entry.is_valid_for(domain) else None
        return entry.endpoints

    def _add_cached(
        self, authority_info: AuthorityInfo, domain: str, endpoints: AuthorityEndpoints
    ) -> None:
        uri = authority_info.canonical_uri
        updated = EndpointCacheEntry(endpoints)

        if authority_info.authority_type is AuthorityType.ADFS:
            # Keep every domain validated so far alongside the fresh endpoints
            existing = self._entries.get(uri)
            if existing is not None:
                updated = updated.union(*existing.valid_for_domains)
            updated = updated.union(domain)

        self._entries[uri] = updated

    def _finish(
        self,
        key: tuple[str, str, asyncio.AbstractEventLoop],
        pending: asyncio.Future[AuthorityEndpoints | None],
        endpoints: AuthorityEndpoints | None,
    ) -> None:
        with self._lock:
            if self._inflight.get(key) is pending:
                del self._inflight[key]
        if not pending.done():
            pending.set_result(endpoints)
