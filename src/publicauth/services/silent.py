"""Silent token acquisition.

Produces a token without user interaction: either an unexpired access token
from the cache, or a fresh one minted with a cached refresh token. Never
falls back to an interactive flow; callers decide what to do on a miss.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from publicauth.models.authority import MULTI_TENANT_ALIASES, AuthorityInfo
from publicauth.models.cache import Account
from publicauth.models.errors import (
    AuthError,
    CacheMissError,
    CacheWriteError,
    GrantError,
)
from publicauth.models.params import AuthorizationType, AuthParameters, AuthResult
from publicauth.models.tokens import TokenResponse
from publicauth.primitives.identity import decode_id_token_claims
from publicauth.services.cache import TokenCache
from publicauth.services.grants import GrantExecutor
from publicauth.services.resolver import AuthorityEndpointResolver

logger = logging.getLogger(__name__)


class SilentAcquisitionEngine:
    """Cache lookup, tenant resolution and refresh fallback for one client.

    The engine also owns the write path shared by every grant: results are
    recorded in the token cache before being returned to the caller.
    """

    def __init__(
        self,
        client_id: str,
        authority_info: AuthorityInfo,
        resolver: AuthorityEndpointResolver,
        cache: TokenCache,
        refresh_grant: GrantExecutor,
    ):
        self.client_id = client_id
        self.authority_info = authority_info
        self._resolver = resolver
        self._cache = cache
        self._refresh_grant = refresh_grant

    async def acquire_token_silent(
        self,
        scopes: Iterable[str],
        tenant_override: str | None = None,
        account: Account | None = None,
        now: float | None = None,
    ) -> AuthResult:
        """Return a cached or refreshed token for ``scopes``.

        Args:
            scopes: Requested scopes
            tenant_override: Tenant to acquire the token for instead of the
                account's or the configured one
            account: Previously signed-in account
            now: Reference time for expiry checks

        Raises:
            ConfigurationError: If the override is invalid for the authority
            CacheMissError: If neither a usable access token nor a refresh
                token for the effective tenant is cached
            GrantError: If the refresh grant fails
        """
        scopes = tuple(scopes)
        now = time.time() if now is None else now

        # Override validation happens before any cache or network access
        authority = self._effective_authority(tenant_override, account)
        if tenant_override or account is None:
            realm = authority.tenant
        else:
            realm = account.realm
        environment = account.environment if account else self.authority_info.host
        home_account_id = account.home_account_id if account else None

        access_token = self._cache.lookup(
            self.client_id, environment, realm, home_account_id, scopes, now=now
        )
        if access_token is not None:
            logger.info(f"Silent acquisition served from cache for realm {realm}")
            return self._result_from_cache(access_token, account, realm)

        if account is None:
            raise CacheMissError("No cached access token and no account to refresh")

        if realm.lower() != account.realm.lower() and (
            self._cache.find_account(home_account_id, environment, realm) is None
        ):
            raise CacheMissError(
                f"Account has never signed in to tenant {realm!r}; "
                "nothing cached for it"
            )

        refresh_token = self._cache.find_refresh_token(
            self.client_id, environment, home_account_id
        )
        if refresh_token is None:
            raise CacheMissError("No cached refresh token for account")

        endpoints = await self._resolver.resolve_endpoints(authority, account.username)
        params = AuthParameters(
            client_id=self.client_id,
            authority_info=authority,
            scopes=scopes,
            authorization_type=AuthorizationType.REFRESH_TOKEN,
            endpoints=endpoints,
            refresh_token=refresh_token.secret,
            home_account_id=home_account_id,
            account_realm=realm,
            username=account.username,
        )

        logger.debug(f"Refreshing access token for realm {realm}")
        try:
            result = await self._refresh_grant.execute(endpoints, params)
        except AuthError:
            raise
        except Exception as e:
            raise GrantError(f"Refresh grant failed: {e}") from e

        return self.record_exchange(params, result, now=now)

    def cache_token_response(
        self, params: AuthParameters, result: TokenResponse, now: float | None = None
    ) -> Account | None:
        """Write an exchange result to the token cache.

        Raises:
            CacheWriteError: If the cache rejected the write
        """
        try:
            return self._cache.upsert(params, result, now=now)
        except CacheWriteError:
            raise
        except Exception as e:
            raise CacheWriteError(f"Failed to cache token response: {e}") from e

    def record_exchange(
        self, params: AuthParameters, result: TokenResponse, now: float | None = None
    ) -> AuthResult:
        """Cache a successful exchange and build the caller's result.

        A failed cache write does not discard the issued token; the error is
        attached to the result instead.
        """
        now = time.time() if now is None else now
        cache_write_error = None
        account = None
        try:
            account = self.cache_token_response(params, result, now=now)
        except CacheWriteError as e:
            logger.warning(f"Token issued but not cached: {e}")
            cache_write_error = e

        return AuthResult(
            access_token=result.access_token,
            expires_on=result.calculate_expires_on(now),
            account=account,
            scopes=tuple(result.granted_scopes() or params.scopes),
            id_token_claims=decode_id_token_claims(result.id_token),
            cache_write_error=cache_write_error,
        )

    def _effective_authority(
        self, tenant_override: str | None, account: Account | None
    ) -> AuthorityInfo:
        if tenant_override:
            return self.authority_info.with_tenant(tenant_override)
        if (
            account is not None
            and self.authority_info.tenant.lower() in MULTI_TENANT_ALIASES
        ):
            return self.authority_info.with_tenant(account.realm)
        return self.authority_info

    def _result_from_cache(
        self, access_token, account: Account | None, realm: str
    ) -> AuthResult:
        claims = {}
        if account is not None:
            account = (
                self._cache.find_account(
                    account.home_account_id, account.environment, realm
                )
                or account
            )
            id_token = self._cache.find_id_token(
                self.client_id,
                account.environment,
                realm,
                account.home_account_id,
            )
            if id_token is not None:
                claims = decode_id_token_claims(id_token.secret)

        return AuthResult(
            access_token=access_token.secret,
            expires_on=access_token.expires_on,
            account=account,
            scopes=tuple(sorted(access_token.scopes)),
            id_token_claims=claims,
        )
