"""Client applications.

Wires the authority resolver, token cache, grant executors and silent
acquisition engine together behind the operations applications call.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from publicauth.config import DEFAULT_AUTHORITY, DEFAULT_REDIRECT_URI, ClientConfig
from publicauth.models.authority import AuthorityEndpoints, AuthorityInfo
from publicauth.models.cache import Account
from publicauth.models.errors import AuthError, ConfigurationError, GrantError
from publicauth.models.flow import AuthorizationRequest
from publicauth.models.params import AuthorizationType, AuthParameters, AuthResult
from publicauth.models.tokens import TokenResponse
from publicauth.primitives.discovery import HttpTenantDiscovery, TenantDiscoveryFetcher
from publicauth.services.cache import TokenCache
from publicauth.services.flow import AuthorizationFlowManager
from publicauth.services.grants import (
    DeviceCodeHandler,
    GrantExecutor,
    default_grant_executors,
)
from publicauth.services.resolver import AuthorityEndpointResolver
from publicauth.services.silent import SilentAcquisitionEngine
from publicauth.services.tokens import OAuth2TokenClient

logger = logging.getLogger(__name__)


class AuthorizationHandler(Protocol):
    """Takes the user through consent during interactive sign-in.

    Implementations open a system browser and run a loopback listener, embed
    a web view, or ask the user to paste the redirect URL back.
    """

    async def handle_authorization(self, auth_url: str) -> str:
        """Return the redirect URL the provider sent the user back to.

        Args:
            auth_url: Authorization URL, already carrying PKCE and state
        """
        ...


class ManualAuthorizationHandler:
    """Authorization handler that requires manual user interaction.

    Hands the authorization URL to a callback that must return the redirect
    URL. Suitable for CLI tools and custom integrations.
    """

    def __init__(self, callback_handler: Callable[[str], Awaitable[str]] | None = None):
        self.callback_handler = callback_handler

    async def handle_authorization(self, auth_url: str) -> str:
        if self.callback_handler:
            return await self.callback_handler(auth_url)
        raise NotImplementedError(
            f"Please visit {auth_url} and provide the callback URL"
        )


class ClientApplication:
    """Base client application.

    Each instance owns its endpoint cache and token cache; nothing is shared
    between instances. Collaborators that talk to the network can be
    injected, and default to the httpx-based implementations.
    """

    def __init__(
        self,
        client_id: str,
        *,
        authority: str = DEFAULT_AUTHORITY,
        validate_authority: bool = True,
        timeout: float = 30.0,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        client_secret: str | None = None,
        discovery_fetcher: TenantDiscoveryFetcher | None = None,
        token_cache: TokenCache | None = None,
        grant_executors: Mapping[AuthorizationType, GrantExecutor] | None = None,
        device_code_handler: DeviceCodeHandler | None = None,
    ):
        """Initialize the client application.

        Args:
            client_id: Application (client) ID registered with the provider
            authority: Authority URL, e.g. ``https://host/common``
            validate_authority: Whether the authority should be validated
            timeout: HTTP request timeout in seconds
            redirect_uri: Default redirect URI for the authorization code flow
            client_secret: Secret for confidential clients
            discovery_fetcher: Replaces the HTTP OpenID discovery fetcher
            token_cache: Replaces the in-memory token cache
            grant_executors: Replaces the executor of individual flow types
            device_code_handler: Shows device code instructions to the user

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self.config = ClientConfig(
                client_id=client_id,
                authority=authority,
                validate_authority=validate_authority,
                timeout=timeout,
                redirect_uri=redirect_uri,
                client_secret=client_secret,
            )
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid client configuration: {e}") from e

        self.authority_info = self.config.authority_info()

        self._owned: list[Any] = []
        if discovery_fetcher is None:
            discovery_fetcher = HttpTenantDiscovery(timeout=self.config.timeout)
            self._owned.append(discovery_fetcher)

        self.token_client = OAuth2TokenClient(timeout=self.config.timeout)
        self._owned.append(self.token_client)

        executors = default_grant_executors(self.token_client, device_code_handler)
        executors.update(grant_executors or {})
        self.grant_executors: dict[AuthorizationType, GrantExecutor] = executors

        self.resolver = AuthorityEndpointResolver(discovery_fetcher)
        self.token_cache = token_cache if token_cache is not None else TokenCache()
        self.silent_engine = SilentAcquisitionEngine(
            client_id=self.config.client_id,
            authority_info=self.authority_info,
            resolver=self.resolver,
            cache=self.token_cache,
            refresh_grant=self.grant_executors[AuthorizationType.REFRESH_TOKEN],
        )

    @property
    def client_id(self) -> str:
        return self.config.client_id

    async def resolve_endpoints(
        self, authority_info: AuthorityInfo, user_principal_name: str = ""
    ) -> AuthorityEndpoints:
        return await self.resolver.resolve_endpoints(
            authority_info, user_principal_name
        )

    async def acquire_token_silent(
        self,
        scopes: Iterable[str],
        *,
        account: Account | None = None,
        tenant_id: str | None = None,
    ) -> AuthResult:
        """Acquire a token from the cache, refreshing it if needed.

        Raises:
            ConfigurationError: If ``tenant_id`` cannot override the authority
            CacheMissError: If nothing usable is cached
            GrantError: If the refresh grant fails
        """
        return await self.silent_engine.acquire_token_silent(
            scopes, tenant_override=tenant_id, account=account
        )

    def cache_token_response(
        self, params: AuthParameters, result: TokenResponse
    ) -> Account | None:
        """Store a token exchange result produced outside this application.

        Raises:
            CacheWriteError: If the cache rejected the write
        """
        return self.silent_engine.cache_token_response(params, result)

    def get_accounts(self) -> list[Account]:
        return self.token_cache.accounts()

    def remove_account(self, account: Account) -> None:
        """Sign an account out of this application's cache."""
        self.token_cache.remove_account(account)
        logger.info(f"Removed account {account.home_account_id} from the cache")

    async def close(self) -> None:
        """Close the HTTP clients this application created."""
        for owned in self._owned:
            await owned.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _effective_authority(self, tenant_id: str | None) -> AuthorityInfo:
        return self.authority_info.with_tenant(tenant_id)

    async def _acquire_token(
        self,
        authorization_type: AuthorizationType,
        scopes: Iterable[str],
        tenant_id: str | None,
        user_principal_name: str = "",
        **flow_inputs: Any,
    ) -> AuthResult:
        """Run one non-silent grant and record its result in the cache."""
        authority = self._effective_authority(tenant_id)
        endpoints = await self.resolve_endpoints(authority, user_principal_name)

        params = AuthParameters(
            client_id=self.client_id,
            authority_info=authority,
            scopes=tuple(scopes),
            authorization_type=authorization_type,
            endpoints=endpoints,
            **flow_inputs,
        )

        logger.debug(
            f"Running {authorization_type.value} grant for {authority.canonical_uri}"
        )
        executor = self.grant_executors[authorization_type]
        try:
            result = await executor.execute(endpoints, params)
        except AuthError:
            raise
        except Exception as e:
            raise GrantError(f"{authorization_type.value} grant failed: {e}") from e

        auth_result = self.silent_engine.record_exchange(params, result)
        logger.info(f"Acquired token with {authorization_type.value} grant")
        return auth_result


class PublicClientApplication(ClientApplication):
    """Client application for apps that cannot keep a secret.

    Desktop, mobile and CLI applications sign users in with the
    authorization code (interactive), device code or username/password flows,
    then reuse the cached tokens through ``acquire_token_silent``.
    """

    def __init__(
        self,
        client_id: str,
        *,
        authorization_handler: AuthorizationHandler | None = None,
        **kwargs: Any,
    ):
        if kwargs.get("client_secret"):
            raise ConfigurationError("Public client applications cannot use a secret")
        super().__init__(client_id, **kwargs)
        self.authorization_handler = (
            authorization_handler or ManualAuthorizationHandler()
        )
        self.flow_manager = AuthorizationFlowManager()

    async def create_auth_code_url(
        self,
        redirect_uri: str,
        scopes: Iterable[str],
        code_challenge: str,
        *,
        state: str | None = None,
        login_hint: str | None = None,
        prompt: str | None = None,
        tenant_id: str | None = None,
    ) -> str:
        """Build the URL where the user grants consent.

        Raises:
            ConfigurationError: If ``tenant_id`` cannot override the authority
            ValidationError: If ``code_challenge`` is empty
        """
        authority = self._effective_authority(tenant_id)
        endpoints = await self.resolve_endpoints(authority, login_hint or "")
        params = AuthParameters(
            client_id=self.client_id,
            authority_info=authority,
            scopes=tuple(scopes),
            authorization_type=AuthorizationType.AUTH_CODE,
        )
        return AuthorizationRequest(
            authorization_endpoint=endpoints.authorization_endpoint,
            client_id=self.client_id,
            redirect_uri=redirect_uri,
            scope=params.request_scope(),
            code_challenge=code_challenge,
            state=state,
            prompt=prompt,
            login_hint=login_hint,
        ).build_authorization_url()

    async def acquire_token_by_auth_code(
        self,
        code: str,
        redirect_uri: str,
        scopes: Iterable[str],
        code_verifier: str,
        *,
        tenant_id: str | None = None,
    ) -> AuthResult:
        """Redeem an authorization code obtained from ``create_auth_code_url``."""
        return await self._acquire_token(
            AuthorizationType.AUTH_CODE,
            scopes,
            tenant_id,
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
        )

    async def acquire_token_interactive(
        self,
        scopes: Iterable[str],
        *,
        redirect_uri: str | None = None,
        login_hint: str | None = None,
        prompt: str | None = "select_account",
        tenant_id: str | None = None,
    ) -> AuthResult:
        """Sign a user in through the authorization handler.

        Generates PKCE parameters and state, lets the handler take the user
        through consent, validates the callback, then redeems the code.

        Raises:
            StateValidationError: If the callback state does not match
            AuthorizationError: If the user or server denied authorization
            GrantError: If the code redemption fails
        """
        scopes = tuple(scopes)
        redirect_uri = redirect_uri or self.config.redirect_uri
        authority = self._effective_authority(tenant_id)
        endpoints = await self.resolve_endpoints(authority, login_hint or "")

        scope = AuthParameters(
            client_id=self.client_id,
            authority_info=authority,
            scopes=scopes,
            authorization_type=AuthorizationType.AUTH_CODE,
        ).request_scope()
        auth_url, pkce_params, state = self.flow_manager.start_authorization_flow(
            endpoints,
            self.client_id,
            redirect_uri,
            scope,
            login_hint=login_hint,
            prompt=prompt,
        )

        logger.debug("Handling user authorization")
        callback_url = await self.authorization_handler.handle_authorization(auth_url)
        auth_response = self.flow_manager.handle_authorization_callback(
            callback_url, state
        )

        return await self._acquire_token(
            AuthorizationType.AUTH_CODE,
            scopes,
            tenant_id,
            login_hint or "",
            code=auth_response.code,
            redirect_uri=redirect_uri,
            code_verifier=pkce_params.code_verifier,
        )

    async def acquire_token_by_device_code(
        self, scopes: Iterable[str], *, tenant_id: str | None = None
    ) -> AuthResult:
        """Sign a user in on another device (RFC 8628)."""
        return await self._acquire_token(
            AuthorizationType.DEVICE_CODE, scopes, tenant_id
        )

    async def acquire_token_by_username_password(
        self,
        scopes: Iterable[str],
        username: str,
        password: str,
        *,
        tenant_id: str | None = None,
    ) -> AuthResult:
        """Sign a managed user in with their credentials."""
        return await self._acquire_token(
            AuthorizationType.USERNAME_PASSWORD,
            scopes,
            tenant_id,
            username,
            username=username,
            password=password,
        )


class ConfidentialClientApplication(ClientApplication):
    """Client application for services that hold a client secret."""

    def __init__(self, client_id: str, *, client_secret: str, **kwargs: Any):
        if not client_secret:
            raise ConfigurationError("Confidential clients require a client secret")
        super().__init__(client_id, client_secret=client_secret, **kwargs)

    async def acquire_token_for_client(
        self, scopes: Iterable[str], *, tenant_id: str | None = None
    ) -> AuthResult:
        """Acquire an app-only token, reusing a cached one when still valid."""
        scopes = tuple(scopes)
        authority = self._effective_authority(tenant_id)
        cached = self.token_cache.lookup(
            self.client_id, authority.host, authority.tenant, None, scopes
        )
        if cached is not None:
            logger.info("App-only token served from cache")
            return AuthResult(
                access_token=cached.secret,
                expires_on=cached.expires_on,
                scopes=tuple(sorted(cached.scopes)),
            )

        return await self._acquire_token(
            AuthorizationType.CLIENT_CREDENTIALS,
            scopes,
            tenant_id,
            client_secret=self.config.client_secret,
        )

    async def acquire_token_on_behalf_of(
        self,
        user_assertion: str,
        scopes: Iterable[str],
        *,
        tenant_id: str | None = None,
    ) -> AuthResult:
        """Exchange an incoming user token for one to call a downstream API."""
        return await self._acquire_token(
            AuthorizationType.ON_BEHALF_OF,
            scopes,
            tenant_id,
            client_secret=self.config.client_secret,
            assertion=user_assertion,
        )
