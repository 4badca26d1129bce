"""Grant executors.

One executor per OAuth2 flow. Each takes the resolved endpoints plus the
request parameters and returns the token exchange result, which the
application then hands to the token cache. Executors are selected per flow
type when the client application is constructed, so tests and embedders can
swap any of them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from publicauth.models.authority import AuthorityEndpoints
from publicauth.models.errors import ConfigurationError, GrantError, ValidationError
from publicauth.models.params import AuthParameters, AuthorizationType
from publicauth.models.tokens import (
    AuthCodeTokenRequest,
    ClientCredentialsTokenRequest,
    DeviceCodeResult,
    DeviceCodeTokenRequest,
    OnBehalfOfTokenRequest,
    RefreshTokenRequest,
    TokenResponse,
    UsernamePasswordTokenRequest,
)
from publicauth.services.tokens import OAuth2TokenClient

logger = logging.getLogger(__name__)


class GrantExecutor(Protocol):
    """Runs one OAuth2 grant against resolved endpoints.

    Implementations must let ``asyncio.CancelledError`` propagate and must
    not write to the token cache themselves.
    """

    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse: ...


class DeviceCodeHandler(Protocol):
    """Shows the device code instructions to the user."""

    async def handle_device_code(self, device_code: DeviceCodeResult) -> None: ...


def raise_for_token_error(response: TokenResponse) -> TokenResponse:
    """Turn an OAuth error response into a ``GrantError``."""
    if response.is_success():
        return response
    raise GrantError(
        f"Token request failed: {response.error} - {response.error_description}",
        error_code=response.error,
        description=response.error_description,
    )


class _TokenGrant:
    def __init__(self, token_client: OAuth2TokenClient):
        self._token_client = token_client


class AuthorizationCodeGrant(_TokenGrant):
    """Redeems an authorization code together with its PKCE verifier."""

    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        if not params.code:
            raise ValidationError("Authorization code is required")
        if not params.redirect_uri:
            raise ValidationError("Redirect URI is required to redeem a code")
        if not params.code_verifier:
            raise ValidationError("PKCE code verifier is required to redeem a code")

        request = AuthCodeTokenRequest(
            token_endpoint=endpoints.token_endpoint,
            code=params.code,
            redirect_uri=params.redirect_uri,
            client_id=params.client_id,
            code_verifier=params.code_verifier,
            scope=params.request_scope(),
        )
        return raise_for_token_error(await self._token_client.request_token(request))


class RefreshTokenGrant(_TokenGrant):
    """Redeems a cached refresh token; the only grant used silently."""

    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        if not params.refresh_token:
            raise ValidationError("Refresh token is required")

        request = RefreshTokenRequest(
            token_endpoint=endpoints.token_endpoint,
            refresh_token=params.refresh_token,
            client_id=params.client_id,
            scope=params.request_scope(),
        )
        return raise_for_token_error(await self._token_client.request_token(request))


class UsernamePasswordGrant(_TokenGrant):
    """Resource owner password credentials for managed accounts.

    Federated realm probing happens outside this executor.
    """

    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        if not params.username or not params.password:
            raise ValidationError("Username and password are both required")

        request = UsernamePasswordTokenRequest(
            token_endpoint=endpoints.token_endpoint,
            username=params.username,
            password=params.password,
            client_id=params.client_id,
            scope=params.request_scope(),
        )
        return raise_for_token_error(await self._token_client.request_token(request))


class ClientCredentialsGrant(_TokenGrant):
    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        if not params.client_secret:
            raise ConfigurationError("Client credentials grant requires a secret")

        request = ClientCredentialsTokenRequest(
            token_endpoint=endpoints.token_endpoint,
            client_id=params.client_id,
            client_secret=params.client_secret,
            scope=params.request_scope(),
        )
        return raise_for_token_error(await self._token_client.request_token(request))


class OnBehalfOfGrant(_TokenGrant):
    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        if not params.client_secret:
            raise ConfigurationError("On-behalf-of grant requires a client secret")
        if not params.assertion:
            raise ValidationError("On-behalf-of grant requires a user assertion")

        request = OnBehalfOfTokenRequest(
            token_endpoint=endpoints.token_endpoint,
            client_id=params.client_id,
            client_secret=params.client_secret,
            assertion=params.assertion,
            scope=params.request_scope(),
        )
        return raise_for_token_error(await self._token_client.request_token(request))


class DeviceCodeGrant(_TokenGrant):
    """Device authorization grant (RFC 8628).

    Requests a device code, hands it to the ``DeviceCodeHandler`` and polls
    the token endpoint until the user completes sign-in, the code expires or
    the calling task is cancelled.
    """

    def __init__(
        self,
        token_client: OAuth2TokenClient,
        handler: DeviceCodeHandler | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(token_client)
        self.handler = handler
        self._sleep = sleep

    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        if self.handler is None:
            raise ConfigurationError("Device code flow requires a DeviceCodeHandler")

        device_code = await self._token_client.request_device_code(
            endpoints.device_code_endpoint, params.client_id, params.request_scope()
        )
        await self.handler.handle_device_code(device_code)

        request = DeviceCodeTokenRequest(
            token_endpoint=endpoints.token_endpoint,
            device_code=device_code.device_code,
            client_id=params.client_id,
        )
        interval = max(device_code.interval, 1)
        remaining = float(device_code.expires_in)

        # First poll waits one interval (RFC 8628 section 3.5)
        while True:
            if remaining <= 0:
                raise GrantError(
                    "Device code expired before the user completed sign-in",
                    error_code="expired_token",
                )
            logger.debug(f"Device code pending; polling in {interval}s")
            await self._sleep(interval)
            remaining -= interval

            response = await self._token_client.request_token(request)
            if response.is_success():
                return response

            if response.error == "authorization_pending":
                continue
            if response.error == "slow_down":
                interval += 5
                continue
            return raise_for_token_error(response)


def default_grant_executors(
    token_client: OAuth2TokenClient,
    device_code_handler: DeviceCodeHandler | None = None,
) -> dict[AuthorizationType, GrantExecutor]:
    """Build the standard executor for every flow type."""
    return {
        AuthorizationType.AUTH_CODE: AuthorizationCodeGrant(token_client),
        AuthorizationType.DEVICE_CODE: DeviceCodeGrant(
            token_client, device_code_handler
        ),
        AuthorizationType.USERNAME_PASSWORD: UsernamePasswordGrant(token_client),
        AuthorizationType.CLIENT_CREDENTIALS: ClientCredentialsGrant(token_client),
        AuthorizationType.ON_BEHALF_OF: OnBehalfOfGrant(token_client),
        AuthorizationType.REFRESH_TOKEN: RefreshTokenGrant(token_client),
    }
