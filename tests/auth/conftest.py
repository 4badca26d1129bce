import asyncio
import base64
import json
from typing import Any

import jwt
import pytest

from publicauth.models.authority import AuthorityEndpoints
from publicauth.models.discovery import TenantDiscoveryResponse
from publicauth.models.params import AuthParameters
from publicauth.models.tokens import TokenResponse

STANDARD_DOCUMENT = {
    "authorization_endpoint": (
        "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/authorize"
    ),
    "token_endpoint": "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token",
    "issuer": "https://login.microsoftonline.com/{tenant}/v2.0",
    "jwks_uri": "https://login.microsoftonline.com/common/discovery/v2.0/keys",
}

SIGNING_KEY = "test-signing-key-for-unverified-id-tokens"

ADFS_DOCUMENT = {
    "authorization_endpoint": "https://fs.contoso.com/adfs/oauth2/authorize/",
    "token_endpoint": "https://fs.contoso.com/adfs/oauth2/token/",
    "issuer": "https://fs.contoso.com/adfs",
}


class FakeDiscoveryFetcher:
    """Discovery fetcher that serves a fixed document and records requests."""

    def __init__(self, document: dict[str, Any] | None = None):
        self.document = dict(STANDARD_DOCUMENT if document is None else document)
        self.requested_urls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.error: BaseException | None = None

    async def get_tenant_discovery_response(
        self, openid_config_url: str
    ) -> TenantDiscoveryResponse:
        self.requested_urls.append(openid_config_url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return TenantDiscoveryResponse(**self.document)


class FakeGrantExecutor:
    """Grant executor returning queued results; the last one repeats."""

    def __init__(self, *results: TokenResponse | BaseException):
        self.results = list(results)
        self.calls: list[tuple[AuthorityEndpoints, AuthParameters]] = []

    async def execute(
        self, endpoints: AuthorityEndpoints, params: AuthParameters
    ) -> TokenResponse:
        self.calls.append((endpoints, params))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


def make_id_token(**claims: Any) -> str:
    return jwt.encode(claims, SIGNING_KEY, algorithm="HS256")


def make_client_info(uid: str, utid: str) -> str:
    raw = json.dumps({"uid": uid, "utid": utid}).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def make_user_token_response(
    access_token: str = "access-token-1",
    tenant: str = "tenant-a",
    *,
    uid: str = "user-1",
    utid: str = "home-tenant",
    username: str = "alice@contoso.com",
    refresh_token: str | None = "refresh-token-1",
    expires_in: int = 3600,
    scope: str | None = "user.read",
) -> TokenResponse:
    return TokenResponse(
        access_token=access_token,
        token_type="Bearer",
        expires_in=expires_in,
        refresh_token=refresh_token,
        scope=scope,
        id_token=make_id_token(
            sub=f"sub-{uid}",
            oid=f"oid-{uid}",
            tid=tenant,
            preferred_username=username,
        ),
        client_info=make_client_info(uid, utid),
    )


@pytest.fixture
def discovery_fetcher() -> FakeDiscoveryFetcher:
    return FakeDiscoveryFetcher()


@pytest.fixture
def adfs_discovery_fetcher() -> FakeDiscoveryFetcher:
    return FakeDiscoveryFetcher(ADFS_DOCUMENT)


@pytest.fixture
def user_token_response():
    """Factory for successful user token responses with ID token and client_info."""
    return make_user_token_response


@pytest.fixture
def id_token_factory():
    return make_id_token


@pytest.fixture
def client_info_factory():
    return make_client_info


@pytest.fixture
def grant_executor_factory():
    return FakeGrantExecutor


@pytest.fixture
def fetcher_factory():
    return FakeDiscoveryFetcher
