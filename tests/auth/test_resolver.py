"""Tests for authority endpoint resolution and caching.

Covers:
- One discovery call per standard authority, later resolutions from cache
- {tenant} placeholder substitution
- ADFS per-domain validity and domain set union
- Missing metadata fields and UPN validation
- Single-flight collapsing of concurrent misses
- Cancellation and failure leaving the cache untouched
- Resolution from several threads, each running its own event loop
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from publicauth.models.authority import AuthorityInfo
from publicauth.models.errors import DiscoveryError, ValidationError
from publicauth.services.resolver import AuthorityEndpointResolver, adfs_domain_from_upn

TENANT_GUID = "72f988bf-86f1-41af-91ab-2d7cd011db47"


class TestStandardResolution:
    @pytest.fixture(autouse=True)
    def setup(self, discovery_fetcher):
        self.fetcher = discovery_fetcher
        self.resolver = AuthorityEndpointResolver(discovery_fetcher)
        self.authority = AuthorityInfo.from_authority_uri(
            f"https://login.microsoftonline.com/{TENANT_GUID}"
        )

    async def test_second_resolution_served_from_cache(self):
        # Act
        first = await self.resolver.resolve_endpoints(self.authority)
        second = await self.resolver.resolve_endpoints(self.authority)

        # Assert
        assert first == second
        assert self.fetcher.requested_urls == [
            f"https://login.microsoftonline.com/{TENANT_GUID}/v2.0/"
            ".well-known/openid-configuration"
        ]

    async def test_tenant_placeholder_substituted(self):
        endpoints = await self.resolver.resolve_endpoints(self.authority)

        assert endpoints.authorization_endpoint == (
            f"https://login.microsoftonline.com/{TENANT_GUID}/oauth2/v2.0/authorize"
        )
        assert endpoints.token_endpoint == (
            f"https://login.microsoftonline.com/{TENANT_GUID}/oauth2/v2.0/token"
        )
        assert endpoints.issuer == (
            f"https://login.microsoftonline.com/{TENANT_GUID}/v2.0"
        )
        assert endpoints.host == "login.microsoftonline.com"

    async def test_upn_does_not_affect_standard_cache_hits(self):
        await self.resolver.resolve_endpoints(self.authority, "alice@contoso.com")
        await self.resolver.resolve_endpoints(self.authority, "bob@fabrikam.com")
        await self.resolver.resolve_endpoints(self.authority)

        assert len(self.fetcher.requested_urls) == 1

    async def test_each_canonical_authority_cached_separately(self):
        other = self.authority.with_tenant(TENANT_GUID)
        common = AuthorityInfo.from_authority_uri(
            "https://login.microsoftonline.com/common"
        )

        await self.resolver.resolve_endpoints(self.authority)
        await self.resolver.resolve_endpoints(other)
        endpoints = await self.resolver.resolve_endpoints(common)

        assert len(self.fetcher.requested_urls) == 2
        assert "/common/" in endpoints.token_endpoint

    @pytest.mark.parametrize(
        "missing_field", ["authorization_endpoint", "token_endpoint", "issuer"]
    )
    async def test_missing_metadata_field_raises_discovery_error(self, missing_field):
        # Arrange
        del self.fetcher.document[missing_field]

        # Act
        with pytest.raises(DiscoveryError) as exc_info:
            await self.resolver.resolve_endpoints(self.authority)

        # Assert
        assert exc_info.value.field == missing_field
        assert not exc_info.value.transient
        assert self.resolver.cache_entry(self.authority.canonical_uri) is None

    async def test_empty_metadata_field_raises_discovery_error(self):
        self.fetcher.document["token_endpoint"] = ""

        with pytest.raises(DiscoveryError, match="Token endpoint"):
            await self.resolver.resolve_endpoints(self.authority)

    async def test_fetcher_error_propagates_unwrapped(self):
        self.fetcher.error = DiscoveryError("boom", transient=True)

        with pytest.raises(DiscoveryError, match="boom"):
            await self.resolver.resolve_endpoints(self.authority)

    async def test_clear_forces_rediscovery(self):
        await self.resolver.resolve_endpoints(self.authority)

        self.resolver.clear()
        await self.resolver.resolve_endpoints(self.authority)

        assert len(self.fetcher.requested_urls) == 2


class TestAdfsResolution:
    @pytest.fixture(autouse=True)
    def setup(self, adfs_discovery_fetcher):
        self.fetcher = adfs_discovery_fetcher
        self.resolver = AuthorityEndpointResolver(adfs_discovery_fetcher)
        self.authority = AuthorityInfo.from_authority_uri("https://fs.contoso.com/adfs")

    async def test_missing_upn_raises_validation_error(self):
        with pytest.raises(ValidationError):
            await self.resolver.resolve_endpoints(self.authority)

        assert self.fetcher.requested_urls == []

    async def test_upn_without_domain_raises_validation_error(self):
        with pytest.raises(ValidationError):
            await self.resolver.resolve_endpoints(self.authority, "alice")

    async def test_entry_only_valid_for_validated_domain(self):
        # Act
        await self.resolver.resolve_endpoints(self.authority, "alice@y.com")
        await self.resolver.resolve_endpoints(self.authority, "bob@Y.com")
        await self.resolver.resolve_endpoints(self.authority, "carol@x.com")

        # Assert
        assert self.fetcher.requested_urls == [
            "https://fs.contoso.com/adfs/.well-known/openid-configuration",
            "https://fs.contoso.com/adfs/.well-known/openid-configuration",
        ]

    async def test_new_domain_retains_previous_domains(self):
        # Arrange
        await self.resolver.resolve_endpoints(self.authority, "alice@y.com")

        # Act
        await self.resolver.resolve_endpoints(self.authority, "carol@x.com")
        await self.resolver.resolve_endpoints(self.authority, "dave@y.com")

        # Assert
        entry = self.resolver.cache_entry(self.authority.canonical_uri)
        assert entry.valid_for_domains == {"x.com", "y.com"}
        assert len(self.fetcher.requested_urls) == 2

    async def test_failed_discovery_does_not_widen_domains(self):
        # Arrange
        await self.resolver.resolve_endpoints(self.authority, "alice@y.com")
        self.fetcher.error = DiscoveryError("unreachable", transient=True)

        # Act
        with pytest.raises(DiscoveryError):
            await self.resolver.resolve_endpoints(self.authority, "carol@x.com")

        # Assert
        entry = self.resolver.cache_entry(self.authority.canonical_uri)
        assert entry.valid_for_domains == {"y.com"}

    def test_domain_is_taken_after_last_at_sign(self):
        assert adfs_domain_from_upn("first@last@Contoso.COM") == "contoso.com"


class TestConcurrentResolution:
    @pytest.fixture(autouse=True)
    def setup(self, discovery_fetcher):
        self.fetcher = discovery_fetcher
        self.fetcher.gate = asyncio.Event()
        self.resolver = AuthorityEndpointResolver(discovery_fetcher)
        self.authority = AuthorityInfo.from_authority_uri(
            "https://login.microsoftonline.com/common"
        )

    async def test_concurrent_misses_share_one_discovery_call(self):
        # Arrange
        tasks = [
            asyncio.create_task(self.resolver.resolve_endpoints(self.authority))
            for _ in range(5)
        ]
        await asyncio.sleep(0)

        # Act
        self.fetcher.gate.set()
        results = await asyncio.gather(*tasks)

        # Assert
        assert len(self.fetcher.requested_urls) == 1
        assert all(result == results[0] for result in results)

    async def test_cancelled_leader_leaves_cache_empty_and_waiters_retry(self):
        # Arrange
        leader = asyncio.create_task(self.resolver.resolve_endpoints(self.authority))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(self.resolver.resolve_endpoints(self.authority))
        await asyncio.sleep(0)

        # Act
        leader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leader
        assert self.resolver.cache_entry(self.authority.canonical_uri) is None

        self.fetcher.gate.set()
        endpoints = await waiter

        # Assert
        assert "/common/" in endpoints.token_endpoint
        assert len(self.fetcher.requested_urls) == 2

    async def test_cancelled_waiter_does_not_cancel_discovery(self):
        # Arrange
        leader = asyncio.create_task(self.resolver.resolve_endpoints(self.authority))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(self.resolver.resolve_endpoints(self.authority))
        await asyncio.sleep(0)

        # Act
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        self.fetcher.gate.set()
        endpoints = await leader

        # Assert
        assert "/common/" in endpoints.token_endpoint
        assert self.resolver.cache_entry(self.authority.canonical_uri) is not None

    async def test_deadline_from_caller_aborts_discovery(self):
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                self.resolver.resolve_endpoints(self.authority), timeout=0.01
            )

        assert self.resolver.cache_entry(self.authority.canonical_uri) is None


class TestThreadedResolution:
    THREADS = 4
    TASKS_PER_THREAD = 5

    @pytest.fixture(autouse=True)
    def setup(self, discovery_fetcher):
        self.fetcher = discovery_fetcher
        self.fetcher.delay = 0.05
        self.resolver = AuthorityEndpointResolver(discovery_fetcher)
        self.authority = AuthorityInfo.from_authority_uri(
            "https://login.microsoftonline.com/common"
        )

    def resolve_on_own_loop(self):
        async def resolve_many():
            return await asyncio.gather(
                *(
                    self.resolver.resolve_endpoints(self.authority)
                    for _ in range(self.TASKS_PER_THREAD)
                )
            )

        return asyncio.run(resolve_many())

    def test_threads_with_separate_loops_get_identical_endpoints(self):
        # Act
        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            futures = [
                pool.submit(self.resolve_on_own_loop) for _ in range(self.THREADS)
            ]
            results = [endpoints for f in futures for endpoints in f.result()]

        # Assert
        assert len(results) == self.THREADS * self.TASKS_PER_THREAD
        assert all(endpoints == results[0] for endpoints in results)
        assert self.resolver._inflight == {}
        assert self.resolver.cache_entry(self.authority.canonical_uri) is not None

    def test_each_loop_keeps_its_own_single_flight(self):
        # Act
        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            for future in [
                pool.submit(self.resolve_on_own_loop) for _ in range(self.THREADS)
            ]:
                future.result()

        # Assert
        assert 1 <= len(self.fetcher.requested_urls) <= self.THREADS
