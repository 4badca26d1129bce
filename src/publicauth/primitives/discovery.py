"""OpenID configuration discovery primitive.

Fetches the provider metadata document that lists an authority's
authorization endpoint, token endpoint and issuer.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from publicauth.models.discovery import TenantDiscoveryResponse
from publicauth.models.errors import DiscoveryError

logger = logging.getLogger(__name__)


class TenantDiscoveryFetcher(Protocol):
    """Fetches an OpenID configuration document.

    Implementations must let ``asyncio.CancelledError`` propagate.
    """

    async def get_tenant_discovery_response(
        self, openid_config_url: str
    ) -> TenantDiscoveryResponse: ...


class HttpTenantDiscovery:
    """Fetches OpenID configuration documents over HTTP.

    Failures are reported as ``DiscoveryError`` with ``transient`` set for
    network faults and 5xx responses, so callers can tell a flaky network
    from a misconfigured authority.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize OpenID discovery.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional preconfigured client; closed by close()
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def get_tenant_discovery_response(
        self, openid_config_url: str
    ) -> TenantDiscoveryResponse:
        """Fetch and parse the OpenID configuration document.

        Args:
            openid_config_url: Well-known OpenID configuration URL

        Returns:
            Parsed discovery document

        Raises:
            DiscoveryError: If the fetch fails or the document is not JSON
        """
        logger.debug(f"Fetching OpenID configuration from: {openid_config_url}")

        try:
            response = await self._http_client.get(
                openid_config_url, headers={"Accept": "application/json"}
            )
            response.raise_for_status()

            metadata = TenantDiscoveryResponse.model_validate_json(response.text)

            logger.debug(f"Fetched OpenID configuration from {openid_config_url}")
            return metadata

        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"Failed to fetch OpenID configuration from {openid_config_url}: {e}",
                transient=e.response.status_code >= 500,
            ) from e
        except httpx.RequestError as e:
            raise DiscoveryError(
                f"Network error fetching OpenID configuration from "
                f"{openid_config_url}: {e}",
                transient=True,
            ) from e
        except PydanticValidationError as e:
            raise DiscoveryError(
                f"Invalid OpenID configuration from {openid_config_url}: {e}"
            ) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()
