"""Token endpoint client.

Posts grant requests to a token endpoint and parses the RFC 6749 Section 5
response. Every grant executor goes through this client.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from publicauth.models.errors import GrantError
from publicauth.models.tokens import DeviceCodeResult, TokenResponse

logger = logging.getLogger(__name__)

# Form fields that must never reach the logs
_SECRET_FIELDS = frozenset(
    {"password", "client_secret", "refresh_token", "assertion", "code", "code_verifier"}
)


class FormRequest(Protocol):
    token_endpoint: str

    def to_form_data(self) -> dict[str, str]: ...


class OAuth2TokenClient:
    """Sends token requests using application/x-www-form-urlencoded encoding.

    Error responses are returned as ``TokenResponse`` objects so that callers
    can react to codes like ``authorization_pending``. Transport failures and
    unparseable responses raise ``GrantError``.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize the token client.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional preconfigured client; closed by close()
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def request_token(self, request: FormRequest) -> TokenResponse:
        """Send a token request and parse the response.

        Raises:
            GrantError: If the request fails at the transport level or the
                response cannot be parsed
        """
        form_data = request.to_form_data()

        # Log request details (without sensitive data)
        safe_fields = {k: v for k, v in form_data.items() if k not in _SECRET_FIELDS}
        logger.debug(f"Token request to {request.token_endpoint}: {safe_fields}")

        response = await self._post(request.token_endpoint, form_data)
        return self._parse_token_response(response)

    async def request_device_code(
        self, device_code_endpoint: str, client_id: str, scope: str
    ) -> DeviceCodeResult:
        """Start a device authorization (RFC 8628 Section 3.1).

        Raises:
            GrantError: If the provider rejects the request
        """
        logger.debug(f"Requesting device code at {device_code_endpoint}")
        response = await self._post(
            device_code_endpoint, {"client_id": client_id, "scope": scope}
        )

        try:
            response_data = response.json()
        except ValueError as e:
            raise GrantError(f"Invalid device code response format: {e}") from e

        if not isinstance(response_data, dict):
            raise GrantError(
                f"Invalid device code response format (HTTP {response.status_code}): "
                "expected a JSON object",
                transient=response.status_code >= 500,
            )

        if response.status_code != 200:
            raise self._error_from(response.status_code, response_data)

        try:
            return DeviceCodeResult(**response_data)
        except PydanticValidationError as e:
            raise GrantError(f"Invalid device code response format: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()

    async def _post(self, url: str, form_data: dict[str, str]) -> httpx.Response:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            return await self._http_client.post(url, data=form_data, headers=headers)
        except httpx.HTTPError as e:
            raise GrantError(
                f"HTTP error during token request to {url}: {e}", transient=True
            ) from e

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse token endpoint response into TokenResponse.

        Handles both successful responses (200) and error responses (400+)
        according to RFC 6749 Section 5.
        """
        try:
            response_data = response.json()
        except ValueError as e:
            raise GrantError(
                f"Invalid token response format (HTTP {response.status_code}): {e}",
                transient=response.status_code >= 500,
            ) from e

        if not isinstance(response_data, dict):
            raise GrantError(
                f"Invalid token response format (HTTP {response.status_code}): "
                "expected a JSON object",
                transient=response.status_code >= 500,
            )

        if response.status_code >= 500 and "error" not in response_data:
            raise GrantError(
                f"Token endpoint failed with HTTP {response.status_code}",
                transient=True,
            )

        try:
            token_response = TokenResponse(**response_data)
        except (PydanticValidationError, TypeError) as e:
            raise GrantError(f"Invalid token response format: {e}") from e

        if response.status_code == 200 and token_response.access_token is None:
            raise GrantError("Token response missing required access_token")

        if token_response.is_error():
            logger.warning(
                f"Token request failed with {response.status_code}: "
                f"{token_response.error} - {token_response.error_description}"
            )
        else:
            logger.info("Token exchange successful")

        return token_response

    @staticmethod
    def _error_from(status_code: int, response_data: dict) -> GrantError:
        error_code = response_data.get("error", "unknown_error")
        description = response_data.get("error_description", "No description provided")
        return GrantError(
            f"Request failed ({status_code}): {error_code} - {description}",
            error_code=error_code,
            description=description,
            transient=status_code >= 500,
        )
