"""Front-channel half of the authorization code flow.

Builds the URL the user is sent to and checks the redirect the browser comes
back with. Opening the browser and listening for the redirect belong to an
``AuthorizationHandler``.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlsplit

from publicauth.models.authority import AuthorityEndpoints
from publicauth.models.errors import AuthorizationError, StateValidationError
from publicauth.models.flow import AuthorizationRequest, AuthorizationResponse
from publicauth.models.security import PKCEParameters
from publicauth.primitives.pkce import PKCEManager
from publicauth.services.security import generate_state, validate_state

logger = logging.getLogger(__name__)


class AuthorizationFlowManager:
    """Pairs each authorization URL with its PKCE verifier and CSRF state."""

    def __init__(self, pkce_manager: PKCEManager | None = None):
        self._pkce = pkce_manager or PKCEManager()

    def start_authorization_flow(
        self,
        endpoints: AuthorityEndpoints,
        client_id: str,
        redirect_uri: str,
        scope: str,
        login_hint: str | None = None,
        prompt: str | None = "select_account",
    ) -> tuple[str, PKCEParameters, str]:
        """Build the authorization URL for a new sign-in.

        Args:
            endpoints: Endpoints of the effective authority
            client_id: Application (client) ID
            redirect_uri: Where the provider sends the browser afterwards
            scope: Space separated scope, reserved OIDC scopes included
            login_hint: User name to pre-fill on the sign-in page
            prompt: ``select_account``, ``login``, ``consent`` or None

        Returns:
            The URL, the PKCE pair whose verifier redeems the code, and the
            state the redirect must echo back
        """
        pkce = self._pkce.generate_parameters()
        state = generate_state()

        url = AuthorizationRequest(
            authorization_endpoint=endpoints.authorization_endpoint,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=pkce.code_challenge,
            code_challenge_method=pkce.code_challenge_method,
            state=state,
            prompt=prompt,
            login_hint=login_hint,
        ).build_authorization_url()

        logger.info(f"Built authorization URL for client {client_id}")
        return url, pkce, state

    def handle_authorization_callback(
        self, callback_url: str, expected_state: str
    ) -> AuthorizationResponse:
        """Check the redirect and extract the authorization code.

        State is verified before anything else, so a forged redirect is
        rejected even when it reports an error.

        Raises:
            StateValidationError: If the state is absent or differs
            AuthorizationError: If the provider returned an error or no code
        """
        response = self._parse_callback_url(callback_url)

        if response.state is None:
            raise StateValidationError("Redirect is missing the state parameter")
        validate_state(expected_state, response.state)

        if response.is_error():
            logger.warning(
                f"Authorization denied: {response.error} - "
                f"{response.error_description}"
            )
            raise AuthorizationError(
                f"Authorization failed: {response.error} "
                f"({response.error_description or 'no description'})"
            )
        if not response.is_success():
            raise AuthorizationError("Redirect carries neither a code nor an error")

        logger.debug("Authorization code received")
        return response

    @staticmethod
    def _parse_callback_url(callback_url: str) -> AuthorizationResponse:
        # First value wins for repeated parameters
        params: dict[str, str] = {}
        for key, value in parse_qsl(urlsplit(callback_url).query):
            params.setdefault(key, value)

        return AuthorizationResponse(
            code=params.get("code"),
            state=params.get("state"),
            error=params.get("error"),
            error_description=params.get("error_description"),
            error_uri=params.get("error_uri"),
        )
