"""Exception hierarchy for public-client authentication errors.

Provides specific exception types for different failure modes so callers can
tell configuration mistakes, protocol violations and transient faults apart.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all publicauth errors."""

    pass


class ConfigurationError(AuthError):
    """Raised when the authority or tenant override combination is invalid.

    Always raised before any cache or network access.
    """

    pass


class ValidationError(AuthError):
    """Raised when a required protocol parameter is missing or malformed."""

    pass


class DiscoveryError(AuthError):
    """Raised when the OpenID configuration document is unusable.

    Attributes:
        field: Name of the required metadata field that was missing, if any
        transient: True for network faults and server errors that may succeed
            on a later attempt
    """

    def __init__(
        self, message: str, *, field: str | None = None, transient: bool = False
    ):
        super().__init__(message)
        self.field = field
        self.transient = transient


class CacheMissError(AuthError):
    """Raised when silent acquisition found nothing usable in the cache."""

    pass


class GrantError(AuthError):
    """Raised when a token grant fails.

    Wraps the provider's OAuth error response (``invalid_grant``,
    ``invalid_client``...) or the underlying transport failure.
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        description: str | None = None,
        transient: bool = False,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.description = description
        self.transient = transient


class CacheWriteError(AuthError):
    """Raised when writing a token exchange result to the cache fails."""

    pass


class AuthorizationError(AuthError):
    """Raised when user authorization fails."""

    pass


class StateValidationError(AuthorizationError):
    """Raised when the OAuth state parameter is missing or does not match.

    This indicates either a tampered redirect or an authorization server
    issue, and the authorization code must not be redeemed.
    """

    pass


class PKCEError(AuthError):
    """Raised when PKCE parameter generation fails."""

    pass
