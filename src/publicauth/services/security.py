"""CSRF state for the authorization redirect."""

from __future__ import annotations

import secrets

from publicauth.models.errors import StateValidationError


def generate_state() -> str:
    """Return an unguessable, URL-safe value of 32 characters."""
    return secrets.token_urlsafe(24)


def validate_state(expected: str, actual: str) -> None:
    """Compare the returned state with the one sent, in constant time.

    Raises:
        StateValidationError: If the values differ
    """
    if not secrets.compare_digest(expected.encode(), actual.encode()):
        raise StateValidationError(
            "State parameter mismatch; the redirect did not originate from "
            "this sign-in"
        )
