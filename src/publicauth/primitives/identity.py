"""Identity claims carried by token responses.

Decodes the ID token claims and the provider's ``client_info`` blob, which
together determine the account a token belongs to.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import jwt

logger = logging.getLogger(__name__)


def decode_id_token_claims(id_token: str | None) -> dict[str, Any]:
    """Return the ID token claims without verifying the signature.

    The token came straight from the token endpoint over TLS, so only its
    payload is read here. Malformed tokens yield no claims.
    """
    if not id_token:
        return {}
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.warning(f"Ignoring undecodable ID token: {e}")
        return {}


def decode_client_info(client_info: str | None) -> dict[str, Any]:
    """Decode the base64url JSON ``client_info`` returned with user tokens."""
    if not client_info:
        return {}
    padded = client_info + "=" * (-len(client_info) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        info = json.loads(decoded)
    except (ValueError, UnicodeError) as e:
        logger.warning(f"Ignoring malformed client_info: {e}")
        return {}
    return info if isinstance(info, dict) else {}


def home_account_id_from(
    client_info: dict[str, Any], id_token_claims: dict[str, Any]
) -> str | None:
    """Build the tenant-independent home account identifier.

    ``uid.utid`` from client_info when present, the ID token subject for
    federated identities, and None for app-only tokens.
    """
    if "uid" in client_info and "utid" in client_info:
        return f"{client_info['uid']}.{client_info['utid']}"
    if id_token_claims.get("sub"):
        return id_token_claims["sub"]
    return None


def username_from(id_token_claims: dict[str, Any]) -> str:
    return id_token_claims.get("preferred_username") or id_token_claims.get(
        "upn", ""
    )
