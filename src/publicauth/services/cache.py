"""In-memory token cache.

Stores access tokens, refresh tokens, ID tokens and accounts under composite
keys. A token exchange result is turned into a set of entries that are all
written inside one critical section, so concurrent readers see either none
or all of them.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from publicauth.models.authority import TENANT_ALIASES
from publicauth.models.cache import (
    Account,
    AccessToken,
    IdToken,
    RefreshToken,
    normalize_scopes,
)
from publicauth.models.errors import CacheWriteError
from publicauth.models.params import AuthParameters
from publicauth.models.tokens import TokenResponse
from publicauth.primitives.identity import (
    decode_client_info,
    decode_id_token_claims,
    home_account_id_from,
    username_from,
)

logger = logging.getLogger(__name__)


class TokenCache:
    """Thread-safe token store shared by every caller of one client instance.

    Entries never expire from the store. Expired access tokens are simply
    not returned by ``lookup``.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._access_tokens: dict[tuple, AccessToken] = {}
        self._refresh_tokens: dict[tuple, RefreshToken] = {}
        self._id_tokens: dict[tuple, IdToken] = {}
        self._accounts: dict[tuple, Account] = {}

    def lookup(
        self,
        client_id: str,
        environment: str,
        realm: str,
        home_account_id: str | None,
        scopes: Iterable[str],
        now: float | None = None,
    ) -> AccessToken | None:
        """Find an unexpired access token covering ``scopes``.

        Key fields must match exactly and the stored scope set must be a
        superset of the requested one. The latest expiry wins among matches.
        """
        now = time.time() if now is None else now
        wanted = normalize_scopes(scopes)
        key_prefix = (
            client_id.lower(),
            environment.lower(),
            realm.lower(),
            (home_account_id or "").lower(),
        )

        with self._lock:
            candidates = [
                at
                for key, at in self._access_tokens.items()
                if key[:4] == key_prefix and wanted <= key[4] and not at.is_expired(now)
            ]

        if not candidates:
            return None
        return max(candidates, key=lambda at: at.expires_on)

    def find_refresh_token(
        self, client_id: str, environment: str, home_account_id: str
    ) -> RefreshToken | None:
        key = (client_id.lower(), environment.lower(), home_account_id.lower())
        with self._lock:
            return self._refresh_tokens.get(key)

    def find_id_token(
        self, client_id: str, environment: str, realm: str, home_account_id: str
    ) -> IdToken | None:
        key = (
            client_id.lower(),
            environment.lower(),
            realm.lower(),
            home_account_id.lower(),
        )
        with self._lock:
            return self._id_tokens.get(key)

    def find_account(
        self, home_account_id: str, environment: str, realm: str
    ) -> Account | None:
        key = (home_account_id.lower(), environment.lower(), realm.lower())
        with self._lock:
            return self._accounts.get(key)

    def accounts(self) -> list[Account]:
        with self._lock:
            return list(self._accounts.values())

    def upsert(
        self,
        params: AuthParameters,
        result: TokenResponse,
        now: float | None = None,
    ) -> Account | None:
        """Store the entries derived from a successful token exchange.

        Entries sharing a composite key with existing ones replace them.

        Args:
            params: Parameters of the exchange that produced ``result``
            result: Successful token response
            now: Reference time for expiry calculation

        Returns:
            The account the tokens belong to, or None for app-only tokens

        Raises:
            CacheWriteError: If the result cannot be turned into cache entries
        """
        if not result.is_success():
            raise CacheWriteError("Cannot cache a token response without access token")

        now = time.time() if now is None else now
        try:
            at, rt, idt, account = self._build_entries(params, result, now)
        except (PydanticValidationError, ValueError, TypeError) as e:
            raise CacheWriteError(f"Failed to build cache entries: {e}") from e

        with self._lock:
            self._access_tokens[at.cache_key()] = at
            if account is not None:
                self._accounts[account.cache_key()] = account
            if idt is not None:
                self._id_tokens[idt.cache_key()] = idt
            if rt is not None:
                self._refresh_tokens[rt.cache_key()] = rt
            self._on_change()

        logger.debug(
            f"Cached tokens for client {params.client_id} in realm {at.realm} "
            f"(refresh token: {rt is not None}, account: {account is not None})"
        )
        return account

    def remove_account(self, account: Account) -> None:
        """Forget an account and every token issued to it in its environment."""
        home = account.home_account_id.lower()
        environment = account.environment.lower()

        def belongs(entry: Any) -> bool:
            return (
                (entry.home_account_id or "").lower() == home
                and entry.environment.lower() == environment
            )

        with self._lock:
            for store in (
                self._access_tokens,
                self._refresh_tokens,
                self._id_tokens,
                self._accounts,
            ):
                for key in [k for k, entry in store.items() if belongs(entry)]:
                    del store[key]
            self._on_change()

    def _build_entries(
        self, params: AuthParameters, result: TokenResponse, now: float
    ) -> tuple[AccessToken, RefreshToken | None, IdToken | None, Account | None]:
        claims = decode_id_token_claims(result.id_token)
        client_info = decode_client_info(result.client_info)
        home_account_id = (
            home_account_id_from(client_info, claims) or params.home_account_id
        )

        authority = params.authority_info
        environment = authority.host
        realm = self._realm_for(params, claims)

        at = AccessToken(
            secret=result.access_token,
            expires_on=result.calculate_expires_on(now),
            scopes=normalize_scopes(result.granted_scopes() or params.scopes),
            realm=realm,
            client_id=params.client_id,
            environment=environment,
            home_account_id=home_account_id,
            cached_at=now,
            token_type=result.token_type,
        )

        if home_account_id is None:
            return at, None, None, None

        account = Account(
            home_account_id=home_account_id,
            environment=environment,
            realm=realm,
            local_account_id=claims.get("oid") or claims.get("sub") or "",
            authority_type=authority.authority_type,
            username=username_from(claims) or params.username or "",
        )

        idt = None
        if result.id_token:
            idt = IdToken(
                secret=result.id_token,
                realm=realm,
                client_id=params.client_id,
                environment=environment,
                home_account_id=home_account_id,
            )

        rt = None
        if result.refresh_token:
            rt = RefreshToken(
                secret=result.refresh_token,
                environment=environment,
                home_account_id=home_account_id,
                client_id=params.client_id,
                family_id=result.foci,
            )

        return at, rt, idt, account

    @staticmethod
    def _realm_for(params: AuthParameters, claims: dict[str, Any]) -> str:
        """Tenant the tokens belong to.

        A concrete authority tenant is authoritative. For alias authorities the
        ID token's tenant claim is used, then the realm of the account being
        refreshed.
        """
        tenant = params.authority_info.tenant
        if tenant.lower() not in TENANT_ALIASES:
            return tenant
        if claims.get("tid"):
            return claims["tid"]
        return params.account_realm or tenant

    def _on_change(self) -> None:
        pass


class SerializableTokenCache(TokenCache):
    """Token cache that can be snapshotted to and restored from JSON.

    Persisting the snapshot is left to the caller; ``has_state_changed``
    tells it when a write is due.
    """

    def __init__(self):
        super().__init__()
        self.has_state_changed = False

    def serialize(self) -> str:
        with self._lock:
            state = {
                "AccessToken": [
                    at.model_dump(mode="json") for at in self._access_tokens.values()
                ],
                "RefreshToken": [
                    rt.model_dump(mode="json") for rt in self._refresh_tokens.values()
                ],
                "IdToken": [
                    idt.model_dump(mode="json") for idt in self._id_tokens.values()
                ],
                "Account": [
                    account.model_dump(mode="json")
                    for account in self._accounts.values()
                ],
            }
            self.has_state_changed = False
        return json.dumps(state, indent=2, sort_keys=True)

    def deserialize(self, state: str | None) -> None:
        """Replace the cache contents with a snapshot from ``serialize``.

        Raises:
            CacheWriteError: If the snapshot is not valid
        """
        try:
            data = json.loads(state) if state else {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            access_tokens = [
                AccessToken.model_validate(e) for e in data.get("AccessToken", [])
            ]
            refresh_tokens = [
                RefreshToken.model_validate(e) for e in data.get("RefreshToken", [])
            ]
            id_tokens = [IdToken.model_validate(e) for e in data.get("IdToken", [])]
            accounts = [Account.model_validate(e) for e in data.get("Account", [])]
        except (ValueError, PydanticValidationError) as e:
            raise CacheWriteError(f"Invalid token cache snapshot: {e}") from e

        with self._lock:
            self._access_tokens = {at.cache_key(): at for at in access_tokens}
            self._refresh_tokens = {rt.cache_key(): rt for rt in refresh_tokens}
            self._id_tokens = {idt.cache_key(): idt for idt in id_tokens}
            self._accounts = {account.cache_key(): account for account in accounts}
            self.has_state_changed = False

    def _on_change(self) -> None:
        self.has_state_changed = True
