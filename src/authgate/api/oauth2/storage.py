# OAuth2 storage port and in-memory backend.
# Created: 2026-10-18
#
# OAuthStorageProtocol is the only way components touch client and credential rows.
# Backends:
# - MemoryOAuthStorage: single process, guarded by a lock (default, tests)
# - SQLOAuthStorage (sql_storage.py): shared durable database for multiple instances
#
# consume_code(), revoke_refresh_token() and rotate_refresh_token() are
# compare-and-swap operations: they return True only for the caller that performed
# the transition. rotate_refresh_token() stores the successor tokens in the same step.

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime
from typing import Protocol, runtime_checkable

from authgate.api.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class OAuthStorageProtocol(Protocol):
    """Storage interface for clients, codes, access tokens and refresh tokens."""

    # Clients
    def add_client(self, client: OAuthClient) -> None: ...

    def get_client(self, client_id: str) -> OAuthClient | None: ...

    def save_client(self, client: OAuthClient) -> None: ...

    def list_clients(self, owner_id: str) -> list[OAuthClient]: ...

    def delete_client(self, client_id: str) -> bool: ...

    # Authorization codes
    def add_code(self, code: AuthorizationCode) -> None: ...

    def get_code(self, code: str) -> AuthorizationCode | None: ...

    def consume_code(self, code: str) -> bool:
        """Atomically flip used False -> True. True only for the winning caller."""
        ...

    def delete_codes(self, client_id: str, user_id: str | None = None) -> int: ...

    # Access tokens
    def add_access_token(self, token: AccessToken) -> None: ...

    def get_access_token(self, token: str) -> AccessToken | None: ...

    def get_access_token_by_id(self, token_id: str) -> AccessToken | None: ...

    def revoke_access_token(self, token_id: str) -> bool: ...

    def list_access_tokens(
        self, *, client_id: str | None = None, user_id: str | None = None
    ) -> list[AccessToken]: ...

    # Refresh tokens
    def add_refresh_token(self, token: RefreshToken) -> None: ...

    def get_refresh_token(self, token: str) -> RefreshToken | None: ...

    def get_refresh_token_by_id(self, token_id: str) -> RefreshToken | None: ...

    def revoke_refresh_token(self, token_id: str, replaced_by: str | None = None) -> bool:
        """Atomically flip revoked False -> True, recording the successor if any."""
        ...

    def rotate_refresh_token(
        self, old_id: str, access: AccessToken, refresh: RefreshToken
    ) -> bool:
        """Revoke *old_id* in favour of *refresh* and store both new tokens, all or nothing."""
        ...

    def list_refresh_tokens(
        self, *, client_id: str | None = None, user_id: str | None = None
    ) -> list[RefreshToken]: ...

    # Housekeeping
    def purge_expired(self, now: datetime) -> int: ...


def _matches(row, client_id: str | None, user_id: str | None) -> bool:
    if client_id is not None and row.client_id != client_id:
        return False
    if user_id is not None and row.user_id != user_id:
        return False
    return True


class MemoryOAuthStorage:
    """In-process storage.

    Records are copied on the way in and out, so callers can never mutate
    stored state except through these methods.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._clients: dict[str, OAuthClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access: dict[str, AccessToken] = {}  # keyed by id
        self._access_index: dict[str, str] = {}  # token -> id
        self._refresh: dict[str, RefreshToken] = {}  # keyed by id
        self._refresh_index: dict[str, str] = {}  # token -> id

    # -- clients -----------------------------------------------------------

    def add_client(self, client: OAuthClient) -> None:
        with self._lock:
            if client.client_id in self._clients:
                raise ValueError(f"duplicate client_id {client.client_id}")
            self._clients[client.client_id] = copy.deepcopy(client)

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            client = self._clients.get(client_id)
            return copy.deepcopy(client) if client else None

    def save_client(self, client: OAuthClient) -> None:
        with self._lock:
            if client.client_id not in self._clients:
                raise KeyError(client.client_id)
            self._clients[client.client_id] = copy.deepcopy(client)

    def list_clients(self, owner_id: str) -> list[OAuthClient]:
        with self._lock:
            clients = [copy.deepcopy(c) for c in self._clients.values() if c.owner_id == owner_id]
        return sorted(clients, key=lambda c: c.created_at, reverse=True)

    def delete_client(self, client_id: str) -> bool:
        with self._lock:
            self.delete_codes(client_id)
            for k in [k for k, v in self._access.items() if v.client_id == client_id]:
                self._access_index.pop(self._access.pop(k).token, None)
            for k in [k for k, v in self._refresh.items() if v.client_id == client_id]:
                self._refresh_index.pop(self._refresh.pop(k).token, None)
            return self._clients.pop(client_id, None) is not None

    # -- authorization codes ---------------------------------------------

    def add_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.code] = copy.deepcopy(code)

    def get_code(self, code: str) -> AuthorizationCode | None:
        with self._lock:
            record = self._codes.get(code)
            return copy.deepcopy(record) if record else None

    def consume_code(self, code: str) -> bool:
        with self._lock:
            record = self._codes.get(code)
            if record is None or record.used:
                return False
            record.used = True
            return True

    def delete_codes(self, client_id: str, user_id: str | None = None) -> int:
        with self._lock:
            doomed = [k for k, v in self._codes.items() if _matches(v, client_id, user_id)]
            for k in doomed:
                del self._codes[k]
            return len(doomed)

    # -- access tokens ---------------------------------------------------

    def add_access_token(self, token: AccessToken) -> None:
        with self._lock:
            self._access[token.id] = copy.deepcopy(token)
            self._access_index[token.token] = token.id

    def get_access_token(self, token: str) -> AccessToken | None:
        with self._lock:
            token_id = self._access_index.get(token)
            return self.get_access_token_by_id(token_id) if token_id else None

    def get_access_token_by_id(self, token_id: str) -> AccessToken | None:
        with self._lock:
            record = self._access.get(token_id)
            return copy.deepcopy(record) if record else None

    def revoke_access_token(self, token_id: str) -> bool:
        with self._lock:
            record = self._access.get(token_id)
            if record is None or record.revoked:
                return False
            record.revoked = True
            return True

    def list_access_tokens(
        self, *, client_id: str | None = None, user_id: str | None = None
    ) -> list[AccessToken]:
        with self._lock:
            return [
                copy.deepcopy(t)
                for t in self._access.values()
                if _matches(t, client_id, user_id)
            ]

    # -- refresh tokens --------------------------------------------------

    def add_refresh_token(self, token: RefreshToken) -> None:
        with self._lock:
            self._refresh[token.id] = copy.deepcopy(token)
            self._refresh_index[token.token] = token.id

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self._lock:
            token_id = self._refresh_index.get(token)
            return self.get_refresh_token_by_id(token_id) if token_id else None

    def get_refresh_token_by_id(self, token_id: str) -> RefreshToken | None:
        with self._lock:
            record = self._refresh.get(token_id)
            return copy.deepcopy(record) if record else None

    def revoke_refresh_token(self, token_id: str, replaced_by: str | None = None) -> bool:
        with self._lock:
            record = self._refresh.get(token_id)
            if record is None or record.revoked:
                return False
            record.revoked = True
            if replaced_by is not None:
                record.replaced_by = replaced_by
            return True

    def rotate_refresh_token(
        self, old_id: str, access: AccessToken, refresh: RefreshToken
    ) -> bool:
        with self._lock:
            record = self._refresh.get(old_id)
            if record is None or record.revoked:
                return False
            self.add_access_token(access)
            try:
                self.add_refresh_token(refresh)
            except Exception:
                self._access.pop(access.id, None)
                self._access_index.pop(access.token, None)
                raise
            record.revoked = True
            record.replaced_by = refresh.id
            return True

    def list_refresh_tokens(
        self, *, client_id: str | None = None, user_id: str | None = None
    ) -> list[RefreshToken]:
        with self._lock:
            return [
                copy.deepcopy(t)
                for t in self._refresh.values()
                if _matches(t, client_id, user_id)
            ]

    # -- housekeeping ----------------------------------------------------

    def purge_expired(self, now: datetime) -> int:
        """Drop expired codes and tokens. Returns the number of rows removed."""
        with self._lock:
            removed = 0
            for k in [k for k, v in self._codes.items() if v.expires_at < now]:
                del self._codes[k]
                removed += 1
            for k in [k for k, v in self._access.items() if v.expires_at < now]:
                self._access_index.pop(self._access.pop(k).token, None)
                removed += 1
            for k in [k for k, v in self._refresh.items() if v.expires_at < now]:
                self._refresh_index.pop(self._refresh.pop(k).token, None)
                removed += 1
        if removed:
            logger.debug("Purged %d expired OAuth rows", removed)
        return removed


def create_storage(settings=None) -> OAuthStorageProtocol:
    """Build the storage backend selected by ``settings.storage_backend``."""
    if settings is None:
        from authgate.config import get_settings

        settings = get_settings()

    if settings.storage_backend == "sql":
        from authgate.api.oauth2.sql_storage import SQLOAuthStorage

        return SQLOAuthStorage(settings.resolved_database_url())
    return MemoryOAuthStorage()
