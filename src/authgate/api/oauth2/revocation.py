# Token revocation (RFC 7009) and grant/client-wide revocation.
# Created: 2026-10-18
#
# Revoking a refresh token also revokes the access token it last minted.
# Revoking an access token leaves its refresh token alone.

from __future__ import annotations

import logging

from authgate.api.oauth2.models import AccessToken, RefreshToken
from authgate.api.oauth2.storage import OAuthStorageProtocol
from authgate.security.audit import get_audit_logger

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HINT = "access_token"
REFRESH_TOKEN_HINT = "refresh_token"


class RevocationService:
    """Marks tokens revoked. Never deletes rows."""

    def __init__(self, storage: OAuthStorageProtocol):
        self.storage = storage

    def _revoke_refresh(self, record: RefreshToken) -> int:
        count = int(self.storage.revoke_refresh_token(record.id))
        linked = {record.access_token_id} if record.access_token_id else set()
        # Without rotation one refresh token mints many access tokens; each points back.
        for access in self.storage.list_access_tokens(
            client_id=record.client_id, user_id=record.user_id
        ):
            if access.refresh_token_id == record.id:
                linked.add(access.id)
        for access_id in linked:
            count += int(self.storage.revoke_access_token(access_id))
        return count

    def _lookup(
        self, token: str, hint: str | None
    ) -> AccessToken | RefreshToken | None:
        lookups = [self.storage.get_access_token, self.storage.get_refresh_token]
        if hint == REFRESH_TOKEN_HINT:
            lookups.reverse()
        for lookup in lookups:
            record = lookup(token)
            if record is not None:
                return record
        return None

    def revoke(
        self,
        token: str,
        token_type_hint: str | None = None,
        client_id: str | None = None,
    ) -> bool:
        """Revoke a single token. Returns whether anything changed.

        With *client_id* set, a token issued to another client is left alone.
        """
        record = self._lookup(token, token_type_hint)
        if record is None:
            return False
        if client_id is not None and record.client_id != client_id:
            logger.warning("Client %s tried to revoke a token of %s", client_id, record.client_id)
            return False

        if isinstance(record, RefreshToken):
            count = self._revoke_refresh(record)
            kind = REFRESH_TOKEN_HINT
        else:
            count = int(self.storage.revoke_access_token(record.id))
            kind = ACCESS_TOKEN_HINT

        if count:
            get_audit_logger().log_api_event(
                action="oauth_token_revoked",
                target=f"client:{record.client_id}",
                user_id=record.user_id,
                token_type=kind,
                token_prefix=token[:8],
            )
        return count > 0

    def revoke_grant(self, client_id: str, user_id: str) -> int:
        """Revoke everything one user granted one client, and drop pending codes."""
        count = self._revoke_all(client_id=client_id, user_id=user_id)
        self.storage.delete_codes(client_id, user_id)
        get_audit_logger().log_api_event(
            action="oauth_grant_revoked",
            target=f"client:{client_id}",
            user_id=user_id,
            tokens_revoked=count,
        )
        return count

    def revoke_client(self, client_id: str) -> int:
        """Revoke every token ever issued to a client."""
        count = self._revoke_all(client_id=client_id)
        self.storage.delete_codes(client_id)
        return count

    def revoke_chain(self, record: RefreshToken) -> int:
        """Revoke every refresh token that superseded *record*, with their access tokens."""
        count = 0
        seen: set[str] = set()
        successor_id = record.replaced_by
        while successor_id and successor_id not in seen:
            seen.add(successor_id)
            successor = self.storage.get_refresh_token_by_id(successor_id)
            if successor is None:
                break
            count += self._revoke_refresh(successor)
            successor_id = successor.replaced_by
        return count

    def _revoke_all(self, *, client_id: str, user_id: str | None = None) -> int:
        count = 0
        for refresh in self.storage.list_refresh_tokens(client_id=client_id, user_id=user_id):
            if not refresh.revoked:
                count += int(self.storage.revoke_refresh_token(refresh.id))
        for access in self.storage.list_access_tokens(client_id=client_id, user_id=user_id):
            if not access.revoked:
                count += int(self.storage.revoke_access_token(access.id))
        return count
