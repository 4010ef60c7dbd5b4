# Consented-apps view: which applications currently hold a user's grant.
# Created: 2026-10-18

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from authgate.api.oauth2.models import OFFLINE_ACCESS, utcnow
from authgate.api.oauth2.revocation import RevocationService
from authgate.api.oauth2.storage import OAuthStorageProtocol
from authgate.api.oauth2.validators import parse_scope

logger = logging.getLogger(__name__)

UNKNOWN_APP = "Unknown App"


@dataclass
class ConnectedApp:
    client_id: str
    name: str
    description: str | None = None
    logo_url: str | None = None
    is_verified: bool = False
    scopes: list[str] = field(default_factory=list)
    first_authorized_at: datetime | None = None
    last_authorized_at: datetime | None = None
    expires_at: datetime | None = None
    has_offline_access: bool = False


class ConsentedAppsView:
    """Read model over the token store, grouped by client."""

    def __init__(
        self,
        storage: OAuthStorageProtocol,
        revocation: RevocationService | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage
        self.revocation = revocation or RevocationService(storage)
        self.clock = clock or utcnow

    def list_connected_apps(self, user_id: str) -> list[ConnectedApp]:
        now = self.clock()
        live = [
            t
            for t in [
                *self.storage.list_access_tokens(user_id=user_id),
                *self.storage.list_refresh_tokens(user_id=user_id),
            ]
            if not t.revoked and t.expires_at > now
        ]

        apps: dict[str, ConnectedApp] = {}
        scopes: dict[str, list[str]] = {}
        for token in live:
            app = apps.get(token.client_id)
            if app is None:
                app = apps[token.client_id] = self._describe(token.client_id)
                scopes[token.client_id] = []
            for s in parse_scope(token.scope):
                if s not in scopes[token.client_id]:
                    scopes[token.client_id].append(s)
            if app.first_authorized_at is None or token.created_at < app.first_authorized_at:
                app.first_authorized_at = token.created_at
            if app.last_authorized_at is None or token.created_at > app.last_authorized_at:
                app.last_authorized_at = token.created_at
            if app.expires_at is None or token.expires_at > app.expires_at:
                app.expires_at = token.expires_at

        for client_id, app in apps.items():
            app.scopes = scopes[client_id]
            app.has_offline_access = OFFLINE_ACCESS in app.scopes

        return sorted(apps.values(), key=lambda a: a.last_authorized_at, reverse=True)

    def _describe(self, client_id: str) -> ConnectedApp:
        client = self.storage.get_client(client_id)
        if client is None:
            return ConnectedApp(client_id=client_id, name=UNKNOWN_APP)
        return ConnectedApp(
            client_id=client_id,
            name=client.name,
            description=client.description,
            logo_url=client.logo_url,
            is_verified=client.is_verified,
        )

    def disconnect(self, user_id: str, client_id: str) -> int:
        """Revoke the user's grant to *client_id*. Returns tokens revoked."""
        count = self.revocation.revoke_grant(client_id, user_id)
        logger.info("User %s disconnected client %s (%d tokens)", user_id, client_id, count)
        return count
