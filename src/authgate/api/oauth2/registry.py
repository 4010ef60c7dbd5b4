# Client Registry: register, look up, update, rotate, deactivate, delete.
# Created: 2026-10-18
#
# Client ids use the format cl_<24 hex chars>, secrets cs_<random> for easy
# identification in logs. Ownership is checked here, for every backend alike:
# only the owning account sees the secret or may mutate the record.

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, fields
from datetime import datetime

from authgate.api.oauth2.errors import (
    ClientNotFound,
    ClientRegistrationError,
    Forbidden,
    InvalidClientError,
)
from authgate.api.oauth2.models import (
    AUTH_METHOD_BASIC,
    TOKEN_ENDPOINT_AUTH_METHODS,
    OAuthClient,
    utcnow,
)
from authgate.api.oauth2.revocation import RevocationService
from authgate.api.oauth2.storage import OAuthStorageProtocol
from authgate.api.oauth2.validators import validate_redirect_uris, validate_scopes
from authgate.security.audit import get_audit_logger

logger = logging.getLogger(__name__)

_CLIENT_ID_PREFIX = "cl_"
_SECRET_PREFIX = "cs_"


def _new_client_id() -> str:
    return f"{_CLIENT_ID_PREFIX}{secrets.token_hex(12)}"


def _new_secret() -> str:
    return f"{_SECRET_PREFIX}{secrets.token_urlsafe(32)}"


@dataclass
class ClientPublicView:
    """What anyone may learn about a client (consent screen, public lookup)."""

    client_id: str
    name: str
    description: str | None
    logo_url: str | None
    redirect_uris: list[str]
    allowed_scopes: list[str]
    is_verified: bool
    is_active: bool

    @classmethod
    def from_client(cls, client: OAuthClient) -> ClientPublicView:
        return cls(
            client_id=client.client_id,
            name=client.name,
            description=client.description,
            logo_url=client.logo_url,
            redirect_uris=list(client.redirect_uris),
            allowed_scopes=list(client.allowed_scopes),
            is_verified=client.is_verified,
            is_active=client.is_active,
        )


@dataclass
class ClientSummary(ClientPublicView):
    """Owner's list entry: public fields plus bookkeeping, never the secret."""

    token_endpoint_auth_method: str = AUTH_METHOD_BASIC
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_client(cls, client: OAuthClient) -> ClientSummary:
        base = ClientPublicView.from_client(client)
        return cls(
            **vars(base),
            token_endpoint_auth_method=client.token_endpoint_auth_method,
            created_at=client.created_at,
            updated_at=client.updated_at,
        )


@dataclass
class ClientFullView(ClientSummary):
    """Owner-only view, including the secret."""

    owner_id: str = ""
    client_secret: str = ""

    @classmethod
    def from_client(cls, client: OAuthClient) -> ClientFullView:
        base = ClientSummary.from_client(client)
        return cls(**vars(base), owner_id=client.owner_id, client_secret=client.client_secret)


@dataclass
class ClientPatch:
    """Partial update. Fields left as None are not touched."""

    name: str | None = None
    description: str | None = None
    logo_url: str | None = None
    redirect_uris: list[str] | None = None
    allowed_scopes: list[str] | None = None
    is_active: bool | None = None
    token_endpoint_auth_method: str | None = None

    def supplied(self) -> dict:
        values = ((f.name, getattr(self, f.name)) for f in fields(self))
        return {name: value for name, value in values if value is not None}


class ClientRegistry:
    """Owns OAuthClient records."""

    def __init__(self, storage: OAuthStorageProtocol, settings=None):
        if settings is None:
            from authgate.config import get_settings

            settings = get_settings()
        self.storage = storage
        self.settings = settings
        self.revocation = RevocationService(storage)

    # -- validation helpers ---------------------------------------------

    @staticmethod
    def _check_name(name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise ClientRegistrationError("invalid_client_metadata", "Client name is required")
        if len(name) > 255:
            raise ClientRegistrationError("invalid_client_metadata", "Client name is too long")
        return name

    @staticmethod
    def _check_auth_method(method: str) -> str:
        if method not in TOKEN_ENDPOINT_AUTH_METHODS:
            raise ClientRegistrationError(
                "invalid_client_metadata",
                f"Unsupported token_endpoint_auth_method: {method}",
            )
        return method

    def _check_scopes(self, scopes: list[str]) -> list[str]:
        scopes = validate_scopes(scopes, self.settings.supported_scopes)
        if not scopes:
            raise ClientRegistrationError(
                "invalid_client_metadata", "At least one scope is required"
            )
        return scopes

    def _owned(self, client_id: str, owner_id: str) -> OAuthClient:
        client = self.storage.get_client(client_id)
        if client is None:
            raise ClientNotFound(client_id)
        if client.owner_id != owner_id:
            raise Forbidden(f"client {client_id} is not owned by the caller")
        return client

    # -- operations -----------------------------------------------------

    def register(
        self,
        owner_id: str,
        name: str,
        redirect_uris: list[str],
        scopes: list[str] | None = None,
        logo_url: str | None = None,
        description: str | None = None,
        token_endpoint_auth_method: str = AUTH_METHOD_BASIC,
    ) -> OAuthClient:
        """Register a new client. The returned record carries the secret."""
        if not owner_id:
            raise ValueError("owner_id is required")

        client = OAuthClient(
            client_id=_new_client_id(),
            client_secret=_new_secret(),
            owner_id=owner_id,
            name=self._check_name(name),
            redirect_uris=validate_redirect_uris(redirect_uris),
            allowed_scopes=self._check_scopes(
                scopes if scopes is not None else self.settings.default_client_scopes
            ),
            description=description,
            logo_url=logo_url,
            token_endpoint_auth_method=self._check_auth_method(token_endpoint_auth_method),
        )
        self.storage.add_client(client)

        logger.info("Registered OAuth client %s for owner %s", client.client_id, owner_id)
        get_audit_logger().log_api_event(
            action="oauth_client_registered",
            target=f"client:{client.client_id}",
            owner_id=owner_id,
            client_name=client.name,
            scopes=client.allowed_scopes,
        )
        return client

    def get(
        self, client_id: str, requester_id: str | None = None
    ) -> ClientFullView | ClientPublicView:
        """Full view for the owner, redacted public view for everyone else."""
        client = self.storage.get_client(client_id)
        if client is None:
            raise ClientNotFound(client_id)
        if requester_id is not None and requester_id == client.owner_id:
            return ClientFullView.from_client(client)
        return ClientPublicView.from_client(client)

    def get_public(self, client_id: str) -> ClientPublicView:
        """Redacted view for anyone, including the owner."""
        client = self.storage.get_client(client_id)
        if client is None:
            raise ClientNotFound(client_id)
        return ClientPublicView.from_client(client)

    def get_owned(self, client_id: str, owner_id: str) -> ClientFullView:
        return ClientFullView.from_client(self._owned(client_id, owner_id))

    def list_clients(self, owner_id: str) -> list[ClientSummary]:
        return [ClientSummary.from_client(c) for c in self.storage.list_clients(owner_id)]

    def update(self, client_id: str, owner_id: str, patch: ClientPatch) -> OAuthClient:
        client = self._owned(client_id, owner_id)
        changes = patch.supplied()

        if "name" in changes:
            client.name = self._check_name(changes["name"])
        if "redirect_uris" in changes:
            client.redirect_uris = validate_redirect_uris(changes["redirect_uris"])
        if "allowed_scopes" in changes:
            client.allowed_scopes = self._check_scopes(changes["allowed_scopes"])
        if "token_endpoint_auth_method" in changes:
            client.token_endpoint_auth_method = self._check_auth_method(
                changes["token_endpoint_auth_method"]
            )
        for key in ("description", "logo_url", "is_active"):
            if key in changes:
                setattr(client, key, changes[key])

        if changes:
            client.updated_at = utcnow()
            self.storage.save_client(client)
            get_audit_logger().log_api_event(
                action="oauth_client_updated",
                target=f"client:{client_id}",
                owner_id=owner_id,
                fields=sorted(changes),
            )
        return client

    def rotate_secret(self, client_id: str, owner_id: str) -> str:
        """Replace the secret. The old one stops working at once; tokens survive."""
        client = self._owned(client_id, owner_id)
        client.client_secret = _new_secret()
        client.updated_at = utcnow()
        self.storage.save_client(client)

        get_audit_logger().log_api_event(
            action="oauth_client_secret_rotated",
            target=f"client:{client_id}",
            owner_id=owner_id,
        )
        return client.client_secret

    def deactivate(self, client_id: str, owner_id: str) -> OAuthClient:
        return self.update(client_id, owner_id, ClientPatch(is_active=False))

    def delete(self, client_id: str, owner_id: str) -> int:
        """Revoke every token of the client, then remove it. Returns tokens revoked."""
        self._owned(client_id, owner_id)
        revoked = self.revocation.revoke_client(client_id)
        self.storage.delete_client(client_id)

        logger.info("Deleted OAuth client %s (%d tokens revoked)", client_id, revoked)
        get_audit_logger().log_api_event(
            action="oauth_client_deleted",
            target=f"client:{client_id}",
            owner_id=owner_id,
            tokens_revoked=revoked,
        )
        return revoked

    def mark_verified(self, client_id: str, verified: bool = True) -> OAuthClient:
        """Platform review flag. Not exposed to owners."""
        client = self.storage.get_client(client_id)
        if client is None:
            raise ClientNotFound(client_id)
        client.is_verified = verified
        client.updated_at = utcnow()
        self.storage.save_client(client)
        get_audit_logger().log_api_event(
            action="oauth_client_verified" if verified else "oauth_client_unverified",
            target=f"client:{client_id}",
        )
        return client

    def authenticate(self, client_id: str | None, client_secret: str | None) -> OAuthClient:
        """Authenticate a client at the token or revocation endpoint.

        Unknown, inactive and bad-secret clients all fail the same way.
        """
        if not client_id:
            raise InvalidClientError()
        client = self.storage.get_client(client_id)
        if client is None or not client.is_active:
            raise InvalidClientError()

        if client_secret is None:
            if client.is_public:
                return client
            raise InvalidClientError()

        if not secrets.compare_digest(client_secret.encode(), client.client_secret.encode()):
            logger.warning("Client authentication failed for %s", client_id)
            raise InvalidClientError()
        return client
