# OAuth2 data models.
# Created: 2026-10-18

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return secrets.token_hex(16)


# Auth methods a client may register for the token endpoint. "none" = public client.
AUTH_METHOD_BASIC = "client_secret_basic"
AUTH_METHOD_POST = "client_secret_post"
AUTH_METHOD_NONE = "none"
TOKEN_ENDPOINT_AUTH_METHODS = (AUTH_METHOD_BASIC, AUTH_METHOD_POST, AUTH_METHOD_NONE)

OFFLINE_ACCESS = "offline_access"
OPENID = "openid"


@dataclass
class OAuthClient:
    """Registered OAuth2 client."""

    client_id: str
    client_secret: str
    owner_id: str
    name: str
    redirect_uris: list[str] = field(default_factory=list)
    allowed_scopes: list[str] = field(default_factory=lambda: ["openid", "profile", "email"])
    description: str | None = None
    logo_url: str | None = None
    is_active: bool = True
    is_verified: bool = False
    token_endpoint_auth_method: str = AUTH_METHOD_BASIC
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_public(self) -> bool:
        return self.token_endpoint_auth_method == AUTH_METHOD_NONE


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str
    expires_at: datetime
    code_challenge: str | None = None
    code_challenge_method: str | None = None  # "plain" | "S256" | None
    state: str | None = None
    used: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class AccessToken:
    """Bearer access token."""

    token: str
    client_id: str
    user_id: str
    scope: str
    expires_at: datetime
    id: str = field(default_factory=new_id)
    refresh_token_id: str | None = None
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RefreshToken:
    """Long-lived refresh token, linked to the access token it last minted."""

    token: str
    client_id: str
    user_id: str
    scope: str
    expires_at: datetime
    id: str = field(default_factory=new_id)
    access_token_id: str | None = None
    replaced_by: str | None = None
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)
