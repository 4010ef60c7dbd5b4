# Client management schemas.
# Created: 2026-10-18

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from authgate.api.oauth2.models import AUTH_METHOD_BASIC
from authgate.api.v1.schemas.common import OkResponse


class CreateClientRequest(BaseModel):
    """Register a new OAuth client."""

    name: str = Field(..., min_length=1, max_length=255)
    redirect_uris: list[str] = Field(..., min_length=1)
    scopes: list[str] | None = None
    description: str | None = None
    logo_url: str | None = None
    token_endpoint_auth_method: str = AUTH_METHOD_BASIC


class UpdateClientRequest(BaseModel):
    """Partial update; omitted fields keep their value."""

    name: str | None = Field(None, min_length=1, max_length=255)
    redirect_uris: list[str] | None = None
    allowed_scopes: list[str] | None = None
    description: str | None = None
    logo_url: str | None = None
    is_active: bool | None = None
    token_endpoint_auth_method: str | None = None


class ClientPublic(BaseModel):
    """Public client metadata (no secret, no owner)."""

    model_config = {"from_attributes": True}

    client_id: str
    name: str
    description: str | None = None
    logo_url: str | None = None
    redirect_uris: list[str] = []
    allowed_scopes: list[str] = []
    is_verified: bool = False
    is_active: bool = True


class ClientInfo(ClientPublic):
    """Owner's view without the secret (list entries)."""

    token_endpoint_auth_method: str = AUTH_METHOD_BASIC
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ClientDetail(ClientInfo):
    """Owner's full view."""

    owner_id: str
    client_secret: str


class RotateSecretResponse(BaseModel):
    client_id: str
    client_secret: str


class DeleteClientResponse(OkResponse):
    tokens_revoked: int = 0
