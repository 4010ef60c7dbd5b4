# Connected apps schemas.
# Created: 2026-10-18

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ConnectedAppInfo(BaseModel):
    """One application holding a live grant from the current user."""

    model_config = {"from_attributes": True}

    client_id: str
    name: str
    description: str | None = None
    logo_url: str | None = None
    is_verified: bool = False
    scopes: list[str] = []
    first_authorized_at: datetime | None = None
    last_authorized_at: datetime | None = None
    expires_at: datetime | None = None
    has_offline_access: bool = False


class DisconnectResponse(BaseModel):
    client_id: str
    tokens_revoked: int
