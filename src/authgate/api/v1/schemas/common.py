# Common API response schemas.
# Created: 2026-10-18

from __future__ import annotations

from pydantic import BaseModel


class OAuthErrorResponse(BaseModel):
    """RFC 6749 error body."""

    error: str
    error_description: str | None = None


class OkResponse(BaseModel):
    """Simple success response."""

    ok: bool = True
