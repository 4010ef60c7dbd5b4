# OAuth2 schemas.
# Created: 2026-10-18

from __future__ import annotations

from pydantic import BaseModel, Field

from authgate.api.v1.schemas.clients import ClientPublic


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None
    id_token: str | None = None


class ConsentContext(BaseModel):
    """Everything the external consent UI needs to render the prompt."""

    client: ClientPublic
    scopes: list[str]
    requested_scopes: list[str]
    redirect_uri: str
    response_type: str = "code"
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None


class ConsentDecision(BaseModel):
    """JSON body for POST /oauth/authorize (form bodies carry the same fields)."""

    client_id: str | None = None
    redirect_uri: str | None = None
    response_type: str | None = "code"
    scope: str | None = None
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    decision: str = Field("deny", pattern="^(allow|deny)$")
    approved_scope: str | None = None
